"""
Module discovery and loading.

A module is a directory under ``MODULES_DIR`` holding a config file
(``MODULE_CONFIG_FILE``) plus optional ``controllers``, ``models``,
``services`` and ``helpers`` directories of plain Python files. The config
file is an ordinary Python file whose module-level names describe the module:

    enabled = True
    installed = True
    routes = [{"method": "GET", "path": "/", "action": "pages.index"}]
    acl = {"resources": ["pages.edit"]}

    def after_modules_setup(modules, acl_resources): ...
    def before_template_render(ctx, tpl, params): ...
"""
from __future__ import annotations

import hashlib
import importlib.util
import logging
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import TYPE_CHECKING, Any

from app.cms.errors import ModuleConfigError
from app.cms.files import FileSystemProbe
from app.cms.routing import Route

if TYPE_CHECKING:
    from app.cms.registry import Registry

logger = logging.getLogger(__name__)

_CONFIG_KEYS = ("enabled", "installed", "routes", "acl", "after_modules_setup", "before_template_render")


@dataclass(frozen=True)
class AclConfig:
    resources: tuple[str, ...] = ()
    is_allowed_implementation: Callable[[Any, str], Any] | None = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> AclConfig:
        if raw is None:
            return cls()
        if not isinstance(raw, Mapping):
            raise ModuleConfigError("acl must be a mapping")
        resources = raw.get("resources") or ()
        if isinstance(resources, str) or not all(isinstance(r, str) for r in resources):
            raise ModuleConfigError("acl.resources must be a list of strings")
        impl = raw.get("is_allowed_implementation")
        if impl is not None and not callable(impl):
            raise ModuleConfigError("acl.is_allowed_implementation must be callable")
        return cls(resources=tuple(resources), is_allowed_implementation=impl)


@dataclass(frozen=True)
class ModuleConfig:
    enabled: bool = False
    installed: bool = False
    routes: tuple[Route, ...] = ()
    acl: AclConfig = field(default_factory=AclConfig)
    after_modules_setup: Callable[..., Any] | None = None
    before_template_render: Callable[..., Any] | None = None

    @property
    def active(self) -> bool:
        return bool(self.installed and self.enabled)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> ModuleConfig:
        routes = raw.get("routes") or ()
        if not isinstance(routes, (list, tuple)):
            raise ModuleConfigError("routes must be a list")
        for hook in ("after_modules_setup", "before_template_render"):
            if raw.get(hook) is not None and not callable(raw[hook]):
                raise ModuleConfigError(f"{hook} must be callable")
        return cls(
            enabled=bool(raw.get("enabled", False)),
            installed=bool(raw.get("installed", False)),
            routes=tuple(Route.from_mapping(r) for r in routes),
            acl=AclConfig.from_mapping(raw.get("acl")),
            after_modules_setup=raw.get("after_modules_setup"),
            before_template_render=raw.get("before_template_render"),
        )


@dataclass(frozen=True)
class LoadedModule:
    name: str
    path: str
    config: ModuleConfig
    controllers: Mapping[str, ModuleType] = field(default_factory=dict)
    models: Mapping[str, ModuleType] = field(default_factory=dict)
    services: Mapping[str, ModuleType] = field(default_factory=dict)
    helpers: Mapping[str, ModuleType] = field(default_factory=dict)


def import_name(file_path: Path, *parts: str) -> str:
    digest = hashlib.sha1(str(file_path.resolve()).encode("utf-8")).hexdigest()[:10]
    return "_cms_" + "_".join(p.replace(".", "_").replace("-", "_") for p in parts) + f"_{digest}"


def import_file(file_path: Path, module_name: str) -> ModuleType:
    """Execute a Python file as a fresh module registered under ``module_name``."""
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot import {file_path}")
    mod = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = mod
    try:
        spec.loader.exec_module(mod)
    except BaseException:
        sys.modules.pop(module_name, None)
        raise
    return mod


def read_module_config(config_path: Path, module_name: str) -> ModuleConfig:
    mod = import_file(config_path, import_name(config_path, module_name, "config"))
    raw = {key: getattr(mod, key) for key in _CONFIG_KEYS if hasattr(mod, key)}
    return ModuleConfig.from_mapping(raw)


def strip_suffix(name: str, suffix: str) -> str:
    stem = name[:-3] if name.endswith(".py") else name
    for candidate in (suffix, f"_{suffix.lower()}"):
        if stem.endswith(candidate) and stem != candidate:
            return stem[: -len(candidate)]
    return stem


def lookup_table(table: Mapping[str, Any], name: str, suffix: str) -> Any | None:
    key = strip_suffix(name, suffix)
    if key in table:
        return table[key]
    lowered = key.lower()
    for k, v in table.items():
        if k.lower() == lowered:
            return v
    return None


class ModuleLoader:
    _TABLES = (
        ("controllers", "MODULE_CONTROLLERS_DIR", "Controller"),
        ("models", "MODULE_MODELS_DIR", "Model"),
        ("services", "MODULE_SERVICES_DIR", "Service"),
        ("helpers", "MODULE_HELPERS_DIR", "Helper"),
    )

    def __init__(self, config: Mapping[str, Any], registry: Registry, probe: FileSystemProbe | None = None) -> None:
        self.config = config
        self.registry = registry
        self.probe = probe or FileSystemProbe()

    @property
    def modules_root(self) -> Path:
        return Path(self.config["CMS_ROOT"]) / self.config["MODULES_DIR"]

    def discover_modules(self) -> list[str]:
        return self.probe.get_all_dir_names(self.modules_root) or []

    def _load_table(self, module_path: Path, module_name: str, kind: str, dir_key: str, suffix: str) -> dict[str, ModuleType]:
        table: dict[str, ModuleType] = {}
        dir_path = module_path / self.config[dir_key]
        for file_name in self.probe.get_all_file_names(dir_path) or []:
            if not file_name.endswith(".py") or file_name.startswith("_"):
                continue
            file_path = dir_path / file_name
            table[strip_suffix(file_name, suffix)] = import_file(
                file_path, import_name(file_path, module_name, kind, file_name[:-3])
            )
        return table

    def load_module(self, name: str) -> LoadedModule | None:
        module_path = self.modules_root / name
        config_path = module_path / self.config["MODULE_CONFIG_FILE"]
        if not self.probe.file_exists(config_path):
            logger.debug("Directory '%s' has no module config; skipping", name)
            return None

        try:
            cfg = read_module_config(config_path, name)
            if not cfg.active:
                logger.info("Module '%s' is not installed/enabled; not registered", name)
                return None
            tables = {
                kind: self._load_table(module_path, name, kind, dir_key, suffix)
                for kind, dir_key, suffix in self._TABLES
            }
        except Exception:
            logger.exception("Failed to load module '%s'", name)
            return None

        module = LoadedModule(name=name, path=str(module_path), config=cfg, **tables)

        # Resource collisions are fatal and must escape the loader.
        self._parse_acl(module)
        if cfg.after_modules_setup is not None:
            self.registry.after_modules_setup.append(cfg.after_modules_setup)
        if cfg.before_template_render is not None:
            self.registry.before_template_render.append(cfg.before_template_render)
        self.registry.add_module(module)
        logger.info("Module '%s' registered (%d routes)", name, len(cfg.routes))
        return module

    def _parse_acl(self, module: LoadedModule) -> None:
        acl = module.config.acl
        if acl.is_allowed_implementation is not None:
            self.registry.acl.set_authorizer(acl.is_allowed_implementation, module_name=module.name)
        if acl.resources:
            self.registry.acl.register_resources(acl.resources, module_name=module.name)

    def load_all(self) -> dict[str, LoadedModule]:
        loaded: dict[str, LoadedModule] = {}
        for name in self.discover_modules():
            module = self.load_module(name)
            if module is not None:
                loaded[name] = module
        return loaded
