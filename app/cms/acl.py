from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from app.cms.errors import AclResourceCollision, ModuleConfigNotFound, RegistryFrozen
from app.cms.files import FileSystemProbe

logger = logging.getLogger(__name__)

Authorizer = Callable[[Any, str], Any]


def _default_authorizer(subject: Any, resource: str) -> None:
    # Falsy on purpose: nothing is allowed until an ACL module supplies an implementation.
    logger.warning("Requires ACL module implementation")
    return None


class ACLRegistry:
    """
    Aggregates ACL resource names across modules and holds the single
    authorization predicate.

    An authorizer passed to the constructor is final: module-declared
    implementations are ignored so that module load order cannot change it.
    Without one, the last module that declares an implementation wins.
    """

    def __init__(self, authorizer: Authorizer | None = None) -> None:
        self._resources: list[str] = []
        self._owners: dict[str, str | None] = {}
        self._authorizer: Authorizer = authorizer or _default_authorizer
        self._injected = authorizer is not None
        self._frozen = False

    @property
    def resources(self) -> tuple[str, ...]:
        return tuple(self._resources)

    @property
    def has_authorizer(self) -> bool:
        return self._authorizer is not _default_authorizer

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RegistryFrozen("ACL registry is read-only after startup")

    def register_resources(self, names: Iterable[str], *, module_name: str | None = None) -> None:
        self._check_mutable()
        for name in names:
            if name in self._owners:
                raise AclResourceCollision(name, module_name)
            self._owners[name] = module_name
            self._resources.append(name)

    def owner_of(self, resource: str) -> str | None:
        return self._owners.get(resource)

    def set_authorizer(self, fn: Authorizer, *, module_name: str | None = None) -> None:
        self._check_mutable()
        if self._injected:
            logger.info("Ignoring ACL implementation from module '%s'; authorizer was injected at startup", module_name)
            return
        if self.has_authorizer:
            logger.warning("ACL implementation replaced by module '%s'", module_name)
        self._authorizer = fn

    def is_allowed(self, subject: Any, resource: str) -> Any:
        return self._authorizer(subject, resource)

    def freeze(self) -> None:
        self._frozen = True


def preload_acl_resources(
    modules_root: str | Path,
    config_file: str = "config.py",
    probe: FileSystemProbe | None = None,
) -> list[str]:
    """
    Collect the ACL resources of every module directory, installed or not.

    Used to present the full permission list before modules are activated.
    Unlike the full load, a directory without a config file is an error here.
    """
    from app.cms.modules import read_module_config

    probe = probe or FileSystemProbe()
    root = Path(modules_root)
    registry = ACLRegistry()
    for name in probe.get_all_dir_names(root) or []:
        config_path = root / name / config_file
        if not probe.file_exists(config_path):
            raise ModuleConfigNotFound(f"Module '{name}' has no config file at {config_path}")
        cfg = read_module_config(config_path, name)
        registry.register_resources(cfg.acl.resources, module_name=name)
    return list(registry.resources)
