from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from flask import current_app

from app.cms.acl import ACLRegistry
from app.cms.errors import RegistryFrozen
from app.cms.modules import LoadedModule, lookup_table
from app.cms.routing import Policy, Route


@dataclass
class Registry:
    """
    Everything assembled at startup: modules, routes, policies, ACL, hooks and
    DB connections. Built by ``create_app`` and read-only once frozen.
    """

    acl: ACLRegistry = field(default_factory=ACLRegistry)
    modules: Mapping[str, LoadedModule] = field(default_factory=dict)
    routes: Sequence[Route] = field(default_factory=list)
    policies: Mapping[str, Policy] = field(default_factory=dict)
    after_modules_setup: list[Callable[..., Any]] = field(default_factory=list)
    before_template_render: list[Callable[..., Any]] = field(default_factory=list)
    db_connections: Mapping[str, Any] = field(default_factory=dict)
    frozen: bool = False

    def _check_mutable(self) -> None:
        if self.frozen:
            raise RegistryFrozen("Registry is read-only after startup")

    def add_module(self, module: LoadedModule) -> None:
        self._check_mutable()
        self.modules[module.name] = module  # type: ignore[index]

    def add_policy(self, name: str, policy: Policy) -> None:
        self._check_mutable()
        self.policies[name] = policy  # type: ignore[index]

    def add_db_connection(self, name: str, adapter: Any) -> None:
        self._check_mutable()
        self.db_connections[name] = adapter  # type: ignore[index]

    def set_routes(self, routes: Sequence[Route]) -> None:
        self._check_mutable()
        self.routes = list(routes)

    def freeze(self) -> None:
        self.modules = MappingProxyType(dict(self.modules))
        self.policies = MappingProxyType(dict(self.policies))
        self.db_connections = MappingProxyType(dict(self.db_connections))
        self.routes = tuple(self.routes)
        self.after_modules_setup = tuple(self.after_modules_setup)  # type: ignore[assignment]
        self.before_template_render = tuple(self.before_template_render)  # type: ignore[assignment]
        self.acl.freeze()
        self.frozen = True

    def policy(self, name: str) -> Policy | None:
        return self.policies.get(name)

    def _lookup(self, ref: str, kind: str, suffix: str) -> Any | None:
        parts = ref.split(".")
        if len(parts) != 2:
            raise ValueError(f'Please specify module and {suffix.lower()}: "module.{suffix}"')
        module_name, name = parts
        module = self.modules.get(module_name)
        if module is None:
            return None
        return lookup_table(getattr(module, kind), name, suffix)

    def controller(self, ref: str) -> Any | None:
        return self._lookup(ref, "controllers", "Controller")

    def model(self, ref: str) -> Any | None:
        return self._lookup(ref, "models", "Model")

    def service(self, ref: str) -> Any | None:
        return self._lookup(ref, "services", "Service")

    def helper(self, ref: str) -> Any | None:
        return self._lookup(ref, "helpers", "Helper")


def current_registry() -> Registry:
    return current_app.extensions["cms_registry"]
