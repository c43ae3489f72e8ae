from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from app.cms.config import is_production
from app.cms.errors import ModuleConfigError, RouteActionError

if TYPE_CHECKING:
    from flask import Flask

    from app.cms.context import CmsContext
    from app.cms.modules import LoadedModule
    from app.cms.registry import Registry
    from app.cms.render import Renderer

logger = logging.getLogger(__name__)

Policy = Callable[["CmsContext", Callable[[], Any]], Any]

_OPTION_KEYS = frozenset({"disable_global_policies", "acl_resource", "error_response_as_json", "namespace"})
_PARAM_RE = re.compile(r"(?<=/):([A-Za-z_][A-Za-z0-9_]*)")


@dataclass(frozen=True)
class RouteOptions:
    disable_global_policies: bool = False
    acl_resource: str | None = None
    error_response_as_json: bool = False
    namespace: str = "client"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None) -> RouteOptions:
        if not raw:
            return cls()
        unknown = set(raw) - _OPTION_KEYS
        if unknown:
            raise ModuleConfigError(f"Unknown route options: {', '.join(sorted(unknown))}")
        return cls(
            disable_global_policies=bool(raw.get("disable_global_policies", False)),
            acl_resource=raw.get("acl_resource"),
            error_response_as_json=bool(raw.get("error_response_as_json", False)),
            namespace=raw.get("namespace") or "client",
        )


@dataclass(frozen=True)
class Route:
    method: str
    path: str
    action: Callable[..., Any] | str
    policies: tuple[str, ...] = ()
    order: int = 0
    options: RouteOptions = field(default_factory=RouteOptions)
    module_name: str | None = None
    module_path: str | None = None

    @property
    def signature(self) -> str:
        return f"{self.method}:{self.path}"

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> Route:
        if not isinstance(raw, Mapping):
            raise ModuleConfigError("Each route must be a mapping")
        missing = [k for k in ("method", "path", "action") if not raw.get(k)]
        if missing:
            raise ModuleConfigError(f"Route is missing {', '.join(missing)}: {raw!r}")
        policies = raw.get("policies") or ()
        if isinstance(policies, str):
            raise ModuleConfigError("Route policies must be a list of names")
        return cls(
            method=str(raw["method"]).upper(),
            path=str(raw["path"]),
            action=raw["action"],
            policies=tuple(policies),
            order=int(raw.get("order") or 0),
            options=RouteOptions.from_mapping(raw.get("options")),
        )


def resolve_action(action: Callable[..., Any] | str, module: LoadedModule) -> Callable[..., Any]:
    """Turn ``"controller.function"`` references into the controller's callable."""
    from app.cms.modules import lookup_table

    if callable(action):
        return action
    controller_name, _, fn_name = str(action).rpartition(".")
    controller = lookup_table(module.controllers, controller_name, "Controller") if controller_name else None
    fn = getattr(controller, fn_name, None) if controller is not None else None
    if not callable(fn):
        raise RouteActionError(f"Module '{module.name}': route action '{action}' cannot be resolved")
    return fn


def compose_routes(
    modules: Mapping[str, LoadedModule],
    *,
    environment: str | None,
    log: logging.Logger = logger,
) -> list[Route]:
    """
    Flatten every module's routes into one list ordered by ``order``.

    Ties keep module discovery order, then declaration order. Repeated
    ``METHOD:path`` pairs are reported outside production and both routes are
    kept.
    """
    all_routes: list[Route] = []
    seen: dict[str, Route] = {}
    check_duplicates = not is_production(environment)
    for module in modules.values():
        for declared in module.config.routes:
            route = replace(
                declared,
                order=declared.order or 0,
                action=resolve_action(declared.action, module),
                module_name=module.name,
                module_path=module.path,
            )
            if check_duplicates and route.signature in seen:
                first = seen[route.signature]
                log.error(
                    "Route with method '%s' and path '%s' already exists (module '%s'), please check the route declared by module '%s': %r",
                    route.method,
                    route.path,
                    first.module_name,
                    route.module_name,
                    route,
                )
            seen.setdefault(route.signature, route)
            all_routes.append(route)
    return sorted(all_routes, key=lambda r: r.order)


def seed_context(ctx: CmsContext, route: Route) -> None:
    ctx.module_route = route
    ctx.namespace = route.options.namespace
    if route.options.error_response_as_json:
        ctx.error_response_as_json = True
    if route.options.acl_resource:
        ctx.acl_resource = route.options.acl_resource


class DispatchChain:
    """Context seed, then policies in order, then the route handler."""

    def __init__(self, route: Route, policies: Sequence[tuple[str, Policy]]) -> None:
        self.route = route
        self.policies = tuple(policies)
        self.handler = route.action

    @property
    def policy_names(self) -> list[str]:
        return [name for name, _ in self.policies]

    def __call__(self, ctx: CmsContext, **view_args: Any) -> Any:
        seed_context(ctx, self.route)

        def run(index: int) -> Any:
            if index < len(self.policies):
                _, policy = self.policies[index]
                return policy(ctx, lambda: run(index + 1))
            return self.handler(ctx, **view_args)

        return run(0)


def build_chain(route: Route, registry: Registry, global_policies: Sequence[str] = ()) -> DispatchChain:
    if route.options.disable_global_policies:
        names = list(route.policies)
    else:
        names = list(global_policies) + list(route.policies)
    resolved: list[tuple[str, Policy]] = []
    for name in names:
        policy = registry.policy(name)
        if policy is None:
            logger.warning("Policy '%s' is not registered; dropped from route %s", name, route.signature)
            continue
        resolved.append((name, policy))
    return DispatchChain(route, resolved)


def to_flask_rule(path: str) -> str:
    return _PARAM_RE.sub(r"<\1>", path)


def register_routes(app: Flask, registry: Registry, renderer: Renderer) -> list[DispatchChain]:
    from app.cms.context import current_context

    global_policies = app.config.get("GLOBAL_POLICIES") or ()
    chains: list[DispatchChain] = []
    for index, route in enumerate(registry.routes):
        chain = build_chain(route, registry, global_policies)
        endpoint = f"cms_route_{index}"

        def view(_chain: DispatchChain = chain, **view_args: Any):
            ctx = current_context()
            rv = _chain(ctx, **view_args)
            if rv is None:
                return renderer.server_response(ctx)
            return rv

        view.__name__ = endpoint
        app.add_url_rule(to_flask_rule(route.path), endpoint=endpoint, view_func=view, methods=[route.method])
        chains.append(chain)
    return chains
