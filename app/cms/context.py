from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from flask import g

from app.cms.i18n import LanguageParams

if TYPE_CHECKING:
    from app.cms.routing import Route


@dataclass
class CmsContext:
    """Per-request state shared by policies, handlers, the renderer and the error boundary."""

    module_route: Route | None = None
    error_response_as_json: bool = False
    acl_resource: str | None = None
    namespace: str = "client"
    user: Any = None
    status: int = 200
    # "_view", "_layout" and "_theme" select templates; every other key is a render param.
    view: dict[str, Any] = field(default_factory=dict)
    flash_messages: list[Any] = field(default_factory=list)
    client_config: dict[str, Any] = field(default_factory=dict)
    i18n: dict[str, LanguageParams] = field(default_factory=dict)

    def language_params(self, namespace: str | None = None) -> LanguageParams:
        return self.i18n.get(namespace or self.namespace) or LanguageParams()

    @property
    def language(self) -> str | None:
        return self.language_params().language

    @property
    def locale(self) -> str | None:
        return self.language_params().locale

    @property
    def translations(self) -> dict[str, str]:
        return dict(self.language_params().translations)


def current_context() -> CmsContext:
    ctx = getattr(g, "cms", None)
    if ctx is None:
        ctx = CmsContext()
        g.cms = ctx
    return ctx
