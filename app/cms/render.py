from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from flask import Response, has_request_context, make_response
from markupsafe import Markup

from app.cms.helpers import TemplateHelpers

if TYPE_CHECKING:
    from flask import Flask

    from app.cms.context import CmsContext
    from app.cms.registry import Registry
    from app.cms.views import TemplateResolver

logger = logging.getLogger(__name__)


class Renderer:
    """Builds render params and turns resolved templates into responses."""

    def __init__(self, app: Flask, registry: Registry, resolver: TemplateResolver) -> None:
        self.config = app.config
        self.jinja_env = app.jinja_env
        self.registry = registry
        self.resolver = resolver
        self.missing_translations: dict[str, str] = {}

    def get_client_config(self, ctx: CmsContext) -> dict[str, Any]:
        out: dict[str, Any] = dict(self.config.get("CLIENT") or {})
        out.update(
            {
                "env": self.config.get("ENV"),
                "debug": self.config.get("DEBUG"),
                "locale": ctx.locale,
                "language": ctx.language,
                "translations": ctx.translations,
                "navigation": [],
                "user_navigation": [],
            }
        )
        out.update(ctx.client_config)
        return out

    def get_template_params(self, ctx: CmsContext, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        from app.cms.policies import ensure_csrf_token

        client_config = self.get_client_config(ctx)
        view_params: dict[str, Any] = {
            "_client_config": client_config,
            "_client_config_json": json.dumps(client_config, default=str),
            "_version": self.config.get("CMS_VERSION"),
            "_env": self.config.get("ENV"),
            "_debug": self.config.get("DEBUG"),
            "meta_title": (self.config.get("CLIENT") or {}).get("meta_title"),
            "language": ctx.language,
            "locale": ctx.locale,
            "translations": ctx.translations,
            "flash_messages": ctx.flash_messages,
        }
        if has_request_context():
            view_params["csrf_token"] = ensure_csrf_token()
        if params:
            view_params.update(params)
        view_params["helpers"] = TemplateHelpers(
            view_params,
            environment=self.config.get("ENV"),
            missing=self.missing_translations,
            authorizer=self.registry.acl.is_allowed,
            subject=ctx.user,
        )
        return view_params

    def render_string(self, tpl: str, params: Mapping[str, Any]) -> str:
        return self.jinja_env.from_string(tpl).render(params)

    def compose_template(self, ctx: CmsContext, tpl: str, params: Mapping[str, Any] | None = None) -> str:
        return self.render_string(tpl, self.get_template_params(ctx, params))

    def compose_response(
        self,
        ctx: CmsContext,
        layout_tpl: str | None,
        page_tpl: str,
        params: Mapping[str, Any] | None = None,
    ) -> Response:
        tpl_params = self.get_template_params(ctx, params)
        for hook in self.registry.before_template_render:
            extra = hook(ctx, page_tpl, tpl_params)
            if isinstance(extra, Mapping):
                tpl_params.update(extra)
        body = self.render_string(page_tpl, tpl_params)
        if layout_tpl is None:
            html = body
        else:
            tpl_params["_body"] = Markup(body)
            html = self.render_string(layout_tpl, tpl_params)
        resp = make_response(html, ctx.status)
        if tpl_params.get("locale"):
            resp.headers["Content-Language"] = tpl_params["locale"]
        return resp

    def server_response(self, ctx: CmsContext) -> Response:
        theme = ctx.view.get("_theme")
        page = self.resolver.read_page(ctx.module_route, ctx.view.get("_view"))
        layout = self.resolver.read_layout(ctx.view.get("_layout"), theme, ctx.namespace)
        return self.compose_response(ctx, layout, page, ctx.view)

    def error_response(self, err: BaseException, ctx: CmsContext, status: int) -> Response:
        """Render the error page. Never raises: any failure degrades to a plain "Error" body."""
        ctx.status = status
        try:
            theme = ctx.view.get("_theme")
            page = self.resolver.read_error_page(status, theme, ctx.namespace)
            layout = self.resolver.read_error_layout(theme, ctx.namespace)
            return self.compose_response(ctx, layout, page, {"error": error_message(err), "status": status})
        except Exception:
            logger.exception("Error page rendering failed")
            return make_response("Error", status)

    def compose_email_template(
        self,
        ctx: CmsContext,
        tpl_name: str | None,
        tpl_values: Mapping[str, Any] | None = None,
    ) -> str | None:
        if not tpl_name:
            return None
        tpl = self.resolver.read_email_template(tpl_name, ctx.view.get("_theme"))
        if tpl_values:
            tpl = self.compose_template(ctx, tpl, tpl_values)
        return tpl


def error_message(err: BaseException) -> str:
    description = getattr(err, "description", None)
    if description:
        return str(description)
    return str(err) or type(err).__name__
