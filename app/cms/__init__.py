import logging
import time
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.cms.acl import ACLRegistry, Authorizer
from app.cms.config import is_production, load_config
from app.cms.context import CmsContext, current_context
from app.cms.db import setup_db
from app.cms.files import FileSystemProbe
from app.cms.i18n import LocaleStore
from app.cms.modules import ModuleLoader
from app.cms.policies import load_policies
from app.cms.registry import Registry
from app.cms.render import Renderer, error_message
from app.cms.routing import compose_routes, register_routes
from app.cms.sessions import StoreSessionInterface, resolve_session_store
from app.cms.views import TemplateResolver


def _error_status(err: BaseException) -> int:
    if isinstance(err, HTTPException) and err.code:
        return err.code
    status = getattr(err, "status", None) or getattr(err, "status_code", None)
    if isinstance(status, int) and 400 <= status < 600:
        return status
    return 500


def _setup_error_boundary(app: Flask, renderer: Renderer) -> None:
    silent_errors = set(app.config.get("SILENT_ERRORS") or ())

    @app.errorhandler(Exception)
    def _error_boundary(err: Exception):  # type: ignore[no-redef]
        ctx = current_context()
        status = _error_status(err)
        if type(err).__name__ not in silent_errors:
            if status >= 500:
                app.logger.error("Server error: %s", err, exc_info=err)
            else:
                app.logger.warning("Request error %s on %s %s: %s", status, request.method, request.path, err)
            # Full context only at debug verbosity.
            app.logger.debug("Request context: %r", ctx)
        if ctx.error_response_as_json:
            return jsonify({"error": type(err).__name__, "message": error_message(err)}), status
        return renderer.error_response(err, ctx, status)


def _setup_request_context(app: Flask, locales: LocaleStore) -> None:
    @app.before_request
    def _seed_cms_context():
        ctx = CmsContext()
        locales.set_default_language_params(ctx)
        g.cms = ctx
        g.cms_started = time.perf_counter()

    if app.config.get("DEBUG"):
        @app.after_request
        def _log_request_time(response):
            started = getattr(g, "cms_started", None)
            if started is not None:
                ms = (time.perf_counter() - started) * 1000
                app.logger.info("%s %s - %d ms", request.method, request.full_path.rstrip("?"), ms)
            return response


def create_app(config: Mapping[str, Any] | None = None, *, authorizer: Authorizer | None = None) -> Flask:
    """
    Build the CMS application.

    The order below matters: locales and DB adapters first, then policies,
    modules (which register ACL resources), routes, and finally the
    after-modules-setup hooks once the registry is frozen.
    """
    load_dotenv()
    settings = load_config()
    if config:
        settings.update(config)
    root = Path(settings["CMS_ROOT"])

    app = Flask(
        __name__,
        static_folder=str(root / settings["PUBLIC_DIR"]),
        static_url_path=settings.get("STATIC_URL_PATH", "/static"),
    )
    app.config.from_mapping(settings)

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if is_production(env):
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    probe = FileSystemProbe(app.config.get("DOUBLE_FILE_EXTENSIONS") or ())
    registry = Registry(acl=ACLRegistry(authorizer))
    locales = LocaleStore(app.config["I18N"], probe)
    resolver = TemplateResolver(app.config, probe)
    renderer = Renderer(app, registry, resolver)
    app.extensions["cms_registry"] = registry
    app.extensions["cms_locales"] = locales
    app.extensions["cms_resolver"] = resolver
    app.extensions["cms_renderer"] = renderer

    _setup_error_boundary(app, renderer)

    locales.load_translations(root / app.config["LOCALES_DIR"], "client")
    if "admin" in app.config["I18N"]:
        locales.load_translations(root / app.config["ADMIN_LOCALES_DIR"], "admin")

    for name, adapter in setup_db(app.config.get("DB_CONNECTIONS") or {}).items():
        registry.add_db_connection(name, adapter)

    _setup_request_context(app, locales)

    store = resolve_session_store(app.config.get("SESSION_STORE"), app.config.get("SESSION_OPTIONS"))
    if store is not None:
        app.session_interface = StoreSessionInterface(store, app.config.get("SESSION_OPTIONS"))

    for name, policy in load_policies(root / app.config["POLICIES_DIR"], probe).items():
        registry.add_policy(name, policy)

    ModuleLoader(app.config, registry, probe).load_all()
    registry.set_routes(compose_routes(registry.modules, environment=env, log=app.logger))
    register_routes(app, registry, renderer)
    registry.freeze()

    for hook in registry.after_modules_setup:
        hook(registry.modules, registry.acl.resources)

    logging.getLogger(__name__).info(
        "create_app() complete; %d modules, %d routes; app ready to serve",
        len(registry.modules),
        len(registry.routes),
    )
    return app
