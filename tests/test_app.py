import logging
import sys
from pathlib import Path

import pytest

from app.cms import create_app
from app.cms.errors import RegistryFrozen, RouteActionError

PAGES_CONFIG = """
    from pathlib import Path

    enabled = True
    installed = True

    class TeapotError(Exception):
        status = 418

    def teapot(ctx):
        raise TeapotError("short and stout")

    def explode(ctx):
        raise RuntimeError("kaboom")

    routes = [
        {"method": "GET", "path": "/", "action": "pages.index"},
        {"method": "GET", "path": "/hello/:name", "action": "pages.hello"},
        {"method": "GET", "path": "/fail", "action": explode},
        {"method": "GET", "path": "/api/fail", "action": explode, "options": {"error_response_as_json": True}},
        {"method": "GET", "path": "/teapot", "action": teapot},
        {"method": "GET", "path": "/admin", "action": "pages.admin", "policies": ["acl"],
         "options": {"acl_resource": "pages.admin"}},
        {"method": "GET", "path": "/open", "action": "pages.hello_world", "policies": ["stamp"],
         "options": {"disable_global_policies": True}},
    ]
    acl = {"resources": ["pages.admin"]}

    def after_modules_setup(modules, acl_resources):
        Path("hook.txt").write_text(",".join(sorted(modules)) + "|" + ",".join(acl_resources))

    def before_template_render(ctx, tpl, params):
        return {"footer": "rendered by hook"}
"""

PAGES_CONTROLLER = """
    def index(ctx):
        ctx.view["title"] = "Welcome"

    def hello(ctx, name):
        return f"Hello {name}"

    def hello_world(ctx):
        return "open:" + ",".join(ctx.view.get("stamps", []))

    def admin(ctx):
        ctx.view["_view"] = "admin_panel"
        ctx.view["title"] = "Admin"
"""

VIEWS = {
    "index.html": "<h1>{{ title }}</h1><p>{{ helpers.translate('Hello') }}</p><a href=\"{{ helpers.href('/about') }}\">about</a>{{ footer }}",
    "admin_panel.html": "<h2>{{ title }} panel</h2>",
}

STAMP_POLICY = """
    def policy(ctx, call_next):
        ctx.view.setdefault("stamps", []).append("stamp")
        return call_next()
"""


@pytest.fixture()
def full_site(site):
    site.module("pages", PAGES_CONFIG, controllers={"pages_controller.py": PAGES_CONTROLLER}, views=VIEWS)
    site.policy("stamp", STAMP_POLICY)
    site.default_theme()
    site.locale("en-gb", {"Hello": "Hello translated"})
    return site


def test_page_renders_through_layout_with_translations(full_site):
    client = create_app(full_site.config()).test_client()
    r = client.get("/")
    assert r.status_code == 200
    body = r.get_data(as_text=True)
    assert body.startswith("<main><h1>Welcome</h1>")
    assert "Hello translated" in body
    assert 'href="/en/about"' in body
    assert "rendered by hook" in body
    assert r.headers["Content-Language"] == "en-gb"


def test_handler_return_value_is_the_response(full_site):
    client = create_app(full_site.config()).test_client()
    r = client.get("/hello/bob")
    assert r.status_code == 200
    assert r.get_data(as_text=True) == "Hello bob"


def test_unknown_path_renders_status_error_page(full_site):
    client = create_app(full_site.config()).test_client()
    r = client.get("/does-not-exist")
    assert r.status_code == 404
    assert r.get_data(as_text=True) == "<div class='error'>Not here</div>"


def test_handler_error_renders_generic_error_page(full_site, caplog):
    client = create_app(full_site.config()).test_client()
    with caplog.at_level(logging.ERROR):
        r = client.get("/fail")
    assert r.status_code == 500
    assert "Something failed: kaboom" in r.get_data(as_text=True)
    assert "kaboom" in caplog.text


def test_json_error_response_when_route_opts_in(full_site):
    client = create_app(full_site.config()).test_client()
    r = client.get("/api/fail")
    assert r.status_code == 500
    assert r.json == {"error": "RuntimeError", "message": "kaboom"}


def test_error_status_attribute_is_used(full_site):
    client = create_app(full_site.config()).test_client()
    r = client.get("/teapot")
    assert r.status_code == 418
    assert "short and stout" in r.get_data(as_text=True)


def test_silent_errors_are_not_logged(full_site, caplog):
    client = create_app(full_site.config(SILENT_ERRORS=["RuntimeError"])).test_client()
    with caplog.at_level(logging.ERROR):
        r = client.get("/fail")
    assert r.status_code == 500
    assert "kaboom" not in caplog.text


def test_error_page_never_raises(site):
    site.module("pages", PAGES_CONFIG, controllers={"pages_controller.py": PAGES_CONTROLLER}, views=VIEWS)
    site.theme_file("errors/error.html", "{% if %}")
    client = create_app(site.config()).test_client()
    r = client.get("/fail")
    assert r.status_code == 500
    assert r.get_data(as_text=True) == "Error"


def test_error_without_theme_returns_literal(site):
    site.module("pages", PAGES_CONFIG, controllers={"pages_controller.py": PAGES_CONTROLLER}, views=VIEWS)
    client = create_app(site.config()).test_client()
    r = client.get("/nope")
    assert r.status_code == 404
    assert r.get_data(as_text=True) == "Error"


def test_missing_layout_is_a_server_error(site):
    site.module("pages", PAGES_CONFIG, controllers={"pages_controller.py": PAGES_CONTROLLER}, views=VIEWS)
    client = create_app(site.config()).test_client()
    r = client.get("/")
    assert r.status_code == 500


def test_acl_default_predicate_denies(full_site):
    client = create_app(full_site.config()).test_client()
    r = client.get("/admin")
    assert r.status_code == 403


def test_injected_authorizer_allows(full_site):
    seen = []

    def authorizer(subject, resource):
        seen.append(resource)
        return True

    client = create_app(full_site.config(), authorizer=authorizer).test_client()
    r = client.get("/admin")
    assert r.status_code == 200
    assert "<h2>Admin panel</h2>" in r.get_data(as_text=True)
    assert seen == ["pages.admin"]


def test_global_policies_applied_unless_disabled(full_site):
    full_site.module("extra", """
        enabled = True
        installed = True

        def stamped(ctx):
            return "stamps:" + ",".join(ctx.view.get("stamps", []))

        routes = [{"method": "GET", "path": "/stamped", "action": stamped, "policies": ["stamp"]}]
    """)
    client = create_app(full_site.config(GLOBAL_POLICIES=["stamp", "not-a-policy"])).test_client()
    assert client.get("/stamped").get_data(as_text=True) == "stamps:stamp,stamp"
    assert client.get("/open").get_data(as_text=True) == "open:stamp"


def test_after_modules_setup_hook_receives_modules_and_resources(full_site):
    create_app(full_site.config())
    assert Path("hook.txt").read_text() == "pages|pages.admin"


def test_broken_sibling_module_does_not_block_routing(full_site):
    full_site.module("broken", """
        enabled = True
        installed = True
        raise RuntimeError("cannot load")
    """)
    client = create_app(full_site.config()).test_client()
    assert client.get("/hello/ann").get_data(as_text=True) == "Hello ann"


def test_unresolvable_route_action_aborts_startup(site):
    site.module("bad", """
        enabled = True
        installed = True
        routes = [{"method": "GET", "path": "/", "action": "nothing.here"}]
    """)
    with pytest.raises(RouteActionError):
        create_app(site.config())


def test_registry_is_frozen_after_startup(full_site):
    app = create_app(full_site.config())
    registry = app.extensions["cms_registry"]
    assert "pages" in registry.modules
    with pytest.raises(RegistryFrozen):
        registry.add_policy("late", lambda ctx, call_next: call_next())
    with pytest.raises(TypeError):
        registry.modules["other"] = None


def test_production_requires_secret_key(full_site):
    with pytest.raises(RuntimeError):
        create_app(full_site.config(ENV="production", SECRET_KEY="change-me"))


def test_debug_logs_request_timing(full_site, caplog):
    client = create_app(full_site.config(DEBUG=True)).test_client()
    with caplog.at_level(logging.INFO):
        client.get("/hello/tim")
    assert "GET /hello/tim - " in caplog.text


def test_compose_email_template(full_site):
    full_site.theme_file("emails/welcome.html", "Welcome {{ name }} ({{ locale }})")
    app = create_app(full_site.config())
    renderer = app.extensions["cms_renderer"]
    with app.test_request_context("/"):
        from app.cms.context import current_context

        ctx = current_context()
        app.extensions["cms_locales"].set_default_language_params(ctx)
        assert renderer.compose_email_template(ctx, "welcome", {"name": "Ada"}) == "Welcome Ada (en-gb)"
        assert renderer.compose_email_template(ctx, None) is None


def test_template_params_include_client_config(full_site):
    app = create_app(full_site.config(CLIENT={"meta_title": "Site", "theme_color": "red"}))
    renderer = app.extensions["cms_renderer"]
    with app.test_request_context("/"):
        from app.cms.context import current_context

        ctx = current_context()
        app.extensions["cms_locales"].set_default_language_params(ctx)
        ctx.client_config["navigation"] = ["home"]
        params = renderer.get_template_params(ctx, {"title": "T"})
    assert params["meta_title"] == "Site"
    assert params["title"] == "T"
    assert params["locale"] == "en-gb"
    assert params["csrf_token"]
    assert params["_client_config"]["theme_color"] == "red"
    assert params["_client_config"]["navigation"] == ["home"]
    assert params["_client_config"]["translations"] == {"Hello": "Hello translated"}
    assert params["helpers"].href("/x") == "/en/x"


def test_flask_converter_routes_are_served(site):
    site.module("files", """
        enabled = True
        installed = True

        def download(ctx, p):
            return "file:" + p

        def show(ctx, item_id, slug):
            return f"{item_id + 1}:{slug}"

        routes = [
            {"method": "GET", "path": "/files/<path:p>", "action": download},
            {"method": "GET", "path": "/items/<int:item_id>/:slug", "action": show},
        ]
    """)
    client = create_app(site.config()).test_client()
    assert client.get("/files/a/b.txt").get_data(as_text=True) == "file:a/b.txt"
    assert client.get("/items/41/answer").get_data(as_text=True) == "42:answer"


def test_themed_error_page_falls_back_to_default_theme(full_site):
    full_site.module("dark", """
        enabled = True
        installed = True

        def missing(ctx):
            ctx.view["_theme"] = "dark"
            raise LookupError("gone")

        routes = [{"method": "GET", "path": "/dark-missing", "action": missing}]
    """)
    client = create_app(full_site.config()).test_client()
    r = client.get("/dark-missing")
    assert r.status_code == 500
    assert r.get_data(as_text=True) == "<div class='error'>Something failed: gone</div>"


def test_rebuilding_the_app_reuses_module_import_names(full_site):
    create_app(full_site.config())
    before = {name for name in sys.modules if name.startswith("_cms_")}
    create_app(full_site.config())
    after = {name for name in sys.modules if name.startswith("_cms_")}
    assert before == after
    assert any(name.startswith("_cms_pages_config_") for name in after)
    assert any(name.startswith("_cms_policy_stamp_") for name in after)
