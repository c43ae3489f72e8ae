import logging

from app.cms import create_app
from app.cms.policies import BUILTIN_POLICIES, load_policies

FORMS_MODULE = """
    enabled = True
    installed = True

    def submit(ctx):
        return "saved"

    routes = [
        {"method": "POST", "path": "/submit", "action": submit, "policies": ["csrf"]},
        {"method": "GET", "path": "/form", "action": submit, "policies": ["csrf"]},
    ]
"""


def test_load_policies_overlays_site_files_on_builtins(site, caplog):
    site.policy("audit", "def policy(ctx, call_next):\n    return call_next()\n")
    site.policy("noop", "value = 1\n")
    site.policy("broken", "raise RuntimeError('nope')\n")
    site.policy("_private", "def policy(ctx, call_next):\n    return call_next()\n")
    with caplog.at_level(logging.ERROR):
        table = load_policies(site.root / "policies")
    assert set(table) == set(BUILTIN_POLICIES) | {"audit"}
    assert "Error loading policy 'noop'" in caplog.text
    assert "Error loading policy 'broken'" in caplog.text


def test_missing_policies_dir_gives_builtins():
    assert load_policies("/nonexistent/policies") == BUILTIN_POLICIES


def test_csrf_policy_rejects_unsafe_request_without_token(site):
    site.module("forms", FORMS_MODULE)
    client = create_app(site.config()).test_client()
    assert client.get("/form").get_data(as_text=True) == "saved"
    r = client.post("/submit")
    assert r.status_code == 400


def test_csrf_policy_accepts_session_token(site):
    site.module("forms", FORMS_MODULE)
    client = create_app(site.config()).test_client()
    with client.session_transaction() as sess:
        sess["csrf_token"] = "tok"
    r = client.post("/submit", headers={"X-CSRF-Token": "tok"})
    assert r.status_code == 200
    assert r.get_data(as_text=True) == "saved"
    r = client.post("/submit", data={"csrf_token": "wrong"})
    assert r.status_code == 400
