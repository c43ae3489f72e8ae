"""
Policy table: named pre-handler middleware.

A policy is ``policy(ctx, call_next)``; it either returns ``call_next()`` or
short-circuits (return a response, or raise/``abort``). Site policies are the
``*.py`` files of ``POLICIES_DIR``, each exposing a ``policy`` callable; the
file stem is the name. They may shadow the built-ins below.
"""
from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from pathlib import Path
from typing import Any

from flask import Request, abort, g, request, session

from app.cms.context import CmsContext
from app.cms.files import FileSystemProbe
from app.cms.modules import import_file, import_name
from app.cms.registry import current_registry
from app.cms.routing import Policy

logger = logging.getLogger(__name__)


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from form, header, or JSON body."""
    token = req.headers.get("X-CSRF-Token") or req.form.get("csrf_token")
    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        token = json_data.get("csrf_token")
    return bool(token and token == session.get("csrf_token"))


def csrf_policy(ctx: CmsContext, call_next: Callable[[], Any]) -> Any:
    ensure_csrf_token()
    if request.method in ("POST", "PUT", "PATCH", "DELETE") and not validate_csrf(request):
        abort(400, description="CSRF token missing or invalid.")
    return call_next()


def acl_policy(ctx: CmsContext, call_next: Callable[[], Any]) -> Any:
    resource = ctx.acl_resource
    if resource and not current_registry().acl.is_allowed(ctx.user, resource):
        g.missing_acl_resource = resource
        logger.warning("Forbidden: acl_resource=%s path=%s", resource, request.path)
        abort(403)
    return call_next()


BUILTIN_POLICIES: dict[str, Policy] = {
    "acl": acl_policy,
    "csrf": csrf_policy,
}


def load_policies(policies_dir: str | Path, probe: FileSystemProbe | None = None) -> dict[str, Policy]:
    probe = probe or FileSystemProbe()
    table: dict[str, Policy] = dict(BUILTIN_POLICIES)
    dir_path = Path(policies_dir)
    for file_name in probe.get_all_file_names(dir_path) or []:
        if not file_name.endswith(".py") or file_name.startswith("_"):
            continue
        name = file_name[:-3]
        file_path = dir_path / file_name
        try:
            mod = import_file(file_path, import_name(file_path, "policy", name))
            fn = getattr(mod, "policy", None)
            if not callable(fn):
                raise TypeError(f"policy file '{file_name}' does not define a callable 'policy'")
        except Exception:
            logger.exception("Error loading policy '%s'", name)
            continue
        table[name] = fn
    return table
