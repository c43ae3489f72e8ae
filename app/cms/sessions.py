"""
Session store contract and a Flask session interface backed by a store.

``SESSION_STORE`` is ``"cookie"`` (Flask's signed cookie session), an import
string or class (instantiated with ``SESSION_OPTIONS``), or a store instance.
Stores must implement ``get(key)``, ``set(key, value, max_age, options)`` and
``destroy(key)``.
"""
from __future__ import annotations

import secrets
import time
from collections.abc import Mapping
from typing import Any

from flask import Flask, Request, Response
from flask.sessions import SecureCookieSessionInterface, SessionInterface, SessionMixin
from itsdangerous import BadSignature
from werkzeug.datastructures import CallbackDict
from werkzeug.utils import import_string

from app.cms.errors import AdapterContractError

STORE_METHODS = {
    "get": "get(key)",
    "set": "set(key, value, max_age, options)",
    "destroy": "destroy(key)",
}


def validate_store(store: Any) -> None:
    for method, sample in STORE_METHODS.items():
        if not callable(getattr(store, method, None)):
            raise AdapterContractError(f"Session store must implement {sample} method")


def resolve_session_store(setting: Any, options: Mapping[str, Any] | None = None) -> Any | None:
    if setting is None or setting in ("", "cookie"):
        return None
    if isinstance(setting, str):
        setting = import_string(setting)
    store = setting(dict(options or {})) if isinstance(setting, type) else setting
    validate_store(store)
    return store


class MemorySessionStore:
    """Process-local store for development and tests."""

    def __init__(self, options: Mapping[str, Any] | None = None) -> None:
        self.options = dict(options or {})
        self._data: dict[str, tuple[float | None, dict[str, Any]]] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        hit = self._data.get(key)
        if hit is None:
            return None
        expires_at, value = hit
        if expires_at is not None and expires_at < time.time():
            self._data.pop(key, None)
            return None
        return dict(value)

    def set(self, key: str, value: Mapping[str, Any], max_age: int | None, options: Mapping[str, Any] | None = None) -> None:
        now = time.time()
        self.purge_expired(now)
        expires_at = now + max_age if max_age else None
        self._data[key] = (expires_at, dict(value))

    def purge_expired(self, now: float | None = None) -> int:
        now = time.time() if now is None else now
        expired = [k for k, (expires_at, _) in self._data.items() if expires_at is not None and expires_at < now]
        for k in expired:
            del self._data[k]
        return len(expired)

    def destroy(self, key: str) -> None:
        self._data.pop(key, None)


class StoreSession(CallbackDict, SessionMixin):
    def __init__(self, initial: Mapping[str, Any] | None = None, sid: str | None = None, new: bool = False) -> None:
        def on_update(self_: StoreSession) -> None:
            self_.modified = True

        super().__init__(initial, on_update)
        self.sid = sid or secrets.token_urlsafe(32)
        self.new = new
        self.modified = False


class StoreSessionInterface(SessionInterface):
    """Keeps session data in a store; the cookie only carries the signed session id."""

    _cookie_interface = SecureCookieSessionInterface()

    def __init__(self, store: Any, options: Mapping[str, Any] | None = None) -> None:
        validate_store(store)
        self.store = store
        self.options = dict(options or {})

    def _signer(self, app: Flask):
        return self._cookie_interface.get_signing_serializer(app)

    def open_session(self, app: Flask, request: Request) -> StoreSession | None:
        signer = self._signer(app)
        if signer is None:
            return None
        raw = request.cookies.get(self.get_cookie_name(app))
        if raw:
            try:
                sid = signer.loads(raw)
            except BadSignature:
                sid = None
            if sid:
                data = self.store.get(sid)
                if data is not None:
                    return StoreSession(data, sid=sid)
        return StoreSession(new=True)

    def save_session(self, app: Flask, session: StoreSession, response: Response) -> None:  # type: ignore[override]
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        if not session:
            if session.modified:
                self.store.destroy(session.sid)
                response.delete_cookie(name, domain=domain, path=path)
            return
        if not self.should_set_cookie(app, session):
            return
        max_age = int(app.permanent_session_lifetime.total_seconds())
        self.store.set(session.sid, dict(session), max_age, self.options)
        response.set_cookie(
            name,
            self._signer(app).dumps(session.sid),
            expires=self.get_expiration_time(app, session),
            httponly=self.get_cookie_httponly(app),
            domain=domain,
            path=path,
            secure=self.get_cookie_secure(app),
            samesite=self.get_cookie_samesite(app),
        )
