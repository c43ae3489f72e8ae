"""
Template path resolution.

Theme templates live under ``<root>/<THEMES_DIR>/<theme>/<TEMPLATES_DIR>``;
namespaces other than ``client`` get their own sub-directory (``admin/...``).
Page views live in the module that declares the route. Paths are recomputed
on every call so templates can be edited without a restart.
"""
from __future__ import annotations

import functools
import inspect
import logging
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any

from app.cms.errors import TemplateNotFound
from app.cms.files import FileSystemProbe

if TYPE_CHECKING:
    from app.cms.routing import Route

logger = logging.getLogger(__name__)

ERROR_FALLBACK = "Error"
# A template with bad bytes counts as unreadable, like a missing one.
READ_ERRORS = (OSError, UnicodeDecodeError)


def handler_view_name(action: Callable[..., Any] | None) -> str | None:
    fn: Any = action
    while isinstance(fn, functools.partial):
        fn = fn.func
    if fn is None:
        return None
    fn = getattr(fn, "__func__", fn)
    try:
        fn = inspect.unwrap(fn)
    except ValueError:
        pass
    name = getattr(fn, "__name__", None)
    if not name or name == "<lambda>":
        return None
    return name


def _unique(*items: Any) -> list[Any]:
    out: list[Any] = []
    for item in items:
        if item and item not in out:
            out.append(item)
    return out


class TemplateResolver:
    def __init__(self, config: Mapping[str, Any], probe: FileSystemProbe | None = None) -> None:
        self.config = config
        self.probe = probe or FileSystemProbe()
        self.root = Path(config["CMS_ROOT"])
        self.extension = config["VIEW_EXTENSION"]
        self.default_theme = config["DEFAULT_THEME"]
        self._cache: dict[Path, tuple[float, str]] | None = {} if config.get("TEMPLATE_CACHE") else None

    def with_extension(self, name: str) -> str:
        if "." not in name.rsplit("/", 1)[-1]:
            return f"{name}.{self.extension}"
        return name

    def resolve_template_path(self, logical_name: str, theme: str | None = None, namespace: str | None = None) -> Path:
        base = self.root / self.config["THEMES_DIR"] / (theme or self.default_theme) / self.config["TEMPLATES_DIR"]
        if namespace and namespace != "client":
            base = base / namespace
        return base / self.with_extension(logical_name)

    def read(self, path: Path) -> str:
        if self._cache is None:
            return self.probe.read_file(path)
        mtime = self.probe.get_mtime(path)
        hit = self._cache.get(path)
        if hit is not None and hit[0] == mtime:
            return hit[1]
        text = self.probe.read_file(path)
        self._cache[path] = (mtime, text)
        return text

    def get_page_view_path(self, route: Route | None, view_name: str | None = None) -> Path | None:
        if route is None or not route.module_path:
            return None
        views_dir = Path(route.module_path) / self.config["MODULE_VIEWS_DIR"]
        default_path = views_dir / self.with_extension(self.config["MODULE_DEFAULT_VIEW"])
        view = view_name or handler_view_name(route.action)
        if not view:
            return default_path
        page_path = views_dir / self.with_extension(view)
        if not self.probe.file_exists(page_path):
            return default_path
        return page_path

    def _themes(self, theme: str | None) -> list[str]:
        return _unique(theme or self.default_theme, self.default_theme)

    def _read_first(self, paths: list[Path]) -> str | None:
        for path in paths:
            try:
                return self.read(path)
            except READ_ERRORS as e:
                logger.debug("Template %s could not be read: %s", path, e)
        return None

    def read_page(self, route: Route | None, view_name: str | None = None) -> str:
        page_path = self.get_page_view_path(route, view_name)
        if page_path is None:
            raise TemplateNotFound(view_name or "view")
        try:
            return self.read(page_path)
        except READ_ERRORS as e:
            logger.error("View not found: %s", e)
            raise TemplateNotFound(str(page_path), [str(page_path)]) from e

    def read_layout(self, layout_name: str | None = None, theme: str | None = None, namespace: str | None = None) -> str:
        layouts_dir = self.config["LAYOUTS_DIR"]
        default_layout = self.config["DEFAULT_LAYOUT"]
        tried = [
            self.resolve_template_path(f"{layouts_dir}/{name}", t, namespace)
            for t in self._themes(theme)
            for name in _unique(layout_name or default_layout, default_layout)
        ]
        tpl = self._read_first(tried)
        if tpl is None:
            logger.error("Layout not found; tried %s", ", ".join(map(str, tried)))
            raise TemplateNotFound(layout_name or default_layout, [str(p) for p in tried])
        return tpl

    def read_error_page(self, status: int | None, theme: str | None = None, namespace: str | None = None) -> str:
        """Status page, then the generic error view, per theme (requested, then default); else ``"Error"``."""
        errors_dir = self.config["ERRORS_DIR"]
        names = _unique(str(status) if status else None, self.config["DEFAULT_ERROR_VIEW"])
        candidates: list[Path] = []
        for t in self._themes(theme):
            for name in names:
                path = self.resolve_template_path(f"{errors_dir}/{name}", t, namespace)
                if self.probe.file_exists(path):
                    candidates.append(path)
        tpl = self._read_first(candidates)
        if tpl is None:
            logger.error("No readable error page for status %s", status)
            return ERROR_FALLBACK
        return tpl

    def read_error_layout(self, theme: str | None = None, namespace: str | None = None) -> str | None:
        layout = f"{self.config['LAYOUTS_DIR']}/{self.config['DEFAULT_ERROR_LAYOUT']}"
        tpl = self._read_first([self.resolve_template_path(layout, t, namespace) for t in self._themes(theme)])
        if tpl is None:
            logger.error("Error layout could not be read")
        return tpl

    def read_email_template(self, name: str, theme: str | None = None) -> str:
        tried = [self.resolve_template_path(f"{self.config['EMAILS_DIR']}/{name}", t) for t in self._themes(theme)]
        tpl = self._read_first(tried)
        if tpl is None:
            logger.error("Email template '%s' could not be read", name)
            raise TemplateNotFound(name, [str(p) for p in tried])
        return tpl
