from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from app.cms.config import is_production

logger = logging.getLogger(__name__)


def translate_text(
    text: str,
    translations: Mapping[str, str] | None = None,
    variables: Mapping[str, Any] | None = None,
    *,
    environment: str | None = None,
    missing: dict[str, str] | None = None,
) -> str:
    """Look ``text`` up in ``translations`` and fill ``{name}`` placeholders from ``variables``."""
    translation = text
    if text and translations and translations.get(text):
        translation = translations[text]
    elif not is_production(environment):
        if missing is not None:
            missing.setdefault(translation, translation)
        logger.warning("Missing translation '%s'", translation)
    if variables:
        for key, value in variables.items():
            translation = translation.replace(f"{{{key}}}", str(value))
    return translation


class TemplateHelpers:
    """The ``helpers`` object handed to templates."""

    def __init__(
        self,
        data: Mapping[str, Any],
        *,
        environment: str | None = None,
        missing: dict[str, str] | None = None,
        authorizer: Callable[[Any, str], Any] | None = None,
        subject: Any = None,
    ) -> None:
        self._data = data
        self._environment = environment
        self._missing = missing if missing is not None else {}
        self._authorizer = authorizer
        self._subject = subject

    def link_prefix(self, exclude: Iterable[str] = ()) -> str:
        language = self._data.get("language")
        if language and language not in set(exclude):
            return f"/{language}"
        return ""

    def href(self, href: str, exclude: Iterable[str] = ()) -> str:
        prefix = ""
        if href and href.startswith("/"):
            prefix = self.link_prefix(exclude)
        return f"{prefix}{href}"

    def translate(self, text: str, variables: Mapping[str, Any] | None = None) -> str:
        return translate_text(
            text,
            self._data.get("translations"),
            variables,
            environment=self._environment,
            missing=self._missing,
        )

    def is_allowed(self, resource: str, subject: Any = None) -> bool:
        if self._authorizer is None:
            return False
        return bool(self._authorizer(subject if subject is not None else self._subject, resource))
