"""
Translation files and per-request language resolution.

Each namespace (``client``, ``admin``) has its own directory of JSON files,
one per locale (``en-gb.json``), and its own defaults in ``I18N``:

    {"default_language": "en", "default_locale": "en-gb",
     "locales_mapping": {"en": "en-gb", "it": "it-it"}}
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

from app.cms.files import FileSystemProbe

if TYPE_CHECKING:
    from app.cms.context import CmsContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LanguageParams:
    language: str | None = None
    locale: str | None = None
    translations: Mapping[str, str] = field(default_factory=dict)


class LocaleStore:
    def __init__(self, i18n_config: Mapping[str, Mapping[str, Any]], probe: FileSystemProbe | None = None) -> None:
        self.i18n_config = i18n_config
        self.probe = probe or FileSystemProbe()
        self.locales: dict[str, dict[str, dict[str, str]]] = {ns: {} for ns in i18n_config}

    def namespace_settings(self, namespace: str) -> Mapping[str, Any]:
        try:
            return self.i18n_config[namespace]
        except KeyError:
            raise ValueError(f"Unknown i18n namespace '{namespace}'") from None

    def load_translations(self, dir_path: str | Path, namespace: str = "client") -> list[str]:
        self.namespace_settings(namespace)
        bucket = self.locales.setdefault(namespace, {})
        loaded: list[str] = []
        for file_name in self.probe.get_all_file_names(dir_path) or []:
            if not file_name.endswith(".json"):
                continue
            locale = file_name[: -len(".json")]
            try:
                data = json.loads(self.probe.read_file(Path(dir_path) / file_name))
                if not isinstance(data, dict):
                    raise ValueError("translation file must contain a JSON object")
            except (OSError, ValueError) as e:
                logger.error("Failed to load %s translations '%s': %s", namespace, file_name, e)
                continue
            bucket[locale] = {str(k): str(v) for k, v in data.items()}
            loaded.append(locale)
        return loaded

    def translations_for(self, namespace: str, locale: str | None) -> dict[str, str]:
        if not locale:
            return {}
        return dict(self.locales.get(namespace, {}).get(locale, {}))

    def default_params(self, namespace: str) -> LanguageParams:
        s = self.namespace_settings(namespace)
        locale = s.get("default_locale")
        return LanguageParams(
            language=s.get("default_language"),
            locale=locale,
            translations=self.translations_for(namespace, locale),
        )

    def set_default_language_params(self, ctx: CmsContext) -> None:
        for namespace in self.i18n_config:
            ctx.i18n[namespace] = self.default_params(namespace)

    def resolve_language(
        self,
        ctx: CmsContext,
        namespace: str = "client",
        *,
        language: str | None = None,
        locale: str | None = None,
        custom_translations: Mapping[str, str] | None = None,
    ) -> LanguageParams:
        """
        Pick the active language/locale pair for ``namespace`` and attach it to ``ctx``.

        ``locale`` takes precedence when both are passed. A locale missing from
        the mapping keeps the namespace's default language; a language missing
        from the mapping gets the default locale.
        """
        s = self.namespace_settings(namespace)
        mapping: Mapping[str, str] = s.get("locales_mapping") or {}
        if locale:
            if language:
                logger.debug("Both language '%s' and locale '%s' given; using locale", language, locale)
            language = next((lang for lang, loc in mapping.items() if loc == locale), None)
            if language is None:
                logger.warning("Locale '%s' has no language in the %s mapping", locale, namespace)
                language = s.get("default_language")
        elif language:
            locale = mapping.get(language)
            if locale is None:
                logger.warning("Language '%s' has no locale in the %s mapping", language, namespace)
                locale = s.get("default_locale")
        else:
            language = s.get("default_language")
            locale = s.get("default_locale")

        translations = self.translations_for(namespace, locale)
        if custom_translations:
            translations.update(custom_translations)
        params = LanguageParams(language=language, locale=locale, translations=translations)
        ctx.i18n[namespace] = params
        return params

    def get_locales_array(self, namespace: str = "client") -> list[dict[str, Any]]:
        """One row per translation key with a column per loaded locale."""
        bucket = self.locales.get(namespace, {})
        keys: dict[str, None] = {}
        for translations in bucket.values():
            keys.update(dict.fromkeys(translations))
        rows = []
        for key in keys:
            row: dict[str, Any] = {"key": key}
            for locale, translations in bucket.items():
                row[locale] = translations.get(key)
            rows.append(row)
        return rows
