import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    debug: bool
    root: str
    version: str

    default_theme: str
    global_policies: tuple[str, ...]
    silent_errors: tuple[str, ...]
    template_cache: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _getenv_list(name: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in _getenv(name).split(",") if p.strip())


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        debug=_getenv_bool("DEBUG"),
        root=_getenv("CMS_ROOT", os.getcwd()),
        version=_getenv("CMS_VERSION", "0.1.0"),
        default_theme=_getenv("DEFAULT_THEME", "default"),
        global_policies=_getenv_list("GLOBAL_POLICIES"),
        silent_errors=_getenv_list("SILENT_ERRORS"),
        template_cache=_getenv_bool("TEMPLATE_CACHE"),
    )


def is_production(env: str | None) -> bool:
    return (env or "").strip().lower() in ("prod", "production")


def default_i18n() -> dict:
    mapping = {"en": "en-gb", "it": "it-it"}
    return {
        "client": {
            "default_language": "en",
            "default_locale": "en-gb",
            "locales_mapping": dict(mapping),
        },
        "admin": {
            "default_language": "en",
            "default_locale": "en-gb",
            "locales_mapping": dict(mapping),
        },
    }


def load_config() -> dict:
    s = load_settings()
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DEBUG": s.debug,
        "CMS_ROOT": s.root,
        "CMS_VERSION": s.version,
        # module layout
        "MODULES_DIR": "modules",
        "MODULE_CONFIG_FILE": "config.py",
        "MODULE_CONTROLLERS_DIR": "controllers",
        "MODULE_MODELS_DIR": "models",
        "MODULE_SERVICES_DIR": "services",
        "MODULE_HELPERS_DIR": "helpers",
        "MODULE_VIEWS_DIR": "views",
        "MODULE_DEFAULT_VIEW": "index",
        "POLICIES_DIR": "policies",
        "GLOBAL_POLICIES": list(s.global_policies),
        # themes
        "PUBLIC_DIR": "public",
        "THEMES_DIR": "themes",
        "TEMPLATES_DIR": "templates",
        "LAYOUTS_DIR": "layouts",
        "ERRORS_DIR": "errors",
        "EMAILS_DIR": "emails",
        "DEFAULT_THEME": s.default_theme,
        "DEFAULT_LAYOUT": "default",
        "DEFAULT_ERROR_LAYOUT": "error",
        "DEFAULT_ERROR_VIEW": "error",
        "VIEW_EXTENSION": "html",
        "TEMPLATE_CACHE": s.template_cache,
        "DOUBLE_FILE_EXTENSIONS": ["tar"],
        # i18n
        "LOCALES_DIR": "locales",
        "ADMIN_LOCALES_DIR": "admin_locales",
        "I18N": default_i18n(),
        # external collaborators
        "DB_CONNECTIONS": {},
        "SESSION_STORE": "cookie",
        "SESSION_OPTIONS": {},
        "CLIENT": {"meta_title": "CMS"},
        "API_DEFAULT_PAGE_SIZE": 20,
        "SILENT_ERRORS": list(s.silent_errors),
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production(s.env),
    }
