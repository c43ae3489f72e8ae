import json
import textwrap
from pathlib import Path

import pytest


class SiteBuilder:
    """Writes a throwaway CMS site (modules, policies, themes, locales) under tmp_path."""

    def __init__(self, root: Path):
        self.root = root

    def write(self, rel: str, content: str) -> Path:
        p = self.root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(textwrap.dedent(content).lstrip("\n"), encoding="utf-8")
        return p

    def module(self, name: str, config: str, controllers: dict[str, str] | None = None, views: dict[str, str] | None = None) -> Path:
        self.write(f"modules/{name}/config.py", config)
        for file_name, src in (controllers or {}).items():
            self.write(f"modules/{name}/controllers/{file_name}", src)
        for file_name, src in (views or {}).items():
            self.write(f"modules/{name}/views/{file_name}", src)
        return self.root / "modules" / name

    def policy(self, name: str, src: str) -> Path:
        return self.write(f"policies/{name}.py", src)

    def theme_file(self, rel: str, content: str, theme: str = "default") -> Path:
        return self.write(f"themes/{theme}/templates/{rel}", content)

    def locale(self, locale: str, data: dict, namespace_dir: str = "locales") -> Path:
        return self.write(f"{namespace_dir}/{locale}.json", json.dumps(data))

    def default_theme(self) -> None:
        self.theme_file("layouts/default.html", "<main>{{ _body }}</main>")
        self.theme_file("layouts/error.html", "<div class='error'>{{ _body }}</div>")
        self.theme_file("errors/error.html", "Something failed: {{ error }}")
        self.theme_file("errors/404.html", "Not here")

    def config(self, **overrides) -> dict:
        cfg = {
            "CMS_ROOT": str(self.root),
            "ENV": "test",
            "SECRET_KEY": "test-secret",
            "TESTING": True,
        }
        cfg.update(overrides)
        return cfg


@pytest.fixture()
def site(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    for k in ("ENV", "DEBUG", "CMS_ROOT", "DEFAULT_THEME", "GLOBAL_POLICIES", "SILENT_ERRORS", "TEMPLATE_CACHE"):
        monkeypatch.delenv(k, raising=False)
    return SiteBuilder(tmp_path)

