from __future__ import annotations

import os
from pathlib import Path


class FileSystemProbe:
    """Thin wrapper over the filesystem used by module discovery and view resolution."""

    def __init__(self, double_extensions: list[str] | tuple[str, ...] = ()) -> None:
        self.double_extensions = tuple(double_extensions)

    def get_all_dir_names(self, dir_path: str | Path) -> list[str] | None:
        p = Path(dir_path)
        if not p.is_dir():
            return None
        return [e.name for e in os.scandir(p) if e.is_dir()]

    def get_all_file_names(self, dir_path: str | Path) -> list[str] | None:
        p = Path(dir_path)
        if not p.is_dir():
            return None
        return [e.name for e in os.scandir(p) if e.is_file()]

    def file_exists(self, file_path: str | Path) -> bool:
        return Path(file_path).exists()

    def read_file(self, file_path: str | Path, encoding: str = "utf-8") -> str:
        return Path(file_path).read_text(encoding=encoding)

    def get_mtime(self, file_path: str | Path) -> float:
        return Path(file_path).stat().st_mtime

    def get_file_name_parts(self, file_path: str | Path) -> tuple[str, str]:
        """
        Split a file name into (name, extension).

        Double extensions such as ``tar.gz`` are kept together when the inner
        part is listed in ``double_extensions``. A name without any dot is
        returned as ``(name, "")``.
        """
        parts = Path(file_path).name.split(".")
        extension = parts.pop()
        if parts and len(parts) > 1 and parts[-1] in self.double_extensions:
            extension = f"{parts.pop()}.{extension}"
        name = ".".join(parts)
        if not name:
            return extension, ""
        return name, extension
