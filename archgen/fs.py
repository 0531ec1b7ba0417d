"""Filesystem access used by the orchestrator and the pack cache.

Writes go through a temporary sibling file followed by ``os.replace`` so a
reader never observes a half-written artifact.
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Protocol


class FileSystem(Protocol):
    """The operations the engine needs from a filesystem."""

    def exists(self, path: Path) -> bool: ...

    def read_text(self, path: Path) -> str: ...

    def read_bytes(self, path: Path) -> bytes: ...

    def write_text(self, path: Path, content: str) -> None: ...

    def write_bytes(self, path: Path, content: bytes) -> None: ...

    def mkdir(self, path: Path) -> None: ...

    def is_empty_dir(self, path: Path) -> bool: ...

    def rename(self, source: Path, destination: Path) -> None: ...


class LocalFileSystem:
    """``FileSystem`` backed by the local disk."""

    def exists(self, path: Path) -> bool:
        return path.exists()

    def read_text(self, path: Path) -> str:
        return path.read_bytes().decode("utf-8")

    def read_bytes(self, path: Path) -> bytes:
        return path.read_bytes()

    def write_text(self, path: Path, content: str) -> None:
        self._replace(path, content.encode("utf-8"))

    def write_bytes(self, path: Path, content: bytes) -> None:
        self._replace(path, content)

    def mkdir(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def is_empty_dir(self, path: Path) -> bool:
        with os.scandir(path) as entries:
            return next(entries, None) is None

    def rename(self, source: Path, destination: Path) -> None:
        os.replace(source, destination)

    @staticmethod
    def _replace(path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp_name, path)
        finally:
            if os.path.exists(tmp_name):
                os.remove(tmp_name)
