"""Primary durable tier: one JSON file per key."""

import os
import re
import tempfile
from pathlib import Path

from .base import StorageBackend

_KEY_RE = re.compile(r"^[A-Za-z0-9_.-]+$")


class FileBackend(StorageBackend):
    """Stores each key as ``<root>/<key>.json``.

    Writes go to a temporary file in the same directory and are moved into
    place with ``os.replace``, so a crash mid-write never leaves a
    half-written record behind.
    """

    def __init__(self, root: str | Path, name: str = "files"):
        self.root = Path(root)
        self.name = name

    def _path_for(self, key: str) -> Path:
        if not _KEY_RE.match(key):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.root / f"{key}.json"

    def get(self, key: str) -> str | None:
        path = self._path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path_for(key)
        self.root.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=f".{key}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self._path_for(key).unlink(missing_ok=True)

    def keys(self, prefix: str = "") -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob(f"{prefix}*.json"))
