"""Volatile session tier: lives only as long as the process."""

from .base import StorageBackend


class MemoryBackend(StorageBackend):
    """In-process dict; survives nothing but covers writes when disks fail."""

    name = "memory"

    def __init__(self):
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
