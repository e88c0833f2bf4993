"""Abstract base class for key-value storage backends and factory functions."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any


class StorageBackend(ABC):
    """Common interface for persistence tiers.

    Values are serialized records (strings). Any method may raise; the
    tiered store treats an exception as "this tier is unavailable".
    """

    name: str = "backend"

    @abstractmethod
    def get(self, key: str) -> str | None:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store or overwrite a value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key; missing keys are ignored."""

    @abstractmethod
    def keys(self, prefix: str = "") -> list[str]:
        """List stored keys starting with *prefix*."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name})"


def get_backend(name: str, config: dict[str, Any]) -> StorageBackend:
    """Factory: return a storage backend by tier name."""
    storage_cfg = config.get("storage", {})

    if name == "files":
        from .files import FileBackend
        return FileBackend(storage_cfg.get("state_path") or Path(config["home"]) / "state")
    elif name == "chromadb":
        from .chromadb import ChromaBackend
        return ChromaBackend(
            storage_cfg.get("chroma_path") or Path(config["home"]) / "chroma",
            collection_name=storage_cfg.get("collection", "knowledge_state"),
        )
    elif name == "memory":
        from .memory import MemoryBackend
        return MemoryBackend()
    else:
        raise ValueError(f"Unknown storage tier: {name}")


def get_storage_tiers(config: dict[str, Any]) -> list[StorageBackend]:
    """Build the ordered tier list from ``storage.tiers``."""
    names = config.get("storage", {}).get("tiers", ["files", "chromadb", "memory"])
    if not names:
        raise ValueError("storage.tiers must name at least one backend")
    return [get_backend(name, config) for name in names]


def get_backup_backend(config: dict[str, Any]) -> StorageBackend:
    """Dated backups live in their own directory, apart from the tiers."""
    from .files import FileBackend
    storage_cfg = config.get("storage", {})
    return FileBackend(storage_cfg.get("backup_path") or Path(config["home"]) / "backups", name="backups")
