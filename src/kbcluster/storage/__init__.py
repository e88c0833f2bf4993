"""Storage tiers for persisted knowledge state."""

from .base import StorageBackend, get_backend, get_backup_backend, get_storage_tiers
from .tiered import TieredPersistenceStore

__all__ = [
    "StorageBackend",
    "TieredPersistenceStore",
    "get_backend",
    "get_backup_backend",
    "get_storage_tiers",
]
