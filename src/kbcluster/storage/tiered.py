"""Tiered persistence: an ordered chain of backends with dated backups.

Writes go to every tier in order (primary durable, secondary durable,
volatile session). A tier raising is logged and skipped; the save succeeds
if any tier accepted the record. Each successful primary write also
refreshes a dated backup (one per calendar day), keeping the most recent
``retention`` of them.

Reads walk the same order and fall back to the newest readable backup.
Unparsable records are treated as absent so recovery can continue.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Sequence

from ..models import KnowledgeState
from .base import StorageBackend, get_backup_backend, get_storage_tiers
from .schema import RecordError, decode_record, encode_state

logger = logging.getLogger(__name__)

STATE_KEY = "knowledge_state"
BACKUP_PREFIX = "knowledge_backup_"
STALE_AFTER_MS = 24 * 60 * 60 * 1000


class TieredPersistenceStore:
    """Durable save/load of ``KnowledgeState`` across unreliable backends."""

    def __init__(
        self,
        tiers: Sequence[StorageBackend],
        backups: StorageBackend | None = None,
        retention: int = 7,
        clock: Callable[[], datetime] = datetime.now,
    ):
        if not tiers:
            raise ValueError("TieredPersistenceStore needs at least one tier")
        if retention < 1:
            raise ValueError(f"retention must be >= 1, got {retention}")
        self.tiers = list(tiers)
        self.backups = backups
        self.retention = retention
        self._clock = clock
        self.last_source: str | None = None

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> "TieredPersistenceStore":
        return cls(
            tiers=get_storage_tiers(config),
            backups=get_backup_backend(config),
            retention=config.get("tracking", {}).get("backup_retention", 7),
        )

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    # ------------------------------------------------------------------
    # Save
    # ------------------------------------------------------------------

    def save(self, state: KnowledgeState) -> bool:
        """Write *state* to every tier. True if at least one tier accepted it."""
        record = encode_state(state, saved_at=self._now_ms())
        accepted: list[str] = []

        for index, tier in enumerate(self.tiers):
            try:
                tier.set(STATE_KEY, record)
            except Exception as e:
                logger.warning(f"Save to {tier.name} tier failed: {e}")
                continue
            accepted.append(tier.name)
            if index == 0:
                self._write_backup(record)

        if not accepted:
            logger.error("Failed to save knowledge state: all storage tiers failed")
            return False
        logger.debug(f"Knowledge state saved to: {', '.join(accepted)}")
        return True

    def _write_backup(self, record: str) -> None:
        if self.backups is None:
            return
        key = f"{BACKUP_PREFIX}{self._clock().date().isoformat()}"
        try:
            self.backups.set(key, record)
        except Exception as e:
            logger.warning(f"Dated backup {key} failed: {e}")
            return
        self.rotate_backups()

    def rotate_backups(self) -> list[str]:
        """Delete all but the ``retention`` newest dated backups. Returns removed keys."""
        removed: list[str] = []
        for key in self.backup_keys()[self.retention:]:
            try:
                self.backups.delete(key)
                removed.append(key)
                logger.info(f"Removed old backup: {key}")
            except Exception as e:
                logger.warning(f"Could not remove old backup {key}: {e}")
        return removed

    def backup_keys(self) -> list[str]:
        """Dated backup keys, newest first."""
        if self.backups is None:
            return []
        try:
            return sorted(self.backups.keys(BACKUP_PREFIX), reverse=True)
        except Exception as e:
            logger.warning(f"Listing backups failed: {e}")
            return []

    # ------------------------------------------------------------------
    # Load
    # ------------------------------------------------------------------

    def load(self) -> KnowledgeState | None:
        """Return the first readable state in tier order, then backups; None if nothing survives."""
        for tier in self.tiers:
            state = self._read(tier, STATE_KEY, tier.name)
            if state is not None:
                return state

        for key in self.backup_keys():
            state = self._read(self.backups, key, f"backup ({key})")
            if state is not None:
                return state

        self.last_source = None
        logger.info("No saved knowledge state found; starting fresh")
        return None

    def _read(self, backend: StorageBackend, key: str, source: str) -> KnowledgeState | None:
        try:
            raw = backend.get(key)
        except Exception as e:
            logger.warning(f"Load from {source} failed: {e}")
            return None
        if raw is None:
            return None

        try:
            decoded = decode_record(raw)
        except RecordError as e:
            logger.warning(f"Corrupted record in {source}, trying alternatives: {e}")
            return None

        self.last_source = source
        if decoded.source_version != decoded.state.schema_version:
            logger.info(f"Upgraded schema v{decoded.source_version} record from {source}")
        age_ms = self._now_ms() - decoded.saved_at
        if decoded.saved_at and age_ms > STALE_AFTER_MS:
            logger.warning(f"Knowledge state from {source} is {age_ms // 3_600_000} hours old")
        logger.info(f"Knowledge state loaded from {source}")
        return decoded.state

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Delete the state record from every tier and all dated backups."""
        for tier in self.tiers:
            try:
                tier.delete(STATE_KEY)
            except Exception as e:
                logger.warning(f"Reset of {tier.name} tier failed: {e}")
        for key in self.backup_keys():
            try:
                self.backups.delete(key)
            except Exception as e:
                logger.warning(f"Could not remove backup {key}: {e}")
        self.last_source = None
        logger.info("Knowledge state reset")

    def info(self) -> dict[str, Any]:
        """Per-tier availability and the surviving backups."""
        tiers = []
        for tier in self.tiers:
            entry: dict[str, Any] = {"name": tier.name, "available": True, "has_state": False}
            try:
                entry["has_state"] = tier.get(STATE_KEY) is not None
            except Exception as e:
                entry["available"] = False
                entry["error"] = str(e)
            tiers.append(entry)
        return {"tiers": tiers, "backups": self.backup_keys(), "retention": self.retention}
