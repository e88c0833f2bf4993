"""Persisted knowledge-state record: encoding, decoding and version upgrades.

Record layout (schema version 3)::

    {
      "schemaVersion": 3,
      "savedAt": <epoch ms>,
      "learnedChunkIds": [...],
      "categoriesSeen": [...],
      "tagsSeen": [...],
      "glossaryTermsSeen": [...],
      "exposureCount": <int>,
      "lastUpdated": <epoch ms>        # optional, defaults to savedAt
    }

Older layouts are upgraded in memory only; storage is rewritten on the next
save.

  v2: {"version": 2, "chunks", "categories", "tags", "glossaryTerms", "totalExposure", ...}
  v1: {"version": 1, "topics", "concepts", "features", "mappedKeywords", "totalExposure", ...}
"""

import json
import math
from dataclasses import dataclass
from typing import Any

from ..models import KnowledgeState

CURRENT_SCHEMA_VERSION = 3
SUPPORTED_VERSIONS = (1, 2, 3)


class RecordError(ValueError):
    """A stored record is unreadable or of an unsupported version."""


@dataclass
class DecodedRecord:
    state: KnowledgeState
    saved_at: int
    source_version: int


def encode_state(state: KnowledgeState, saved_at: int) -> str:
    record = {
        "schemaVersion": CURRENT_SCHEMA_VERSION,
        "savedAt": saved_at,
        "learnedChunkIds": sorted(state.learned_chunk_ids),
        "categoriesSeen": sorted(state.categories_seen),
        "tagsSeen": sorted(state.tags_seen),
        "glossaryTermsSeen": sorted(state.glossary_terms_seen),
        "exposureCount": state.exposure_count,
        "lastUpdated": state.last_updated,
    }
    return json.dumps(record, ensure_ascii=False)


def record_version(data: dict[str, Any]) -> int:
    if "schemaVersion" in data:
        version = data["schemaVersion"]
    elif "version" in data:
        version = data["version"]
    elif "topics" in data or "mappedKeywords" in data:
        version = 1
    else:
        raise RecordError("record carries no schema version")
    if not isinstance(version, int) or isinstance(version, bool):
        raise RecordError(f"invalid schema version: {version!r}")
    return version


def upgrade_record(data: dict[str, Any]) -> dict[str, Any]:
    """Bring a v1/v2/v3 record to the v3 layout, filling defaults."""
    version = record_version(data)
    if version not in SUPPORTED_VERSIONS:
        raise RecordError(f"unsupported schema version {version}")

    saved_at = data.get("savedAt", data.get("timestamp", 0))
    if version == CURRENT_SCHEMA_VERSION:
        upgraded = dict(data)
    elif version == 2:
        upgraded = {
            "learnedChunkIds": data.get("chunks", []),
            "categoriesSeen": data.get("categories", []),
            "tagsSeen": data.get("tags", []),
            "glossaryTermsSeen": data.get("glossaryTerms", []),
            "exposureCount": data.get("totalExposure", 0),
            "lastUpdated": data.get("lastKnowledgeUpdate", saved_at),
        }
    else:
        # v1 tracked keyword buckets with no structured counterpart.
        upgraded = {
            "exposureCount": data.get("totalExposure", 0),
            "lastUpdated": data.get("lastKnowledgeUpdate", saved_at),
        }

    upgraded["schemaVersion"] = CURRENT_SCHEMA_VERSION
    upgraded["savedAt"] = saved_at
    for key in ("learnedChunkIds", "categoriesSeen", "tagsSeen", "glossaryTermsSeen"):
        upgraded.setdefault(key, [])
    upgraded.setdefault("exposureCount", 0)
    upgraded.setdefault("lastUpdated", saved_at)
    return upgraded


def _string_set(data: dict[str, Any], key: str) -> set[str]:
    value = data[key]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise RecordError(f"{key} must be a list of strings")
    return set(value)


def _int(data: dict[str, Any], key: str) -> int:
    value = data[key]
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise RecordError(f"{key} must be a number")
    if not math.isfinite(value):
        raise RecordError(f"{key} must be finite, got {value!r}")
    return int(value)


def decode_record(raw: str) -> DecodedRecord:
    """Parse a stored record. Raises RecordError on anything unusable."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise RecordError(f"unparsable record: {e}") from e
    if not isinstance(data, dict):
        raise RecordError("record is not a JSON object")

    source_version = record_version(data)
    upgraded = upgrade_record(data)
    state = KnowledgeState(
        learned_chunk_ids=_string_set(upgraded, "learnedChunkIds"),
        categories_seen=_string_set(upgraded, "categoriesSeen"),
        tags_seen=_string_set(upgraded, "tagsSeen"),
        glossary_terms_seen=_string_set(upgraded, "glossaryTermsSeen"),
        exposure_count=_int(upgraded, "exposureCount"),
        last_updated=_int(upgraded, "lastUpdated"),
        schema_version=CURRENT_SCHEMA_VERSION,
    )
    return DecodedRecord(state=state, saved_at=_int(upgraded, "savedAt"), source_version=source_version)
