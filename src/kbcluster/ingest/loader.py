"""Load and validate knowledge chunk catalogs from JSON or YAML files."""

import json
from pathlib import Path
from typing import Any

import yaml

from ..models import Chunk, ChunkMetadata


def parse_chunk(raw: Any, index: int = 0) -> Chunk:
    """Validate one raw chunk record and build a ``Chunk``.

    Raises ValueError naming the record index when a field is missing or
    has the wrong type.
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Chunk #{index}: expected a mapping, got {type(raw).__name__}")

    chunk_id = raw.get("id")
    if not isinstance(chunk_id, str) or not chunk_id:
        raise ValueError(f"Chunk #{index}: 'id' must be a non-empty string")

    text = raw.get("text", raw.get("content", ""))
    if not isinstance(text, str):
        raise ValueError(f"Chunk #{index} ({chunk_id}): 'text' must be a string")

    embedding = raw.get("embedding")
    if embedding is not None:
        if not isinstance(embedding, list) or not all(
            isinstance(x, (int, float)) and not isinstance(x, bool) for x in embedding
        ):
            raise ValueError(f"Chunk #{index} ({chunk_id}): 'embedding' must be a list of numbers")
        embedding = tuple(float(x) for x in embedding) or None

    try:
        metadata = ChunkMetadata.from_dict(raw.get("metadata"))
    except ValueError as e:
        raise ValueError(f"Chunk #{index} ({chunk_id}): {e}") from e

    return Chunk(id=chunk_id, text=text, embedding=embedding, metadata=metadata)


def load_chunks(path: str | Path) -> list[Chunk]:
    """Load chunks from a .json/.yaml file.

    The file holds either a list of chunk records or a mapping with a
    ``chunks`` list. Duplicate ids are rejected.
    """
    path = Path(path)
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() in (".yaml", ".yml"):
        data = yaml.safe_load(text)
    else:
        data = json.loads(text)

    if isinstance(data, dict):
        data = data.get("chunks")
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of chunks or a mapping with a 'chunks' list")

    chunks = [parse_chunk(raw, i) for i, raw in enumerate(data)]

    seen: set[str] = set()
    for chunk in chunks:
        if chunk.id in seen:
            raise ValueError(f"{path}: duplicate chunk id {chunk.id!r}")
        seen.add(chunk.id)
    return chunks


def dump_chunks(chunks: list[Chunk], path: str | Path) -> None:
    """Write chunks (with embeddings, if present) back to a JSON file."""
    records = []
    for chunk in chunks:
        record: dict[str, Any] = {"id": chunk.id, "text": chunk.text, "metadata": chunk.metadata.to_dict()}
        if chunk.embedding:
            record["embedding"] = list(chunk.embedding)
        records.append(record)
    Path(path).write_text(json.dumps({"chunks": records}, indent=2, ensure_ascii=False), encoding="utf-8")
