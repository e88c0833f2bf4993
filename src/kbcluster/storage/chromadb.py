"""Secondary durable tier backed by a ChromaDB persistent collection."""

from pathlib import Path
from typing import Any

import chromadb

from .base import StorageBackend

# Records are only ever fetched by id; the collection still needs a vector
# per entry, so every record carries the same one-dimensional placeholder.
_PLACEHOLDER_EMBEDDING = [1.0]


class ChromaBackend(StorageBackend):
    """Stores serialized records as documents keyed by record id."""

    name = "chromadb"

    def __init__(
        self,
        chroma_path: str | Path | None = None,
        collection_name: str = "knowledge_state",
        _client: Any | None = None,
    ):
        if _client is None:
            if chroma_path is None:
                raise ValueError("chroma_path is required without an explicit client")
            self.chroma_path = Path(chroma_path)
            self.chroma_path.mkdir(parents=True, exist_ok=True)
            _client = chromadb.PersistentClient(path=str(self.chroma_path))
        self.client = _client
        self.collection_name = collection_name
        self._collection = None

    @property
    def collection(self):
        if self._collection is None:
            self._collection = self.client.get_or_create_collection(
                name=self.collection_name,
                embedding_function=None,
            )
        return self._collection

    def get(self, key: str) -> str | None:
        result = self.collection.get(ids=[key], include=["documents"])
        documents = result.get("documents") or []
        if not result["ids"] or not documents:
            return None
        return documents[0]

    def set(self, key: str, value: str) -> None:
        self.collection.upsert(
            ids=[key],
            documents=[value],
            embeddings=[_PLACEHOLDER_EMBEDDING],
        )

    def delete(self, key: str) -> None:
        self.collection.delete(ids=[key])

    def keys(self, prefix: str = "") -> list[str]:
        result = self.collection.get(include=[])
        return sorted(k for k in result["ids"] if k.startswith(prefix))
