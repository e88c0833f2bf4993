"""Embedding providers: the interface the engine consumes and a sentence-transformers implementation."""

from abc import ABC, abstractmethod
from typing import Any, Sequence

from ..similarity import cosine_similarity


class EmbeddingProvider(ABC):
    """Turns text into fixed-length vectors.

    Implementations must be deterministic for identical text and model
    version, and must raise (rather than return garbage) on failure so that
    callers can exclude the offending chunk.
    """

    @abstractmethod
    def embed(self, text: str) -> list[float]:
        """Embed a single text."""

    def cosine_similarity(self, a: Sequence[float], b: Sequence[float]) -> float:
        return cosine_similarity(a, b)


class SentenceTransformerProvider(EmbeddingProvider):
    """Embeds text locally with a sentence-transformers model."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2", normalize: bool = True):
        self.model_name = model_name
        self.normalize = normalize
        self._model = None

    @property
    def model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text")
        return self.model.encode(text, normalize_embeddings=self.normalize).tolist()


def get_embedding_provider(config: dict[str, Any]) -> EmbeddingProvider:
    """Factory: return the configured embedding provider."""
    return SentenceTransformerProvider(config.get("embedding_model", "all-MiniLM-L6-v2"))
