"""Shared fixtures: deterministic embedding providers and a two-group chunk set."""

import hashlib
import math
from datetime import datetime, timedelta

import pytest

from kbcluster.embeddings.provider import EmbeddingProvider
from kbcluster.models import Chunk, ChunkMetadata
from kbcluster.storage.base import StorageBackend


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic md5-based embeddings; no model download."""

    def __init__(self, dim: int = 8, fixed: dict[str, list[float]] | None = None):
        self.dim = dim
        self.fixed = fixed or {}
        self.calls: list[str] = []

    def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.fixed:
            return list(self.fixed[text])
        digest = hashlib.md5(text.encode()).digest()
        return [(digest[i % len(digest)] / 255.0) - 0.5 for i in range(self.dim)]


class FlakyEmbeddingProvider(FakeEmbeddingProvider):
    """Fails for any text containing FAIL."""

    def embed(self, text: str) -> list[float]:
        if "FAIL" in text:
            raise RuntimeError("provider unavailable")
        return super().embed(text)


class BrokenBackend(StorageBackend):
    """A tier that raises on every call."""

    def __init__(self, name: str = "broken"):
        self.name = name

    def get(self, key):
        raise OSError(f"{self.name} unavailable")

    def set(self, key, value):
        raise OSError(f"{self.name} unavailable")

    def delete(self, key):
        raise OSError(f"{self.name} unavailable")

    def keys(self, prefix=""):
        raise OSError(f"{self.name} unavailable")


class FakeClock:
    """Callable clock that tests can move forward."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _unit(dim: int, index: int) -> list[float]:
    v = [0.0] * dim
    v[index] = 1.0
    return v


def two_group_embeddings() -> list[list[float]]:
    """Six 8-d unit vectors: similarity 0.97 within each group of three, 0.40 across."""
    dim = 8
    within = math.sqrt(0.97)
    spread = math.sqrt(0.03)
    c = 0.40 / 0.97
    s = math.sqrt(1 - c * c)

    vectors = []
    for k in range(3):
        v = [within * x for x in _unit(dim, 0)]
        v[2 + k] += spread
        vectors.append(v)
    for k in range(3):
        v = [0.0] * dim
        v[0] = within * c
        v[1] = within * s
        v[5 + k] = spread
        vectors.append(v)
    return vectors


TEXTS = [
    "Bridge transfers move tokens between networks quickly",
    "Token bridge transfers settle between networks",
    "Cross network bridge transfers for tokens",
    "Wallet security keeps private keys offline",
    "Private keys stay in the wallet security module",
    "Hardware wallet security protects private keys",
]


@pytest.fixture
def two_group_chunks() -> list[Chunk]:
    chunks = []
    for i, (text, emb) in enumerate(zip(TEXTS, two_group_embeddings())):
        group = "bridge" if i < 3 else "security"
        chunks.append(Chunk(
            id=f"c{i}",
            text=text,
            embedding=tuple(emb),
            metadata=ChunkMetadata(category=group, tags=(group, f"t{i}"), glossary_terms=(f"term{i}",)),
        ))
    return chunks


@pytest.fixture
def fake_provider() -> FakeEmbeddingProvider:
    return FakeEmbeddingProvider()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
