"""Data models used throughout kbcluster."""

import math
from dataclasses import dataclass, field, replace
from typing import Any, Iterable


def _as_str_tuple(value: Any, field_name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise ValueError(f"{field_name} must be a list of strings, got {type(value).__name__}")
    items = tuple(value)
    for item in items:
        if not isinstance(item, str):
            raise ValueError(f"{field_name} must contain only strings, got {item!r}")
    return items


@dataclass(frozen=True)
class ChunkMetadata:
    """Typed metadata attached to a knowledge chunk."""
    category: str | None = None
    tags: tuple[str, ...] = ()
    glossary_terms: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ChunkMetadata":
        """Build metadata from a raw mapping, validating field types.

        Accepts ``type`` as an alias for ``category`` and ``glossaryTerms``
        as an alias for ``glossary_terms``.
        """
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError(f"metadata must be a mapping, got {type(data).__name__}")

        category = data.get("category", data.get("type"))
        if category is not None and not isinstance(category, str):
            raise ValueError(f"category must be a string, got {category!r}")

        terms = data.get("glossary_terms", data.get("glossaryTerms"))
        return cls(
            category=category or None,
            tags=_as_str_tuple(data.get("tags"), "tags"),
            glossary_terms=_as_str_tuple(terms, "glossary_terms"),
        )

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"tags": list(self.tags), "glossary_terms": list(self.glossary_terms)}
        if self.category:
            out["category"] = self.category
        return out


@dataclass(frozen=True)
class Chunk:
    """A knowledge fragment, optionally carrying its embedding."""
    id: str
    text: str
    embedding: tuple[float, ...] | None = None
    metadata: ChunkMetadata = field(default_factory=ChunkMetadata)

    @property
    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def with_embedding(self, embedding: Iterable[float]) -> "Chunk":
        """Return a copy of this chunk carrying *embedding*."""
        return replace(self, embedding=tuple(float(x) for x in embedding))


@dataclass
class RawCluster:
    """Unfiltered algorithm output: member chunks plus their centroid."""
    id: str
    chunks: list[Chunk]
    centroid: list[float]

    @property
    def size(self) -> int:
        return len(self.chunks)


@dataclass
class Cluster:
    """A post-processed cluster of semantically related chunks."""
    id: int
    member_chunk_ids: list[str]
    centroid: list[float]
    size: int
    coherence_score: float = 1.0
    keywords: list[str] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "member_chunk_ids": list(self.member_chunk_ids),
            "centroid": list(self.centroid),
            "size": self.size,
            "coherence_score": self.coherence_score,
            "keywords": list(self.keywords),
            "summary": dict(self.summary),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cluster":
        members = list(data["member_chunk_ids"])
        centroid = [float(x) for x in data["centroid"]]
        if not all(math.isfinite(x) for x in centroid):
            raise ValueError(f"Cluster {data['id']} has a non-finite centroid")
        return cls(
            id=int(data["id"]),
            member_chunk_ids=members,
            centroid=centroid,
            size=int(data.get("size", len(members))),
            coherence_score=float(data.get("coherence_score", 1.0)),
            keywords=list(data.get("keywords", [])),
            summary=dict(data.get("summary", {})),
        )


@dataclass
class ClusterStatistics:
    """Counts describing one clustering run."""
    total_chunks: int = 0
    clustered_chunks: int = 0
    cluster_count: int = 0
    unclustered: int = 0
    average_cluster_size: float = 0.0
    processing_time_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_chunks": self.total_chunks,
            "clustered_chunks": self.clustered_chunks,
            "cluster_count": self.cluster_count,
            "unclustered": self.unclustered,
            "average_cluster_size": self.average_cluster_size,
            "processing_time_ms": self.processing_time_ms,
        }


@dataclass
class ClusteringResult:
    """Clusters, the chunk -> cluster index map, and bookkeeping for a run."""
    clusters: list[Cluster]
    assignments: dict[str, int]
    unclustered_chunk_ids: list[str]
    statistics: ClusterStatistics
    failed_chunk_ids: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "assignments": dict(self.assignments),
            "unclustered_chunk_ids": list(self.unclustered_chunk_ids),
            "failed_chunk_ids": list(self.failed_chunk_ids),
            "statistics": self.statistics.to_dict(),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClusteringResult":
        return cls(
            clusters=[Cluster.from_dict(c) for c in data.get("clusters", [])],
            assignments={str(k): int(v) for k, v in data.get("assignments", {}).items()},
            unclustered_chunk_ids=list(data.get("unclustered_chunk_ids", [])),
            statistics=ClusterStatistics(**data.get("statistics", {})),
            failed_chunk_ids=list(data.get("failed_chunk_ids", [])),
            metadata=dict(data.get("metadata", {})),
        )


@dataclass(frozen=True)
class RetrievalHit:
    """A cluster ranked against a query."""
    cluster: Cluster
    similarity: float


@dataclass(frozen=True)
class ProgressEvent:
    """Progress report handed to caller callbacks."""
    stage: str  # "embeddings" or "clustering"
    current: int
    total: int
    percentage: int

    @classmethod
    def of(cls, stage: str, current: int, total: int) -> "ProgressEvent":
        pct = round(current / total * 100) if total else 100
        return cls(stage=stage, current=current, total=total, percentage=max(0, min(100, pct)))

    def to_dict(self) -> dict[str, Any]:
        return {"stage": self.stage, "current": self.current, "total": self.total, "percentage": self.percentage}


@dataclass
class KnowledgeState:
    """What a user has been exposed to so far."""
    learned_chunk_ids: set[str] = field(default_factory=set)
    categories_seen: set[str] = field(default_factory=set)
    tags_seen: set[str] = field(default_factory=set)
    glossary_terms_seen: set[str] = field(default_factory=set)
    exposure_count: int = 0
    last_updated: int = 0  # epoch ms
    schema_version: int = 3
