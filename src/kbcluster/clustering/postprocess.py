"""Turn raw algorithm output into usable clusters: size filtering, coherence, keywords."""

import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Sequence

from ..models import Chunk, Cluster, ClusterStatistics, RawCluster
from ..similarity import mean_pairwise_similarity

KEYWORD_RE = re.compile(r"\b\w{4,}\b")
MAX_KEYWORDS = 10
SUMMARY_WORDS = 5


@dataclass
class PostProcessResult:
    clusters: list[Cluster]
    unclustered: list[Chunk]
    statistics: ClusterStatistics


def tokenize(text: str) -> list[str]:
    return KEYWORD_RE.findall(text.lower())


def extract_keywords(texts: Sequence[str], limit: int = MAX_KEYWORDS) -> list[str]:
    """Frequent tokens shared by a good part of the cluster.

    A token (4+ chars) qualifies when it appears in at least
    ``max(2, ceil(0.3 * size))`` member texts. Qualifying tokens are ordered
    by total frequency, ties by first appearance.
    """
    min_docs = max(2, math.ceil(0.3 * len(texts)))
    frequency: Counter[str] = Counter()
    doc_frequency: Counter[str] = Counter()
    for text in texts:
        tokens = tokenize(text)
        frequency.update(tokens)
        doc_frequency.update(set(tokens))

    candidates = [w for w in frequency if doc_frequency[w] >= min_docs]
    candidates.sort(key=lambda w: frequency[w], reverse=True)
    return candidates[:limit]


def summarize(chunks: Sequence[Chunk]) -> dict:
    """Size, most frequent words and average text length of a cluster."""
    counts: Counter[str] = Counter()
    for chunk in chunks:
        counts.update(tokenize(chunk.text))
    top_words = [w for w, _ in counts.most_common(SUMMARY_WORDS)]
    avg_len = sum(len(c.text) for c in chunks) / len(chunks) if chunks else 0.0
    return {"size": len(chunks), "top_words": top_words, "average_length": avg_len}


class ClusterPostProcessor:
    """Filters raw clusters by size and enriches the survivors.

    Every input chunk ends up either in exactly one surviving cluster or in
    ``unclustered``; nothing is dropped silently.
    """

    def __init__(self, min_cluster_size: int = 2, max_cluster_size: int = 50):
        if min_cluster_size < 1 or min_cluster_size > max_cluster_size:
            raise ValueError(
                f"Invalid cluster size bounds: min={min_cluster_size}, max={max_cluster_size}"
            )
        self.min_cluster_size = min_cluster_size
        self.max_cluster_size = max_cluster_size

    def accepts(self, size: int) -> bool:
        return self.min_cluster_size <= size <= self.max_cluster_size

    def post_process(
        self,
        raw_clusters: Sequence[RawCluster],
        all_chunks: Sequence[Chunk],
        processing_time_ms: float = 0.0,
    ) -> PostProcessResult:
        clusters: list[Cluster] = []
        clustered_ids: set[str] = set()

        for raw in raw_clusters:
            if not self.accepts(raw.size):
                continue
            member_ids = [c.id for c in raw.chunks]
            if clustered_ids.intersection(member_ids):
                raise ValueError(f"Chunk assigned to more than one cluster in {raw.id}")
            clustered_ids.update(member_ids)

            coherence = mean_pairwise_similarity([c.embedding for c in raw.chunks])
            clusters.append(Cluster(
                id=len(clusters),
                member_chunk_ids=member_ids,
                centroid=list(raw.centroid),
                size=raw.size,
                coherence_score=min(1.0, max(0.0, coherence)),
                keywords=extract_keywords([c.text for c in raw.chunks]),
                summary=summarize(raw.chunks),
            ))

        unclustered = [c for c in all_chunks if c.id not in clustered_ids]
        clustered = sum(c.size for c in clusters)
        statistics = ClusterStatistics(
            total_chunks=len(all_chunks),
            clustered_chunks=clustered,
            cluster_count=len(clusters),
            unclustered=len(unclustered),
            average_cluster_size=clustered / len(clusters) if clusters else 0.0,
            processing_time_ms=processing_time_ms,
        )
        return PostProcessResult(clusters=clusters, unclustered=unclustered, statistics=statistics)
