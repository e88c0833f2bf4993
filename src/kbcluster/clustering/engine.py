"""ClusteringEngine: embed missing chunks, run the configured algorithm, post-process."""

import asyncio
import logging
import time
from collections import Counter
from typing import Any, Callable, Sequence

from ..config import ClusteringOptions
from ..embeddings.provider import EmbeddingProvider
from ..models import Chunk, ClusteringResult, ProgressEvent, RawCluster
from ..similarity import centroid, similarity_matrix
from .dbscan import dbscan_clustering
from .hierarchical import AlgorithmResult, hierarchical_clustering
from .postprocess import ClusterPostProcessor

logger = logging.getLogger(__name__)

EMBED_PROGRESS_EVERY = 10

ProgressCallback = Callable[[ProgressEvent], None]


class ClusteringEngine:
    """Groups chunks into semantically coherent clusters.

    Chunks without an embedding are embedded through the provider first; a
    chunk whose embedding fails (or has the wrong dimension) is logged and
    left out of clustering but still reported as unclustered.
    """

    def __init__(
        self,
        provider: EmbeddingProvider | None = None,
        options: ClusteringOptions | None = None,
        **overrides: Any,
    ):
        base = options or ClusteringOptions()
        if overrides:
            merged = base.to_dict()
            merged.update(overrides)
            base = ClusteringOptions.from_config(merged)
        self.options = base
        self.provider = provider
        self.post_processor = ClusterPostProcessor(base.min_cluster_size, base.max_cluster_size)
        logger.debug(
            f"Clustering engine initialized: algorithm={base.algorithm}, "
            f"threshold={base.similarity_threshold}, min_cluster_size={base.min_cluster_size}"
        )

    def stats(self) -> dict[str, Any]:
        return {
            "algorithm": self.options.algorithm,
            "similarity_threshold": self.options.similarity_threshold,
            "linkage_type": self.options.linkage_type,
            "epsilon": self.options.epsilon,
            "min_cluster_size": self.options.min_cluster_size,
            "max_cluster_size": self.options.max_cluster_size,
            "max_clusters": self.options.max_clusters,
        }

    async def cluster(
        self,
        chunks: Sequence[Chunk],
        on_progress: ProgressCallback | None = None,
    ) -> ClusteringResult:
        """Cluster *chunks* and return clusters, assignments and statistics."""
        start = time.perf_counter()
        _check_unique_ids(chunks)

        embedded, failed = await self.ensure_embeddings(chunks, on_progress)
        usable, mismatched = _split_by_dimension(embedded)
        failed.extend(mismatched)

        # Report every input chunk, with its embedding when one was produced.
        by_id = {c.id: c for c in usable}
        all_chunks = [by_id.get(c.id, c) for c in chunks]

        logger.info(f"Clustering {len(usable)} chunks ({self.options.algorithm})")
        if len(usable) < 2:
            raw: list[RawCluster] = []
            algo = AlgorithmResult(groups=[])
        else:
            algo = await self._run_algorithm(usable, on_progress)
            raw = [
                RawCluster(
                    id=str(i),
                    chunks=[usable[j] for j in group],
                    centroid=centroid([usable[j].embedding for j in group]),
                )
                for i, group in enumerate(algo.groups)
            ]
            raw = self._apply_cluster_cap(raw)
            if on_progress:
                on_progress(ProgressEvent.of("clustering", len(usable), len(usable)))

        elapsed_ms = (time.perf_counter() - start) * 1000
        processed = self.post_processor.post_process(raw, all_chunks, processing_time_ms=elapsed_ms)
        assignments = {cid: cluster.id for cluster in processed.clusters for cid in cluster.member_chunk_ids}

        logger.info(
            f"Clustering complete: {len(processed.clusters)} clusters from {len(chunks)} chunks "
            f"({processed.statistics.unclustered} unclustered, {elapsed_ms:.0f}ms)"
        )
        return ClusteringResult(
            clusters=processed.clusters,
            assignments=assignments,
            unclustered_chunk_ids=[c.id for c in processed.unclustered],
            statistics=processed.statistics,
            failed_chunk_ids=[c.id for c in failed],
            metadata={
                "algorithm": self.options.algorithm,
                "threshold": self.options.similarity_threshold,
                "linkage_type": self.options.linkage_type,
                "epsilon": self.options.epsilon,
                "iterations": algo.iterations,
                "noise_chunk_ids": [usable[i].id for i in algo.noise],
                "merge_history": [
                    {
                        "iteration": m.iteration,
                        "left": m.left,
                        "right": m.right,
                        "similarity": m.similarity,
                        "new_size": m.new_size,
                    }
                    for m in algo.merge_history
                ],
                "processing_time_ms": elapsed_ms,
            },
        )

    async def ensure_embeddings(
        self,
        chunks: Sequence[Chunk],
        on_progress: ProgressCallback | None = None,
    ) -> tuple[list[Chunk], list[Chunk]]:
        """Embed chunks that lack an embedding.

        Returns ``(embedded, failed)``; *embedded* keeps input order.
        """
        missing = [c for c in chunks if not c.has_embedding]
        generated: dict[str, Chunk] = {}
        failed: list[Chunk] = []

        if missing:
            logger.info(f"Generating embeddings for {len(missing)} chunks...")
        for i, chunk in enumerate(missing):
            try:
                if self.provider is None:
                    raise RuntimeError("no embedding provider configured")
                vector = await asyncio.to_thread(self.provider.embed, chunk.text)
                if vector is None or len(vector) == 0:
                    raise ValueError("provider returned an empty embedding")
                generated[chunk.id] = chunk.with_embedding(vector)
            except Exception as e:
                logger.warning(f"Failed to generate embedding for chunk {chunk.id}: {e}")
                failed.append(chunk)

            if on_progress and (i % EMBED_PROGRESS_EVERY == 0 or i == len(missing) - 1):
                on_progress(ProgressEvent.of("embeddings", i + 1, len(missing)))

        embedded = [generated.get(c.id, c) for c in chunks if c.has_embedding or c.id in generated]
        return embedded, failed

    async def _run_algorithm(self, chunks: list[Chunk], on_progress: ProgressCallback | None) -> AlgorithmResult:
        sims = similarity_matrix([c.embedding for c in chunks])
        if self.options.algorithm == "dbscan":
            return await dbscan_clustering(
                sims,
                epsilon=self.options.epsilon,
                min_points=self.options.dbscan_min_points,
                on_progress=on_progress,
            )
        return await hierarchical_clustering(
            sims,
            threshold=self.options.similarity_threshold,
            linkage=self.options.linkage_type,
            on_progress=on_progress,
        )

    def _apply_cluster_cap(self, raw: list[RawCluster]) -> list[RawCluster]:
        """Keep at most ``max_clusters`` size-eligible clusters, largest first.

        Dissolved clusters are dropped from the raw list so their members are
        reported as unclustered.
        """
        eligible = [i for i, r in enumerate(raw) if self.post_processor.accepts(r.size)]
        if len(eligible) <= self.options.max_clusters:
            return raw

        ranked = sorted(eligible, key=lambda i: -raw[i].size)
        dropped = set(ranked[self.options.max_clusters:])
        logger.warning(
            f"{len(eligible)} clusters exceed max_clusters={self.options.max_clusters}; "
            f"dissolving {len(dropped)} smallest"
        )
        return [r for i, r in enumerate(raw) if i not in dropped]


def _check_unique_ids(chunks: Sequence[Chunk]) -> None:
    seen: set[str] = set()
    for chunk in chunks:
        if chunk.id in seen:
            raise ValueError(f"Duplicate chunk id: {chunk.id!r}")
        seen.add(chunk.id)


def _split_by_dimension(chunks: list[Chunk]) -> tuple[list[Chunk], list[Chunk]]:
    """Separate chunks whose embedding dimension differs from the majority.

    The most common dimension wins; ties go to the one seen first.
    """
    if not chunks:
        return [], []
    dim = Counter(len(c.embedding) for c in chunks).most_common(1)[0][0]
    usable, mismatched = [], []
    for chunk in chunks:
        if len(chunk.embedding) == dim:
            usable.append(chunk)
        else:
            logger.warning(
                f"Excluding chunk {chunk.id}: embedding dimension {len(chunk.embedding)} != {dim}"
            )
            mismatched.append(chunk)
    return usable, mismatched
