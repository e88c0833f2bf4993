"""Rank clusters against a query."""

import asyncio
import logging
import math
from typing import Sequence

from ..embeddings.provider import EmbeddingProvider
from ..models import Cluster, ClusteringResult, RetrievalHit
from ..similarity import cosine_similarity

logger = logging.getLogger(__name__)


class ClusterRetriever:
    """Answers "which clusters are most relevant to this query".

    Pure read: nothing about the cluster data is modified.
    """

    def __init__(self, provider: EmbeddingProvider, top_k: int = 3):
        self.provider = provider
        self.top_k = top_k

    async def query(
        self,
        text: str,
        cluster_data: ClusteringResult | Sequence[Cluster],
        top_k: int | None = None,
    ) -> list[RetrievalHit]:
        """Embed *text* and return the ``top_k`` clusters nearest to it."""
        clusters = cluster_data.clusters if isinstance(cluster_data, ClusteringResult) else list(cluster_data)
        k = self.top_k if top_k is None else top_k
        if not clusters or k <= 0:
            return []

        query_embedding = await asyncio.to_thread(self.provider.embed, text)
        return self.rank(query_embedding, clusters, k)

    @staticmethod
    def rank(query_embedding: Sequence[float], clusters: Sequence[Cluster], top_k: int) -> list[RetrievalHit]:
        """Similarity to each centroid, descending; ties keep cluster id order.

        A non-finite similarity ranks last.
        """
        ordered = sorted(clusters, key=lambda c: c.id)
        hits = [RetrievalHit(cluster=c, similarity=cosine_similarity(query_embedding, c.centroid)) for c in ordered]
        hits.sort(key=lambda h: h.similarity if math.isfinite(h.similarity) else -math.inf, reverse=True)
        logger.debug(f"Ranked {len(hits)} clusters; best={hits[0].similarity:.3f}" if hits else "No clusters to rank")
        return hits[:max(top_k, 0)]
