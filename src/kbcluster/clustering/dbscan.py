"""DBSCAN over cosine distance (1 - similarity)."""

import asyncio
import logging
from typing import Callable

import numpy as np

from ..models import ProgressEvent
from .hierarchical import AlgorithmResult

logger = logging.getLogger(__name__)

UNCLASSIFIED = -1
NOISE = -2
PROGRESS_EVERY = 50


def neighbourhoods(similarity: np.ndarray, epsilon: float) -> list[list[int]]:
    """For each point, the other points within *epsilon* cosine distance, in input order."""
    distance = 1.0 - similarity
    result = []
    for i in range(distance.shape[0]):
        result.append([int(j) for j in np.flatnonzero(distance[i] <= epsilon) if j != i])
    return result


async def dbscan_clustering(
    similarity: np.ndarray,
    epsilon: float,
    min_points: int = 2,
    on_progress: Callable[[ProgressEvent], None] | None = None,
) -> AlgorithmResult:
    """Density-based clustering with an explicit noise bucket.

    A point is a core point when it has at least *min_points* neighbours
    (itself excluded). Clusters grow breadth-first from core points; noise
    reached during expansion becomes a border point of that cluster.
    """
    n = similarity.shape[0]
    neighbours = neighbourhoods(similarity, epsilon)
    labels = [UNCLASSIFIED] * n
    cluster_count = 0

    for i in range(n):
        if i and i % PROGRESS_EVERY == 0:
            if on_progress:
                on_progress(ProgressEvent.of("clustering", i, n))
            await asyncio.sleep(0)

        if labels[i] != UNCLASSIFIED:
            continue

        if len(neighbours[i]) < min_points:
            labels[i] = NOISE
            continue

        cluster_id = cluster_count
        cluster_count += 1
        labels[i] = cluster_id

        seeds = list(neighbours[i])
        queued = set(seeds)
        k = 0
        while k < len(seeds):
            q = seeds[k]
            k += 1
            if labels[q] == NOISE:
                labels[q] = cluster_id
            if labels[q] != UNCLASSIFIED:
                continue
            labels[q] = cluster_id
            if len(neighbours[q]) >= min_points:
                for nn in neighbours[q]:
                    if nn not in queued:
                        queued.add(nn)
                        seeds.append(nn)

    groups: list[list[int]] = [[] for _ in range(cluster_count)]
    noise: list[int] = []
    for idx, label in enumerate(labels):
        if label == NOISE:
            noise.append(idx)
        else:
            groups[label].append(idx)

    logger.debug(f"DBSCAN: {cluster_count} clusters, {len(noise)} noise points")
    return AlgorithmResult(groups=groups, noise=noise, iterations=n)
