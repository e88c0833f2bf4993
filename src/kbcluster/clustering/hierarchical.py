"""Hierarchical agglomerative clustering over a precomputed similarity matrix.

Every chunk starts as its own cluster; the most similar pair is merged until
the best remaining similarity drops below the threshold. Linkage values are
maintained incrementally (Lance-Williams updates), which is exact for the
three supported linkages:

  single    max pairwise similarity     max(s_ik, s_jk)
  complete  min pairwise similarity     min(s_ik, s_jk)
  average   mean pairwise similarity    (n_i * s_ik + n_j * s_jk) / (n_i + n_j)

Each merge step scans all active pairs, so a run is O(n^2) per merge and
O(n^3) overall. That is fine for the tens-to-low-hundreds of chunks a
knowledge base carries; a much larger catalog needs an approximate
nearest-neighbour approach instead.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable

import numpy as np

from ..models import ProgressEvent

logger = logging.getLogger(__name__)

PROGRESS_EVERY = 100


@dataclass
class MergeStep:
    iteration: int
    left: str
    right: str
    similarity: float
    new_size: int


@dataclass
class AlgorithmResult:
    """Index groups produced by a clustering algorithm."""
    groups: list[list[int]]
    noise: list[int] = field(default_factory=list)
    iterations: int = 0
    merge_history: list[MergeStep] = field(default_factory=list)
    capped: bool = False


def _combine(linkage: str, row_a: np.ndarray, row_b: np.ndarray, size_a: int, size_b: int) -> np.ndarray:
    if linkage == "single":
        return np.maximum(row_a, row_b)
    if linkage == "complete":
        return np.minimum(row_a, row_b)
    return (size_a * row_a + size_b * row_b) / (size_a + size_b)


async def hierarchical_clustering(
    similarity: np.ndarray,
    threshold: float,
    linkage: str = "average",
    on_progress: Callable[[ProgressEvent], None] | None = None,
    max_iterations: int | None = None,
) -> AlgorithmResult:
    """Agglomerate indices 0..n-1 of *similarity* into groups.

    Ties are resolved by scanning pairs in input order, so identical input
    always yields identical groups. Groups are returned ordered by their
    first member, members ascending.

    Every scan either merges two groups or ends the run, so at most n scans
    happen. *max_iterations* (default 2n) bounds the scans anyway; hitting
    it keeps the groups built so far and sets ``capped``.
    """
    n = similarity.shape[0]
    link = np.array(similarity, dtype=float, copy=True)
    np.fill_diagonal(link, -np.inf)

    # A group is represented by the row of its lowest member index.
    members: dict[int, list[int]] = {i: [i] for i in range(n)}
    labels: dict[int, str] = {i: str(i) for i in range(n)}
    active = np.ones(n, dtype=bool)

    history: list[MergeStep] = []
    iteration = 0
    if max_iterations is None:
        max_iterations = 2 * n
    capped = False

    while active.sum() > 1:
        if iteration >= max_iterations:
            logger.warning(f"Hierarchical clustering stopped after {iteration} iterations; keeping current groups")
            capped = True
            break
        iteration += 1

        reps = np.flatnonzero(active)
        sub = link[np.ix_(reps, reps)]
        sub[np.tril_indices(len(reps))] = -np.inf
        flat = int(np.argmax(sub))
        a, b = divmod(flat, len(reps))
        best = float(sub[a, b])

        if best < threshold:
            break

        ra, rb = int(reps[a]), int(reps[b])
        size_a, size_b = len(members[ra]), len(members[rb])

        merged_row = _combine(linkage, link[ra], link[rb], size_a, size_b)
        link[ra, :] = merged_row
        link[:, ra] = merged_row
        link[ra, ra] = -np.inf
        active[rb] = False

        members[ra] = sorted(members[ra] + members.pop(rb))
        history.append(MergeStep(iteration, labels[ra], labels[rb], best, len(members[ra])))
        labels[ra] = f"{labels[ra]}_{labels.pop(rb)}"

        if iteration % PROGRESS_EVERY == 0:
            if on_progress:
                on_progress(ProgressEvent.of("clustering", iteration, n))
            await asyncio.sleep(0)

    groups = [members[r] for r in sorted(members)]
    logger.debug(f"Hierarchical clustering: {len(history)} merges, {len(groups)} groups")
    return AlgorithmResult(groups=groups, iterations=iteration, merge_history=history, capped=capped)
