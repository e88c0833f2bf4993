"""Knowledge coverage tracking over a fixed chunk catalog."""

import atexit
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from ..models import Chunk, KnowledgeState
from ..storage.tiered import TieredPersistenceStore

logger = logging.getLogger(__name__)

COVERAGE_WEIGHTS = {
    "chunks": 0.5,
    "categories": 0.2,
    "tags": 0.2,
    "glossary_terms": 0.1,
}


@dataclass(frozen=True)
class KnowledgeCatalog:
    """Everything there is to know: the denominators of the coverage score."""
    chunk_ids: frozenset[str] = frozenset()
    categories: frozenset[str] = frozenset()
    tags: frozenset[str] = frozenset()
    glossary_terms: frozenset[str] = frozenset()
    minimum_totals: tuple[tuple[str, int], ...] = ()

    @classmethod
    def from_chunks(
        cls,
        chunks: Iterable[Chunk],
        minimum_totals: dict[str, int] | None = None,
    ) -> "KnowledgeCatalog":
        """Collect ids, categories, tags and glossary terms from *chunks*.

        ``minimum_totals`` floors a dimension's total, e.g.
        ``{"categories": 8, "tags": 40, "glossary_terms": 50}``.
        """
        ids, categories, tags, terms = set(), set(), set(), set()
        for chunk in chunks:
            ids.add(chunk.id)
            if chunk.metadata.category:
                categories.add(chunk.metadata.category)
            tags.update(chunk.metadata.tags)
            terms.update(chunk.metadata.glossary_terms)

        floors = minimum_totals or {}
        unknown = set(floors) - set(COVERAGE_WEIGHTS)
        if unknown:
            raise ValueError(f"Unknown catalog dimension(s): {', '.join(sorted(unknown))}")
        return cls(
            chunk_ids=frozenset(ids),
            categories=frozenset(categories),
            tags=frozenset(tags),
            glossary_terms=frozenset(terms),
            minimum_totals=tuple(sorted(floors.items())),
        )

    def members(self, dimension: str) -> frozenset[str]:
        return {
            "chunks": self.chunk_ids,
            "categories": self.categories,
            "tags": self.tags,
            "glossary_terms": self.glossary_terms,
        }[dimension]

    def totals(self) -> dict[str, int]:
        floors = dict(self.minimum_totals)
        return {dim: max(len(self.members(dim)), floors.get(dim, 0)) for dim in COVERAGE_WEIGHTS}


def _seen(state: KnowledgeState, dimension: str) -> set[str]:
    return {
        "chunks": state.learned_chunk_ids,
        "categories": state.categories_seen,
        "tags": state.tags_seen,
        "glossary_terms": state.glossary_terms_seen,
    }[dimension]


class KnowledgeProgressTracker:
    """Owns one user's ``KnowledgeState`` and its persistence.

    Construct one per session and pass it to callers; mutation is expected
    from a single owning task.
    """

    def __init__(
        self,
        catalog: KnowledgeCatalog,
        store: TieredPersistenceStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.catalog = catalog
        self.store = store
        self._clock = clock
        self._dirty = False
        self._exit_hook_installed = False
        self._state = (store.load() if store else None) or KnowledgeState()

    @property
    def state(self) -> KnowledgeState:
        return self._state

    @property
    def dirty(self) -> bool:
        return self._dirty

    def _now_ms(self) -> int:
        return int(self._clock().timestamp() * 1000)

    def record_exposure(
        self,
        chunk_ids: Iterable[str] = (),
        categories: Iterable[str] = (),
        tags: Iterable[str] = (),
        glossary_terms: Iterable[str] = (),
    ) -> bool:
        """Mark the given items as seen. Returns True when anything new was learned.

        New knowledge is saved immediately; a repeat exposure only bumps the
        counter and leaves the state dirty for the next autosave.
        """
        state = self._state
        before = self._sizes()

        state.learned_chunk_ids.update(chunk_ids)
        state.categories_seen.update(c for c in categories if c)
        state.tags_seen.update(tags)
        state.glossary_terms_seen.update(glossary_terms)
        state.exposure_count += 1
        state.last_updated = self._now_ms()
        self._dirty = True

        gained = self._sizes() != before
        if gained:
            logger.info(f"New knowledge recorded; coverage now {self.coverage_percentage()}%")
            self.save()
        return gained

    def record_chunks(self, chunks: Sequence[Chunk]) -> bool:
        """Record exposure to *chunks* using their metadata."""
        categories, tags, terms = [], [], []
        for chunk in chunks:
            if chunk.metadata.category:
                categories.append(chunk.metadata.category)
            tags.extend(chunk.metadata.tags)
            terms.extend(chunk.metadata.glossary_terms)
        return self.record_exposure([c.id for c in chunks], categories, tags, terms)

    def _sizes(self) -> tuple[int, ...]:
        return tuple(len(_seen(self._state, dim)) for dim in COVERAGE_WEIGHTS)

    def _ratio(self, dimension: str) -> float:
        total = self.catalog.totals()[dimension]
        if total == 0:
            return 0.0
        return min(1.0, len(_seen(self._state, dimension)) / total)

    def coverage_percentage(self) -> float:
        """Weighted coverage in percent, two decimals, capped at 100."""
        score = sum(weight * self._ratio(dim) for dim, weight in COVERAGE_WEIGHTS.items())
        return min(100.0, round(score * 100, 2))

    def breakdown(self) -> dict[str, Any]:
        totals = self.catalog.totals()
        dimensions = {}
        for dim in COVERAGE_WEIGHTS:
            known = len(_seen(self._state, dim))
            dimensions[dim] = {
                "known": known,
                "total": totals[dim],
                "percentage": round(self._ratio(dim) * 100, 2),
            }
        return {
            "overall": self.coverage_percentage(),
            "dimensions": dimensions,
            "exposure_count": self._state.exposure_count,
        }

    def gaps(self) -> dict[str, set[str]]:
        """Catalog items not yet seen, per dimension."""
        return {dim: set(self.catalog.members(dim)) - _seen(self._state, dim) for dim in COVERAGE_WEIGHTS}

    def save(self) -> bool:
        if self.store is None:
            return False
        saved = self.store.save(self._state)
        if saved:
            self._dirty = False
        return saved

    def save_if_dirty(self) -> bool:
        if not self._dirty:
            return False
        return self.save()

    def reset(self) -> None:
        """Forget everything learned, here and in storage."""
        self._state = KnowledgeState()
        self._dirty = False
        if self.store is not None:
            self.store.reset()

    def install_exit_hook(self) -> None:
        """Flush unsaved state when the interpreter exits."""
        if not self._exit_hook_installed:
            atexit.register(self.save_if_dirty)
            self._exit_hook_installed = True
