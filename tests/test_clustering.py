"""Tests for the clustering engine and both algorithms."""

import logging

import numpy as np
import pytest

from kbcluster.clustering.dbscan import dbscan_clustering
from kbcluster.clustering.engine import ClusteringEngine
from kbcluster.clustering.hierarchical import hierarchical_clustering
from kbcluster.config import ClusteringOptions
from kbcluster.models import Chunk

from conftest import TEXTS, FakeEmbeddingProvider, FlakyEmbeddingProvider, two_group_embeddings


def _chain_matrix():
    # 0~1 and 1~2 are close, 0 and 2 are not
    return np.array([
        [1.0, 0.95, 0.50],
        [0.95, 1.0, 0.95],
        [0.50, 0.95, 1.0],
    ])


@pytest.mark.asyncio
async def test_two_semantic_groups(two_group_chunks):
    engine = ClusteringEngine(similarity_threshold=0.92, min_cluster_size=2)
    result = await engine.cluster(two_group_chunks)

    assert len(result.clusters) == 2
    assert [c.size for c in result.clusters] == [3, 3]
    assert result.clusters[0].member_chunk_ids == ["c0", "c1", "c2"]
    assert result.clusters[1].member_chunk_ids == ["c3", "c4", "c5"]
    assert result.unclustered_chunk_ids == []

    vectors = two_group_embeddings()
    assert np.allclose(result.clusters[0].centroid, np.mean(vectors[:3], axis=0))
    assert np.allclose(result.clusters[1].centroid, np.mean(vectors[3:], axis=0))
    assert result.clusters[0].coherence_score == pytest.approx(0.97)


@pytest.mark.asyncio
@pytest.mark.parametrize("linkage", ["single", "complete", "average"])
async def test_every_chunk_accounted_for(two_group_chunks, linkage):
    engine = ClusteringEngine(linkage_type=linkage)
    result = await engine.cluster(two_group_chunks)

    clustered = [cid for c in result.clusters for cid in c.member_chunk_ids]
    assert len(clustered) == len(set(clustered))
    assert sorted(clustered + result.unclustered_chunk_ids) == sorted(c.id for c in two_group_chunks)
    assert set(result.assignments) == set(clustered)
    for cluster in result.clusters:
        assert cluster.size == len(cluster.member_chunk_ids)
        assert 2 <= cluster.size <= 50
        for cid in cluster.member_chunk_ids:
            assert result.assignments[cid] == cluster.id


@pytest.mark.asyncio
async def test_clustering_is_deterministic(two_group_chunks):
    engine = ClusteringEngine()
    first = await engine.cluster(two_group_chunks)
    second = await ClusteringEngine().cluster(two_group_chunks)
    assert [c.member_chunk_ids for c in first.clusters] == [c.member_chunk_ids for c in second.clusters]
    assert first.assignments == second.assignments


@pytest.mark.asyncio
async def test_linkage_changes_chaining():
    sims = _chain_matrix()
    single = await hierarchical_clustering(sims, threshold=0.92, linkage="single")
    complete = await hierarchical_clustering(sims, threshold=0.92, linkage="complete")
    average = await hierarchical_clustering(sims, threshold=0.92, linkage="average")

    assert single.groups == [[0, 1, 2]]
    assert complete.groups == [[0, 1], [2]]
    assert average.groups == [[0, 1], [2]]


@pytest.mark.asyncio
async def test_iteration_cap_keeps_partial_groups(caplog):
    sims = _chain_matrix()
    with caplog.at_level(logging.WARNING):
        result = await hierarchical_clustering(sims, threshold=0.92, linkage="single", max_iterations=1)

    assert result.capped is True
    assert result.iterations == 1
    assert result.groups == [[0, 1], [2]]
    assert len(result.merge_history) == 1
    assert "stopped after 1 iterations" in caplog.text

    full = await hierarchical_clustering(sims, threshold=0.92, linkage="single")
    assert full.capped is False
    assert full.iterations <= sims.shape[0]


@pytest.mark.asyncio
async def test_merge_history_recorded(two_group_chunks):
    result = await ClusteringEngine().cluster(two_group_chunks)
    history = result.metadata["merge_history"]
    assert len(history) == 4
    assert history[0]["similarity"] == pytest.approx(0.97)
    assert all(step["similarity"] >= 0.92 for step in history)
    assert sorted(step["new_size"] for step in history) == [2, 2, 3, 3]
    assert result.metadata["algorithm"] == "hierarchical"


@pytest.mark.asyncio
async def test_dbscan_marks_noise(two_group_chunks):
    outlier = Chunk(id="lonely", text="Completely unrelated", embedding=(0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0, 1.0))
    engine = ClusteringEngine(algorithm="dbscan")
    result = await engine.cluster(two_group_chunks + [outlier])

    assert [c.member_chunk_ids for c in result.clusters] == [["c0", "c1", "c2"], ["c3", "c4", "c5"]]
    assert result.unclustered_chunk_ids == ["lonely"]
    assert result.metadata["noise_chunk_ids"] == ["lonely"]
    assert result.metadata["epsilon"] == pytest.approx(0.08)


@pytest.mark.asyncio
async def test_dbscan_promotes_noise_to_border():
    # point 0 has a single neighbour (3) so it is noise when first visited,
    # then joins the cluster grown from 1, 2 and 3.
    sims = np.array([
        [1.0, 0.0, 0.0, 0.95],
        [0.0, 1.0, 0.95, 0.95],
        [0.0, 0.95, 1.0, 0.95],
        [0.95, 0.95, 0.95, 1.0],
    ])
    result = await dbscan_clustering(sims, epsilon=0.08, min_points=2)
    assert result.groups == [[0, 1, 2, 3]]
    assert result.noise == []


@pytest.mark.asyncio
async def test_max_clusters_dissolves_extra(two_group_chunks):
    engine = ClusteringEngine(max_clusters=1)
    result = await engine.cluster(two_group_chunks)
    assert len(result.clusters) == 1
    assert result.clusters[0].member_chunk_ids == ["c0", "c1", "c2"]
    assert result.unclustered_chunk_ids == ["c3", "c4", "c5"]


@pytest.mark.asyncio
async def test_size_filter_moves_members_to_unclustered(two_group_chunks):
    engine = ClusteringEngine(min_cluster_size=4)
    result = await engine.cluster(two_group_chunks)
    assert result.clusters == []
    assert len(result.unclustered_chunk_ids) == 6
    assert result.statistics.unclustered == 6


@pytest.mark.asyncio
async def test_missing_embeddings_generated_with_progress():
    provider = FakeEmbeddingProvider(fixed=dict(zip(TEXTS, two_group_embeddings())))
    chunks = [Chunk(id=f"c{i}", text=t) for i, t in enumerate(TEXTS)]
    events = []

    result = await ClusteringEngine(provider).cluster(chunks, on_progress=events.append)

    assert len(provider.calls) == 6
    assert len(result.clusters) == 2
    stages = [e.stage for e in events]
    assert stages[0] == "embeddings"
    assert stages[-1] == "clustering"
    assert events[-1].percentage == 100
    assert all(0 <= e.percentage <= 100 for e in events)
    embedding_events = [e for e in events if e.stage == "embeddings"]
    assert embedding_events[-1].current == embedding_events[-1].total == 6


@pytest.mark.asyncio
async def test_embedding_failure_excludes_chunk(two_group_chunks):
    provider = FlakyEmbeddingProvider()
    broken = Chunk(id="bad", text="FAIL to embed this")
    result = await ClusteringEngine(provider).cluster(two_group_chunks + [broken])

    assert result.failed_chunk_ids == ["bad"]
    assert "bad" in result.unclustered_chunk_ids
    assert len(result.clusters) == 2
    assert result.statistics.total_chunks == 7


@pytest.mark.asyncio
async def test_no_provider_counts_as_failure(two_group_chunks):
    result = await ClusteringEngine().cluster(two_group_chunks + [Chunk(id="raw", text="no vector")])
    assert result.failed_chunk_ids == ["raw"]
    assert len(result.clusters) == 2


@pytest.mark.asyncio
async def test_dimension_mismatch_excluded(two_group_chunks):
    odd = Chunk(id="odd", text="short vector", embedding=(1.0, 0.0, 0.0))
    result = await ClusteringEngine().cluster(two_group_chunks + [odd])
    assert result.failed_chunk_ids == ["odd"]
    assert "odd" in result.unclustered_chunk_ids


@pytest.mark.asyncio
async def test_dimension_reference_is_majority_not_first(two_group_chunks):
    stale = Chunk(id="stale", text="embedded by an older model", embedding=(1.0, 0.0, 0.0))
    result = await ClusteringEngine().cluster([stale] + two_group_chunks)

    assert result.failed_chunk_ids == ["stale"]
    assert len(result.clusters) == 2
    assert sorted(cid for c in result.clusters for cid in c.member_chunk_ids) == [f"c{i}" for i in range(6)]


@pytest.mark.asyncio
async def test_empty_embedding_counts_as_failure(two_group_chunks):
    provider = FakeEmbeddingProvider(fixed={"nothing to say": []})
    result = await ClusteringEngine(provider).cluster(two_group_chunks + [Chunk(id="blank", text="nothing to say")])

    assert result.failed_chunk_ids == ["blank"]
    assert "blank" in result.unclustered_chunk_ids
    assert len(result.clusters) == 2


@pytest.mark.asyncio
async def test_fewer_than_two_chunks(two_group_chunks):
    result = await ClusteringEngine().cluster(two_group_chunks[:1])
    assert result.clusters == []
    assert result.unclustered_chunk_ids == ["c0"]
    assert result.statistics.total_chunks == 1
    assert result.statistics.unclustered == 1


@pytest.mark.asyncio
async def test_duplicate_ids_rejected(two_group_chunks):
    with pytest.raises(ValueError, match="Duplicate"):
        await ClusteringEngine().cluster(two_group_chunks + [two_group_chunks[0]])


def test_invalid_options_fail_fast():
    with pytest.raises(ValueError, match="min_cluster_size"):
        ClusteringEngine(min_cluster_size=5, max_cluster_size=2)
    with pytest.raises(ValueError, match="algorithm"):
        ClusteringEngine(algorithm="kmeans")


def test_engine_stats():
    engine = ClusteringEngine(options=ClusteringOptions(algorithm="dbscan", dbscan_epsilon=0.1))
    stats = engine.stats()
    assert stats["algorithm"] == "dbscan"
    assert stats["epsilon"] == 0.1
