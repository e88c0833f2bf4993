"""Tests for the cosine similarity primitive and vector helpers."""

import numpy as np
import pytest

from kbcluster.similarity import centroid, cosine_similarity, mean_pairwise_similarity, similarity_matrix

from conftest import two_group_embeddings


def test_cosine_identical_and_orthogonal():
    assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)


def test_cosine_zero_vector():
    assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0


def test_cosine_dimension_mismatch():
    with pytest.raises(ValueError):
        cosine_similarity([1, 2], [1, 2, 3])


def test_similarity_matrix_matches_pairwise():
    vectors = two_group_embeddings()
    sims = similarity_matrix(vectors)
    assert sims.shape == (6, 6)
    assert sims[0, 1] == pytest.approx(0.97)
    assert sims[3, 5] == pytest.approx(0.97)
    assert sims[0, 4] == pytest.approx(0.40)
    assert sims[2, 3] == pytest.approx(cosine_similarity(vectors[2], vectors[3]))


def test_centroid_is_mean():
    assert centroid([[1, 2], [3, 4]]) == [2.0, 3.0]
    assert centroid([]) == []


def test_mean_pairwise_similarity():
    assert mean_pairwise_similarity([[1, 0]]) == 1.0
    vectors = two_group_embeddings()[:3]
    assert mean_pairwise_similarity(vectors) == pytest.approx(0.97)
    assert np.isclose(mean_pairwise_similarity([[1, 0], [0, 1]]), 0.0)
