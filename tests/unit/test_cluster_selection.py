"""Unit tests for k-selection and silhouette scoring."""

from __future__ import annotations

import numpy as np
import pytest
from scipy import sparse

from keyword_pipeline.schemas.pipeline import ClusteringConfig
from keyword_pipeline.services.cluster_selection import (
    CandidateScore,
    ClusterSelector,
    run_kmeans,
    silhouette_score,
)


def _blobs(points_per_blob: int = 10, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    centers = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
    return np.vstack(
        [center + rng.normal(scale=0.3, size=(points_per_blob, 2)) for center in centers]
    )


@pytest.mark.parametrize(("n", "expected"), [(1, 2), (100, 2), (899, 2), (900, 3), (10_000, 10)])
def test_k_min_grows_with_square_root_of_size(n: int, expected: int) -> None:
    assert ClusterSelector.k_min(n) == expected


@pytest.mark.parametrize(
    ("n", "expected"),
    [(30, 10), (50, 15), (600, 35), (1500, 80), (1200, 80), (5000, 150), (2400, 120)],
)
def test_tiered_k_max(n: int, expected: int) -> None:
    assert ClusterSelector.tiered_k_max(n) == expected


@pytest.mark.parametrize(("n", "expected"), [(600, 8), (1500, 15), (2500, 25), (4000, 40)])
def test_business_minimum_tiers(n: int, expected: int) -> None:
    assert ClusterSelector.business_minimum(n) == expected


def test_silhouette_matches_hand_computed_value() -> None:
    points = np.array([[0.0], [1.0], [3.0]])
    labels = np.array([0, 0, 1])

    # point 0: a=1, b=3; point 1: a=1, b=2; point 2 is a singleton: a=0, b=2.5
    expected = ((3 - 1) / 3 + (2 - 1) / 2 + 1.0) / 3

    assert silhouette_score(points, labels) == pytest.approx(expected)


def test_silhouette_of_single_cluster_is_zero() -> None:
    points = np.array([[0.0], [1.0], [2.0]])

    assert silhouette_score(points, np.zeros(3, dtype=int)) == 0.0


def test_silhouette_accepts_sparse_input() -> None:
    points = _blobs()
    labels = np.repeat([0, 1, 2], 10)

    dense_score = silhouette_score(points, labels)
    sparse_score = silhouette_score(sparse.csr_matrix(points), labels)

    assert dense_score > 0.9
    assert sparse_score == pytest.approx(dense_score)


def test_silhouette_subsamples_large_inputs_deterministically() -> None:
    points = _blobs(points_per_blob=40)
    labels = np.repeat([0, 1, 2], 40)

    first = silhouette_score(points, labels, sample_size=30, random_seed=7)
    second = silhouette_score(points, labels, sample_size=30, random_seed=7)

    assert first == second
    assert first > 0.9


def test_run_kmeans_returns_assignment_per_point() -> None:
    points = _blobs()

    fit = run_kmeans(points, 3, random_seed=42, n_init=5)

    assert fit.labels.shape == (30,)
    assert fit.k == 3
    assert fit.inertia > 0
    # Each blob lands in its own cluster
    assert len({tuple(fit.labels[i : i + 10]) for i in range(0, 30, 10)}) == 3
    for start in range(0, 30, 10):
        assert len(set(fit.labels[start : start + 10].tolist())) == 1


def test_combined_score_weights_components() -> None:
    candidate = CandidateScore(
        k=4,
        silhouette=0.6,
        inertia=10.0,
        elbow_score=0.5,
        balance_bonus=0.15,
        granularity_bonus=0.1,
    )

    assert candidate.combined_score == pytest.approx(0.5 * 0.6 + 0.3 * 0.5 + 0.15 + 0.1)


def test_select_finds_natural_cluster_count() -> None:
    selector = ClusterSelector(ClusteringConfig(random_seed=42))

    result = selector.select(_blobs())

    assert result.k == 3
    assert result.k_min == 2
    assert result.k_max == 10
    assert result.candidates[0].k == 2
    assert result.candidates[0].elbow_score == 0.0
    assert result.best_candidate is not None
    assert result.business_minimum_applied is False


def test_select_is_deterministic_for_fixed_seed() -> None:
    points = _blobs(seed=3)
    selector = ClusterSelector(ClusteringConfig(random_seed=11))

    first = selector.select(points)
    second = selector.select(points)

    assert first.k == second.k
    assert [c.combined_score for c in first.candidates] == [
        c.combined_score for c in second.candidates
    ]


def test_select_falls_back_to_single_cluster_for_tiny_inputs() -> None:
    selector = ClusterSelector()

    result = selector.select(np.array([[0.0], [1.0], [2.0]]))

    assert result.k == 1
    assert result.candidates == []


def test_select_raises_k_to_business_minimum_on_large_inputs() -> None:
    points = np.random.default_rng(0).uniform(size=(600, 2))
    selector = ClusterSelector(ClusteringConfig(max_clusters=10, random_seed=42))

    result = selector.select(points)

    assert 8 <= result.k <= 10
    assert max(c.k for c in result.candidates) <= 10
