import numpy as np
import pytest

from app.services.cluster_metrics import compute_cluster_metrics
from app.services.clustering import (
    adaptive_cluster_count,
    cluster_embeddings,
    farthest_point_seeds,
    run_kmeans,
)


@pytest.mark.parametrize(
    ("count", "expected"),
    [(0, 0), (1, 1), (2, 1), (4, 1), (25, 4), (100, 7), (1000, 20)],
)
def test_adaptive_cluster_count(count, expected):
    assert adaptive_cluster_count(count) == expected


def test_adaptive_cluster_count_never_exceeds_point_count():
    for count in range(1, 60):
        assert 1 <= adaptive_cluster_count(count) <= count
    assert adaptive_cluster_count(1000, max_k=8) == 8


def test_farthest_point_seeds_start_at_first_row():
    data = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 1.0], [5.0, 0.0]])
    assert farthest_point_seeds(data, 1) == [0]
    assert farthest_point_seeds(data, 2) == [0, 1]
    assert farthest_point_seeds(data, 3) == [0, 1, 3]


def test_farthest_point_seeds_prefer_lower_index_on_ties():
    data = np.array([[0.0, 0.0], [0.0, 2.0], [2.0, 0.0], [0.0, -2.0]])
    assert farthest_point_seeds(data, 2) == [0, 1]


def _blobs(per_blob: int, dim: int = 8) -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(11)
    centers = np.eye(4, dim) * 100.0
    rows = []
    truth = []
    for blob, center in enumerate(centers):
        rows.append(center + rng.normal(scale=0.1, size=(per_blob, dim)))
        truth.extend([blob] * per_blob)
    return np.vstack(rows), np.asarray(truth)


def test_kmeans_recovers_well_separated_blobs():
    data, truth = _blobs(8)
    result = cluster_embeddings(data)

    assert result.k == 4
    assert result.converged
    assert result.iterations <= 50
    assert len(set(result.labels.tolist())) == 4
    for blob in range(4):
        assert len(set(result.labels[truth == blob].tolist())) == 1
    assert sorted(result.sizes.values()) == [8, 8, 8, 8]


def test_kmeans_is_deterministic():
    rng = np.random.default_rng(5)
    data = rng.normal(size=(60, 12))
    first = cluster_embeddings(data)
    second = cluster_embeddings(data)
    assert np.array_equal(first.labels, second.labels)
    assert np.allclose(first.centroids, second.centroids)
    assert first.inertia == pytest.approx(second.inertia)


def test_kmeans_labels_stay_in_range():
    rng = np.random.default_rng(9)
    data = rng.normal(size=(50, 4))
    result = run_kmeans(data, 5, max_iter=3)
    assert result.labels.shape == (50,)
    assert result.labels.min() >= 0
    assert result.labels.max() < 5
    assert result.iterations <= 3


def test_kmeans_equidistant_point_joins_lower_cluster():
    data = np.array([[-1.0, 0.0], [1.0, 0.0], [0.0, 0.0]])
    result = run_kmeans(data, 2, max_iter=1)
    # seeds are rows 0 and 1; row 2 sits exactly between them
    assert result.labels.tolist() == [0, 1, 0]


def test_kmeans_single_point_and_empty_input():
    single = cluster_embeddings(np.array([[0.3, 0.4]]))
    assert single.labels.tolist() == [0]
    assert single.k == 1

    empty = cluster_embeddings(np.zeros((0, 4)))
    assert empty.labels.size == 0
    assert empty.k == 0
    assert empty.sizes == {}


def test_kmeans_with_fewer_points_than_clusters_gives_each_point_its_own_label():
    data = np.array([[0.0, 1.0], [1.0, 0.0]])
    result = run_kmeans(data, 5)
    assert result.labels.tolist() == [0, 1]
    assert result.k == 2


def test_cluster_metrics_skip_single_cluster_scores():
    data = np.array([[0.0, 0.0], [0.1, 0.0], [0.0, 0.1]])
    clusters = cluster_embeddings(data)
    metrics = compute_cluster_metrics(data, clusters)
    assert metrics.n_clusters == 1
    assert metrics.silhouette is None
    assert metrics.davies_bouldin is None


def test_cluster_metrics_score_separated_blobs():
    data, _ = _blobs(8)
    clusters = cluster_embeddings(data)
    metrics = compute_cluster_metrics(data, clusters)
    assert metrics.n_clusters == 4
    assert metrics.silhouette is not None and metrics.silhouette > 0.9
    assert metrics.calinski_harabasz is not None and metrics.calinski_harabasz > 0
    assert metrics.sizes == clusters.sizes
