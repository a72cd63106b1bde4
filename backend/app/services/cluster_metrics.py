"""Cluster quality computation helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np
from sklearn.metrics import (
    calinski_harabasz_score,
    davies_bouldin_score,
    silhouette_score,
)

from app.services.clustering import ClusterResult


@dataclass(slots=True)
class ClusterMetricsResult:
    algo: str
    n_clusters: int
    sizes: dict[int, int]
    iterations: int
    converged: bool
    inertia: float
    silhouette: Optional[float]
    davies_bouldin: Optional[float]
    calinski_harabasz: Optional[float]


def _safe_index_score(metric_fn, data: np.ndarray, labels: np.ndarray) -> Optional[float]:
    if data.size == 0 or labels.size == 0:
        return None
    unique = np.unique(labels)
    # every score below needs 2 <= n_labels <= n_samples - 1
    if unique.size < 2 or unique.size >= labels.size:
        return None
    try:
        score = metric_fn(data, labels)
    except ValueError:
        return None
    if not np.isfinite(score):
        return None
    return float(score)


def compute_cluster_metrics(vectors: np.ndarray, cluster_result: ClusterResult) -> ClusterMetricsResult:
    data = np.asarray(vectors, dtype=np.float64)
    labels = np.asarray(cluster_result.labels, dtype=int)
    sizes = cluster_result.sizes

    silhouette = _safe_index_score(
        lambda matrix, assigned: silhouette_score(matrix, assigned, metric="euclidean"),
        data,
        labels,
    )
    if silhouette is not None:
        silhouette = float(np.clip(silhouette, -1.0, 1.0))

    return ClusterMetricsResult(
        algo=cluster_result.algo,
        n_clusters=len(sizes),
        sizes=sizes,
        iterations=cluster_result.iterations,
        converged=cluster_result.converged,
        inertia=cluster_result.inertia,
        silhouette=silhouette,
        davies_bouldin=_safe_index_score(davies_bouldin_score, data, labels),
        calinski_harabasz=_safe_index_score(calinski_harabasz_score, data, labels),
    )
