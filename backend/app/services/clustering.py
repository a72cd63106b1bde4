"""Adaptive K-means clustering over full-dimensional photo embeddings.

Classes:
    ClusterResult: Labels, centroids, and convergence details of a clustering pass.

Functions:
    adaptive_cluster_count(count, max_k): Pick K from the dataset size.
    farthest_point_seeds(data, k): Deterministic centroid seeding.
    run_kmeans(vectors, k, max_iter): Lloyd iterations from farthest-point seeds.
    cluster_embeddings(vectors, max_k, max_iter): Adaptive-K entry point used by the visualisation layer.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.typing import ArrayLike

_LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_CLUSTERS = 20
DEFAULT_MAX_ITER = 50


@dataclass(slots=True)
class ClusterResult:
    labels: np.ndarray
    centroids: np.ndarray
    k: int
    iterations: int
    converged: bool
    inertia: float
    algo: str = "kmeans"

    @property
    def sizes(self) -> dict[int, int]:
        if self.labels.size == 0:
            return {}
        values, counts = np.unique(self.labels, return_counts=True)
        return {int(label): int(total) for label, total in zip(values, counts)}


def adaptive_cluster_count(count: int, max_k: int = DEFAULT_MAX_CLUSTERS) -> int:
    """Return ``clamp(round(sqrt(count / 2)), 1, max_k)``, never above ``count``."""

    if count <= 0:
        return 0
    k = int(round(math.sqrt(count / 2)))
    k = max(1, min(k, max_k))
    return min(k, count)


def _squared_distances(data: np.ndarray, centroids: np.ndarray) -> np.ndarray:
    distances = np.empty((data.shape[0], centroids.shape[0]), dtype=np.float64)
    for index, centroid in enumerate(centroids):
        diff = data - centroid
        distances[:, index] = np.einsum("ij,ij->i", diff, diff)
    return distances


def farthest_point_seeds(data: np.ndarray, k: int) -> list[int]:
    """Indices of ``k`` seed points chosen by farthest-point sampling.

    The first seed is row 0; every further seed is the unchosen row with the
    largest minimum distance to the seeds picked so far, lowest index first
    on ties.
    """

    count = data.shape[0]
    if k <= 0 or count == 0:
        return []
    chosen = [0]
    min_dist = _squared_distances(data, data[[0]])[:, 0]
    min_dist[0] = -1.0
    while len(chosen) < min(k, count):
        candidate = int(np.argmax(min_dist))
        chosen.append(candidate)
        fresh = _squared_distances(data, data[[candidate]])[:, 0]
        min_dist = np.minimum(min_dist, fresh)
        min_dist[chosen] = -1.0
    return chosen


def run_kmeans(vectors: ArrayLike, k: int, *, max_iter: int = DEFAULT_MAX_ITER) -> ClusterResult:
    data = np.asarray(vectors, dtype=np.float64)
    count = data.shape[0] if data.ndim == 2 else 0

    if count == 0 or k <= 0:
        width = data.shape[1] if data.ndim == 2 else 0
        return ClusterResult(
            labels=np.zeros(0, dtype=int),
            centroids=np.zeros((0, width)),
            k=0,
            iterations=0,
            converged=True,
            inertia=0.0,
        )

    if count <= k:
        return ClusterResult(
            labels=np.arange(count, dtype=int),
            centroids=data.copy(),
            k=count,
            iterations=0,
            converged=True,
            inertia=0.0,
        )

    centroids = data[farthest_point_seeds(data, k)].copy()
    labels: Optional[np.ndarray] = None
    converged = False
    iterations = 0

    for iterations in range(1, max_iter + 1):
        # argmin returns the first minimum, so ties go to the lower centroid index
        assigned = np.argmin(_squared_distances(data, centroids), axis=1)
        if labels is not None and np.array_equal(assigned, labels):
            converged = True
            break
        labels = assigned
        for cluster in range(k):
            members = data[labels == cluster]
            if members.shape[0]:
                centroids[cluster] = members.mean(axis=0)

    final_distances = _squared_distances(data, centroids)
    if labels is None:
        labels = np.argmin(final_distances, axis=1)
    inertia = float(final_distances[np.arange(count), labels].sum())

    return ClusterResult(
        labels=labels.astype(int),
        centroids=centroids,
        k=k,
        iterations=iterations,
        converged=converged,
        inertia=inertia,
    )


def cluster_embeddings(
    vectors: ArrayLike,
    *,
    max_k: int = DEFAULT_MAX_CLUSTERS,
    max_iter: int = DEFAULT_MAX_ITER,
) -> ClusterResult:
    data = np.asarray(vectors, dtype=np.float64)
    count = data.shape[0] if data.ndim == 2 else 0
    k = adaptive_cluster_count(count, max_k=max_k)
    result = run_kmeans(data, k, max_iter=max_iter)
    _LOGGER.debug(
        "K-means: %s clusters from %s photos in %s iterations (converged=%s)",
        result.k,
        count,
        result.iterations,
        result.converged,
    )
    return result
