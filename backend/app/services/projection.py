"""Dimensionality reduction for photo embedding layouts.

Classes:
    ProjectionResult: Plot coordinates plus diagnostics for a projected embedding set.

Functions:
    compute_pca_projection(vectors, n_components): Project embeddings onto their top principal directions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

import numpy as np
from numpy.typing import ArrayLike
from sklearn.manifold import trustworthiness
from sklearn.utils.extmath import svd_flip

_LOGGER = logging.getLogger(__name__)

SUPPORTED_COMPONENTS = (2, 3)
_TRUSTWORTHINESS_NEIGHBORS = 5


@dataclass(slots=True)
class ProjectionResult:
    coords: np.ndarray
    n_components: int
    explained_variance_ratio: list[float] = field(default_factory=list)
    trustworthiness: Optional[float] = None
    method: str = "pca"

    @property
    def point_count(self) -> int:
        return int(self.coords.shape[0])


def _as_matrix(vectors: ArrayLike) -> np.ndarray:
    data = np.asarray(vectors, dtype=np.float64)
    if data.ndim == 1:
        data = data.reshape(-1, 1) if data.size else data.reshape(0, 0)
    return data


def _rescale_axes(coords: np.ndarray) -> np.ndarray:
    """Min-max scale every axis into [-1, 1]; flat axes collapse to 0."""

    scaled = np.zeros_like(coords)
    if coords.shape[0] == 0:
        return scaled
    mins = coords.min(axis=0)
    maxs = coords.max(axis=0)
    spans = maxs - mins
    for axis in range(coords.shape[1]):
        span = spans[axis]
        if span > 0 and np.isfinite(span):
            scaled[:, axis] = 2.0 * (coords[:, axis] - mins[axis]) / span - 1.0
    return scaled


def _layout_trustworthiness(data: np.ndarray, coords: np.ndarray) -> Optional[float]:
    count = data.shape[0]
    neighbors = min(_TRUSTWORTHINESS_NEIGHBORS, (count - 1) // 2)
    if neighbors < 1:
        return None
    try:
        score = trustworthiness(data, coords, n_neighbors=neighbors)
    except ValueError:
        return None
    return float(score) if np.isfinite(score) else None


def compute_pca_projection(vectors: ArrayLike, n_components: int = 3) -> ProjectionResult:
    """Project embeddings to 2D or 3D plotting coordinates with PCA.

    The centered N x D matrix is decomposed with a thin SVD, so no D x D
    covariance matrix is formed. Each principal direction is sign-normalised
    so its largest-magnitude entry is positive, which makes repeated calls on
    the same input produce the same layout. Axes the data cannot fill
    (N < k or rank-deficient input) stay at 0.
    """

    if n_components not in SUPPORTED_COMPONENTS:
        raise ValueError("n_components must be 2 or 3")

    data = _as_matrix(vectors)
    count = data.shape[0]
    coords = np.zeros((count, n_components), dtype=np.float64)

    if count == 0:
        return ProjectionResult(coords=coords, n_components=n_components)
    if count == 1 or data.ndim != 2 or data.shape[1] == 0:
        return ProjectionResult(
            coords=coords,
            n_components=n_components,
            explained_variance_ratio=[0.0] * n_components,
        )

    centered = data - data.mean(axis=0, keepdims=True)
    u, singular_values, vt = np.linalg.svd(centered, full_matrices=False)
    u, vt = svd_flip(u, vt, u_based_decision=False)

    tolerance = singular_values.max(initial=0.0) * max(centered.shape) * np.finfo(np.float64).eps
    rank = int(np.sum(singular_values > tolerance))
    effective = min(n_components, rank)
    if effective > 0:
        coords[:, :effective] = centered @ vt[:effective].T

    total_variance = float(np.sum(singular_values**2))
    ratios = [0.0] * n_components
    if total_variance > 0:
        for axis in range(effective):
            ratios[axis] = float(singular_values[axis] ** 2 / total_variance)

    scaled = _rescale_axes(coords)
    _LOGGER.debug("PCA projection of %s points (rank %s) onto %s axes", count, rank, n_components)

    return ProjectionResult(
        coords=scaled,
        n_components=n_components,
        explained_variance_ratio=ratios,
        trustworthiness=_layout_trustworthiness(data, scaled) if effective > 0 else None,
    )
