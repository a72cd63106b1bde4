"""Read-side composition of stored embeddings into plottable points.

Classes:
    VisualizationResult: Points plus the projection and clustering details behind them.

Functions:
    assemble_visualization(embeddings, photos, n_components, max_k, max_iter): Join embeddings, layout, clusters, and photo metadata.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence

import numpy as np

from app.models import Photo
from app.schemas import VisualizationMetadata, VisualizationPoint
from app.services.cluster_metrics import ClusterMetricsResult, compute_cluster_metrics
from app.services.clustering import DEFAULT_MAX_CLUSTERS, DEFAULT_MAX_ITER, cluster_embeddings
from app.services.embedding_store import StoredEmbedding
from app.services.projection import ProjectionResult, compute_pca_projection

_LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class VisualizationResult:
    points: list[VisualizationPoint] = field(default_factory=list)
    orphaned: int = 0
    skipped_dimension: int = 0
    dimension: Optional[int] = None
    projection: Optional[ProjectionResult] = None
    clustering: Optional[ClusterMetricsResult] = None


def _thumbnail_for(photo: Photo) -> str:
    return photo.thumbnail_url or photo.image_url or ""


def assemble_visualization(
    embeddings: Sequence[StoredEmbedding],
    photos: Mapping[str, Photo],
    *,
    n_components: int = 3,
    dimension: Optional[int] = None,
    max_k: int = DEFAULT_MAX_CLUSTERS,
    max_iter: int = DEFAULT_MAX_ITER,
) -> VisualizationResult:
    """Build one point per embedding whose parent photo still exists.

    Embeddings without a photo are dropped before projection so they cannot
    influence the layout. Rows are ordered by photo id, which keeps the
    projection and the cluster seeding independent of storage order. Vectors of
    different dimensions share no space, so one dimension group is plotted per
    call: ``dimension`` when given, otherwise the most common one (larger
    dimension on ties). Rows of the other groups are counted in
    ``skipped_dimension``.
    """

    live = sorted((item for item in embeddings if item.photo_id in photos), key=lambda item: item.photo_id)
    orphaned = len(embeddings) - len(live)
    if orphaned:
        _LOGGER.debug("Skipping %s embeddings whose photos no longer exist", orphaned)
    if not live:
        return VisualizationResult(orphaned=orphaned)

    if dimension is None:
        dimensions = [item.dimension for item in live]
        dimension = max(set(dimensions), key=lambda dim: (dimensions.count(dim), dim))
    usable = [item for item in live if item.dimension == dimension]
    skipped_dimension = len(live) - len(usable)
    if skipped_dimension:
        _LOGGER.debug("Plotting %s-d embeddings; %s of another dimension skipped", dimension, skipped_dimension)
    if not usable:
        return VisualizationResult(orphaned=orphaned, skipped_dimension=skipped_dimension, dimension=dimension)

    matrix = np.vstack([item.vector for item in usable]).astype(np.float64)
    projection = compute_pca_projection(matrix, n_components=n_components)
    clusters = cluster_embeddings(matrix, max_k=max_k, max_iter=max_iter)
    metrics = compute_cluster_metrics(matrix, clusters)

    points: list[VisualizationPoint] = []
    for index, item in enumerate(usable):
        photo = photos[item.photo_id]
        coords = projection.coords[index]
        points.append(
            VisualizationPoint(
                photo_id=item.photo_id,
                thumbnail_url=_thumbnail_for(photo),
                x=float(coords[0]),
                y=float(coords[1]),
                z=float(coords[2]) if n_components >= 3 else None,
                cluster=int(clusters.labels[index]),
                metadata=VisualizationMetadata(
                    date_time=photo.captured_at,
                    location=photo.location_id,
                ),
            )
        )

    return VisualizationResult(
        points=points,
        orphaned=orphaned,
        skipped_dimension=skipped_dimension,
        dimension=dimension,
        projection=projection,
        clustering=metrics,
    )
