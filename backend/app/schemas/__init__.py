"""Convenience exports for API schemas.

Re-exports the pydantic models used across the backend so consumers can import from one module.
"""

from .embedding import (
    ClusterSummary,
    EmbeddingVisualizationResponse,
    GenerateEmbeddingsRequest,
    GenerateEmbeddingsResponse,
    ProjectionSummary,
    SimilarPhoto,
    SimilarPhotosResponse,
    VisualizationMetadata,
    VisualizationPoint,
)

__all__ = [
    "GenerateEmbeddingsRequest",
    "GenerateEmbeddingsResponse",
    "VisualizationMetadata",
    "VisualizationPoint",
    "ProjectionSummary",
    "ClusterSummary",
    "EmbeddingVisualizationResponse",
    "SimilarPhoto",
    "SimilarPhotosResponse",
]
