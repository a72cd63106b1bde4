"""Pydantic schemas for photo embedding generation and visualisation payloads.
Classes:
    GenerateEmbeddingsRequest, GenerateEmbeddingsResponse: Batch generation workflow.
    VisualizationPoint, VisualizationMetadata: Per-photo plot primitives.
    ProjectionSummary, ClusterSummary, EmbeddingVisualizationResponse: Visualisation endpoint payload.
    SimilarPhoto, SimilarPhotosResponse: Nearest-neighbour lookup payload.
"""

from __future__ import annotations
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from app.core.config import SUPPORTED_DIMENSIONS


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class GenerateEmbeddingsRequest(CamelModel):
    photo_ids: Optional[list[str]] = None
    dimension: Optional[int] = None
    all_photos: bool = Field(default=False, alias="all")
    stream: bool = False
    force: bool = False

    @field_validator("dimension")
    @classmethod
    def check_dimension(cls, value: Optional[int]) -> Optional[int]:
        if value is None:
            return None
        if value not in SUPPORTED_DIMENSIONS:
            raise ValueError(f"dimension must be one of {', '.join(str(dim) for dim in SUPPORTED_DIMENSIONS)}")
        return value

    @field_validator("photo_ids")
    @classmethod
    def normalise_photo_ids(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return None
        cleaned = [item.strip() for item in value if item and item.strip()]
        return list(dict.fromkeys(cleaned))

    @property
    def has_target(self) -> bool:
        return self.all_photos or self.photo_ids is not None


class GenerateEmbeddingsResponse(CamelModel):
    generated: int
    failed: int
    failed_ids: list[str] = Field(default_factory=list)
    total_embeddings: int
    skipped: int = 0
    message: str


class VisualizationMetadata(CamelModel):
    date_time: Optional[datetime] = None
    location: Optional[str] = None


class VisualizationPoint(CamelModel):
    photo_id: str
    thumbnail_url: str
    x: float
    y: float
    z: Optional[float] = None
    cluster: int
    metadata: VisualizationMetadata = Field(default_factory=VisualizationMetadata)


class ProjectionSummary(CamelModel):
    method: str
    components: int
    explained_variance_ratio: list[float]
    trustworthiness: Optional[float] = None


class ClusterSummary(CamelModel):
    algo: str
    k: int
    sizes: dict[int, int]
    iterations: int
    converged: bool
    silhouette: Optional[float] = None
    davies_bouldin: Optional[float] = None
    calinski_harabasz: Optional[float] = None


class EmbeddingVisualizationResponse(CamelModel):
    count: int
    total_photos: int
    visualizations: list[VisualizationPoint] = Field(default_factory=list)
    orphaned_embeddings: int = 0
    skipped_dimension: int = 0
    dimension: Optional[int] = None
    message: Optional[str] = None
    projection: Optional[ProjectionSummary] = None
    clustering: Optional[ClusterSummary] = None


class SimilarPhoto(CamelModel):
    photo_id: str
    thumbnail_url: str
    similarity: float


class SimilarPhotosResponse(CamelModel):
    photo_id: str
    results: list[SimilarPhoto] = Field(default_factory=list)
