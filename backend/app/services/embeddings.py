"""High level orchestration for photo embeddings.

Classes:
    WorkSet: Photos selected for a generation request plus how many were skipped.
    EmbeddingService: Builds work sets, runs batch generation, and answers visualisation and similarity queries.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from app.core.config import Settings, get_settings
from app.schemas import (
    ClusterSummary,
    EmbeddingVisualizationResponse,
    GenerateEmbeddingsRequest,
    GenerateEmbeddingsResponse,
    ProjectionSummary,
    SimilarPhoto,
    SimilarPhotosResponse,
)
from app.services.batch import BatchEvent, BatchItem, BatchOrchestrator
from app.services.embedding_generator import EmbeddingGenerator
from app.services.embedding_store import SQLModelEmbeddingStore
from app.services.photo_directory import PhotoDirectory
from app.services.visualization import assemble_visualization
from app.utils.vectors import cosine_similarities

_LOGGER = logging.getLogger(__name__)

NO_EMBEDDINGS_MESSAGE = "no embeddings yet"
NOTHING_TO_PROCESS_MESSAGE = "No new photos to process (all already have embeddings)"


@dataclass(slots=True)
class WorkSet:
    items: list[BatchItem] = field(default_factory=list)
    skipped: int = 0


class EmbeddingService:
    def __init__(
        self,
        generator: EmbeddingGenerator,
        store: SQLModelEmbeddingStore,
        photos: PhotoDirectory,
        *,
        settings: Optional[Settings] = None,
        orchestrator: Optional[BatchOrchestrator] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store
        self._photos = photos
        self._orchestrator = orchestrator or BatchOrchestrator(
            generator,
            store,
            concurrency_limit=self._settings.embedding_concurrency_limit,
            strategy=self._settings.embedding_batch_strategy,
        )

    @property
    def orchestrator(self) -> BatchOrchestrator:
        return self._orchestrator

    def resolve_dimension(self, request: GenerateEmbeddingsRequest) -> int:
        return request.dimension or self._settings.embedding_default_dimension

    async def build_work_set(self, user_id: str, request: GenerateEmbeddingsRequest) -> WorkSet:
        if not request.has_target:
            raise ValueError("Provide photoIds array or set all=true")

        existing = set() if request.force else await self._store.existing_photo_ids(user_id)

        if request.all_photos:
            candidates = await self._photos.list_by_owner(user_id)
            requested = len(candidates)
        else:
            photo_ids = request.photo_ids or []
            owned = await self._photos.find_owned(user_id, photo_ids)
            candidates = [owned[photo_id] for photo_id in photo_ids if photo_id in owned]
            requested = len(photo_ids)

        items = [
            BatchItem(photo_id=photo.id, image_ref=photo.image_url)
            for photo in candidates
            if photo.id not in existing
        ]
        return WorkSet(items=items, skipped=requested - len(items))

    async def generate(self, user_id: str, request: GenerateEmbeddingsRequest) -> GenerateEmbeddingsResponse:
        work = await self.build_work_set(user_id, request)
        if not work.items:
            return GenerateEmbeddingsResponse(
                generated=0,
                failed=0,
                failed_ids=[],
                total_embeddings=await self._store.count_by_user_id(user_id),
                skipped=work.skipped,
                message=NOTHING_TO_PROCESS_MESSAGE,
            )

        summary = await self._orchestrator.run(user_id, work.items, dimension=self.resolve_dimension(request))
        return GenerateEmbeddingsResponse(
            generated=summary.generated,
            failed=summary.failed,
            failed_ids=summary.failed_ids,
            total_embeddings=await self._store.count_by_user_id(user_id),
            skipped=work.skipped,
            message=f"Generated {summary.generated} embeddings",
        )

    async def prepare_stream(
        self,
        user_id: str,
        request: GenerateEmbeddingsRequest,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[BatchEvent]:
        """Resolve the work set and readiness up front, then hand back the event stream.

        Errors surface here, before any response bytes are sent.
        """

        await self._orchestrator.ensure_ready()
        work = await self.build_work_set(user_id, request)
        return self._orchestrator.stream(
            user_id,
            work.items,
            dimension=self.resolve_dimension(request),
            cancel_event=cancel_event,
        )

    async def visualize(
        self,
        user_id: str,
        *,
        components: Optional[int] = None,
        dimension: Optional[int] = None,
    ) -> EmbeddingVisualizationResponse:
        n_components = components or self._settings.projection_default_components
        photos = await self._photos.list_by_owner(user_id)
        total_photos = len(photos)
        embeddings = await self._store.find_by_user_id(user_id)
        photo_map = {photo.id: photo for photo in photos}

        result = assemble_visualization(
            embeddings,
            photo_map,
            n_components=n_components,
            dimension=dimension,
            max_k=self._settings.cluster_max_k,
            max_iter=self._settings.kmeans_max_iter,
        )
        if not result.points:
            return EmbeddingVisualizationResponse(
                count=0,
                total_photos=total_photos,
                visualizations=[],
                orphaned_embeddings=result.orphaned,
                skipped_dimension=result.skipped_dimension,
                dimension=result.dimension,
                message=NO_EMBEDDINGS_MESSAGE,
            )

        projection = result.projection
        clustering = result.clustering
        return EmbeddingVisualizationResponse(
            count=len(result.points),
            total_photos=total_photos,
            visualizations=result.points,
            orphaned_embeddings=result.orphaned,
            skipped_dimension=result.skipped_dimension,
            dimension=result.dimension,
            projection=ProjectionSummary(
                method=projection.method,
                components=projection.n_components,
                explained_variance_ratio=projection.explained_variance_ratio,
                trustworthiness=projection.trustworthiness,
            )
            if projection is not None
            else None,
            clustering=ClusterSummary(
                algo=clustering.algo,
                k=clustering.n_clusters,
                sizes=clustering.sizes,
                iterations=clustering.iterations,
                converged=clustering.converged,
                silhouette=clustering.silhouette,
                davies_bouldin=clustering.davies_bouldin,
                calinski_harabasz=clustering.calinski_harabasz,
            )
            if clustering is not None
            else None,
        )

    async def find_similar(self, user_id: str, photo_id: str, *, limit: Optional[int] = None) -> SimilarPhotosResponse:
        top_k = limit or self._settings.similar_default_limit
        embeddings = await self._store.find_by_user_id(user_id)
        target = next((item for item in embeddings if item.photo_id == photo_id), None)
        if target is None:
            raise ValueError(f"Embedding for photo {photo_id} not found")

        photos = {photo.id: photo for photo in await self._photos.list_by_owner(user_id)}
        candidates = [
            item
            for item in embeddings
            if item.photo_id != photo_id and item.photo_id in photos and item.dimension == target.dimension
        ]
        if not candidates:
            return SimilarPhotosResponse(photo_id=photo_id, results=[])

        scores = cosine_similarities(target.vector, np.vstack([item.vector for item in candidates]))
        # equal scores fall back to photo id order
        order = sorted(range(len(candidates)), key=lambda index: (-scores[index], candidates[index].photo_id))
        results = []
        for index in order[:top_k]:
            photo = photos[candidates[index].photo_id]
            results.append(
                SimilarPhoto(
                    photo_id=photo.id,
                    thumbnail_url=photo.thumbnail_url or photo.image_url,
                    similarity=float(scores[index]),
                )
            )
        return SimilarPhotosResponse(photo_id=photo_id, results=results)

    async def delete_embedding(self, user_id: str, photo_id: str) -> bool:
        return await self._store.delete(user_id, photo_id)
