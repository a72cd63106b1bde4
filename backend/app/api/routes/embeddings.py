"""Photo embedding endpoints for generation and spatial visualisation.

Endpoints:
    get_embeddings(components, dimension, ...): Project and cluster the caller's embeddings of one dimension.
    generate_embeddings(payload, ...): Generate embeddings in bounded batches, as JSON or an event stream.
    get_similar_photos(photo_id, limit, ...): Rank the caller's photos by cosine similarity to one photo.
    delete_embedding(photo_id, ...): Drop the embedding of a deleted photo.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, AsyncIterator
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import StreamingResponse

from app.api.deps import get_current_user_id, get_embedding_service
from app.core.config import SUPPORTED_DIMENSIONS
from app.schemas import (
    EmbeddingVisualizationResponse,
    GenerateEmbeddingsRequest,
    GenerateEmbeddingsResponse,
    SimilarPhotosResponse,
)
from app.services.batch import BatchEvent
from app.services.embedding_generator import EmbeddingGeneratorUnavailable
from app.services.embeddings import EmbeddingService

router = APIRouter(prefix="/photos/embeddings", tags=["embeddings"])

_LOGGER = logging.getLogger(__name__)


@router.get("", response_model=EmbeddingVisualizationResponse, response_model_exclude_none=True)
async def get_embeddings(
    components: Optional[int] = Query(default=None, ge=2, le=3),
    dimension: Optional[int] = Query(default=None),
    user_id: str = Depends(get_current_user_id),
    service: EmbeddingService = Depends(get_embedding_service),
) -> EmbeddingVisualizationResponse:
    if dimension is not None and dimension not in SUPPORTED_DIMENSIONS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"dimension must be one of {', '.join(str(dim) for dim in SUPPORTED_DIMENSIONS)}",
        )
    return await service.visualize(user_id, components=components, dimension=dimension)


@router.post("", response_model=GenerateEmbeddingsResponse)
async def generate_embeddings(
    payload: GenerateEmbeddingsRequest,
    user_id: str = Depends(get_current_user_id),
    service: EmbeddingService = Depends(get_embedding_service),
):
    if not payload.has_target:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Provide photoIds array or set all=true",
        )

    try:
        if payload.stream:
            events = await service.prepare_stream(user_id, payload)
            return StreamingResponse(
                _encode_events(events),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "Connection": "keep-alive",
                },
            )
        return await service.generate(user_id, payload)
    except EmbeddingGeneratorUnavailable as exc:
        _LOGGER.error("Embedding generation unavailable: %s", exc)
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def _encode_events(events: AsyncGenerator[BatchEvent, None]) -> AsyncIterator[str]:
    try:
        async for event in events:
            yield event.to_sse()
    finally:
        await events.aclose()


@router.get("/{photo_id}/similar", response_model=SimilarPhotosResponse)
async def get_similar_photos(
    photo_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    service: EmbeddingService = Depends(get_embedding_service),
) -> SimilarPhotosResponse:
    try:
        return await service.find_similar(user_id, photo_id, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.delete("/{photo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_embedding(
    photo_id: str,
    user_id: str = Depends(get_current_user_id),
    service: EmbeddingService = Depends(get_embedding_service),
) -> Response:
    await service.delete_embedding(user_id, photo_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
