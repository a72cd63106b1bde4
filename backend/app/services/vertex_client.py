"""Async Vertex AI multimodal embedding client.

Classes:
    VertexEmbeddingService: Loads image bytes, resolves an access token, and calls the multimodal predict endpoint with retry semantics.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import mimetypes
import time
from pathlib import Path
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import SUPPORTED_DIMENSIONS, Settings, get_settings
from app.services.embedding_generator import EmbeddingGenerationError, EmbeddingGeneratorUnavailable

_LOGGER = logging.getLogger(__name__)

METADATA_TOKEN_URL = (
    "http://metadata.google.internal/computeMetadata/v1/instance/service-accounts/default/token"
)
_TOKEN_REFRESH_MARGIN_SECONDS = 60.0
_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _RETRYABLE_STATUS
    return False


class VertexEmbeddingService:
    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._client = client or httpx.AsyncClient(timeout=self._settings.vertex_request_timeout)
        self._owns_client = client is None
        self._token: Optional[str] = None
        self._token_expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def is_configured(self) -> bool:
        return bool(self._settings.google_cloud_project)

    @property
    def endpoint(self) -> str:
        region = self._settings.vertex_ai_region
        return (
            f"https://{region}-aiplatform.googleapis.com/v1/projects/{self._settings.google_cloud_project}"
            f"/locations/{region}/publishers/google/models/{self._settings.vertex_embedding_model}:predict"
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def prepare(self) -> None:
        """Fail fast when the project is unset or no access token can be obtained."""

        self._require_project()
        await self._access_token()

    def _require_project(self) -> None:
        if not self.is_configured:
            raise EmbeddingGeneratorUnavailable("Vertex AI not configured. Set GOOGLE_CLOUD_PROJECT.")

    async def generate(self, image_ref: str, dimension: int) -> list[float]:
        self._require_project()
        if dimension not in SUPPORTED_DIMENSIONS:
            raise ValueError(f"dimension must be one of {SUPPORTED_DIMENSIONS}")

        image_bytes, mime_type = await self._load_image(image_ref)
        token = await self._access_token()
        payload = {
            "instances": [
                {
                    "image": {
                        "bytesBase64Encoded": base64.b64encode(image_bytes).decode("ascii"),
                        "mimeType": mime_type,
                    }
                }
            ],
            "parameters": {"dimension": dimension},
        }
        headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}

        try:
            data = await self._predict(payload, headers)
        except httpx.HTTPStatusError as exc:
            raise EmbeddingGenerationError(
                f"Vertex AI returned {exc.response.status_code}: {exc.response.text[:200]}",
                image_ref=image_ref,
            ) from exc
        except httpx.HTTPError as exc:
            raise EmbeddingGenerationError(f"Vertex AI request failed: {exc}", image_ref=image_ref) from exc

        return self._extract_vector(data, dimension, image_ref)

    async def _predict(self, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        retrying = AsyncRetrying(
            wait=wait_exponential(multiplier=1, min=1, max=20),
            stop=stop_after_attempt(max(1, self._settings.vertex_max_attempts)),
            retry=retry_if_exception(_is_retryable),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self._client.post(self.endpoint, json=payload, headers=headers)
                response.raise_for_status()
        try:
            return response.json()
        except ValueError as exc:
            raise httpx.DecodingError("Vertex AI returned a non-JSON body") from exc

    def _extract_vector(self, data: Any, dimension: int, image_ref: str) -> list[float]:
        try:
            values = data["predictions"][0]["imageEmbedding"]
        except (KeyError, IndexError, TypeError) as exc:
            raise EmbeddingGenerationError("No embedding in response", image_ref=image_ref) from exc
        if not isinstance(values, list) or len(values) != dimension:
            size = len(values) if isinstance(values, list) else "n/a"
            raise EmbeddingGenerationError(
                f"Expected {dimension} values, received {size}",
                image_ref=image_ref,
            )
        try:
            return [float(value) for value in values]
        except (TypeError, ValueError) as exc:
            raise EmbeddingGenerationError("Embedding contains non-numeric values", image_ref=image_ref) from exc

    async def _load_image(self, image_ref: str) -> tuple[bytes, str]:
        if image_ref.startswith(("http://", "https://")):
            try:
                response = await self._client.get(image_ref)
                response.raise_for_status()
            except httpx.HTTPError as exc:
                raise EmbeddingGenerationError(f"Failed to fetch image: {image_ref}", image_ref=image_ref) from exc
            mime_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip()
            return response.content, mime_type or "image/jpeg"

        root = Path(self._settings.photo_storage_root).resolve()
        path = (root / image_ref.lstrip("/")).resolve()
        if root not in path.parents and path != root:
            raise EmbeddingGenerationError("Image path escapes photo storage root", image_ref=image_ref)
        try:
            content = await asyncio.to_thread(path.read_bytes)
        except OSError as exc:
            raise EmbeddingGenerationError(f"Failed to read image: {image_ref}", image_ref=image_ref) from exc
        mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        return content, mime_type

    async def _access_token(self) -> str:
        configured = self._settings.google_access_token
        if configured is not None and configured.get_secret_value():
            return configured.get_secret_value()

        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            try:
                response = await self._client.get(
                    METADATA_TOKEN_URL,
                    headers={"Metadata-Flavor": "Google"},
                    timeout=5.0,
                )
                response.raise_for_status()
                body = response.json()
                token = str(body["access_token"])
                expires_in = float(body.get("expires_in", 300))
            except (httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
                raise EmbeddingGeneratorUnavailable(
                    "No Google Cloud credentials available. Set GOOGLE_ACCESS_TOKEN or run on GCP."
                ) from exc
            self._token = token
            self._token_expires_at = time.monotonic() + max(0.0, expires_in - _TOKEN_REFRESH_MARGIN_SECONDS)
            _LOGGER.debug("Refreshed Vertex AI access token from metadata server")
            return self._token
