import base64
import json

import httpx
import pytest

from app.core.config import Settings
from app.services.embedding_generator import (
    EmbeddingGenerationError,
    EmbeddingGenerator,
    EmbeddingGeneratorUnavailable,
)
from app.services.batch import BatchItem, BatchOrchestrator
from app.services.vertex_client import METADATA_TOKEN_URL, VertexEmbeddingService

from .fakes import InMemoryEmbeddingStore

IMAGE_URL = "https://images.example.com/cat.png"
IMAGE_BYTES = b"\x89PNG fake image"


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "google_cloud_project": "demo-project",
        "google_access_token": "test-token",
        "photo_storage_root": str(tmp_path),
        "vertex_max_attempts": 2,
    }
    values.update(overrides)
    return Settings(**values)


class VertexStub:
    def __init__(self, *, dimension: int = 4, responses=None, metadata_status: int = 200) -> None:
        self.dimension = dimension
        self.metadata_status = metadata_status
        self.responses = list(responses or [])
        self.predict_payloads: list[dict] = []
        self.predict_headers: list[httpx.Headers] = []
        self.metadata_calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if str(request.url) == METADATA_TOKEN_URL:
            self.metadata_calls += 1
            if self.metadata_status != 200:
                return httpx.Response(self.metadata_status, text="no metadata server")
            return httpx.Response(200, json={"access_token": "metadata-token", "expires_in": 3600})
        if request.method == "GET":
            return httpx.Response(200, content=IMAGE_BYTES, headers={"content-type": "image/png"})
        self.predict_payloads.append(json.loads(request.content))
        self.predict_headers.append(request.headers)
        if self.responses:
            return self.responses.pop(0)
        values = [0.25] * self.dimension
        return httpx.Response(200, json={"predictions": [{"imageEmbedding": values}]})


def _service(tmp_path, stub: VertexStub, **overrides) -> VertexEmbeddingService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(stub))
    return VertexEmbeddingService(client=client, settings=_settings(tmp_path, **overrides))


@pytest.mark.asyncio
async def test_generate_posts_image_and_dimension(tmp_path):
    stub = VertexStub(dimension=128)
    service = _service(tmp_path, stub)

    vector = await service.generate(IMAGE_URL, 128)

    assert len(vector) == 128
    assert isinstance(service, EmbeddingGenerator)
    payload = stub.predict_payloads[0]
    assert payload["parameters"] == {"dimension": 128}
    image = payload["instances"][0]["image"]
    assert base64.b64decode(image["bytesBase64Encoded"]) == IMAGE_BYTES
    assert image["mimeType"] == "image/png"
    assert stub.predict_headers[0]["authorization"] == "Bearer test-token"
    assert service.endpoint.endswith("/publishers/google/models/multimodalembedding@001:predict")


@pytest.mark.asyncio
async def test_generate_reads_local_files_under_storage_root(tmp_path):
    (tmp_path / "albums").mkdir()
    (tmp_path / "albums" / "dog.jpg").write_bytes(b"jpeg bytes")
    stub = VertexStub(dimension=128)
    service = _service(tmp_path, stub)

    await service.generate("/albums/dog.jpg", 128)

    image = stub.predict_payloads[0]["instances"][0]["image"]
    assert base64.b64decode(image["bytesBase64Encoded"]) == b"jpeg bytes"
    assert image["mimeType"] == "image/jpeg"


@pytest.mark.asyncio
async def test_generate_refuses_paths_outside_storage_root(tmp_path):
    root = tmp_path / "photos"
    root.mkdir()
    (tmp_path / "secret.txt").write_text("nope")
    stub = VertexStub()
    service = _service(tmp_path, stub, photo_storage_root=str(root))

    with pytest.raises(EmbeddingGenerationError):
        await service.generate("../secret.txt", 128)
    assert stub.predict_payloads == []


@pytest.mark.asyncio
async def test_generate_rejects_vector_of_wrong_length(tmp_path):
    stub = VertexStub(dimension=64)
    service = _service(tmp_path, stub)

    with pytest.raises(EmbeddingGenerationError):
        await service.generate(IMAGE_URL, 128)


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(tmp_path):
    stub = VertexStub(responses=[httpx.Response(400, json={"error": {"message": "bad image"}})])
    service = _service(tmp_path, stub)

    with pytest.raises(EmbeddingGenerationError) as excinfo:
        await service.generate(IMAGE_URL, 128)

    assert "400" in str(excinfo.value)
    assert excinfo.value.image_ref == IMAGE_URL
    assert len(stub.predict_payloads) == 1


@pytest.mark.asyncio
async def test_transient_errors_are_retried(tmp_path):
    stub = VertexStub(dimension=128, responses=[httpx.Response(503, text="unavailable")])
    service = _service(tmp_path, stub)

    vector = await service.generate(IMAGE_URL, 128)

    assert len(vector) == 128
    assert len(stub.predict_payloads) == 2


@pytest.mark.asyncio
async def test_unconfigured_service_raises_unavailable(tmp_path):
    stub = VertexStub()
    service = _service(tmp_path, stub, google_cloud_project=None)

    assert not service.is_configured
    with pytest.raises(EmbeddingGeneratorUnavailable):
        await service.generate(IMAGE_URL, 128)
    assert stub.predict_payloads == []


@pytest.mark.asyncio
async def test_unsupported_dimension_is_rejected(tmp_path):
    service = _service(tmp_path, VertexStub())

    with pytest.raises(ValueError):
        await service.generate(IMAGE_URL, 300)


@pytest.mark.asyncio
async def test_metadata_token_is_cached(tmp_path):
    stub = VertexStub(dimension=128)
    service = _service(tmp_path, stub, google_access_token=None)

    await service.generate(IMAGE_URL, 128)
    await service.generate(IMAGE_URL, 128)

    assert stub.metadata_calls == 1
    assert stub.predict_headers[1]["authorization"] == "Bearer metadata-token"


@pytest.mark.asyncio
async def test_missing_credentials_fail_the_batch_before_any_photo(tmp_path):
    stub = VertexStub(dimension=128, metadata_status=404)
    service = _service(tmp_path, stub, google_access_token=None)
    store = InMemoryEmbeddingStore()
    orchestrator = BatchOrchestrator(service, store, concurrency_limit=3)
    items = [BatchItem(photo_id=f"p{index}", image_ref=IMAGE_URL) for index in range(3)]

    assert service.is_configured
    with pytest.raises(EmbeddingGeneratorUnavailable):
        await orchestrator.run("user", items, dimension=128)

    assert stub.metadata_calls == 1
    assert stub.predict_payloads == []
    assert store.upsert_calls == 0


@pytest.mark.asyncio
async def test_prepare_resolves_the_token_once(tmp_path):
    stub = VertexStub(dimension=128)
    service = _service(tmp_path, stub, google_access_token=None)

    await service.prepare()
    await service.generate(IMAGE_URL, 128)

    assert stub.metadata_calls == 1
