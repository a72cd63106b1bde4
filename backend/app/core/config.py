"""Runtime configuration helpers.

Classes:
    Settings: Pydantic settings model capturing environment-driven defaults.

Functions:
    get_settings(): Return a cached Settings instance for dependency injection.
"""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_DIMENSIONS = (128, 256, 512, 1408)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "Photo Embedding Atlas API"
    database_url: str = "sqlite+aiosqlite:///./data/photo_atlas.db"
    log_level: str = "INFO"
    google_cloud_project: str | None = None
    vertex_ai_region: str = "us-central1"
    vertex_embedding_model: str = "multimodalembedding@001"
    google_access_token: SecretStr | None = None
    vertex_request_timeout: float = 30.0
    vertex_max_attempts: int = 3
    photo_storage_root: str = "./data/photos"
    embedding_default_dimension: int = 512
    embedding_concurrency_limit: int = 5
    embedding_batch_strategy: str = "pool"
    projection_default_components: int = 3
    cluster_max_k: int = 20
    kmeans_max_iter: int = 50
    similar_default_limit: int = 5


@lru_cache()
def get_settings() -> Settings:
    return Settings()
