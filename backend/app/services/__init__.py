"""Service layer exports.

Expose the embedding generator, batch orchestrator, and EmbeddingService implementations for easy importing.
"""

from .vertex_client import VertexEmbeddingService
from .batch import BatchOrchestrator
from .embeddings import EmbeddingService

__all__ = ["VertexEmbeddingService", "BatchOrchestrator", "EmbeddingService"]
