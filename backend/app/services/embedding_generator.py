"""Embedding generator contract shared by the batch pipeline and its providers.

Classes:
    EmbeddingGenerator: Protocol for anything that turns an image reference into a vector.
    EmbeddingGeneratorUnavailable: Raised when no generator is configured, before any work starts.
    EmbeddingGenerationError: Raised for a single image that could not be embedded.
"""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable


class EmbeddingGeneratorUnavailable(RuntimeError):
    pass


class EmbeddingGenerationError(RuntimeError):
    def __init__(self, message: str, *, image_ref: str | None = None) -> None:
        super().__init__(message)
        self.image_ref = image_ref


@runtime_checkable
class EmbeddingGenerator(Protocol):
    @property
    def is_configured(self) -> bool: ...

    async def prepare(self) -> None:
        """Resolve credentials once; raise EmbeddingGeneratorUnavailable if the generator cannot serve."""
        ...

    async def generate(self, image_ref: str, dimension: int) -> Sequence[float]: ...
