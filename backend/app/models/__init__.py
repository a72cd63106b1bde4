"""Convenience exports for ORM models.

Surface the SQLModel classes so calling code can import them from a single module.
"""

from .photo import Photo
from .embedding import PhotoEmbedding

__all__ = [
    "Photo",
    "PhotoEmbedding",
]
