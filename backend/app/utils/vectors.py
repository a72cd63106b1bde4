"""Vector serialisation and similarity helpers."""

from __future__ import annotations

from typing import Sequence

import numpy as np


def pack_vector(values: Sequence[float] | np.ndarray) -> tuple[bytes, float]:
    """Return the float32 byte payload and L2 norm for a vector."""

    arr = np.asarray(values, dtype=np.float32)
    norm = float(np.linalg.norm(arr)) if arr.size else 0.0
    return arr.tobytes(), norm


def unpack_vector(payload: bytes, dim: int | None = None) -> np.ndarray:
    arr = np.frombuffer(payload, dtype=np.float32)
    if dim and arr.size > dim:
        arr = arr[:dim]
    return arr.astype(np.float32, copy=True)


def cosine_similarities(target: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    """Cosine similarity between one vector and each row of ``candidates``.

    Zero-norm rows score 0 instead of producing NaN.
    """

    target = np.asarray(target, dtype=np.float64)
    matrix = np.asarray(candidates, dtype=np.float64)
    if matrix.size == 0:
        return np.zeros(0, dtype=np.float64)
    if matrix.shape[1] != target.shape[0]:
        raise ValueError("Vectors must have same dimension")
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(target)
    dots = matrix @ target
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(norms > 0, dots / norms, 0.0)
    return scores
