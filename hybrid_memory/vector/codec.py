"""
Embedding codec. Converts float vectors to the on-disk BLOB form and back.
Layout: contiguous little-endian IEEE-754 float32, no header.
"""

from array import array
from typing import Optional, List, Sequence, Union

import numpy as np

# Fixed byte order so blobs written on any host decode identically
EMBEDDING_DTYPE = np.dtype('<f4')

VectorLike = Union[np.ndarray, Sequence[float], array, bytes, bytearray, memoryview]


class InvalidEmbeddingError(ValueError):
    """Raised when an embedding cannot be represented as a flat float32 vector."""
    pass


def _as_float32(vector) -> np.ndarray:
    """Coerce a vector-like value to a 1-D float32 array or raise InvalidEmbeddingError."""
    if isinstance(vector, (bytes, bytearray, memoryview)):
        return _from_blob(bytes(vector))

    if isinstance(vector, (str, dict)):
        raise InvalidEmbeddingError(f"Embedding must be a numeric sequence, got {type(vector).__name__}")

    try:
        arr = np.asarray(vector, dtype=np.float32)
    except (TypeError, ValueError) as e:
        # Ragged lists and non-numeric items both land here
        raise InvalidEmbeddingError(f"Embedding is not a flat numeric sequence: {e}") from e

    if arr.ndim != 1:
        raise InvalidEmbeddingError(f"Embedding must be one-dimensional, got shape {arr.shape}")
    if arr.size == 0:
        raise InvalidEmbeddingError("Embedding must not be empty")
    if not np.all(np.isfinite(arr)):
        raise InvalidEmbeddingError("Embedding contains NaN or infinite values")

    return arr


def _from_blob(blob: bytes) -> np.ndarray:
    if len(blob) == 0 or len(blob) % EMBEDDING_DTYPE.itemsize != 0:
        raise InvalidEmbeddingError(
            f"Embedding blob length {len(blob)} is not a positive multiple of {EMBEDDING_DTYPE.itemsize}"
        )
    return np.frombuffer(blob, dtype=EMBEDDING_DTYPE).astype(np.float32)


def encode_embedding(vector: Optional[VectorLike]) -> Optional[bytes]:
    """
    Encode an embedding for storage.

    Args:
        vector: numpy array, list/tuple of numbers, array('f'), or an already
            encoded blob. None is passed through.

    Returns:
        Little-endian float32 bytes, or None

    Raises:
        InvalidEmbeddingError: for ragged, empty, non-numeric or non-finite input
    """
    if vector is None:
        return None
    arr = _as_float32(vector)
    return np.ascontiguousarray(arr, dtype=EMBEDDING_DTYPE).tobytes()


def decode_embedding(blob: Optional[bytes]) -> Optional[np.ndarray]:
    """Decode a stored BLOB back into a writable float32 vector."""
    if blob is None:
        return None
    return _from_blob(bytes(blob))


def embedding_to_list(vector: Optional[VectorLike]) -> Optional[List[float]]:
    """Plain list form used by the export payload."""
    if vector is None:
        return None
    return [float(x) for x in _as_float32(vector)]
