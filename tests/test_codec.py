"""
Tests for the embedding codec (float32 little-endian BLOBs).
"""

import struct
from array import array

import numpy as np
import pytest

from hybrid_memory.vector.codec import (
    EMBEDDING_DTYPE,
    InvalidEmbeddingError,
    decode_embedding,
    embedding_to_list,
    encode_embedding,
)


def test_encode_is_little_endian_float32():
    blob = encode_embedding([1.0, -2.5, 0.0])

    assert len(blob) == 12
    assert blob == struct.pack('<3f', 1.0, -2.5, 0.0)


def test_decode_restores_values():
    vector = np.array([0.25, -0.5, 3.0, 1e-3], dtype=np.float32)

    decoded = decode_embedding(encode_embedding(vector))

    assert decoded.dtype == np.float32
    np.testing.assert_array_equal(decoded, vector)


def test_accepts_numpy_list_tuple_and_array():
    expected = encode_embedding([1.0, 2.0])

    assert encode_embedding(np.array([1.0, 2.0], dtype=np.float64)) == expected
    assert encode_embedding((1.0, 2.0)) == expected
    assert encode_embedding(array('f', [1.0, 2.0])) == expected


def test_encoded_blob_passes_through():
    blob = encode_embedding([0.5, 0.5])
    assert encode_embedding(blob) == blob


def test_none_passes_through():
    assert encode_embedding(None) is None
    assert decode_embedding(None) is None
    assert embedding_to_list(None) is None


def test_decoded_vector_is_writable():
    decoded = decode_embedding(encode_embedding([1.0, 2.0]))
    decoded[0] = 9.0
    assert decoded[0] == 9.0


def test_embedding_to_list_returns_python_floats():
    values = embedding_to_list(encode_embedding([0.5, 1.5]))
    assert values == [0.5, 1.5]
    assert all(type(v) is float for v in values)


def test_dtype_is_fixed_byte_order():
    assert EMBEDDING_DTYPE.itemsize == 4
    assert EMBEDDING_DTYPE == np.dtype('<f4')


class TestInvalidInput:
    """Inputs that cannot be a flat float32 vector are rejected."""

    def test_empty(self):
        with pytest.raises(InvalidEmbeddingError):
            encode_embedding([])

    def test_ragged(self):
        with pytest.raises(InvalidEmbeddingError):
            encode_embedding([[1.0, 2.0], [3.0]])

    def test_nested(self):
        with pytest.raises(InvalidEmbeddingError):
            encode_embedding([[1.0, 2.0], [3.0, 4.0]])

    def test_non_numeric(self):
        with pytest.raises(InvalidEmbeddingError):
            encode_embedding(["a", "b"])

    def test_string(self):
        with pytest.raises(InvalidEmbeddingError):
            encode_embedding("1.0,2.0")

    def test_non_finite(self):
        with pytest.raises(InvalidEmbeddingError):
            encode_embedding([1.0, float("nan")])
        with pytest.raises(InvalidEmbeddingError):
            encode_embedding([float("inf"), 1.0])

    def test_blob_length_not_multiple_of_four(self):
        with pytest.raises(InvalidEmbeddingError):
            decode_embedding(b"\x00\x01\x02")

    def test_empty_blob(self):
        with pytest.raises(InvalidEmbeddingError):
            decode_embedding(b"")

    def test_is_value_error(self):
        assert issubclass(InvalidEmbeddingError, ValueError)
