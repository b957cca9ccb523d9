"""
Binary layout for embedding vectors.

A vector of N float32 values is stored as exactly 4N bytes, little-endian,
one value per 4-byte word in index order. Every reader and writer goes
through these two functions.
"""

from typing import Sequence, Union

import numpy as np

from ..exceptions import InvalidInputError

FLOAT32_LE = np.dtype('<f4')
WORD_SIZE = FLOAT32_LE.itemsize


def encode_embedding(vector: Union[Sequence[float], np.ndarray]) -> bytes:
    """
    Serialize a vector to little-endian float32 bytes.

    NaN and infinity are written unchanged.

    Args:
        vector: Sequence of numbers (list, tuple or numpy array)

    Returns:
        Encoded bytes, length 4 * len(vector)
    """
    array = np.asarray(vector, dtype=FLOAT32_LE)
    if array.ndim != 1:
        raise InvalidInputError(f"Embedding must be one-dimensional, got shape {array.shape}")
    return array.tobytes()


def decode_embedding(data: bytes) -> np.ndarray:
    """
    Inverse of encode_embedding.

    Args:
        data: Bytes previously produced by encode_embedding

    Returns:
        float32 array in native byte order

    Raises:
        InvalidInputError: if the byte length is not a multiple of 4
    """
    if len(data) % WORD_SIZE != 0:
        raise InvalidInputError(
            f"Embedding byte length {len(data)} is not a multiple of {WORD_SIZE}"
        )
    return np.frombuffer(data, dtype=FLOAT32_LE).astype(np.float32)


def embedding_dimension(data: bytes) -> int:
    """Number of float32 words in an encoded embedding."""
    return len(data) // WORD_SIZE
