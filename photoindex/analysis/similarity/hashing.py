"""
Perceptual hash helpers: parsing, Hamming distance, and per-file hashing.

Perceptual hashes are stored as hex strings (the str() form of an
imagehash.ImageHash). Two hashes are only comparable when their strings
have the same length; a different length means a different hashing scheme.
"""

import hashlib
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import imagehash
from PIL import Image, UnidentifiedImageError

from ...exceptions import InvalidInputError

logger = logging.getLogger(__name__)

_HEX_PATTERN = re.compile(r'^[0-9a-fA-F]+$')

# 16x16 pHash, 256 bits, matching the hash size used by the scanner
DEFAULT_HASH_SIZE = 16
READ_CHUNK_SIZE = 8192


def parse_perceptual_hash(value: str) -> int:
    """
    Convert a hex perceptual hash to an integer.

    Raises:
        InvalidInputError: if value is empty or not plain hex
    """
    if not value or not _HEX_PATTERN.match(value):
        raise InvalidInputError(f"Malformed perceptual hash: {value!r}")
    return int(value, 16)


def popcount(value: int) -> int:
    return bin(value).count('1')


def hamming_distance(hash_a: str, hash_b: str) -> int:
    """
    Bit-wise Hamming distance between two hex perceptual hashes.

    Raises:
        InvalidInputError: if either hash is malformed or the lengths differ
    """
    if len(hash_a) != len(hash_b):
        raise InvalidInputError(
            f"Perceptual hashes of length {len(hash_a)} and {len(hash_b)} are not comparable"
        )
    return popcount(parse_perceptual_hash(hash_a) ^ parse_perceptual_hash(hash_b))


@dataclass
class FileHashes:
    """Content and perceptual hash of one file."""
    sha256: str
    perceptual: Optional[str]


def compute_sha256(path: Union[str, Path]) -> str:
    """Stream a file through SHA-256 and return the hex digest."""
    digest = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(READ_CHUNK_SIZE), b''):
            digest.update(chunk)
    return digest.hexdigest()


def compute_perceptual_hash(path: Union[str, Path], hash_size: int = DEFAULT_HASH_SIZE) -> Optional[str]:
    """
    pHash of an image file as a hex string.

    Returns None for files Pillow cannot decode (raw formats, videos), so
    they are left out of perceptual detection instead of matching anything.
    """
    try:
        with Image.open(path) as image:
            image.thumbnail((64, 64))
            return str(imagehash.phash(image.convert('RGB'), hash_size=hash_size))
    except (UnidentifiedImageError, OSError) as e:
        logger.debug(f"No perceptual hash for {path}: {e}")
        return None


def compute_file_hashes(path: Union[str, Path], hash_size: int = DEFAULT_HASH_SIZE) -> FileHashes:
    """
    Compute both hashes for a file.

    Args:
        path: File to hash
        hash_size: pHash grid size (hash has hash_size**2 bits)

    Returns:
        FileHashes with perceptual=None when the image cannot be decoded
    """
    return FileHashes(
        sha256=compute_sha256(path),
        perceptual=compute_perceptual_hash(path, hash_size=hash_size),
    )
