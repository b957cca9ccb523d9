"""
photoindex: duplicate detection, semantic search and safe deletion for a
personal photo library

Works over a relational index of photos (paths, content and perceptual
hashes, LLM descriptions, embeddings) and never deletes a file without
passing through the trash.
"""

__version__ = "0.1.0"

from .config import load_config, get_default_config
from .exceptions import PhotoIndexError, NotFoundError, InvalidInputError, StorageFailureError

__all__ = [
    "load_config",
    "get_default_config",
    "PhotoIndexError",
    "NotFoundError",
    "InvalidInputError",
    "StorageFailureError",
]
