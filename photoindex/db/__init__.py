"""
photoindex database module

Provides the storage capability interface, its SQLAlchemy and in-memory
variants, ORM models, record types and the embedding codec.
"""

from .vectors import encode_embedding, decode_embedding
from .records import (
    GroupType, PhotoRecord, GroupMember, SimilarityGroup, EmbeddingRecord,
    SearchResult, TrashedPhoto, Skip, utcnow
)
from .connection import Database, configure_database
from .store import PhotoStore
from .sql_store import SqlPhotoStore
from .memory_store import MemoryPhotoStore


def create_store(config) -> PhotoStore:
    """
    Build the PhotoStore selected by database.backend ('sql' or 'memory').

    Args:
        config: photoindex configuration dictionary

    Returns:
        Ready-to-use store
    """
    backend = config.get('database', {}).get('backend', 'sql')
    if backend == 'memory':
        return MemoryPhotoStore()
    if backend == 'sql':
        return SqlPhotoStore(configure_database(config))
    raise ValueError(f"Unknown database backend: {backend}")


__all__ = [
    'encode_embedding',
    'decode_embedding',
    'GroupType',
    'PhotoRecord',
    'GroupMember',
    'SimilarityGroup',
    'EmbeddingRecord',
    'SearchResult',
    'TrashedPhoto',
    'Skip',
    'utcnow',
    'Database',
    'configure_database',
    'PhotoStore',
    'SqlPhotoStore',
    'MemoryPhotoStore',
    'create_store',
]
