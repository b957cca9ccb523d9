"""
Database models for photoindex.

Defines the SQLAlchemy ORM models for photos, duplicate groups and
embeddings. Column semantics mirror the PhotoRecord / SimilarityGroup /
EmbeddingRecord dataclasses in records.py.
"""

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text,
    ForeignKey, Index, BigInteger, Enum, LargeBinary, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base
from sqlalchemy.sql import func

from .records import GroupType

Base = declarative_base()


class Photo(Base):
    """Main photo entity with hashes, description and trash state."""
    __tablename__ = 'photos'

    # Primary identification
    id = Column(Integer, primary_key=True, autoincrement=True)
    path = Column(Text, unique=True, nullable=False, index=True)
    filename = Column(String(255), nullable=False, index=True)
    size_bytes = Column(BigInteger, nullable=False, default=0)

    # Image dimensions (raw/unsupported formats may lack these)
    width = Column(Integer)
    height = Column(Integer)

    # Hashes for duplicate detection
    sha256_hash = Column(String(64), index=True)
    perceptual_hash = Column(String(128), index=True)

    # Timestamps
    taken_at = Column(DateTime, index=True)
    scanned_at = Column(DateTime, default=func.now())

    # LLM-generated content
    description = Column(Text)

    # User actions
    marked_for_deletion = Column(Boolean, nullable=False, default=False, index=True)

    # Trash tracking
    original_path = Column(Text)
    trashed_at = Column(DateTime, index=True)

    # Relationships
    embeddings = relationship("Embedding", back_populates="photo", cascade="all, delete-orphan")
    similarities = relationship("PhotoSimilarity", back_populates="photo", cascade="all, delete-orphan")


class SimilarityGroup(Base):
    """Groups of duplicate photos."""
    __tablename__ = 'similarity_groups'

    id = Column(Integer, primary_key=True, autoincrement=True)
    group_type = Column(Enum(GroupType), nullable=False, index=True)

    # Group metadata
    created_at = Column(DateTime, default=func.now())
    representative_photo_id = Column(Integer, ForeignKey('photos.id', ondelete='SET NULL'))

    # Relationships
    photo_similarities = relationship(
        "PhotoSimilarity", back_populates="group",
        cascade="all, delete-orphan", order_by="PhotoSimilarity.photo_id"
    )


class PhotoSimilarity(Base):
    """Membership of a photo in a similarity group."""
    __tablename__ = 'photo_similarities'

    group_id = Column(Integer, ForeignKey('similarity_groups.id', ondelete='CASCADE'), primary_key=True)
    photo_id = Column(Integer, ForeignKey('photos.id', ondelete='CASCADE'), primary_key=True)

    # Copied from the owning group so a photo can belong to one group per type
    group_type = Column(Enum(GroupType), nullable=False)

    # Hamming distance to the representative (perceptual groups only)
    similarity_score = Column(Float)
    is_representative = Column(Boolean, nullable=False, default=False)

    # Relationships
    group = relationship("SimilarityGroup", back_populates="photo_similarities")
    photo = relationship("Photo", back_populates="similarities")

    __table_args__ = (
        UniqueConstraint('group_type', 'photo_id', name='uq_similarity_type_photo'),
        Index('idx_photo_similarity_group', 'group_id'),
    )


class Embedding(Base):
    """Vector embedding for semantic search, one per photo and model."""
    __tablename__ = 'embeddings'

    photo_id = Column(Integer, ForeignKey('photos.id', ondelete='CASCADE'), primary_key=True)
    model_name = Column(String(200), primary_key=True)

    # float32 array stored as little-endian bytes (see vectors.py)
    embedding = Column(LargeBinary, nullable=False)
    embedding_dim = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=func.now(), onupdate=func.now())

    # Relationships
    photo = relationship("Photo", back_populates="embeddings")

    __table_args__ = (
        Index('idx_embeddings_model', 'model_name'),
    )
