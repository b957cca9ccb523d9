"""
Plain data records passed between the store, detection, search and trash layers.

These are deliberately decoupled from the ORM models so that any PhotoStore
variant can produce them.
"""

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import numpy as np

from .vectors import decode_embedding, embedding_dimension


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class GroupType(enum.Enum):
    """Kind of duplicate relationship a similarity group captures."""
    EXACT = "exact"
    PERCEPTUAL = "perceptual"


@dataclass
class PhotoRecord:
    """A photo row as seen by the duplicate and trash subsystems."""
    id: Optional[int]
    path: str
    filename: str
    size_bytes: int = 0
    width: Optional[int] = None
    height: Optional[int] = None
    sha256_hash: Optional[str] = None
    perceptual_hash: Optional[str] = None
    taken_at: Optional[datetime] = None
    marked_for_deletion: bool = False
    description: Optional[str] = None
    original_path: Optional[str] = None
    trashed_at: Optional[datetime] = None

    @property
    def pixel_count(self) -> int:
        """width * height, treating missing dimensions as zero."""
        return (self.width or 0) * (self.height or 0)

    @property
    def is_trashed(self) -> bool:
        return self.trashed_at is not None


@dataclass
class GroupMember:
    """Membership of one photo in a similarity group."""
    photo_id: int
    similarity_score: Optional[float] = None
    is_representative: bool = False


@dataclass
class SimilarityGroup:
    """A set of two or more photos considered duplicates of each other."""
    group_type: GroupType
    members: List[GroupMember] = field(default_factory=list)
    id: Optional[int] = None
    created_at: Optional[datetime] = None

    @property
    def photo_ids(self) -> List[int]:
        return [m.photo_id for m in self.members]

    @property
    def representative_id(self) -> Optional[int]:
        for member in self.members:
            if member.is_representative:
                return member.photo_id
        return None

    def member(self, photo_id: int) -> Optional[GroupMember]:
        for member in self.members:
            if member.photo_id == photo_id:
                return member
        return None


@dataclass
class EmbeddingRecord:
    """
    A stored embedding in its on-disk form.

    The raw little-endian bytes are kept so that malformed rows can be
    detected (and skipped) by the reader instead of failing a whole query.
    """
    photo_id: int
    model_name: str
    data: bytes

    @property
    def dimension(self) -> int:
        return embedding_dimension(self.data)

    def vector(self) -> np.ndarray:
        """Decode the embedding; raises InvalidInputError on a bad byte length."""
        return decode_embedding(self.data)


@dataclass
class SearchResult:
    """One ranked search hit. similarity is None for keyword matches."""
    photo_id: int
    path: str
    filename: str
    similarity: Optional[float]
    description: Optional[str] = None


@dataclass
class TrashedPhoto:
    """View over a PhotoRecord that currently sits in the trash."""
    id: int
    path: str
    original_path: str
    filename: str
    trashed_at: datetime
    size_bytes: int

    @classmethod
    def from_record(cls, record: PhotoRecord) -> 'TrashedPhoto':
        return cls(
            id=record.id,
            path=record.path,
            original_path=record.original_path,
            filename=record.filename,
            trashed_at=record.trashed_at,
            size_bytes=record.size_bytes or 0,
        )


@dataclass
class Skip:
    """A record excluded from a run because its data was unusable."""
    photo_id: int
    reason: str
