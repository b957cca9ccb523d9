"""
Storage capability interface for photoindex.

Duplicate detection, search and the trash lifecycle depend only on
PhotoStore. Concrete variants live in sql_store.py (SQLAlchemy) and
memory_store.py (in-process); both keep embeddings in the little-endian
float32 layout from vectors.py.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from ..exceptions import InvalidInputError, NotFoundError
from .records import EmbeddingRecord, GroupType, PhotoRecord, SimilarityGroup

PhotoMutation = Callable[[PhotoRecord], PhotoRecord]
Vector = Union[Sequence[float], np.ndarray]
MemberScores = Dict[int, Optional[float]]
# (group type, surviving member photos) -> (representative id, member scores)
Repick = Callable[[GroupType, List[PhotoRecord]], Tuple[int, MemberScores]]


def validate_trash_fields(record: PhotoRecord) -> None:
    """
    trashed_at and original_path are set together or not at all.

    Raises:
        InvalidInputError: if only one of them is set
    """
    if (record.trashed_at is None) != (record.original_path is None):
        raise InvalidInputError(
            f"Photo {record.path}: trashed_at and original_path must be set together"
        )


def assign_representative(group_id: int, members: Sequence, photo_id: int,
                          scores: Optional[MemberScores] = None) -> None:
    """
    Flag photo_id as the only representative among members.

    Works on any member objects carrying photo_id, is_representative and
    similarity_score (GroupMember records or ORM rows). When scores is given
    every member's similarity_score is replaced; members missing from it get None.

    Raises:
        NotFoundError: if photo_id is not among members
    """
    if photo_id not in {m.photo_id for m in members}:
        raise NotFoundError(f"Photo {photo_id} is not a member of group {group_id}")
    for member in members:
        member.is_representative = member.photo_id == photo_id
        if scores is not None:
            member.similarity_score = scores.get(member.photo_id)


def validate_groups(group_type: GroupType, groups: Sequence[SimilarityGroup]) -> None:
    """
    Check the group invariants before anything is written.

    Every group must match group_type, have at least two distinct members and
    exactly one representative, and no photo may appear in two groups.

    Raises:
        InvalidInputError: on the first violated invariant
    """
    seen = set()
    for group in groups:
        if group.group_type != group_type:
            raise InvalidInputError(
                f"Group of type {group.group_type.value} passed to replace {group_type.value} groups"
            )
        ids = group.photo_ids
        if len(ids) < 2:
            raise InvalidInputError(f"Similarity group needs at least 2 members, got {len(ids)}")
        if len(set(ids)) != len(ids):
            raise InvalidInputError(f"Similarity group lists a photo twice: {ids}")
        representatives = [m for m in group.members if m.is_representative]
        if len(representatives) != 1:
            raise InvalidInputError(
                f"Similarity group must have exactly one representative, got {len(representatives)}"
            )
        overlap = seen.intersection(ids)
        if overlap:
            raise InvalidInputError(
                f"Photos {sorted(overlap)} appear in more than one {group_type.value} group"
            )
        seen.update(ids)


class PhotoStore(ABC):
    """Abstract base class for photo, embedding and group persistence."""

    # === Photos / hashes ===

    @abstractmethod
    def add_photo(self, record: PhotoRecord) -> PhotoRecord:
        """Insert a new photo and return it with its assigned id.

        Raises InvalidInputError if the path is already present or only one of
        trashed_at and original_path is set.
        """
        pass

    @abstractmethod
    def get_photo(self, photo_id: int) -> Optional[PhotoRecord]:
        """Return the photo with this id, or None."""
        pass

    @abstractmethod
    def get_photo_by_path(self, path: str) -> Optional[PhotoRecord]:
        """Return the photo currently stored at path, or None."""
        pass

    @abstractmethod
    def update_hashes(self, photo_id: int, sha256_hash: Optional[str],
                      perceptual_hash: Optional[str]) -> None:
        """Replace both hash fields of a photo. Raises NotFoundError."""
        pass

    @abstractmethod
    def set_description(self, photo_id: int, description: Optional[str]) -> None:
        """Store the free-text description. Raises NotFoundError."""
        pass

    @abstractmethod
    def query_photos(self,
                     has_sha256: Optional[bool] = None,
                     has_perceptual_hash: Optional[bool] = None,
                     marked: Optional[bool] = None,
                     trashed: Optional[bool] = None) -> List[PhotoRecord]:
        """List photos ordered by id; each filter left as None is not applied."""
        pass

    @abstractmethod
    def modify_photo(self, photo_id: int, mutate: PhotoMutation) -> PhotoRecord:
        """
        Atomically read a photo, apply mutate, and write the result back.

        mutate receives a copy of the current record and returns the new one;
        an exception raised by mutate aborts the change. The id and path
        uniqueness are preserved by the store.

        Raises:
            NotFoundError: if the photo does not exist
            InvalidInputError: if the result sets only one of trashed_at and
                original_path
        """
        pass

    @abstractmethod
    def delete_photo(self, photo_id: int, repick: Repick) -> List[int]:
        """
        Remove a photo with its embeddings and group memberships.

        Groups left with fewer than two members are dissolved. A surviving
        group that loses its representative gets the one chosen by repick,
        together with repick's member scores, in the same transaction. An
        exception from repick leaves everything unchanged.

        Args:
            photo_id: Photo to remove
            repick: Called with the group type and the surviving member photos

        Returns:
            Ids of surviving groups whose representative was re-picked

        Raises:
            NotFoundError: if the photo does not exist
        """
        pass

    @abstractmethod
    def count_photos(self) -> int:
        pass

    # === Trash views ===

    @abstractmethod
    def trashed_before(self, cutoff: datetime) -> List[PhotoRecord]:
        """Trashed photos with trashed_at strictly before cutoff, oldest first."""
        pass

    @abstractmethod
    def trash_total_size(self) -> int:
        """Sum of size_bytes over trashed photos."""
        pass

    # === Embeddings ===

    @abstractmethod
    def put_embedding(self, photo_id: int, vector: Vector, model_name: str) -> EmbeddingRecord:
        """Store or overwrite the embedding for (photo_id, model_name).

        Raises NotFoundError if the photo does not exist.
        """
        pass

    @abstractmethod
    def get_embedding(self, photo_id: int, model_name: str) -> Optional[EmbeddingRecord]:
        pass

    @abstractmethod
    def query_embeddings(self, model_name: str) -> List[EmbeddingRecord]:
        """All embeddings of one model, ordered by photo id."""
        pass

    @abstractmethod
    def count_embeddings(self, model_name: Optional[str] = None) -> int:
        pass

    @abstractmethod
    def photos_without_embeddings(self, model_name: str, limit: int) -> List[Tuple[int, str]]:
        """(id, path) of photos lacking an embedding for model_name."""
        pass

    # === Similarity groups ===

    @abstractmethod
    def replace_groups(self, group_type: GroupType,
                       groups: List[SimilarityGroup]) -> List[SimilarityGroup]:
        """
        Atomically replace every stored group of group_type with groups.

        Returns:
            The stored groups with ids and created_at assigned
        """
        pass

    @abstractmethod
    def list_groups(self, group_type: Optional[GroupType] = None) -> List[SimilarityGroup]:
        """Stored groups ordered by id, optionally of one type."""
        pass

    @abstractmethod
    def get_group(self, group_id: int) -> SimilarityGroup:
        """Raises NotFoundError for an unknown group id."""
        pass

    @abstractmethod
    def set_representative(self, group_id: int, photo_id: int,
                           scores: Optional[MemberScores] = None) -> None:
        """Flag photo_id as the only representative of the group.

        When scores is given, every member's similarity_score is replaced in
        the same transaction (members missing from scores get None).

        Raises NotFoundError if the group does not exist or photo_id is not a member.
        """
        pass

    # === Convenience ===

    def require_photo(self, photo_id: int) -> PhotoRecord:
        """get_photo that raises NotFoundError instead of returning None."""
        photo = self.get_photo(photo_id)
        if photo is None:
            raise NotFoundError(f"Photo {photo_id} not found")
        return photo

    def get_photos(self, photo_ids: Sequence[int]) -> List[PhotoRecord]:
        """Fetch several photos, silently dropping unknown ids."""
        photos = []
        for photo_id in photo_ids:
            photo = self.get_photo(photo_id)
            if photo is not None:
                photos.append(photo)
        return photos
