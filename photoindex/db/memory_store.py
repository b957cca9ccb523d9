"""
In-process PhotoStore.

Keeps everything in dictionaries guarded by one re-entrant lock. Useful for
tests, one-shot CLI runs against imported data, and as the reference for the
store contract. Embeddings are kept encoded so the binary layout is the same
as in the SQL store.
"""

import copy
import dataclasses
import itertools
import logging
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..exceptions import InvalidInputError, NotFoundError
from .records import (
    EmbeddingRecord, GroupType, PhotoRecord, SimilarityGroup, utcnow
)
from .store import (
    MemberScores, PhotoMutation, PhotoStore, Repick, Vector, assign_representative,
    validate_groups, validate_trash_fields
)
from .vectors import encode_embedding

logger = logging.getLogger(__name__)


class MemoryPhotoStore(PhotoStore):
    """PhotoStore kept entirely in memory."""

    def __init__(self):
        self._lock = threading.RLock()
        self._photos: Dict[int, PhotoRecord] = {}
        self._embeddings: Dict[Tuple[int, str], bytes] = {}
        self._groups: Dict[int, SimilarityGroup] = {}
        self._photo_ids = itertools.count(1)
        self._group_ids = itertools.count(1)

    # === Photos / hashes ===

    def _require(self, photo_id: int) -> PhotoRecord:
        photo = self._photos.get(photo_id)
        if photo is None:
            raise NotFoundError(f"Photo {photo_id} not found")
        return photo

    def _path_taken(self, path: str, exclude_id: Optional[int] = None) -> bool:
        return any(p.path == path and p.id != exclude_id for p in self._photos.values())

    def add_photo(self, record: PhotoRecord) -> PhotoRecord:
        validate_trash_fields(record)
        with self._lock:
            if self._path_taken(record.path):
                raise InvalidInputError(f"Photo already indexed: {record.path}")
            if record.id is not None:
                if record.id in self._photos:
                    raise InvalidInputError(f"Photo id {record.id} already in use")
                photo_id = record.id
            else:
                photo_id = next(self._photo_ids)
                while photo_id in self._photos:
                    photo_id = next(self._photo_ids)
            stored = dataclasses.replace(record, id=photo_id)
            self._photos[photo_id] = stored
            logger.debug(f"Created photo record: {photo_id} - {stored.filename}")
            return copy.copy(stored)

    def get_photo(self, photo_id: int) -> Optional[PhotoRecord]:
        with self._lock:
            photo = self._photos.get(photo_id)
            return copy.copy(photo) if photo else None

    def get_photo_by_path(self, path: str) -> Optional[PhotoRecord]:
        with self._lock:
            for photo in self._photos.values():
                if photo.path == path:
                    return copy.copy(photo)
            return None

    def update_hashes(self, photo_id: int, sha256_hash: Optional[str],
                      perceptual_hash: Optional[str]) -> None:
        self.modify_photo(
            photo_id,
            lambda p: dataclasses.replace(p, sha256_hash=sha256_hash, perceptual_hash=perceptual_hash),
        )

    def set_description(self, photo_id: int, description: Optional[str]) -> None:
        self.modify_photo(photo_id, lambda p: dataclasses.replace(p, description=description))

    def query_photos(self,
                     has_sha256: Optional[bool] = None,
                     has_perceptual_hash: Optional[bool] = None,
                     marked: Optional[bool] = None,
                     trashed: Optional[bool] = None) -> List[PhotoRecord]:
        def keep(photo: PhotoRecord) -> bool:
            if has_sha256 is not None and (photo.sha256_hash is not None) != has_sha256:
                return False
            if has_perceptual_hash is not None and (photo.perceptual_hash is not None) != has_perceptual_hash:
                return False
            if marked is not None and photo.marked_for_deletion != marked:
                return False
            if trashed is not None and photo.is_trashed != trashed:
                return False
            return True

        with self._lock:
            return [copy.copy(p) for _, p in sorted(self._photos.items()) if keep(p)]

    def modify_photo(self, photo_id: int, mutate: PhotoMutation) -> PhotoRecord:
        with self._lock:
            current = self._require(photo_id)
            updated = dataclasses.replace(mutate(copy.copy(current)), id=photo_id)
            validate_trash_fields(updated)
            if updated.path != current.path and self._path_taken(updated.path, exclude_id=photo_id):
                raise InvalidInputError(f"Cannot update photo {photo_id}: path {updated.path} in use")
            self._photos[photo_id] = updated
            return copy.copy(updated)

    def delete_photo(self, photo_id: int, repick: Repick) -> List[int]:
        with self._lock:
            self._require(photo_id)

            # Work on copies so a failing repick leaves the store untouched
            dissolved = []
            updated: Dict[int, SimilarityGroup] = {}
            repaired = []
            for group_id, group in self._groups.items():
                member = group.member(photo_id)
                if member is None:
                    continue
                survivors = [copy.copy(m) for m in group.members if m.photo_id != photo_id]
                if len(survivors) < 2:
                    dissolved.append(group_id)
                    continue
                if member.is_representative:
                    photos = [copy.copy(self._photos[m.photo_id]) for m in survivors]
                    representative_id, scores = repick(group.group_type, photos)
                    assign_representative(group_id, survivors, representative_id, scores)
                    repaired.append(group_id)
                updated[group_id] = dataclasses.replace(group, members=survivors)

            del self._photos[photo_id]
            for key in [k for k in self._embeddings if k[0] == photo_id]:
                del self._embeddings[key]
            for group_id in dissolved:
                del self._groups[group_id]
                logger.info(f"Dissolved similarity group {group_id} after deleting photo {photo_id}")
            self._groups.update(updated)
            logger.info(f"Deleted photo record {photo_id}")
            return repaired

    def count_photos(self) -> int:
        with self._lock:
            return len(self._photos)

    # === Trash views ===

    def trashed_before(self, cutoff: datetime) -> List[PhotoRecord]:
        with self._lock:
            photos = [p for p in self._photos.values() if p.is_trashed and p.trashed_at < cutoff]
            return [copy.copy(p) for p in sorted(photos, key=lambda p: (p.trashed_at, p.id))]

    def trash_total_size(self) -> int:
        with self._lock:
            return sum(p.size_bytes or 0 for p in self._photos.values() if p.is_trashed)

    # === Embeddings ===

    def put_embedding(self, photo_id: int, vector: Vector, model_name: str) -> EmbeddingRecord:
        data = encode_embedding(vector)
        with self._lock:
            self._require(photo_id)
            self._embeddings[(photo_id, model_name)] = data
            return EmbeddingRecord(photo_id=photo_id, model_name=model_name, data=data)

    def put_raw_embedding(self, photo_id: int, data: bytes, model_name: str) -> EmbeddingRecord:
        """Store pre-encoded bytes without re-encoding (used for imports and tests)."""
        with self._lock:
            self._require(photo_id)
            self._embeddings[(photo_id, model_name)] = bytes(data)
            return EmbeddingRecord(photo_id=photo_id, model_name=model_name, data=bytes(data))

    def get_embedding(self, photo_id: int, model_name: str) -> Optional[EmbeddingRecord]:
        with self._lock:
            data = self._embeddings.get((photo_id, model_name))
            if data is None:
                return None
            return EmbeddingRecord(photo_id=photo_id, model_name=model_name, data=data)

    def query_embeddings(self, model_name: str) -> List[EmbeddingRecord]:
        with self._lock:
            return [
                EmbeddingRecord(photo_id=photo_id, model_name=name, data=data)
                for (photo_id, name), data in sorted(self._embeddings.items())
                if name == model_name
            ]

    def count_embeddings(self, model_name: Optional[str] = None) -> int:
        with self._lock:
            if model_name is None:
                return len(self._embeddings)
            return sum(1 for (_, name) in self._embeddings if name == model_name)

    def photos_without_embeddings(self, model_name: str, limit: int) -> List[Tuple[int, str]]:
        with self._lock:
            missing = [
                (photo_id, photo.path)
                for photo_id, photo in sorted(self._photos.items())
                if not photo.is_trashed and (photo_id, model_name) not in self._embeddings
            ]
            return missing[:limit]

    # === Similarity groups ===

    def replace_groups(self, group_type: GroupType,
                       groups: List[SimilarityGroup]) -> List[SimilarityGroup]:
        validate_groups(group_type, groups)
        with self._lock:
            for group in groups:
                for photo_id in group.photo_ids:
                    self._require(photo_id)

            stale = [gid for gid, g in self._groups.items() if g.group_type == group_type]
            for group_id in stale:
                del self._groups[group_id]

            stored = []
            created_at = utcnow()
            for group in groups:
                members = sorted(copy.deepcopy(group.members), key=lambda m: m.photo_id)
                saved = SimilarityGroup(
                    group_type=group_type,
                    members=members,
                    id=next(self._group_ids),
                    created_at=created_at,
                )
                self._groups[saved.id] = saved
                stored.append(copy.deepcopy(saved))

            logger.info(f"Replaced {len(stale)} {group_type.value} groups with {len(stored)}")
            return stored

    def list_groups(self, group_type: Optional[GroupType] = None) -> List[SimilarityGroup]:
        with self._lock:
            return [
                copy.deepcopy(g) for _, g in sorted(self._groups.items())
                if group_type is None or g.group_type == group_type
            ]

    def get_group(self, group_id: int) -> SimilarityGroup:
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                raise NotFoundError(f"Similarity group {group_id} not found")
            return copy.deepcopy(group)

    def set_representative(self, group_id: int, photo_id: int,
                           scores: Optional[MemberScores] = None) -> None:
        with self._lock:
            group = self._groups.get(group_id)
            if group is None:
                raise NotFoundError(f"Similarity group {group_id} not found")
            assign_representative(group_id, group.members, photo_id, scores)
