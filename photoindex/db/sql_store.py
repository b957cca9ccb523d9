"""
SQLAlchemy-backed PhotoStore.

Every public method runs in its own transactional session from the
Database handle, so multi-row changes (group replacement, trash
transitions, purge) are committed or rolled back as a unit.
"""

import dataclasses
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import and_, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..exceptions import InvalidInputError, NotFoundError
from .connection import Database
from .models import Embedding, Photo, PhotoSimilarity, SimilarityGroup as GroupRow
from .records import (
    EmbeddingRecord, GroupMember, GroupType, PhotoRecord, SimilarityGroup
)
from .store import (
    MemberScores, PhotoMutation, PhotoStore, Repick, Vector, assign_representative,
    validate_groups, validate_trash_fields
)
from .vectors import encode_embedding, embedding_dimension

logger = logging.getLogger(__name__)

# Fields copied between PhotoRecord and the Photo row (id is never written)
_PHOTO_FIELDS = [f.name for f in dataclasses.fields(PhotoRecord) if f.name != 'id']


class SqlPhotoStore(PhotoStore):
    """PhotoStore backed by a relational database through SQLAlchemy."""

    def __init__(self, database: Database):
        self.database = database

    # === Conversions ===

    @staticmethod
    def _to_record(photo: Photo) -> PhotoRecord:
        values = {name: getattr(photo, name) for name in _PHOTO_FIELDS}
        values['marked_for_deletion'] = bool(values['marked_for_deletion'])
        return PhotoRecord(id=photo.id, **values)

    @staticmethod
    def _to_group(row: GroupRow) -> SimilarityGroup:
        members = [
            GroupMember(
                photo_id=m.photo_id,
                similarity_score=m.similarity_score,
                is_representative=bool(m.is_representative),
            )
            for m in sorted(row.photo_similarities, key=lambda m: m.photo_id)
        ]
        return SimilarityGroup(
            group_type=row.group_type,
            members=members,
            id=row.id,
            created_at=row.created_at,
        )

    @staticmethod
    def _get_or_raise(session: Session, photo_id: int) -> Photo:
        photo = session.get(Photo, photo_id)
        if photo is None:
            raise NotFoundError(f"Photo {photo_id} not found")
        return photo

    # === Photos / hashes ===

    def add_photo(self, record: PhotoRecord) -> PhotoRecord:
        validate_trash_fields(record)
        with self.database.session() as session:
            values = {name: getattr(record, name) for name in _PHOTO_FIELDS}
            photo = Photo(**values)
            if record.id is not None:
                photo.id = record.id
            session.add(photo)
            try:
                session.flush()
            except IntegrityError as e:
                raise InvalidInputError(f"Photo already indexed: {record.path}") from e
            logger.debug(f"Created photo record: {photo.id} - {photo.filename}")
            return self._to_record(photo)

    def get_photo(self, photo_id: int) -> Optional[PhotoRecord]:
        with self.database.session() as session:
            photo = session.get(Photo, photo_id)
            return self._to_record(photo) if photo else None

    def get_photo_by_path(self, path: str) -> Optional[PhotoRecord]:
        with self.database.session() as session:
            photo = session.query(Photo).filter(Photo.path == path).first()
            return self._to_record(photo) if photo else None

    def update_hashes(self, photo_id: int, sha256_hash: Optional[str],
                      perceptual_hash: Optional[str]) -> None:
        with self.database.session() as session:
            photo = self._get_or_raise(session, photo_id)
            photo.sha256_hash = sha256_hash
            photo.perceptual_hash = perceptual_hash

    def set_description(self, photo_id: int, description: Optional[str]) -> None:
        with self.database.session() as session:
            photo = self._get_or_raise(session, photo_id)
            photo.description = description

    def query_photos(self,
                     has_sha256: Optional[bool] = None,
                     has_perceptual_hash: Optional[bool] = None,
                     marked: Optional[bool] = None,
                     trashed: Optional[bool] = None) -> List[PhotoRecord]:
        with self.database.session() as session:
            query = session.query(Photo)
            if has_sha256 is not None:
                column = Photo.sha256_hash
                query = query.filter(column.isnot(None) if has_sha256 else column.is_(None))
            if has_perceptual_hash is not None:
                column = Photo.perceptual_hash
                query = query.filter(column.isnot(None) if has_perceptual_hash else column.is_(None))
            if marked is not None:
                query = query.filter(Photo.marked_for_deletion == marked)
            if trashed is not None:
                column = Photo.trashed_at
                query = query.filter(column.isnot(None) if trashed else column.is_(None))
            return [self._to_record(p) for p in query.order_by(Photo.id).all()]

    def modify_photo(self, photo_id: int, mutate: PhotoMutation) -> PhotoRecord:
        with self.database.session() as session:
            photo = session.query(Photo).filter(Photo.id == photo_id).with_for_update().first()
            if photo is None:
                raise NotFoundError(f"Photo {photo_id} not found")
            updated = mutate(self._to_record(photo))
            validate_trash_fields(updated)
            for name in _PHOTO_FIELDS:
                setattr(photo, name, getattr(updated, name))
            try:
                session.flush()
            except IntegrityError as e:
                raise InvalidInputError(f"Cannot update photo {photo_id}: {e.orig}") from e
            return self._to_record(photo)

    def delete_photo(self, photo_id: int, repick: Repick) -> List[int]:
        with self.database.session() as session:
            photo = self._get_or_raise(session, photo_id)
            memberships = [
                (m.group_id, bool(m.is_representative))
                for m in session.query(PhotoSimilarity).filter(PhotoSimilarity.photo_id == photo_id)
            ]
            session.delete(photo)
            session.flush()

            repaired = []
            for group_id, was_representative in memberships:
                group = session.get(GroupRow, group_id)
                remaining = (
                    session.query(PhotoSimilarity)
                    .filter(PhotoSimilarity.group_id == group_id)
                    .order_by(PhotoSimilarity.photo_id)
                    .all()
                )
                if len(remaining) < 2:
                    session.delete(group)
                    logger.info(f"Dissolved similarity group {group_id} after deleting photo {photo_id}")
                elif was_representative:
                    photos = [self._to_record(session.get(Photo, m.photo_id)) for m in remaining]
                    representative_id, scores = repick(group.group_type, photos)
                    assign_representative(group_id, remaining, representative_id, scores)
                    group.representative_photo_id = representative_id
                    repaired.append(group_id)
            logger.info(f"Deleted photo record {photo_id}")
            return repaired

    def count_photos(self) -> int:
        with self.database.session() as session:
            return session.query(func.count(Photo.id)).scalar()

    # === Trash views ===

    def trashed_before(self, cutoff: datetime) -> List[PhotoRecord]:
        with self.database.session() as session:
            photos = (
                session.query(Photo)
                .filter(Photo.trashed_at.isnot(None), Photo.trashed_at < cutoff)
                .order_by(Photo.trashed_at, Photo.id)
                .all()
            )
            return [self._to_record(p) for p in photos]

    def trash_total_size(self) -> int:
        with self.database.session() as session:
            total = (
                session.query(func.coalesce(func.sum(Photo.size_bytes), 0))
                .filter(Photo.trashed_at.isnot(None))
                .scalar()
            )
            return int(total)

    # === Embeddings ===

    def put_embedding(self, photo_id: int, vector: Vector, model_name: str) -> EmbeddingRecord:
        data = encode_embedding(vector)
        with self.database.session() as session:
            self._get_or_raise(session, photo_id)
            row = session.get(Embedding, (photo_id, model_name))
            if row is None:
                row = Embedding(photo_id=photo_id, model_name=model_name)
                session.add(row)
            row.embedding = data
            row.embedding_dim = embedding_dimension(data)
            return EmbeddingRecord(photo_id=photo_id, model_name=model_name, data=data)

    def get_embedding(self, photo_id: int, model_name: str) -> Optional[EmbeddingRecord]:
        with self.database.session() as session:
            row = session.get(Embedding, (photo_id, model_name))
            if row is None:
                return None
            return EmbeddingRecord(photo_id=row.photo_id, model_name=row.model_name, data=bytes(row.embedding))

    def query_embeddings(self, model_name: str) -> List[EmbeddingRecord]:
        with self.database.session() as session:
            rows = (
                session.query(Embedding)
                .filter(Embedding.model_name == model_name)
                .order_by(Embedding.photo_id)
                .all()
            )
            return [
                EmbeddingRecord(photo_id=r.photo_id, model_name=r.model_name, data=bytes(r.embedding))
                for r in rows
            ]

    def count_embeddings(self, model_name: Optional[str] = None) -> int:
        with self.database.session() as session:
            query = session.query(func.count(Embedding.photo_id))
            if model_name is not None:
                query = query.filter(Embedding.model_name == model_name)
            return query.scalar()

    def photos_without_embeddings(self, model_name: str, limit: int) -> List[Tuple[int, str]]:
        with self.database.session() as session:
            rows = (
                session.query(Photo.id, Photo.path)
                .outerjoin(Embedding, and_(Embedding.photo_id == Photo.id,
                                           Embedding.model_name == model_name))
                .filter(Embedding.photo_id.is_(None), Photo.trashed_at.is_(None))
                .order_by(Photo.id)
                .limit(limit)
                .all()
            )
            return [(row.id, row.path) for row in rows]

    # === Similarity groups ===

    def replace_groups(self, group_type: GroupType,
                       groups: List[SimilarityGroup]) -> List[SimilarityGroup]:
        validate_groups(group_type, groups)
        with self.database.session() as session:
            wanted = {photo_id for group in groups for photo_id in group.photo_ids}
            if wanted:
                found = {row.id for row in session.query(Photo.id).filter(Photo.id.in_(wanted))}
                missing = sorted(wanted - found)
                if missing:
                    raise NotFoundError(f"Photos {missing} not found")

            stale = session.query(GroupRow).filter(GroupRow.group_type == group_type).all()
            for row in stale:
                session.delete(row)
            session.flush()

            rows = []
            for group in groups:
                row = GroupRow(group_type=group_type, representative_photo_id=group.representative_id)
                row.photo_similarities = [
                    PhotoSimilarity(
                        photo_id=m.photo_id,
                        group_type=group_type,
                        similarity_score=m.similarity_score,
                        is_representative=m.is_representative,
                    )
                    for m in group.members
                ]
                session.add(row)
                rows.append(row)
            try:
                session.flush()
            except IntegrityError as e:
                raise InvalidInputError(f"Cannot store {group_type.value} groups: {e.orig}") from e

            logger.info(f"Replaced {len(stale)} {group_type.value} groups with {len(rows)}")
            return [self._to_group(row) for row in rows]

    def list_groups(self, group_type: Optional[GroupType] = None) -> List[SimilarityGroup]:
        with self.database.session() as session:
            query = session.query(GroupRow)
            if group_type is not None:
                query = query.filter(GroupRow.group_type == group_type)
            return [self._to_group(row) for row in query.order_by(GroupRow.id).all()]

    def get_group(self, group_id: int) -> SimilarityGroup:
        with self.database.session() as session:
            row = session.get(GroupRow, group_id)
            if row is None:
                raise NotFoundError(f"Similarity group {group_id} not found")
            return self._to_group(row)

    def set_representative(self, group_id: int, photo_id: int,
                           scores: Optional[MemberScores] = None) -> None:
        with self.database.session() as session:
            row = session.get(GroupRow, group_id)
            if row is None:
                raise NotFoundError(f"Similarity group {group_id} not found")
            assign_representative(group_id, row.photo_similarities, photo_id, scores)
            row.representative_photo_id = photo_id
