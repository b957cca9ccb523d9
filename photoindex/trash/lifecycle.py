"""
Deletion lifecycle of photo records

    Active <-> MarkedForDeletion -> Trashed -> Purged
                        Trashed  -> Active (restore)

Every transition is a single atomic store operation, so a crash never leaves
a photo with original_path set but trashed_at missing (or the reverse).
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Union

from ..db.records import PhotoRecord, Skip, TrashedPhoto, utcnow
from ..db.store import PhotoStore
from ..analysis.similarity.grouper import DuplicateGrouper
from ..analysis.similarity.scorer import QualityScorer
from ..exceptions import InvalidInputError, NotFoundError, PhotoIndexError
from ..utils.logging import StructuredLogger
from .bin import TrashBin

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_DAYS = 30
DEFAULT_MAX_SIZE_BYTES = 1024 * 1024 * 1024


@dataclass
class TrashUsage:
    """Trash size against its configured limit"""
    total_bytes: int
    max_bytes: int

    @property
    def percentage(self) -> float:
        if self.max_bytes <= 0:
            return 0.0
        return self.total_bytes / self.max_bytes * 100

    @property
    def over_limit(self) -> bool:
        return self.max_bytes > 0 and self.total_bytes > self.max_bytes


@dataclass
class CleanupResult:
    """Outcome of purging photos that sat in the trash too long"""
    files_deleted: int = 0
    bytes_freed: int = 0
    records_purged: int = 0
    skipped: List[Skip] = field(default_factory=list)


class DeletionLifecycleManager:
    """
    Mark, trash, restore and purge photo records

    The record-level transitions (trash, restore, purge) never touch files.
    The *_file variants move the file through a TrashBin first and keep the
    record in step with it.
    """

    def __init__(self, store: PhotoStore, config: Optional[Dict] = None,
                 scorer: Optional[QualityScorer] = None,
                 trash_bin: Optional[TrashBin] = None):
        """
        Initialize lifecycle manager

        Args:
            store: Photo/group persistence
            config: Configuration dictionary (uses the 'trash' section)
            scorer: Used to re-pick group representatives after a purge
            trash_bin: File-system trash; built from trash.path when omitted
        """
        self.store = store
        self.config = (config or {}).get('trash', {})
        self.grouper = DuplicateGrouper(scorer=scorer or QualityScorer())
        self.max_age_days = self.config.get('max_age_days', DEFAULT_MAX_AGE_DAYS)
        self.max_size_bytes = self.config.get('max_size_bytes', DEFAULT_MAX_SIZE_BYTES)
        if trash_bin is None and self.config.get('path'):
            trash_bin = TrashBin(self.config['path'])
        self.trash_bin = trash_bin
        self.run_log = StructuredLogger(__name__)

    # === Marking ===

    def mark_for_deletion(self, photo_id: int) -> PhotoRecord:
        """Flag a photo for deletion. Raises NotFoundError for an unknown id."""
        photo = self.store.modify_photo(
            photo_id, lambda p: dataclasses.replace(p, marked_for_deletion=True)
        )
        logger.info(f"Marked photo {photo_id} for deletion")
        return photo

    def unmark_for_deletion(self, photo_id: int) -> PhotoRecord:
        """Clear the deletion flag. Raises NotFoundError for an unknown id."""
        photo = self.store.modify_photo(
            photo_id, lambda p: dataclasses.replace(p, marked_for_deletion=False)
        )
        logger.info(f"Unmarked photo {photo_id}")
        return photo

    # === Record transitions ===

    def trash(self, photo_id: int, trash_path: Union[str, Path]) -> PhotoRecord:
        """
        Record that a photo's file now lives at trash_path

        Sets original_path to the current path, path to trash_path, stamps
        trashed_at (UTC) and clears the deletion mark.

        Raises:
            NotFoundError: for an unknown id
            InvalidInputError: if the photo is already trashed
        """
        def move(photo: PhotoRecord) -> PhotoRecord:
            if photo.is_trashed:
                raise InvalidInputError(f"Photo {photo_id} is already in the trash")
            return dataclasses.replace(
                photo,
                original_path=photo.path,
                path=str(trash_path),
                trashed_at=utcnow(),
                marked_for_deletion=False,
            )

        photo = self.store.modify_photo(photo_id, move)
        logger.info(f"Trashed photo {photo_id}: {photo.original_path} -> {photo.path}")
        return photo

    def restore(self, photo_id: int) -> str:
        """
        Undo trash: move original_path back into path and clear the trash fields

        Returns:
            The restored path

        Raises:
            NotFoundError: for an unknown id or a photo that is not trashed
        """
        def move_back(photo: PhotoRecord) -> PhotoRecord:
            if not photo.is_trashed or photo.original_path is None:
                raise NotFoundError(f"Photo {photo_id} is not in the trash")
            return dataclasses.replace(
                photo, path=photo.original_path, original_path=None, trashed_at=None
            )

        photo = self.store.modify_photo(photo_id, move_back)
        logger.info(f"Restored photo {photo_id} to {photo.path}")
        return photo.path

    def purge(self, photo_id: int) -> List[int]:
        """
        Delete a photo record with its embeddings and group memberships

        Groups reduced below two members are dissolved; groups that lost their
        representative get a new one from the QualityScorer, with perceptual
        distances recomputed against it. The deletion and the repairs are one
        store transaction: if a repick fails nothing is purged.

        Returns:
            Ids of groups whose representative was re-picked

        Raises:
            NotFoundError: for an unknown id
        """
        repaired = self.store.delete_photo(photo_id, self.grouper.rescore)
        for group_id in repaired:
            logger.info(f"Group {group_id} representative re-picked after purging photo {photo_id}")
        logger.info(f"Purged photo {photo_id}")
        return repaired

    # === Views ===

    def old_trashed(self, max_age_days: Optional[int] = None,
                    now: Optional[datetime] = None) -> List[TrashedPhoto]:
        """
        Trashed photos with trashed_at strictly before now - max_age_days, oldest first

        Nothing is purged; the caller decides what to do with the list.
        """
        if max_age_days is None:
            max_age_days = self.max_age_days
        if max_age_days < 0:
            raise InvalidInputError(f"max_age_days must be >= 0, got {max_age_days}")
        cutoff = (now or utcnow()) - timedelta(days=max_age_days)
        return [TrashedPhoto.from_record(p) for p in self.store.trashed_before(cutoff)]

    def trash_total_size(self) -> int:
        return self.store.trash_total_size()

    def trash_usage(self, max_size_bytes: Optional[int] = None) -> TrashUsage:
        if max_size_bytes is None:
            max_size_bytes = self.max_size_bytes
        return TrashUsage(total_bytes=self.trash_total_size(), max_bytes=max_size_bytes)

    def list_marked(self) -> List[PhotoRecord]:
        return self.store.query_photos(marked=True)

    def list_marked_not_trashed(self) -> List[PhotoRecord]:
        return self.store.query_photos(marked=True, trashed=False)

    def list_trashed(self) -> List[TrashedPhoto]:
        """Trashed photos, most recently trashed first"""
        photos = self.store.query_photos(trashed=True)
        photos.sort(key=lambda p: (p.trashed_at, -p.id), reverse=True)
        return [TrashedPhoto.from_record(p) for p in photos]

    # === File-aware workflows ===

    def _require_bin(self, trash_bin: Optional[TrashBin]) -> TrashBin:
        trash_bin = trash_bin or self.trash_bin
        if trash_bin is None:
            raise InvalidInputError("No trash directory configured (trash.path)")
        return trash_bin

    def trash_file(self, photo_id: int, trash_bin: Optional[TrashBin] = None) -> PhotoRecord:
        """
        Move a photo's file into the trash bin and record the move

        The file is moved back if the record cannot be updated.
        """
        trash_bin = self._require_bin(trash_bin)
        photo = self.store.require_photo(photo_id)
        if photo.is_trashed:
            raise InvalidInputError(f"Photo {photo_id} is already in the trash")

        trash_path = trash_bin.move_to_trash(photo.path)
        try:
            return self.trash(photo_id, trash_path)
        except PhotoIndexError:
            logger.error(f"Recording trash of photo {photo_id} failed, moving file back")
            trash_bin.restore(trash_path, photo.path)
            raise

    def restore_file(self, photo_id: int, trash_bin: Optional[TrashBin] = None) -> str:
        """Move a trashed photo's file back to its original path and restore the record"""
        trash_bin = self._require_bin(trash_bin)
        photo = self.store.require_photo(photo_id)
        if not photo.is_trashed or photo.original_path is None:
            raise NotFoundError(f"Photo {photo_id} is not in the trash")

        trash_bin.restore(photo.path, photo.original_path)
        try:
            return self.restore(photo_id)
        except PhotoIndexError:
            logger.error(f"Recording restore of photo {photo_id} failed, moving file back")
            trash_bin.restore(photo.original_path, photo.path)
            raise

    def purge_file(self, photo_id: int, trash_bin: Optional[TrashBin] = None) -> Optional[int]:
        """
        Delete a trashed photo's file and purge its record

        A file that is already gone does not prevent the purge.

        Returns:
            Bytes freed on disk, or None when the file was already missing
        """
        trash_bin = self._require_bin(trash_bin)
        photo = self.store.require_photo(photo_id)
        if not photo.is_trashed:
            raise InvalidInputError(f"Photo {photo_id} must be trashed before it is purged from disk")

        freed = None
        try:
            freed = trash_bin.delete_permanently(photo.path)
        except NotFoundError:
            logger.warning(f"Trashed file for photo {photo_id} already missing: {photo.path}")
        self.purge(photo_id)
        return freed

    def cleanup_old(self, max_age_days: Optional[int] = None,
                    trash_bin: Optional[TrashBin] = None,
                    now: Optional[datetime] = None) -> CleanupResult:
        """
        Permanently delete photos trashed more than max_age_days ago

        A photo whose file cannot be deleted is skipped and keeps its record.
        """
        trash_bin = self._require_bin(trash_bin)
        result = CleanupResult()
        for trashed in self.old_trashed(max_age_days, now=now):
            try:
                freed = self.purge_file(trashed.id, trash_bin)
            except PhotoIndexError as e:
                logger.warning(f"Skipping cleanup of photo {trashed.id}: {e}")
                result.skipped.append(Skip(trashed.id, str(e)))
                continue
            result.records_purged += 1
            if freed is not None:
                result.files_deleted += 1
                result.bytes_freed += freed

        self.run_log.info(
            "Trash cleanup complete",
            files_deleted=result.files_deleted,
            bytes_freed=result.bytes_freed,
            records_purged=result.records_purged,
            skipped=len(result.skipped),
        )
        return result
