"""
Main duplicate management interface: detection runs, persistence of the
resulting groups, and caller-driven selection of copies to delete
"""

import dataclasses
import logging
from typing import Dict, List, Optional

from ...db.records import GroupType, PhotoRecord, SimilarityGroup
from ...db.store import PhotoStore
from ...exceptions import NotFoundError, PhotoIndexError
from ...utils.logging import StructuredLogger
from .grouper import DetectionReport, DuplicateGrouper
from .scorer import QualityScorer

logger = logging.getLogger(__name__)

DEFAULT_PERCEPTUAL_THRESHOLD = 50


class DuplicateManager:
    """
    Run exact and perceptual duplicate detection against a PhotoStore

    Each run replaces the stored groups of its type as a whole, so readers
    see either the previous group set or the new one.
    """

    def __init__(self, store: PhotoStore, config: Optional[Dict] = None,
                 scorer: Optional[QualityScorer] = None):
        """
        Initialize duplicate manager

        Args:
            store: Photo/group persistence
            config: Configuration dictionary (uses the 'similarity' section)
            scorer: Representative selection, QualityScorer() by default
        """
        self.store = store
        self.config = (config or {}).get('similarity', {})
        self.scorer = scorer or QualityScorer()
        self.grouper = DuplicateGrouper(
            scorer=self.scorer,
            use_segment_index=self.config.get('use_segment_index', True),
        )
        self.default_threshold = self.config.get('perceptual_threshold', DEFAULT_PERCEPTUAL_THRESHOLD)
        self.run_log = StructuredLogger(__name__)

    def _persist(self, report: DetectionReport) -> DetectionReport:
        try:
            report.groups = self.store.replace_groups(report.group_type, report.groups)
        except PhotoIndexError as e:
            logger.error(f"{report.group_type.value} detection run failed while storing groups: {e}")
            raise

        for skip in report.skipped:
            self.run_log.warning(
                "Photo skipped during detection",
                run=report.group_type.value, photo_id=skip.photo_id, reason=skip.reason,
            )
        self.run_log.info(
            "Duplicate detection complete",
            run=report.group_type.value,
            photos=report.photos_considered,
            groups=len(report.groups),
            grouped=report.photos_grouped,
            skipped=len(report.skipped),
        )
        return report

    def detect_exact(self) -> DetectionReport:
        """Group photos by identical content hash and store the result"""
        photos = self.store.query_photos(has_sha256=True)
        return self._persist(self.grouper.group_exact(photos))

    def detect_perceptual(self, threshold: Optional[int] = None) -> DetectionReport:
        """
        Group photos by perceptual hash distance and store the result

        Args:
            threshold: Maximum Hamming distance, defaults to
                similarity.perceptual_threshold

        Raises:
            InvalidInputError: if threshold is negative
        """
        if threshold is None:
            threshold = self.default_threshold
        photos = self.store.query_photos(has_perceptual_hash=True)
        return self._persist(self.grouper.group_perceptual(photos, threshold))

    def find_exact_duplicates(self) -> List[SimilarityGroup]:
        return self.detect_exact().groups

    def find_perceptual_duplicates(self, threshold: Optional[int] = None) -> List[SimilarityGroup]:
        return self.detect_perceptual(threshold).groups

    def list_groups(self, group_type: Optional[GroupType] = None) -> List[SimilarityGroup]:
        return self.store.list_groups(group_type)

    def score_and_pick_representative(self, group: SimilarityGroup) -> int:
        """
        Choose the photo to keep from a group's current members

        Raises:
            NotFoundError: if a member photo no longer exists
            InvalidInputError: if the group has no members
        """
        return self.scorer.pick_representative(self._member_photos(group))

    def _member_photos(self, group: SimilarityGroup) -> List[PhotoRecord]:
        photos = self.store.get_photos(group.photo_ids)
        if len(photos) != len(group.photo_ids):
            missing = sorted(set(group.photo_ids) - {p.id for p in photos})
            raise NotFoundError(f"Group members {missing} not found")
        return photos

    def repick_representative(self, group_id: int) -> int:
        """
        Re-score a stored group and flag the winner as its representative

        Perceptual member scores are recomputed against the new representative
        in the same store call.
        """
        group = self.store.get_group(group_id)
        representative_id, scores = self.grouper.rescore(group.group_type, self._member_photos(group))
        self.store.set_representative(group_id, representative_id, scores)
        logger.info(f"Group {group_id} representative is now photo {representative_id}")
        return representative_id

    def mark_non_representatives(self, group_id: int) -> List[int]:
        """
        Mark every member except the representative for deletion

        Trashed members are left alone. Nothing else calls this; detection
        never marks photos on its own.

        Returns:
            Ids of the photos that were marked
        """
        group = self.store.get_group(group_id)
        representative_id = group.representative_id
        if representative_id is None:
            representative_id = self.repick_representative(group_id)

        marked = []
        for photo_id in group.photo_ids:
            if photo_id == representative_id:
                continue
            photo = self.store.require_photo(photo_id)
            if photo.is_trashed or photo.marked_for_deletion:
                continue
            self.store.modify_photo(
                photo_id, lambda p: dataclasses.replace(p, marked_for_deletion=True)
            )
            marked.append(photo_id)

        logger.info(f"Marked {len(marked)} photos in group {group_id} for deletion")
        return marked

    def get_duplicate_statistics(self, group_type: Optional[GroupType] = None) -> Dict[str, float]:
        """Summary of stored groups, including bytes held by non-representatives"""
        groups = self.store.list_groups(group_type)
        photos_in_groups = sum(len(g.members) for g in groups)
        reclaimable = 0
        for group in groups:
            for photo in self.store.get_photos(group.photo_ids):
                if photo.id != group.representative_id and not photo.is_trashed:
                    reclaimable += photo.size_bytes or 0

        return {
            'groups': len(groups),
            'photos_in_groups': photos_in_groups,
            'duplicates': photos_in_groups - len(groups),
            'average_group_size': photos_in_groups / max(len(groups), 1),
            'reclaimable_bytes': reclaimable,
        }
