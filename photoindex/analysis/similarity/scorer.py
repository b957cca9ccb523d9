"""
Selection of the photo to keep from a group of duplicates
"""

import logging
from typing import List, Sequence, Tuple

from ...db.records import PhotoRecord
from ...exceptions import InvalidInputError

logger = logging.getLogger(__name__)


class QualityScorer:
    """
    Rank duplicate photos so the best copy becomes the group representative.

    Ordering, best first:
      1. pixel count (width * height, missing dimensions count as 0)
      2. file size in bytes (larger usually means less compression)
      3. lowest photo id (oldest discovery wins ties)
    """

    @staticmethod
    def sort_key(photo: PhotoRecord) -> Tuple[int, int, int]:
        """Key where a larger tuple means a better keeper."""
        return (photo.pixel_count, photo.size_bytes or 0, -photo.id)

    def rank(self, photos: Sequence[PhotoRecord]) -> List[PhotoRecord]:
        """
        Order photos from best to worst keeper.

        Raises:
            InvalidInputError: if photos is empty
        """
        if not photos:
            raise InvalidInputError("Cannot rank an empty group")
        return sorted(photos, key=self.sort_key, reverse=True)

    def pick_representative(self, photos: Sequence[PhotoRecord]) -> int:
        """Return the id of the photo to keep."""
        best = self.rank(photos)[0]
        logger.debug(f"Representative {best.id} chosen from {len(photos)} candidates")
        return best.id

    @staticmethod
    def display_score(photo: PhotoRecord) -> int:
        """
        Coarse integer score for listings.

        Not used for selection; pick_representative applies the strict ordering.
        """
        score = photo.pixel_count // 10000
        score += (photo.size_bytes or 0) // 100000
        if photo.taken_at is not None:
            score += 10
        return score
