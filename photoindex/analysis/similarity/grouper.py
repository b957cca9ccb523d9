"""
Duplicate grouping over stored photo hashes

Exact groups partition photos by identical SHA-256 content hash. Perceptual
groups are the connected components of the graph linking two photos whose
perceptual hashes differ by at most `threshold` bits, so membership is
transitive: A~B and B~C puts A, B and C in one group even when A and C are
further apart than the threshold.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

from ...db.records import GroupMember, GroupType, PhotoRecord, SimilarityGroup, Skip
from ...exceptions import InvalidInputError
from .hashing import hamming_distance, parse_perceptual_hash, popcount
from .scorer import QualityScorer

logger = logging.getLogger(__name__)


@dataclass
class DetectionReport:
    """Outcome of one detection run"""
    group_type: GroupType
    groups: List[SimilarityGroup] = field(default_factory=list)
    skipped: List[Skip] = field(default_factory=list)
    photos_considered: int = 0
    pairs_compared: int = 0

    @property
    def photos_grouped(self) -> int:
        return sum(len(group.members) for group in self.groups)


class UnionFind:
    """Disjoint-set forest with path compression and union by rank"""

    def __init__(self):
        self.parent: Dict[int, int] = {}
        self.rank: Dict[int, int] = {}

    def add(self, item: int) -> None:
        if item not in self.parent:
            self.parent[item] = item
            self.rank[item] = 0

    def find(self, item: int) -> int:
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self.rank[root_a] < self.rank[root_b]:
            root_a, root_b = root_b, root_a
        self.parent[root_b] = root_a
        if self.rank[root_a] == self.rank[root_b]:
            self.rank[root_a] += 1

    def components(self) -> List[List[int]]:
        """All sets, each sorted, ordered by smallest element."""
        by_root: Dict[int, List[int]] = defaultdict(list)
        for item in self.parent:
            by_root[self.find(item)].append(item)
        return sorted((sorted(items) for items in by_root.values()), key=lambda items: items[0])


def segment_bounds(bits: int, segments: int) -> List[Tuple[int, int]]:
    """Split `bits` into `segments` contiguous, nearly equal (lo, hi) ranges."""
    edges = [(bits * k) // segments for k in range(segments + 1)]
    return [(edges[k], edges[k + 1]) for k in range(segments)]


def candidate_pairs(values: Sequence[int], bits: int, threshold: int,
                    use_segment_index: bool = True) -> Iterator[Tuple[int, int]]:
    """
    Index pairs (i, j), i < j, that may lie within `threshold` bits.

    With threshold + 1 segments, two hashes at distance <= threshold must agree
    on at least one whole segment (pigeonhole), so only pairs sharing a segment
    value are yielded. When there are fewer bits than segments every pair is
    yielded instead.

    Args:
        values: Parsed hashes, all of the same bit length
        bits: Bit length of the hashes
        threshold: Maximum Hamming distance of interest
        use_segment_index: False forces the all-pairs comparison

    Yields:
        Each candidate pair exactly once
    """
    count = len(values)
    segments = threshold + 1
    if not use_segment_index or segments > bits:
        for i in range(count):
            for j in range(i + 1, count):
                yield i, j
        return

    seen = set()
    for lo, hi in segment_bounds(bits, segments):
        mask = (1 << (hi - lo)) - 1
        buckets: Dict[int, List[int]] = defaultdict(list)
        for index, value in enumerate(values):
            buckets[(value >> lo) & mask].append(index)
        for indexes in buckets.values():
            for x in range(len(indexes)):
                for y in range(x + 1, len(indexes)):
                    pair = (indexes[x], indexes[y])
                    if pair not in seen:
                        seen.add(pair)
                        yield pair


class DuplicateGrouper:
    """
    Build exact and perceptual similarity groups from photo records

    Groups come back ordered by smallest member id, members by photo id, with
    exactly one representative per group chosen by the QualityScorer.
    """

    def __init__(self, scorer: Optional[QualityScorer] = None, use_segment_index: bool = True):
        """
        Args:
            scorer: Representative selection, QualityScorer() by default
            use_segment_index: Prune perceptual comparisons with the segment index
        """
        self.scorer = scorer or QualityScorer()
        self.use_segment_index = use_segment_index

    def _build_group(self, group_type: GroupType, photos: List[PhotoRecord]) -> SimilarityGroup:
        representative_id = self.scorer.pick_representative(photos)
        members = [
            GroupMember(
                photo_id=photo.id,
                is_representative=photo.id == representative_id,
            )
            for photo in sorted(photos, key=lambda p: p.id)
        ]
        return SimilarityGroup(group_type=group_type, members=members)

    def rescore(self, group_type: GroupType,
                photos: List[PhotoRecord]) -> Tuple[int, Dict[int, Optional[float]]]:
        """
        Pick a representative for an existing group and recompute member scores

        Perceptual scores are Hamming distances to the new representative's
        hash; a member whose hash is missing, malformed or of another length
        gets None. Exact groups carry no scores.

        Returns:
            (representative id, {photo id: similarity score})

        Raises:
            InvalidInputError: if photos is empty
        """
        representative_id = self.scorer.pick_representative(photos)
        scores: Dict[int, Optional[float]] = {photo.id: None for photo in photos}
        if group_type != GroupType.PERCEPTUAL:
            return representative_id, scores

        hashes = {photo.id: photo.perceptual_hash for photo in photos}
        anchor_hash = hashes[representative_id]
        for photo_id, value in hashes.items():
            if not anchor_hash or not value:
                continue
            try:
                scores[photo_id] = float(hamming_distance(anchor_hash, value))
            except InvalidInputError as e:
                logger.warning(f"No distance for photo {photo_id} in rescored group: {e}")
        return representative_id, scores

    def group_exact(self, photos: Sequence[PhotoRecord]) -> DetectionReport:
        """
        Group photos sharing an identical content hash

        Args:
            photos: Candidate records; those without sha256_hash are ignored

        Returns:
            DetectionReport with one group per hash held by two or more photos
        """
        report = DetectionReport(group_type=GroupType.EXACT)
        by_hash: Dict[str, List[PhotoRecord]] = defaultdict(list)
        for photo in photos:
            if not photo.sha256_hash:
                continue
            report.photos_considered += 1
            by_hash[photo.sha256_hash].append(photo)

        groups = [
            self._build_group(GroupType.EXACT, members)
            for members in by_hash.values()
            if len(members) >= 2
        ]
        report.groups = sorted(groups, key=lambda g: g.photo_ids[0])
        logger.info(f"Exact grouping: {report.photos_considered} hashed photos, "
                    f"{len(report.groups)} groups")
        return report

    def group_perceptual(self, photos: Sequence[PhotoRecord], threshold: int) -> DetectionReport:
        """
        Group photos whose perceptual hashes are transitively within `threshold` bits

        Hashes of different lengths are never compared. Malformed hashes are
        reported in `skipped` and do not abort the run.

        Args:
            photos: Candidate records; those without perceptual_hash are ignored
            threshold: Maximum Hamming distance for a direct link (inclusive)

        Returns:
            DetectionReport; member similarity_score is the Hamming distance
            to the group representative

        Raises:
            InvalidInputError: if threshold is negative
        """
        if threshold < 0:
            raise InvalidInputError(f"Perceptual threshold must be >= 0, got {threshold}")

        report = DetectionReport(group_type=GroupType.PERCEPTUAL)
        records: Dict[int, PhotoRecord] = {}
        parsed: Dict[int, int] = {}
        by_length: Dict[int, List[int]] = defaultdict(list)

        for photo in photos:
            if not photo.perceptual_hash:
                continue
            try:
                value = parse_perceptual_hash(photo.perceptual_hash)
            except InvalidInputError as e:
                logger.warning(f"Skipping photo {photo.id}: {e}")
                report.skipped.append(Skip(photo.id, str(e)))
                continue
            report.photos_considered += 1
            records[photo.id] = photo
            parsed[photo.id] = value
            by_length[len(photo.perceptual_hash)].append(photo.id)

        links = UnionFind()
        for length, photo_ids in by_length.items():
            values = [parsed[photo_id] for photo_id in photo_ids]
            for photo_id in photo_ids:
                links.add(photo_id)
            for i, j in candidate_pairs(values, length * 4, threshold, self.use_segment_index):
                report.pairs_compared += 1
                if popcount(values[i] ^ values[j]) <= threshold:
                    links.union(photo_ids[i], photo_ids[j])

        for component in links.components():
            if len(component) < 2:
                continue
            members = [records[photo_id] for photo_id in component]
            group = self._build_group(GroupType.PERCEPTUAL, members)
            anchor = parsed[group.representative_id]
            for member in group.members:
                member.similarity_score = float(popcount(parsed[member.photo_id] ^ anchor))
            report.groups.append(group)

        logger.info(f"Perceptual grouping (threshold={threshold}): "
                    f"{report.photos_considered} hashed photos, {report.pairs_compared} pairs compared, "
                    f"{len(report.groups)} groups, {len(report.skipped)} skipped")
        return report
