"""Duplicate detection for photoindex"""

from .grouper import DetectionReport, DuplicateGrouper
from .hashing import compute_file_hashes, hamming_distance
from .manager import DuplicateManager
from .scorer import QualityScorer

__all__ = [
    'DetectionReport',
    'DuplicateGrouper',
    'DuplicateManager',
    'QualityScorer',
    'compute_file_hashes',
    'hamming_distance',
]
