"""Deletion lifecycle and file-system trash"""

from .bin import TrashBin
from .lifecycle import CleanupResult, DeletionLifecycleManager, TrashUsage

__all__ = ['CleanupResult', 'DeletionLifecycleManager', 'TrashBin', 'TrashUsage']
