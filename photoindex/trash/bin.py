"""
File-system trash directory

Moves files into one flat trash directory under collision-free names,
restores them to their original location, and deletes them for good.
Record keeping lives in DeletionLifecycleManager; this class only touches files.
"""

import itertools
import logging
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Union

from ..exceptions import InvalidInputError, NotFoundError, StorageFailureError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class TrashBin:
    """Trash directory on the local file system"""

    # Shared by every bin in the process so two moves in the same second
    # never produce the same name
    _sequence = itertools.count()

    def __init__(self, path: PathLike):
        """
        Args:
            path: Trash directory, created on first use
        """
        self.path = Path(path).expanduser()

    def _ensure_dir(self) -> None:
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageFailureError(f"Failed to create trash directory {self.path}: {e}") from e

    def _trash_name(self, original: Path) -> Path:
        stem = original.stem or "unknown"
        timestamp = int(datetime.now(timezone.utc).timestamp())
        while True:
            candidate = self.path / f"{stem}_{timestamp}_{next(self._sequence)}{original.suffix}"
            if not candidate.exists():
                return candidate

    @staticmethod
    def _move(source: Path, destination: Path) -> None:
        # shutil.move renames, or copies then deletes across file systems
        try:
            shutil.move(str(source), str(destination))
        except OSError as e:
            raise StorageFailureError(f"Failed to move {source} to {destination}: {e}") from e

    def move_to_trash(self, path: PathLike) -> Path:
        """
        Move a file into the trash

        Returns:
            The file's new path inside the trash directory

        Raises:
            NotFoundError: if path is not an existing file
            StorageFailureError: if the move fails
        """
        source = Path(path)
        if not source.is_file():
            raise NotFoundError(f"File not found: {source}")
        self._ensure_dir()
        destination = self._trash_name(source)
        self._move(source, destination)
        logger.info(f"Moved {source} to trash as {destination.name}")
        return destination

    def restore(self, trash_path: PathLike, original_path: PathLike) -> Path:
        """
        Move a trashed file back, creating missing parent directories

        Raises:
            NotFoundError: if trash_path does not exist
            InvalidInputError: if a file already exists at original_path
            StorageFailureError: if the move fails
        """
        source = Path(trash_path)
        destination = Path(original_path)
        if not source.is_file():
            raise NotFoundError(f"File not found in trash: {source}")
        if destination.exists():
            raise InvalidInputError(f"Cannot restore: file already exists at {destination}")
        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageFailureError(f"Failed to create {destination.parent}: {e}") from e
        self._move(source, destination)
        logger.info(f"Restored {source.name} to {destination}")
        return destination

    def delete_permanently(self, trash_path: PathLike) -> int:
        """
        Remove a trashed file

        Returns:
            Number of bytes freed

        Raises:
            NotFoundError: if the file does not exist
            StorageFailureError: if it cannot be removed
        """
        target = Path(trash_path)
        if not target.is_file():
            raise NotFoundError(f"File not found in trash: {target}")
        try:
            size = target.stat().st_size
            target.unlink()
        except OSError as e:
            raise StorageFailureError(f"Failed to permanently delete {target}: {e}") from e
        logger.info(f"Permanently deleted {target}")
        return size

    def list_files(self) -> List[Path]:
        """Files directly inside the trash directory, sorted by name"""
        if not self.path.is_dir():
            return []
        return sorted(entry for entry in self.path.iterdir() if entry.is_file())

    def total_size(self) -> int:
        """Bytes used by files in the trash directory"""
        return sum(entry.stat().st_size for entry in self.list_files())
