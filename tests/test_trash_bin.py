"""
Tests for the file-system trash directory.
"""

import re

import pytest

from photoindex.exceptions import InvalidInputError, NotFoundError
from photoindex.trash import TrashBin


@pytest.fixture
def trash_bin(tmp_path):
    return TrashBin(tmp_path / 'trash')


@pytest.fixture
def image(tmp_path):
    path = tmp_path / 'photos' / 'holiday.jpg'
    path.parent.mkdir()
    path.write_bytes(b'0123456789')
    return path


class TestMoveToTrash:
    """Moving files in."""

    def test_moves_file_with_unique_name(self, trash_bin, image):
        trashed = trash_bin.move_to_trash(image)
        assert not image.exists()
        assert trashed.parent == trash_bin.path
        assert re.fullmatch(r'holiday_\d+_\d+\.jpg', trashed.name)
        assert trashed.read_bytes() == b'0123456789'

    def test_same_name_twice_does_not_collide(self, trash_bin, image):
        first = trash_bin.move_to_trash(image)
        image.write_bytes(b'second')
        second = trash_bin.move_to_trash(image)
        assert first != second
        assert len(trash_bin.list_files()) == 2

    def test_missing_file(self, trash_bin, tmp_path):
        with pytest.raises(NotFoundError):
            trash_bin.move_to_trash(tmp_path / 'nope.jpg')


class TestRestore:
    """Moving files back out."""

    def test_restore_creates_parent_directories(self, trash_bin, image, tmp_path):
        trashed = trash_bin.move_to_trash(image)
        target = tmp_path / 'new' / 'deep' / 'holiday.jpg'
        assert trash_bin.restore(trashed, target) == target
        assert target.read_bytes() == b'0123456789'
        assert not trashed.exists()

    def test_refuses_to_overwrite(self, trash_bin, image):
        trashed = trash_bin.move_to_trash(image)
        image.write_bytes(b'replacement')
        with pytest.raises(InvalidInputError):
            trash_bin.restore(trashed, image)
        assert image.read_bytes() == b'replacement'
        assert trashed.exists()

    def test_missing_trash_file(self, trash_bin, tmp_path):
        with pytest.raises(NotFoundError):
            trash_bin.restore(tmp_path / 'trash' / 'gone.jpg', tmp_path / 'x.jpg')


class TestDeleteAndSize:
    """Permanent deletion and accounting."""

    def test_delete_permanently(self, trash_bin, image):
        trashed = trash_bin.move_to_trash(image)
        assert trash_bin.delete_permanently(trashed) == 10
        assert not trashed.exists()
        with pytest.raises(NotFoundError):
            trash_bin.delete_permanently(trashed)

    def test_list_and_total_size(self, trash_bin, image, tmp_path):
        assert trash_bin.list_files() == []
        assert trash_bin.total_size() == 0
        trash_bin.move_to_trash(image)
        other = tmp_path / 'other.png'
        other.write_bytes(b'abc')
        trash_bin.move_to_trash(other)
        assert len(trash_bin.list_files()) == 2
        assert trash_bin.total_size() == 13
