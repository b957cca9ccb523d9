"""
Tests for perceptual hash parsing and per-file hashing.
"""

import hashlib

import numpy as np
import pytest
from PIL import Image

from photoindex.analysis.similarity.hashing import (
    compute_file_hashes, hamming_distance, parse_perceptual_hash
)
from photoindex.exceptions import InvalidInputError


def blocky_image(path, seed=0):
    """128x128 RGB image made of 8x8 random flat blocks."""
    rng = np.random.default_rng(seed)
    blocks = rng.integers(0, 256, size=(8, 8, 3), dtype=np.uint8)
    pixels = np.kron(blocks, np.ones((16, 16, 1), dtype=np.uint8))
    Image.fromarray(pixels).save(path)
    return path


class TestHammingDistance:
    """Distance between hex hashes."""

    def test_identical(self):
        assert hamming_distance('abcdef', 'abcdef') == 0

    def test_counts_differing_bits(self):
        assert hamming_distance('00', 'ff') == 8
        assert hamming_distance('0f', '0e') == 1

    def test_case_insensitive(self):
        assert hamming_distance('ABCD', 'abcd') == 0

    def test_length_mismatch_rejected(self):
        with pytest.raises(InvalidInputError):
            hamming_distance('00', '0000')

    @pytest.mark.parametrize('value', ['', 'xyz', '0x1f', ' 1f', '1_f'])
    def test_malformed_rejected(self, value):
        with pytest.raises(InvalidInputError):
            parse_perceptual_hash(value)


class TestFileHashes:
    """Hashing real files."""

    def test_sha256_matches_hashlib(self, tmp_path):
        path = blocky_image(tmp_path / 'a.png')
        hashes = compute_file_hashes(path)
        assert hashes.sha256 == hashlib.sha256(path.read_bytes()).hexdigest()

    def test_perceptual_hash_is_256_bit_hex(self, tmp_path):
        hashes = compute_file_hashes(blocky_image(tmp_path / 'a.png'))
        assert len(hashes.perceptual) == 64
        parse_perceptual_hash(hashes.perceptual)

    def test_resaved_copy_is_perceptually_close(self, tmp_path):
        original = blocky_image(tmp_path / 'a.png')
        Image.open(original).save(tmp_path / 'b.jpg', quality=90)
        a = compute_file_hashes(original)
        b = compute_file_hashes(tmp_path / 'b.jpg')
        assert a.sha256 != b.sha256
        assert hamming_distance(a.perceptual, b.perceptual) <= 50

    def test_non_image_has_no_perceptual_hash(self, tmp_path):
        path = tmp_path / 'notes.txt'
        path.write_text('not an image')
        hashes = compute_file_hashes(path)
        assert hashes.perceptual is None
        assert len(hashes.sha256) == 64
