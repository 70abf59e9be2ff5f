"""Unit tests for the checksum engine."""

import pytest

from contentpack.checksum import IncrementalChecksum, compute_checksum, verify_checksum

EMPTY_SHA256 = 'e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855'


class TestComputeChecksum:
    """Test single-shot digests."""

    def test_known_vector(self):
        assert compute_checksum(b'abc') == (
            'ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad'
        )

    def test_empty_input(self):
        assert compute_checksum(b'') == EMPTY_SHA256

    def test_deterministic(self):
        data = bytes(range(256)) * 10
        assert compute_checksum(data) == compute_checksum(bytes(data))

    def test_single_bit_change_detected(self):
        assert compute_checksum(b'\x00' * 32) != compute_checksum(b'\x00' * 31 + b'\x01')

    def test_verify_checksum(self):
        digest = compute_checksum(b'payload')
        assert verify_checksum(b'payload', digest)
        assert not verify_checksum(b'payloaD', digest)


class TestIncrementalChecksum:
    """Test streamed digests."""

    def test_matches_single_shot(self):
        checksum = IncrementalChecksum()
        for part in (b'hello ', b'world', b''):
            checksum.update(part)
        assert checksum.finalize() == compute_checksum(b'hello world')

    def test_update_after_finalize_rejected(self):
        checksum = IncrementalChecksum()
        checksum.finalize()
        with pytest.raises(ValueError):
            checksum.update(b'late')
