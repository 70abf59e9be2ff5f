"""Unit tests for manifests and data records."""

import json

import pytest

from contentpack.checksum import compute_checksum
from contentpack.exceptions import MalformedManifestError
from contentpack.manifest import attach_content_ids, build_direct_manifest, build_manifest
from contentpack.models import (
    ArchiveMetadata, DatastoreItem, Manifest, PieceInfo, VerificationReport
)
from contentpack.replicator import make_pieces, replicate


def _manifest(data=b'abcdefghij', piece_size=4, factor=2):
    pieces = replicate(make_pieces([data[i:i + piece_size]
                                    for i in range(0, len(data), piece_size)]), factor)
    return build_manifest(data, pieces, piece_size, factor)


class TestManifestConstruction:
    """Test build_manifest and friends."""

    def test_counts_and_checksums(self):
        manifest = _manifest()

        assert manifest.piece_count == 3
        assert manifest.replication_factor == 2
        assert len(manifest.pieces) == 6
        assert manifest.original_size == 10
        assert manifest.original_checksum == compute_checksum(b'abcdefghij')
        assert manifest.pieces[4].checksum == manifest.pieces[1].checksum

    def test_content_ids_attached_to_copy(self):
        manifest = _manifest()
        ids = [f'id{i}' for i in range(6)]

        stored = attach_content_ids(manifest, ids)

        assert [p.content_id for p in stored.pieces] == ids
        assert all(p.content_id is None for p in manifest.pieces)
        assert stored.created_at == manifest.created_at

    def test_content_id_count_mismatch(self):
        with pytest.raises(MalformedManifestError):
            attach_content_ids(_manifest(), ['only-one'])

    def test_direct_manifest(self):
        manifest = build_direct_manifest(b'tiny', 'object-id', 1024)

        assert manifest.piece_count == 1
        assert manifest.replication_factor == 1
        assert manifest.pieces[0].content_id == 'object-id'
        manifest.validate()

    def test_direct_manifest_empty_object(self):
        manifest = build_direct_manifest(b'', None, 1024)

        assert manifest.piece_count == 0
        assert manifest.pieces == []
        assert manifest.original_checksum == compute_checksum(b'')


class TestManifestSerialization:
    """Test JSON wire format."""

    def test_wire_field_names(self):
        data = json.loads(_manifest().to_json())

        assert set(data) == {
            'formatVersion', 'originalSize', 'originalChecksum', 'pieceSize',
            'pieceCount', 'replicationFactor', 'algorithm', 'pieces', 'createdAt',
        }
        assert data['algorithm'] == 'fixed-size'
        assert data['formatVersion'] == '1.0.0'

    def test_content_id_omitted_until_stored(self):
        assert PieceInfo(0, 4, 'abc').to_dict() == {'index': 0, 'size': 4, 'checksum': 'abc'}
        assert PieceInfo(0, 4, 'abc', 'cid').to_dict()['contentId'] == 'cid'

    def test_json_round_trip(self):
        manifest = attach_content_ids(_manifest(), [f'id{i}' for i in range(6)])
        assert Manifest.from_bytes(manifest.to_bytes()) == manifest


class TestManifestValidation:
    """Test structural invariants enforced on read."""

    def _dict(self):
        return _manifest().to_dict()

    def test_unknown_format_version(self):
        data = self._dict()
        data['formatVersion'] = '9.9.9'

        with pytest.raises(MalformedManifestError):
            Manifest.from_json(json.dumps(data))

    def test_piece_list_length_mismatch(self):
        data = self._dict()
        data['pieces'].pop()

        with pytest.raises(MalformedManifestError) as exc_info:
            Manifest.from_json(json.dumps(data))

        assert exc_info.value.details['expected'] == 6

    def test_primary_out_of_order(self):
        data = self._dict()
        data['pieces'][0], data['pieces'][1] = data['pieces'][1], data['pieces'][0]

        with pytest.raises(MalformedManifestError):
            Manifest.from_json(json.dumps(data))

    def test_replica_checksum_mismatch(self):
        data = self._dict()
        data['pieces'][3]['checksum'] = '0' * 64

        with pytest.raises(MalformedManifestError):
            Manifest.from_json(json.dumps(data))

    def test_missing_field(self):
        data = self._dict()
        del data['pieceCount']

        with pytest.raises(MalformedManifestError) as exc_info:
            Manifest.from_json(json.dumps(data))

        assert exc_info.value.details['field'] == 'pieceCount'

    def test_invalid_json(self):
        with pytest.raises(MalformedManifestError):
            Manifest.from_json('{not json')

    def test_not_an_object(self):
        with pytest.raises(MalformedManifestError):
            Manifest.from_json('[1, 2, 3]')

    def test_invalid_utf8(self):
        with pytest.raises(MalformedManifestError):
            Manifest.from_bytes(b'\xff\xfe')


class TestRecords:
    """Test client-side records."""

    def test_datastore_item_round_trip(self):
        item = DatastoreItem(
            content_id='abc',
            name='photo.png',
            size=42,
            mime_type='image/png',
            content_type='image',
            encrypted=True,
            encryption_algorithm='AES-GCM',
            metadata={'tag': 'x'},
        )

        data = item.to_dict()
        assert data['contentId'] == 'abc'
        assert data['encryptionAlgorithm'] == 'AES-GCM'
        assert DatastoreItem.from_dict(data) == item

    def test_archive_metadata_item_count_default(self):
        metadata = ArchiveMetadata(root_ids=['a', 'b'], total_size=20, checksum='c')
        assert metadata.item_count == 2

    def test_archive_metadata_serialization_is_deterministic(self):
        metadata = ArchiveMetadata(root_ids=['a'], total_size=1, checksum='c', created_at=5)
        restored = ArchiveMetadata.from_dict(json.loads(metadata.to_bytes()))

        assert restored == metadata
        assert restored.to_bytes() == metadata.to_bytes()

    def test_verification_report(self):
        assert VerificationReport().valid

        report = VerificationReport(corrupted=[1], missing=[2], recoverable=[1])
        assert not report.valid
        assert not report.reconstructible

        report.recoverable.append(2)
        assert report.reconstructible
