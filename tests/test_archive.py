"""Unit tests for the archive codec."""

import json
import struct

import pytest
import pytest_asyncio

from contentpack.archive import (
    ArchiveCodec, compress, decode_archive, decode_records, encode_archive,
    encode_records, is_compressed, metadata_checksum
)
from contentpack.config import ArchiveConfig
from contentpack.exceptions import ArchiveParseError, ArchiveSizeError, NotFoundError
from contentpack.models import ArchiveMetadata, DatastoreItem
from contentpack.store import MemoryContentStore


@pytest_asyncio.fixture
async def two_objects(store):
    """Two 10-byte objects already in the store."""
    first = await store.put(b'0123456789')
    second = await store.put(b'abcdefghij')
    return [first, second]


class TestRecords:
    """Test length-prefixed framing."""

    def test_big_endian_prefix(self):
        assert encode_records([b'abc']) == b'\x00\x00\x00\x03abc'

    def test_round_trip_with_empty_record(self):
        records = [b'meta', b'', b'x' * 300]
        assert decode_records(encode_records(records)) == records

    def test_truncated_payload(self):
        data = struct.pack('>I', 10) + b'short'

        with pytest.raises(ArchiveParseError) as exc_info:
            decode_records(data)

        assert exc_info.value.offset == 0
        assert exc_info.value.record == 0

    def test_truncated_prefix(self):
        data = encode_records([b'ok']) + b'\x00\x00'

        with pytest.raises(ArchiveParseError) as exc_info:
            decode_records(data)

        assert exc_info.value.record == 1

    def test_gzip_detection(self):
        assert is_compressed(compress(b'payload'))
        assert not is_compressed(encode_records([b'payload']))


class TestDecodeArchive:
    """Test archive-level parsing errors."""

    def test_empty(self):
        with pytest.raises(ArchiveParseError):
            decode_archive(b'')

    def test_first_record_not_json(self):
        with pytest.raises(ArchiveParseError) as exc_info:
            decode_archive(encode_records([b'not json', b'x']))

        assert exc_info.value.record == 0

    def test_metadata_missing_fields(self):
        with pytest.raises(ArchiveParseError):
            decode_archive(encode_records([json.dumps({'version': '1.0.0'}).encode()]))

    def test_record_count_mismatch(self):
        metadata = ArchiveMetadata(root_ids=['a', 'b'], total_size=2, checksum='')
        data = encode_records([metadata.to_bytes(), b'a'])

        with pytest.raises(ArchiveParseError):
            decode_archive(data)

    def test_corrupted_gzip(self):
        with pytest.raises(ArchiveParseError):
            decode_archive(b'\x1f\x8b' + b'\x00' * 20)

    def test_encryption_map_round_trip(self):
        metadata = ArchiveMetadata(root_ids=['a'], total_size=1, checksum='',
                                   encryption={'a': 'AES-GCM'})
        data = encode_archive(metadata, [b'x'])

        parsed = decode_archive(data)

        assert parsed.metadata.encryption == {'a': 'AES-GCM'}
        assert encode_archive(parsed.metadata, parsed.payloads) == data

    def test_plain_archive_has_no_encryption_key(self):
        metadata = ArchiveMetadata(root_ids=['a'], total_size=1, checksum='')
        assert 'encryption' not in json.loads(metadata.to_bytes())

    def test_encryption_must_be_an_object(self):
        metadata = ArchiveMetadata(root_ids=['a'], total_size=1, checksum='').to_dict()
        metadata['encryption'] = ['AES-GCM']

        with pytest.raises(ArchiveParseError):
            decode_archive(encode_records([json.dumps(metadata).encode(), b'x']))

    def test_payload_count_must_match_on_encode(self):
        metadata = ArchiveMetadata(root_ids=['a'], total_size=0, checksum='')
        with pytest.raises(ArchiveSizeError):
            encode_archive(metadata, [])


class TestExport:
    """Test exporting objects from the store."""

    @pytest.mark.asyncio
    async def test_two_ten_byte_objects(self, store, two_objects):
        codec = ArchiveCodec(store)

        parsed = codec.parse(await codec.export(two_objects))

        assert parsed.metadata.item_count == 2
        assert parsed.metadata.total_size == 20
        assert parsed.objects == {
            two_objects[0]: b'0123456789',
            two_objects[1]: b'abcdefghij',
        }
        assert parsed.metadata.checksum == metadata_checksum(two_objects)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("compressed", [False, True])
    async def test_reencoding_is_byte_identical(self, store, two_objects, compressed):
        codec = ArchiveCodec(store, ArchiveConfig(compression=compressed))
        archive = await codec.export(two_objects)

        parsed = codec.parse(archive)

        assert parsed.compressed is compressed
        assert set(parsed.metadata.root_ids) == set(two_objects)
        assert codec.encode(parsed.metadata, parsed.payloads, parsed.compressed) == archive

    @pytest.mark.asyncio
    async def test_compression_toggle_keeps_content(self, store, two_objects):
        codec = ArchiveCodec(store)
        archive = await codec.export(two_objects)

        parsed = codec.parse(archive)
        packed = codec.encode(parsed.metadata, parsed.payloads, compress_output=True)

        assert packed[:2] == b'\x1f\x8b'
        assert codec.parse(packed).objects == parsed.objects

    @pytest.mark.asyncio
    async def test_unverified_items_filtered(self, store, two_objects):
        items = [
            DatastoreItem(content_id=two_objects[0], name='a', size=10, verified=True),
            DatastoreItem(content_id=two_objects[1], name='b', size=10, verified=False),
        ]

        parsed = decode_archive(await ArchiveCodec(store).export(items))

        assert parsed.metadata.root_ids == [two_objects[0]]

    @pytest.mark.asyncio
    async def test_include_unverified(self, store, two_objects):
        items = [DatastoreItem(content_id=cid, name='x', size=10) for cid in two_objects]
        codec = ArchiveCodec(store, ArchiveConfig(include_unverified=True))

        parsed = decode_archive(await codec.export(items))

        assert parsed.metadata.item_count == 2

    @pytest.mark.asyncio
    async def test_empty_selection(self, store):
        item = DatastoreItem(content_id='x', name='x', size=1, verified=False)

        with pytest.raises(ArchiveSizeError):
            await ArchiveCodec(store).export([item])

    @pytest.mark.asyncio
    async def test_size_limit(self, store, two_objects):
        codec = ArchiveCodec(store, ArchiveConfig(max_size=15))

        with pytest.raises(ArchiveSizeError):
            await codec.export(two_objects)

    @pytest.mark.asyncio
    async def test_missing_object(self, store):
        with pytest.raises(NotFoundError):
            await ArchiveCodec(store).export(['0' * 64])


class TestValidate:
    """Test non-raising archive validation."""

    @pytest.mark.asyncio
    async def test_valid_archive(self, store, two_objects):
        codec = ArchiveCodec(store)
        assert codec.validate(await codec.export(two_objects)) == (True, [])

    def test_empty_input(self, store):
        valid, errors = ArchiveCodec(store).validate(b'')
        assert not valid
        assert errors == ['Archive is empty']

    def test_truncated_input(self, store):
        valid, errors = ArchiveCodec(store).validate(struct.pack('>I', 99) + b'x')
        assert not valid
        assert 'Truncated' in errors[0]

    def test_checksum_and_size_mismatch(self, store):
        metadata = ArchiveMetadata(root_ids=['a'], total_size=5, checksum='0' * 64)
        valid, errors = ArchiveCodec(store).validate(encode_archive(metadata, [b'abc']))

        assert not valid
        assert len(errors) == 2

    def test_no_root_ids(self, store):
        metadata = ArchiveMetadata(root_ids=[], total_size=0, checksum='')
        valid, errors = ArchiveCodec(store).validate(encode_archive(metadata, []))

        assert not valid
        assert 'Archive has no root ids' in errors


class TestImport:
    """Test importing archives into a store."""

    @pytest.mark.asyncio
    async def test_import_into_fresh_store(self, store, two_objects):
        archive = await ArchiveCodec(store).export(two_objects)
        target = MemoryContentStore()

        result = await ArchiveCodec(target).import_archive(archive)

        assert result.success
        assert [item.content_id for item in result.items] == two_objects
        assert result.duplicates == []
        assert await target.get(two_objects[0]) == b'0123456789'

        item = result.items[0]
        assert item.name == f'imported-{two_objects[0][:8]}'
        assert item.size == 10
        assert item.mime_type == 'application/octet-stream'
        assert not item.verified
        assert item.metadata['imported'] is True
        assert isinstance(item.metadata['importDate'], int)

    @pytest.mark.asyncio
    async def test_existing_records_returned_unchanged(self, store, two_objects):
        archive = await ArchiveCodec(store).export(two_objects)
        existing = DatastoreItem(content_id=two_objects[1], name='mine.txt', size=10,
                                 verified=True, metadata={'keep': 1})

        result = await ArchiveCodec(store).import_archive(archive, [existing])

        assert len(result.items) == 1
        assert result.duplicates == [existing]
        assert result.duplicates[0].name == 'mine.txt'
        assert result.duplicates[0].metadata == {'keep': 1}
        assert result.warnings

    @pytest.mark.asyncio
    async def test_tampered_metadata_checksum_warns(self, store):
        metadata = ArchiveMetadata(root_ids=['a' * 64], total_size=1, checksum='0' * 64)

        result = await ArchiveCodec(store).import_archive(encode_archive(metadata, [b'x']))

        assert any('checksum' in w for w in result.warnings)
