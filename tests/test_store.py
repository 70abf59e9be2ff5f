"""Unit tests for content stores."""

import os

import pytest

from contentpack.exceptions import ContentStoreError, NotFoundError
from contentpack.store import FileContentStore, MemoryContentStore, compute_content_id


class TestContentId:
    """Test content addressing."""

    def test_deterministic(self):
        assert compute_content_id(b'abc') == compute_content_id(b'abc')
        assert len(compute_content_id(b'abc')) == 64

    def test_distinct_from_integrity_checksum(self):
        from contentpack.checksum import compute_checksum
        assert compute_content_id(b'abc') != compute_checksum(b'abc')


class TestMemoryContentStore:
    """Test the dict-backed store."""

    @pytest.mark.asyncio
    async def test_put_get(self, store):
        content_id = await store.put(b'hello')

        assert await store.get(content_id) == b'hello'
        assert await store.has(content_id)

    @pytest.mark.asyncio
    async def test_same_bytes_same_id(self, store):
        first = await store.put(b'same')
        second = await store.put(b'same')

        assert first == second
        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_missing(self, store):
        with pytest.raises(NotFoundError) as exc_info:
            await store.get('0' * 64)

        assert exc_info.value.content_id == '0' * 64
        assert not await store.has('0' * 64)


class TestFileContentStore:
    """Test the on-disk store."""

    @pytest.mark.asyncio
    async def test_put_get(self, file_store):
        content_id = await file_store.put(b'on disk')

        assert await file_store.get(content_id) == b'on disk'
        assert await file_store.has(content_id)

    @pytest.mark.asyncio
    async def test_fan_out_layout(self, file_store):
        content_id = await file_store.put(b'layout')
        expected = os.path.join(file_store.storage_dir, content_id[:2], content_id)

        assert file_store.get_object_path(content_id) == expected
        assert os.path.isfile(expected)

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, file_store):
        content_id = await file_store.put(b'atomic')
        directory = os.path.dirname(file_store.get_object_path(content_id))

        assert os.listdir(directory) == [content_id]

    @pytest.mark.asyncio
    async def test_list_and_delete(self, file_store):
        first = await file_store.put(b'one')
        second = await file_store.put(b'two')

        assert sorted(file_store.list_ids()) == sorted([first, second])
        assert file_store.delete(first)
        assert not file_store.delete(first)
        assert file_store.list_ids() == [second]

    @pytest.mark.asyncio
    async def test_missing(self, file_store):
        with pytest.raises(NotFoundError):
            await file_store.get('a' * 64)

    @pytest.mark.asyncio
    async def test_rejects_path_like_ids(self, file_store):
        with pytest.raises(NotFoundError):
            await file_store.get('../etc/passwd')
        assert not await file_store.has('../etc/passwd')

    def test_unwritable_root(self, tmp_path):
        blocker = tmp_path / 'file'
        blocker.write_bytes(b'')

        with pytest.raises(ContentStoreError):
            FileContentStore(str(blocker / 'store'))
