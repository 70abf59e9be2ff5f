"""Shared pytest fixtures for all tests."""

import asyncio

import pytest

from contentpack.config import (
    ArchiveConfig, EncryptionConfig, PackagingConfig, ShardingConfig
)
from contentpack.exceptions import ContentStoreError
from contentpack.pipeline import PackagingPipeline
from contentpack.store import FileContentStore, MemoryContentStore


class FailingStore(MemoryContentStore):
    """
    Memory store that refuses to write one specific payload.

    Args:
        poison: Bytes whose put raises ContentStoreError
    """

    def __init__(self, poison: bytes):
        super().__init__()
        self.poison = poison
        self.put_calls = 0

    async def put(self, data: bytes) -> str:
        self.put_calls += 1
        if data == self.poison:
            raise ContentStoreError("Simulated write failure", operation="put")
        return await super().put(data)


class UnreadableStore(MemoryContentStore):
    """
    Memory store whose reads fail or hang for selected ids.

    Attributes:
        unreadable: Ids whose get raises a non-NotFound ContentStoreError
        blocked: Ids whose get waits until cancelled
        cancelled: Ids whose blocked get was cancelled
    """

    def __init__(self):
        super().__init__()
        self.unreadable = set()
        self.blocked = set()
        self.cancelled = []

    async def get(self, content_id: str) -> bytes:
        if content_id in self.unreadable:
            raise ContentStoreError("Simulated read failure",
                                    content_id=content_id, operation="get")
        if content_id in self.blocked:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(content_id)
                raise
        return await super().get(content_id)


@pytest.fixture
def store():
    """Empty in-memory content store."""
    return MemoryContentStore()


@pytest.fixture
def file_store(tmp_path):
    """
    File-backed content store in a temporary directory.

    Args:
        tmp_path: pytest tmp_path fixture
    """
    return FileContentStore(str(tmp_path / 'store'))


@pytest.fixture
def small_config(tmp_path):
    """
    Configuration with tiny pieces so that short payloads get split.

    Returns:
        PackagingConfig with 4-byte pieces and no replication
    """
    return PackagingConfig(
        sharding=ShardingConfig(piece_size=4, max_pieces=100, replication_factor=1),
        encryption=EncryptionConfig(enabled=False),
        archive=ArchiveConfig(),
        store_dir=str(tmp_path / 'store'),
    )


@pytest.fixture
def replicated_config(tmp_path):
    """Configuration with 4-byte pieces replicated three times."""
    return PackagingConfig(
        sharding=ShardingConfig(piece_size=4, max_pieces=100, replication_factor=3),
        encryption=EncryptionConfig(enabled=False),
        archive=ArchiveConfig(),
        store_dir=str(tmp_path / 'store'),
    )


@pytest.fixture
def pipeline(store, small_config):
    """Pipeline over the memory store with tiny pieces."""
    return PackagingPipeline(store, config=small_config)


@pytest.fixture
def replicated_pipeline(store, replicated_config):
    """Pipeline over the memory store with three replication rounds."""
    return PackagingPipeline(store, config=replicated_config)
