from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import Any

from .batch_operations import BatchOperations
from .blob_client import Blob, BlobClient
from .compression import Codec
from .config import BlobStoreConfig
from .lease_lock import DEFAULT_EXPIRY_MS, ConcurrencyMode, LeaseLock, ReleaseFunction
from .serializers import JSONSerializer, JSONValue
from .storage_protocols import AsyncStorageAdapter, DirectoryEntry


class AsyncBlobStore:
    """
    One object exposing single-blob, batch and lock operations.
    """

    def __init__(
        self,
        adapter: AsyncStorageAdapter,
        container_name: str,
        concurrency: int = 5,
        concurrency_mode: ConcurrencyMode = ConcurrencyMode.NONE,
        lock_expiry_ms: int = DEFAULT_EXPIRY_MS,
        codec: Codec | None = None,
        json_serializer: JSONSerializer | None = None,
    ) -> None:
        self._client = BlobClient(
            adapter, container_name, codec=codec, json_serializer=json_serializer
        )
        self._batch = BatchOperations(self._client, concurrency=concurrency)
        self._lock = LeaseLock(self._client, concurrency_mode=concurrency_mode)
        self.lock_expiry_ms = lock_expiry_ms

    @classmethod
    def from_config(cls, config: BlobStoreConfig) -> "AsyncBlobStore":
        return cls(
            config.create_adapter(),
            config.container_name,
            concurrency=config.concurrency,
            concurrency_mode=config.concurrency_mode,
            lock_expiry_ms=config.lock_expiry_ms,
        )

    @property
    def client(self) -> BlobClient:
        return self._client

    async def __aenter__(self) -> "AsyncBlobStore":
        await self._client.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._client.__aexit__(exc_type, exc, tb)

    async def close(self) -> None:
        await self._client.close()

    async def read(self, path: str) -> Blob:
        return await self._client.read(path)

    async def write(self, path: str, data: bytes | str) -> Blob:
        return await self._client.write(path, data)

    async def delete(self, path: str) -> None:
        await self._client.delete(path)

    async def copy(self, source_path: str, dest_path: str) -> None:
        await self._client.copy(source_path, dest_path)

    async def read_json(self, path: str) -> JSONValue:
        return await self._client.read_json(path)

    async def write_json(self, path: str, value: Any) -> Blob:
        return await self._client.write_json(path, value)

    async def list_prefix(self, prefix: str, max_keys: int = 5) -> list[DirectoryEntry]:
        return await self._batch.list_prefix(prefix, max_keys)

    async def read_prefix(
        self, prefix: str, max_keys: int = 5, concurrency: int | None = None
    ) -> list[Blob]:
        return await self._batch.read_prefix(prefix, max_keys, concurrency)

    read_many = read_prefix

    async def delete_many(
        self, paths: Sequence[str], concurrency: int | None = None
    ) -> bool:
        return await self._batch.delete_many(paths, concurrency)

    async def archive_one(self, path: str) -> str:
        return await self._batch.archive_one(path)

    async def archive_many(
        self, paths: Sequence[str], concurrency: int | None = None
    ) -> bool:
        return await self._batch.archive_many(paths, concurrency)

    def _expiry(self, expiry_ms: int | None) -> int:
        return self.lock_expiry_ms if expiry_ms is None else expiry_ms

    async def acquire_lock(
        self, name: str, expiry_ms: int | None = None
    ) -> ReleaseFunction:
        return await self._lock.acquire(name, self._expiry(expiry_ms))

    def hold_lock(
        self, name: str, expiry_ms: int | None = None
    ) -> AbstractAsyncContextManager[None]:
        return self._lock.hold(name, self._expiry(expiry_ms))
