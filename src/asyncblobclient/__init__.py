"""
asyncblobclient
===============

Async client for blob storage with transparent gzip compression, bounded
concurrency batch helpers and lease locks stored as blobs. Backed by local
filesystem or Azure Blob Storage.

Main entry points:
- AsyncBlobStore: single object exposing every operation
- BlobClient, BatchOperations, LeaseLock: the components it composes
- ConcurrencyLimiter, bounded_map: bounded-parallelism helpers
- LocalFileAdapter, AzureBlobAdapter: storage backends
- BlobStoreConfig: explicit configuration, optionally from the environment

Example:
    from asyncblobclient import AsyncBlobStore, LocalFileAdapter

    async with AsyncBlobStore(LocalFileAdapter("./data"), "container") as store:
        release = await store.acquire_lock("jobA")
        try:
            for blob in await store.read_prefix("inbox/", max_keys=20):
                ...
            await store.archive_many([...])
        finally:
            await release()
"""

from .async_blob_store import AsyncBlobStore
from .batch_operations import BatchOperations
from .blob_client import Blob, BlobClient
from .compression import Codec, GzipCodec
from .concurrency import ConcurrencyLimiter, bounded_map
from .config import BlobStoreConfig
from .errors import (
    BackendError,
    BlobNotFoundError,
    BlobStoreError,
    ConcurrencyError,
    ConfigurationError,
    DecodeError,
    InvalidArgumentError,
    LockHeldError,
    ParseError,
    PolicyViolationError,
)
from .lease_lock import ConcurrencyMode, LeaseLock
from .serializers import JSONSerializer, Serializer

from .storage_protocols import (
    AsyncStorageAdapter,
    AsyncContainerHandle,
    AsyncBlobHandle,
    DirectoryEntry,
    StoredBlob,
)
from .local_file_adapter import LocalFileAdapter
from .azure_blob_adapter import AzureBlobAdapter

import importlib.metadata

try:
    __version__ = importlib.metadata.version(__name__)
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "AsyncBlobStore",
    "BatchOperations",
    "Blob",
    "BlobClient",
    "Codec",
    "GzipCodec",
    "ConcurrencyLimiter",
    "bounded_map",
    "BlobStoreConfig",
    "BackendError",
    "BlobNotFoundError",
    "BlobStoreError",
    "ConcurrencyError",
    "ConfigurationError",
    "DecodeError",
    "InvalidArgumentError",
    "LockHeldError",
    "ParseError",
    "PolicyViolationError",
    "ConcurrencyMode",
    "LeaseLock",
    "JSONSerializer",
    "Serializer",
    "AsyncStorageAdapter",
    "AsyncContainerHandle",
    "AsyncBlobHandle",
    "DirectoryEntry",
    "StoredBlob",
    "LocalFileAdapter",
    "AzureBlobAdapter",
]
