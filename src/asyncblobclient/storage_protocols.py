from dataclasses import dataclass
from datetime import datetime
from typing import Protocol


@dataclass(frozen=True)
class StoredBlob:
    """Raw blob contents exactly as held by the backend."""

    body: bytes
    content_encoding: str | None = None
    etag: str | None = None


@dataclass(frozen=True)
class DirectoryEntry:
    """A single listing result."""

    path: str
    size: int
    last_modified: datetime


class AsyncBlobHandle(Protocol):
    """Represents a single blob in storage."""

    async def download(self) -> StoredBlob:
        """Download raw blob contents and metadata. Raises BlobNotFoundError."""
        ...

    async def upload(
        self,
        data: bytes,
        overwrite: bool = True,
        if_match: str | None = None,
        content_encoding: str | None = None,
    ) -> None:
        """Upload bytes to blob, tagging them with content_encoding."""
        ...

    async def delete(self) -> None:
        """Delete blob. Raises BlobNotFoundError if missing."""
        ...

    async def get_etag(self) -> str | None:
        """Return blob's ETag or None if not available."""
        ...


class AsyncContainerHandle(Protocol):
    """Represents a container/bucket in storage."""

    def get_blob(self, blob_name: str) -> AsyncBlobHandle:
        """Return a handle to a blob."""
        ...

    async def list_blobs(
        self, prefix: str = "", max_results: int | None = None
    ) -> list[DirectoryEntry]:
        """List at most max_results blobs under prefix, without paginating."""
        ...

    async def list_blob_names(self, prefix: str = "") -> list[str]:
        """List all blob names in container."""
        ...

    async def copy_blob(self, source_name: str, dest_name: str) -> None:
        """Server-side copy. Raises BlobNotFoundError if source is missing."""
        ...


class AsyncStorageAdapter(Protocol):
    """Protocol for a storage backend adapter."""

    def get_container(self, container_name: str) -> AsyncContainerHandle:
        """Return a handle to a container."""
        ...

    async def close(self) -> None:
        """Close any resources/connections."""
        ...
