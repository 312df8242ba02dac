import asyncio
import logging
import mimetypes
from typing import Any

from azure.core import MatchConditions
from azure.core.exceptions import (
    AzureError,
    HttpResponseError,
    ResourceExistsError,
    ResourceModifiedError,
    ResourceNotFoundError,
)
from azure.storage.blob import ContentSettings
from azure.storage.blob.aio import BlobServiceClient

from .errors import BackendError, BlobNotFoundError, ConcurrencyError
from .storage_protocols import (
    AsyncBlobHandle,
    AsyncContainerHandle,
    AsyncStorageAdapter,
    DirectoryEntry,
    StoredBlob,
)

log = logging.getLogger(__name__)

# Seconds between copy status polls when the service reports a pending copy
COPY_POLL_INTERVAL = 0.5


def _translate_error(error: Exception, key: str | None = None) -> Exception:
    if isinstance(error, ResourceNotFoundError):
        return BlobNotFoundError(f"Blob '{key}' not found", key=key, cause=error)
    if isinstance(error, HttpResponseError) and error.status_code == 404:
        return BlobNotFoundError(f"Blob '{key}' not found", key=key, cause=error)
    return BackendError(str(error), key=key, cause=error)


class AzureBlobAdapter(AsyncStorageAdapter):
    """Azure Blob Storage adapter for BlobClient."""

    def __init__(self, blob_service_client: BlobServiceClient):
        """
        Create an adapter from an existing BlobServiceClient.
        This allows custom authentication and configuration.
        """
        self._client = blob_service_client

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "AzureBlobAdapter":
        """
        Convenience builder: create adapter from a connection string.
        """
        client = BlobServiceClient.from_connection_string(connection_string)
        return cls(client)

    def get_container(self, container_name: str) -> AsyncContainerHandle:
        return _AzureContainerHandle(self._client.get_container_client(container_name))

    async def close(self) -> None:
        await self._client.close()


class _AzureContainerHandle(AsyncContainerHandle):
    def __init__(self, container_client):
        self._container_client = container_client

    def get_blob(self, blob_name: str) -> AsyncBlobHandle:
        return _AzureBlobHandle(self._container_client.get_blob_client(blob_name))

    async def list_blobs(
        self, prefix: str = "", max_results: int | None = None
    ) -> list[DirectoryEntry]:
        entries: list[DirectoryEntry] = []
        try:
            async for blob in self._container_client.list_blobs(
                name_starts_with=prefix, results_per_page=max_results
            ):
                if max_results is not None and len(entries) >= max_results:
                    break
                entries.append(
                    DirectoryEntry(
                        path=blob.name, size=blob.size, last_modified=blob.last_modified
                    )
                )
        except AzureError as e:
            raise _translate_error(e, prefix) from e
        return entries

    async def list_blob_names(self, prefix: str = "") -> list[str]:
        names: list[str] = []
        try:
            async for blob in self._container_client.list_blobs(name_starts_with=prefix):
                names.append(blob.name)
        except AzureError as e:
            raise _translate_error(e, prefix) from e
        return names

    async def copy_blob(self, source_name: str, dest_name: str) -> None:
        source = self._container_client.get_blob_client(source_name)
        dest = self._container_client.get_blob_client(dest_name)
        try:
            copy = await dest.start_copy_from_url(source.url)
            status = copy.get("copy_status")
            # Same-account copies usually complete synchronously
            while status == "pending":
                log.debug("Copy of %s to %s pending", source_name, dest_name)
                await asyncio.sleep(COPY_POLL_INTERVAL)
                props = await dest.get_blob_properties()
                status = props.copy.status
        except ResourceNotFoundError as e:
            raise BlobNotFoundError(
                f"Blob '{source_name}' not found", key=source_name, cause=e
            ) from e
        except AzureError as e:
            raise _translate_error(e, dest_name) from e
        if status != "success":
            raise BackendError(
                f"Copy of '{source_name}' to '{dest_name}' ended with status {status}",
                key=dest_name,
            )


class _AzureBlobHandle(AsyncBlobHandle):
    def __init__(self, blob_client):
        self._blob_client = blob_client

    @property
    def _name(self) -> str:
        return self._blob_client.blob_name

    async def download(self) -> StoredBlob:
        try:
            # Body must stay as stored; BlobClient owns decompression
            stream = await self._blob_client.download_blob(decompress=False)
            body = await stream.readall()
        except AzureError as e:
            raise _translate_error(e, self._name) from e
        props = stream.properties
        return StoredBlob(
            body=body,
            content_encoding=props.content_settings.content_encoding or None,
            etag=props.etag,
        )

    async def upload(
        self,
        data: bytes,
        overwrite: bool = True,
        if_match: str | None = None,
        content_encoding: str | None = None,
        content_type: str | None = None,
    ) -> None:
        """Note: Guesses content type if not provided."""

        if content_type is None:
            guessed, _ = mimetypes.guess_type(self._name)
            content_type = guessed or "application/octet-stream"

        kwargs: dict[str, Any] = {
            "overwrite": overwrite,
            "content_settings": ContentSettings(
                content_type=content_type, content_encoding=content_encoding
            ),
        }
        if if_match:
            kwargs["etag"] = if_match
            kwargs["match_condition"] = MatchConditions.IfNotModified
        try:
            await self._blob_client.upload_blob(data, **kwargs)
        except ResourceModifiedError as e:
            raise ConcurrencyError(
                f"ETag mismatch for blob '{self._name}'", key=self._name, cause=e
            ) from e
        except ResourceExistsError as e:
            raise FileExistsError(f"Blob '{self._name}' already exists") from e
        except HttpResponseError as e:
            if getattr(e, "status_code", None) == 412:
                raise ConcurrencyError(
                    f"ETag mismatch for blob '{self._name}'", key=self._name, cause=e
                ) from e
            raise _translate_error(e, self._name) from e
        except AzureError as e:
            raise _translate_error(e, self._name) from e

    async def delete(self) -> None:
        try:
            await self._blob_client.delete_blob()
        except AzureError as e:
            raise _translate_error(e, self._name) from e

    async def get_etag(self) -> str | None:
        try:
            props = await self._blob_client.get_blob_properties()
            return props.etag
        except AzureError as e:
            raise _translate_error(e, self._name) from e
