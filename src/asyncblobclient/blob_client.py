import logging
from dataclasses import dataclass
from typing import Any

from .compression import Codec, GzipCodec
from .errors import BlobNotFoundError, DecodeError, InvalidArgumentError, ParseError
from .serializers import JSONSerializer, JSONValue
from .storage_protocols import AsyncStorageAdapter, DirectoryEntry

log = logging.getLogger(__name__)


@dataclass
class Blob:
    path: str
    body: bytes
    # How the object is stored; body is always decoded
    content_encoding: str | None = None
    etag: str | None = None


class BlobClient:
    """
    Compression-transparent access to single blobs.

    Writes are gzip-compressed when that makes the payload strictly smaller,
    and the stored Content-Encoding tag records which branch was taken, so
    reads decode correctly either way. Callers only ever see original bytes.
    """

    def __init__(
        self,
        adapter: AsyncStorageAdapter,
        container_name: str,
        codec: Codec | None = None,
        json_serializer: JSONSerializer | None = None,
    ) -> None:
        self.adapter = adapter
        self.container = adapter.get_container(container_name)
        self.container_name = container_name
        self.codec = codec or GzipCodec()
        self.json_serializer = json_serializer or JSONSerializer()

    async def __aenter__(self) -> "BlobClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        await self.adapter.close()

    def _decode(self, path: str, body: bytes, content_encoding: str | None) -> bytes:
        if not content_encoding or content_encoding == "identity":
            return body
        if content_encoding != self.codec.encoding:
            raise DecodeError(
                f"Blob '{path}' has unsupported encoding '{content_encoding}'",
                key=path,
            )
        try:
            return self.codec.decompress(body)
        except DecodeError as e:
            e.key = path
            raise

    async def read(self, path: str) -> Blob:
        """
        Retrieve a blob, decompressing it if it was stored compressed.
        """
        if not path:
            raise InvalidArgumentError("path missing")
        stored = await self.container.get_blob(path).download()
        return Blob(
            path=path,
            body=self._decode(path, stored.body, stored.content_encoding),
            content_encoding=stored.content_encoding,
            etag=stored.etag,
        )

    async def write(
        self,
        path: str,
        data: bytes | str,
        overwrite: bool = True,
        if_match: str | None = None,
    ) -> Blob:
        """
        Store a blob, compressed only if compression strictly reduces its size.

        overwrite=False makes the write create-only (FileExistsError if the
        blob exists); if_match makes it conditional on the current ETag
        (ConcurrencyError on mismatch).
        """
        if not path:
            raise InvalidArgumentError("path missing")
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not data:
            raise InvalidArgumentError("contents missing", key=path)
        data = bytes(data)

        payload, encoding = data, None
        compressed = self.codec.compress(data)
        if len(compressed) < len(data):
            payload, encoding = compressed, self.codec.encoding

        log.debug("write %s (%d bytes, encoding=%s)", path, len(payload), encoding)
        await self.container.get_blob(path).upload(
            payload, overwrite=overwrite, if_match=if_match, content_encoding=encoding
        )
        return Blob(path=path, body=data, content_encoding=encoding)

    async def delete(self, path: str) -> None:
        """
        Delete blob from backend. A missing blob counts as deleted.
        """
        if not path:
            raise InvalidArgumentError("path missing")
        log.debug("delete %s", path)
        try:
            await self.container.get_blob(path).delete()
        except BlobNotFoundError:
            pass

    async def copy(self, source_path: str, dest_path: str) -> None:
        if not source_path or not dest_path:
            raise InvalidArgumentError("copy requires source and destination paths")
        log.debug("copy %s to %s", source_path, dest_path)
        await self.container.copy_blob(source_path, dest_path)

    async def list_blobs(
        self, prefix: str = "", max_results: int | None = None
    ) -> list[DirectoryEntry]:
        return await self.container.list_blobs(prefix, max_results)

    def decode_json(self, blob: Blob) -> JSONValue:
        return self.json_serializer.deserialize(blob.body)

    async def read_json(self, path: str) -> JSONValue:
        """
        Read and parse a JSON blob. Returns None if the blob does not exist.
        """
        try:
            blob = await self.read(path)
        except BlobNotFoundError:
            return None
        try:
            return self.decode_json(blob)
        except ParseError as e:
            e.key = path
            raise

    async def write_json(self, path: str, value: Any, **write_options: Any) -> Blob:
        raw = self.json_serializer.serialize(value)
        return await self.write(path, raw, **write_options)
