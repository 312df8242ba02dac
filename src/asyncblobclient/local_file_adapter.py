import asyncio
import hashlib
import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from .errors import (
    BackendError,
    BlobNotFoundError,
    ConcurrencyError,
    InvalidArgumentError,
)
from .storage_protocols import (
    AsyncBlobHandle,
    AsyncContainerHandle,
    AsyncStorageAdapter,
    DirectoryEntry,
    StoredBlob,
)

# Sidecar directory holding per-blob metadata (content encoding)
META_DIR = ".blobmeta"

# Cap for the shared MD5 cache; it is cleared wholesale when full
ETAG_CACHE_SIZE = 1024


def _ensure_within(base: Path, target: Path, strict: bool = True) -> Path:
    """
    Resolve target path and ensure it is inside base path.
    strict=True will fail if the target does not exist (good for read/delete).
    strict=False allows non-existing targets (good for upload); existing
    symlinks along the path are still followed before the check.
    """
    base_resolved = base.resolve(strict=True)
    target_resolved = target.resolve(strict=strict)
    if not target_resolved.is_relative_to(base_resolved):
        raise InvalidArgumentError(
            f"Path {target_resolved} escapes base directory {base_resolved}"
        )
    return target_resolved


@contextmanager
def _os_errors(key: str) -> Iterator[None]:
    try:
        yield
    except OSError as e:
        raise BackendError(
            f"Filesystem error for '{key}': {e}", key=key, cause=e
        ) from e


class LocalFileAdapter(AsyncStorageAdapter):
    """Local filesystem adapter for BlobClient."""

    def __init__(self, base_path: str):
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)

    def get_container(self, container_name: str) -> AsyncContainerHandle:
        container_path = _ensure_within(
            self._base_path, self._base_path / container_name, strict=False
        )
        container_path.mkdir(parents=True, exist_ok=True)
        return _LocalContainerHandle(container_path)

    async def close(self) -> None:
        pass


class _LocalContainerHandle(AsyncContainerHandle):
    def __init__(self, container_path: Path):
        self._container_path = container_path
        self._meta_path = container_path / META_DIR

    def get_blob(self, blob_name: str) -> AsyncBlobHandle:
        if not blob_name:
            raise InvalidArgumentError("Blob name must not be empty")
        if blob_name == META_DIR or blob_name.startswith(META_DIR + "/"):
            raise InvalidArgumentError(
                f"Blob name '{blob_name}' uses reserved prefix '{META_DIR}'"
            )
        blob_path = _ensure_within(
            self._container_path, self._container_path / blob_name, strict=False
        )
        meta_path = self._meta_path / f"{blob_name}.json"
        return _LocalBlobHandle(blob_path, self._container_path, meta_path, blob_name)

    def _iter_files(self, prefix: str):
        for path in sorted(self._container_path.rglob("*")):
            if not path.is_file():
                continue
            rel_path = path.relative_to(self._container_path).as_posix()
            if rel_path.startswith(META_DIR + "/"):
                continue
            # Strict resolve to catch symlink escapes
            _ensure_within(self._container_path, path, strict=True)
            if rel_path.startswith(prefix):
                yield rel_path, path

    async def list_blobs(
        self, prefix: str = "", max_results: int | None = None
    ) -> list[DirectoryEntry]:
        entries: list[DirectoryEntry] = []
        with _os_errors(prefix):
            for rel_path, path in self._iter_files(prefix):
                if max_results is not None and len(entries) >= max_results:
                    break
                stat = path.stat()
                entries.append(
                    DirectoryEntry(
                        path=rel_path,
                        size=stat.st_size,
                        last_modified=datetime.fromtimestamp(
                            stat.st_mtime, timezone.utc
                        ),
                    )
                )
        return entries

    async def list_blob_names(self, prefix: str = "") -> list[str]:
        with _os_errors(prefix):
            return [rel_path for rel_path, _ in self._iter_files(prefix)]

    async def copy_blob(self, source_name: str, dest_name: str) -> None:
        source = self.get_blob(source_name)
        dest = self.get_blob(dest_name)
        stored = await source.download()
        await dest.upload(
            stored.body, overwrite=True, content_encoding=stored.content_encoding
        )


# Global lock registry for concurrency safety
_lock_registry: dict[str, asyncio.Lock] = {}

# MD5 per (resolved path, mtime_ns, size), shared by all handles
_etag_cache: dict[tuple[str, int, int], str] = {}


def _get_global_lock(path: Path) -> asyncio.Lock:
    key = str(path.resolve())
    if key not in _lock_registry:
        _lock_registry[key] = asyncio.Lock()
    return _lock_registry[key]


class _LocalBlobHandle(AsyncBlobHandle):
    def __init__(
        self,
        file_path: Path,
        container_path: Path,
        meta_path: Path | None = None,
        blob_name: str | None = None,
    ):
        self._file_path = file_path
        self._container_path = container_path
        self._meta_path = meta_path or container_path / META_DIR / file_path.name
        self._blob_name = blob_name or file_path.name
        self._lock = _get_global_lock(file_path)

    def _not_found(self) -> BlobNotFoundError:
        return BlobNotFoundError(
            f"Blob '{self._blob_name}' not found", key=self._blob_name
        )

    def _read_encoding(self) -> str | None:
        if not self._meta_path.exists():
            return None
        try:
            meta = json.loads(self._meta_path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise BackendError(
                f"Unreadable metadata for blob '{self._blob_name}'",
                key=self._blob_name,
                cause=e,
            ) from e
        if not isinstance(meta, dict):
            raise BackendError(
                f"Unreadable metadata for blob '{self._blob_name}'",
                key=self._blob_name,
            )
        return meta.get("content_encoding")

    def _write_encoding(self, content_encoding: str | None) -> None:
        if content_encoding is None:
            self._meta_path.unlink(missing_ok=True)
            return
        self._meta_path.parent.mkdir(parents=True, exist_ok=True)
        self._meta_path.write_text(
            json.dumps({"content_encoding": content_encoding}), encoding="utf-8"
        )

    def _current_etag(self) -> str:
        # Use mtime+size cache to avoid recomputing MD5 unnecessarily
        stat = self._file_path.stat()
        cache_key = (str(self._file_path.resolve()), stat.st_mtime_ns, stat.st_size)
        if cache_key in _etag_cache:
            return _etag_cache[cache_key]
        content = self._file_path.read_bytes()
        etag = hashlib.md5(content).hexdigest()
        if len(_etag_cache) >= ETAG_CACHE_SIZE:
            _etag_cache.clear()
        _etag_cache[cache_key] = etag
        return etag

    async def download(self) -> StoredBlob:
        if not self._file_path.is_file():
            raise self._not_found()
        _ensure_within(self._container_path, self._file_path, strict=True)
        async with self._lock:
            with _os_errors(self._blob_name):
                body = self._file_path.read_bytes()
                content_encoding = self._read_encoding()
        return StoredBlob(
            body=body,
            content_encoding=content_encoding,
            etag=hashlib.md5(body).hexdigest(),
        )

    async def upload(
        self,
        data: bytes,
        overwrite: bool = True,
        if_match: str | None = None,
        content_encoding: str | None = None,
    ) -> None:
        _ensure_within(self._container_path, self._file_path, strict=False)
        async with self._lock:
            # Checks run under the path lock so conditional writes are atomic
            exists = self._file_path.exists()
            if exists and not overwrite:
                raise FileExistsError(f"Blob {self._blob_name} already exists")
            if if_match is not None:
                with _os_errors(self._blob_name):
                    current_etag = self._current_etag() if exists else None
                if current_etag != if_match:
                    raise ConcurrencyError(
                        f"ETag mismatch for blob '{self._blob_name}'",
                        key=self._blob_name,
                    )
            with _os_errors(self._blob_name):
                self._file_path.parent.mkdir(parents=True, exist_ok=True)
                self._file_path.write_bytes(data)
                self._write_encoding(content_encoding)

    async def delete(self) -> None:
        if not self._file_path.is_file():
            raise self._not_found()
        _ensure_within(self._container_path, self._file_path, strict=True)
        async with self._lock:
            with _os_errors(self._blob_name):
                self._file_path.unlink()
                self._meta_path.unlink(missing_ok=True)

    async def get_etag(self) -> str | None:
        if not self._file_path.is_file():
            raise self._not_found()
        _ensure_within(self._container_path, self._file_path, strict=True)
        with _os_errors(self._blob_name):
            return self._current_etag()
