import logging
from collections.abc import Sequence

from .blob_client import Blob, BlobClient
from .concurrency import ConcurrencyLimiter
from .errors import InvalidArgumentError, PolicyViolationError
from .storage_protocols import DirectoryEntry

log = logging.getLogger(__name__)

INBOX_SEGMENT = "inbox"
ARCHIVE_SEGMENT = "archive"


class BatchOperations:
    """
    Multi-blob operations over a BlobClient with bounded concurrency.

    Every batch follows the ConcurrencyLimiter failure policy: the first
    failing item is re-raised after in-flight items settle, and items not
    yet started are skipped.
    """

    def __init__(self, client: BlobClient, concurrency: int = 5) -> None:
        self.client = client
        self.concurrency = concurrency

    def _limiter(self, concurrency: int | None) -> ConcurrencyLimiter:
        if concurrency is None:
            concurrency = self.concurrency
        return ConcurrencyLimiter(concurrency)

    async def list_prefix(self, prefix: str, max_keys: int = 5) -> list[DirectoryEntry]:
        """
        List at most max_keys blobs under prefix. Results are not paginated.
        """
        return await self.client.list_blobs(prefix, max_keys)

    async def read_prefix(
        self, prefix: str, max_keys: int = 5, concurrency: int | None = None
    ) -> list[Blob]:
        entries = await self.list_prefix(prefix, max_keys)
        log.info("found #%d files with prefix '%s'", len(entries), prefix)

        async def read_entry(entry: DirectoryEntry) -> Blob:
            return await self.client.read(entry.path)

        return await self._limiter(concurrency).run(entries, read_entry)

    read_many = read_prefix

    async def delete_many(
        self, paths: Sequence[str], concurrency: int | None = None
    ) -> bool:
        log.info("delete #%d files", len(paths))
        await self._limiter(concurrency).run(paths, self.client.delete)
        return True

    @staticmethod
    def archive_path(path: str) -> str:
        if not path:
            raise InvalidArgumentError("path missing")
        if INBOX_SEGMENT not in path:
            raise PolicyViolationError(
                f"can only archive files from the inbox ({path})", key=path
            )
        return path.replace(INBOX_SEGMENT, ARCHIVE_SEGMENT, 1)

    async def archive_one(self, path: str) -> str:
        """
        Move an inbox blob to the matching archive path.

        The copy completes before the original is deleted, so a failure in
        between leaves the inbox blob in place and the call can be retried.
        """
        new_path = self.archive_path(path)
        await self.client.copy(path, new_path)
        await self.client.delete(path)
        return new_path

    async def archive_many(
        self, paths: Sequence[str], concurrency: int | None = None
    ) -> bool:
        log.info("archive #%d files", len(paths))
        await self._limiter(concurrency).run(paths, self.archive_one)
        return True
