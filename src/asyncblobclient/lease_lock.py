"""
Lease locks stored as blobs.

A lock named "jobA" is held while a blob "jobA.lock" exists whose JSON body
carries a "date" newer than the expiry window. Stale or unreadable records
count as free and are overwritten by the next acquirer.

In ConcurrencyMode.NONE the read-check-write sequence is not atomic: two
acquirers racing on a free or expired lock can both succeed, and the later
write wins. ConcurrencyMode.ETAG makes the write conditional (create-only
for a free lock, If-Match on the stale record's ETag otherwise) and has
release() check the owner token, so a racing acquirer fails with
LockHeldError instead of clobbering the lease.
"""

import logging
import secrets
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from .blob_client import Blob, BlobClient
from .errors import (
    BlobNotFoundError,
    ConcurrencyError,
    DecodeError,
    InvalidArgumentError,
    LockHeldError,
    ParseError,
)

log = logging.getLogger(__name__)

DEFAULT_EXPIRY_MS = 3 * 60 * 1000
LOCK_SUFFIX = ".lock"

ReleaseFunction = Callable[[], Awaitable[bool]]


class ConcurrencyMode(Enum):
    NONE = "none"  # Plain overwrite, best effort
    ETAG = "etag"  # Conditional writes and owner-checked release


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class LockRecord:
    date: datetime
    owner: str | None = None

    def to_json(self) -> dict:
        return {"date": self.date.isoformat(), "owner": self.owner}

    @classmethod
    def from_json(cls, value) -> "LockRecord":
        if not isinstance(value, dict) or not isinstance(value.get("date"), str):
            raise ParseError("Lock record has no date")
        try:
            date = datetime.fromisoformat(value["date"].replace("Z", "+00:00"))
        except ValueError as e:
            raise ParseError(f"Lock record has invalid date: {e}", cause=e) from e
        if date.tzinfo is None:
            date = date.replace(tzinfo=timezone.utc)
        return cls(date=date, owner=value.get("owner"))


class LeaseLock:
    def __init__(
        self,
        client: BlobClient,
        concurrency_mode: ConcurrencyMode = ConcurrencyMode.NONE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.concurrency_mode = concurrency_mode
        self._clock = clock or _utcnow

    @staticmethod
    def lock_path(name: str) -> str:
        return f"{name}{LOCK_SUFFIX}"

    async def _load_record(self, key: str) -> tuple[Blob, LockRecord]:
        blob = await self.client.read(key)
        return blob, LockRecord.from_json(self.client.decode_json(blob))

    async def _read_record(self, key: str) -> tuple[Blob | None, LockRecord | None]:
        """
        Return the stored lock blob and its parsed record.
        A corrupt record is deleted and reported as absent.
        """
        try:
            return await self._load_record(key)
        except BlobNotFoundError:
            return None, None
        except (ParseError, DecodeError) as e:
            log.warning("lock %s had invalid contents, deleting: %s", key, e)
            await self.client.delete(key)
            return None, None

    async def acquire(
        self, name: str, expiry_ms: int = DEFAULT_EXPIRY_MS
    ) -> ReleaseFunction:
        """
        Acquire the named lease, returning an async release function.

        Raises LockHeldError if an unexpired record exists. Records older
        than expiry_ms are taken over.
        """
        if not name:
            raise InvalidArgumentError("lock name missing")
        if expiry_ms <= 0:
            raise InvalidArgumentError(f"expiry_ms must be positive, got {expiry_ms}")
        key = self.lock_path(name)

        blob, record = await self._read_record(key)
        if record is not None:
            delta_ms = int((self._clock() - record.date).total_seconds() * 1000)
            if delta_ms < expiry_ms:
                raise LockHeldError(name, delta_ms)
            log.info("lock %s expired (%dms old), overwrite", key, delta_ms)

        owner = secrets.token_hex(16)
        new_record = LockRecord(date=self._clock(), owner=owner)
        if self.concurrency_mode == ConcurrencyMode.ETAG:
            try:
                if blob is None:
                    await self.client.write_json(
                        key, new_record.to_json(), overwrite=False
                    )
                else:
                    await self.client.write_json(
                        key, new_record.to_json(), if_match=blob.etag
                    )
            except (FileExistsError, ConcurrencyError, BlobNotFoundError) as e:
                # Another acquirer wrote the record between our read and write
                raise LockHeldError(name, 0) from e
        else:
            await self.client.write_json(key, new_record.to_json())
        log.debug("lock %s acquired", key)

        async def release() -> bool:
            return await self._release(key, owner)

        return release

    async def _release(self, key: str, owner: str) -> bool:
        if self.concurrency_mode == ConcurrencyMode.ETAG:
            # Only the owner may delete; an unreadable record is left alone
            try:
                _, record = await self._load_record(key)
            except BlobNotFoundError:
                return False
            except (ParseError, DecodeError) as e:
                log.warning("lock %s has invalid contents, not releasing: %s", key, e)
                return False
            if record.owner != owner:
                log.warning("lock %s is owned by another acquirer, not releasing", key)
                return False
        await self.client.delete(key)
        log.debug("lock %s released", key)
        return True

    @asynccontextmanager
    async def hold(
        self, name: str, expiry_ms: int = DEFAULT_EXPIRY_MS
    ) -> AsyncIterator[None]:
        release = await self.acquire(name, expiry_ms)
        try:
            yield
        finally:
            await release()
