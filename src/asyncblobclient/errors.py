class BlobStoreError(Exception):
    """Base exception for all blob client operations."""

    def __init__(
        self, message: str, key: str | None = None, cause: Exception | None = None
    ):
        self.key = key
        self.cause = cause
        super().__init__(message)


class InvalidArgumentError(BlobStoreError, ValueError):
    """Raised for bad caller input, e.g. an empty path or body."""

    pass


class PolicyViolationError(InvalidArgumentError):
    """Raised when a path breaks a storage convention (archive from inbox only)."""

    pass


class ConfigurationError(BlobStoreError, ValueError):
    """Raised when a client cannot be built from the given configuration."""

    pass


class BlobNotFoundError(BlobStoreError):
    """Raised when a requested blob does not exist."""

    pass


class DecodeError(BlobStoreError):
    """Raised when a stored payload cannot be decompressed."""

    pass


class ParseError(BlobStoreError, ValueError):
    """Raised when a blob body is not valid JSON."""

    pass


class ConcurrencyError(BlobStoreError):
    """Raised when ETag optimistic concurrency check fails."""

    pass


class BackendError(BlobStoreError):
    """Raised for any storage backend failure not otherwise classified."""

    pass


class LockHeldError(BlobStoreError):
    """Raised when a lease lock is currently held by another acquirer."""

    def __init__(self, name: str, delta_ms: int):
        self.name = name
        self.delta_ms = delta_ms
        super().__init__(
            f"Lock '{name}' already acquired ({delta_ms}ms ago)", key=f"{name}.lock"
        )
