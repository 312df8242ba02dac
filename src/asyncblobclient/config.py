import os
from dataclasses import dataclass

from dotenv import find_dotenv, load_dotenv

from .errors import ConfigurationError
from .lease_lock import DEFAULT_EXPIRY_MS, ConcurrencyMode
from .storage_protocols import AsyncStorageAdapter


@dataclass
class BlobStoreConfig:
    """
    Explicit client configuration.

    Exactly one backend is used: Azure when connection_string is set,
    otherwise the local filesystem under local_path.
    """

    container_name: str
    connection_string: str | None = None
    local_path: str | None = None
    concurrency: int = 5
    lock_expiry_ms: int = DEFAULT_EXPIRY_MS
    concurrency_mode: ConcurrencyMode = ConcurrencyMode.NONE

    def __post_init__(self) -> None:
        if not self.container_name:
            raise ConfigurationError("BlobStoreConfig requires container_name")
        if not self.connection_string and not self.local_path:
            raise ConfigurationError(
                "BlobStoreConfig requires connection_string or local_path"
            )
        if self.concurrency <= 0:
            raise ConfigurationError(
                f"concurrency must be positive, got {self.concurrency}"
            )
        if self.lock_expiry_ms <= 0:
            raise ConfigurationError(
                f"lock_expiry_ms must be positive, got {self.lock_expiry_ms}"
            )

    @classmethod
    def from_env(
        cls, dotenv: bool = True, dotenv_path: str | None = None
    ) -> "BlobStoreConfig":
        """
        Build a config from environment variables, reading .env first if asked.

        AZURE_CONN_STR, AZURE_CONTAINER, BLOBSTORE_LOCAL_PATH,
        BLOBSTORE_CONCURRENCY, BLOBSTORE_LOCK_EXPIRY_MS,
        BLOBSTORE_CONCURRENCY_MODE ("none" or "etag").
        """
        if dotenv:
            load_dotenv(dotenv_path or find_dotenv(usecwd=True))
        try:
            return cls(
                container_name=os.environ.get("AZURE_CONTAINER", ""),
                connection_string=os.environ.get("AZURE_CONN_STR") or None,
                local_path=os.environ.get("BLOBSTORE_LOCAL_PATH") or None,
                concurrency=int(os.environ.get("BLOBSTORE_CONCURRENCY", "5")),
                lock_expiry_ms=int(
                    os.environ.get("BLOBSTORE_LOCK_EXPIRY_MS", str(DEFAULT_EXPIRY_MS))
                ),
                concurrency_mode=ConcurrencyMode(
                    os.environ.get("BLOBSTORE_CONCURRENCY_MODE", "none").lower()
                ),
            )
        except ConfigurationError:
            raise
        except ValueError as e:
            raise ConfigurationError(f"Invalid blob store environment: {e}") from e

    def create_adapter(self) -> AsyncStorageAdapter:
        if self.connection_string:
            from .azure_blob_adapter import AzureBlobAdapter

            return AzureBlobAdapter.from_connection_string(self.connection_string)
        from .local_file_adapter import LocalFileAdapter

        return LocalFileAdapter(self.local_path)
