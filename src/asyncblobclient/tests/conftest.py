import asyncio
import os
import uuid

import pytest
from dotenv import load_dotenv

from asyncblobclient import AzureBlobAdapter, LocalFileAdapter

load_dotenv()

# Azure config
CONN_STR = os.environ.get("AZURE_CONN_STR")
CONTAINER_NAME = os.environ.get("AZURE_CONTAINER")

# Local config
LOCAL_CONTAINER = "test_container"


def unique_key(suffix: str) -> str:
    return f"test_{suffix}_{uuid.uuid4()}"


# ---------------------------
# Parametrize backends
# ---------------------------
@pytest.fixture(
    params=[
        pytest.param("azure", marks=pytest.mark.azure),
        pytest.param("local", marks=pytest.mark.local),
    ]
)
def backend(request, tmp_path):
    """Fixture that provides either Azure or local backend."""
    if request.param == "azure":
        if not CONN_STR or not CONTAINER_NAME:
            pytest.skip(
                "Azure backend not configured (AZURE_CONN_STR / AZURE_CONTAINER missing)"
            )

        adapter = AzureBlobAdapter.from_connection_string(CONN_STR)

        # Cleanup for Azure before and after test
        from azure.storage.blob import BlobServiceClient

        blob_service_client = BlobServiceClient.from_connection_string(CONN_STR)
        container_client = blob_service_client.get_container_client(CONTAINER_NAME)
        for blob in container_client.list_blobs(name_starts_with="test_"):
            container_client.delete_blob(blob.name)

        yield adapter, CONTAINER_NAME

        for blob in container_client.list_blobs(name_starts_with="test_"):
            container_client.delete_blob(blob.name)

    elif request.param == "local":
        # tmp_path is auto-cleaned by pytest
        yield LocalFileAdapter(str(tmp_path)), LOCAL_CONTAINER


@pytest.fixture
def local_backend(tmp_path):
    return LocalFileAdapter(str(tmp_path)), LOCAL_CONTAINER


# ---------------------------
# Instrumented store double
# ---------------------------
class InFlightCounter:
    def __init__(self, delay: float = 0.01):
        self.delay = delay
        self.current = 0
        self.peak = 0
        self.calls: list[tuple[str, str]] = []

    async def track(self, op: str, name: str, coro):
        self.calls.append((op, name))
        self.current += 1
        self.peak = max(self.peak, self.current)
        try:
            await asyncio.sleep(self.delay)
            return await coro
        finally:
            self.current -= 1


class _CountingBlob:
    def __init__(self, inner, name: str, counter: InFlightCounter):
        self._inner = inner
        self._name = name
        self._counter = counter

    async def download(self):
        return await self._counter.track("download", self._name, self._inner.download())

    async def upload(self, data, **kwargs):
        return await self._counter.track(
            "upload", self._name, self._inner.upload(data, **kwargs)
        )

    async def delete(self):
        return await self._counter.track("delete", self._name, self._inner.delete())

    async def get_etag(self):
        return await self._inner.get_etag()


class _CountingContainer:
    def __init__(self, inner, counter: InFlightCounter):
        self._inner = inner
        self._counter = counter

    def get_blob(self, blob_name):
        return _CountingBlob(self._inner.get_blob(blob_name), blob_name, self._counter)

    async def list_blobs(self, prefix="", max_results=None):
        return await self._inner.list_blobs(prefix, max_results)

    async def list_blob_names(self, prefix=""):
        return await self._inner.list_blob_names(prefix)

    async def copy_blob(self, source_name, dest_name):
        return await self._counter.track(
            "copy", source_name, self._inner.copy_blob(source_name, dest_name)
        )


class CountingAdapter:
    """Wraps a real adapter and records concurrent in-flight store calls."""

    def __init__(self, inner, delay: float = 0.01):
        self._inner = inner
        self.counter = InFlightCounter(delay)

    def get_container(self, container_name):
        return _CountingContainer(self._inner.get_container(container_name), self.counter)

    async def close(self):
        await self._inner.close()


@pytest.fixture
def counting_backend(tmp_path):
    return CountingAdapter(LocalFileAdapter(str(tmp_path))), LOCAL_CONTAINER
