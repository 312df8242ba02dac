import asyncio
import hashlib
import os
import sys

import pytest

from asyncblobclient import (
    AsyncBlobStore,
    BackendError,
    BlobNotFoundError,
    BlobStoreConfig,
    ConcurrencyError,
    ConcurrencyMode,
    InvalidArgumentError,
    LockHeldError,
    PolicyViolationError,
)
from asyncblobclient.local_file_adapter import (
    META_DIR,
    _LocalBlobHandle,
    _LocalContainerHandle,
)
from conftest import unique_key


# ---------------------------
# Store facade
# ---------------------------


@pytest.mark.asyncio
async def test_store_end_to_end(backend):
    adapter, container = backend
    root = unique_key("e2e")
    async with AsyncBlobStore(adapter, container, concurrency=2) as store:
        release = await store.acquire_lock(f"{root}/job")
        try:
            for i in range(3):
                await store.write_json(f"{root}/inbox/{i}.json", {"n": i})

            blobs = await store.read_many(f"{root}/inbox/", max_keys=10)
            assert sorted(b.path for b in blobs) == [
                f"{root}/inbox/{i}.json" for i in range(3)
            ]

            assert await store.archive_many([b.path for b in blobs])
            assert await store.read_json(f"{root}/archive/1.json") == {"n": 1}
            assert await store.list_prefix(f"{root}/inbox/") == []
        finally:
            await release()

        assert await store.read_json(f"{root}/job.lock") is None


@pytest.mark.asyncio
async def test_store_single_blob_operations(backend):
    adapter, container = backend
    key = unique_key("single")
    async with AsyncBlobStore(adapter, container) as store:
        await store.write(key, b"z" * 5000)
        await store.copy(key, key + ".bak")
        assert (await store.read(key + ".bak")).body == b"z" * 5000
        await store.delete_many([key, key + ".bak"])
        with pytest.raises(BlobNotFoundError):
            await store.read(key)
        await store.delete(key)


@pytest.mark.asyncio
async def test_store_archive_one_policy(local_backend):
    adapter, container = local_backend
    async with AsyncBlobStore(adapter, container) as store:
        await store.write("other/x.txt", b"x")
        with pytest.raises(PolicyViolationError):
            await store.archive_one("other/x.txt")
        await store.write("inbox/x.txt", b"x")
        assert await store.archive_one("inbox/x.txt") == "archive/x.txt"


@pytest.mark.asyncio
async def test_store_lock_uses_configured_expiry(local_backend):
    adapter, container = local_backend
    async with AsyncBlobStore(adapter, container, lock_expiry_ms=50) as store:
        async with store.hold_lock("jobA"):
            with pytest.raises(LockHeldError):
                await store.acquire_lock("jobA")
            await asyncio.sleep(0.1)
            release = await store.acquire_lock("jobA")
            await release()


@pytest.mark.asyncio
async def test_store_lock_rejects_explicit_zero_expiry(local_backend):
    adapter, container = local_backend
    async with AsyncBlobStore(adapter, container, lock_expiry_ms=50) as store:
        with pytest.raises(InvalidArgumentError):
            await store.acquire_lock("jobZ", 0)
        with pytest.raises(InvalidArgumentError):
            async with store.hold_lock("jobZ", 0):
                pass


@pytest.mark.asyncio
async def test_store_from_config(tmp_path):
    config = BlobStoreConfig(
        container_name="configured",
        local_path=str(tmp_path),
        concurrency=3,
        concurrency_mode=ConcurrencyMode.ETAG,
    )
    async with AsyncBlobStore.from_config(config) as store:
        await store.write("a.txt", b"a")
        assert (await store.read("a.txt")).body == b"a"
    assert (tmp_path / "configured" / "a.txt").read_bytes() == b"a"


# ---------------------------
# Adapters
# ---------------------------


@pytest.mark.asyncio
async def test_list_blobs_with_prefix(backend):
    adapter, container = backend
    ch = adapter.get_container(container)
    prefix = unique_key("prefix")

    await ch.get_blob(f"{prefix}/a1.txt").upload(b"x")
    await ch.get_blob(f"{prefix}/a2.txt").upload(b"x")
    await ch.get_blob(f"{prefix}/b1.txt").upload(b"x")

    names = await ch.list_blob_names(prefix=f"{prefix}/a")
    assert set(names) >= {f"{prefix}/a1.txt", f"{prefix}/a2.txt"}
    assert f"{prefix}/b1.txt" not in names


@pytest.mark.asyncio
async def test_upload_with_overwrite_false(backend):
    adapter, container = backend
    ch = adapter.get_container(container)
    blob = ch.get_blob(unique_key("exists"))
    await blob.upload(b"data")
    with pytest.raises(FileExistsError):
        await blob.upload(b"newdata", overwrite=False)


@pytest.mark.asyncio
async def test_etag_retrieval(backend):
    adapter, container = backend
    ch = adapter.get_container(container)
    blob = ch.get_blob(unique_key("etag"))
    await blob.upload(b"etagtest")
    etag = await blob.get_etag()
    assert isinstance(etag, str)
    assert etag != ""
    assert (await blob.download()).etag == etag


@pytest.mark.asyncio
async def test_concurrency_error_on_etag_mismatch(backend):
    adapter, container = backend
    ch = adapter.get_container(container)
    blob = ch.get_blob(unique_key("concurrent"))
    await blob.upload(b"first")
    etag = await blob.get_etag()
    with pytest.raises(ConcurrencyError):
        await blob.upload(b"second", if_match="wrong-etag")
    await blob.upload(b"third", if_match=etag)
    assert (await blob.download()).body == b"third"


@pytest.mark.asyncio
async def test_content_encoding_is_stored(backend):
    adapter, container = backend
    ch = adapter.get_container(container)
    blob = ch.get_blob(unique_key("encoded"))
    await blob.upload(b"\x1f\x8b fake", content_encoding="gzip")
    assert (await blob.download()).content_encoding == "gzip"
    await blob.upload(b"plain")
    assert (await blob.download()).content_encoding is None


@pytest.mark.asyncio
@pytest.mark.local
async def test_local_metadata_hidden_from_listing(local_backend):
    adapter, container = local_backend
    ch = adapter.get_container(container)
    await ch.get_blob("dir/a.bin").upload(b"x", content_encoding="gzip")

    assert await ch.list_blob_names() == ["dir/a.bin"]
    entries = await ch.list_blobs()
    assert [e.path for e in entries] == ["dir/a.bin"]
    assert entries[0].last_modified.tzinfo is not None

    with pytest.raises(InvalidArgumentError):
        ch.get_blob(f"{META_DIR}/dir/a.bin.json")

    await ch.get_blob("dir/a.bin").delete()
    assert not (ch._container_path / META_DIR / "dir" / "a.bin.json").exists()


@pytest.mark.asyncio
@pytest.mark.local
async def test_global_concurrency_lock(local_backend):
    adapter, container = local_backend
    container_handle = adapter.get_container(container)
    blob_handle1 = container_handle.get_blob("shared.txt")
    blob_handle2 = container_handle.get_blob("shared.txt")

    async def writer(handle, data):
        await handle.upload(data.encode())

    # Run two uploads concurrently
    await asyncio.gather(writer(blob_handle1, "first"), writer(blob_handle2, "second"))

    # Only one of the writes should be present (last one wins, but no corruption)
    content = (await blob_handle1.download()).body.decode()
    assert content in ("first", "second")


@pytest.mark.asyncio
@pytest.mark.local
async def test_create_only_uploads_race(local_backend):
    adapter, container = local_backend
    container_handle = adapter.get_container(container)

    async def create(data):
        try:
            await container_handle.get_blob("once.txt").upload(data, overwrite=False)
            return True
        except FileExistsError:
            return False

    results = await asyncio.gather(*(create(str(i).encode()) for i in range(5)))
    assert results.count(True) == 1


@pytest.mark.asyncio
@pytest.mark.local
async def test_etag_caching(local_backend, monkeypatch):
    adapter, container = local_backend
    container_handle = adapter.get_container(container)

    await container_handle.get_blob("etag_test.txt").upload(b"hello world")

    call_count = {"md5": 0}

    original_md5 = hashlib.md5

    def counting_md5(*args, **kwargs):
        call_count["md5"] += 1
        return original_md5(*args, **kwargs)

    monkeypatch.setattr(hashlib, "md5", counting_md5)

    # First call should compute MD5
    etag1 = await container_handle.get_blob("etag_test.txt").get_etag()
    assert call_count["md5"] == 1

    # A fresh handle for the same blob should hit the shared cache
    etag2 = await container_handle.get_blob("etag_test.txt").get_etag()
    assert call_count["md5"] == 1
    assert etag1 == etag2

    # Modify file to invalidate cache
    await container_handle.get_blob("etag_test.txt").upload(b"changed")
    etag3 = await container_handle.get_blob("etag_test.txt").get_etag()
    assert call_count["md5"] == 2
    assert etag3 != etag1


@pytest.mark.asyncio
@pytest.mark.local
async def test_local_path_traversal_protection(local_backend):
    adapter, container = local_backend

    malicious_blob_name = "../../etc/passwd"
    container_handle = adapter.get_container(container)

    with pytest.raises(ValueError) as excinfo:
        container_handle.get_blob(malicious_blob_name)
    assert "escapes base directory" in str(excinfo.value)

    # Also test malicious container name
    with pytest.raises(ValueError):
        adapter.get_container("../outside_container")


@pytest.mark.asyncio
@pytest.mark.local
async def test_local_delete_outside_protection(local_backend, tmp_path):
    adapter, container = local_backend
    container_handle = adapter.get_container(container)

    # Create a file outside the container
    outside_file = tmp_path.parent / "outside.txt"
    outside_file.write_text("secret")

    # Try to make a blob handle pointing to it (bypassing normal get_blob)
    assert isinstance(container_handle, _LocalContainerHandle)
    malicious_blob = _LocalBlobHandle(outside_file, container_handle._container_path)

    with pytest.raises(ValueError):
        await malicious_blob.delete()

    assert outside_file.exists(), "Outside file should not be deleted"


@pytest.mark.asyncio
@pytest.mark.local
async def test_symlink_outside_protection(local_backend, tmp_path):
    if not hasattr(os, "symlink"):
        pytest.skip("Symlinks not supported on this platform")
    if sys.platform == "win32":
        # Windows requires admin or Developer Mode for symlinks
        try:
            test_link = tmp_path / "test_link"
            test_target = tmp_path / "test_target"
            test_target.write_text("x")
            test_link.symlink_to(test_target)
        except OSError:
            pytest.skip("Symlink creation not permitted on this Windows system")
    adapter, container = local_backend

    container_handle = adapter.get_container(container)
    assert isinstance(container_handle, _LocalContainerHandle)

    # Create a file outside the container
    outside_file = tmp_path.parent / "outside.txt"
    outside_file.write_text("secret")

    # Create a symlink inside the container pointing to the outside file
    symlink_path = container_handle._container_path / "link.txt"
    symlink_path.symlink_to(outside_file)

    # Resolving the name already leaves the container
    with pytest.raises(ValueError):
        container_handle.get_blob("link.txt")

    blob_handle = _LocalBlobHandle(symlink_path, container_handle._container_path)

    # Download should fail due to symlink escape
    with pytest.raises(ValueError):
        await blob_handle.download()

    # Delete should also fail
    with pytest.raises(ValueError):
        await blob_handle.delete()

    # Listing refuses to expose it
    with pytest.raises(ValueError):
        await container_handle.list_blob_names()



@pytest.mark.asyncio
@pytest.mark.local
async def test_local_errors_use_library_types(local_backend):
    adapter, container = local_backend
    async with AsyncBlobStore(adapter, container) as store:
        await store.write("dir/inner.txt", b"x")

        # A directory is not a blob
        with pytest.raises(BlobNotFoundError):
            await store.read("dir")

        with pytest.raises(InvalidArgumentError):
            await store.read("../outside.txt")

        with pytest.raises(BackendError) as excinfo:
            await store.write("dir", b"y")
        assert excinfo.value.key == "dir"
        assert isinstance(excinfo.value.cause, OSError)


@pytest.mark.asyncio
@pytest.mark.local
async def test_local_corrupt_metadata_is_backend_error(local_backend):
    adapter, container = local_backend
    container_handle = adapter.get_container(container)
    assert isinstance(container_handle, _LocalContainerHandle)
    await container_handle.get_blob("c.bin").upload(b"x", content_encoding="gzip")
    (container_handle._container_path / META_DIR / "c.bin.json").write_text("{oops")

    with pytest.raises(BackendError):
        await container_handle.get_blob("c.bin").download()
