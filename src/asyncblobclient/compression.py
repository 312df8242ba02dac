import gzip
import zlib
from typing import Protocol

from .errors import DecodeError


class Codec(Protocol):
    """Compression capability used for transparent blob compression."""

    # Tag stored alongside compressed blobs (HTTP Content-Encoding)
    encoding: str

    def compress(self, data: bytes) -> bytes: ...
    def decompress(self, data: bytes) -> bytes: ...


class GzipCodec(Codec):
    encoding = "gzip"

    def __init__(self, compresslevel: int = 9):
        self.compresslevel = compresslevel

    def compress(self, data: bytes) -> bytes:
        # mtime=0 keeps output deterministic for identical input
        return gzip.compress(data, compresslevel=self.compresslevel, mtime=0)

    def decompress(self, data: bytes) -> bytes:
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise DecodeError(f"Invalid gzip data: {e}", cause=e) from e
