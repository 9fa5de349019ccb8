from __future__ import annotations

import bz2
import zlib
from typing import Optional

from .constants import (
    COMPRESSION_NONE,
    COMPRESSION_GZ,
    COMPRESSION_BZ2,
    DEFLATE_LEVEL,
    BZIP2_LEVEL,
)
from .errors import DecompressionError


class _Passthrough:
    def compress(self, data: bytes) -> bytes:
        return data

    def flush(self) -> bytes:
        return b""


class Codec:
    """Per-entry payload codec.

    GZ payloads are raw deflate streams (no zlib/gzip framing); BZ2 payloads
    are complete bzip2 streams.
    """

    def __init__(self, kind: str, level: Optional[int] = None):
        if kind not in (COMPRESSION_NONE, COMPRESSION_GZ, COMPRESSION_BZ2):
            raise ValueError(f"unsupported compression kind: {kind}")
        self.kind = kind
        self.level = level

    def compressor(self):
        """Return an object with ``compress(chunk)`` and ``flush()`` for streaming."""
        if self.kind == COMPRESSION_GZ:
            level = self.level if self.level is not None else DEFLATE_LEVEL
            return zlib.compressobj(level, zlib.DEFLATED, -zlib.MAX_WBITS)
        if self.kind == COMPRESSION_BZ2:
            return bz2.BZ2Compressor(self.level if self.level is not None else BZIP2_LEVEL)
        return _Passthrough()

    def compress(self, data: bytes) -> bytes:
        c = self.compressor()
        return c.compress(data) + c.flush()

    def decompress(self, data: bytes) -> bytes:
        if self.kind == COMPRESSION_NONE:
            return data
        if self.kind == COMPRESSION_GZ:
            d = zlib.decompressobj(-zlib.MAX_WBITS)
            try:
                out = d.decompress(data) + d.flush()
            except zlib.error as e:
                raise DecompressionError(f"deflate stream is corrupt: {e}") from e
            if not d.eof:
                raise DecompressionError("deflate stream is truncated")
            if d.unused_data:
                raise DecompressionError("trailing bytes after deflate stream")
            return out
        d = bz2.BZ2Decompressor()
        try:
            out = d.decompress(data)
        except (OSError, ValueError) as e:
            raise DecompressionError(f"bzip2 stream is corrupt: {e}") from e
        if not d.eof:
            raise DecompressionError("bzip2 stream is truncated")
        if d.unused_data:
            raise DecompressionError("trailing bytes after bzip2 stream")
        return out
