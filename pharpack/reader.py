from __future__ import annotations

import io
import os
import shutil
import sys
import tempfile
import zlib
from dataclasses import dataclass
from typing import Any, BinaryIO, Iterator, List, Optional, Tuple

from . import serial
from .codec import Codec
from .constants import (
    HALT_TOKEN,
    SIGNATURE_MAGIC,
    API_VERSION_MASK,
    API_VERSION_MIN_READ,
    HDR_SIGNATURE,
    ENT_PERM_MASK,
    ENT_COMPRESSED_GZ,
    ENT_COMPRESSED_BZ2,
    ENT_COMPRESSION_MASK,
    COMPRESSION_NONE,
    COMPRESSION_GZ,
    COMPRESSION_BZ2,
    SIGNATURE_DIGEST_SIZES,
    OPENSSL_SIGNATURES,
    COPY_BUFSIZE,
    U32,
    signature_name,
)
from .errors import DecompressionError, FormatError, InvalidPathError, PharError
from .hashutil import is_hash_signature, new_signature_hash
from .pathutil import norm_path


_ENTRY_FIXED_LEN = 4 + 4 + 4 + 4 + 4 + 4 + 4  # name len .. metadata len
_HALT_SCAN_CHUNK = 64 * 1024


@dataclass(frozen=True)
class Entry:
    name: str
    size: int
    timestamp: int
    compressed_size: int
    crc32: int
    flags: int
    metadata: Any = None
    offset: int = 0

    @property
    def compression(self) -> str:
        if self.flags & ENT_COMPRESSED_BZ2:
            return COMPRESSION_BZ2
        if self.flags & ENT_COMPRESSED_GZ:
            return COMPRESSION_GZ
        return COMPRESSION_NONE

    @property
    def permissions(self) -> int:
        return self.flags & ENT_PERM_MASK

    @property
    def is_dir(self) -> bool:
        return self.name.endswith("/")


@dataclass(frozen=True)
class Archive:
    stub: bytes
    alias: str
    metadata: Any
    entries: Tuple[Entry, ...]
    api_version: int
    flags: int
    signature_algorithm: Optional[int] = None
    signature: bytes = b""
    signed_length: int = 0

    @property
    def signature_name(self) -> str:
        return signature_name(self.signature_algorithm)

    def get(self, name: str) -> Optional[Entry]:
        for e in self.entries:
            if e.name == name:
                return e
        return None


class _Cursor:
    """Bounds-checked reader over the manifest body."""

    def __init__(self, data: bytes, base: int):
        self.data = data
        self.base = base
        self.pos = 0

    def take(self, n: int, what: str) -> bytes:
        end = self.pos + n
        if n < 0 or end > len(self.data):
            raise FormatError(
                f"Manifest truncated reading {what} at offset {self.base + self.pos} "
                f"(need {n} bytes, {len(self.data) - self.pos} left)"
            )
        raw = self.data[self.pos:end]
        self.pos = end
        return raw

    def u32(self, what: str) -> int:
        return U32.unpack(self.take(4, what))[0]


def _read_exact(f: BinaryIO, n: int, what: str) -> bytes:
    b = f.read(n)
    if len(b) != n:
        raise FormatError(f"Unexpected end of data reading {what}")
    return b


def stub_suffix_length(tail: bytes) -> int:
    """Length of the `` ?>`` + newline run that may follow the halt token."""
    if len(tail) < 3 or tail[0:1] not in (b" ", b"\n") or tail[1:3] != b"?>":
        return 0
    n = 3
    rest = tail[3:]
    if rest[:1] == b"\r":
        n += 1
        rest = rest[1:]
    if rest[:1] == b"\n":
        n += 1
    return n


def _locate_stub(f: BinaryIO, size: int) -> Tuple[bytes, int]:
    """Return (stub bytes, manifest offset).

    The stub runs through ``__HALT_COMPILER();`` plus an optional `` ?>`` and
    one optional newline. Without the token the manifest starts at offset 0.
    """
    f.seek(0)
    buf = b""
    scanned = 0
    halt_end = -1
    while scanned < size:
        chunk = f.read(_HALT_SCAN_CHUNK)
        if not chunk:
            break
        keep = len(buf)
        buf += chunk
        idx = buf.find(HALT_TOKEN)
        if idx >= 0:
            halt_end = scanned - keep + idx + len(HALT_TOKEN)
            break
        scanned += len(chunk)
        buf = buf[-(len(HALT_TOKEN) - 1):]
    if halt_end < 0:
        return b"", 0
    f.seek(halt_end)
    end = halt_end + stub_suffix_length(f.read(5))
    f.seek(0)
    return _read_exact(f, end, "stub"), end


def _checked_name(raw: bytes) -> str:
    try:
        name = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError(f"Entry name is not valid UTF-8: {raw!r}") from exc
    is_dir = name.endswith("/")
    try:
        canonical = norm_path(name.rstrip("/") if is_dir else name)
    except InvalidPathError as exc:
        raise FormatError(f"Unsafe entry name in manifest: {name!r}") from exc
    return canonical + "/" if is_dir else canonical


def _entry_compression_flags(name: str, flags: int) -> None:
    comp = flags & ENT_COMPRESSION_MASK
    if comp not in (0, ENT_COMPRESSED_GZ, ENT_COMPRESSED_BZ2):
        raise FormatError(f"Unsupported compression flags 0x{comp:04x} on entry {name}")


def _read_signature(f: BinaryIO, size: int, data_start: int) -> Tuple[int, bytes, int]:
    """Parse the trailing signature block; returns (algorithm, signature, signed length)."""
    if size - data_start < 8:
        raise FormatError("Signature flag set but container too short for a signature block")
    f.seek(size - 8)
    tail = _read_exact(f, 8, "signature footer")
    algorithm = U32.unpack(tail[:4])[0]
    if tail[4:] != SIGNATURE_MAGIC:
        raise FormatError("Signature magic GBMB missing at end of container")
    if algorithm in OPENSSL_SIGNATURES:
        if size - data_start < 12:
            raise FormatError("OpenSSL signature block truncated")
        f.seek(size - 12)
        sig_len = U32.unpack(_read_exact(f, 4, "signature length"))[0]
        sig_start = size - 12 - sig_len
    elif algorithm in SIGNATURE_DIGEST_SIZES:
        sig_len = SIGNATURE_DIGEST_SIZES[algorithm]
        sig_start = size - 8 - sig_len
    else:
        raise FormatError(f"Unknown signature algorithm id 0x{algorithm:04x}")
    if sig_start < data_start:
        raise FormatError("Signature block overlaps the manifest")
    f.seek(sig_start)
    return algorithm, _read_exact(f, sig_len, "signature"), sig_start


def _parse_container(f: BinaryIO, size: int) -> Archive:
    """
    Parses the stub, manifest and signature footer of a container.

    Payload bytes are not read here; each Entry records the absolute offset of
    its compressed bytes so callers can decompress entries one at a time.

    A stubless container can still carry the halt token inside a payload. When
    the manifest after the first token does not parse, the container is read
    again with its manifest at offset 0; if that fails too, the first error is
    raised.
    """
    stub, manifest_start = _locate_stub(f, size)
    try:
        return _parse_manifest(f, size, stub, manifest_start)
    except FormatError as exc:
        if manifest_start == 0:
            raise
        first_error = exc
    try:
        return _parse_manifest(f, size, b"", 0)
    except FormatError:
        raise first_error from None


def _parse_manifest(f: BinaryIO, size: int, stub: bytes, manifest_start: int) -> Archive:
    f.seek(manifest_start)
    head = f.read(4)
    if len(head) != 4:
        raise FormatError("Container ends before the manifest length field")
    manifest_len = U32.unpack(head)[0]
    data_start = manifest_start + 4 + manifest_len
    if data_start > size:
        raise FormatError(
            f"Manifest length {manifest_len} exceeds container size {size} (manifest at offset {manifest_start})"
        )
    cur = _Cursor(_read_exact(f, manifest_len, "manifest"), manifest_start + 4)
    count = cur.u32("entry count")
    if count * _ENTRY_FIXED_LEN > manifest_len:
        raise FormatError(f"Entry count {count} cannot fit in a {manifest_len}-byte manifest")
    ver_raw = cur.take(2, "API version")
    api_version = (ver_raw[0] << 8) | ver_raw[1]
    if (api_version & API_VERSION_MASK) < API_VERSION_MIN_READ:
        raise FormatError(f"Unsupported manifest API version 0x{api_version:04x}")
    flags = cur.u32("global flags")
    alias_raw = cur.take(cur.u32("alias length"), "alias")
    try:
        alias = alias_raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise FormatError("Archive alias is not valid UTF-8") from exc
    metadata = serial.loads(cur.take(cur.u32("metadata length"), "metadata"))

    entries: List[Entry] = []
    seen = set()
    offset = data_start
    for i in range(count):
        name = _checked_name(cur.take(cur.u32(f"entry {i} name length"), f"entry {i} name"))
        if name in seen:
            raise FormatError(f"Duplicate entry name in manifest: {name}")
        seen.add(name)
        usize = cur.u32(f"{name} size")
        timestamp = cur.u32(f"{name} timestamp")
        csize = cur.u32(f"{name} compressed size")
        crc = cur.u32(f"{name} crc32")
        eflags = cur.u32(f"{name} flags")
        _entry_compression_flags(name, eflags)
        emeta = serial.loads(cur.take(cur.u32(f"{name} metadata length"), f"{name} metadata"))
        entries.append(
            Entry(
                name=name,
                size=usize,
                timestamp=timestamp,
                compressed_size=csize,
                crc32=crc,
                flags=eflags,
                metadata=emeta,
                offset=offset,
            )
        )
        offset += csize

    signature_algorithm: Optional[int] = None
    signature = b""
    data_end = size
    if flags & HDR_SIGNATURE:
        signature_algorithm, signature, data_end = _read_signature(f, size, data_start)
    if offset > data_end:
        raise FormatError(
            f"Entry payloads need {offset - data_start} bytes but only {data_end - data_start} are present"
        )
    return Archive(
        stub=stub,
        alias=alias,
        metadata=metadata,
        entries=tuple(entries),
        api_version=api_version,
        flags=flags,
        signature_algorithm=signature_algorithm,
        signature=signature,
        signed_length=data_end,
    )


def parse(data: bytes) -> Archive:
    """Parse container bytes into an immutable Archive (no side effects)."""
    return _parse_container(io.BytesIO(data), len(data))


def decompress_payload(entry: Entry, raw: bytes) -> bytes:
    """Decompress one entry's stored bytes and check size and crc32."""
    if entry.is_dir:
        return b""
    if len(raw) != entry.compressed_size:
        raise DecompressionError(
            f"{entry.name}: expected {entry.compressed_size} stored bytes, got {len(raw)}"
        )
    try:
        data = Codec(entry.compression).decompress(raw)
    except DecompressionError as exc:
        raise DecompressionError(f"{entry.name}: {exc}") from exc
    if len(data) != entry.size:
        raise DecompressionError(f"{entry.name}: size mismatch after decompress ({len(data)} != {entry.size})")
    if zlib.crc32(data) & 0xFFFFFFFF != entry.crc32:
        raise DecompressionError(f"{entry.name}: crc32 mismatch; data corrupted")
    return data


def read_payload(data: bytes, entry: Entry) -> bytes:
    return decompress_payload(entry, data[entry.offset:entry.offset + entry.compressed_size])


def _safe_chmod(path: str, mode: int) -> None:
    if not mode:
        return
    try:
        os.chmod(path, mode)
    except OSError as exc:
        print(f"Warning: failed to set mode on {path}: {exc}", file=sys.stderr)


def _safe_utime(path: str, mtime: int) -> None:
    if not mtime:
        return
    try:
        os.utime(path, (float(mtime), float(mtime)))
    except OSError as exc:
        print(f"Warning: failed to set timestamps on {path}: {exc}", file=sys.stderr)


def nearest_existing_dir(path: str) -> str:
    """Return ``path`` or its closest ancestor that is an existing directory."""
    path = os.path.abspath(path)
    while not os.path.isdir(path):
        parent = os.path.dirname(path)
        if parent == path:
            break
        path = parent
    return path


class ArchiveReader:
    def __init__(self, path: str):
        self.path = path
        self.f: Optional[BinaryIO] = None
        self.archive: Optional[Archive] = None
        self.size: int = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.f is not None:
            return
        self.f = open(self.path, "rb")
        try:
            self.size = os.fstat(self.f.fileno()).st_size
            self.archive = _parse_container(self.f, self.size)
        except (PharError, OSError, ValueError):
            self.close()
            raise

    def close(self):
        if self.f is not None:
            self.f.close()
            self.f = None

    def list(self) -> List[Entry]:
        if self.archive is None:
            raise RuntimeError("Archive not open")
        return list(self.archive.entries)

    def read(self, entry: Entry) -> bytes:
        if self.f is None:
            raise RuntimeError("Archive not open")
        self.f.seek(entry.offset)
        return decompress_payload(entry, self.f.read(entry.compressed_size))

    def iter_payloads(self) -> Iterator[Tuple[Entry, bytes]]:
        """Yield (entry, data) in manifest order, holding one payload at a time."""
        for e in self.list():
            yield e, self.read(e)

    def extract(self, entry: Entry, out_path: str):
        if entry.is_dir:
            os.makedirs(out_path, exist_ok=True)
            return
        data = self.read(entry)
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        with open(out_path, "wb") as wf:
            wf.write(data)
        _safe_chmod(out_path, entry.permissions)
        _safe_utime(out_path, entry.timestamp)

    def extract_all(self, outdir: str) -> int:
        """
        Extracts every entry below ``outdir``, all or nothing.

        Entries are decompressed into a staging directory: inside ``outdir``
        when it already exists, otherwise inside its nearest existing ancestor.
        Only after every entry decompressed and passed its crc32 check is
        ``outdir`` created and the staged files moved into it (overwriting
        files of the same name). On failure the staging directory is removed
        and nothing else has been created.

        Returns:
            The number of file entries extracted.
        """
        outdir = os.path.abspath(outdir)
        stage = tempfile.mkdtemp(prefix=".pharpack-stage-", dir=nearest_existing_dir(outdir))
        try:
            files = 0
            for e in self.list():
                self.extract(e, os.path.join(stage, *e.name.rstrip("/").split("/")))
                if not e.is_dir:
                    files += 1
            os.makedirs(outdir, exist_ok=True)
            for root, dirs, names in os.walk(stage):
                rel = os.path.relpath(root, stage)
                dest_root = outdir if rel == "." else os.path.join(outdir, rel)
                os.makedirs(dest_root, exist_ok=True)
                for n in names:
                    os.replace(os.path.join(root, n), os.path.join(dest_root, n))
        finally:
            shutil.rmtree(stage, ignore_errors=True)
        return files

    def verify(self) -> Optional[bool]:
        """
        Recomputes the signature hash over every byte before the signature block.

        Returns:
            True/False for hash signatures, None when the archive is unsigned or
            uses an OpenSSL signature (which needs a key to check).
        """
        if self.f is None or self.archive is None:
            raise RuntimeError("Archive not open")
        alg = self.archive.signature_algorithm
        if alg is None or not is_hash_signature(alg):
            return None
        h = new_signature_hash(alg)
        self.f.seek(0)
        remaining = self.archive.signed_length
        while remaining > 0:
            chunk = self.f.read(min(COPY_BUFSIZE, remaining))
            if not chunk:
                raise FormatError("Container shrank while verifying")
            h.update(chunk)
            remaining -= len(chunk)
        return h.digest() == self.archive.signature
