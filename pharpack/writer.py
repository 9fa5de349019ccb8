from __future__ import annotations

import os
import stat
import tempfile
import time
import zlib
from dataclasses import dataclass
from typing import Any, BinaryIO, List, Optional, Set

from . import serial
from .codec import Codec
from .constants import (
    HALT_TOKEN,
    DEFAULT_STUB,
    SIGNATURE_MAGIC,
    API_VERSION,
    HDR_SIGNATURE,
    HDR_COMPRESSED_GZ,
    HDR_COMPRESSED_BZ2,
    ENT_PERM_MASK,
    COMPRESSION_GZ,
    COMPRESSION_BZ2,
    COMPRESSION_FLAGS,
    DEFAULT_PERMISSIONS,
    DEFAULT_SIGNATURE,
    COPY_BUFSIZE,
    U32,
    signature_name,
)
from .errors import BuilderClosedError, DuplicateEntryError, EmptyArchiveError, InvalidPathError
from .hashutil import HashingWriter, is_hash_signature, new_signature_hash
from .pathutil import norm_path
from .reader import Archive, Entry, stub_suffix_length


_U32_MAX = 0xFFFFFFFF


@dataclass
class _Staged:
    name: str
    compression: str
    timestamp: int
    permissions: int
    metadata: Any = None
    data: Optional[bytes] = None
    fs_path: Optional[str] = None


@dataclass
class _Spooled:
    staged: _Staged
    size: int
    compressed_size: int
    crc32: int


def normalize_stub(stub: bytes) -> bytes:
    """Cut a stub right after its halt token and the optional `` ?>`` + newline."""
    if not stub:
        return DEFAULT_STUB
    idx = stub.find(HALT_TOKEN)
    if idx < 0:
        raise ValueError("Stub must contain __HALT_COMPILER();")
    end = idx + len(HALT_TOKEN)
    suffix = stub_suffix_length(stub[end:end + 5])
    if suffix == 0:
        return stub[:end] + b" ?>\r\n"
    return stub[:end + suffix]


def _check_u32(value: int, what: str) -> int:
    value = int(value)
    if value < 0 or value > _U32_MAX:
        raise ValueError(f"{what} out of range for a PHAR manifest: {value}")
    return value


class ArchiveBuilder:
    """Buffered builder: entries are staged, then ``finalize`` writes the container atomically."""

    def __init__(self, signature_algorithm: Optional[int] = DEFAULT_SIGNATURE, level: Optional[int] = None):
        if signature_algorithm is not None and not is_hash_signature(signature_algorithm):
            raise ValueError(f"Cannot write {signature_name(signature_algorithm)} signatures")
        self.signature_algorithm = signature_algorithm
        self.level = level
        self.metadata: Any = None
        self.stub: bytes = DEFAULT_STUB
        self.alias: str = ""
        self.closed = False
        self._staged: List[_Staged] = []
        self._names: Set[str] = set()
        self._parents: Set[str] = set()

    def __len__(self) -> int:
        return len(self._staged)

    def _ensure_open(self):
        if self.closed:
            raise BuilderClosedError("Archive already finalized; start a new builder")

    def _claim(self, name: str) -> str:
        arc = norm_path(name)
        if arc in self._names:
            raise DuplicateEntryError(f"Duplicate entry: {arc}")
        if arc in self._parents:
            raise InvalidPathError(f"Entry {arc} collides with a directory of the same name")
        parts = arc.split("/")
        prefixes = ["/".join(parts[:i]) for i in range(1, len(parts))]
        for p in prefixes:
            if p in self._names:
                raise InvalidPathError(f"Entry {arc} would nest under file entry {p}")
        return arc

    def _stage(self, staged: _Staged):
        self._staged.append(staged)
        self._names.add(staged.name)
        parts = staged.name.split("/")
        for i in range(1, len(parts)):
            self._parents.add("/".join(parts[:i]))

    def add_entry(
        self,
        name: str,
        payload: bytes,
        compression: str,
        *,
        timestamp: Optional[int] = None,
        permissions: int = DEFAULT_PERMISSIONS,
        metadata: Any = None,
    ):
        """Stage an in-memory payload; nothing is staged if validation fails."""
        self._ensure_open()
        arc = self._claim(name)
        Codec(compression)
        if metadata is not None:
            serial.dumps(metadata)
        ts = _check_u32(time.time() if timestamp is None else timestamp, "timestamp")
        self._stage(
            _Staged(
                name=arc,
                compression=compression,
                timestamp=ts,
                permissions=permissions & ENT_PERM_MASK,
                metadata=metadata,
                data=bytes(payload),
            )
        )

    def add_file(
        self,
        name: str,
        fs_path: str,
        compression: str,
        *,
        permissions: Optional[int] = None,
        metadata: Any = None,
    ):
        """Stage a filesystem file; its bytes are streamed in during ``finalize``.

        The manifest stores a u32 timestamp, so mtimes before 1970 or after 2106
        are clamped into that range.
        """
        self._ensure_open()
        arc = self._claim(name)
        Codec(compression)
        if metadata is not None:
            serial.dumps(metadata)
        st = os.stat(fs_path)
        if not stat.S_ISREG(st.st_mode):
            raise ValueError(f"Not a regular file: {fs_path}")
        self._stage(
            _Staged(
                name=arc,
                compression=compression,
                timestamp=min(max(int(st.st_mtime), 0), _U32_MAX),
                permissions=(st.st_mode if permissions is None else permissions) & ENT_PERM_MASK,
                metadata=metadata,
                fs_path=fs_path,
            )
        )

    def set_metadata(self, value: Any):
        self._ensure_open()
        serial.dumps(value)
        self.metadata = value

    def set_stub(self, stub: bytes):
        self._ensure_open()
        self.stub = normalize_stub(stub)

    def set_alias(self, alias: str):
        self._ensure_open()
        self.alias = alias or ""

    def finalize(self, target_path: str) -> Archive:
        """
        Serializes the staged entries and commits them to ``target_path``.

        1.  Compresses every staged entry into a spool file, computing its
            crc32, uncompressed and compressed sizes.
        2.  Writes stub, manifest and the spooled payloads to a temporary file
            next to the target, hashing everything as it goes.
        3.  Appends the signature block, fsyncs and renames the temporary file
            over ``target_path``; a stale ``<target>.gz`` sibling is removed.

        On any failure the temporary file is deleted and ``target_path`` is left
        exactly as it was.

        Returns:
            The immutable Archive describing what was written.
        """
        self._ensure_open()
        if not self._staged:
            raise EmptyArchiveError(f"Refusing to write an archive with no entries: {target_path}")
        target = os.path.abspath(target_path)
        directory = os.path.dirname(target)
        mode = stat.S_IMODE(os.stat(target).st_mode) if os.path.isfile(target) else 0o644
        fd, tmp_path = tempfile.mkstemp(prefix=".pharpack-", suffix=".tmp", dir=directory)
        try:
            with os.fdopen(fd, "w+b") as out:
                archive = self._write(out, directory)
                out.flush()
                os.fsync(out.fileno())
            os.chmod(tmp_path, mode)
            os.replace(tmp_path, target)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        sibling = target + ".gz"
        if os.path.isfile(sibling):
            os.unlink(sibling)
        self.closed = True
        return archive

    # internals
    def _spool(self, spool: BinaryIO) -> List[_Spooled]:
        out: List[_Spooled] = []
        for s in self._staged:
            comp = Codec(s.compression, self.level).compressor()
            crc = 0
            size = 0
            csize = 0
            if s.fs_path is not None:
                with open(s.fs_path, "rb") as fh:
                    while True:
                        chunk = fh.read(COPY_BUFSIZE)
                        if not chunk:
                            break
                        crc = zlib.crc32(chunk, crc)
                        size += len(chunk)
                        packed = comp.compress(chunk)
                        spool.write(packed)
                        csize += len(packed)
            else:
                data = s.data or b""
                crc = zlib.crc32(data)
                size = len(data)
                packed = comp.compress(data)
                spool.write(packed)
                csize += len(packed)
            tail = comp.flush()
            spool.write(tail)
            csize += len(tail)
            out.append(
                _Spooled(
                    staged=s,
                    size=_check_u32(size, f"size of {s.name}"),
                    compressed_size=_check_u32(csize, f"compressed size of {s.name}"),
                    crc32=crc & 0xFFFFFFFF,
                )
            )
        return out

    def _global_flags(self, spooled: List[_Spooled]) -> int:
        flags = HDR_SIGNATURE if self.signature_algorithm is not None else 0
        for sp in spooled:
            if sp.staged.compression == COMPRESSION_GZ:
                flags |= HDR_COMPRESSED_GZ
            elif sp.staged.compression == COMPRESSION_BZ2:
                flags |= HDR_COMPRESSED_BZ2
        return flags

    def _build_manifest(self, spooled: List[_Spooled], flags: int) -> bytes:
        alias = self.alias.encode("utf-8")
        meta = serial.dumps(self.metadata)
        body = bytearray()
        body += U32.pack(len(spooled))
        body += bytes([(API_VERSION >> 8) & 0xFF, API_VERSION & 0xF0])
        body += U32.pack(flags)
        body += U32.pack(len(alias)) + alias
        body += U32.pack(len(meta)) + meta
        for sp in spooled:
            s = sp.staged
            name = s.name.encode("utf-8")
            emeta = serial.dumps(s.metadata)
            body += U32.pack(len(name)) + name
            body += U32.pack(sp.size)
            body += U32.pack(s.timestamp)
            body += U32.pack(sp.compressed_size)
            body += U32.pack(sp.crc32)
            body += U32.pack(s.permissions | COMPRESSION_FLAGS[s.compression])
            body += U32.pack(len(emeta)) + emeta
        return bytes(body)

    def _write(self, out: BinaryIO, directory: str) -> Archive:
        with tempfile.TemporaryFile(dir=directory) as spool:
            spooled = self._spool(spool)
            flags = self._global_flags(spooled)
            manifest = self._build_manifest(spooled, flags)
            hasher = new_signature_hash(self.signature_algorithm) if self.signature_algorithm is not None else None
            w = HashingWriter(out, hasher)
            w.write(self.stub)
            w.write(U32.pack(len(manifest)))
            w.write(manifest)
            data_start = w.written
            spool.seek(0)
            while True:
                chunk = spool.read(COPY_BUFSIZE)
                if not chunk:
                    break
                w.write(chunk)
        signed_length = w.written
        signature = b""
        if hasher is not None:
            signature = hasher.digest()
            out.write(signature + U32.pack(self.signature_algorithm) + SIGNATURE_MAGIC)
        entries: List[Entry] = []
        offset = data_start
        for sp in spooled:
            s = sp.staged
            entries.append(
                Entry(
                    name=s.name,
                    size=sp.size,
                    timestamp=s.timestamp,
                    compressed_size=sp.compressed_size,
                    crc32=sp.crc32,
                    flags=s.permissions | COMPRESSION_FLAGS[s.compression],
                    metadata=s.metadata,
                    offset=offset,
                )
            )
            offset += sp.compressed_size
        return Archive(
            stub=self.stub,
            alias=self.alias,
            metadata=self.metadata,
            entries=tuple(entries),
            api_version=API_VERSION,
            flags=flags,
            signature_algorithm=self.signature_algorithm,
            signature=signature,
            signed_length=signed_length,
        )


def new_builder(signature_algorithm: Optional[int] = DEFAULT_SIGNATURE, level: Optional[int] = None) -> ArchiveBuilder:
    return ArchiveBuilder(signature_algorithm, level=level)
