from __future__ import annotations

import errno
import os
import sys
from dataclasses import dataclass
from typing import Iterator, Optional, Tuple

from .analyzer import Summary, summarize
from .constants import DEFAULT_SIGNATURE, COMPRESSION_KINDS, signature_from_name
from .errors import EnvironmentPreconditionError
from .hashutil import is_hash_signature
from .policy import decide
from .reader import ArchiveReader, nearest_existing_dir
from .sidecar import SidecarRecord, capture, is_sidecar, load, persist
from .writer import new_builder


@dataclass(frozen=True)
class ExtractRequest:
    source: str
    target_dir: str


@dataclass(frozen=True)
class RepackRequest:
    source_dir: str
    target: str
    # None: take it from the sidecar (falling back to SHA-1); "none": unsigned
    signature: Optional[str] = None
    # None: let the compression policy decide from the sidecar profile
    compression: Optional[str] = None


@dataclass(frozen=True)
class ExtractResult:
    summary: Summary
    record: SidecarRecord
    files: int
    size: int


@dataclass(frozen=True)
class RepackResult:
    summary: Summary
    compression: str
    signature_algorithm: Optional[int]
    files: int
    size: int
    used_sidecar: bool


def _missing(path: str) -> FileNotFoundError:
    return FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)


def check_write_environment(target: str) -> None:
    """Fail fast, before any output is touched, when ``target`` cannot be created."""
    target = os.path.abspath(target)
    directory = os.path.dirname(target)
    if os.path.isdir(target):
        raise EnvironmentPreconditionError(f"Target is a directory: {target}")
    if not os.path.isdir(directory):
        raise EnvironmentPreconditionError(f"Target directory does not exist: {directory}")
    if not os.access(directory, os.W_OK | os.X_OK):
        raise EnvironmentPreconditionError(f"Target directory is not writable: {directory}")


def check_extract_environment(target_dir: str) -> None:
    """Fail fast when ``target_dir`` can neither be written into nor created."""
    target_dir = os.path.abspath(target_dir)
    if os.path.exists(target_dir) and not os.path.isdir(target_dir):
        raise EnvironmentPreconditionError(f"Extraction target is not a directory: {target_dir}")
    base = nearest_existing_dir(target_dir)
    if not os.access(base, os.W_OK | os.X_OK):
        raise EnvironmentPreconditionError(f"Extraction target is not writable: {base}")


def iter_tree(root: str, exclude: Tuple[str, ...] = ()) -> Iterator[Tuple[str, str]]:
    """Yield (local name, filesystem path) for regular files below ``root`` in sorted order."""
    skip = {os.path.abspath(p) for p in exclude}
    for current, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for fn in sorted(filenames):
            if is_sidecar(fn):
                continue
            full = os.path.join(current, fn)
            if os.path.abspath(full) in skip or not os.path.isfile(full):
                continue
            rel = os.path.relpath(full, start=root)
            yield rel.replace(os.sep, "/"), full


def _resolve_signature(requested: Optional[str], record: Optional[SidecarRecord]) -> Optional[int]:
    if requested is not None:
        if requested.lower() == "none":
            return None
        return signature_from_name(requested)
    if record is None or record.signature is None:
        return DEFAULT_SIGNATURE
    try:
        alg = signature_from_name(record.signature)
    except ValueError:
        alg = None
    if alg is None or not is_hash_signature(alg):
        print(
            f"Warning: cannot reproduce {record.signature} signature; using SHA-1 instead",
            file=sys.stderr,
        )
        return DEFAULT_SIGNATURE
    return alg


def extract_archive(request: ExtractRequest) -> ExtractResult:
    """Extract every entry and leave a sidecar describing the original archive."""
    if not os.path.isfile(request.source):
        raise _missing(request.source)
    check_extract_environment(request.target_dir)
    with ArchiveReader(request.source) as reader:
        archive = reader.archive
        summary = summarize(archive)
        record = capture(archive)
        files = reader.extract_all(request.target_dir)
        size = reader.size
    persist(record, request.target_dir)
    return ExtractResult(summary=summary, record=record, files=files, size=size)


def repack_directory(request: RepackRequest) -> RepackResult:
    """Rebuild an archive from an extracted tree, reapplying what the sidecar recorded."""
    check_write_environment(request.target)
    if not os.path.isdir(request.source_dir):
        raise _missing(request.source_dir)
    if request.compression is not None and request.compression not in COMPRESSION_KINDS:
        raise ValueError(f"Unknown compression kind: {request.compression}")

    record = load(request.source_dir)
    compression = request.compression or decide(record.compression if record else None)
    builder = new_builder(_resolve_signature(request.signature, record))
    if record is not None:
        if record.metadata is not None:
            builder.set_metadata(record.metadata)
        if record.stub:
            try:
                builder.set_stub(record.stub)
            except ValueError as exc:
                print(f"Warning: ignoring recorded stub: {exc}", file=sys.stderr)
        if record.alias:
            builder.set_alias(record.alias)

    for local_name, fs_path in iter_tree(request.source_dir, exclude=(request.target,)):
        builder.add_file(local_name, fs_path, compression)
    files = len(builder)
    archive = builder.finalize(request.target)
    return RepackResult(
        summary=summarize(archive),
        compression=compression,
        signature_algorithm=archive.signature_algorithm,
        files=files,
        size=os.path.getsize(request.target),
        used_sidecar=record is not None,
    )
