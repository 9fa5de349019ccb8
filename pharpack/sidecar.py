from __future__ import annotations

import base64
import binascii
import json as _json
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from .analyzer import compression_profile
from .constants import SIDECAR_NAME, COMPRESSION_KINDS
from .reader import Archive


@dataclass(frozen=True)
class SidecarRecord:
    metadata: Any = None
    compression: Optional[Dict[str, int]] = None
    alias: Optional[str] = None
    stub: Optional[bytes] = None
    signature: Optional[str] = None

    def to_json(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "metadata": self.metadata,
            "compression": self.compression,
        }
        if self.alias:
            doc["alias"] = self.alias
        if self.stub is not None:
            doc["stub"] = base64.b64encode(self.stub).decode("ascii")
        if self.signature is not None:
            doc["signature"] = self.signature
        return doc


class _Malformed(Exception):
    pass


def is_sidecar(name: str) -> bool:
    return os.path.basename(name) == SIDECAR_NAME


def sidecar_path(directory) -> Path:
    return Path(directory) / SIDECAR_NAME


def capture(archive: Archive) -> SidecarRecord:
    """Record what a rebuild needs to reproduce the archive's characteristics."""
    return SidecarRecord(
        metadata=archive.metadata,
        compression=compression_profile(archive.entries),
        alias=archive.alias or None,
        stub=archive.stub,
        signature=archive.signature_name if archive.signature_algorithm is not None else None,
    )


def persist(record: SidecarRecord, directory) -> Path:
    path = sidecar_path(directory)
    with open(path, "w", encoding="utf-8") as fh:
        _json.dump(record.to_json(), fh)
    return path


def _parse_profile(value) -> Optional[Dict[str, int]]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise _Malformed("compression must be an object")
    profile: Dict[str, int] = {}
    for kind, count in value.items():
        if kind not in COMPRESSION_KINDS:
            raise _Malformed(f"unknown compression kind {kind!r}")
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise _Malformed(f"bad count for {kind}: {count!r}")
        profile[kind] = count
    return profile


def _parse_record(doc) -> SidecarRecord:
    if not isinstance(doc, dict):
        raise _Malformed("top level must be an object")
    alias = doc.get("alias")
    if alias is not None and not isinstance(alias, str):
        raise _Malformed("alias must be a string")
    stub = doc.get("stub")
    if stub is not None:
        if not isinstance(stub, str):
            raise _Malformed("stub must be a base64 string")
        try:
            stub = base64.b64decode(stub.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise _Malformed(f"stub is not valid base64: {exc}") from exc
    signature = doc.get("signature")
    if signature is not None and not isinstance(signature, str):
        raise _Malformed("signature must be a string")
    return SidecarRecord(
        metadata=doc.get("metadata"),
        compression=_parse_profile(doc.get("compression")),
        alias=alias,
        stub=stub,
        signature=signature,
    )


def load(directory) -> Optional[SidecarRecord]:
    """
    Loads the sidecar from ``directory``.

    A missing, unreadable or malformed sidecar is not an error: the caller
    gets None and falls back to the default compression policy.
    """
    path = sidecar_path(directory)
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            doc = _json.load(fh)
        return _parse_record(doc)
    except (OSError, UnicodeDecodeError, ValueError, _Malformed) as exc:
        print(f"Warning: ignoring unusable {SIDECAR_NAME} in {directory}: {exc}", file=sys.stderr)
        return None
