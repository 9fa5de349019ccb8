from __future__ import annotations

from Cryptodome.Hash import MD5, SHA1, SHA256, SHA512

from .constants import SIG_MD5, SIG_SHA1, SIG_SHA256, SIG_SHA512, signature_name


_HASH_MODULES = {
    SIG_MD5: MD5,
    SIG_SHA1: SHA1,
    SIG_SHA256: SHA256,
    SIG_SHA512: SHA512,
}


def is_hash_signature(algorithm) -> bool:
    return algorithm in _HASH_MODULES


def new_signature_hash(algorithm: int):
    """Return a fresh PyCryptodome hash object for a hash-based signature id."""
    mod = _HASH_MODULES.get(algorithm)
    if mod is None:
        raise ValueError(f"Signature algorithm {signature_name(algorithm)} is not a plain hash")
    return mod.new()


class HashingWriter:
    """File wrapper that feeds everything written through a signature hash."""

    def __init__(self, fh, hasher=None):
        self.fh = fh
        self.hasher = hasher
        self.written = 0

    def write(self, data: bytes) -> int:
        if self.hasher is not None:
            self.hasher.update(data)
        self.fh.write(data)
        self.written += len(data)
        return len(data)
