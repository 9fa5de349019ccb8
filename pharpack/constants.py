import struct


# Stub terminator; the manifest follows it (after an optional " ?>" and newline)
HALT_TOKEN = b"__HALT_COMPILER();"
DEFAULT_STUB = b"<?php __HALT_COMPILER(); ?>\r\n"

# Signature footer magic
SIGNATURE_MAGIC = b"GBMB"

# Manifest API version 1.1.1, stored as two big-endian nibble bytes
API_VERSION = 0x1110
API_VERSION_MASK = 0xFFF0
API_VERSION_MIN_READ = 0x1000

# Global manifest flags
HDR_COMPRESSED_GZ = 0x00001000
HDR_COMPRESSED_BZ2 = 0x00002000
HDR_SIGNATURE = 0x00010000

# Per-entry flags
ENT_PERM_MASK = 0x000001FF
ENT_COMPRESSED_GZ = 0x00001000
ENT_COMPRESSED_BZ2 = 0x00002000
ENT_COMPRESSION_MASK = 0x0000F000

DEFAULT_PERMISSIONS = 0o644

# Compression kinds (names double as sidecar profile keys)
COMPRESSION_NONE = "None"
COMPRESSION_GZ = "GZ"
COMPRESSION_BZ2 = "BZ2"
COMPRESSION_KINDS = (COMPRESSION_NONE, COMPRESSION_GZ, COMPRESSION_BZ2)

COMPRESSION_FLAGS = {
    COMPRESSION_NONE: 0,
    COMPRESSION_GZ: ENT_COMPRESSED_GZ,
    COMPRESSION_BZ2: ENT_COMPRESSED_BZ2,
}

DEFAULT_COMPRESSION = COMPRESSION_GZ

# Signature algorithm ids
SIG_MD5 = 0x0001
SIG_SHA1 = 0x0002
SIG_SHA256 = 0x0003
SIG_SHA512 = 0x0004
SIG_OPENSSL = 0x0010
SIG_OPENSSL_SHA256 = 0x0011
SIG_OPENSSL_SHA512 = 0x0012

SIGNATURE_NAMES = {
    SIG_MD5: "MD5",
    SIG_SHA1: "SHA-1",
    SIG_SHA256: "SHA-256",
    SIG_SHA512: "SHA-512",
    SIG_OPENSSL: "OpenSSL",
    SIG_OPENSSL_SHA256: "OpenSSL_SHA256",
    SIG_OPENSSL_SHA512: "OpenSSL_SHA512",
}

# OpenSSL signatures carry an explicit u32 length before the algorithm id
OPENSSL_SIGNATURES = (SIG_OPENSSL, SIG_OPENSSL_SHA256, SIG_OPENSSL_SHA512)

SIGNATURE_DIGEST_SIZES = {
    SIG_MD5: 16,
    SIG_SHA1: 20,
    SIG_SHA256: 32,
    SIG_SHA512: 64,
}

DEFAULT_SIGNATURE = SIG_SHA1

# Codec levels
DEFLATE_LEVEL = 9
BZIP2_LEVEL = 9

# Sidecar persisted next to extracted files
SIDECAR_NAME = ".pharinfo"

COPY_BUFSIZE = 1_048_576  # 1 MiB

U32 = struct.Struct("<I")


def signature_name(algorithm) -> str:
    if algorithm is None:
        return "none"
    return SIGNATURE_NAMES.get(algorithm, f"unknown(0x{algorithm:04x})")


def signature_from_name(name: str) -> int:
    """Map a user or sidecar spelling ("sha1", "SHA-256", ...) to an algorithm id."""
    def _squash(s: str) -> str:
        return s.replace("-", "").replace("_", "").lower()

    key = _squash(name)
    for alg, canonical in SIGNATURE_NAMES.items():
        if _squash(canonical) == key:
            return alg
    raise ValueError(f"Unknown signature algorithm: {name}")
