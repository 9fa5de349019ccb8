"""
pharpack: extract and repack PHAR installer bundles.

Features:

- Byte-level PHAR codec: stub, manifest, per-entry GZ/BZ2/None payloads and the
  trailing MD5/SHA-1/SHA-256/SHA-512 signature block.
- Streaming reader that parses the manifest once and decompresses entries one
  at a time; extraction is all-or-nothing through a staging directory.
- Buffered writer that validates local names up front and commits the finished
  container to its target path atomically.
- A ``.pharinfo`` sidecar that carries archive metadata, stub and compression
  profile across an extract/repack cycle so the rebuilt bundle keeps the
  characteristics of the original.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "reader",
    "writer",
    "policy",
    "sidecar",
    "analyzer",
    "workflow",
]

# Programmatic API: pharpack.reader.parse / ArchiveReader, pharpack.writer.new_builder
# and the request-driven operations in pharpack.workflow used by pharpack.cli.
