from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from .reader import Archive, Entry


@dataclass(frozen=True)
class Summary:
    file_count: int
    total_uncompressed_size: int
    compression_profile: Dict[str, int] = field(default_factory=dict)
    signature_algorithm_name: str = "none"

    def as_dict(self) -> Dict:
        return {
            "files": self.file_count,
            "uncompressed_size": self.total_uncompressed_size,
            "compression": dict(self.compression_profile),
            "signature": self.signature_algorithm_name,
        }


def compression_profile(entries: Iterable[Entry]) -> Dict[str, int]:
    """Count file entries per compression kind, keys in first-seen order."""
    profile: Dict[str, int] = {}
    for e in entries:
        if e.is_dir:
            continue
        profile[e.compression] = profile.get(e.compression, 0) + 1
    return profile


def summarize(archive: Archive) -> Summary:
    files = [e for e in archive.entries if not e.is_dir]
    return Summary(
        file_count=len(files),
        total_uncompressed_size=sum(e.size for e in files),
        compression_profile=compression_profile(files),
        signature_algorithm_name=archive.signature_name,
    )


def format_bytes(n: int, precision: int = 2) -> str:
    units = ["B", "KB", "MB", "GB"]
    value = float(max(n, 0))
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, precision):g} {units[i]}"


def format_report(summary: Summary, size: Optional[int] = None) -> str:
    lines = []
    if size is not None:
        lines.append(f"Size: {format_bytes(size)}")
    lines.append(f"Files: {summary.file_count}")
    lines.append(f"Uncompressed: {format_bytes(summary.total_uncompressed_size)}")
    parts = [f"{kind}: {count} files" for kind, count in summary.compression_profile.items()]
    lines.append("Compression: " + (", ".join(parts) if parts else "-"))
    lines.append(f"Signature: {summary.signature_algorithm_name}")
    return "\n".join(lines)
