from __future__ import annotations

from .errors import InvalidPathError


def norm_path(p: str) -> str:
    """Normalize a local name to the canonical forward-slash form.

    Rules:
    - Convert backslashes to slashes
    - Reject absolute names (leading slash or drive letter)
    - Remove empty and '.' segments
    - Reject '..' segments and NUL bytes
    """
    if not isinstance(p, str):
        raise InvalidPathError(f"Local name must be a string: {p!r}")
    p = p.replace("\\", "/")
    if p.startswith("/"):
        raise InvalidPathError(f"Local name may not start with '/': {p}")
    if len(p) >= 2 and p[1] == ":":
        raise InvalidPathError(f"Local name may not carry a drive letter: {p}")
    if "\x00" in p:
        raise InvalidPathError(f"Local name may not contain NUL: {p!r}")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise InvalidPathError(f"Local name may not contain '..': {p}")
    if not parts:
        raise InvalidPathError(f"Local name is empty: {p!r}")
    return "/".join(parts)
