"""
Minimal encoder/decoder for PHAR metadata blocks.

PHAR stores archive and entry metadata in PHP ``serialize()`` syntax. Only the
closed set of value types below is supported; anything else is a format error.

Grammar
- null:    N;
- bool:    b:0;  b:1;
- int:     i:<decimal>;
- float:   d:<decimal | INF | -INF | NAN>;
- string:  s:<byte length>:"<bytes>";
- array:   a:<count>:{<key><value>...}   keys are int or string values

Mapping to Python
- array with keys exactly 0..n-1 in order -> list, any other array -> dict
- string keys that spell a canonical decimal integer are written as int keys,
  matching how PHP itself normalizes array keys
- strings are UTF-8; undecodable bytes survive via surrogateescape
"""

from __future__ import annotations

import math
import re
from typing import Any, List, Tuple

from .errors import FormatError


MAX_DEPTH = 256

_INT_KEY_RE = re.compile(r"^(0|-?[1-9][0-9]*)$")
_INT_WIRE_RE = re.compile(rb"-?[0-9]+")


def _encode_str(s: str) -> bytes:
    return s.encode("utf-8", "surrogateescape")


def _decode_str(b: bytes) -> str:
    return b.decode("utf-8", "surrogateescape")


def _dump_key(key) -> bytes:
    if isinstance(key, bool):
        return b"i:%d;" % int(key)
    if isinstance(key, int):
        return b"i:%d;" % key
    if isinstance(key, str):
        if _INT_KEY_RE.match(key):
            return b"i:%s;" % key.encode("ascii")
        raw = _encode_str(key)
        return b's:%d:"%s";' % (len(raw), raw)
    raise ValueError(f"metadata: unsupported mapping key type {type(key).__name__}")


def _dump_float(v: float) -> bytes:
    if math.isnan(v):
        return b"d:NAN;"
    if math.isinf(v):
        return b"d:INF;" if v > 0 else b"d:-INF;"
    return b"d:%s;" % repr(v).encode("ascii")


def _dump(value, out: bytearray, depth: int) -> None:
    if depth > MAX_DEPTH:
        raise ValueError("metadata: nesting too deep")
    if value is None:
        out += b"N;"
    elif isinstance(value, bool):
        out += b"b:1;" if value else b"b:0;"
    elif isinstance(value, int):
        out += b"i:%d;" % value
    elif isinstance(value, float):
        out += _dump_float(value)
    elif isinstance(value, str):
        raw = _encode_str(value)
        out += b's:%d:"%s";' % (len(raw), raw)
    elif isinstance(value, (list, tuple)):
        out += b"a:%d:{" % len(value)
        for i, item in enumerate(value):
            out += b"i:%d;" % i
            _dump(item, out, depth + 1)
        out += b"}"
    elif isinstance(value, dict):
        out += b"a:%d:{" % len(value)
        for k, item in value.items():
            out += _dump_key(k)
            _dump(item, out, depth + 1)
        out += b"}"
    else:
        raise ValueError(f"metadata: unsupported value type {type(value).__name__}")


def dumps(value: Any) -> bytes:
    """Serialize a metadata tree. ``None`` at the top level encodes as an empty block."""
    if value is None:
        return b""
    out = bytearray()
    _dump(value, out, 0)
    return bytes(out)


class _Parser:
    def __init__(self, data: bytes):
        self.data = data
        self.pos = 0

    def fail(self, msg: str):
        raise FormatError(f"metadata: {msg} at offset {self.pos}")

    def expect(self, token: bytes) -> None:
        end = self.pos + len(token)
        if self.data[self.pos:end] != token:
            self.fail(f"expected {token!r}")
        self.pos = end

    def read_until(self, stop: bytes) -> bytes:
        idx = self.data.find(stop, self.pos)
        if idx < 0:
            self.fail(f"missing {stop!r}")
        raw = self.data[self.pos:idx]
        self.pos = idx + len(stop)
        return raw

    def read_int(self, stop: bytes) -> int:
        raw = self.read_until(stop)
        if not _INT_WIRE_RE.fullmatch(raw):
            self.fail(f"bad integer {raw!r}")
        return int(raw)

    def value(self, depth: int):
        if depth > MAX_DEPTH:
            self.fail("nesting too deep")
        if self.pos + 2 > len(self.data):
            self.fail("truncated value")
        tag = self.data[self.pos:self.pos + 1]
        if tag == b"N":
            self.expect(b"N;")
            return None
        self.pos += 1
        self.expect(b":")
        if tag == b"b":
            v = self.read_int(b";")
            if v not in (0, 1):
                self.fail("bad boolean")
            return bool(v)
        if tag == b"i":
            return self.read_int(b";")
        if tag == b"d":
            raw = self.read_until(b";")
            try:
                return float(raw.decode("ascii"))
            except (UnicodeDecodeError, ValueError):
                self.fail(f"bad float {raw!r}")
        if tag == b"s":
            n = self.read_int(b":")
            self.expect(b'"')
            end = self.pos + n
            if n < 0 or end > len(self.data):
                self.fail("string length out of range")
            raw = self.data[self.pos:end]
            self.pos = end
            self.expect(b'";')
            return _decode_str(raw)
        if tag == b"a":
            return self.array(depth)
        self.pos -= 2
        self.fail(f"unsupported type {tag!r}")

    def array(self, depth: int):
        n = self.read_int(b":")
        if n < 0:
            self.fail("negative array size")
        self.expect(b"{")
        pairs: List[Tuple[Any, Any]] = []
        for _ in range(n):
            key = self.value(depth + 1)
            if isinstance(key, bool) or not isinstance(key, (int, str)):
                self.fail("array key must be int or string")
            pairs.append((key, self.value(depth + 1)))
        self.expect(b"}")
        if all(k == i and not isinstance(k, str) for i, (k, _v) in enumerate(pairs)):
            return [v for _k, v in pairs]
        return dict(pairs)


def loads(data: bytes) -> Any:
    """Decode a metadata block; an empty block means no metadata."""
    if not data:
        return None
    p = _Parser(bytes(data))
    value = p.value(0)
    if p.pos != len(p.data):
        p.fail("trailing bytes")
    return value
