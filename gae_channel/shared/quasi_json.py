"""
MODULE OVERVIEW:
Repair and parsing of the gateway's "quasi-JSON".

WHAT IS HAPPENING HERE:
The gateway answers with JSON-like arrays that use single quotes and leave
omitted fields empty (`[1,,,'x']`). `repair()` turns that into real JSON,
`parse()` loads it, and the result is wrapped in a `Value` whose accessors
never raise: asking for element 3 of a string simply gives back a missing
`Value`. Extraction code is therefore a chain of checks that stops at the
first mismatch instead of a chain of casts that may blow up.
"""
import json
from typing import Any, Iterator

from gae_channel.shared.errors import DecodeError

def repair(raw: bytes) -> bytes:
    """
    Expands every run of commas into quoted empty strings, swaps single quotes
    for double quotes and drops any anti-hijacking prefix before the first `[`.
    """
    while b",," in raw:
        raw = raw.replace(b",,", b',"",')
    raw = raw.replace(b"'", b'"')
    start = raw.find(b"[")
    if start < 0:
        raise DecodeError(f"no array found in {raw[:80]!r}")
    return raw[start:]


class Value:
    """A loosely typed JSON value with checked, non-raising accessors."""

    __slots__ = ("_raw", "_present")

    def __init__(self, raw: Any = None, present: bool = True):
        self._raw = raw
        self._present = present

    def __repr__(self) -> str:
        if not self._present:
            return "Value(<missing>)"
        return f"Value({self._raw!r})"

    @property
    def missing(self) -> bool:
        return not self._present

    @property
    def raw(self) -> Any:
        return self._raw

    def is_list(self) -> bool:
        return self._present and isinstance(self._raw, list)

    def __len__(self) -> int:
        return len(self._raw) if self.is_list() else 0

    def __iter__(self) -> Iterator["Value"]:
        if self.is_list():
            for item in self._raw:
                yield Value(item)

    def at(self, index: int) -> "Value":
        if index < 0 or index >= len(self):
            return MISSING
        return Value(self._raw[index])

    def as_str(self) -> str | None:
        if self._present and isinstance(self._raw, str):
            return self._raw
        return None

    def as_int(self) -> int | None:
        raw = self._raw
        if not self._present or isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return raw
        if isinstance(raw, float) and raw.is_integer():
            return int(raw)
        return None

    def is_tag(self, tag: str) -> bool:
        return self.as_str() == tag


MISSING = Value(present=False)


def parse(raw: bytes) -> Value:
    """Repairs `raw` and parses it; the top level must be an array."""
    repaired = repair(raw)
    try:
        decoded = json.loads(repaired)
    except (ValueError, RecursionError) as e:
        raise DecodeError(f"unable to decode {repaired[:200]!r}: {e}") from e
    value = Value(decoded)
    if not value.is_list():
        raise DecodeError(f"expected an array, got {type(decoded).__name__}")
    return value
