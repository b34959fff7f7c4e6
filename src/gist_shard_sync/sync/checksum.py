"""Content checksums and small encoding helpers.

The checksum is used purely for change detection between the local cache and
shard manifests.  It must match the value other clients write into
``shard_manifest.json``, so it is DJB2 over UTF-16 code units rendered as
unsigned 32-bit lowercase hex.
"""

from __future__ import annotations

import time

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def checksum(content: str) -> str:
    """Return the DJB2 digest of *content* as lowercase hex."""
    value = 5381
    data = content.encode("utf-16-le")
    for i in range(0, len(data), 2):
        unit = data[i] | (data[i + 1] << 8)
        value = ((value << 5) + value + unit) & 0xFFFFFFFF
    return format(value, "x")


def byte_length(content: str) -> int:
    """Return the UTF-8 encoded size of *content*."""
    return len(content.encode("utf-8"))


def to_base36(value: int) -> str:
    """Render a non-negative integer in base 36."""
    if value < 0:
        raise ValueError(f"negative value: {value}")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def timestamp_token(now_ms: int | None = None) -> str:
    """Base36 token of the current wall clock in milliseconds."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return to_base36(now_ms)
