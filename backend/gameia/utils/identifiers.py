from __future__ import annotations

import os
import secrets
import string
import time
import uuid
from datetime import datetime, timezone
from typing import Optional


def generate_uuid7() -> str:
    """
    Generate a UUIDv7 string (time-ordered).

    Layout:
    - 48-bit Unix timestamp in milliseconds
    - 4-bit version (0b0111)
    - 74-bit randomness
    """
    ts_ms = int(time.time() * 1000)
    ts_bytes = ts_ms.to_bytes(6, "big", signed=False)
    rand_bytes = os.urandom(10)
    raw = bytearray(ts_bytes + rand_bytes)
    raw[6] = (raw[6] & 0x0F) | 0x70
    raw[8] = (raw[8] & 0x3F) | 0x80
    return str(uuid.UUID(bytes=bytes(raw)))


def generate_code(length: int = 12, prefix: str = "") -> str:
    """
    Random uppercase/digit code for invites, certificate numbers and
    verification codes. Uses `secrets` since these are shared publicly.
    """
    alphabet = string.ascii_uppercase + string.digits
    block = "".join(secrets.choice(alphabet) for _ in range(length))
    if prefix:
        return f"{prefix}-{block}"
    return block


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
