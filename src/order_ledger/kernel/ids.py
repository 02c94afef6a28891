"""
Identifier generation using time-ordered UUIDs (version 7 layout)

Event ids sort by creation time, which keeps read_everything() output and
SQLite index pages in roughly chronological order.
"""

import secrets
import time
import uuid


def generate_id() -> str:
    """
    Generate a UUIDv7 string

    Layout: 48-bit Unix time in milliseconds, 4-bit version (7),
    12 random bits, 2-bit variant (10), 62 random bits.
    """
    timestamp_ms = time.time_ns() // 1_000_000
    value = (timestamp_ms & 0xFFFFFFFFFFFF) << 80
    value |= 0x7 << 76
    value |= secrets.randbits(12) << 64
    value |= 0b10 << 62
    value |= secrets.randbits(62)
    return str(uuid.UUID(int=value))


def generate_order_id() -> str:
    """Order ids are plain UUIDv7 strings prefixed for readability in logs"""
    return f"ord-{generate_id()}"
