"""Hashing helpers for artifacts, prompts, and governance documents."""

from __future__ import annotations

import hashlib


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str) -> str:
    """SHA-256 of UTF-8 encoded text."""
    return sha256_hex(text.encode("utf-8"))


def short_hash(data: bytes, length: int = 16) -> str:
    """Truncated SHA-256, used for config file fingerprints."""
    return sha256_hex(data)[:length]
