"""Compressed variants of cached artifacts."""

from __future__ import annotations

import gzip
from collections.abc import Collection

import brotli

# Preference order when a client accepts several encodings.
ENCODINGS = ("br", "gzip")
ETAG_SUFFIXES = {"br": "br", "gzip": "gz"}


def compress_variants(code: bytes) -> dict[str, bytes]:
    """Compute every supported encoding of *code*; output is deterministic."""
    return {
        "br": brotli.compress(code, quality=11),
        "gzip": gzip.compress(code, compresslevel=9, mtime=0),
    }


def negotiate_encoding(accept_encoding: str | None, available: Collection[str]) -> str | None:
    """Return the preferred available encoding the client accepts, if any."""
    if not accept_encoding or not available:
        return None
    accepted: dict[str, float] = {}
    for part in accept_encoding.split(","):
        token, _, params = part.strip().partition(";")
        token = token.strip().lower()
        if not token:
            continue
        quality = 1.0
        params = params.strip()
        if params.startswith("q="):
            try:
                quality = float(params[2:])
            except ValueError:
                quality = 0.0
        accepted[token] = quality
    for encoding in ENCODINGS:
        if encoding in available and accepted.get(encoding, accepted.get("*", 0.0)) > 0:
            return encoding
    return None
