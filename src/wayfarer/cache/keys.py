"""Deterministic content hashing for cache keys.

Keys are BLAKE2b (128-bit) digests over canonical JSON (sorted keys,
compact separators), so logically equal inputs always map to the same key
regardless of dict ordering.
"""

import hashlib
import json
from typing import Any

DIGEST_SIZE = 16


def canonical_json(value: Any) -> str:
    """Serialize ``value`` deterministically (non-JSON values via repr)."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=repr)


def content_hash(*parts: Any) -> str:
    """Hash any JSON-like parts into a 32-char hex digest."""
    hasher = hashlib.blake2b(digest_size=DIGEST_SIZE)
    for part in parts:
        hasher.update(canonical_json(part).encode("utf-8"))
        hasher.update(b"\x1f")
    return hasher.hexdigest()
