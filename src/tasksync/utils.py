"""
Shared utility functions for tasksync
Pattern: Centralized utilities to avoid duplication
"""

from typing import Any
import hashlib
import json
import time


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def canonical_json(data: Any) -> str:
    """
    Serialize data to a stable JSON string.

    Keys are sorted so that two dicts with the same content always
    produce the same text, regardless of insertion order.

    Raises:
        TypeError: If data contains values json cannot represent
        ValueError: If data contains circular references
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def content_hash(data: Any) -> str:
    """
    Generate MD5 digest of the canonical serialization of data.

    Used for change detection only, not for security.

    Examples:
        >>> content_hash({"a": 1, "b": 2}) == content_hash({"b": 2, "a": 1})
        True
    """
    return hashlib.md5(canonical_json(data).encode("utf-8")).hexdigest()
