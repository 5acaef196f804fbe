from __future__ import annotations

import re
from functools import lru_cache
from typing import Pattern


WILDCARD = "*"


@lru_cache(maxsize=256)
def _compile(pattern: str) -> Pattern[str]:
    # Only `*` is special; dots and everything else match themselves.
    parts = [re.escape(p) for p in pattern.split(WILDCARD)]
    return re.compile(".*".join(parts), re.DOTALL)


def match_pattern(pattern: str, key: str) -> bool:
    """Return True if `key` matches the glob `pattern` in full.

    Semantics
    - `*` matches any run of characters, including none and including dots.
    - Every other character, `.` included, is compared literally.

    Examples: "database.*" matches "database.host" and "database.pool.size";
    "*.host" matches "cache.host"; "db.host" matches only "db.host".
    """
    if WILDCARD not in pattern:
        return pattern == key
    return _compile(pattern).fullmatch(key) is not None


def has_wildcard(pattern: str) -> bool:
    """True if the pattern selects by wildcard rather than naming a literal key."""
    return WILDCARD in pattern


__all__ = [
    "match_pattern",
    "has_wildcard",
]
