"""Scope pattern matching shared by every check that compares paths to globs.

Grammar: ``**`` matches any run of characters including ``/``; ``*`` matches any
run of characters within one path segment; every other character, ``/`` included,
is literal. Matches are anchored at both ends.
"""
from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts), flags=re.DOTALL)


def matches_pattern(path: str, pattern: str) -> bool:
    return glob_to_regex(pattern).fullmatch(path) is not None


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(matches_pattern(path, p) for p in patterns)


def has_wildcard(pattern: str) -> bool:
    return "*" in pattern
