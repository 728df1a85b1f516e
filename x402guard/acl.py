"""Subject value matching with trailing-wildcard patterns."""

from __future__ import annotations

from typing import Iterable, Optional

WILDCARD = "*"


def is_wildcard(pattern: str) -> bool:
    return pattern.endswith(WILDCARD)


def literal_prefix(pattern: str) -> str:
    """Return the pattern without its trailing wildcard."""

    return pattern[:-1] if is_wildcard(pattern) else pattern


def is_malformed_wildcard(pattern: str) -> bool:
    """True when ``*`` appears anywhere but the last character."""

    return WILDCARD in pattern[:-1]


def matches_pattern(pattern: str, value: str) -> bool:
    """Exact match, or prefix match when the pattern ends in ``*``.

    Any other ``*`` in the pattern is compared literally.
    """

    if is_wildcard(pattern):
        return value.startswith(pattern[:-1])
    return pattern == value


def patterns_overlap(left: str, right: str) -> bool:
    """Conservative test for whether two patterns can match a common value."""

    if not is_wildcard(left) and not is_wildcard(right):
        return left == right
    if is_wildcard(left) and is_wildcard(right):
        a, b = literal_prefix(left), literal_prefix(right)
        return a.startswith(b) or b.startswith(a)
    wildcard, literal = (left, right) if is_wildcard(left) else (right, left)
    return literal.startswith(literal_prefix(wildcard))


class SubjectACL:
    """Ordered list of exact and trailing-wildcard patterns."""

    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns = list(patterns)
        self._exact = {pattern for pattern in self.patterns if not is_wildcard(pattern)}
        self._prefixes = [literal_prefix(pattern) for pattern in self.patterns if is_wildcard(pattern)]

    def matches(self, value: Optional[str]) -> bool:
        if value is None:
            return False
        if value in self._exact:
            return True
        return any(value.startswith(prefix) for prefix in self._prefixes)
