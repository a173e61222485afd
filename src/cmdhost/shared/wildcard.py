"""
Case-insensitive wildcard patterns for export lists and member filters.

Supports '*', '?' and '[...]' character classes.
"""

from fnmatch import fnmatchcase
from typing import Iterable, List, Optional

WILDCARD_CHARACTERS = ("*", "?", "[")


def contains_wildcard(text: str) -> bool:
    return any(ch in text for ch in WILDCARD_CHARACTERS)


class WildcardPattern:
    """One compiled pattern; matching ignores case."""

    __slots__ = ("pattern", "_folded")

    def __init__(self, pattern: str):
        self.pattern = pattern
        self._folded = pattern.lower()

    @property
    def is_literal(self) -> bool:
        return not contains_wildcard(self.pattern)

    def matches(self, name: str) -> bool:
        return fnmatchcase(name.lower(), self._folded)

    def __repr__(self) -> str:
        return f"WildcardPattern({self.pattern!r})"

    def __eq__(self, other) -> bool:
        return isinstance(other, WildcardPattern) and other._folded == self._folded

    def __hash__(self) -> int:
        return hash(self._folded)


MATCH_ALL = (WildcardPattern("*"),)


def compile_patterns(patterns: Optional[Iterable[str]]) -> Optional[List[WildcardPattern]]:
    """None stays None (no filter given); an empty list matches nothing."""
    if patterns is None:
        return None
    return [WildcardPattern(p) for p in patterns]


def matches_any(name: str, patterns: Optional[Iterable[WildcardPattern]]) -> bool:
    """A None pattern list matches everything."""
    if patterns is None:
        return True
    return any(p.matches(name) for p in patterns)


def literal_names(patterns: Iterable[str]) -> List[str]:
    """The non-wildcard entries of a declared export list."""
    return [p for p in patterns if not contains_wildcard(p)]
