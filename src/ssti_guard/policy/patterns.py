"""
Compiled name patterns for the security policy.

Raw allow-list strings are compiled once, when the policy is built, into a
small closed set of pattern types:

    "*"        -> AnyPattern       (matches every name)
    "get*"     -> PrefixWildcard   (matches "get", "getTitle", ...)
    "getTitle" -> Exact            (matches only "getTitle")

Lookups never re-parse a string. Case folding is decided by the owner of
the pattern: member matchers compile already-normalized text and normalize
the looked-up name the same way.

PatternSet covers the flat namespaces (tags, filters, functions). Those are
not hierarchical, so the only special entry there is the "*" sentinel.
"""

from collections.abc import Iterable
from dataclasses import dataclass

WILDCARD = "*"


@dataclass(frozen=True, slots=True)
class Exact:
    """Matches one name exactly."""

    name: str

    def matches(self, name: str) -> bool:
        return name == self.name


@dataclass(frozen=True, slots=True)
class PrefixWildcard:
    """Matches every name starting with prefix (the empty suffix included)."""

    prefix: str

    def matches(self, name: str) -> bool:
        return name.startswith(self.prefix)


@dataclass(frozen=True, slots=True)
class AnyPattern:
    """Matches every name."""

    def matches(self, name: str) -> bool:
        return True


Pattern = Exact | PrefixWildcard | AnyPattern


def compile_pattern(raw: str) -> Pattern:
    """
    Compile a raw allow-list entry into a Pattern.

    Args:
        raw: The configured string (already case-normalized by the caller)

    Returns:
        AnyPattern for "*", PrefixWildcard for a trailing "*", else Exact
    """
    if raw == WILDCARD:
        return AnyPattern()
    if raw.endswith(WILDCARD):
        return PrefixWildcard(raw[:-1])
    return Exact(raw)


class PatternSet:
    """
    Allow-list over a flat namespace of names.

    Membership is an O(1) set lookup. If the configured names include "*"
    every name is allowed.

    Attributes:
        names: The configured names (the "*" sentinel excluded)
        allows_all: Whether the "*" sentinel was configured
    """

    __slots__ = ("names", "allows_all")

    def __init__(self, names: Iterable[str]) -> None:
        collected = frozenset(names)
        self.allows_all = WILDCARD in collected
        self.names = collected - {WILDCARD}

    def is_allowed(self, name: str) -> bool:
        """Check whether a tag/filter/function name is allowed."""
        return self.allows_all or name in self.names

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.is_allowed(name)

    def __len__(self) -> int:
        return len(self.names)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PatternSet):
            return NotImplemented
        return self.allows_all == other.allows_all and self.names == other.names

    def __hash__(self) -> int:
        return hash((self.allows_all, self.names))

    def __repr__(self) -> str:
        if self.allows_all:
            return "PatternSet(*)"
        return f"PatternSet({sorted(self.names)!r})"
