"""
Class-aware member matcher for method and property allow-lists.

A matcher is built from a table of class pattern -> member patterns:

    {
        "*": ["get*"],                       # any object, getters only
        "app.models.Post": ["title", "body"], # Post and its subclasses
        "collections.abc.Mapping": ["keys"],  # anything registered as Mapping
    }

Class patterns match when they are "*", when they name the object's
concrete type, or when the concrete type is compatible with the named type
(a base class in the MRO, or an already-imported class or ABC the object is
an instance of). Member patterns support exact names, prefix wildcards and
"*".

Results are memoized per (concrete type, normalized member name). The
table is fixed at construction, so a cached answer stays valid for the life
of the matcher. Concurrent callers may compute the same key twice; both
store the same value.
"""

import sys
from collections.abc import Iterable, Mapping

from ssti_guard.policy.patterns import WILDCARD, Pattern, compile_pattern


def _normalize_class(name: str) -> str:
    return name.strip().lstrip(".")


def qualified_name(cls: type) -> str:
    """
    Return the dotted name used to match a type against class patterns.

    Builtins are reported without their module ("str", not "builtins.str").
    """
    module = cls.__module__
    if module == "builtins":
        return cls.__qualname__
    return f"{module}.{cls.__qualname__}"


def _lookup_type(name: str) -> type | None:
    """
    Find an already-imported type by dotted name.

    Only modules present in sys.modules are consulted; a class pattern
    never triggers an import.
    """
    if "." not in name:
        candidate = getattr(sys.modules["builtins"], name, None)
        return candidate if isinstance(candidate, type) else None

    parts = name.split(".")
    for split in range(len(parts) - 1, 0, -1):
        module = sys.modules.get(".".join(parts[:split]))
        if module is None:
            continue
        target: object = module
        for attr in parts[split:]:
            target = getattr(target, attr, None)
            if target is None:
                break
        if isinstance(target, type):
            return target
    return None


def type_compatible(concrete_type: type, declared: str) -> bool:
    """
    Check whether concrete_type is-a declared.

    Args:
        concrete_type: The runtime type of the accessed object
        declared: A normalized class pattern (not "*")

    Returns:
        True if declared names concrete_type, one of its bases, or an
        imported ABC concrete_type is registered with

    Structural ABCs (Hashable, Iterable, Sized, ...) answer issubclass by
    looking for a dunder method, which nearly every class has. Those only
    match by inheritance, through the MRO check above.
    """
    for base in concrete_type.__mro__:
        if qualified_name(base) == declared:
            return True

    target = _lookup_type(declared)
    if target is None:
        return False
    try:
        if not issubclass(concrete_type, target):
            return False
        return target.__subclasshook__(concrete_type) is not True
    except TypeError:
        return False


class MemberMatcher:
    """
    Matches (object, member name) pairs against a class -> members table.

    Attributes:
        case_insensitive: Whether member names are compared lower-cased
    """

    def __init__(
        self,
        allowed: Mapping[str, Iterable[str]],
        case_insensitive: bool = True,
    ) -> None:
        """
        Compile the allow-list.

        Args:
            allowed: Class pattern -> member patterns (already merged)
            case_insensitive: Lower-case members before matching
        """
        self.case_insensitive = case_insensitive
        self._entries: tuple[tuple[str, tuple[Pattern, ...]], ...] = tuple(
            (
                WILDCARD if cls.strip() == WILDCARD else _normalize_class(cls),
                tuple(compile_pattern(self._normalize(m)) for m in members),
            )
            for cls, members in allowed.items()
        )
        self._cache: dict[tuple[type, str], bool] = {}

    @property
    def entries(self) -> tuple[tuple[str, tuple[Pattern, ...]], ...]:
        """The compiled (class pattern, member patterns) entries."""
        return self._entries

    def _normalize(self, member: str) -> str:
        return member.lower() if self.case_insensitive else member

    def is_allowed(self, obj: object, member: str) -> bool:
        """
        Check whether member may be accessed on obj.

        Args:
            obj: The object instance being accessed
            member: The method or property name

        Returns:
            True if some entry matches both the object's type and the member
        """
        concrete = type(obj)
        normalized = self._normalize(member)
        key = (concrete, normalized)

        cached = self._cache.get(key)
        if cached is not None:
            return cached

        result = self._check(concrete, normalized)
        self._cache[key] = result
        return result

    def _check(self, concrete: type, member: str) -> bool:
        class_name = _normalize_class(qualified_name(concrete))
        for class_pattern, member_patterns in self._entries:
            if not self._class_matches(concrete, class_name, class_pattern):
                continue
            if any(pattern.matches(member) for pattern in member_patterns):
                return True
        return False

    @staticmethod
    def _class_matches(concrete: type, class_name: str, class_pattern: str) -> bool:
        if class_pattern == WILDCARD:
            return True
        if class_name == class_pattern:
            return True
        return type_compatible(concrete, class_pattern)

    def clear_cache(self) -> None:
        """Clear the match cache."""
        self._cache.clear()

    def __len__(self) -> int:
        return len(self._entries)
