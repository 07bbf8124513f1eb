"""
Security policy for sandboxed templates.

The SecurityPolicy is the security boundary of SSTI Guard. It answers the
questions the template engine asks while compiling and rendering a
sandboxed template:

    - check_structural(tags, filters, functions): once per compiled template
    - check_method(obj, name): once per method access while rendering
    - check_property(obj, name): once per property read while rendering

Design Principles:
    - Deny-by-default: Nothing is allowed unless listed or defaulted
    - Fail-first: A structural check stops at the first offending name
    - Immutable: A policy never changes after construction; reconfiguring
      builds a new policy, published through a PolicyReference

Security Note:
    This module is security-critical. Changes should be reviewed carefully.
    Methods are matched case-insensitively and properties case-sensitively;
    both behaviours are covered by tests and must not be unified casually.
"""

import logging
import threading
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from ssti_guard.errors import (
    FilterNotAllowedError,
    FunctionNotAllowedError,
    MethodNotAllowedError,
    PropertyNotAllowedError,
    TagNotAllowedError,
)
from ssti_guard.policy import defaults
from ssti_guard.policy.matcher import MemberMatcher, qualified_name
from ssti_guard.policy.patterns import PatternSet

if TYPE_CHECKING:
    from ssti_guard.schema import PolicyConfig

_log = logging.getLogger("ssti_guard.security")

_DEFAULTS_ONLY = (defaults.INCLUDE_DEFAULTS,)


class SecurityPolicy:
    """
    Immutable allow-list policy over tags, filters, functions and members.

    Usage:
        policy = SecurityPolicy.build(
            filters=[INCLUDE_DEFAULTS, "markdown"],
            methods={"*": ["get*"]},
        )
        policy.check_structural(tags={"if"}, filters={"upper"}, functions=())
        policy.check_method(post, "getTitle")

    Attributes:
        tags: Allowed tag names
        filters: Allowed filter names
        functions: Allowed function names
        methods: Case-insensitive member matcher for method calls
        properties: Case-sensitive member matcher for property reads
    """

    __slots__ = ("tags", "filters", "functions", "methods", "properties")

    def __init__(
        self,
        tags: PatternSet,
        filters: PatternSet,
        functions: PatternSet,
        methods: MemberMatcher,
        properties: MemberMatcher,
    ) -> None:
        object.__setattr__(self, "tags", tags)
        object.__setattr__(self, "filters", filters)
        object.__setattr__(self, "functions", functions)
        object.__setattr__(self, "methods", methods)
        object.__setattr__(self, "properties", properties)

    def __setattr__(self, name: str, value: Any) -> None:
        msg = "SecurityPolicy is immutable; use the with_* methods"
        raise AttributeError(msg)

    def __delattr__(self, name: str) -> None:
        msg = "SecurityPolicy is immutable; use the with_* methods"
        raise AttributeError(msg)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def build(
        cls,
        tags: Iterable[Any] = _DEFAULTS_ONLY,
        filters: Iterable[Any] = _DEFAULTS_ONLY,
        methods: Mapping[str, Any] | Iterable[Any] = _DEFAULTS_ONLY,
        properties: Mapping[str, Any] | Iterable[Any] = _DEFAULTS_ONLY,
        functions: Iterable[Any] = _DEFAULTS_ONLY,
    ) -> "SecurityPolicy":
        """
        Build a policy from raw allow-lists.

        Each argument may contain INCLUDE_DEFAULTS to merge the built-in
        defaults for that category. Omitted arguments mean "defaults only".
        """
        return cls(
            tags=_name_set(tags, defaults.TAGS, "tags"),
            filters=_name_set(filters, defaults.FILTERS, "filters"),
            functions=_name_set(functions, defaults.FUNCTIONS, "functions"),
            methods=_method_matcher(methods),
            properties=_property_matcher(properties),
        )

    @classmethod
    def from_config(cls, config: "PolicyConfig") -> "SecurityPolicy":
        """Build a policy from a validated PolicyConfig."""
        return cls.build(
            tags=config.tags.as_raw(),
            filters=config.filters.as_raw(),
            methods=config.methods.as_raw(),
            properties=config.properties.as_raw(),
            functions=config.functions.as_raw(),
        )

    def with_tags(self, tags: Iterable[Any]) -> "SecurityPolicy":
        """Return a copy of this policy with a new tag allow-list."""
        return self._replace(tags=_name_set(tags, defaults.TAGS, "tags"))

    def with_filters(self, filters: Iterable[Any]) -> "SecurityPolicy":
        """Return a copy of this policy with a new filter allow-list."""
        return self._replace(filters=_name_set(filters, defaults.FILTERS, "filters"))

    def with_functions(self, functions: Iterable[Any]) -> "SecurityPolicy":
        """Return a copy of this policy with a new function allow-list."""
        return self._replace(
            functions=_name_set(functions, defaults.FUNCTIONS, "functions"),
        )

    def with_methods(self, methods: Mapping[str, Any] | Iterable[Any]) -> "SecurityPolicy":
        """Return a copy of this policy with a new method allow-list."""
        return self._replace(methods=_method_matcher(methods))

    def with_properties(
        self,
        properties: Mapping[str, Any] | Iterable[Any],
    ) -> "SecurityPolicy":
        """Return a copy of this policy with a new property allow-list."""
        return self._replace(properties=_property_matcher(properties))

    def _replace(self, **changes: Any) -> "SecurityPolicy":
        fields = {name: getattr(self, name) for name in self.__slots__}
        fields.update(changes)
        return SecurityPolicy(**fields)

    # =========================================================================
    # Checks
    # =========================================================================

    def check_structural(
        self,
        tags: Iterable[str],
        filters: Iterable[str],
        functions: Iterable[str],
    ) -> None:
        """
        Check the tags, filters and functions a template references.

        Categories are checked in the order tags, filters, functions. The
        first disallowed name aborts the check.

        Raises:
            TagNotAllowedError: A tag is not allowed
            FilterNotAllowedError: A filter is not allowed
            FunctionNotAllowedError: A function is not allowed
        """
        if not self.tags.allows_all:
            for tag in tags:
                if not self.tags.is_allowed(tag):
                    _log.debug("Denied tag %r", tag)
                    raise TagNotAllowedError(tag=tag)

        if not self.filters.allows_all:
            for filter_name in filters:
                if not self.filters.is_allowed(filter_name):
                    _log.debug("Denied filter %r", filter_name)
                    raise FilterNotAllowedError(filter_name=filter_name)

        if not self.functions.allows_all:
            for function in functions:
                if not self.functions.is_allowed(function):
                    _log.debug("Denied function %r", function)
                    raise FunctionNotAllowedError(function=function)

    def check_method(self, obj: object, method: str) -> None:
        """
        Check that method may be called on obj.

        Raises:
            MethodNotAllowedError: The policy does not allow the call
        """
        if not self.methods.is_allowed(obj, method):
            class_name = qualified_name(type(obj))
            _log.debug("Denied method %s.%s", class_name, method)
            raise MethodNotAllowedError(class_name=class_name, method=method)

    def check_property(self, obj: object, property_name: str) -> None:
        """
        Check that property_name may be read on obj.

        Raises:
            PropertyNotAllowedError: The policy does not allow the read
        """
        if not self.properties.is_allowed(obj, property_name):
            class_name = qualified_name(type(obj))
            _log.debug("Denied property %s.%s", class_name, property_name)
            raise PropertyNotAllowedError(
                class_name=class_name,
                property_name=property_name,
            )

    def is_method_allowed(self, obj: object, method: str) -> bool:
        """Check a method call without raising."""
        return self.methods.is_allowed(obj, method)

    def is_property_allowed(self, obj: object, property_name: str) -> bool:
        """Check a property read without raising."""
        return self.properties.is_allowed(obj, property_name)

    def __repr__(self) -> str:
        return (
            f"SecurityPolicy(tags={self.tags!r}, filters={self.filters!r}, "
            f"functions={self.functions!r}, methods={len(self.methods)} classes, "
            f"properties={len(self.properties)} classes)"
        )


def _name_set(raw: Iterable[Any], builtin: Iterable[str], category: str) -> PatternSet:
    return PatternSet(defaults.merge_names(raw, builtin, category))


def _method_matcher(raw: Mapping[str, Any] | Iterable[Any]) -> MemberMatcher:
    merged = defaults.merge_members(raw, defaults.METHODS, "methods")
    return MemberMatcher(merged, case_insensitive=True)


def _property_matcher(raw: Mapping[str, Any] | Iterable[Any]) -> MemberMatcher:
    merged = defaults.merge_members(raw, defaults.PROPERTIES, "properties")
    return MemberMatcher(merged, case_insensitive=False)


class PolicyReference:
    """
    Shared, swappable reference to the live SecurityPolicy.

    Readers take ``current`` once per check and never lock. Writers build
    a complete new policy and publish it in one assignment, serialized by a
    lock so two reconfigurations cannot lose each other's changes.
    """

    def __init__(self, policy: SecurityPolicy) -> None:
        self._policy = policy
        self._write_lock = threading.Lock()

    @property
    def current(self) -> SecurityPolicy:
        """The policy in force right now."""
        return self._policy

    def publish(self, policy: SecurityPolicy) -> SecurityPolicy:
        """
        Replace the live policy.

        Returns:
            The policy that was replaced
        """
        with self._write_lock:
            previous = self._policy
            self._policy = policy
        _log.info("Published new security policy")
        return previous

    def reconfigure(self, **changes: Any) -> SecurityPolicy:
        """
        Publish a copy of the live policy with some allow-lists replaced.

        Keyword names are the policy categories: tags, filters, functions,
        methods, properties. Values take the same raw form as
        SecurityPolicy.build.

        Returns:
            The newly published policy
        """
        builders = {
            "tags": SecurityPolicy.with_tags,
            "filters": SecurityPolicy.with_filters,
            "functions": SecurityPolicy.with_functions,
            "methods": SecurityPolicy.with_methods,
            "properties": SecurityPolicy.with_properties,
        }
        unknown = set(changes) - set(builders)
        if unknown:
            msg = f"Unknown policy categories: {sorted(unknown)}"
            raise ValueError(msg)

        with self._write_lock:
            policy = self._policy
            for category, raw in changes.items():
                policy = builders[category](policy, raw)
            self._policy = policy
        _log.info("Reconfigured security policy: %s", ", ".join(sorted(changes)))
        return policy
