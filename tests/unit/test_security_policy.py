"""
Unit tests for the SecurityPolicy.

Tests cover:
- Structural checks (tags, filters, functions), fail-first ordering
- Method and property checks with typed errors
- Building from raw lists and from PolicyConfig
- Immutability and with_* copies
- PolicyReference publishing and reconfiguration
"""

import threading

import pytest

from ssti_guard.errors import (
    FilterNotAllowedError,
    FunctionNotAllowedError,
    MethodNotAllowedError,
    PropertyNotAllowedError,
    SecurityNotAllowedError,
    TagNotAllowedError,
)
from ssti_guard.policy import INCLUDE_DEFAULTS, PolicyReference, SecurityPolicy
from ssti_guard.policy.matcher import qualified_name
from ssti_guard.schema import CategoryConfig, MemberCategoryConfig, PolicyConfig


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def default_policy() -> SecurityPolicy:
    """A policy using only the built-in defaults."""
    return SecurityPolicy.build()


@pytest.fixture
def getter_policy() -> SecurityPolicy:
    """A policy allowing getters on any object and nothing else."""
    return SecurityPolicy.build(methods={"*": ["get*"]}, properties={})


# =============================================================================
# Structural Check Tests
# =============================================================================


class TestStructuralCheck:
    """Tests for check_structural."""

    def test_defaults_allow_common_names(self, default_policy: SecurityPolicy) -> None:
        """Everyday tags, filters and functions pass."""
        default_policy.check_structural(
            tags={"if", "for", "set"},
            filters={"upper"},
            functions={"range"},
        )

    def test_map_filter_denied(self, default_policy: SecurityPolicy) -> None:
        """The map filter is rejected by name."""
        with pytest.raises(FilterNotAllowedError) as exc_info:
            default_policy.check_structural(tags=set(), filters={"map"}, functions=set())
        assert exc_info.value.filter_name == "map"
        assert 'Filter "map" is not allowed.' in str(exc_info.value)

    def test_include_tag_denied(self, default_policy: SecurityPolicy) -> None:
        """The include tag is rejected by name."""
        with pytest.raises(TagNotAllowedError) as exc_info:
            default_policy.check_structural(tags=["include"], filters=[], functions=[])
        assert exc_info.value.tag == "include"

    def test_unknown_function_denied(self, default_policy: SecurityPolicy) -> None:
        """Functions outside the list are rejected by name."""
        with pytest.raises(FunctionNotAllowedError) as exc_info:
            default_policy.check_structural(tags=[], filters=[], functions=["url_for"])
        assert exc_info.value.function == "url_for"

    def test_first_failure_reported(self, default_policy: SecurityPolicy) -> None:
        """Only the first offending name in iteration order is reported."""
        with pytest.raises(FilterNotAllowedError) as exc_info:
            default_policy.check_structural(
                tags=[],
                filters=["upper", "map", "select"],
                functions=[],
            )
        assert exc_info.value.filter_name == "map"

    def test_tags_checked_before_filters(self, default_policy: SecurityPolicy) -> None:
        """A bad tag wins over a bad filter."""
        with pytest.raises(TagNotAllowedError):
            default_policy.check_structural(
                tags=["include"],
                filters=["map"],
                functions=["url_for"],
            )

    def test_filters_checked_before_functions(self, default_policy: SecurityPolicy) -> None:
        """A bad filter wins over a bad function."""
        with pytest.raises(FilterNotAllowedError):
            default_policy.check_structural(
                tags=["if"],
                filters=["map"],
                functions=["url_for"],
            )

    def test_wildcard_category_skipped(self) -> None:
        """A category configured with "*" allows everything."""
        policy = SecurityPolicy.build(filters=["*"])
        policy.check_structural(tags=[], filters=["map", "anything"], functions=[])

    def test_empty_references_pass(self) -> None:
        """A template referencing nothing passes even an empty policy."""
        policy = SecurityPolicy.build(tags=[], filters=[], functions=[])
        policy.check_structural(tags=[], filters=[], functions=[])

    def test_extras_extend_defaults(self) -> None:
        """Extras listed next to the marker are allowed alongside defaults."""
        policy = SecurityPolicy.build(filters=[INCLUDE_DEFAULTS, "markdown"])
        policy.check_structural(tags=[], filters=["markdown", "upper"], functions=[])

    def test_extras_without_marker_replace_defaults(self) -> None:
        """Extras without the marker replace the defaults."""
        policy = SecurityPolicy.build(filters=["markdown"])
        with pytest.raises(FilterNotAllowedError):
            policy.check_structural(tags=[], filters=["upper"], functions=[])


# =============================================================================
# Member Check Tests
# =============================================================================


class TestMemberChecks:
    """Tests for check_method and check_property."""

    def test_getter_allowed(self, getter_policy: SecurityPolicy, post) -> None:
        """get* on "*" allows getTitle."""
        getter_policy.check_method(post, "getTitle")

    def test_setter_denied(self, getter_policy: SecurityPolicy, post, post_class) -> None:
        """get* on "*" rejects setTitle, naming class and method."""
        with pytest.raises(MethodNotAllowedError) as exc_info:
            getter_policy.check_method(post, "setTitle")
        err = exc_info.value
        assert err.method == "setTitle"
        assert err.class_name == qualified_name(post_class)
        assert err.context["class_name"] == qualified_name(post_class)

    def test_any_object_type(self, getter_policy: SecurityPolicy) -> None:
        """The wildcard class covers builtins too."""
        getter_policy.check_method({}, "get")
        with pytest.raises(MethodNotAllowedError) as exc_info:
            getter_policy.check_method({}, "pop")
        assert exc_info.value.class_name == "dict"

    def test_method_case_insensitive(self, post) -> None:
        """Method patterns match regardless of case."""
        policy = SecurityPolicy.build(methods={"*": ["gettitle"]})
        policy.check_method(post, "GetTitle")

    def test_property_case_sensitive(self, post) -> None:
        """Property patterns match case exactly."""
        policy = SecurityPolicy.build(properties={"*": ["Title"]})
        policy.check_property(post, "Title")
        with pytest.raises(PropertyNotAllowedError) as exc_info:
            policy.check_property(post, "title")
        assert exc_info.value.property_name == "title"

    def test_properties_default_deny(self, default_policy: SecurityPolicy, post) -> None:
        """Unlisted classes have no readable properties."""
        with pytest.raises(PropertyNotAllowedError):
            default_policy.check_property(post, "title")

    def test_boolean_helpers(self, getter_policy: SecurityPolicy, post) -> None:
        """is_*_allowed mirror the checks without raising."""
        assert getter_policy.is_method_allowed(post, "getTitle") is True
        assert getter_policy.is_method_allowed(post, "setTitle") is False
        assert getter_policy.is_property_allowed(post, "title") is False

    def test_errors_share_parent(self, getter_policy: SecurityPolicy, post) -> None:
        """All denials can be caught as SecurityNotAllowedError."""
        with pytest.raises(SecurityNotAllowedError):
            getter_policy.check_method(post, "setTitle")


# =============================================================================
# Construction Tests
# =============================================================================


class TestConstruction:
    """Tests for building and copying policies."""

    def test_from_config_defaults(self, post) -> None:
        """A default PolicyConfig equals the defaults-only policy."""
        policy = SecurityPolicy.from_config(PolicyConfig())
        assert policy.filters == SecurityPolicy.build().filters
        assert "map" not in policy.filters

    def test_from_config_explicit(self, post) -> None:
        """Explicit two-field config is honored."""
        config = PolicyConfig(
            filters=CategoryConfig(include_defaults=False, extra=["upper"]),
            methods=MemberCategoryConfig(include_defaults=False, extra={"*": ["get*"]}),
        )
        policy = SecurityPolicy.from_config(config)
        assert policy.filters.is_allowed("upper") is True
        assert policy.filters.is_allowed("lower") is False
        policy.check_method(post, "getTitle")
        with pytest.raises(MethodNotAllowedError):
            policy.check_method("text", "upper")

    def test_immutable(self, default_policy: SecurityPolicy) -> None:
        """Fields cannot be reassigned."""
        with pytest.raises(AttributeError):
            default_policy.filters = SecurityPolicy.build(filters=["*"]).filters  # type: ignore[misc]

    def test_with_filters_returns_copy(self, default_policy: SecurityPolicy) -> None:
        """with_filters leaves the original untouched."""
        updated = default_policy.with_filters([INCLUDE_DEFAULTS, "map"])
        assert updated.filters.is_allowed("map") is True
        assert default_policy.filters.is_allowed("map") is False
        assert updated.tags is default_policy.tags

    def test_with_methods_returns_copy(self, default_policy: SecurityPolicy, post) -> None:
        """with_methods builds a fresh matcher."""
        updated = default_policy.with_methods({"*": ["get*"]})
        assert updated.is_method_allowed(post, "getTitle") is True
        assert default_policy.is_method_allowed(post, "getTitle") is False

    def test_with_other_categories(self, default_policy: SecurityPolicy, post) -> None:
        """with_tags, with_functions and with_properties replace one list each."""
        updated = (
            default_policy.with_tags(["include"])
            .with_functions(["url_for"])
            .with_properties({"*": ["title"]})
        )
        assert updated.tags.is_allowed("include") is True
        assert updated.tags.is_allowed("if") is False
        assert updated.functions.is_allowed("url_for") is True
        assert updated.is_property_allowed(post, "title") is True


# =============================================================================
# PolicyReference Tests
# =============================================================================


class TestPolicyReference:
    """Tests for publishing new policies."""

    def test_publish_swaps(self, default_policy: SecurityPolicy) -> None:
        """publish replaces the current policy and returns the old one."""
        ref = PolicyReference(default_policy)
        replacement = SecurityPolicy.build(filters=["*"])
        previous = ref.publish(replacement)
        assert previous is default_policy
        assert ref.current is replacement

    def test_reconfigure(self, default_policy: SecurityPolicy) -> None:
        """reconfigure publishes a copy with the named lists replaced."""
        ref = PolicyReference(default_policy)
        updated = ref.reconfigure(filters=[INCLUDE_DEFAULTS, "map"], tags=["if"])
        assert ref.current is updated
        assert updated.filters.is_allowed("map") is True
        assert updated.tags.is_allowed("for") is False
        assert default_policy.filters.is_allowed("map") is False

    def test_reconfigure_unknown_category(self, default_policy: SecurityPolicy) -> None:
        """Unknown categories are rejected and nothing is published."""
        ref = PolicyReference(default_policy)
        with pytest.raises(ValueError):
            ref.reconfigure(tests=["defined"])
        assert ref.current is default_policy

    def test_concurrent_readers_see_whole_policies(self, post) -> None:
        """Readers racing a writer only ever see complete policies."""
        strict = SecurityPolicy.build(methods={}, filters=[])
        loose = SecurityPolicy.build(methods={"*": ["*"]}, filters=["*"])
        ref = PolicyReference(strict)
        seen: list[tuple[bool, bool]] = []
        stop = threading.Event()

        def reader() -> None:
            while not stop.is_set():
                policy = ref.current
                seen.append(
                    (policy.filters.allows_all, policy.is_method_allowed(post, "x"))
                )

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for i in range(200):
            ref.publish(loose if i % 2 == 0 else strict)
        stop.set()
        for thread in threads:
            thread.join()

        assert set(seen) <= {(True, True), (False, False)}
