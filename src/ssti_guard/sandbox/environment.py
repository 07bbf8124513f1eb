"""
Jinja2 environment that enforces a SecurityPolicy.

GuardedEnvironment builds on Jinja2's SandboxedEnvironment and asks the
policy two kinds of questions:

    - At compile time, every tag, filter and function the template
      references is checked in one call. Tag names are recorded by the
      parser as it dispatches each statement, so tags added by extensions
      are named and checked like the builtin ones.
    - At render time, every attribute the template resolves on an object is
      checked as a method call or a property read. The member is classified
      from its static definition before it is resolved, so a denied
      property's getter never runs.

Denials raise the typed errors from ssti_guard.errors and propagate out of
render; nothing is silently replaced with an empty value. Jinja2's own
sandbox rules (no underscore attributes, no internal frame attributes,
guarded str.format) stay in force underneath the policy.
"""

import functools
import inspect
import logging
from typing import Any

from jinja2 import nodes
from jinja2.environment import Environment
from jinja2.exceptions import TemplateSyntaxError
from jinja2.parser import Parser
from jinja2.sandbox import SandboxedEnvironment
from jinja2.utils import internalcode

from ssti_guard.policy.security import PolicyReference, SecurityPolicy

_log = logging.getLogger("ssti_guard.security")

# Most specific node classes first; isinstance picks the first hit.
_TAG_NODES: tuple[tuple[type[nodes.Node], str], ...] = (
    (nodes.For, "for"),
    (nodes.If, "if"),
    (nodes.Macro, "macro"),
    (nodes.CallBlock, "call"),
    (nodes.FilterBlock, "filter"),
    (nodes.With, "with"),
    (nodes.Block, "block"),
    (nodes.Extends, "extends"),
    (nodes.Include, "include"),
    (nodes.Import, "import"),
    (nodes.FromImport, "from"),
    (nodes.AssignBlock, "set"),
    (nodes.Assign, "set"),
    (nodes.ExprStmt, "do"),
    (nodes.ScopedEvalContextModifier, "autoescape"),
    (nodes.EvalContextModifier, "autoescape"),
    (nodes.Continue, "continue"),
    (nodes.Break, "break"),
)


def _tag_name(node: nodes.Node) -> str | None:
    for node_type, tag in _TAG_NODES:
        if isinstance(node, node_type):
            return tag
    # Extension output carries no tag name; report the extension itself.
    if isinstance(node, nodes.ExtensionAttribute):
        return node.identifier
    return None


def _is_method_member(static: Any) -> bool:
    if isinstance(static, (property, functools.cached_property)):
        return False
    return inspect.isroutine(static)


class TagRecordingParser(Parser):
    """Parser that records the name of every statement tag it dispatches."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.tags: dict[str, None] = {}

    def parse_statement(self) -> nodes.Node | list[nodes.Node]:
        token = self.stream.current
        if token.type == "name":
            self.tags.setdefault(token.value, None)
        return super().parse_statement()


def collect_references(
    template: nodes.Template,
    tags: list[str] | None = None,
) -> tuple[list[str], list[str], list[str]]:
    """
    Collect the tags, filters and functions a parsed template references.

    Names are returned once each, in document order. A function is a call
    whose target is a bare name (``range(3)``); calls on attributes
    (``post.getTitle()``) are member accesses and are checked at render
    time instead.

    Tag names recorded while parsing are used as given. Without them, tags
    are inferred from the AST node types; nodes emitted by an extension are
    reported under the extension's identifier.

    Args:
        template: The parsed template AST
        tags: Tag names recorded by TagRecordingParser, if available

    Returns:
        (tags, filters, functions)
    """
    inferred: dict[str, None] = {}
    filters: dict[str, None] = {}
    functions: dict[str, None] = {}

    for node in template.find_all(nodes.Node):
        if isinstance(node, nodes.Filter):
            filters[node.name] = None
        elif isinstance(node, nodes.Call):
            if isinstance(node.node, nodes.Name):
                functions[node.node.name] = None
        elif tags is None:
            tag = _tag_name(node)
            if tag is not None:
                inferred[tag] = None

    if tags is None:
        tags = list(inferred)
    return list(tags), list(filters), list(functions)


class GuardedEnvironment(SandboxedEnvironment):
    """
    Sandboxed Jinja2 environment driven by a SecurityPolicy.

    Every template this environment compiles is a sandboxed template. When
    installed next to a trusted environment (see ssti_guard.bootstrap), a
    RoutingLoader decides per template origin which of the two compiles it.

    Attributes:
        policy_ref: Reference to the live policy
        trusted_environment: The host environment this one was paired with
    """

    def __init__(
        self,
        *args: Any,
        policy: SecurityPolicy | PolicyReference | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        if policy is None:
            policy = SecurityPolicy.build()
        if isinstance(policy, SecurityPolicy):
            policy = PolicyReference(policy)
        self.policy_ref = policy
        self.trusted_environment: Environment | None = None

    @property
    def policy(self) -> SecurityPolicy:
        """The policy in force right now."""
        return self.policy_ref.current

    # =========================================================================
    # Compile-time checks
    # =========================================================================

    @internalcode
    def parse_with_tags(
        self,
        source: str,
        name: str | None = None,
        filename: str | None = None,
    ) -> tuple[nodes.Template, list[str]]:
        """
        Parse source and return the AST with the statement tags it used.

        Tags are returned once each, in document order. Closing and
        continuation keywords (``endfor``, ``else``, ``elif``) are part of
        their opening tag and are not listed.
        """
        parser = TagRecordingParser(self, source, name, filename)
        try:
            template = parser.parse()
        except TemplateSyntaxError:
            self.handle_exception(source=source)
        return template, list(parser.tags)

    def check_template(
        self,
        template: nodes.Template,
        tags: list[str] | None = None,
    ) -> None:
        """
        Run the structural check for a parsed template.

        Raises:
            TagNotAllowedError, FilterNotAllowedError, FunctionNotAllowedError
        """
        tags, filters, functions = collect_references(template, tags)
        self.policy_ref.current.check_structural(tags, filters, functions)

    def compile(  # type: ignore[override]
        self,
        source: str | nodes.Template,
        name: str | None = None,
        filename: str | None = None,
        raw: bool = False,
        defer_init: bool = False,
    ) -> Any:
        tags = None
        if isinstance(source, str):
            source, tags = self.parse_with_tags(source, name, filename)
        self.check_template(source, tags)
        return super().compile(source, name, filename, raw, defer_init)

    # =========================================================================
    # Render-time checks
    # =========================================================================

    def _check_member(self, obj: Any, attr: str, is_method: bool) -> None:
        policy = self.policy_ref.current
        if is_method:
            policy.check_method(obj, attr)
        else:
            policy.check_property(obj, attr)

    def check_member(self, obj: Any, attr: str) -> None:
        """
        Check an attribute access before the attribute is resolved.

        The member is looked up with inspect.getattr_static, which runs no
        getters. Attributes with no static definition (served by
        ``__getattr__`` or a custom ``__getattribute__``) are skipped here
        and checked by is_safe_attribute once resolved.

        Raises:
            MethodNotAllowedError, PropertyNotAllowedError
        """
        try:
            static = inspect.getattr_static(obj, attr)
        except AttributeError:
            return
        self._check_member(obj, attr, _is_method_member(static))

    def getattr(self, obj: Any, attribute: str) -> Any:
        self.check_member(obj, attribute)
        return super().getattr(obj, attribute)

    def getitem(self, obj: Any, argument: Any) -> Any:
        try:
            return obj[argument]
        except (TypeError, LookupError):
            if isinstance(argument, str):
                self.check_member(obj, argument)
                try:
                    value = getattr(obj, argument)
                except AttributeError:
                    pass
                else:
                    fmt = self.wrap_str_format(value)
                    if fmt is not None:
                        return fmt
                    if self.is_safe_attribute(obj, argument, value):
                        return value
                    return self.unsafe_undefined(obj, argument)
        return self.undefined(obj=obj, name=argument)

    def is_safe_attribute(self, obj: Any, attr: str, value: Any) -> bool:
        try:
            static = inspect.getattr_static(obj, attr)
        except AttributeError:
            is_method = inspect.isroutine(value)
        else:
            is_method = _is_method_member(static)
        self._check_member(obj, attr, is_method)
        return super().is_safe_attribute(obj, attr, value)

    def wrap_str_format(self, value: Any) -> Any:
        # Jinja2 hands str.format/format_map to this hook before
        # is_safe_attribute, so the method policy is applied here too.
        owner = getattr(value, "__self__", None)
        if isinstance(owner, str) and inspect.isroutine(value):
            name = getattr(value, "__name__", "")
            if name in ("format", "format_map"):
                self.policy_ref.current.check_method(owner, name)
        return super().wrap_str_format(value)

    # =========================================================================
    # Reconfiguration
    # =========================================================================

    def reconfigure(self, **changes: Any) -> SecurityPolicy:
        """
        Publish a new policy and drop templates checked against the old one.

        Keyword arguments are passed to PolicyReference.reconfigure.
        """
        policy = self.policy_ref.reconfigure(**changes)
        self.clear_template_caches()
        return policy

    def clear_template_caches(self) -> None:
        """Forget compiled templates in this and the paired environment."""
        for env in (self, self.trusted_environment):
            if env is not None and env.cache is not None:
                env.cache.clear()
