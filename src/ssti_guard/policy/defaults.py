"""
Built-in allow-lists and the defaults merger.

Every policy category (tags, filters, functions, methods, properties) has a
built-in default table. A configured list opts into those defaults by
containing the INCLUDE_DEFAULTS marker; without the marker the configured
entries replace the defaults entirely.

Security Note:
    The default filters deliberately EXCLUDE map, select, reject,
    selectattr, rejectattr and attr. They dispatch to other filters, tests
    or attributes by a runtime string, which would bypass the compile-time
    filter check (the classic ``{{ ['id']|map('system') }}`` family).
    The default tags EXCLUDE include, extends, import, from, block, macro
    and call, which would let an editor pull in or define arbitrary
    template code.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

_log = logging.getLogger("ssti_guard.policy")

INCLUDE_DEFAULTS = "@defaults"

TAGS: frozenset[str] = frozenset({
    "autoescape",
    "break",
    "continue",
    "do",
    "filter",
    "for",
    "if",
    "set",
    "with",
})

FILTERS: frozenset[str] = frozenset({
    "abs",
    "batch",
    "capitalize",
    "center",
    "count",
    "d",
    "default",
    "dictsort",
    "e",
    "escape",
    "filesizeformat",
    "first",
    "float",
    "forceescape",
    "format",
    "groupby",
    "indent",
    "int",
    "items",
    "join",
    "last",
    "length",
    "list",
    "lower",
    "max",
    "min",
    "random",
    "replace",
    "reverse",
    "round",
    "slice",
    "sort",
    "string",
    "striptags",
    "sum",
    "title",
    "tojson",
    "trim",
    "truncate",
    "unique",
    "upper",
    "urlencode",
    "urlize",
    "wordcount",
    "wordwrap",
    "xmlattr",
})

FUNCTIONS: frozenset[str] = frozenset({
    "cycler",
    "dict",
    "joiner",
    "lipsum",
    "namespace",
    "range",
})

_STR_METHODS = (
    "capitalize",
    "center",
    "count",
    "endswith",
    "find",
    "is*",
    "join",
    "ljust",
    "lower",
    "lstrip",
    "partition",
    "removeprefix",
    "removesuffix",
    "replace",
    "rfind",
    "rjust",
    "rpartition",
    "rsplit",
    "rstrip",
    "split",
    "splitlines",
    "startswith",
    "strip",
    "swapcase",
    "title",
    "upper",
    "zfill",
)

METHODS: Mapping[str, tuple[str, ...]] = {
    "str": _STR_METHODS,
    "markupsafe.Markup": _STR_METHODS + ("striptags", "unescape"),
    "dict": ("get", "items", "keys", "values"),
    "list": ("count", "index"),
    "tuple": ("count", "index"),
    "datetime.date": ("isoformat", "isoweekday", "strftime", "weekday"),
    "datetime.time": ("isoformat", "strftime"),
    "jinja2.runtime.LoopContext": ("changed", "cycle"),
    "jinja2.utils.Cycler": ("next", "reset"),
}

PROPERTIES: Mapping[str, tuple[str, ...]] = {
    "jinja2.runtime.LoopContext": (
        "depth",
        "depth0",
        "first",
        "index",
        "index0",
        "last",
        "length",
        "nextitem",
        "previtem",
        "revindex",
        "revindex0",
    ),
    "jinja2.utils.Cycler": ("current",),
    "jinja2.utils.Namespace": ("*",),
    "datetime.date": ("day", "month", "year"),
    "datetime.datetime": ("hour", "microsecond", "minute", "second", "tzinfo"),
    "datetime.time": ("hour", "microsecond", "minute", "second", "tzinfo"),
}


def _clean_name(entry: Any, category: str) -> str | None:
    """Return a usable name, or None for entries that must be dropped."""
    if not isinstance(entry, str):
        _log.debug("Dropping non-string %s entry: %r", category, entry)
        return None
    name = entry.strip()
    if not name:
        _log.debug("Dropping blank %s entry", category)
        return None
    return name


def merge_names(
    raw: Iterable[Any],
    defaults: Iterable[str],
    category: str = "names",
) -> frozenset[str]:
    """
    Merge a configured flat list with the built-in defaults.

    If raw contains INCLUDE_DEFAULTS the result is the defaults plus every
    other entry of raw. Otherwise the result is exactly the entries of raw.
    Malformed entries are dropped, never widened.

    Args:
        raw: Configured entries, possibly containing the marker
        defaults: Built-in names for this category
        category: Category name, used in log messages

    Returns:
        The concrete set of allowed names
    """
    include_defaults = False
    names: set[str] = set()
    for entry in raw:
        if entry == INCLUDE_DEFAULTS:
            include_defaults = True
            continue
        name = _clean_name(entry, category)
        if name is not None:
            names.add(name)

    if include_defaults:
        names.update(defaults)
    return frozenset(names)


def _member_list(members: Any, category: str) -> list[str]:
    if isinstance(members, str):
        members = [members]
    elif not isinstance(members, Iterable) or isinstance(members, Mapping):
        _log.debug("Dropping malformed %s member list: %r", category, members)
        return []
    cleaned = []
    for member in members:
        name = _clean_name(member, category)
        if name is not None:
            cleaned.append(name)
    return cleaned


def _union_into(
    target: dict[str, list[str]],
    class_pattern: str,
    members: Iterable[str],
) -> None:
    existing = target.setdefault(class_pattern, [])
    for member in members:
        if member not in existing:
            existing.append(member)


def merge_members(
    raw: Mapping[str, Any] | Iterable[Any],
    defaults: Mapping[str, Iterable[str]],
    category: str = "members",
) -> dict[str, tuple[str, ...]]:
    """
    Merge a configured class -> members table with the built-in defaults.

    Accepted shapes for raw:
        - a mapping of class pattern to member list, where the marker may
          appear as a key
        - a list mixing the marker and class -> members mappings

    The marker contributes the whole defaults table. Explicit classes are
    layered on top; a class present in both gets the union of its member
    lists. Without the marker only the explicit classes are kept.

    Args:
        raw: Configured entries
        defaults: Built-in class -> members table for this category
        category: Category name, used in log messages

    Returns:
        Class pattern -> tuple of member patterns, duplicates removed
    """
    include_defaults = False
    explicit: dict[str, list[str]] = {}

    if isinstance(raw, Mapping):
        items: list[Any] = [raw]
    else:
        items = list(raw)

    for item in items:
        if item == INCLUDE_DEFAULTS:
            include_defaults = True
            continue
        if not isinstance(item, Mapping):
            _log.debug("Dropping malformed %s entry: %r", category, item)
            continue
        for class_pattern, members in item.items():
            if class_pattern == INCLUDE_DEFAULTS:
                include_defaults = True
                continue
            name = _clean_name(class_pattern, category)
            if name is None:
                continue
            _union_into(explicit, name, _member_list(members, category))

    merged: dict[str, list[str]] = {}
    if include_defaults:
        for class_pattern, members in defaults.items():
            _union_into(merged, class_pattern, members)
    for class_pattern, members in explicit.items():
        _union_into(merged, class_pattern, members)

    return {cls: tuple(members) for cls, members in merged.items()}
