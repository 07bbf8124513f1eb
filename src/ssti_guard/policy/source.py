"""
Source routing: which templates get sandboxed at all.

Only templates editors can change (those stored under the storage root) are
sandboxed. Templates shipped with themes and addons come from elsewhere on
disk and run with full capabilities.

Paths are compared segment by segment after normalization, so a root of
"/storage" covers "/storage" and "/storage/templates/x.html" but not
"/storage2/x.html".
"""

import posixpath
from typing import Protocol


def normalize_path(path: str) -> str:
    """
    Normalize a path or template origin for prefix comparison.

    Backslashes become "/", repeated separators collapse, "." and ".."
    segments are resolved lexically and trailing separators are stripped.
    A leading "/" is kept.

    Examples:
        "/storage/"              -> "/storage"
        "C:\\site\\storage\\"    -> "C:/site/storage"
        "/storage//a/./b.html"   -> "/storage/a/b.html"
        "/themes/../storage/x"   -> "/storage/x"
    """
    unified = path.strip().replace("\\", "/")
    if not unified:
        return ""
    normalized = posixpath.normpath(unified)
    if normalized == ".":
        return ""
    if normalized.startswith("//"):
        normalized = "/" + normalized.lstrip("/")
    return normalized


def _segments(normalized: str) -> list[str]:
    return [part for part in normalized.split("/") if part]


class SourcePolicy(Protocol):
    """Anything that can decide whether a template origin is sandboxed."""

    def should_sandbox(self, origin: str) -> bool: ...


class SourceRouter:
    """
    Sandboxes templates whose origin lies under a root directory.

    Attributes:
        root: The normalized root path
    """

    def __init__(self, root: str) -> None:
        self.root = normalize_path(root)
        self._absolute = self.root.startswith("/")
        self._root_segments = _segments(self.root)

    def should_sandbox(self, origin: str) -> bool:
        """
        Decide whether the template at origin is sandboxed.

        Args:
            origin: Template filename or logical name

        Returns:
            True if origin equals the root or lies beneath it
        """
        if not self._root_segments:
            return False
        if not origin:
            return False

        normalized = normalize_path(origin)
        if normalized.startswith("/") != self._absolute:
            return False

        segments = _segments(normalized)
        depth = len(self._root_segments)
        return segments[:depth] == self._root_segments

    def __repr__(self) -> str:
        return f"SourceRouter(root={self.root!r})"


class SandboxAll:
    """Sandboxes every template regardless of origin."""

    def should_sandbox(self, origin: str) -> bool:
        return True

    def __repr__(self) -> str:
        return "SandboxAll()"
