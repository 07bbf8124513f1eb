"""
Exception hierarchy for SSTI Guard.

All SSTI Guard exceptions inherit from SstiGuardError, allowing callers to
catch every guard-specific exception with a single except clause.

Exception Categories:
    - SecurityNotAllowedError: A template used something the policy forbids
        - Structural: tag, filter or function rejected at compile time
        - Member: method call or property read rejected at render time
    - ConfigurationError: The guard could not be configured

Design Principles:
    - All errors have error codes for programmatic handling
    - All errors carry the offending name (and class, for member errors)
    - All errors provide actionable suggestions where possible
    - Errors are designed to be both human-readable and machine-parseable
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Structural errors: 10xx
ERROR_TAG_NOT_ALLOWED = 1001
ERROR_FILTER_NOT_ALLOWED = 1002
ERROR_FUNCTION_NOT_ALLOWED = 1003

# Member errors: 11xx
ERROR_METHOD_NOT_ALLOWED = 1101
ERROR_PROPERTY_NOT_ALLOWED = 1102

# Configuration errors: 2xxx
ERROR_CONFIG_INVALID = 2001
ERROR_CONFIG_STORAGE_PATH = 2002


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class SstiGuardError(Exception):
    """
    Base exception for all SSTI Guard errors.

    Attributes:
        message: Human-readable error description
        code: Numeric error code for programmatic handling
        suggestion: Optional hint for how to resolve the error
        context: Optional dict with additional debugging info
    """

    message: str = ""
    code: int = 0
    suggestion: str | None = None
    context: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        """Format error for display."""
        parts = [f"[E{self.code}] {self.message}"]
        if self.suggestion:
            parts.append(f"\nSuggestion: {self.suggestion}")
        return "".join(parts)

    def __repr__(self) -> str:
        """Format error for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "suggestion": self.suggestion,
            "context": self.context,
        }


# =============================================================================
# Security Errors
# =============================================================================


@dataclass
class SecurityNotAllowedError(SstiGuardError):
    """
    Raised when a sandboxed template uses something the policy forbids.

    This is the common parent of the five denial kinds. Catching it is the
    way for a host to treat every policy violation the same.
    """


@dataclass
class TagNotAllowedError(SecurityNotAllowedError):
    """Raised when a sandboxed template uses a tag outside the allow-list."""

    tag: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f'Tag "{self.tag}" is not allowed.'
        if self.code == 0:
            self.code = ERROR_TAG_NOT_ALLOWED
        if not self.suggestion:
            self.suggestion = "Add the tag to policy.tags if it is safe for editors"
        self.context["tag"] = self.tag


@dataclass
class FilterNotAllowedError(SecurityNotAllowedError):
    """Raised when a sandboxed template uses a filter outside the allow-list."""

    filter_name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f'Filter "{self.filter_name}" is not allowed.'
        if self.code == 0:
            self.code = ERROR_FILTER_NOT_ALLOWED
        if not self.suggestion:
            self.suggestion = "Add the filter to policy.filters if it is safe for editors"
        self.context["filter"] = self.filter_name


@dataclass
class FunctionNotAllowedError(SecurityNotAllowedError):
    """Raised when a sandboxed template calls a function outside the allow-list."""

    function: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f'Function "{self.function}" is not allowed.'
        if self.code == 0:
            self.code = ERROR_FUNCTION_NOT_ALLOWED
        if not self.suggestion:
            self.suggestion = "Add the function to policy.functions if it is safe for editors"
        self.context["function"] = self.function


@dataclass
class MemberNotAllowedError(SecurityNotAllowedError):
    """
    Base class for rejected object member accesses.

    Attributes:
        class_name: Qualified name of the object's concrete type
    """

    class_name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context["class_name"] = self.class_name


@dataclass
class MethodNotAllowedError(MemberNotAllowedError):
    """Raised when a sandboxed template calls a method the policy forbids."""

    method: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f'Calling "{self.method}" method on a "{self.class_name}" object is not allowed.'
            )
        if self.code == 0:
            self.code = ERROR_METHOD_NOT_ALLOWED
        if not self.suggestion:
            self.suggestion = f"Add {self.method!r} under {self.class_name!r} in policy.methods"
        super().__post_init__()
        self.context["method"] = self.method


@dataclass
class PropertyNotAllowedError(MemberNotAllowedError):
    """Raised when a sandboxed template reads a property the policy forbids."""

    property_name: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f'Calling "{self.property_name}" property on a "{self.class_name}" object is not allowed.'
            )
        if self.code == 0:
            self.code = ERROR_PROPERTY_NOT_ALLOWED
        if not self.suggestion:
            self.suggestion = (
                f"Add {self.property_name!r} under {self.class_name!r} in policy.properties"
            )
        super().__post_init__()
        self.context["property"] = self.property_name


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigurationError(SstiGuardError):
    """
    Raised when the guard configuration is invalid or incomplete.

    Attributes:
        setting: The configuration key at fault (if known)
    """

    setting: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid configuration: {self.setting}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["setting"] = self.setting


@dataclass
class StoragePathError(ConfigurationError):
    """Raised when no storage path can be resolved for origin routing."""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.setting:
            self.setting = "storage_path"
        if not self.message:
            self.message = "No storage path configured and no fallback available"
        if self.code == 0:
            self.code = ERROR_CONFIG_STORAGE_PATH
        if not self.suggestion:
            self.suggestion = "Set storage_path in the config or SSTI_GUARD_STORAGE_PATH"
        super().__post_init__()
