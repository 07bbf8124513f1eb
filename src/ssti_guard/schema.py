"""
Configuration schema for SSTI Guard.

This module defines the Pydantic models for the guard configuration:
- CategoryConfig: One flat allow-list (tags, filters or functions)
- MemberCategoryConfig: One class -> members allow-list (methods, properties)
- PolicyConfig: What sandboxed templates may use
- GuardConfig: Whether, where and how the sandbox is applied

Design Decisions:
    - All models are frozen and reject unknown keys
    - Each category is two explicit fields (include_defaults, extra) so the
      "use the built-in defaults" decision is made once, at load time
    - The legacy form, a plain list that may contain the "@defaults"
      marker, is accepted and converted on the way in
    - Omitting a category means "built-in defaults only"

Example YAML:

    enabled: true
    storage_path: /srv/site/storage
    policy:
      filters: ["@defaults", markdown]
      methods:
        include_defaults: true
        extra:
          app.models.Post: ["get*"]
"""

import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ssti_guard.errors import ConfigurationError
from ssti_guard.policy.defaults import INCLUDE_DEFAULTS

ENV_PREFIX = "SSTI_GUARD_"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


# =============================================================================
# Enums
# =============================================================================


class SandboxMode(str, Enum):
    """
    How templates are selected for sandboxing.

    AUTO sandboxes templates whose origin lies under the storage path.
    GLOBAL sandboxes every template, including ones built from strings.
    """

    AUTO = "auto"
    GLOBAL = "global"


# =============================================================================
# Policy Models
# =============================================================================


class CategoryConfig(BaseModel):
    """
    Allow-list for a flat namespace (tags, filters or functions).

    Attributes:
        include_defaults: Whether the built-in defaults are included
        extra: Names allowed in addition to (or instead of) the defaults
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    include_defaults: bool = Field(
        default=True,
        description="Include the built-in defaults for this category",
    )
    extra: list[str] = Field(
        default_factory=list,
        description="Additional allowed names ('*' allows everything)",
    )

    @model_validator(mode="before")
    @classmethod
    def accept_marker_list(cls, data: Any) -> Any:
        """Convert the legacy list form, e.g. ["@defaults", "markdown"]."""
        if isinstance(data, (list, tuple)):
            return {
                "include_defaults": INCLUDE_DEFAULTS in data,
                "extra": [entry for entry in data if entry != INCLUDE_DEFAULTS],
            }
        return data

    def as_raw(self) -> list[str]:
        """Return the marker-list form consumed by the defaults merger."""
        raw = [INCLUDE_DEFAULTS] if self.include_defaults else []
        return raw + list(self.extra)


class MemberCategoryConfig(BaseModel):
    """
    Allow-list of members per class (methods or properties).

    Attributes:
        include_defaults: Whether the built-in class table is included
        extra: Class pattern -> member patterns, layered over the defaults
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    include_defaults: bool = Field(
        default=True,
        description="Include the built-in class -> members table",
    )
    extra: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Class pattern ('*' for any) -> member patterns",
    )

    @model_validator(mode="before")
    @classmethod
    def accept_marker_form(cls, data: Any) -> Any:
        """
        Convert the legacy forms.

        Accepted:
            - a list mixing "@defaults" and {class: [members]} mappings
            - a mapping of class -> members where "@defaults" is a key
        """
        if isinstance(data, (list, tuple)):
            include = False
            extra: dict[str, list[str]] = {}
            for item in data:
                if item == INCLUDE_DEFAULTS:
                    include = True
                elif isinstance(item, Mapping):
                    for cls_name, members in item.items():
                        extra.setdefault(cls_name, []).extend(_as_list(members))
                else:
                    msg = f"Expected '{INCLUDE_DEFAULTS}' or a class mapping, got {item!r}"
                    raise ValueError(msg)
            return {"include_defaults": include, "extra": extra}

        if isinstance(data, Mapping) and not (set(data) & {"include_defaults", "extra"}):
            include = INCLUDE_DEFAULTS in data
            extra = {
                cls_name: _as_list(members)
                for cls_name, members in data.items()
                if cls_name != INCLUDE_DEFAULTS
            }
            return {"include_defaults": include, "extra": extra}

        return data

    def as_raw(self) -> list[Any]:
        """Return the marker-list form consumed by the defaults merger."""
        raw: list[Any] = [INCLUDE_DEFAULTS] if self.include_defaults else []
        if self.extra:
            raw.append({cls_name: list(members) for cls_name, members in self.extra.items()})
        return raw


def _as_list(members: Any) -> Any:
    if isinstance(members, str):
        return [members]
    return list(members) if isinstance(members, (list, tuple, set)) else members


class PolicyConfig(BaseModel):
    """
    What sandboxed templates may use.

    Every category defaults to the built-in allow-list.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    tags: CategoryConfig = Field(default_factory=CategoryConfig)
    filters: CategoryConfig = Field(default_factory=CategoryConfig)
    functions: CategoryConfig = Field(default_factory=CategoryConfig)
    methods: MemberCategoryConfig = Field(default_factory=MemberCategoryConfig)
    properties: MemberCategoryConfig = Field(default_factory=MemberCategoryConfig)


class GuardConfig(BaseModel):
    """
    Complete guard configuration.

    Attributes:
        enabled: Master switch; False leaves the environment untouched
        mode: How templates are selected for sandboxing
        storage_path: Root of editor-managed templates (auto mode)
        debug: Log boot decisions at INFO level
        policy: What sandboxed templates may use
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    enabled: bool = Field(default=True, description="Apply the sandbox at all")
    mode: SandboxMode = Field(
        default=SandboxMode.AUTO,
        description="How templates are selected for sandboxing",
    )
    storage_path: str | None = Field(
        default=None,
        description="Root of editor-managed templates; None uses the host fallback",
    )
    debug: bool = Field(default=False, description="Log boot decisions")
    policy: PolicyConfig = Field(default_factory=PolicyConfig)


# =============================================================================
# Loading Helpers
# =============================================================================


def _validate(data: Any) -> GuardConfig:
    if data is None:
        data = {}
    try:
        return GuardConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(
            message=f"Invalid guard configuration: {e.error_count()} error(s)",
            setting=".".join(str(p) for p in e.errors()[0]["loc"]) if e.errors() else "",
            context={"errors": str(e)},
        ) from e


def load_config(path: Path | str) -> GuardConfig:
    """
    Load a guard configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated GuardConfig object

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigurationError: If the YAML is malformed or doesn't match the schema
    """
    path = Path(path)
    with path.open() as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(
                message=f"Malformed YAML in {path}",
                context={"errors": str(e)},
            ) from e

    return _validate(data)


def load_config_from_string(content: str) -> GuardConfig:
    """Load a guard configuration from a YAML string."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            message="Malformed YAML configuration",
            context={"errors": str(e)},
        ) from e
    return _validate(data)


def _parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ConfigurationError(
        message=f"{name} must be a boolean, got {value!r}",
        setting=name,
    )


def apply_env_overrides(
    config: GuardConfig,
    environ: Mapping[str, str] | None = None,
) -> GuardConfig:
    """
    Override top-level settings from environment variables.

    Recognized variables:
        SSTI_GUARD_ENABLED, SSTI_GUARD_MODE,
        SSTI_GUARD_STORAGE_PATH, SSTI_GUARD_DEBUG

    Args:
        config: The loaded configuration
        environ: Variables to read (defaults to os.environ)

    Returns:
        A new GuardConfig with the overrides applied
    """
    if environ is None:
        environ = os.environ

    updates: dict[str, Any] = {}
    for field_name in ("enabled", "debug"):
        key = ENV_PREFIX + field_name.upper()
        if key in environ:
            updates[field_name] = _parse_bool(key, environ[key])

    mode_key = ENV_PREFIX + "MODE"
    if mode_key in environ:
        try:
            updates["mode"] = SandboxMode(environ[mode_key].strip().lower())
        except ValueError as e:
            raise ConfigurationError(
                message=f"{mode_key} must be one of: auto, global",
                setting=mode_key,
            ) from e

    path_key = ENV_PREFIX + "STORAGE_PATH"
    if environ.get(path_key):
        updates["storage_path"] = environ[path_key]

    if not updates:
        return config
    return config.model_copy(update=updates)
