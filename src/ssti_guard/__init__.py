"""
SSTI Guard - Allow-list sandbox for editor-managed Jinja2 templates.

SSTI Guard closes server-side template injection holes in sites that let
editors change templates. It provides:
- Deny-by-default allow-lists for tags, filters and functions
- Per-class method and property allow-lists with wildcards
- Secure built-in defaults that can be extended or replaced
- Origin routing: only editor-managed templates are sandboxed

Example usage:
    from jinja2 import Environment, FileSystemLoader
    from ssti_guard import install, load_config

    env = Environment(loader=FileSystemLoader(["themes", "storage"]))
    env = install(env, load_config("ssti-guard.yaml"))
"""

from ssti_guard.bootstrap import (
    build_security_policy,
    build_source_router,
    create_environment,
    find_guarded_environment,
    install,
    resolve_storage_path,
)
from ssti_guard.errors import (
    ConfigurationError,
    FilterNotAllowedError,
    FunctionNotAllowedError,
    MethodNotAllowedError,
    PropertyNotAllowedError,
    SecurityNotAllowedError,
    SstiGuardError,
    TagNotAllowedError,
)
from ssti_guard.policy import INCLUDE_DEFAULTS, PolicyReference, SecurityPolicy, SourceRouter
from ssti_guard.schema import GuardConfig, PolicyConfig, load_config, load_config_from_string

__version__ = "0.1.0"
__author__ = "SSTI Guard Contributors"

__all__ = [
    "INCLUDE_DEFAULTS",
    "ConfigurationError",
    "FilterNotAllowedError",
    "FunctionNotAllowedError",
    "GuardConfig",
    "MethodNotAllowedError",
    "PolicyConfig",
    "PolicyReference",
    "PropertyNotAllowedError",
    "SecurityNotAllowedError",
    "SecurityPolicy",
    "SourceRouter",
    "SstiGuardError",
    "TagNotAllowedError",
    "__author__",
    "__version__",
    "build_security_policy",
    "build_source_router",
    "create_environment",
    "find_guarded_environment",
    "install",
    "load_config",
    "load_config_from_string",
    "resolve_storage_path",
]
