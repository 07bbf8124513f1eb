"""
Wiring SSTI Guard into a Jinja2 environment.

install() is the single entry point a host calls at startup. It turns a
GuardConfig into a SecurityPolicy and a source router, builds a
GuardedEnvironment that shares the host's filters, tests and globals, and
swaps the host loader for a RoutingLoader.

Boot Flow:
    1. enabled=False -> return the environment untouched
    2. Already installed -> skip (never wrap twice)
    3. Build the policy from config.policy
    4. Build the router (storage path in auto mode, everything in global mode)
    5. Pair a GuardedEnvironment with the host environment
    6. Return the environment the host should render with

Usage:
    env = Environment(loader=FileSystemLoader([theme_dir, storage_dir]))
    env = install(env, load_config("ssti-guard.yaml"))
    env.get_template("page.html").render(...)
"""

import logging
from collections import ChainMap
from collections.abc import Callable
from typing import Any

from jinja2 import BaseLoader, Environment
from jinja2.sandbox import safe_range

from ssti_guard.errors import StoragePathError
from ssti_guard.policy.security import PolicyReference, SecurityPolicy
from ssti_guard.policy.source import SandboxAll, SourcePolicy, SourceRouter
from ssti_guard.sandbox.environment import GuardedEnvironment
from ssti_guard.sandbox.loader import RoutingLoader
from ssti_guard.schema import GuardConfig, PolicyConfig, SandboxMode

_log = logging.getLogger("ssti_guard.boot")

# Lexer and runtime options copied from the host environment.
_SHARED_OPTIONS = (
    "block_start_string",
    "block_end_string",
    "variable_start_string",
    "variable_end_string",
    "comment_start_string",
    "comment_end_string",
    "line_statement_prefix",
    "line_comment_prefix",
    "trim_blocks",
    "lstrip_blocks",
    "newline_sequence",
    "keep_trailing_newline",
    "optimized",
    "undefined",
    "finalize",
    "autoescape",
    "auto_reload",
)


def build_security_policy(config: PolicyConfig) -> SecurityPolicy:
    """Build the policy that defines WHAT sandboxed templates may use."""
    return SecurityPolicy.from_config(config)


def resolve_storage_path(
    config: GuardConfig,
    fallback: Callable[[], str | None] | None = None,
) -> str:
    """
    Resolve the root of editor-managed templates.

    Args:
        config: The guard configuration
        fallback: Host-provided lookup used when storage_path is unset

    Returns:
        The configured path, else the fallback's answer

    Raises:
        StoragePathError: If neither yields a non-empty path
    """
    if config.storage_path:
        return config.storage_path

    if fallback is not None:
        path = fallback()
        if path:
            return str(path)

    raise StoragePathError()


def build_source_router(
    config: GuardConfig,
    fallback: Callable[[], str | None] | None = None,
) -> SourcePolicy:
    """Build the router that decides WHEN a template is sandboxed."""
    if config.mode is SandboxMode.GLOBAL:
        return SandboxAll()
    return SourceRouter(resolve_storage_path(config, fallback))


def _guarded_twin(env: Environment, policy: PolicyReference) -> GuardedEnvironment:
    options: dict[str, Any] = {name: getattr(env, name) for name in _SHARED_OPTIONS}
    guarded = GuardedEnvironment(
        extensions=[type(ext) for ext in env.extensions.values()],
        cache_size=0 if env.cache is None else getattr(env.cache, "capacity", 400),
        bytecode_cache=env.bytecode_cache,
        enable_async=env.is_async,
        policy=policy,
        **options,
    )
    guarded.filters = env.filters
    guarded.tests = env.tests
    guarded.policies = env.policies
    guarded.globals = ChainMap({"range": safe_range}, env.globals)  # type: ignore[assignment]
    guarded.trusted_environment = env
    return guarded


def find_guarded_environment(env: Environment) -> GuardedEnvironment | None:
    """Return the GuardedEnvironment installed on env, if any."""
    if isinstance(env, GuardedEnvironment):
        return env
    if isinstance(env.loader, RoutingLoader):
        return env.loader.guarded
    return None


def install(
    env: Environment,
    config: GuardConfig | None = None,
    *,
    storage_path_fallback: Callable[[], str | None] | None = None,
    router: SourcePolicy | None = None,
) -> Environment:
    """
    Apply the sandbox to a host Jinja2 environment.

    Args:
        env: The host environment (its loader serves all templates)
        config: Guard configuration (defaults apply when omitted)
        storage_path_fallback: Lookup for the storage path when unset
        router: Custom source policy, used instead of the configured one

    Returns:
        The environment to render with: env itself in auto mode, the
        guarded environment in global mode

    Raises:
        StoragePathError: In auto mode, when no storage path resolves
    """
    if config is None:
        config = GuardConfig()

    if not config.enabled:
        if config.debug:
            _log.info("[ssti_guard] Disabled by configuration; sandbox not applied")
        return env

    existing = find_guarded_environment(env)
    if existing is not None:
        if config.debug:
            _log.info("[ssti_guard] Sandbox already installed; skipping")
        return env

    policy = PolicyReference(build_security_policy(config.policy))
    if router is None:
        router = build_source_router(config, storage_path_fallback)

    guarded = _guarded_twin(env, policy)
    if env.loader is not None:
        routing = RoutingLoader(env.loader, router, guarded, trusted=env)
        env.loader = routing
        guarded.loader = routing
    elif config.mode is SandboxMode.AUTO:
        _log.warning(
            "[ssti_guard] Environment has no loader; only guarded.from_string() is sandboxed"
        )

    if config.debug:
        _log.info(
            "[ssti_guard] Sandbox applied successfully (mode=%s, router=%r)",
            config.mode.value,
            router,
        )

    if config.mode is SandboxMode.GLOBAL:
        return guarded
    return env


def create_environment(
    config: GuardConfig | None = None,
    loader: BaseLoader | None = None,
    *,
    storage_path_fallback: Callable[[], str | None] | None = None,
    **options: Any,
) -> Environment:
    """
    Create a host environment with the sandbox installed.

    Extra keyword arguments are passed to jinja2.Environment.
    """
    env = Environment(loader=loader, **options)
    return install(env, config, storage_path_fallback=storage_path_fallback)
