"""
Origin-based routing between the trusted and the guarded environment.

RoutingLoader wraps the host's loader. For every template it fetches the
source, works out the template's origin (its filename, or its name when the
loader has no file behind it) and compiles it with:

    - the GuardedEnvironment, when the source policy says to sandbox it
    - the trusted host environment otherwise

Includes and imports go through the loader too, so a storage template
pulled into a theme layout is still sandboxed, and the other way around.
"""

import logging
from collections import ChainMap
from collections.abc import Callable, MutableMapping
from typing import Any

from jinja2 import BaseLoader, Template
from jinja2.environment import Environment
from jinja2.utils import internalcode

from ssti_guard.policy.source import SourcePolicy
from ssti_guard.sandbox.environment import GuardedEnvironment

_log = logging.getLogger("ssti_guard.security")


class RoutingLoader(BaseLoader):
    """
    Loader that picks the compiling environment by template origin.

    Attributes:
        loader: The host's original loader
        router: Decides whether an origin is sandboxed
        guarded: Environment used for sandboxed templates
        trusted: Environment used for everything else
    """

    def __init__(
        self,
        loader: BaseLoader,
        router: SourcePolicy,
        guarded: GuardedEnvironment,
        trusted: Environment | None = None,
    ) -> None:
        self.loader = loader
        self.router = router
        self.guarded = guarded
        self.trusted = trusted

    @property
    def has_source_access(self) -> bool:  # type: ignore[override]
        return self.loader.has_source_access

    def get_source(
        self,
        environment: Environment,
        template: str,
    ) -> tuple[str, str | None, Callable[[], bool] | None]:
        return self.loader.get_source(environment, template)

    def list_templates(self) -> list[str]:
        return self.loader.list_templates()

    def is_sandboxed(self, name: str, filename: str | None) -> bool:
        """Decide whether the template is compiled by the guarded environment."""
        return self.router.should_sandbox(filename or name)

    @internalcode
    def load(
        self,
        environment: Environment,
        name: str,
        globals: MutableMapping[str, Any] | None = None,
    ) -> Template:
        if globals is None:
            globals = {}

        source, filename, uptodate = self.get_source(environment, name)

        if self.is_sandboxed(name, filename):
            target: Environment = self.guarded
        elif self.trusted is not None:
            target = self.trusted
        else:
            target = environment
        _log.debug(
            "Loading %r (%s) in %s mode",
            name,
            filename or "no file",
            "sandboxed" if target is self.guarded else "trusted",
        )

        # Globals arrive layered over the requesting environment's; the
        # template must see the compiling environment's (e.g. safe range).
        if target is not environment:
            if isinstance(globals, ChainMap):
                globals = globals.maps[0]
            globals = target.make_globals(globals)

        # Sandboxed templates are always recompiled so the structural check
        # runs against the live policy.
        bcc = None if target is self.guarded else target.bytecode_cache
        code = None
        bucket = None
        if bcc is not None:
            bucket = bcc.get_bucket(target, name, filename, source)
            code = bucket.code

        if code is None:
            code = target.compile(source, name, filename)

        if bcc is not None and bucket is not None and bucket.code is None:
            bucket.code = code
            bcc.set_bucket(bucket)

        return target.template_class.from_code(target, code, globals, uptodate)
