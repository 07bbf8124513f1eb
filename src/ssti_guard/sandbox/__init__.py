"""
Jinja2 integration for SSTI Guard.

The sandbox module connects the security policy to Jinja2:
    - GuardedEnvironment: compiles and renders sandboxed templates
    - RoutingLoader: sends each template to the guarded or trusted
      environment based on where it came from
"""

from ssti_guard.sandbox.environment import GuardedEnvironment, collect_references
from ssti_guard.sandbox.loader import RoutingLoader

__all__ = [
    "GuardedEnvironment",
    "RoutingLoader",
    "collect_references",
]
