"""
Security policy module for SSTI Guard.

This module implements the core security model: deny-by-default allow-lists
for what a sandboxed template may use.

Key concepts:
    - PatternSet: Allowed tag/filter/function names ("*" allows all)
    - MemberMatcher: Allowed methods/properties per class, with wildcards
    - SecurityPolicy: The five checks the template engine calls
    - SourceRouter: Which templates are sandboxed at all

The policy is the security boundary of SSTI Guard. It must be:
    - Fail-closed: Anything not listed is denied
    - Predictable: Same inputs always produce same decisions
    - Immutable: Reconfiguration publishes a new policy
"""

from ssti_guard.policy.defaults import INCLUDE_DEFAULTS, merge_members, merge_names
from ssti_guard.policy.matcher import MemberMatcher, qualified_name, type_compatible
from ssti_guard.policy.patterns import (
    AnyPattern,
    Exact,
    Pattern,
    PatternSet,
    PrefixWildcard,
    compile_pattern,
)
from ssti_guard.policy.security import PolicyReference, SecurityPolicy
from ssti_guard.policy.source import SandboxAll, SourcePolicy, SourceRouter, normalize_path

__all__ = [
    "INCLUDE_DEFAULTS",
    "AnyPattern",
    "Exact",
    "MemberMatcher",
    "Pattern",
    "PatternSet",
    "PolicyReference",
    "PrefixWildcard",
    "SandboxAll",
    "SecurityPolicy",
    "SourcePolicy",
    "SourceRouter",
    "compile_pattern",
    "merge_members",
    "merge_names",
    "normalize_path",
    "qualified_name",
    "type_compatible",
]
