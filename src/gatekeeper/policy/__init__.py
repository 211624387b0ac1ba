"""
Policy module for Gatekeeper.

This module implements the deny-by-default authorization model.

Key concepts:
    - PolicyCatalog: resource.action -> allowed roles, atomically reloadable
    - TwoManRegistry: resource.action keys that need dual control
    - ScopeEvaluator: pluggable checks for per-policy scope constraints
    - DecisionEngine: combines the above with the RoleDirectory

The decision engine is the security boundary. It must be:
    - Fail-closed: missing policies and bad input deny
    - Predictable: same inputs always produce same decisions
    - Auditable: all decisions carry reasons
"""

from gatekeeper.policy.catalog import PolicyCatalog, TwoManRegistry
from gatekeeper.policy.engine import DecisionEngine
from gatekeeper.policy.scope import ScopeEvaluator, allow_list

__all__ = [
    "DecisionEngine",
    "PolicyCatalog",
    "ScopeEvaluator",
    "TwoManRegistry",
    "allow_list",
]
