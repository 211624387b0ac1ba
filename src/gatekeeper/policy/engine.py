"""
Decision Engine for Gatekeeper.

The Decision Engine answers one question: may this already-authenticated
principal perform resource.action (within this scope)?

Design Principles:
    - Deny-by-default: a resource.action with no policy is always denied
    - Fail-closed: invalid principals and unknown scope constraints deny
    - Predictable: same catalog, roles and context give the same decision
    - Auditable: every decision carries a reason and the rule that produced it

How it works:
    1. Reject an empty or non-string principal id
    2. Look up the policy for resource.action in the PolicyCatalog
    3. Resolve the principal's roles through the RoleDirectory
    4. Allow iff a role intersects the policy's roles and the scope
       constraints (if any) accept the scope context

Two-man routing is a separate, role-independent question answered by
requires_two_man_approval().
"""

import logging
from collections.abc import Mapping

from gatekeeper.errors import PolicyDeniedError
from gatekeeper.policy.catalog import PolicyCatalog, TwoManRegistry
from gatekeeper.policy.scope import ScopeEvaluator
from gatekeeper.roles import RoleDirectory
from gatekeeper.schema import PolicyDecision, compose_key

logger = logging.getLogger(__name__)


class DecisionEngine:
    """
    Central authorization evaluator.

    Usage:
        engine = DecisionEngine(catalog, directory, two_man=registry)
        if engine.is_allowed("alice", "cashbox", "cash_out"):
            ...
        engine.ensure_allowed("alice", "cashbox", "cash_out")  # raises on deny

    Attributes:
        catalog: Active policy definitions
        directory: Principal -> roles resolver
        two_man: Dual-control action set
        scopes: Scope constraint strategies
    """

    def __init__(
        self,
        catalog: PolicyCatalog,
        directory: RoleDirectory,
        two_man: TwoManRegistry | None = None,
        scopes: ScopeEvaluator | None = None,
    ) -> None:
        self.catalog = catalog
        self.directory = directory
        self.two_man = two_man if two_man is not None else TwoManRegistry()
        self.scopes = scopes if scopes is not None else ScopeEvaluator()

    def evaluate(
        self,
        principal_id: str,
        resource: str,
        action: str,
        scope_context: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> PolicyDecision:
        """
        Evaluate a request and explain the outcome.

        Args:
            principal_id: Already-authenticated principal id
            resource: Resource name (case-insensitive)
            action: Action name (case-insensitive)
            scope_context: Optional attributes checked against scope constraints
            timeout: Seconds to wait for the role store on a cache miss

        Returns:
            PolicyDecision indicating allow/deny with reason
        """
        if not isinstance(principal_id, str) or not principal_id.strip():
            return PolicyDecision.deny("Missing or invalid principal id", rule="invalid_principal")

        policy = self.catalog.lookup(resource, action)
        if policy is None:
            logger.warning(
                "No policy defined for %s.%s; denying",
                resource,
                action,
                extra={"event": "policy_missing", "resource": resource, "action": action},
            )
            return PolicyDecision.deny(
                f"No policy defined for {resource}.{action}",
                rule="deny_by_default",
            )

        roles = self.directory.resolve_roles(principal_id, timeout=timeout)
        matched = roles & policy.allowed_roles
        if not matched:
            logger.info(
                "Policy denied %s.%s for %s (roles: %s)",
                resource,
                action,
                principal_id,
                ", ".join(sorted(roles)),
                extra={
                    "event": "policy_denied",
                    "resource": resource,
                    "action": action,
                    "principal_id": principal_id,
                    "roles": sorted(roles),
                },
            )
            return PolicyDecision.deny(
                f"None of roles [{', '.join(sorted(roles))}] may perform {policy.key}",
                rule=policy.key,
            )

        if policy.scope and not self.scopes.evaluate(policy.scope, scope_context):
            logger.info(
                "Scope denied %s.%s for %s",
                resource,
                action,
                principal_id,
                extra={
                    "event": "scope_denied",
                    "resource": resource,
                    "action": action,
                    "principal_id": principal_id,
                },
            )
            return PolicyDecision.deny(
                f"Scope context does not satisfy constraints of {policy.key}",
                rule=f"{policy.key}:scope",
            )

        return PolicyDecision.allow(
            f"Role {', '.join(sorted(matched))} may perform {policy.key}",
            rule=policy.key,
        )

    def is_allowed(
        self,
        principal_id: str,
        resource: str,
        action: str,
        scope_context: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> bool:
        """Whether the principal may perform resource.action. Never raises on deny."""
        return self.evaluate(principal_id, resource, action, scope_context, timeout).allowed

    def ensure_allowed(
        self,
        principal_id: str,
        resource: str,
        action: str,
        scope_context: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> PolicyDecision:
        """
        Same evaluation as is_allowed(), but a deny raises.

        Returns:
            The ALLOW decision

        Raises:
            PolicyDeniedError: If the decision is a deny
        """
        decision = self.evaluate(principal_id, resource, action, scope_context, timeout)
        if not decision.allowed:
            raise PolicyDeniedError(
                resource=resource,
                action=action,
                reason=decision.reason,
            )
        return decision

    def requires_two_man_approval(self, resource: str, action: str) -> bool:
        """
        Whether resource.action must go through dual control.

        Raises:
            InvalidArgumentError: If resource or action is blank
        """
        return self.two_man.requires_approval(resource, action)

    def describe(self, resource: str, action: str) -> dict[str, object]:
        """Summarize how resource.action is governed (for tooling)."""
        policy = self.catalog.lookup(resource, action)
        return {
            "key": compose_key(resource, action),
            "defined": policy is not None,
            "roles": list(policy.roles) if policy else [],
            "scope": dict(policy.scope) if policy and policy.scope else None,
            "description": policy.description if policy else None,
            "two_man": self.two_man.requires_approval(resource, action),
        }
