"""
Endpoint guard: the thin seam between inbound operations and the engine.

An operation declares what it requires with @require_policy(resource, action).
EndpointGuard.protect() wraps it so that, before the operation body runs,
the guard extracts the already-authenticated principal from the inbound
request and asks the DecisionEngine. A missing principal or a deny
short-circuits with AuthorizationFailedError; nothing else happens here.

Usage:
    guard = EndpointGuard(engine, principal_resolver=lambda req: req.user_id)

    @guard.protect
    @require_policy("cashbox", "cash_out")
    def cash_out(request, amount):
        ...
"""

import functools
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from gatekeeper.errors import AuthorizationFailedError, InvalidArgumentError
from gatekeeper.policy import DecisionEngine

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

REQUIREMENTS_ATTR = "__gatekeeper_requirements__"


class GuardOutcome(str, Enum):
    """Result of guarding one inbound operation."""

    ALLOWED = "allowed"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class PolicyRequirement:
    """A declared (resource, action) requirement of an operation."""

    resource: str
    action: str

    def __post_init__(self) -> None:
        if not isinstance(self.resource, str) or not self.resource.strip():
            raise InvalidArgumentError(argument="resource", message="Resource must be provided")
        if not isinstance(self.action, str) or not self.action.strip():
            raise InvalidArgumentError(argument="action", message="Action must be provided")


def require_policy(resource: str, action: str) -> Callable[[F], F]:
    """
    Declare that an operation requires resource.action.

    May be stacked; every declared requirement must be allowed.
    """
    requirement = PolicyRequirement(resource, action)

    def decorator(func: F) -> F:
        declared = list(getattr(func, REQUIREMENTS_ATTR, ()))
        declared.append(requirement)
        setattr(func, REQUIREMENTS_ATTR, tuple(declared))
        return func

    return decorator


def declared_requirements(operation: Callable[..., Any]) -> tuple[PolicyRequirement, ...]:
    """Requirements declared on an operation (empty if none)."""
    return tuple(getattr(operation, REQUIREMENTS_ATTR, ()))


class EndpointGuard:
    """
    Authorizes inbound operations against their declared requirements.

    Attributes:
        engine: Decision engine to consult
        principal_resolver: Extracts the authenticated principal id from a
            request; returns None when there is none
        scope_resolver: Optionally extracts a scope context from a request
    """

    def __init__(
        self,
        engine: DecisionEngine,
        principal_resolver: Callable[[Any], str | None],
        scope_resolver: Callable[[Any], Mapping[str, str] | None] | None = None,
    ) -> None:
        self.engine = engine
        self.principal_resolver = principal_resolver
        self.scope_resolver = scope_resolver

    def check(
        self,
        request: Any,
        resource: str,
        action: str,
        scope_context: Mapping[str, str] | None = None,
    ) -> GuardOutcome:
        """Authorize one (resource, action) for the request's principal."""
        principal_id = self.principal_resolver(request)
        if not isinstance(principal_id, str) or not principal_id.strip():
            logger.warning(
                "No authenticated principal for %s.%s",
                resource,
                action,
                extra={"security_event": True, "resource": resource, "action": action},
            )
            return GuardOutcome.UNAUTHENTICATED

        if scope_context is None and self.scope_resolver is not None:
            scope_context = self.scope_resolver(request)

        if not self.engine.is_allowed(principal_id, resource, action, scope_context):
            logger.warning(
                "Denied %s.%s for %s",
                resource,
                action,
                principal_id,
                extra={
                    "security_event": True,
                    "resource": resource,
                    "action": action,
                    "principal_id": principal_id,
                },
            )
            return GuardOutcome.FORBIDDEN
        return GuardOutcome.ALLOWED

    def authorize(self, request: Any, operation: Callable[..., Any]) -> None:
        """
        Check every requirement declared on operation.

        Operations without declared requirements pass through.

        Raises:
            AuthorizationFailedError: On the first requirement that fails
        """
        for requirement in declared_requirements(operation):
            outcome = self.check(request, requirement.resource, requirement.action)
            if outcome is not GuardOutcome.ALLOWED:
                raise AuthorizationFailedError(
                    outcome=outcome.value,
                    resource=requirement.resource,
                    action=requirement.action,
                )

    def protect(self, operation: F) -> F:
        """Wrap an operation (whose first argument is the request) with authorization."""

        @functools.wraps(operation)
        def wrapper(request: Any, *args: Any, **kwargs: Any) -> Any:
            self.authorize(request, wrapper)
            return operation(request, *args, **kwargs)

        return wrapper  # type: ignore[return-value]

    def guard(self, resource: str, action: str) -> Callable[[F], F]:
        """Shorthand for protect(require_policy(resource, action)(operation))."""

        def decorator(operation: F) -> F:
            return self.protect(require_policy(resource, action)(operation))

        return decorator
