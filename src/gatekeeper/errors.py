"""
Exception hierarchy for Gatekeeper.

All Gatekeeper exceptions inherit from GatekeeperError, allowing callers to
catch every Gatekeeper-specific exception with a single except clause.

Exception Categories:
    - PolicyDeniedError: Principal is not allowed to perform resource.action
    - AuthorizationFailedError: A guarded operation was short-circuited
    - InvalidArgumentError: Programmer error (blank ids, self-approval)
    - NominationNotFoundError: approve() called with an unknown nomination
    - ConfigError: RBAC configuration could not be loaded
    - StorageError: Backing store operation failed (retryable)

Denials are normally returned as PolicyDecision values. Only callers that
ask for short-circuit-by-exception semantics (ensure_allowed, the endpoint
guard) see PolicyDeniedError or AuthorizationFailedError.
"""

from dataclasses import dataclass, field
from typing import Any


# =============================================================================
# Error Codes
# =============================================================================

# Authorization errors: 1xxx
ERROR_POLICY_DENIED = 1001
ERROR_AUTHORIZATION_FAILED = 1002

# Argument errors: 2xxx
ERROR_INVALID_ARGUMENT = 2001

# Escalation errors: 3xxx
ERROR_NOMINATION_NOT_FOUND = 3001

# Configuration errors: 4xxx
ERROR_CONFIG_INVALID = 4001

# Storage errors: 5xxx
ERROR_STORAGE_CONNECTION = 5001
ERROR_STORAGE_WRITE = 5002
ERROR_STORAGE_READ = 5003
ERROR_STORAGE_TIMEOUT = 5004


# =============================================================================
# Base Exception
# =============================================================================


@dataclass
class GatekeeperError(Exception):
    """
    Base exception for all Gatekeeper errors.

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
# Authorization Errors
# =============================================================================


@dataclass
class PolicyDeniedError(GatekeeperError):
    """
    Raised by ensure_allowed() when the decision is a deny.

    Attributes:
        resource: Resource that was requested
        action: Action that was requested
        reason: Why the decision engine denied the request
    """

    resource: str = ""
    action: str = ""
    reason: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Policy denied for {self.resource}.{self.action}"
        if self.code == 0:
            self.code = ERROR_POLICY_DENIED
        self.context.update({
            "resource": self.resource,
            "action": self.action,
            "reason": self.reason,
        })


@dataclass
class AuthorizationFailedError(GatekeeperError):
    """
    Raised by the endpoint guard before a protected operation runs.

    Attributes:
        outcome: "unauthenticated" (no principal) or "forbidden" (denied)
        resource: Declared resource of the operation
        action: Declared action of the operation
    """

    outcome: str = ""
    resource: str = ""
    action: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Authorization failed ({self.outcome}) for "
                f"{self.resource}.{self.action}"
            )
        if self.code == 0:
            self.code = ERROR_AUTHORIZATION_FAILED
        self.context.update({
            "outcome": self.outcome,
            "resource": self.resource,
            "action": self.action,
        })


# =============================================================================
# Argument Errors
# =============================================================================


@dataclass
class InvalidArgumentError(GatekeeperError, ValueError):
    """Raised for programmer errors such as blank resource or principal ids."""

    argument: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid argument: {self.argument}"
        if self.code == 0:
            self.code = ERROR_INVALID_ARGUMENT
        self.context["argument"] = self.argument


# =============================================================================
# Escalation Errors
# =============================================================================


@dataclass
class NominationNotFoundError(GatekeeperError, LookupError):
    """Raised when approve() references a nomination that does not exist."""

    nomination_id: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Nomination not found: {self.nomination_id}"
        if self.code == 0:
            self.code = ERROR_NOMINATION_NOT_FOUND
        if not self.suggestion:
            self.suggestion = (
                "List open nominations with `gatekeeper nominations --status pending`"
            )
        self.context["nomination_id"] = self.nomination_id


# =============================================================================
# Configuration Errors
# =============================================================================


@dataclass
class ConfigError(GatekeeperError):
    """Raised when the RBAC configuration cannot be read or validated."""

    path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Invalid RBAC configuration: {self.path}"
        if self.code == 0:
            self.code = ERROR_CONFIG_INVALID
        self.context["path"] = self.path


# =============================================================================
# Storage Errors
# =============================================================================


@dataclass
class StorageError(GatekeeperError):
    """
    Base class for storage/database errors.

    Storage failures abort the surrounding transaction; nothing written
    inside it survives. They are safe to retry.

    Attributes:
        operation: The operation that failed (e.g., "approve", "fetch_roles")
        retryable: Whether the caller may retry the operation as a whole
    """

    operation: str = ""
    retryable: bool = True

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        self.context.update({
            "operation": self.operation,
            "retryable": self.retryable,
        })


@dataclass
class StorageConnectionError(StorageError):
    """Raised when database connection fails."""

    db_path: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Failed to connect to database: {self.db_path}"
        if self.code == 0:
            self.code = ERROR_STORAGE_CONNECTION
        if not self.suggestion:
            self.suggestion = "Check that the database path is valid and writable"
        super().__post_init__()
        self.context["db_path"] = self.db_path


@dataclass
class StorageWriteError(StorageError):
    """Raised when a write operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database write failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_WRITE
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageReadError(StorageError):
    """Raised when a read operation fails."""

    underlying_error: str = ""

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = f"Database read failed: {self.underlying_error}"
        if self.code == 0:
            self.code = ERROR_STORAGE_READ
        super().__post_init__()
        self.context["underlying_error"] = self.underlying_error


@dataclass
class StorageTimeoutError(StorageError):
    """Raised when the store could not be acquired within the caller's timeout."""

    timeout_seconds: float = 0.0

    def __post_init__(self) -> None:
        """Set defaults after dataclass init."""
        if not self.message:
            self.message = (
                f"Timed out after {self.timeout_seconds}s waiting for the store"
            )
        if self.code == 0:
            self.code = ERROR_STORAGE_TIMEOUT
        if not self.suggestion:
            self.suggestion = "Retry the operation or raise the timeout"
        super().__post_init__()
        self.context["timeout_seconds"] = self.timeout_seconds
