"""
Schema definitions for Gatekeeper.

This module defines the Pydantic models used throughout Gatekeeper:
- PolicyDefinition/RbacConfig: What each role may do, loaded from YAML
- PolicyDecision: The result of an authorization check
- RoleAssignment: A (principal, role) row in the role store
- Nomination/Approval/NominationEvent: Top-role escalation records
- NominationOutcome: What nominate() and approve() report back

Design Decisions:
    - Configuration models are frozen and reject unknown keys
    - Role names are normalized to lowercase at the model boundary
    - Timestamps are timezone-aware UTC datetimes
"""

from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gatekeeper.errors import ConfigError


# =============================================================================
# Constants
# =============================================================================

TOP_ROLE = "superadmin"
BASELINE_ROLE = "user"

# Both the bootstrap cutoff and the number of distinct approvals required.
QUORUM = 2

DEFAULT_ROLES_CACHE_SECONDS = 30
MIN_ROLES_CACHE_SECONDS = 5

DEFAULT_TWO_MAN_ACTIONS = (
    "cashbox.cash_out",
    "accounting.adjust",
    "accounting.reconciliation_apply",
    "payouts.process",
    "invoices.cancel",
    "policies.role_define",
)


def normalize_role(role: str) -> str:
    """Normalize a role name for case-insensitive comparison."""
    return role.strip().lower()


def compose_key(resource: str, action: str) -> str:
    """
    Build the case-insensitive `resource.action` key.

    The policy catalog and the two-man registry must both use this function
    so that lookups and membership tests agree.
    """
    return f"{resource.strip()}.{action.strip()}".lower()


# =============================================================================
# Enums
# =============================================================================


class RoleStatus(str, Enum):
    """Status of a role assignment row."""

    ACTIVE = "active"
    REVOKED = "revoked"


class NominationStatus(str, Enum):
    """
    State of a top-role nomination.

    APPROVED and REJECTED are terminal.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not NominationStatus.PENDING


class ApprovalDecision(str, Enum):
    """An approver's decision on a nomination."""

    APPROVE = "approve"
    REJECT = "reject"

    @classmethod
    def coerce(cls, value: "ApprovalDecision | bool | str") -> "ApprovalDecision":
        """Accept an enum member, a bool (True = approve) or its string value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            return cls.APPROVE if value else cls.REJECT
        return cls(str(value).strip().lower())


class NominationEventType(str, Enum):
    """Kinds of entries in the append-only escalation audit trail."""

    NOMINATED = "nominated"
    BOOTSTRAP_GRANTED = "bootstrap_granted"
    APPROVAL_RECORDED = "approval_recorded"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUPERSEDED = "superseded"


# =============================================================================
# Policy Models
# =============================================================================


class PolicyDefinition(BaseModel):
    """
    Roles permitted to perform one resource.action.

    Attributes:
        resource: The object being governed (e.g., "cashbox")
        action: The operation on it (e.g., "cash_out")
        roles: Roles allowed to perform it (case-insensitive)
        scope: Optional constraints, constraint key -> allowed values
        description: Optional human-readable description
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    resource: str = Field(..., min_length=1, description="Governed resource")
    action: str = Field(..., min_length=1, description="Governed action")
    roles: list[str] = Field(
        default_factory=list,
        description="Roles permitted to perform the action",
    )
    scope: dict[str, list[str]] | None = Field(
        default=None,
        description="Scope constraints (e.g., {'categories': ['food']})",
    )
    description: str | None = Field(default=None, description="Description")

    @field_validator("resource", "action")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            msg = "must not be blank"
            raise ValueError(msg)
        return v.strip()

    @field_validator("roles")
    @classmethod
    def validate_roles(cls, v: list[str]) -> list[str]:
        """Lowercase and de-duplicate role names, dropping blanks."""
        seen: list[str] = []
        for role in v:
            normalized = normalize_role(role)
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen

    @property
    def key(self) -> str:
        return compose_key(self.resource, self.action)

    @property
    def allowed_roles(self) -> frozenset[str]:
        return frozenset(self.roles)


class RbacConfig(BaseModel):
    """
    Complete RBAC configuration.

    Attributes:
        roles_cache_seconds: TTL of the principal -> roles cache (floor 5)
        policies: Policy definitions; later entries win on duplicate keys
        two_man_actions: resource.action keys requiring dual control
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    roles_cache_seconds: int = Field(
        default=DEFAULT_ROLES_CACHE_SECONDS,
        description="Role cache TTL in seconds (values below 5 are raised to 5)",
    )
    policies: list[PolicyDefinition] = Field(
        default_factory=list,
        description="Policy definitions",
    )
    two_man_actions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TWO_MAN_ACTIONS),
        description="resource.action keys that require two-man approval",
    )

    @property
    def effective_cache_seconds(self) -> int:
        return max(MIN_ROLES_CACHE_SECONDS, self.roles_cache_seconds)


# =============================================================================
# Runtime Models
# =============================================================================


class PolicyDecision(BaseModel):
    """
    Result of an authorization check.

    Attributes:
        allowed: Whether the action is permitted
        reason: Human-readable explanation of the decision
        rule_matched: Which rule produced the decision
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    allowed: bool = Field(..., description="Whether the action is permitted")
    reason: str = Field(..., description="Explanation of the decision")
    rule_matched: str | None = Field(
        default=None,
        description="Which rule produced this decision",
    )

    @classmethod
    def allow(cls, reason: str, rule: str | None = None) -> "PolicyDecision":
        """Create an ALLOW decision."""
        return cls(allowed=True, reason=reason, rule_matched=rule)

    @classmethod
    def deny(cls, reason: str, rule: str | None = None) -> "PolicyDecision":
        """Create a DENY decision."""
        return cls(allowed=False, reason=reason, rule_matched=rule)


class RoleAssignment(BaseModel):
    """A (principal, role) row. At most one exists per pair."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal_id: str
    role: str
    status: RoleStatus
    created_at: datetime
    updated_at: datetime


class Nomination(BaseModel):
    """A proposal to grant the top role to a candidate."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    nomination_id: str
    candidate_id: str
    nominated_by: str
    status: NominationStatus
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    decided_at: datetime | None = None


class Approval(BaseModel):
    """One approver's decision on a nomination. Unique per approver."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    nomination_id: str
    approver_id: str
    decision: ApprovalDecision
    decided_at: datetime


class NominationEvent(BaseModel):
    """An append-only audit record of an escalation step."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    event_id: int
    nomination_id: str | None
    candidate_id: str
    actor_id: str
    event: NominationEventType
    detail: str | None = None
    created_at: datetime


class NominationOutcome(BaseModel):
    """
    What nominate() and approve() report.

    Attributes:
        status: Resulting nomination status
        bootstrap: True when the role was granted without a quorum
        approvals: Distinct approve decisions recorded so far
        nomination_id: Nomination row id (None for bootstrap grants)
        candidate_id: The nominated principal
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    status: NominationStatus
    bootstrap: bool = False
    approvals: int = Field(default=0, ge=0)
    nomination_id: str | None = None
    candidate_id: str

    @property
    def granted(self) -> bool:
        return self.status == NominationStatus.APPROVED


# =============================================================================
# YAML Loading Helpers
# =============================================================================


def load_config(path: Path | str) -> RbacConfig:
    """
    Load an RBAC configuration from a YAML file.

    Args:
        path: Path to the YAML file

    Returns:
        Validated RbacConfig object

    Raises:
        ConfigError: If the file is unreadable or doesn't match the schema
    """
    path = Path(path)
    try:
        with path.open() as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(
            path=str(path),
            message=f"Cannot read RBAC configuration {path}: {e}",
        ) from e
    return load_config_from_string(content, source=str(path))


def load_config_from_string(content: str, source: str = "<string>") -> RbacConfig:
    """Load an RBAC configuration from a YAML string."""
    try:
        data: Any = yaml.safe_load(content) or {}
        return RbacConfig.model_validate(data)
    except (yaml.YAMLError, ValidationError) as e:
        raise ConfigError(
            path=source,
            message=f"Invalid RBAC configuration {source}: {e}",
            suggestion="Check policies entries for resource, action and roles",
        ) from e
