"""
Escalation Workflow for Gatekeeper.

Governs who may become a holder of the top-privilege role ("superadmin").

State machine (per candidate):

    NONE --nominate--> PENDING --approve x2--> APPROVED
                          |
                          +----reject x1----> REJECTED

APPROVED and REJECTED are terminal; a new nomination for the same
candidate replaces the terminal row (the audit trail keeps the history).

Paths:
    - Bootstrap: while fewer than QUORUM principals hold the top role there
      is no meaningful quorum, so nominate() grants the role immediately.
    - Quorum: otherwise the nomination waits for QUORUM distinct approve
      decisions; a single reject vetoes it.

Concurrency:
    nominate() and approve() each run as one single-writer transaction. The
    writer lock is taken before the first read, so the "count, then maybe
    promote" sequence cannot interleave with another approval: two racing
    approvals that would each see quorum are serialized, and only the first
    finds the nomination still PENDING.
"""

import logging

from gatekeeper.errors import InvalidArgumentError, NominationNotFoundError
from gatekeeper.roles import RoleDirectory
from gatekeeper.schema import (
    QUORUM,
    TOP_ROLE,
    Approval,
    ApprovalDecision,
    Nomination,
    NominationEvent,
    NominationEventType,
    NominationOutcome,
    NominationStatus,
    RoleStatus,
)
from gatekeeper.store import GatekeeperDB

logger = logging.getLogger(__name__)


class EscalationWorkflow:
    """
    Nomination/approval workflow for the top-privilege role.

    Usage:
        workflow = EscalationWorkflow(db, directory=directory)
        outcome = workflow.nominate("carol", nominator_id="alice")
        if outcome.status is NominationStatus.PENDING:
            workflow.approve(outcome.nomination_id, "alice", True)
            workflow.approve(outcome.nomination_id, "bob", True)

    Attributes:
        db: Shared role/escalation store
        directory: Role cache to invalidate after a grant (optional)
        role: Name of the role being governed
    """

    def __init__(
        self,
        db: GatekeeperDB,
        directory: RoleDirectory | None = None,
        role: str = TOP_ROLE,
    ) -> None:
        self.db = db
        self.directory = directory
        self.role = role

    # =========================================================================
    # Commands
    # =========================================================================

    def nominate(
        self,
        candidate_id: str,
        nominator_id: str,
        timeout: float | None = None,
    ) -> NominationOutcome:
        """
        Nominate a candidate for the top role.

        A bootstrap grant also closes any nomination still open for the
        candidate, so later approvals on it are no-ops.

        Args:
            candidate_id: Principal to be granted the role
            nominator_id: Principal making the nomination
            timeout: Seconds to wait for the store

        Returns:
            APPROVED with bootstrap=True when the role was granted outright,
            otherwise the PENDING nomination

        Raises:
            InvalidArgumentError: If either id is blank
            StorageError: If the store fails; nothing is written
        """
        _require_id(candidate_id, "candidate_id")
        _require_id(nominator_id, "nominator_id")

        with self.db.transaction(timeout):
            holders = self.db.count_active_holders(self.role)

            if holders < QUORUM:
                self._close_pending(candidate_id, nominator_id)
                self._grant(candidate_id)
                self.db.record_event(
                    NominationEventType.BOOTSTRAP_GRANTED,
                    candidate_id=candidate_id,
                    actor_id=nominator_id,
                    detail=f"active holders before grant: {holders}",
                )
                outcome = NominationOutcome(
                    status=NominationStatus.APPROVED,
                    bootstrap=True,
                    approvals=0,
                    candidate_id=candidate_id,
                )
            else:
                outcome = self._open_nomination(candidate_id, nominator_id)

        if outcome.bootstrap:
            self._invalidate(candidate_id)
            logger.info(
                "Bootstrap grant of %s to %s by %s",
                self.role,
                candidate_id,
                nominator_id,
                extra={"candidate_id": candidate_id, "nominator_id": nominator_id},
            )
        return outcome

    def approve(
        self,
        nomination_id: str,
        approver_id: str,
        decision: ApprovalDecision | bool | str,
        timeout: float | None = None,
    ) -> NominationOutcome:
        """
        Record an approver's decision and apply the quorum rules.

        Args:
            nomination_id: Nomination being decided
            approver_id: Principal casting the decision
            decision: approve/reject (True means approve)
            timeout: Seconds to wait for the store

        Returns:
            The resulting state. Decisions on a terminal nomination are
            ignored and the unchanged state is returned.

        Raises:
            NominationNotFoundError: If nomination_id does not exist
            InvalidArgumentError: For blank ids, an unknown decision value, or
                a candidate approving their own nomination
            StorageError: If the store fails; nothing is written
        """
        _require_id(nomination_id, "nomination_id")
        _require_id(approver_id, "approver_id")
        try:
            verdict = ApprovalDecision.coerce(decision)
        except ValueError as e:
            raise InvalidArgumentError(
                argument="decision",
                message=f"Unknown approval decision: {decision!r}",
            ) from e

        with self.db.transaction(timeout):
            nomination = self.db.get_nomination(nomination_id)
            if nomination is None:
                raise NominationNotFoundError(nomination_id=nomination_id)

            if nomination.status.is_terminal:
                logger.info(
                    "Ignoring %s on %s nomination %s",
                    verdict.value,
                    nomination.status.value,
                    nomination_id,
                    extra={"nomination_id": nomination_id, "approver_id": approver_id},
                )
                return self._outcome(nomination, self.db.count_approvals(nomination_id))

            if approver_id == nomination.candidate_id:
                raise InvalidArgumentError(
                    argument="approver_id",
                    message="A candidate cannot decide on their own nomination",
                )

            self.db.upsert_approval(nomination_id, approver_id, verdict)
            self.db.record_event(
                NominationEventType.APPROVAL_RECORDED,
                candidate_id=nomination.candidate_id,
                actor_id=approver_id,
                nomination_id=nomination_id,
                detail=verdict.value,
            )

            if verdict is ApprovalDecision.REJECT:
                self.db.set_nomination_status(nomination_id, NominationStatus.REJECTED)
                self.db.record_event(
                    NominationEventType.REJECTED,
                    candidate_id=nomination.candidate_id,
                    actor_id=approver_id,
                    nomination_id=nomination_id,
                )
                approvals = self.db.count_approvals(nomination_id)
                status = NominationStatus.REJECTED
            else:
                approvals = self.db.count_approvals(nomination_id)
                status = NominationStatus.PENDING
                if approvals >= QUORUM:
                    self.db.set_nomination_status(nomination_id, NominationStatus.APPROVED)
                    self._grant(nomination.candidate_id)
                    self.db.record_event(
                        NominationEventType.APPROVED,
                        candidate_id=nomination.candidate_id,
                        actor_id=approver_id,
                        nomination_id=nomination_id,
                        detail=f"approvals: {approvals}",
                    )
                    status = NominationStatus.APPROVED

        if status is NominationStatus.APPROVED:
            self._invalidate(nomination.candidate_id)
        logger.info(
            "Nomination %s for %s is %s (%d/%d approvals)",
            nomination_id,
            nomination.candidate_id,
            status.value,
            approvals,
            QUORUM,
            extra={
                "nomination_id": nomination_id,
                "candidate_id": nomination.candidate_id,
                "approver_id": approver_id,
                "status": status.value,
            },
        )
        return NominationOutcome(
            status=status,
            approvals=approvals,
            nomination_id=nomination_id,
            candidate_id=nomination.candidate_id,
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_nomination(self, nomination_id: str, timeout: float | None = None) -> Nomination | None:
        return self.db.get_nomination(nomination_id, timeout=timeout)

    def list_nominations(
        self,
        status: NominationStatus | None = None,
        timeout: float | None = None,
    ) -> list[Nomination]:
        return self.db.list_nominations(status=status, timeout=timeout)

    def list_approvals(self, nomination_id: str, timeout: float | None = None) -> list[Approval]:
        return self.db.list_approvals(nomination_id, timeout=timeout)

    def history(self, candidate_id: str, timeout: float | None = None) -> list[NominationEvent]:
        """Full escalation audit trail for a candidate, oldest first."""
        return self.db.list_events(candidate_id=candidate_id, timeout=timeout)

    def active_holders(self, timeout: float | None = None) -> list[str]:
        assignments = self.db.list_role_assignments(role=self.role, timeout=timeout)
        return [a.principal_id for a in assignments if a.status is RoleStatus.ACTIVE]

    # =========================================================================
    # Internals
    # =========================================================================

    def _open_nomination(self, candidate_id: str, nominator_id: str) -> NominationOutcome:
        """Create a PENDING nomination unless one is already open."""
        current = self.db.get_nomination_for_candidate(candidate_id)
        if current is not None and current.status is NominationStatus.PENDING:
            return self._outcome(current, self.db.count_approvals(current.nomination_id))

        if current is not None:
            self.db.record_event(
                NominationEventType.SUPERSEDED,
                candidate_id=candidate_id,
                actor_id=nominator_id,
                nomination_id=current.nomination_id,
                detail=f"previous status: {current.status.value}",
            )

        nomination = self.db.insert_nomination(candidate_id, nominator_id)
        self.db.record_event(
            NominationEventType.NOMINATED,
            candidate_id=candidate_id,
            actor_id=nominator_id,
            nomination_id=nomination.nomination_id,
        )
        logger.info(
            "Opened nomination %s for %s by %s",
            nomination.nomination_id,
            candidate_id,
            nominator_id,
            extra={
                "nomination_id": nomination.nomination_id,
                "candidate_id": candidate_id,
                "nominator_id": nominator_id,
            },
        )
        return self._outcome(nomination, 0)

    def _close_pending(self, candidate_id: str, nominator_id: str) -> None:
        """Mark an open nomination APPROVED when a bootstrap grant overtakes it."""
        current = self.db.get_nomination_for_candidate(candidate_id)
        if current is None or current.status is not NominationStatus.PENDING:
            return
        self.db.set_nomination_status(current.nomination_id, NominationStatus.APPROVED)
        self.db.record_event(
            NominationEventType.SUPERSEDED,
            candidate_id=candidate_id,
            actor_id=nominator_id,
            nomination_id=current.nomination_id,
            detail="closed by bootstrap grant",
        )

    def _grant(self, principal_id: str) -> None:
        """Upsert the role as active and bump the claims version (inside a transaction)."""
        self.db.upsert_role(principal_id, self.role, RoleStatus.ACTIVE)
        self.db.bump_claims_version(principal_id)

    def _invalidate(self, principal_id: str) -> None:
        if self.directory is not None:
            self.directory.invalidate(principal_id)

    @staticmethod
    def _outcome(nomination: Nomination, approvals: int) -> NominationOutcome:
        return NominationOutcome(
            status=nomination.status,
            approvals=approvals,
            nomination_id=nomination.nomination_id,
            candidate_id=nomination.candidate_id,
        )


def _require_id(value: object, argument: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(argument=argument, message=f"{argument} is required")
