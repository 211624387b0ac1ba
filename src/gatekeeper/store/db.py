"""
SQLite storage for Gatekeeper.

This module persists role assignments, claims versions and the top-role
escalation records (nominations, approvals and their audit trail) in a
single SQLite database file.

Design Principles:
    - Upsert-only: (principal, role), (candidate) and (nomination, approver)
      each have exactly one authoritative row
    - Single writer: every transaction starts with BEGIN IMMEDIATE, so the
      writer lock is held from the first read to commit
    - Atomic: a failed commit leaves no partial state behind
    - Bounded waits: every call takes an optional timeout

Tables:
    - role_assignments: (principal_id, role) -> status
    - claims_versions: principal_id -> monotonically increasing version
    - nominations: one row per candidate, current escalation state
    - approvals: one row per (nomination, approver)
    - nomination_events: append-only escalation audit trail
"""

import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

from gatekeeper.errors import (
    StorageConnectionError,
    StorageReadError,
    StorageTimeoutError,
    StorageWriteError,
)
from gatekeeper.schema import (
    Approval,
    ApprovalDecision,
    Nomination,
    NominationEvent,
    NominationEventType,
    NominationStatus,
    RoleAssignment,
    RoleStatus,
    normalize_role,
)

# Schema version for migrations
SCHEMA_VERSION = 1

DEFAULT_TIMEOUT_SECONDS = 5.0

# SQL for creating tables
CREATE_TABLES_SQL = """
-- Schema version tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY,
    applied_at TEXT NOT NULL
);

-- Role assignments: at most one row per (principal, role)
CREATE TABLE IF NOT EXISTS role_assignments (
    principal_id TEXT NOT NULL,
    role TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (principal_id, role)
);

-- Claims versions: read by token issuance to detect stale tokens
CREATE TABLE IF NOT EXISTS claims_versions (
    principal_id TEXT PRIMARY KEY,
    version INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);

-- Nominations: at most one row (and so one PENDING) per candidate
CREATE TABLE IF NOT EXISTS nominations (
    nomination_id TEXT PRIMARY KEY,
    candidate_id TEXT NOT NULL UNIQUE,
    nominated_by TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'PENDING',
    created_at TEXT NOT NULL,
    decided_at TEXT
);

-- Approvals: one decision per (nomination, approver)
CREATE TABLE IF NOT EXISTS approvals (
    nomination_id TEXT NOT NULL,
    approver_id TEXT NOT NULL,
    decision TEXT NOT NULL,
    decided_at TEXT NOT NULL,
    PRIMARY KEY (nomination_id, approver_id),
    FOREIGN KEY (nomination_id) REFERENCES nominations(nomination_id)
);

-- Escalation audit trail: append-only
CREATE TABLE IF NOT EXISTS nomination_events (
    event_id INTEGER PRIMARY KEY AUTOINCREMENT,
    nomination_id TEXT,
    candidate_id TEXT NOT NULL,
    actor_id TEXT NOT NULL,
    event TEXT NOT NULL,
    detail TEXT,
    created_at TEXT NOT NULL
);

-- Indexes for common queries
CREATE INDEX IF NOT EXISTS idx_role_assignments_role ON role_assignments(role, status);
CREATE INDEX IF NOT EXISTS idx_nominations_status ON nominations(status);
CREATE INDEX IF NOT EXISTS idx_nomination_events_candidate ON nomination_events(candidate_id);
"""


def generate_id() -> str:
    """Generate a unique ID for nominations."""
    return str(uuid.uuid4())[:8]


def now_iso() -> str:
    """Get current UTC time in ISO format."""
    return datetime.now(UTC).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class GatekeeperDB:
    """
    SQLite database for Gatekeeper storage.

    The connection runs in autocommit mode and every write happens inside
    transaction(), which opens with BEGIN IMMEDIATE. Combined with an
    in-process re-entrant lock, at most one writer (thread or process) is
    inside a transaction at a time.

    Usage:
        db = GatekeeperDB("gatekeeper.db")
        db.grant_role("alice", "admin")
        with db.transaction():
            count = db.count_active_holders("superadmin")
            ...
        db.close()

    Or use as context manager:
        with GatekeeperDB("gatekeeper.db") as db:
            ...
    """

    def __init__(
        self,
        db_path: str | Path,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        """
        Initialize the database connection.

        Args:
            db_path: Path to the SQLite database file.
                     Will be created if it doesn't exist.
            timeout: Default seconds to wait for the writer lock
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0
        self._connect()
        self._init_schema()

    def _connect(self) -> None:
        """Establish database connection."""
        try:
            self._conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.timeout,
                isolation_level=None,
                check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise StorageConnectionError(
                db_path=str(self.db_path),
                operation="connect",
                message=f"Failed to connect to database: {e}",
            ) from e

    def _init_schema(self) -> None:
        """Initialize database schema if needed."""
        try:
            with self.transaction():
                for statement in CREATE_TABLES_SQL.split(";"):
                    if statement.strip():
                        self._conn.execute(statement)
                row = self._conn.execute(
                    "SELECT version FROM schema_version ORDER BY version DESC LIMIT 1"
                ).fetchone()
                if row is None:
                    self._conn.execute(
                        "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                        (SCHEMA_VERSION, now_iso()),
                    )
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation="init_schema",
                underlying_error=str(e),
            ) from e

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self, timeout: float | None = None) -> Generator[None, None, None]:
        """
        Run the enclosed block as one write transaction.

        Nested use joins the outer transaction. Any exception rolls back
        everything written since the outermost BEGIN.

        Args:
            timeout: Seconds to wait for the writer lock (default: db timeout)

        Raises:
            StorageTimeoutError: If the lock could not be acquired in time
            StorageWriteError: If BEGIN or COMMIT fails
        """
        wait = self.timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=wait):
            raise StorageTimeoutError(operation="transaction", timeout_seconds=wait)
        try:
            if self._depth > 0:
                self._depth += 1
                try:
                    yield
                finally:
                    self._depth -= 1
                return

            try:
                self._conn.execute(f"PRAGMA busy_timeout = {int(wait * 1000)}")
                self._conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                if "locked" in str(e) or "busy" in str(e):
                    raise StorageTimeoutError(
                        operation="transaction",
                        timeout_seconds=wait,
                    ) from e
                raise StorageWriteError(
                    operation="begin",
                    underlying_error=str(e),
                ) from e

            self._depth = 1
            try:
                yield
            except BaseException:
                self._rollback()
                raise
            else:
                try:
                    self._conn.execute("COMMIT")
                except sqlite3.Error as e:
                    self._rollback()
                    raise StorageWriteError(
                        operation="commit",
                        underlying_error=str(e),
                    ) from e
            finally:
                self._depth = 0
        finally:
            self._lock.release()

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")

    @contextmanager
    def _reading(self, operation: str, timeout: float | None) -> Generator[sqlite3.Connection, None, None]:
        """Serialize a read on the shared connection and wrap sqlite errors."""
        wait = self.timeout if timeout is None else timeout
        if not self._lock.acquire(timeout=wait):
            raise StorageTimeoutError(operation=operation, timeout_seconds=wait)
        try:
            yield self._conn
        except sqlite3.Error as e:
            raise StorageReadError(
                operation=operation,
                underlying_error=str(e),
            ) from e
        finally:
            self._lock.release()

    def _execute(self, operation: str, sql: str, params: tuple[Any, ...]) -> sqlite3.Cursor:
        """Execute a statement inside the current transaction."""
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageWriteError(
                operation=operation,
                underlying_error=str(e),
            ) from e

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "GatekeeperDB":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()

    # =========================================================================
    # Role Assignment Operations
    # =========================================================================

    def fetch_roles(self, principal_id: str, timeout: float | None = None) -> list[str]:
        """
        Get the active role names assigned to a principal.

        Args:
            principal_id: The principal to look up
            timeout: Seconds to wait for the store

        Returns:
            Role names (lowercase); empty if the principal has no active rows
        """
        with self._reading("fetch_roles", timeout) as conn:
            cursor = conn.execute(
                """
                SELECT role FROM role_assignments
                WHERE principal_id = ? AND status = ?
                ORDER BY role
                """,
                (principal_id, RoleStatus.ACTIVE.value),
            )
            return [row["role"] for row in cursor]

    def upsert_role(self, principal_id: str, role: str, status: RoleStatus) -> bool:
        """
        Insert or update the single (principal, role) row.

        Must be called inside transaction().

        Returns:
            True if the stored status changed (or the row was created)
        """
        role = normalize_role(role)
        row = self._execute(
            "upsert_role",
            "SELECT status FROM role_assignments WHERE principal_id = ? AND role = ?",
            (principal_id, role),
        ).fetchone()
        if row is not None and row["status"] == status.value:
            return False
        if row is None and status == RoleStatus.REVOKED:
            return False

        ts = now_iso()
        self._execute(
            "upsert_role",
            """
            INSERT INTO role_assignments (principal_id, role, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (principal_id, role)
            DO UPDATE SET status = excluded.status, updated_at = excluded.updated_at
            """,
            (principal_id, role, status.value, ts, ts),
        )
        return True

    def bump_claims_version(self, principal_id: str) -> int:
        """
        Increment the principal's claims version (starting at 1).

        Must be called inside transaction().

        Returns:
            The new version
        """
        self._execute(
            "bump_claims_version",
            """
            INSERT INTO claims_versions (principal_id, version, updated_at)
            VALUES (?, 1, ?)
            ON CONFLICT (principal_id)
            DO UPDATE SET version = claims_versions.version + 1,
                          updated_at = excluded.updated_at
            """,
            (principal_id, now_iso()),
        )
        row = self._execute(
            "bump_claims_version",
            "SELECT version FROM claims_versions WHERE principal_id = ?",
            (principal_id,),
        ).fetchone()
        return int(row["version"])

    def get_claims_version(self, principal_id: str, timeout: float | None = None) -> int:
        """Get the current claims version for a principal (0 if never changed)."""
        with self._reading("get_claims_version", timeout) as conn:
            row = conn.execute(
                "SELECT version FROM claims_versions WHERE principal_id = ?",
                (principal_id,),
            ).fetchone()
            return int(row["version"]) if row else 0

    def grant_role(self, principal_id: str, role: str, timeout: float | None = None) -> bool:
        """
        Grant a role (idempotent) and bump the claims version on change.

        Returns:
            True if the assignment changed
        """
        with self.transaction(timeout):
            changed = self.upsert_role(principal_id, role, RoleStatus.ACTIVE)
            if changed:
                self.bump_claims_version(principal_id)
            return changed

    def revoke_role(self, principal_id: str, role: str, timeout: float | None = None) -> bool:
        """
        Revoke a role (idempotent) and bump the claims version on change.

        Returns:
            True if an active assignment was revoked
        """
        with self.transaction(timeout):
            changed = self.upsert_role(principal_id, role, RoleStatus.REVOKED)
            if changed:
                self.bump_claims_version(principal_id)
            return changed

    def count_active_holders(self, role: str, timeout: float | None = None) -> int:
        """Count principals holding a role with status active."""
        with self._reading("count_active_holders", timeout) as conn:
            row = conn.execute(
                """
                SELECT COUNT(DISTINCT principal_id) AS count FROM role_assignments
                WHERE role = ? AND status = ?
                """,
                (normalize_role(role), RoleStatus.ACTIVE.value),
            ).fetchone()
            return int(row["count"])

    def list_role_assignments(
        self,
        principal_id: str | None = None,
        role: str | None = None,
        timeout: float | None = None,
    ) -> list[RoleAssignment]:
        """
        List role assignment rows, optionally filtered.

        Args:
            principal_id: Only rows for this principal
            role: Only rows for this role

        Returns:
            RoleAssignment objects ordered by principal and role
        """
        clauses: list[str] = []
        params: list[Any] = []
        if principal_id is not None:
            clauses.append("principal_id = ?")
            params.append(principal_id)
        if role is not None:
            clauses.append("role = ?")
            params.append(normalize_role(role))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        with self._reading("list_role_assignments", timeout) as conn:
            cursor = conn.execute(
                f"SELECT * FROM role_assignments {where} ORDER BY principal_id, role",
                params,
            )
            return [
                RoleAssignment(
                    principal_id=row["principal_id"],
                    role=row["role"],
                    status=RoleStatus(row["status"]),
                    created_at=datetime.fromisoformat(row["created_at"]),
                    updated_at=datetime.fromisoformat(row["updated_at"]),
                )
                for row in cursor
            ]

    # =========================================================================
    # Nomination Operations
    # =========================================================================

    def _row_to_nomination(self, row: sqlite3.Row) -> Nomination:
        return Nomination(
            nomination_id=row["nomination_id"],
            candidate_id=row["candidate_id"],
            nominated_by=row["nominated_by"],
            status=NominationStatus(row["status"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            decided_at=_parse_ts(row["decided_at"]),
        )

    def get_nomination(self, nomination_id: str, timeout: float | None = None) -> Nomination | None:
        """Get a nomination by ID."""
        with self._reading("get_nomination", timeout) as conn:
            row = conn.execute(
                "SELECT * FROM nominations WHERE nomination_id = ?",
                (nomination_id,),
            ).fetchone()
            return self._row_to_nomination(row) if row else None

    def get_nomination_for_candidate(
        self,
        candidate_id: str,
        timeout: float | None = None,
    ) -> Nomination | None:
        """Get the current nomination row for a candidate, if any."""
        with self._reading("get_nomination_for_candidate", timeout) as conn:
            row = conn.execute(
                "SELECT * FROM nominations WHERE candidate_id = ?",
                (candidate_id,),
            ).fetchone()
            return self._row_to_nomination(row) if row else None

    def list_nominations(
        self,
        status: NominationStatus | None = None,
        limit: int = 100,
        timeout: float | None = None,
    ) -> list[Nomination]:
        """List nominations, most recent first."""
        with self._reading("list_nominations", timeout) as conn:
            if status is None:
                cursor = conn.execute(
                    "SELECT * FROM nominations ORDER BY created_at DESC LIMIT ?",
                    (limit,),
                )
            else:
                cursor = conn.execute(
                    """
                    SELECT * FROM nominations WHERE status = ?
                    ORDER BY created_at DESC LIMIT ?
                    """,
                    (status.value, limit),
                )
            return [self._row_to_nomination(row) for row in cursor]

    def insert_nomination(self, candidate_id: str, nominated_by: str) -> Nomination:
        """
        Create a PENDING nomination, replacing any prior row for the candidate.

        The prior row's approvals are deleted with it and the new row gets a
        fresh id. Must be called inside transaction().
        """
        prior = self._execute(
            "replace_nomination",
            "SELECT nomination_id FROM nominations WHERE candidate_id = ?",
            (candidate_id,),
        ).fetchone()
        if prior is not None:
            self._execute(
                "replace_nomination",
                "DELETE FROM approvals WHERE nomination_id = ?",
                (prior["nomination_id"],),
            )
            self._execute(
                "replace_nomination",
                "DELETE FROM nominations WHERE nomination_id = ?",
                (prior["nomination_id"],),
            )

        nomination = Nomination(
            nomination_id=generate_id(),
            candidate_id=candidate_id,
            nominated_by=nominated_by,
            status=NominationStatus.PENDING,
        )
        self._execute(
            "insert_nomination",
            """
            INSERT INTO nominations (
                nomination_id, candidate_id, nominated_by, status, created_at
            ) VALUES (?, ?, ?, ?, ?)
            """,
            (
                nomination.nomination_id,
                candidate_id,
                nominated_by,
                nomination.status.value,
                nomination.created_at.isoformat(),
            ),
        )
        return nomination

    def set_nomination_status(self, nomination_id: str, status: NominationStatus) -> None:
        """Move a nomination to a new status. Must be called inside transaction()."""
        decided_at = now_iso() if status.is_terminal else None
        self._execute(
            "set_nomination_status",
            "UPDATE nominations SET status = ?, decided_at = ? WHERE nomination_id = ?",
            (status.value, decided_at, nomination_id),
        )

    def upsert_approval(
        self,
        nomination_id: str,
        approver_id: str,
        decision: ApprovalDecision,
    ) -> None:
        """Record an approver's decision; resubmission overwrites. Inside transaction()."""
        self._execute(
            "upsert_approval",
            """
            INSERT INTO approvals (nomination_id, approver_id, decision, decided_at)
            VALUES (?, ?, ?, ?)
            ON CONFLICT (nomination_id, approver_id)
            DO UPDATE SET decision = excluded.decision, decided_at = excluded.decided_at
            """,
            (nomination_id, approver_id, decision.value, now_iso()),
        )

    def count_approvals(self, nomination_id: str, timeout: float | None = None) -> int:
        """Count distinct approvers who approved a nomination."""
        with self._reading("count_approvals", timeout) as conn:
            row = conn.execute(
                """
                SELECT COUNT(DISTINCT approver_id) AS approvals FROM approvals
                WHERE nomination_id = ? AND decision = ?
                """,
                (nomination_id, ApprovalDecision.APPROVE.value),
            ).fetchone()
            return int(row["approvals"])

    def list_approvals(self, nomination_id: str, timeout: float | None = None) -> list[Approval]:
        """List every approver's current decision on a nomination."""
        with self._reading("list_approvals", timeout) as conn:
            cursor = conn.execute(
                """
                SELECT * FROM approvals WHERE nomination_id = ?
                ORDER BY decided_at, approver_id
                """,
                (nomination_id,),
            )
            return [
                Approval(
                    nomination_id=row["nomination_id"],
                    approver_id=row["approver_id"],
                    decision=ApprovalDecision(row["decision"]),
                    decided_at=datetime.fromisoformat(row["decided_at"]),
                )
                for row in cursor
            ]

    # =========================================================================
    # Audit Trail
    # =========================================================================

    def record_event(
        self,
        event: NominationEventType,
        candidate_id: str,
        actor_id: str,
        nomination_id: str | None = None,
        detail: str | None = None,
    ) -> None:
        """Append an escalation audit event. Must be called inside transaction()."""
        self._execute(
            "record_event",
            """
            INSERT INTO nomination_events (
                nomination_id, candidate_id, actor_id, event, detail, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (nomination_id, candidate_id, actor_id, event.value, detail, now_iso()),
        )

    def list_events(
        self,
        candidate_id: str | None = None,
        timeout: float | None = None,
    ) -> list[NominationEvent]:
        """List audit events in insertion order, optionally for one candidate."""
        with self._reading("list_events", timeout) as conn:
            if candidate_id is None:
                cursor = conn.execute("SELECT * FROM nomination_events ORDER BY event_id")
            else:
                cursor = conn.execute(
                    "SELECT * FROM nomination_events WHERE candidate_id = ? ORDER BY event_id",
                    (candidate_id,),
                )
            return [
                NominationEvent(
                    event_id=row["event_id"],
                    nomination_id=row["nomination_id"],
                    candidate_id=row["candidate_id"],
                    actor_id=row["actor_id"],
                    event=NominationEventType(row["event"]),
                    detail=row["detail"],
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in cursor
            ]
