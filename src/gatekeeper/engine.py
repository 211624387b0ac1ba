"""
Gatekeeper facade.

Wires the authorization components together from one RbacConfig and one
store, so applications and the CLI construct a single object:

    - PolicyCatalog + TwoManRegistry: loaded from config, reloaded in full
    - RoleDirectory: TTL cache over the store's role assignments
    - DecisionEngine: allow/deny decisions
    - EscalationWorkflow: top-role nominations and approvals

Nothing here is module-level state; every Gatekeeper owns its own
components and can be built side by side with another one.
"""

import logging
from pathlib import Path
from typing import Any

from gatekeeper.config import ConfigSource
from gatekeeper.errors import InvalidArgumentError
from gatekeeper.escalation import EscalationWorkflow
from gatekeeper.policy import DecisionEngine, PolicyCatalog, ScopeEvaluator, TwoManRegistry
from gatekeeper.roles import RoleDirectory
from gatekeeper.schema import TOP_ROLE, RbacConfig, RoleStatus, normalize_role
from gatekeeper.store import GatekeeperDB

logger = logging.getLogger(__name__)


class Gatekeeper:
    """
    Authorization engine plus escalation workflow over one store.

    Usage:
        with Gatekeeper.from_paths("rbac.yaml", "gatekeeper.db") as gk:
            gk.decisions.is_allowed("alice", "cashbox", "cash_out")
            gk.escalation.nominate("carol", "alice")

    Attributes:
        db: Shared role/escalation store
        catalog: Active policies
        two_man: Dual-control action set
        directory: Cached role resolver
        decisions: Decision engine
        escalation: Top-role workflow
    """

    def __init__(
        self,
        config: RbacConfig | None = None,
        db: GatekeeperDB | None = None,
        db_path: str | Path = "gatekeeper.db",
        scopes: ScopeEvaluator | None = None,
    ) -> None:
        """
        Initialize the facade.

        Args:
            config: RBAC configuration (defaults to an empty catalog)
            db: Existing store; when omitted one is opened at db_path and
                closed by close()
            db_path: Path to SQLite database when db is not given
            scopes: Scope strategies (defaults to the built-in set)
        """
        config = config if config is not None else RbacConfig()
        self._owns_db = db is None
        self.db = db if db is not None else GatekeeperDB(db_path)
        self.catalog = PolicyCatalog()
        self.two_man = TwoManRegistry()
        self.directory = RoleDirectory(self.db, ttl_seconds=config.effective_cache_seconds)
        self.decisions = DecisionEngine(
            self.catalog,
            self.directory,
            two_man=self.two_man,
            scopes=scopes,
        )
        self.escalation = EscalationWorkflow(self.db, directory=self.directory)
        self.source: ConfigSource | None = None
        self.apply_config(config)

    @classmethod
    def from_paths(
        cls,
        config_path: str | Path,
        db_path: str | Path = "gatekeeper.db",
        scopes: ScopeEvaluator | None = None,
    ) -> "Gatekeeper":
        """Build from a YAML config file and subscribe to its changes."""
        source = ConfigSource(config_path)
        gatekeeper = cls(config=source.current, db_path=db_path, scopes=scopes)
        gatekeeper.subscribe(source)
        return gatekeeper

    def apply_config(self, config: RbacConfig) -> None:
        """Fully reload policies, the two-man set and the cache TTL."""
        self.catalog.load(config.policies)
        self.two_man.load(config.two_man_actions)
        self.directory.ttl_seconds = config.effective_cache_seconds
        logger.info(
            "Applied RBAC configuration",
            extra={
                "policies": len(self.catalog),
                "two_man_actions": len(self.two_man),
                "roles_cache_seconds": self.directory.ttl_seconds,
            },
        )

    def subscribe(self, source: ConfigSource) -> None:
        """Re-apply the configuration on every change notification."""
        self.source = source
        source.on_change(self.apply_config)

    def reload(self) -> bool:
        """Ask the subscribed source to re-read its file."""
        return self.source.reload() if self.source is not None else False

    def claims_version(self, principal_id: str, timeout: float | None = None) -> int:
        """Claims version token issuance should embed for principal_id."""
        return self.db.get_claims_version(principal_id, timeout=timeout)

    def grant_role(self, principal_id: str, role: str, timeout: float | None = None) -> bool:
        """
        Grant an ordinary role and refresh this process's cached roles.

        Raises:
            InvalidArgumentError: For the top role, which is only granted
                through the escalation workflow
        """
        _refuse_top_role(role)
        changed = self.db.grant_role(principal_id, role, timeout=timeout)
        self.directory.invalidate(principal_id)
        return changed

    def preview_role_change(
        self,
        principal_id: str,
        role: str,
        grant: bool = True,
        timeout: float | None = None,
    ) -> bool:
        """
        Report whether grant_role/revoke_role would change anything.

        Only reads the store; no transaction is opened.

        Raises:
            InvalidArgumentError: When previewing a grant of the top role
        """
        if grant:
            _refuse_top_role(role)
        rows = self.db.list_role_assignments(principal_id=principal_id, role=role, timeout=timeout)
        active = any(row.status is RoleStatus.ACTIVE for row in rows)
        return not active if grant else active

    def revoke_role(self, principal_id: str, role: str, timeout: float | None = None) -> bool:
        """Revoke a role and refresh this process's cached roles."""
        changed = self.db.revoke_role(principal_id, role, timeout=timeout)
        self.directory.invalidate(principal_id)
        return changed

    def close(self) -> None:
        """Close the store if this facade opened it."""
        if self._owns_db:
            self.db.close()

    def __enter__(self) -> "Gatekeeper":
        """Enter context manager."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Exit context manager."""
        self.close()


def _refuse_top_role(role: str) -> None:
    if normalize_role(role) == TOP_ROLE:
        raise InvalidArgumentError(
            argument="role",
            message=f"{TOP_ROLE} can only be granted through a nomination",
            suggestion="Use `gatekeeper nominate` instead",
        )
