"""
Integration tests for the CLI.

Tests cover:
- check exit codes and JSON output
- two-man and validate-config
- roles grant/revoke (including --dry-run), list and claims-version
- nominate/approve/nominations/history
- Error reporting
"""

import json
from pathlib import Path

from typer.testing import CliRunner

from gatekeeper import __version__
from gatekeeper.cli import app


runner = CliRunner()


def _db_args(temp_dir: Path) -> list[str]:
    return ["--db", str(temp_dir / "cli.db")]


# =============================================================================
# Basics
# =============================================================================


class TestVersion:
    """Tests for --version."""

    def test_version(self) -> None:
        """--version prints the package version."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout


class TestCheckCommand:
    """Tests for `gatekeeper check`."""

    def test_denied_exit_code(self, rbac_file: Path, temp_dir: Path) -> None:
        """Denied checks exit 1."""
        result = runner.invoke(
            app,
            ["check", "alice", "cashbox", "cash_out", "-c", str(rbac_file), *_db_args(temp_dir)],
        )
        assert result.exit_code == 1
        assert "denied" in result.stdout

    def test_allowed_after_grant(self, rbac_file: Path, temp_dir: Path) -> None:
        """Allowed checks exit 0."""
        runner.invoke(app, ["roles", "grant", "alice", "admin", *_db_args(temp_dir)])
        result = runner.invoke(
            app,
            ["check", "alice", "cashbox", "cash_out", "-c", str(rbac_file), *_db_args(temp_dir)],
        )
        assert result.exit_code == 0
        assert "allowed" in result.stdout

    def test_json_output(self, rbac_file: Path, temp_dir: Path) -> None:
        """--json reports the decision and two-man flag."""
        runner.invoke(app, ["roles", "grant", "alice", "admin", *_db_args(temp_dir)])
        result = runner.invoke(
            app,
            [
                "check", "alice", "cashbox", "cash_out",
                "-c", str(rbac_file), *_db_args(temp_dir), "--json",
            ],
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["allowed"] is True
        assert data["rule_matched"] == "cashbox.cash_out"
        assert data["two_man"] is True

    def test_scope_option(self, rbac_file: Path, temp_dir: Path) -> None:
        """--scope feeds the scope context."""
        base = ["check", "newcomer", "expenses", "create", "-c", str(rbac_file), *_db_args(temp_dir)]
        assert runner.invoke(app, [*base, "--scope", "category=food"]).exit_code == 0
        assert runner.invoke(app, [*base, "--scope", "category=rent"]).exit_code == 1

    def test_bad_scope_option(self, rbac_file: Path, temp_dir: Path) -> None:
        """Malformed --scope entries are usage errors."""
        result = runner.invoke(
            app,
            [
                "check", "alice", "expenses", "create",
                "-c", str(rbac_file), *_db_args(temp_dir), "--scope", "nonsense",
            ],
        )
        assert result.exit_code == 2


class TestConfigCommands:
    """Tests for `two-man` and `validate-config`."""

    def test_two_man(self, rbac_file: Path) -> None:
        """Registered actions exit 0, others exit 1."""
        assert runner.invoke(app, ["two-man", "cashbox", "cash_out", "-c", str(rbac_file)]).exit_code == 0
        assert runner.invoke(app, ["two-man", "reports", "view", "-c", str(rbac_file)]).exit_code == 1

    def test_two_man_defaults(self) -> None:
        """Without a config the default two-man list applies."""
        result = runner.invoke(app, ["two-man", "invoices", "cancel", "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["two_man"] is True

    def test_validate_config(self, rbac_file: Path) -> None:
        """Valid files are summarized."""
        result = runner.invoke(app, ["validate-config", str(rbac_file), "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["valid"] is True
        assert data["policies"] == 3

    def test_validate_invalid_config(self, temp_dir: Path) -> None:
        """Invalid files exit 1 with the error."""
        bad = temp_dir / "bad.yaml"
        bad.write_text("policies:\n  - resource: cashbox\n")
        result = runner.invoke(app, ["validate-config", str(bad), "--json"])
        assert result.exit_code == 1
        data = json.loads(result.stdout)
        assert data["error"] is True
        assert data["error_type"] == "ConfigError"


# =============================================================================
# Roles
# =============================================================================


class TestRolesCommands:
    """Tests for `gatekeeper roles`."""

    def test_grant_list_revoke(self, temp_dir: Path) -> None:
        """Grants show up in the listing and revokes flip the status."""
        grant = runner.invoke(app, ["roles", "grant", "alice", "admin", *_db_args(temp_dir), "--json"])
        assert grant.exit_code == 0
        assert json.loads(grant.stdout)["changed"] is True

        listing = runner.invoke(app, ["roles", "list", *_db_args(temp_dir), "--json"])
        data = json.loads(listing.stdout)
        assert data["count"] == 1
        assert data["assignments"][0]["status"] == "active"

        revoke = runner.invoke(app, ["roles", "revoke", "alice", "admin", *_db_args(temp_dir), "--json"])
        assert json.loads(revoke.stdout)["claims_version"] == 2

    def test_grant_superadmin_refused(self, temp_dir: Path) -> None:
        """The top role cannot be granted directly."""
        result = runner.invoke(app, ["roles", "grant", "alice", "superadmin", *_db_args(temp_dir)])
        assert result.exit_code == 1
        assert "nominate" in result.stdout

    def test_claims_version(self, temp_dir: Path) -> None:
        """claims-version reports the counter."""
        runner.invoke(app, ["roles", "grant", "alice", "admin", *_db_args(temp_dir)])
        result = runner.invoke(app, ["claims-version", "alice", *_db_args(temp_dir), "--json"])
        assert result.exit_code == 0
        assert json.loads(result.stdout)["claims_version"] == 1

    def test_grant_dry_run(self, temp_dir: Path) -> None:
        """--dry-run reports the grant but writes nothing."""
        result = runner.invoke(
            app, ["roles", "grant", "alice", "admin", "--dry-run", *_db_args(temp_dir), "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["changed"] is True
        assert data["dry_run"] is True
        assert data["claims_version"] == 0

        listing = runner.invoke(app, ["roles", "list", *_db_args(temp_dir), "--json"])
        assert json.loads(listing.stdout)["count"] == 0

    def test_revoke_dry_run(self, temp_dir: Path) -> None:
        """--dry-run on revoke leaves the role active."""
        runner.invoke(app, ["roles", "grant", "alice", "admin", *_db_args(temp_dir)])
        result = runner.invoke(
            app, ["roles", "revoke", "alice", "admin", "--dry-run", *_db_args(temp_dir), "--json"]
        )
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["changed"] is True
        assert data["claims_version"] == 1

        listing = runner.invoke(app, ["roles", "list", *_db_args(temp_dir), "--json"])
        assert json.loads(listing.stdout)["assignments"][0]["status"] == "active"

    def test_dry_run_superadmin_refused(self, temp_dir: Path) -> None:
        """--dry-run does not bypass the superadmin refusal."""
        result = runner.invoke(
            app, ["roles", "grant", "alice", "superadmin", "--dry-run", *_db_args(temp_dir)]
        )
        assert result.exit_code == 1
        assert "nominate" in result.stdout


# =============================================================================
# Escalation
# =============================================================================


class TestEscalationCommands:
    """Tests for nominate/approve/nominations/history."""

    def _nominate(self, temp_dir: Path, candidate: str, by: str) -> dict:
        result = runner.invoke(app, ["nominate", candidate, "--by", by, *_db_args(temp_dir), "--json"])
        assert result.exit_code == 0
        return json.loads(result.stdout)

    def _approve(self, temp_dir: Path, nomination_id: str, by: str, *extra: str) -> dict:
        result = runner.invoke(
            app,
            ["approve", nomination_id, "--by", by, *extra, *_db_args(temp_dir), "--json"],
        )
        assert result.exit_code == 0
        return json.loads(result.stdout)

    def test_full_flow(self, temp_dir: Path) -> None:
        """Bootstrap two holders, then promote a third by quorum."""
        assert self._nominate(temp_dir, "root1", "root1")["bootstrap"] is True
        assert self._nominate(temp_dir, "root2", "root1")["bootstrap"] is True

        pending = self._nominate(temp_dir, "carol", "root1")
        assert pending["status"] == "PENDING"

        first = self._approve(temp_dir, pending["nomination_id"], "root1")
        assert first["approvals"] == 1
        second = self._approve(temp_dir, pending["nomination_id"], "root2")
        assert second["status"] == "APPROVED"

        listing = runner.invoke(app, ["nominations", "--status", "approved", *_db_args(temp_dir), "--json"])
        data = json.loads(listing.stdout)
        assert data["count"] == 1
        assert data["nominations"][0]["approvals"] == 2

    def test_reject_and_history(self, temp_dir: Path) -> None:
        """--reject vetoes and history shows every step."""
        self._nominate(temp_dir, "root1", "root1")
        self._nominate(temp_dir, "root2", "root1")
        pending = self._nominate(temp_dir, "dave", "root1")

        outcome = self._approve(temp_dir, pending["nomination_id"], "root2", "--reject")
        assert outcome["status"] == "REJECTED"

        history = runner.invoke(app, ["history", "dave", *_db_args(temp_dir), "--json"])
        events = [e["event"] for e in json.loads(history.stdout)["events"]]
        assert events == ["nominated", "approval_recorded", "rejected"]

    def test_approve_unknown(self, temp_dir: Path) -> None:
        """Unknown nominations exit 1."""
        result = runner.invoke(app, ["approve", "missing1", "--by", "root1", *_db_args(temp_dir), "--json"])
        assert result.exit_code == 1
        assert json.loads(result.stdout)["error_type"] == "NominationNotFoundError"

    def test_bad_status_filter(self, temp_dir: Path) -> None:
        """Unknown statuses are usage errors."""
        result = runner.invoke(app, ["nominations", "--status", "weird", *_db_args(temp_dir)])
        assert result.exit_code == 2
