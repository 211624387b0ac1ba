"""
CLI entry point for Gatekeeper.

This module provides the Typer-based command-line interface for operators.
All user interactions flow through these commands.

Commands:
    check            Decide whether a principal may perform resource.action
    two-man          Show whether resource.action requires dual control
    validate-config  Validate an RBAC configuration file
    roles            Grant, revoke and list ordinary role assignments
    claims-version   Show a principal's claims version
    nominate         Nominate a candidate for the superadmin role
    approve          Approve or reject a pending nomination
    nominations      List nominations
    history          Show the escalation audit trail for a candidate

Architecture Note:
    The CLI is intentionally thin - it parses arguments and delegates to the
    Gatekeeper facade. Every command exits 0 on allow/success and 1 on
    deny/error.
"""

import json
import logging
from pathlib import Path
from typing import Annotated, Any, NoReturn, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from gatekeeper import __version__
from gatekeeper.engine import Gatekeeper
from gatekeeper.errors import GatekeeperError
from gatekeeper.policy import TwoManRegistry
from gatekeeper.schema import (
    QUORUM,
    TOP_ROLE,
    NominationOutcome,
    NominationStatus,
    RbacConfig,
    load_config,
)

# Initialize Typer app with metadata
app = typer.Typer(
    name="gatekeeper",
    help="Role-based authorization with two-man superadmin escalation.",
    add_completion=False,
    no_args_is_help=True,
)

roles_app = typer.Typer(
    name="roles",
    help="Grant, revoke and list role assignments.",
    no_args_is_help=True,
)
app.add_typer(roles_app, name="roles")

# Rich console for formatted output
console = Console()

DEFAULT_DB = Path("gatekeeper.db")

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Path to the RBAC YAML configuration.",
        exists=True,
        readable=True,
        resolve_path=True,
    ),
]
DbOption = Annotated[
    Optional[Path],
    typer.Option(
        "--db",
        help="Path to the SQLite role store. Defaults to gatekeeper.db.",
        resolve_path=True,
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output results in JSON format.",
    ),
]


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]gatekeeper[/bold] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        Optional[bool],
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            help="Log decisions and escalation steps.",
        ),
    ] = False,
) -> None:
    """
    Gatekeeper - decide what an authenticated principal may do.

    Evaluates deny-by-default role policies and runs the two-man approval
    workflow that guards the superadmin role.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _open(config_path: Path | None, db_path: Path | None) -> Gatekeeper:
    """Build the facade for one command."""
    config = load_config(config_path) if config_path else RbacConfig()
    return Gatekeeper(config=config, db_path=db_path or DEFAULT_DB)


def _fail(error: GatekeeperError, json_output: bool) -> NoReturn:
    """Report a Gatekeeper error and exit 1."""
    if json_output:
        print(json.dumps({"error": True, **error.to_dict()}, indent=2, default=str))
    else:
        console.print(f"[red]{error}[/red]")
    raise typer.Exit(code=1)


def _parse_scope(entries: list[str] | None) -> dict[str, str] | None:
    """Turn repeated key=value options into a scope context."""
    if not entries:
        return None
    scope: dict[str, str] = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not sep or not key.strip():
            raise typer.BadParameter(f"Expected key=value, got {entry!r}", param_hint="--scope")
        scope[key.strip()] = value.strip()
    return scope


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


# =============================================================================
# Decisions
# =============================================================================


@app.command()
def check(
    principal: Annotated[str, typer.Argument(help="Authenticated principal id.")],
    resource: Annotated[str, typer.Argument(help="Resource name.")],
    action: Annotated[str, typer.Argument(help="Action name.")],
    config_path: ConfigOption = None,
    db: DbOption = None,
    scope: Annotated[
        Optional[list[str]],
        typer.Option(
            "--scope",
            "-s",
            help="Scope context entry as key=value (repeatable).",
        ),
    ] = None,
    json_output: JsonOption = False,
) -> None:
    """
    Decide whether PRINCIPAL may perform RESOURCE.ACTION.

    Example:
        $ gatekeeper check alice cashbox cash_out -c rbac.yaml -s category=food
    """
    scope_context = _parse_scope(scope)
    try:
        with _open(config_path, db) as gk:
            decision = gk.decisions.evaluate(principal, resource, action, scope_context)
            two_man = gk.decisions.requires_two_man_approval(resource, action)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({
            "principal": principal,
            "resource": resource,
            "action": action,
            "allowed": decision.allowed,
            "reason": decision.reason,
            "rule_matched": decision.rule_matched,
            "two_man": two_man,
        })
    else:
        if decision.allowed:
            console.print(f"[green]✓ allowed[/green] {resource}.{action} for [bold]{principal}[/bold]")
        else:
            console.print(f"[red]✗ denied[/red] {resource}.{action} for [bold]{principal}[/bold]")
        console.print(f"[dim]{decision.reason}[/dim]")
        if two_man:
            console.print("[yellow]This action requires two-man approval.[/yellow]")

    raise typer.Exit(code=0 if decision.allowed else 1)


@app.command("two-man")
def two_man(
    resource: Annotated[str, typer.Argument(help="Resource name.")],
    action: Annotated[str, typer.Argument(help="Action name.")],
    config_path: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Show whether RESOURCE.ACTION requires two-man approval.

    Exits 0 when dual control is required, 1 otherwise.
    """
    try:
        config = load_config(config_path) if config_path else RbacConfig()
        required = TwoManRegistry(config.two_man_actions).requires_approval(resource, action)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({"resource": resource, "action": action, "two_man": required})
    elif required:
        console.print(f"[yellow]{resource}.{action} requires two-man approval[/yellow]")
    else:
        console.print(f"{resource}.{action} does not require two-man approval")
    raise typer.Exit(code=0 if required else 1)


@app.command("validate-config")
def validate_config(
    config_path: Annotated[
        Path,
        typer.Argument(
            help="Path to the RBAC YAML configuration.",
            exists=True,
            readable=True,
            resolve_path=True,
        ),
    ],
    json_output: JsonOption = False,
) -> None:
    """Validate an RBAC configuration file and summarize it."""
    try:
        config = load_config(config_path)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({
            "valid": True,
            "policies": len(config.policies),
            "two_man_actions": config.two_man_actions,
            "roles_cache_seconds": config.effective_cache_seconds,
        })
        return

    table = Table(title="Policies", show_header=True, header_style="bold")
    table.add_column("Key", style="cyan")
    table.add_column("Roles")
    table.add_column("Scope")
    table.add_column("Description", style="dim")
    for policy in config.policies:
        scope = ", ".join(f"{k}={'|'.join(v)}" for k, v in (policy.scope or {}).items())
        table.add_row(policy.key, ", ".join(policy.roles), scope, policy.description or "")
    console.print(table)
    console.print(f"[dim]Two-man actions: {', '.join(config.two_man_actions) or '(none)'}[/dim]")
    console.print(f"[dim]Role cache TTL: {config.effective_cache_seconds}s[/dim]")
    console.print("[green]✓ Configuration is valid[/green]")


# =============================================================================
# Role Assignments
# =============================================================================


DryRunOption = Annotated[
    bool,
    typer.Option("--dry-run", help="Report the change without writing it."),
]


@roles_app.command("grant")
def roles_grant(
    principal: Annotated[str, typer.Argument(help="Principal id.")],
    role: Annotated[str, typer.Argument(help="Role name.")],
    db: DbOption = None,
    dry_run: DryRunOption = False,
    json_output: JsonOption = False,
) -> None:
    """Grant ROLE to PRINCIPAL (superadmin must go through `nominate`)."""
    try:
        with _open(None, db) as gk:
            if dry_run:
                changed = gk.preview_role_change(principal, role, grant=True)
            else:
                changed = gk.grant_role(principal, role)
            version = gk.claims_version(principal)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({
            "principal": principal,
            "role": role,
            "changed": changed,
            "claims_version": version,
            "dry_run": dry_run,
        })
    elif dry_run:
        verb = "Would grant" if changed else "No change:"
        console.print(f"[cyan]{verb} {role} to {principal}[/cyan] [dim](dry run)[/dim]")
    elif changed:
        console.print(f"[green]Granted {role} to {principal}[/green] [dim](claims v{version})[/dim]")
    else:
        console.print(f"[dim]{principal} already holds {role}[/dim]")


@roles_app.command("revoke")
def roles_revoke(
    principal: Annotated[str, typer.Argument(help="Principal id.")],
    role: Annotated[str, typer.Argument(help="Role name.")],
    db: DbOption = None,
    dry_run: DryRunOption = False,
    json_output: JsonOption = False,
) -> None:
    """Revoke ROLE from PRINCIPAL."""
    try:
        with _open(None, db) as gk:
            if dry_run:
                changed = gk.preview_role_change(principal, role, grant=False)
            else:
                changed = gk.revoke_role(principal, role)
            version = gk.claims_version(principal)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({
            "principal": principal,
            "role": role,
            "changed": changed,
            "claims_version": version,
            "dry_run": dry_run,
        })
    elif dry_run:
        verb = "Would revoke" if changed else "No change:"
        console.print(f"[cyan]{verb} {role} from {principal}[/cyan] [dim](dry run)[/dim]")
    elif changed:
        console.print(f"[yellow]Revoked {role} from {principal}[/yellow] [dim](claims v{version})[/dim]")
    else:
        console.print(f"[dim]{principal} does not hold {role}[/dim]")


@roles_app.command("list")
def roles_list(
    principal: Annotated[
        Optional[str],
        typer.Option("--principal", "-p", help="Only this principal."),
    ] = None,
    role: Annotated[
        Optional[str],
        typer.Option("--role", "-r", help="Only this role."),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List role assignments."""
    try:
        with _open(None, db) as gk:
            assignments = gk.db.list_role_assignments(principal_id=principal, role=role)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({
            "assignments": [a.model_dump(mode="json") for a in assignments],
            "count": len(assignments),
        })
        return

    if not assignments:
        console.print("[dim]No role assignments found.[/dim]")
        return

    table = Table(title="Role Assignments", show_header=True, header_style="bold")
    table.add_column("Principal", style="cyan")
    table.add_column("Role")
    table.add_column("Status")
    table.add_column("Updated", style="dim")
    for a in assignments:
        status = "[green]active[/green]" if a.status.value == "active" else "[dim]revoked[/dim]"
        table.add_row(a.principal_id, a.role, status, a.updated_at.strftime("%Y-%m-%d %H:%M:%S"))
    console.print(table)


@app.command("claims-version")
def claims_version(
    principal: Annotated[str, typer.Argument(help="Principal id.")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the claims version token issuance should embed for PRINCIPAL."""
    try:
        with _open(None, db) as gk:
            version = gk.claims_version(principal)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({"principal": principal, "claims_version": version})
    else:
        console.print(f"{principal}: claims version [bold]{version}[/bold]")


# =============================================================================
# Escalation
# =============================================================================


def _display_outcome(outcome: NominationOutcome) -> None:
    """Print a nominate/approve outcome."""
    colors = {
        NominationStatus.APPROVED: "green",
        NominationStatus.REJECTED: "red",
        NominationStatus.PENDING: "yellow",
    }
    color = colors[outcome.status]
    console.print(
        f"[{color}]{outcome.status.value}[/{color}] {TOP_ROLE} nomination for "
        f"[bold]{outcome.candidate_id}[/bold]"
    )
    if outcome.bootstrap:
        console.print(f"[dim]Bootstrap grant: fewer than {QUORUM} active {TOP_ROLE}s existed.[/dim]")
    else:
        console.print(f"[dim]Nomination {outcome.nomination_id}: {outcome.approvals}/{QUORUM} approvals[/dim]")


@app.command()
def nominate(
    candidate: Annotated[str, typer.Argument(help="Principal to nominate.")],
    nominator: Annotated[
        str,
        typer.Option("--by", help="Principal making the nomination."),
    ],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Nominate CANDIDATE for the superadmin role.

    While fewer than two superadmins exist the role is granted immediately.

    Example:
        $ gatekeeper nominate carol --by alice
    """
    try:
        with _open(None, db) as gk:
            outcome = gk.escalation.nominate(candidate, nominator)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(outcome.model_dump(mode="json"))
    else:
        _display_outcome(outcome)


@app.command()
def approve(
    nomination_id: Annotated[str, typer.Argument(help="Nomination id.")],
    approver: Annotated[
        str,
        typer.Option("--by", help="Principal casting the decision."),
    ],
    reject: Annotated[
        bool,
        typer.Option("--reject", help="Reject (veto) instead of approving."),
    ] = False,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Approve (or with --reject, veto) a pending nomination.

    Example:
        $ gatekeeper approve 1a2b3c4d --by bob
    """
    try:
        with _open(None, db) as gk:
            outcome = gk.escalation.approve(nomination_id, approver, not reject)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json(outcome.model_dump(mode="json"))
    else:
        _display_outcome(outcome)


@app.command()
def nominations(
    status: Annotated[
        Optional[str],
        typer.Option("--status", help="Filter by status (pending, approved, rejected)."),
    ] = None,
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """List superadmin nominations, most recent first."""
    try:
        status_filter = NominationStatus(status.upper()) if status else None
    except ValueError:
        raise typer.BadParameter(f"Unknown status: {status}", param_hint="--status")

    try:
        with _open(None, db) as gk:
            rows = gk.escalation.list_nominations(status=status_filter)
            counts = {n.nomination_id: gk.db.count_approvals(n.nomination_id) for n in rows}
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({
            "nominations": [
                {**n.model_dump(mode="json"), "approvals": counts[n.nomination_id]}
                for n in rows
            ],
            "count": len(rows),
        })
        return

    if not rows:
        console.print("[dim]No nominations found.[/dim]")
        return

    table = Table(title="Nominations", show_header=True, header_style="bold")
    table.add_column("ID", style="cyan")
    table.add_column("Candidate")
    table.add_column("Nominated by")
    table.add_column("Status")
    table.add_column("Approvals", justify="right")
    table.add_column("Created", style="dim")
    for n in rows:
        table.add_row(
            n.nomination_id,
            n.candidate_id,
            n.nominated_by,
            n.status.value,
            f"{counts[n.nomination_id]}/{QUORUM}",
            n.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command()
def history(
    candidate: Annotated[str, typer.Argument(help="Candidate principal id.")],
    db: DbOption = None,
    json_output: JsonOption = False,
) -> None:
    """Show the escalation audit trail for CANDIDATE, oldest first."""
    try:
        with _open(None, db) as gk:
            events = gk.escalation.history(candidate)
    except GatekeeperError as e:
        _fail(e, json_output)

    if json_output:
        _print_json({"events": [e.model_dump(mode="json") for e in events], "count": len(events)})
        return

    if not events:
        console.print(f"[dim]No escalation history for {candidate}.[/dim]")
        return

    table = Table(title=f"Escalation history: {candidate}", show_header=True, header_style="bold")
    table.add_column("When", style="dim")
    table.add_column("Event", style="cyan")
    table.add_column("Actor")
    table.add_column("Nomination")
    table.add_column("Detail")
    for event in events:
        table.add_row(
            event.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            event.event.value,
            event.actor_id,
            event.nomination_id or "",
            event.detail or "",
        )
    console.print(table)


if __name__ == "__main__":
    app()
