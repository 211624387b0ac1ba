"""
Storage module for Gatekeeper.

This module provides SQLite-based persistence shared by the role directory
and the escalation workflow.

Tables:
    - role_assignments: Which principal holds which role (active/revoked)
    - claims_versions: Per-principal counter observed by token issuance
    - nominations / approvals: Top-role escalation state
    - nomination_events: Append-only escalation audit trail

Design principles:
    - One authoritative row per (principal, role), candidate and approver
    - Single-writer transactions (BEGIN IMMEDIATE) for check-then-act logic
    - Every call accepts a timeout; nothing blocks indefinitely
"""

from gatekeeper.store.db import GatekeeperDB, generate_id

__all__ = [
    "GatekeeperDB",
    "generate_id",
]
