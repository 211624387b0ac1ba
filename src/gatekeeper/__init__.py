"""
Gatekeeper - Role-based authorization with dual-control escalation.

Gatekeeper decides what an already-authenticated principal may do:
- Deny-by-default role policies keyed by resource.action
- Pluggable scope constraints (e.g., category allow-lists)
- TTL-cached role resolution over a SQLite role store
- Two-man (quorum) approval before anyone becomes a superadmin

Example usage:
    $ gatekeeper check alice cashbox cash_out --config rbac.yaml
    $ gatekeeper nominate carol --by alice
    $ gatekeeper approve <nomination_id> --by bob
"""

__version__ = "0.1.0"
__author__ = "Gatekeeper Contributors"

__all__ = [
    "__version__",
    "__author__",
]
