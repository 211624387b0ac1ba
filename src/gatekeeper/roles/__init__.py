"""
Role resolution for Gatekeeper.

RoleDirectory answers "which roles does this principal hold?" from a TTL
cache in front of the role-assignment store. Principals without any active
assignment hold the baseline "user" role.
"""

from gatekeeper.roles.directory import RoleDirectory, RoleStore

__all__ = [
    "RoleDirectory",
    "RoleStore",
]
