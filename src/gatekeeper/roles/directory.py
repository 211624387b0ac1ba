"""
Role directory: principal -> role set, cached with a TTL.

Entries expire lazily on the next read; there is no sweeper. A cache entry
is a (roles, expires_at) tuple stored under the principal id, and a single
dict get/set is atomic, so concurrent misses for the same principal simply
race to store equivalent values.
"""

import logging
import time
from collections.abc import Callable
from typing import Protocol

from gatekeeper.schema import (
    BASELINE_ROLE,
    DEFAULT_ROLES_CACHE_SECONDS,
    MIN_ROLES_CACHE_SECONDS,
    normalize_role,
)

logger = logging.getLogger(__name__)


class RoleStore(Protocol):
    """The part of the backing store the directory reads from."""

    def fetch_roles(self, principal_id: str, timeout: float | None = None) -> list[str]: ...


class RoleDirectory:
    """
    Resolves a principal to its set of role names.

    Every principal resolves to at least the baseline "user" role.

    Attributes:
        store: Backing role-assignment store
        ttl_seconds: Cache lifetime of a resolved role set (floor 5)
    """

    def __init__(
        self,
        store: RoleStore,
        ttl_seconds: float = DEFAULT_ROLES_CACHE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self._clock = clock
        self._ttl = float(MIN_ROLES_CACHE_SECONDS)
        self._cache: dict[str, tuple[frozenset[str], float]] = {}
        self.ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    @ttl_seconds.setter
    def ttl_seconds(self, value: float) -> None:
        self._ttl = max(float(MIN_ROLES_CACHE_SECONDS), float(value))

    def resolve_roles(self, principal_id: str, timeout: float | None = None) -> frozenset[str]:
        """
        Get the principal's roles, from cache when fresh.

        Args:
            principal_id: An already-authenticated principal id
            timeout: Seconds to wait for the store on a cache miss

        Returns:
            Lowercase, de-duplicated role names; {"user"} when none are assigned
        """
        entry = self._cache.get(principal_id)
        now = self._clock()
        if entry is not None and entry[1] > now:
            return entry[0]

        rows = self.store.fetch_roles(principal_id, timeout=timeout)
        roles = frozenset(normalize_role(r) for r in rows if r and r.strip())
        if not roles:
            roles = frozenset({BASELINE_ROLE})

        self._cache[principal_id] = (roles, now + self._ttl)
        logger.debug(
            "Resolved roles for %s: %s",
            principal_id,
            ", ".join(sorted(roles)),
            extra={"principal_id": principal_id, "roles": sorted(roles)},
        )
        return roles

    def invalidate(self, principal_id: str) -> None:
        """Drop the cached role set for one principal."""
        self._cache.pop(principal_id, None)

    def clear(self) -> None:
        """Drop every cached role set."""
        self._cache.clear()
