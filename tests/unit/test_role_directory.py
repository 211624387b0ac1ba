"""
Unit tests for the role directory.

Tests cover:
- Baseline role for principals without assignments
- Normalization of stored role names
- TTL caching, expiry and the 5 second floor
- Explicit invalidation
"""

import pytest

from gatekeeper.roles import RoleDirectory


class FakeStore:
    """In-memory role store that counts fetches."""

    def __init__(self, roles: dict[str, list[str]] | None = None) -> None:
        self.roles = roles or {}
        self.fetches = 0

    def fetch_roles(self, principal_id: str, timeout: float | None = None) -> list[str]:
        self.fetches += 1
        return list(self.roles.get(principal_id, []))


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def store() -> FakeStore:
    return FakeStore({"alice": ["Admin", "admin", "Accountant"], "bob": []})


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestResolveRoles:
    """Tests for RoleDirectory.resolve_roles."""

    def test_roles_normalized(self, store: FakeStore, clock: FakeClock) -> None:
        """Stored roles are lowercased and de-duplicated."""
        directory = RoleDirectory(store, clock=clock)
        assert directory.resolve_roles("alice") == frozenset({"admin", "accountant"})

    def test_baseline_role(self, store: FakeStore, clock: FakeClock) -> None:
        """Principals without assignments hold only "user"."""
        directory = RoleDirectory(store, clock=clock)
        assert directory.resolve_roles("bob") == frozenset({"user"})
        assert directory.resolve_roles("nobody") == frozenset({"user"})

    def test_cached_within_ttl(self, store: FakeStore, clock: FakeClock) -> None:
        """Repeated reads inside the TTL hit the cache."""
        directory = RoleDirectory(store, ttl_seconds=30, clock=clock)
        directory.resolve_roles("alice")
        clock.advance(29)
        directory.resolve_roles("alice")
        assert store.fetches == 1

    def test_refetched_after_ttl(self, store: FakeStore, clock: FakeClock) -> None:
        """Entries expire lazily after the TTL."""
        directory = RoleDirectory(store, ttl_seconds=30, clock=clock)
        directory.resolve_roles("alice")
        store.roles["alice"] = ["viewer"]
        clock.advance(31)
        assert directory.resolve_roles("alice") == frozenset({"viewer"})
        assert store.fetches == 2

    def test_stale_roles_served_within_ttl(self, store: FakeStore, clock: FakeClock) -> None:
        """Store changes are not seen until expiry or invalidation."""
        directory = RoleDirectory(store, ttl_seconds=30, clock=clock)
        directory.resolve_roles("alice")
        store.roles["alice"] = []
        assert "admin" in directory.resolve_roles("alice")


class TestTtlFloor:
    """Tests for the minimum cache lifetime."""

    @pytest.mark.parametrize("configured", [0, 1, 4.9, -10])
    def test_ttl_floor(self, store: FakeStore, configured: float) -> None:
        """TTLs below 5 seconds are raised to 5."""
        directory = RoleDirectory(store, ttl_seconds=configured)
        assert directory.ttl_seconds == 5

    def test_floor_applied_to_cache(self, store: FakeStore, clock: FakeClock) -> None:
        """A 1 second TTL still caches for 5 seconds."""
        directory = RoleDirectory(store, ttl_seconds=1, clock=clock)
        directory.resolve_roles("alice")
        clock.advance(4)
        directory.resolve_roles("alice")
        assert store.fetches == 1

    def test_setter_applies_floor(self, store: FakeStore) -> None:
        """Changing the TTL at runtime keeps the floor."""
        directory = RoleDirectory(store)
        directory.ttl_seconds = 2
        assert directory.ttl_seconds == 5
        directory.ttl_seconds = 60
        assert directory.ttl_seconds == 60


class TestInvalidation:
    """Tests for invalidate and clear."""

    def test_invalidate(self, store: FakeStore, clock: FakeClock) -> None:
        """Invalidated principals are re-read immediately."""
        directory = RoleDirectory(store, clock=clock)
        directory.resolve_roles("alice")
        store.roles["alice"] = ["viewer"]
        directory.invalidate("alice")
        assert directory.resolve_roles("alice") == frozenset({"viewer"})

    def test_invalidate_unknown_is_noop(self, store: FakeStore) -> None:
        """Invalidating an uncached principal does nothing."""
        RoleDirectory(store).invalidate("ghost")

    def test_clear(self, store: FakeStore, clock: FakeClock) -> None:
        """clear() drops every entry."""
        directory = RoleDirectory(store, clock=clock)
        directory.resolve_roles("alice")
        directory.resolve_roles("bob")
        directory.clear()
        directory.resolve_roles("alice")
        assert store.fetches == 3
