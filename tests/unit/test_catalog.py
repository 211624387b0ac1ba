"""
Unit tests for the policy catalog and two-man registry.

Tests cover:
- Case-insensitive lookup
- Blank input handling
- Full (non-merging) reload
- Duplicate definitions
- Two-man membership and malformed entries
- Change subscriptions
"""

import pytest
from pydantic import ValidationError

from gatekeeper.config import ConfigSource
from gatekeeper.errors import InvalidArgumentError
from gatekeeper.policy import PolicyCatalog, TwoManRegistry
from gatekeeper.schema import PolicyDefinition, RbacConfig


CASH_OUT = {"resource": "cashbox", "action": "cash_out", "roles": ["admin"]}
EXPENSE = {"resource": "expenses", "action": "create", "roles": ["user"]}


# =============================================================================
# PolicyCatalog
# =============================================================================


class TestPolicyCatalogLookup:
    """Tests for PolicyCatalog.lookup."""

    def test_lookup_is_case_insensitive(self) -> None:
        """Lookups ignore case of resource and action."""
        catalog = PolicyCatalog([CASH_OUT])
        policy = catalog.lookup("CashBox", "CASH_OUT")
        assert policy is not None
        assert policy.allowed_roles == frozenset({"admin"})

    def test_lookup_missing(self) -> None:
        """Undefined keys return None."""
        catalog = PolicyCatalog([CASH_OUT])
        assert catalog.lookup("cashbox", "cash_in") is None

    @pytest.mark.parametrize("resource,action", [("", "cash_out"), ("cashbox", "  "), (None, "x")])
    def test_lookup_blank_returns_none(self, resource: object, action: object) -> None:
        """Blank or non-string input finds nothing."""
        catalog = PolicyCatalog([CASH_OUT])
        assert catalog.lookup(resource, action) is None  # type: ignore[arg-type]

    def test_accepts_models_and_mappings(self) -> None:
        """Definitions may be models or plain mappings."""
        catalog = PolicyCatalog([PolicyDefinition(**CASH_OUT), EXPENSE])
        assert len(catalog) == 2
        assert "Expenses.Create" in catalog
        assert catalog.keys() == ["cashbox.cash_out", "expenses.create"]


class TestPolicyCatalogReload:
    """Tests for PolicyCatalog.load."""

    def test_reload_replaces_everything(self) -> None:
        """A reload removes keys absent from the new set."""
        catalog = PolicyCatalog([CASH_OUT, EXPENSE])
        count = catalog.load([EXPENSE])
        assert count == 1
        assert catalog.lookup("cashbox", "cash_out") is None
        assert catalog.lookup("expenses", "create") is not None

    def test_duplicate_last_wins(self) -> None:
        """Later definitions for the same key replace earlier ones."""
        catalog = PolicyCatalog([
            CASH_OUT,
            {"resource": "CASHBOX", "action": "cash_out", "roles": ["accountant"]},
        ])
        assert len(catalog) == 1
        assert catalog.lookup("cashbox", "cash_out").allowed_roles == frozenset({"accountant"})

    def test_invalid_reload_keeps_previous(self) -> None:
        """A failed reload leaves the previous catalog active."""
        catalog = PolicyCatalog([CASH_OUT])
        with pytest.raises(ValidationError):
            catalog.load([EXPENSE, {"resource": "broken"}])
        assert catalog.lookup("cashbox", "cash_out") is not None
        assert catalog.lookup("expenses", "create") is None

    def test_subscribe_reloads_on_change(self) -> None:
        """Catalog follows a ConfigSource."""
        source = ConfigSource(config=RbacConfig(policies=[PolicyDefinition(**CASH_OUT)]))
        catalog = PolicyCatalog()
        catalog.subscribe(source)
        assert "cashbox.cash_out" in catalog

        source.publish(RbacConfig(policies=[PolicyDefinition(**EXPENSE)]))
        assert "cashbox.cash_out" not in catalog
        assert "expenses.create" in catalog


# =============================================================================
# TwoManRegistry
# =============================================================================


class TestTwoManRegistry:
    """Tests for TwoManRegistry."""

    def test_membership_is_case_insensitive(self) -> None:
        """Registered keys match regardless of case."""
        registry = TwoManRegistry(["cashbox.cash_out"])
        assert registry.requires_approval("CashBox", "Cash_Out")
        assert not registry.requires_approval("cashbox", "cash_in")

    def test_malformed_entries_skipped(self) -> None:
        """Entries without resource.action shape are ignored."""
        registry = TwoManRegistry(["cashbox.cash_out", "nodot", ".action", "resource."])
        assert list(registry) == ["cashbox.cash_out"]
        assert len(registry) == 1

    @pytest.mark.parametrize("resource,action", [("", "cash_out"), ("cashbox", " ")])
    def test_blank_input_raises(self, resource: str, action: str) -> None:
        """Blank resource or action is a programmer error."""
        registry = TwoManRegistry(["cashbox.cash_out"])
        with pytest.raises(InvalidArgumentError):
            registry.requires_approval(resource, action)

    def test_membership_independent_of_policies(self) -> None:
        """Two-man keys need no matching policy."""
        registry = TwoManRegistry(["payouts.process"])
        assert registry.requires_approval("payouts", "process")

    def test_subscribe_reloads_on_change(self) -> None:
        """Registry follows a ConfigSource."""
        source = ConfigSource(config=RbacConfig(two_man_actions=["a.b"]))
        registry = TwoManRegistry()
        registry.subscribe(source)
        assert registry.requires_approval("a", "b")

        source.publish(RbacConfig(two_man_actions=["c.d"]))
        assert not registry.requires_approval("a", "b")
        assert registry.requires_approval("c", "d")
