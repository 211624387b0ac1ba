"""
Unit tests for scope constraint evaluation.

Tests cover:
- Default categories strategy
- Missing context and unknown constraint keys
- Custom strategies
"""

from gatekeeper.policy import ScopeEvaluator, allow_list
from gatekeeper.policy.scope import split_values


class TestSplitValues:
    """Tests for split_values."""

    def test_splits_and_normalizes(self) -> None:
        """Comma lists are split, stripped and lowercased."""
        assert split_values("Food, travel ,,") == {"food", "travel"}

    def test_empty(self) -> None:
        """None and empty strings give an empty set."""
        assert split_values(None) == set()
        assert split_values("") == set()


class TestScopeEvaluator:
    """Tests for ScopeEvaluator.evaluate."""

    def test_no_constraints_pass(self) -> None:
        """Policies without scope constraints always pass."""
        assert ScopeEvaluator().evaluate(None, None)
        assert ScopeEvaluator().evaluate({}, {"category": "food"})

    def test_categories_match(self) -> None:
        """Category in the allow-list passes."""
        scopes = ScopeEvaluator()
        assert scopes.evaluate({"categories": ["food", "travel"]}, {"category": "Food"})

    def test_categories_multi_value_context(self) -> None:
        """Any overlapping value in a comma list passes."""
        scopes = ScopeEvaluator()
        assert scopes.evaluate({"categories": ["food"]}, {"category": "rent, food"})

    def test_categories_mismatch(self) -> None:
        """Category outside the allow-list fails."""
        scopes = ScopeEvaluator()
        assert not scopes.evaluate({"categories": ["food"]}, {"category": "rent"})

    def test_missing_context_fails(self) -> None:
        """Constraints with no scope context fail closed."""
        scopes = ScopeEvaluator()
        assert not scopes.evaluate({"categories": ["food"]}, None)
        assert not scopes.evaluate({"categories": ["food"]}, {})

    def test_unknown_constraint_fails(self) -> None:
        """Keys with no registered strategy fail closed."""
        scopes = ScopeEvaluator()
        assert not scopes.evaluate({"regions": ["eu"]}, {"region": "eu"})

    def test_all_constraints_required(self) -> None:
        """Every constraint must pass."""
        scopes = ScopeEvaluator()
        scopes.register("regions", allow_list("region"))
        constraints = {"categories": ["food"], "regions": ["eu"]}
        assert scopes.evaluate(constraints, {"category": "food", "region": "eu"})
        assert not scopes.evaluate(constraints, {"category": "food", "region": "us"})

    def test_custom_strategy(self) -> None:
        """Registered strategies are consulted by key, case-insensitively."""
        scopes = ScopeEvaluator(register_defaults=False)
        scopes.register("Amount_Max", lambda allowed, ctx: float(ctx["amount"]) <= float(allowed[0]))
        assert scopes.strategy_for("categories") is None
        assert scopes.evaluate({"amount_max": ["100"]}, {"amount": "50"})
        assert not scopes.evaluate({"amount_max": ["100"]}, {"amount": "150"})
