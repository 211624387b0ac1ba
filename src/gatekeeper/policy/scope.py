"""
Scope constraint evaluation.

A policy may carry scope constraints such as {"categories": ["food"]}. Each
constraint key is handled by a strategy registered on the ScopeEvaluator;
every key of a policy must be satisfied for the request to pass. Keys
without a registered strategy fail closed.
"""

import logging
from collections.abc import Callable, Mapping

logger = logging.getLogger(__name__)

ScopeStrategy = Callable[[list[str], Mapping[str, str]], bool]


def split_values(raw: str | None) -> set[str]:
    """Split a comma-separated context value into normalized tokens."""
    if not raw:
        return set()
    return {part.strip().lower() for part in raw.split(",") if part.strip()}


def allow_list(context_key: str) -> ScopeStrategy:
    """
    Build a strategy that passes when the context value intersects the allow-list.

    Args:
        context_key: Scope-context key holding the caller-supplied value(s)
    """

    def strategy(allowed: list[str], scope_context: Mapping[str, str]) -> bool:
        requested = split_values(scope_context.get(context_key))
        permitted = {value.strip().lower() for value in allowed}
        return bool(requested & permitted)

    strategy.__name__ = f"allow_list[{context_key}]"
    return strategy


class ScopeEvaluator:
    """
    Registry of scope strategies keyed by constraint name.

    Usage:
        scopes = ScopeEvaluator()
        scopes.register("vendors", allow_list("vendor"))
        scopes.evaluate({"categories": ["food"]}, {"category": "food"})  # True
    """

    def __init__(self, register_defaults: bool = True) -> None:
        self._strategies: dict[str, ScopeStrategy] = {}
        if register_defaults:
            self.register("categories", allow_list("category"))

    def register(self, constraint_key: str, strategy: ScopeStrategy) -> None:
        """Register (or replace) the strategy for a constraint key."""
        self._strategies[constraint_key.strip().lower()] = strategy

    def strategy_for(self, constraint_key: str) -> ScopeStrategy | None:
        return self._strategies.get(constraint_key.strip().lower())

    def evaluate(
        self,
        constraints: Mapping[str, list[str]] | None,
        scope_context: Mapping[str, str] | None,
    ) -> bool:
        """
        Check a scope context against a policy's constraints.

        Returns:
            True when there are no constraints or every constraint is met
        """
        if not constraints:
            return True
        if not scope_context:
            return False

        for key, allowed in constraints.items():
            strategy = self.strategy_for(key)
            if strategy is None:
                logger.warning(
                    "No scope strategy registered for constraint %r; denying",
                    key,
                    extra={"constraint": key},
                )
                return False
            if not strategy(list(allowed), scope_context):
                return False
        return True
