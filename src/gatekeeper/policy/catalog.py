"""
Policy catalog and two-man registry.

Both hold an immutable snapshot keyed by `resource.action` and replace it
wholesale on reload. Readers grab the current reference once per lookup, so
a reload running on another thread is never observed half-applied.

Keys are always built with schema.compose_key, which lowercases the
resource and action; catalog lookups and two-man membership tests therefore
agree on case.
"""

import logging
from collections.abc import Iterable, Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from gatekeeper.errors import InvalidArgumentError
from gatekeeper.schema import PolicyDefinition, RbacConfig, compose_key

if TYPE_CHECKING:
    from gatekeeper.config import ConfigSource

logger = logging.getLogger(__name__)


class PolicyCatalog:
    """
    Holds resource.action -> PolicyDefinition mappings.

    Usage:
        catalog = PolicyCatalog()
        catalog.load([{"resource": "cashbox", "action": "cash_out", "roles": ["admin"]}])
        policy = catalog.lookup("Cashbox", "CASH_OUT")
    """

    def __init__(self, definitions: Iterable[PolicyDefinition | Mapping[str, Any]] = ()) -> None:
        self._policies: Mapping[str, PolicyDefinition] = MappingProxyType({})
        self.load(definitions)

    def load(self, definitions: Iterable[PolicyDefinition | Mapping[str, Any]]) -> int:
        """
        Replace the active policy map.

        The new map is fully built and validated before a single reference
        assignment publishes it. If validation fails the previous map stays
        active.

        Args:
            definitions: PolicyDefinition objects or mappings with the same keys

        Returns:
            Number of distinct keys now loaded
        """
        policies: dict[str, PolicyDefinition] = {}
        for definition in definitions:
            if not isinstance(definition, PolicyDefinition):
                definition = PolicyDefinition.model_validate(definition)
            if definition.key in policies:
                logger.warning(
                    "Duplicate policy definition for %s; last one wins",
                    definition.key,
                    extra={"policy_key": definition.key},
                )
            policies[definition.key] = definition

        self._policies = MappingProxyType(policies)
        logger.info("Loaded %d policy definitions", len(policies))
        return len(policies)

    def lookup(self, resource: str, action: str) -> PolicyDefinition | None:
        """Find the policy for resource.action, or None (including for blank input)."""
        if not _is_filled(resource) or not _is_filled(action):
            return None
        return self._policies.get(compose_key(resource, action))

    def subscribe(self, source: "ConfigSource") -> None:
        """Reload the full catalog on every change notification from source."""
        source.on_change(self._on_config_change)

    def _on_config_change(self, config: RbacConfig) -> None:
        self.load(config.policies)

    def keys(self) -> list[str]:
        return sorted(self._policies)

    def __len__(self) -> int:
        return len(self._policies)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and key.lower() in self._policies


class TwoManRegistry:
    """
    Set of resource.action keys that must go through dual control.

    Membership says nothing about who may perform the action; callers use
    it to route high-risk operations through an approval workflow instead
    of executing them directly.
    """

    def __init__(self, actions: Iterable[str] = ()) -> None:
        self._actions: frozenset[str] = frozenset()
        self.load(actions)

    def load(self, actions: Iterable[str]) -> None:
        """Replace the set of dual-control actions (entries are `resource.action`)."""
        keys = set()
        for entry in actions:
            resource, sep, action = entry.strip().partition(".")
            if not sep or not resource or not action:
                logger.warning(
                    "Ignoring malformed two-man action %r",
                    entry,
                    extra={"entry": entry},
                )
                continue
            keys.add(compose_key(resource, action))
        self._actions = frozenset(keys)

    def requires_approval(self, resource: str, action: str) -> bool:
        """
        Whether resource.action requires two-man approval.

        Raises:
            InvalidArgumentError: If resource or action is blank
        """
        if not _is_filled(resource):
            raise InvalidArgumentError(argument="resource", message="Resource is required")
        if not _is_filled(action):
            raise InvalidArgumentError(argument="action", message="Action is required")
        return compose_key(resource, action) in self._actions

    def subscribe(self, source: "ConfigSource") -> None:
        """Reload on every change notification from source."""
        source.on_change(self._on_config_change)

    def _on_config_change(self, config: RbacConfig) -> None:
        self.load(config.two_man_actions)

    def __iter__(self):
        return iter(sorted(self._actions))

    def __len__(self) -> int:
        return len(self._actions)


def _is_filled(value: object) -> bool:
    return isinstance(value, str) and bool(value.strip())
