"""
RBAC configuration source with change notification.

ConfigSource wraps a YAML file. Subscribers (the policy catalog, the two-man
registry, the facade) register a callback with on_change(); whenever the
source sees new content it hands every subscriber the freshly validated
RbacConfig. Subscribers always reload in full; there is no partial merge.

There is no watcher thread. Whoever learns that the file changed (a
deploy hook, a SIGHUP handler, a periodic job) calls reload().
"""

import hashlib
import logging
import threading
from collections.abc import Callable
from pathlib import Path

from gatekeeper.errors import ConfigError
from gatekeeper.schema import RbacConfig, load_config_from_string

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[RbacConfig], None]


class ConfigSource:
    """
    Change-notification token source for the RBAC configuration.

    Usage:
        source = ConfigSource("rbac.yaml")
        catalog.subscribe(source)
        ...
        source.reload()  # notifies subscribers only if the file changed
    """

    def __init__(self, path: str | Path | None = None, config: RbacConfig | None = None) -> None:
        self.path = Path(path) if path is not None else None
        self._callbacks: list[ChangeCallback] = []
        self._lock = threading.Lock()
        self._digest: str | None = None
        self._current: RbacConfig | None = config
        if self.path is not None and config is None:
            self._current, self._digest = self._read()

    @property
    def current(self) -> RbacConfig:
        return self._current if self._current is not None else RbacConfig()

    def on_change(self, callback: ChangeCallback) -> None:
        """Register a subscriber; it is called once immediately with the current config."""
        with self._lock:
            self._callbacks.append(callback)
        callback(self.current)

    def reload(self) -> bool:
        """
        Re-read the file and notify subscribers if its content changed.

        Returns:
            True if subscribers were notified

        Raises:
            ConfigError: If the file is unreadable or invalid; subscribers
                keep their previous configuration
        """
        if self.path is None:
            return False
        config, digest = self._read()
        if digest == self._digest:
            return False
        self._digest = digest
        self.publish(config)
        return True

    def publish(self, config: RbacConfig) -> None:
        """Push a configuration to every subscriber."""
        with self._lock:
            self._current = config
            callbacks = list(self._callbacks)
        logger.info(
            "RBAC configuration changed; notifying %d subscribers",
            len(callbacks),
            extra={"policies": len(config.policies)},
        )
        for callback in callbacks:
            callback(config)

    def _read(self) -> tuple[RbacConfig, str]:
        try:
            raw = self.path.read_bytes()
        except OSError as e:
            raise ConfigError(
                path=str(self.path),
                message=f"Cannot read RBAC configuration {self.path}: {e}",
            ) from e
        config = load_config_from_string(raw.decode("utf-8"), source=str(self.path))
        return config, hashlib.sha256(raw).hexdigest()
