"""Registry of running weeders, one per namespace and service."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from podweeder.weeder import Weeder


def create_key(weeder: Weeder) -> str:
    """Key that uniquely identifies a weeder."""
    return f"{weeder.namespace}/{weeder.endpoint_name}"


class Registration:
    """Handle to check whether a weeder is closed and to close it."""

    def __init__(self, done: threading.Event, cancel: Callable[[], None]) -> None:
        self._done = done
        self._cancel = cancel

    def is_closed(self) -> bool:
        """Return True if the weeder has ended."""
        return self._done.is_set()

    def close(self) -> None:
        """Close the weeder."""
        self._cancel()


class WeederManager:
    """Single point for registering and unregistering weeders."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._weeders: dict[str, Registration] = {}

    def register(self, weeder: Weeder) -> bool:
        """Register a weeder, closing any weeder already registered under the same key."""
        with self._lock:
            key = create_key(weeder)
            existing = self._weeders.get(key)
            if existing is not None and not existing.is_closed():
                existing.close()
            self._weeders[key] = Registration(weeder.done, weeder.cancel)
            return True

    def unregister(self, key: str) -> bool:
        """Close and remove the weeder under `key`; return False if there is none."""
        with self._lock:
            registration = self._weeders.pop(key, None)
        if registration is None:
            return False
        registration.close()
        return True

    def unregister_all(self) -> None:
        """Close and remove every registered weeder."""
        with self._lock:
            keys = list(self._weeders)
        for key in keys:
            self.unregister(key)

    def get_registration(self, key: str) -> Optional[Registration]:
        """Return the registration for `key`, or None if there is none."""
        with self._lock:
            return self._weeders.get(key)