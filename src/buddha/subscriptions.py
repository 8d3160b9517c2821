"""Notification listener bookkeeping."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

_LOGGER = logging.getLogger(__name__)

NotificationCallback = Callable[[Any], None]


class SubscriptionHandle:
    """Disposer for one registered listener.

    Calling the handle unregisters the listener. Only the first call has an
    effect; later calls are no-ops.
    """

    __slots__ = ("_registry", "_field", "_token")

    def __init__(self, registry: SubscriptionRegistry, field: str, token: int):
        self._registry = registry
        self._field = field
        self._token = token

    @property
    def field(self) -> str:
        return self._field

    @property
    def active(self) -> bool:
        return self._registry._has(self._field, self._token)

    def __call__(self) -> None:
        self._registry._remove(self._field, self._token)

    def __repr__(self) -> str:
        return f"<SubscriptionHandle field={self._field} active={self.active}>"


class SubscriptionRegistry:
    """Maps field names to the callbacks listening for their notifications.

    Pure bookkeeping: enabling notifications on the device is the caller's job.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, dict[int, NotificationCallback]] = {}
        self._next_token = 0

    def add(self, field: str, callback: NotificationCallback) -> SubscriptionHandle:
        """Register a listener and return its disposer."""
        token = self._next_token
        self._next_token += 1
        self._listeners.setdefault(field, {})[token] = callback
        _LOGGER.debug("Listener %d added for %s", token, field)
        return SubscriptionHandle(self, field, token)

    def dispatch(self, field: str, value: Any) -> None:
        """Deliver a decoded notification to every listener of a field.

        A listener raising does not prevent delivery to its siblings.
        """
        # Snapshot so listeners may dispose themselves while being called
        for token, callback in list(self._listeners.get(field, {}).items()):
            try:
                callback(value)
            except Exception:
                _LOGGER.exception("Listener %d for %s raised", token, field)

    def listener_count(self, field: str) -> int:
        return len(self._listeners.get(field, {}))

    def fields(self) -> list[str]:
        """Fields with at least one active listener."""
        return [name for name, listeners in self._listeners.items() if listeners]

    def clear(self) -> None:
        """Drop all listeners. Outstanding handles become no-ops."""
        self._listeners.clear()

    def _has(self, field: str, token: int) -> bool:
        return token in self._listeners.get(field, {})

    def _remove(self, field: str, token: int) -> None:
        listeners = self._listeners.get(field)
        if listeners is None or listeners.pop(token, None) is None:
            return
        _LOGGER.debug("Listener %d removed from %s", token, field)
        if not listeners:
            del self._listeners[field]
