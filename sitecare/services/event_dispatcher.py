"""Best-effort fan-out of lifecycle events to notification and analytics sinks."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)

EventListener = Callable[[str, Dict[str, Any]], None]

SUBSCRIPTION_CREATED = "subscription.created"
SUBSCRIPTION_UPGRADED = "subscription.upgraded"
SUBSCRIPTION_DOWNGRADED = "subscription.downgraded"
SUBSCRIPTION_SAFETY_NET = "subscription.switched_to_safety_net"
SUBSCRIPTION_CANCELED = "subscription.canceled"
SUBSCRIPTION_REACTIVATED = "subscription.reactivated"
SUBSCRIPTION_RECONCILED = "subscription.reconciled"
PAYMENT_METHOD_ATTACHED = "payment_method.attached"
PASSWORD_RESET_REQUESTED = "password_reset.requested"
PASSWORD_RESET_COMPLETED = "password_reset.completed"


class EventDispatcher:
    """Delivers events to registered listeners; a failing listener never fails the caller."""

    def __init__(self) -> None:
        self._listeners: List[EventListener] = []

    def add_listener(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: EventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Error notifying listener for %s", event)


def log_listener(event: str, payload: Dict[str, Any]) -> None:
    """Default sink: records the event name and account in the application log."""
    logger.info("event=%s account=%s", event, payload.get("accountId"))
