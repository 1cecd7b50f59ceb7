# MIT License
# Copyright (c) 2025 Hashborn

"""
Notifications for committed engine operations.

Every event carries `caller` and `epoch` plus the operation's journal data.
Nothing is emitted for a rejected operation.
"""
from typing import Any, Callable, Dict, List
import logging

from ..observability.metrics import events_emitted_total

logger = logging.getLogger(__name__)

ENGINE_EVENTS = frozenset({
    "delegated",
    "undelegated",
    "withdraw_synced",
    "account_reset",
    "yield_claimed",
    "provider_staked",
    "provider_withdraw_requested",
    "provider_withdrawn",
    "provider_yield_claimed",
    "provider_delegation_reward_claimed",
    "provider_rewards_claimed",
    "whitelist_changed",
    "bonus_granted",
})


class EventBus:
    """Delivers engine events synchronously, in subscription order."""

    def __init__(self):
        self.listeners: Dict[str, List[Callable[..., Any]]] = {}

    def subscribe(self, event: str, callback: Callable[..., Any]) -> None:
        if event not in ENGINE_EVENTS:
            raise ValueError(f"Unknown engine event: {event}")
        self.listeners.setdefault(event, []).append(callback)
        logger.debug(f"Subscribed to {event}")

    def emit(self, event: str, **data: Any) -> None:
        """
        Counts the event and hands `data` to each listener.

        A failing listener is logged; the operation has already committed.
        """
        events_emitted_total.labels(event=event).inc()
        for callback in self.listeners.get(event, []):
            try:
                callback(**data)
            except Exception as e:
                logger.error(f"Listener for {event} failed: {e}", exc_info=True)


# Shared bus used when an engine is built without its own
event_bus = EventBus()
