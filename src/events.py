"""Event fan-out for external collaborators.

The compliance engine emits a SystemEvent after each committed state change.
Collaborators that live outside this service (the e-mail sender that mails
verification links and export-ready notices, admin alerting) subscribe at
startup. Emitting never raises: a failing subscriber is logged and the
remaining subscribers still run.

Usage:
    from src.events import emit, subscribe

    subscribe(send_verification_mail, event_types=[EventType.REQUEST_CREATED])
    await emit(SystemEvent(event_type=EventType.REQUEST_CREATED, user_id=subject_id))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

_subscribers: list[EventHandler] = []
_type_subscribers: dict[EventType, list[EventHandler]] = {}


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    """Register a handler for all events, or only for `event_types`."""
    if event_types is None:
        _subscribers.append(handler)
        logger.info("Registered global event subscriber: %s", handler.__name__)
        return
    for et in event_types:
        _type_subscribers.setdefault(et, []).append(handler)
    logger.info(
        "Registered event subscriber %s for types: %s",
        handler.__name__,
        [t.value for t in event_types],
    )


def unsubscribe(handler: EventHandler) -> None:
    """Remove a previously registered handler."""
    if handler in _subscribers:
        _subscribers.remove(handler)
    for handlers in _type_subscribers.values():
        if handler in handlers:
            handlers.remove(handler)


def clear_subscribers() -> None:
    """Drop every registration. Used at shutdown and between tests."""
    _subscribers.clear()
    _type_subscribers.clear()


async def emit(event: SystemEvent) -> int:
    """Deliver `event` to every matching subscriber concurrently.

    Returns the number of handlers that failed.
    """
    handlers = [*_subscribers, *_type_subscribers.get(event.event_type, [])]
    if not handlers:
        logger.debug("Event %s has no subscribers", event.event_type.value)
        return 0

    results = await asyncio.gather(
        *[handler(event) for handler in handlers],
        return_exceptions=True,
    )
    failures = 0
    for handler, result in zip(handlers, results):
        if isinstance(result, Exception):
            failures += 1
            logger.error(
                "Event handler %s failed for %s: %r",
                handler.__name__,
                event.event_type.value,
                result,
            )
    return failures
