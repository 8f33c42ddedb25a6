"""Event bus for Switchboard.

Observers (the CLI, loggers, UI layers) follow catalog changes and
dispatch outcomes through the bus instead of reaching into core state.
Subscriptions can be narrowed by event type, by topic, or both.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

logger = logging.getLogger(__name__)


@dataclass
class Event:
    """A single notification. ``topic_id`` is empty for catalog events."""

    event_type: str
    topic_id: str = ""
    data: dict = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now().isoformat()


# Plain callables or coroutine functions
EventHandler = Callable[[Event], Any]


@dataclass(eq=False)
class _Subscription:
    handler: EventHandler
    event_type: str | None = None
    topic_id: str | None = None

    def matches(self, event: Event) -> bool:
        return _matches(event, self.event_type, self.topic_id)


def _matches(event: Event, event_type: str | None, topic_id: str | None) -> bool:
    if event_type is not None and event.event_type != event_type:
        return False
    return topic_id is None or event.topic_id == topic_id


def _is_async(handler: EventHandler) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(
        getattr(handler, "__call__", None)
    )


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


class EventBus:
    """In-process event bus.

    Sync handlers run inline in subscription order. Async handlers become
    tasks on the running loop (``drain`` waits for them) and are skipped
    when no loop is running. Handler failures are logged, never raised.
    """

    def __init__(self, max_history: int = 500) -> None:
        self._subscriptions: list[_Subscription] = []
        self._history: deque[Event] = deque(maxlen=max_history)
        self._tasks: set[asyncio.Task[Any]] = set()

    def _add(self, subscription: _Subscription) -> Callable[[], None]:
        self._subscriptions.append(subscription)

        def remove() -> None:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

        return remove

    def _remove(self, handler: EventHandler, event_type: str | None) -> None:
        for sub in self._subscriptions:
            if sub.handler == handler and sub.event_type == event_type and sub.topic_id is None:
                self._subscriptions.remove(sub)
                return

    def subscribe(self, event_type: str, handler: EventHandler) -> Callable[[], None]:
        """Deliver events of one type. Returns a function that unsubscribes."""
        return self._add(_Subscription(handler, event_type=event_type))

    def subscribe_all(self, handler: EventHandler) -> Callable[[], None]:
        return self._add(_Subscription(handler))

    def subscribe_topic(
        self, topic_id: str, handler: EventHandler, event_type: str | None = None,
    ) -> Callable[[], None]:
        """Deliver events of one conversation topic, optionally of one type."""
        return self._add(_Subscription(handler, event_type=event_type, topic_id=topic_id))

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        self._remove(handler, event_type)

    def unsubscribe_all(self, handler: EventHandler) -> None:
        self._remove(handler, None)

    def publish(self, event_type: str, topic_id: str = "", **data: Any) -> Event:
        event = Event(event_type=event_type, topic_id=topic_id, data=data)
        self.emit(event)
        return event

    def emit(self, event: Event) -> None:
        self._history.append(event)
        for sub in [s for s in self._subscriptions if s.matches(event)]:
            if _is_async(sub.handler):
                self._start_task(sub.handler, event)
                continue
            try:
                sub.handler(event)
            except Exception as e:
                logger.warning(
                    "Event handler %s failed for %s: %s",
                    _handler_name(sub.handler), event.event_type, e,
                )

    def _start_task(self, handler: EventHandler, event: Event) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, dropped async handler %s", _handler_name(handler))
            return
        task = loop.create_task(handler(event))
        self._tasks.add(task)
        task.add_done_callback(self._task_finished)

    def _task_finished(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Async event handler failed: %s", task.exception())

    def recent_events(
        self,
        limit: int = 50,
        event_type: str | None = None,
        topic_id: str | None = None,
    ) -> list[Event]:
        return [e for e in self._history if _matches(e, event_type, topic_id)][-limit:]

    def clear(self) -> None:
        """Forget subscribers and history; cancel async handlers still running."""
        self._subscriptions.clear()
        self._history.clear()
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until async handler tasks started so far have finished."""
        if not self._tasks:
            return
        _, pending = await asyncio.wait(list(self._tasks), timeout=timeout)
        if pending:
            logger.warning("%d event handler task(s) still running after drain", len(pending))
