"""In-process events emitted by the catalog and the dispatcher."""

from switchboard.events.bus import Event, EventBus, EventHandler

__all__ = ["Event", "EventBus", "EventHandler"]
