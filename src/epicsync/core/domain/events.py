"""
Domain Events - Things that happened during a sync run.

Events are immutable records published on an EventBus. Subscribers
(audit logging, CLI output, tests) react without the orchestrator knowing
about them.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    event_id: str = field(default_factory=lambda: str(uuid4())[:8], kw_only=True)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc), kw_only=True)


@dataclass(frozen=True)
class SyncStarted(DomainEvent):
    """A sync run began."""

    epic_root: str
    provider: str
    dry_run: bool = False


@dataclass(frozen=True)
class ItemCreated(DomainEvent):
    """A remote item was created (or would be, in dry-run)."""

    local_id: str
    item_type: str
    remote_id: str | None = None
    remote_url: str | None = None


@dataclass(frozen=True)
class ItemUpdated(DomainEvent):
    """A mapped item changed on one side and was reconciled."""

    local_id: str
    remote_id: str
    direction: str = "push"  # push | pull


@dataclass(frozen=True)
class ConflictDetected(DomainEvent):
    """Both sides changed since the last sync."""

    local_id: str
    remote_id: str
    outcome: str


@dataclass(frozen=True)
class NodeFailed(DomainEvent):
    """A node could not be synchronized."""

    local_id: str
    reason: str


@dataclass(frozen=True)
class SyncCompleted(DomainEvent):
    """A sync run finished (possibly with failures)."""

    epic_root: str
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    conflicts: int = 0


EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """
    Simple synchronous publish/subscribe bus.

    Subscribing to DomainEvent receives every event. Handler errors are
    logged and never interrupt the publisher.
    """

    def __init__(self) -> None:
        self._handlers: dict[type[DomainEvent], list[EventHandler]] = defaultdict(list)
        self._history: list[DomainEvent] = []
        self._lock = threading.Lock()
        self.logger = logging.getLogger("EventBus")

    def subscribe(self, event_type: type[DomainEvent], handler: EventHandler) -> None:
        """Register a handler for an event type (and its subclasses)."""
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: type[DomainEvent], handler: EventHandler) -> None:
        """Remove a previously registered handler."""
        with self._lock:
            if handler in self._handlers.get(event_type, []):
                self._handlers[event_type].remove(handler)

    def publish(self, event: DomainEvent) -> None:
        """Deliver an event to every matching handler."""
        with self._lock:
            self._history.append(event)
            handlers = [
                handler
                for event_type, registered in self._handlers.items()
                if isinstance(event, event_type)
                for handler in registered
            ]

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Event handler failed for {type(event).__name__}: {e}")

    @property
    def history(self) -> list[DomainEvent]:
        """Events published so far, in order."""
        with self._lock:
            return list(self._history)

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()
