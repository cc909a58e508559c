"""
In-process persistence change notifications.

Repositories publish after every committed mutation; the restore path
publishes once per replaced collection. Delivery is synchronous, in
subscription order, on the publishing thread. A listener that raises is
logged and skipped: it never blocks later listeners and never reaches the
writer that published.
"""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

logger = logging.getLogger(__name__)


class ChangeKind(Enum):
    """Why a collection changed."""

    WRITE = "write"        # add / update / delete through a repository
    RESTORED = "restored"  # replaced wholesale by a backup restore


@dataclass(frozen=True)
class ChangeEvent:
    collection: str
    kind: ChangeKind = ChangeKind.WRITE


Listener = Callable[[ChangeEvent], None]


class PersistenceChangeBus:
    """Publish/subscribe for collection changes."""

    def __init__(self):
        self._listeners: list[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A callable that removes the listener again
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                try:
                    self._listeners.remove(listener)
                except ValueError:
                    pass  # already removed

        return unsubscribe

    def publish(self, collection: str, kind: ChangeKind = ChangeKind.WRITE) -> None:
        """Deliver a change event to every listener, in registration order."""
        event = ChangeEvent(collection, kind)
        # Snapshot so listeners may (un)subscribe during delivery
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Change listener %r failed for %s (%s)",
                    listener, collection, kind.value,
                )

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)
