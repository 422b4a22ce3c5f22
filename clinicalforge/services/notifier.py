"""In-process change notifications for the submission collection.

The repository publishes a ``ChangeEvent`` after every committed write. Listeners
are plain callables; a failing listener is logged and does not stop the others.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChangeEvent:
    kind: str  # "created" | "updated" | "status_changed"
    submission_id: str
    collaborator_id: str
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[ChangeEvent], None]


class ChangeNotifier:
    """Fan-out of change events to registered listeners.

    Usage:
        unsubscribe = notifier.subscribe(on_change)
        ...
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                logger.exception(
                    "Change listener failed for %s (kind=%s)", event.submission_id, event.kind
                )
