"""Fan-out of state, metrics and command acknowledgements to observers."""

from __future__ import annotations

import itertools
import queue
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from milestonecontrol.domain.tracking import ActivityEvent, TrackingStore
from milestonecontrol.domain.tracking.aggregate import DEFAULT_RECENT_ACTIVITY
from milestonecontrol.domain.tracking.models import utc_timestamp

STATE_EVENT = "milestone_state_update"
METRICS_EVENT = "milestone_metrics_update"
COMMAND_EVENT = "command_processed"

DEFAULT_QUEUE_SIZE = 100


@dataclass(frozen=True)
class BroadcastMessage:
    kind: str
    payload: Dict[str, Any]


@dataclass
class Subscription:
    id: int
    queue: "queue.Queue[BroadcastMessage]"
    dropped: int = 0
    closed: bool = False

    def get(self, timeout: Optional[float] = None) -> Optional[BroadcastMessage]:
        try:
            return self.queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[BroadcastMessage]:
        messages: List[BroadcastMessage] = []
        while True:
            try:
                messages.append(self.queue.get_nowait())
            except queue.Empty:
                return messages


class StateBroadcaster:
    """Non-blocking publisher; a full or closed observer only loses its own copy."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE, recent_limit: int = DEFAULT_RECENT_ACTIVITY) -> None:
        self.queue_size = queue_size
        self.recent_limit = recent_limit
        self._subscribers: Dict[int, Subscription] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)

    def subscribe(self, queue_size: Optional[int] = None) -> Subscription:
        size = queue_size if queue_size is not None else self.queue_size
        subscription = Subscription(id=next(self._ids), queue=queue.Queue(maxsize=max(size, 1)))
        with self._lock:
            self._subscribers[subscription.id] = subscription
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.closed = True
        with self._lock:
            self._subscribers.pop(subscription.id, None)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, kind: str, payload: Dict[str, Any]) -> int:
        """Offer ``payload`` to every observer; returns how many accepted it."""

        message = BroadcastMessage(kind=kind, payload=payload)
        with self._lock:
            subscribers = list(self._subscribers.values())
        delivered = 0
        for subscription in subscribers:
            if subscription.closed:
                self.unsubscribe(subscription)
                continue
            try:
                subscription.queue.put_nowait(message)
            except queue.Full:
                subscription.dropped += 1
                continue
            delivered += 1
        return delivered

    def broadcast_state(self, store: TrackingStore, trigger: Optional[ActivityEvent] = None) -> None:
        snapshot = store.snapshot(self.recent_limit)
        snapshot["trigger"] = trigger.to_dict() if trigger is not None else None
        self.publish(STATE_EVENT, snapshot)
        self.publish(METRICS_EVENT, store.metrics())

    def acknowledge(
        self,
        command: str,
        *,
        state_changed: bool = False,
        error: Optional[str] = None,
        message: Optional[str] = None,
    ) -> Dict[str, Any]:
        if error is None:
            payload: Dict[str, Any] = {
                "command": command,
                "success": True,
                "stateChanged": state_changed,
                "timestamp": utc_timestamp(),
            }
        else:
            payload = {
                "command": command,
                "success": False,
                "error": error,
                "timestamp": utc_timestamp(),
            }
        if message:
            payload["message"] = message
        self.publish(COMMAND_EVENT, payload)
        return payload


__all__ = [
    "BroadcastMessage",
    "COMMAND_EVENT",
    "DEFAULT_QUEUE_SIZE",
    "METRICS_EVENT",
    "STATE_EVENT",
    "StateBroadcaster",
    "Subscription",
]
