from __future__ import annotations

import json
import logging
import queue
import re
import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from cardgen.errors import InvalidSessionError
from cardgen.models.progress_event import ProgressEvent

"""Progress channel: session-scoped publish/subscribe.

A subscriber joins a session id and receives, in publish order, every event
published for that session while it is subscribed. Nothing is replayed: events
published before the join, or for a session with no subscriber, are dropped.

Events:
  progress  {"total","processed","percentage","currentCard"}
  error     {"message"} terminal
  done      {"jobId","downloadUrl"} terminal
"""

__all__ = [
    "EVENT_PROGRESS",
    "EVENT_ERROR",
    "EVENT_DONE",
    "ChannelEvent",
    "Subscription",
    "ProgressChannel",
    "validate_session_id",
]

logger = logging.getLogger(__name__)

EVENT_PROGRESS = "progress"
EVENT_ERROR = "error"
EVENT_DONE = "done"
TERMINAL_EVENTS = frozenset({EVENT_ERROR, EVENT_DONE})

# e.g. session_1718000000000_k3j9x0a1b (browser-generated)
SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,128}$")


def validate_session_id(session_id: Any) -> str:
    if not isinstance(session_id, str) or not SESSION_ID_RE.match(session_id):
        raise InvalidSessionError(f"malformed session id: {session_id!r}")
    return session_id


@dataclass(frozen=True)
class ChannelEvent:
    name: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.name in TERMINAL_EVENTS

    def to_sse(self) -> str:
        """Server-Sent Events frame."""
        payload = json.dumps(self.data, ensure_ascii=False)
        return f"event: {self.name}\ndata: {payload}\n\n"


class Subscription:
    """One subscriber's FIFO view of a session's events."""

    def __init__(self, channel: ProgressChannel, session_id: str) -> None:
        self.channel = channel
        self.session_id = session_id
        self._queue: queue.Queue[ChannelEvent] = queue.Queue()
        self.closed = False

    def _deliver(self, event: ChannelEvent) -> None:
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> ChannelEvent | None:
        """Next event, or None when ``timeout`` elapses first."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[ChannelEvent]:
        """Events up to and including the first terminal one."""
        while not self.closed:
            event = self.get(timeout=0.5)
            if event is None:
                continue
            yield event
            if event.is_terminal:
                return

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.channel.unsubscribe(self)

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()


class ProgressChannel:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[str, list[Subscription]] = {}

    def subscribe(self, session_id: str) -> Subscription:
        validate_session_id(session_id)
        sub = Subscription(self, session_id)
        with self._lock:
            self._subscribers.setdefault(session_id, []).append(sub)
        logger.debug("subscribe session=%s", session_id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.session_id)
            if not subs:
                return
            if sub in subs:
                subs.remove(sub)
            if not subs:
                del self._subscribers[sub.session_id]
        logger.debug("unsubscribe session=%s", sub.session_id)

    def subscriber_count(self, session_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(session_id, ()))

    def publish(self, session_id: str, name: str, data: dict[str, Any] | None = None) -> int:
        """Deliver to the session's current subscribers; returns how many got it."""
        event = ChannelEvent(name=name, data=dict(data or {}))
        # Deliver under the lock so concurrent publishers cannot interleave per subscriber
        with self._lock:
            subs = list(self._subscribers.get(session_id, ()))
            for sub in subs:
                sub._deliver(event)
        return len(subs)

    def publish_progress(self, event: ProgressEvent) -> int:
        return self.publish(event.session_id, EVENT_PROGRESS, event.to_dict())
