"""
System event queue.

System events are short texts (cron results, wake-ups) queued per session
key and prepended to the next agent turn of that session. The queue is
bounded and ignores a text identical to the one queued last.
"""
from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass

MAX_EVENTS_PER_SESSION = 20


@dataclass(frozen=True)
class SystemEvent:
    text: str
    ts: int


class SystemEventQueue:
    """
    Thread-safe per-session queue of system events.

    Example:
        ```python
        events = SystemEventQueue()
        events.enqueue("Cron: done", session_key="agent:main:main")

        # reply loop, before building the next prompt
        for event in events.drain("agent:main:main"):
            ...
        ```
    """

    def __init__(self, max_events: int = MAX_EVENTS_PER_SESSION):
        self._queues: dict[str, deque[SystemEvent]] = {}
        self._max_events = max_events
        self._lock = threading.Lock()

    def enqueue(self, text: str, session_key: str) -> bool:
        """
        Queue a system event.

        Returns:
            False when the text is blank or repeats the last queued event
        """
        cleaned = (text or "").strip()
        key = (session_key or "").strip()
        if not cleaned or not key:
            return False

        with self._lock:
            queue = self._queues.get(key)
            if queue is None:
                queue = deque(maxlen=self._max_events)
                self._queues[key] = queue
            if queue and queue[-1].text == cleaned:
                return False
            queue.append(SystemEvent(text=cleaned, ts=int(time.time() * 1000)))
            return True

    def drain(self, session_key: str) -> list[SystemEvent]:
        """Pop every queued event for a session."""
        with self._lock:
            queue = self._queues.pop((session_key or "").strip(), None)
            return list(queue) if queue else []

    def peek(self, session_key: str) -> list[str]:
        with self._lock:
            queue = self._queues.get((session_key or "").strip())
            return [event.text for event in queue] if queue else []

    def has_events(self, session_key: str) -> bool:
        with self._lock:
            return bool(self._queues.get((session_key or "").strip()))

    def clear(self) -> None:
        with self._lock:
            self._queues.clear()
