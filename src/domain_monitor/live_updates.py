"""
In-process fan-out of fresh health snapshots to real-time observers.
"""

import asyncio
from typing import Optional

from .event_logger import ComponentLogging, EventLogger
from .models import HealthSnapshot


class LiveUpdateHub(ComponentLogging):
    """
    Delivers snapshots to subscribed asyncio queues.

    `publish` never waits for an observer: a full queue drops the update.
    """

    COMPONENT = "live-updates"

    def __init__(self, queue_size: int = 100, logger: Optional[EventLogger] = None) -> None:
        self._queue_size = queue_size
        self._logger = logger
        self._subscribers: dict[Optional[int], list[asyncio.Queue]] = {}

    def subscribe(self, domain_id: Optional[int] = None) -> asyncio.Queue:
        """Queue receiving (domain_id, snapshot) pairs; domain_id None means all domains."""
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.setdefault(domain_id, []).append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        for key, queues in list(self._subscribers.items()):
            if queue in queues:
                queues.remove(queue)
            if not queues:
                del self._subscribers[key]

    @property
    def subscriber_count(self) -> int:
        return sum(len(q) for q in self._subscribers.values())

    def publish(self, domain_id: int, snapshot: HealthSnapshot) -> None:
        targets = self._subscribers.get(domain_id, []) + self._subscribers.get(None, [])
        for queue in targets:
            try:
                queue.put_nowait((domain_id, snapshot))
            except asyncio.QueueFull:
                self._log_warn("Dropped live update for slow observer", {"domain_id": domain_id})
