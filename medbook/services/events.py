"""In-process publish/subscribe for "schedule changed" notifications.

Route handlers run in a worker thread while WebSocket subscribers live on the
event loop, so events are handed over with ``call_soon_threadsafe``.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleEvent:
    doctor_id: int
    doctor_name: str
    message: str
    timestamp: datetime

    def to_dict(self) -> dict:
        return {
            'doctor_id': self.doctor_id,
            'doctor_name': self.doctor_name,
            'message': self.message,
            'timestamp': self.timestamp.isoformat(),
        }


def topic_for(doctor_id: int) -> str:
    return f'doctor-schedule-{doctor_id}'


class ScheduleEventBroker:
    def __init__(self) -> None:
        self._lock = Lock()
        self._subscribers: dict[str, list[tuple[asyncio.AbstractEventLoop, asyncio.Queue]]] = {}

    def subscribe(self, topic: str) -> asyncio.Queue:
        """Register a queue on the running loop; must be called from a coroutine."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._subscribers.setdefault(topic, []).append((loop, queue))
        return queue

    def unsubscribe(self, topic: str, queue: asyncio.Queue) -> None:
        with self._lock:
            remaining = [entry for entry in self._subscribers.get(topic, []) if entry[1] is not queue]
            if remaining:
                self._subscribers[topic] = remaining
            else:
                self._subscribers.pop(topic, None)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._subscribers.get(topic, []))

    def publish(self, topic: str, event: ScheduleEvent) -> int:
        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))

        delivered = 0
        for loop, queue in subscribers:
            try:
                loop.call_soon_threadsafe(queue.put_nowait, event)
            except RuntimeError:
                # The subscriber's loop has shut down; forget it.
                logger.info('Dropping subscriber on closed loop for %s', topic)
                self.unsubscribe(topic, queue)
                continue
            delivered += 1
        return delivered


broker = ScheduleEventBroker()


def notify_schedule_changed(doctor, message: str) -> int:
    event = ScheduleEvent(
        doctor_id=doctor.id,
        doctor_name=doctor.full_name,
        message=message,
        timestamp=datetime.now(),
    )
    delivered = broker.publish(topic_for(doctor.id), event)
    logger.info('Schedule change for doctor %s delivered to %s subscriber(s): %s', doctor.id, delivered, message)
    return delivered
