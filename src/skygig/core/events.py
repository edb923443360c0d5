"""Domain events and the in-process event bus.

Components publish events while still holding the lock of the aggregate that
changed, so the order events are enqueued in matches the order the changes
were committed. Each subscription drains its own FIFO queue, either inline
(by the publishing thread, right after it releases the aggregate lock) or on
a dedicated background worker thread.
"""

import queue
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Deque, List, Optional, Tuple, Type

from skygig.core.models import ApplicantStatus
from skygig.utils.logging import get_logger

logger = get_logger(__name__)


def _event_id() -> str:
    return f"evt_{uuid.uuid4().hex}"


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Base class for everything published on the bus."""
    aggregate_id: str
    occurred_at: datetime
    event_id: str = field(default_factory=_event_id)

    @property
    def name(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, kw_only=True)
class JobPublished(DomainEvent):
    job_id: str
    owner_id: str
    title: str


@dataclass(frozen=True, kw_only=True)
class JobClosed(DomainEvent):
    job_id: str
    owner_id: str
    title: str


@dataclass(frozen=True, kw_only=True)
class JobDeleted(DomainEvent):
    job_id: str
    owner_id: str


@dataclass(frozen=True, kw_only=True)
class ApplicantApplied(DomainEvent):
    applicant_id: str
    job_id: str
    job_title: str
    owner_id: str
    candidate_id: str


@dataclass(frozen=True, kw_only=True)
class ApplicantDecided(DomainEvent):
    applicant_id: str
    job_id: str
    job_title: str
    owner_id: str
    candidate_id: str
    status: ApplicantStatus


@dataclass(frozen=True, kw_only=True)
class ApplicantWithdrawn(DomainEvent):
    applicant_id: str
    job_id: str
    job_title: str
    owner_id: str
    candidate_id: str


@dataclass(frozen=True, kw_only=True)
class StageCompleted(DomainEvent):
    job_id: str
    job_title: str
    candidate_id: str
    owner_id: str
    completed_by: str


@dataclass(frozen=True, kw_only=True)
class MessageSent(DomainEvent):
    message_id: str
    conversation_id: str
    job_id: str
    sender_id: str
    recipient_id: str
    text: str


Handler = Callable[[DomainEvent], None]


class DeliveryMode(str, Enum):
    """How a subscription receives events."""
    INLINE = "inline"
    BACKGROUND = "background"


class Subscription:
    """One subscriber's ordered queue of pending events."""

    def __init__(self, name: str, handler: Handler, event_types: Tuple[Type[DomainEvent], ...], mode: DeliveryMode):
        self.name = name
        self.handler = handler
        self.event_types = event_types
        self.mode = mode
        self.delivered = 0
        self.failed = 0
        # Inline subscriptions: drained under delivery_lock by publishers.
        self.pending: Deque[DomainEvent] = deque()
        self.delivery_lock = threading.RLock()
        # Background subscriptions: drained by a worker thread.
        self.queue: "queue.Queue[DomainEvent]" = queue.Queue()
        self.worker: Optional[threading.Thread] = None

    def accepts(self, event: DomainEvent) -> bool:
        return not self.event_types or isinstance(event, self.event_types)

    def deliver(self, event: DomainEvent) -> None:
        try:
            self.handler(event)
            self.delivered += 1
        except Exception as e:
            # The publishing operation has already committed; a failing
            # subscriber is reported, never retried.
            self.failed += 1
            logger.error(
                "Event handler failed",
                subscription=self.name,
                event_name=event.name,
                event_id=event.event_id,
                error=str(e),
                error_type=type(e).__name__
            )


class EventBus:
    """Ordered fan-out of domain events to subscribers."""

    def __init__(self, poll_seconds: float = 0.5):
        self.logger = logger.bind(component="event_bus")
        self.poll_seconds = poll_seconds
        self._lock = threading.Lock()
        self._subscriptions: List[Subscription] = []
        self._stopping = threading.Event()
        self.published = 0

    def subscribe(
        self,
        name: str,
        handler: Handler,
        *event_types: Type[DomainEvent],
        mode: DeliveryMode = DeliveryMode.INLINE
    ) -> Subscription:
        """Register ``handler`` for ``event_types`` (all events if none given)."""
        subscription = Subscription(name, handler, tuple(event_types), mode)
        if mode == DeliveryMode.BACKGROUND:
            subscription.worker = threading.Thread(
                target=self._worker_loop,
                args=(subscription,),
                name=f"event-bus-{name}",
                daemon=True
            )
            subscription.worker.start()
        with self._lock:
            self._subscriptions.append(subscription)

        self.logger.info(
            "Subscription registered",
            subscription=name,
            mode=mode.value,
            event_types=[t.__name__ for t in event_types] or ["*"]
        )
        return subscription

    def publish(self, event: DomainEvent) -> None:
        """Enqueue ``event`` for every interested subscriber.

        Must be called while the lock of the changed aggregate is held.
        Inline subscribers only run once :meth:`flush` is called.
        """
        if self._stopping.is_set():
            self.logger.warning("Event dropped, bus is closed", event_name=event.name, event_id=event.event_id)
            return
        with self._lock:
            self.published += 1
            for subscription in self._subscriptions:
                if not subscription.accepts(event):
                    continue
                if subscription.mode == DeliveryMode.BACKGROUND:
                    subscription.queue.put(event)
                else:
                    subscription.pending.append(event)

        self.logger.debug("Event published", event_name=event.name, event_id=event.event_id, aggregate_id=event.aggregate_id)

    def flush(self) -> None:
        """Deliver pending events to inline subscribers in enqueue order.

        Called by publishers after releasing their aggregate lock.
        """
        with self._lock:
            inline = [s for s in self._subscriptions if s.mode == DeliveryMode.INLINE]
        for subscription in inline:
            self.drain(subscription)

    def drain(self, subscription: Subscription) -> None:
        """Deliver the pending events of one inline subscription.

        Safe to call while holding an aggregate lock as long as the handler
        takes no aggregate lock itself.
        """
        with subscription.delivery_lock:
            while subscription.pending:
                subscription.deliver(subscription.pending.popleft())

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until background queues are drained. Returns False on timeout."""
        self.flush()
        with self._lock:
            background = [s for s in self._subscriptions if s.mode == DeliveryMode.BACKGROUND]
        deadline = None if timeout is None else time.monotonic() + timeout
        for subscription in background:
            pending = subscription.queue
            # Same condition Queue.join() waits on, with a deadline added.
            with pending.all_tasks_done:
                while pending.unfinished_tasks:
                    if deadline is None:
                        pending.all_tasks_done.wait()
                        continue
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return False
                    pending.all_tasks_done.wait(remaining)
        return True

    def close(self) -> None:
        """Drain outstanding events and stop background workers."""
        if self._stopping.is_set():
            return
        self.wait_idle()
        self._stopping.set()
        with self._lock:
            workers = [s.worker for s in self._subscriptions if s.worker is not None]
        for worker in workers:
            worker.join(timeout=5)
        self.logger.info("Event bus closed", published=self.published)

    def stats(self) -> List[dict]:
        with self._lock:
            return [
                {
                    "subscription": s.name,
                    "mode": s.mode.value,
                    "delivered": s.delivered,
                    "failed": s.failed,
                    "pending": len(s.pending) if s.mode == DeliveryMode.INLINE else s.queue.qsize(),
                }
                for s in self._subscriptions
            ]

    def _worker_loop(self, subscription: Subscription) -> None:
        while not self._stopping.is_set():
            try:
                event = subscription.queue.get(timeout=self.poll_seconds)
            except queue.Empty:
                continue
            try:
                subscription.deliver(event)
            finally:
                subscription.queue.task_done()
