"""Per-recipient notifications raised by domain events."""

import threading
from collections import OrderedDict
from typing import Dict, List, Optional, Tuple, Union

from skygig.core.clock import Clock, IdGenerator
from skygig.core.errors import Forbidden, NotFound, ValidationError, parse_enum
from skygig.core.events import (
    ApplicantApplied,
    ApplicantDecided,
    ApplicantWithdrawn,
    DeliveryMode,
    DomainEvent,
    EventBus,
    MessageSent,
    StageCompleted,
)
from skygig.core.locking import LockRegistry
from skygig.core.models import ApplicantStatus, Notification, NotificationType
from skygig.utils.logging import get_logger

logger = get_logger(__name__)

TABS = ("all", "unread", "message", "offer", "system")
PREVIEW_LENGTH = 140


def _preview(text: str) -> str:
    if len(text) <= PREVIEW_LENGTH:
        return text
    return text[:PREVIEW_LENGTH - 1].rstrip() + "…"


class NotificationCenter:
    """Owns notifications and their read state.

    UI code only reads and marks notifications; they are created by the
    event handlers below. A notification raised by an event is created at
    most once per recipient, even if the event is delivered again.
    """

    def __init__(
        self,
        bus: EventBus,
        clock: Clock,
        ids: IdGenerator,
        mode: DeliveryMode = DeliveryMode.BACKGROUND,
        dedup_window: int = 10_000
    ):
        self.logger = logger.bind(component="notification_center")
        self.bus = bus
        self.clock = clock
        self.ids = ids

        self._by_recipient: Dict[str, Dict[str, Notification]] = {}
        self._recipient_of: Dict[str, str] = {}
        # (event_id, recipient_id) -> notification id, oldest evicted first.
        self._seen_events: "OrderedDict[Tuple[str, str], str]" = OrderedDict()
        self.dedup_window = dedup_window
        self._seen_lock = threading.Lock()
        self._locks = LockRegistry("notification_recipients")

        self.subscription = bus.subscribe(
            "notification_center.fan_in",
            self.handle_event,
            ApplicantApplied,
            ApplicantDecided,
            ApplicantWithdrawn,
            MessageSent,
            StageCompleted,
            mode=mode
        )

    def _remember(self, event_id: str, recipient_id: str, notification_id: str) -> None:
        with self._seen_lock:
            self._seen_events[(event_id, recipient_id)] = notification_id
            while len(self._seen_events) > self.dedup_window:
                self._seen_events.popitem(last=False)

    def _require(self, notification_id: str, caller_id: str) -> Notification:
        recipient_id = self._recipient_of.get(notification_id)
        notification = self._by_recipient.get(recipient_id, {}).get(notification_id) if recipient_id else None
        if notification is None:
            raise NotFound("notification", notification_id)
        if recipient_id != caller_id:
            raise Forbidden(f"notification {notification_id} belongs to another user")
        return notification

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def notify(
        self,
        recipient_id: str,
        type: Union[NotificationType, str],
        title: str,
        body: Optional[str] = None,
        job_id: Optional[str] = None,
        job_title: Optional[str] = None,
        event_id: Optional[str] = None
    ) -> Optional[Notification]:
        """Create a notification. With ``event_id`` it is created once per recipient.

        Returns the existing notification for a repeated event, or ``None``
        if the recipient has cleared it since.
        """
        if not title or not title.strip():
            raise ValidationError("Notification title is empty", {"title": "must not be empty"})
        type = parse_enum(NotificationType, type, "type")

        with self._locks.hold(recipient_id):
            inbox = self._by_recipient.setdefault(recipient_id, {})
            if event_id is not None:
                with self._seen_lock:
                    existing_id = self._seen_events.get((event_id, recipient_id))
                if existing_id is not None:
                    self.logger.debug("Duplicate event ignored", event_id=event_id, recipient_id=recipient_id)
                    existing = inbox.get(existing_id)
                    return existing.model_copy() if existing is not None else None

            notification = Notification(
                id=self.ids.new_id("ntf"),
                recipient_id=recipient_id,
                type=type,
                title=title.strip(),
                body=body,
                created_at=self.clock.now(),
                job_id=job_id,
                job_title=job_title,
                event_id=event_id
            )
            inbox[notification.id] = notification
            self._recipient_of[notification.id] = recipient_id
            if event_id is not None:
                self._remember(event_id, recipient_id, notification.id)

        self.logger.info(
            "Notification created",
            notification_id=notification.id,
            recipient_id=recipient_id,
            type=type.value,
            event_id=event_id
        )
        return notification.model_copy()

    def mark_read(self, notification_id: str, caller_id: str) -> Notification:
        """Mark one notification read. Safe to repeat."""
        with self._locks.hold(caller_id):
            notification = self._require(notification_id, caller_id)
            if not notification.read:
                notification = notification.model_copy(update={"read": True})
                self._by_recipient[caller_id][notification_id] = notification
            return notification.model_copy()

    def mark_all_read(self, recipient_id: str) -> int:
        """Mark every notification of ``recipient_id`` read; returns how many changed."""
        with self._locks.hold(recipient_id):
            inbox = self._by_recipient.get(recipient_id, {})
            unread = [n for n in inbox.values() if not n.read]
            for notification in unread:
                inbox[notification.id] = notification.model_copy(update={"read": True})

        if unread:
            self.logger.info("Notifications marked read", recipient_id=recipient_id, count=len(unread))
        return len(unread)

    def clear_read(self, recipient_id: str) -> int:
        """Delete the recipient's read notifications. Irreversible."""
        with self._locks.hold(recipient_id):
            inbox = self._by_recipient.get(recipient_id, {})
            cleared = [nid for nid, n in inbox.items() if n.read]
            for notification_id in cleared:
                del inbox[notification_id]
                self._recipient_of.pop(notification_id, None)

        self.logger.info("Read notifications cleared", recipient_id=recipient_id, count=len(cleared))
        return len(cleared)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, notification_id: str, caller_id: str) -> Notification:
        return self._require(notification_id, caller_id).model_copy()

    def list_for(self, recipient_id: str, tab: str = "all", query: Optional[str] = None) -> List[Notification]:
        """Notifications of a recipient, newest first."""
        if tab not in TABS:
            raise ValidationError("Unknown tab", {"tab": f"Expected one of {', '.join(TABS)}"})
        items = list(self._by_recipient.get(recipient_id, {}).values())
        if tab == "unread":
            items = [n for n in items if not n.read]
        elif tab != "all":
            items = [n for n in items if n.type.value == tab]
        if query and query.strip():
            q = query.strip().lower()
            items = [
                n for n in items
                if q in n.title.lower() or q in (n.body or "").lower() or q in (n.job_title or "").lower()
            ]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return [n.model_copy() for n in items]

    def unread_count(self, recipient_id: str) -> int:
        return sum(1 for n in list(self._by_recipient.get(recipient_id, {}).values()) if not n.read)

    # ------------------------------------------------------------------
    # Event fan-in
    # ------------------------------------------------------------------

    def handle_event(self, event: DomainEvent) -> None:
        if isinstance(event, ApplicantDecided):
            approved = event.status == ApplicantStatus.APPROVED
            self.notify(
                event.candidate_id,
                NotificationType.OFFER,
                "Your application was approved" if approved else "Your application was not accepted",
                body=f"The poster {'approved' if approved else 'declined'} your application for {event.job_title}.",
                job_id=event.job_id,
                job_title=event.job_title,
                event_id=event.event_id
            )
        elif isinstance(event, MessageSent):
            self.notify(
                event.recipient_id,
                NotificationType.MESSAGE,
                f"{event.sender_id} sent you a message",
                body=_preview(event.text),
                job_id=event.job_id,
                event_id=event.event_id
            )
        elif isinstance(event, ApplicantApplied):
            self.notify(
                event.owner_id,
                NotificationType.SYSTEM,
                f"New applicant for {event.job_title}",
                body=f"{event.candidate_id} applied to your job.",
                job_id=event.job_id,
                job_title=event.job_title,
                event_id=event.event_id
            )
        elif isinstance(event, ApplicantWithdrawn):
            self.notify(
                event.owner_id,
                NotificationType.SYSTEM,
                f"Application withdrawn for {event.job_title}",
                body=f"{event.candidate_id} withdrew their application.",
                job_id=event.job_id,
                job_title=event.job_title,
                event_id=event.event_id
            )
        elif isinstance(event, StageCompleted):
            other = event.owner_id if event.completed_by == event.candidate_id else event.candidate_id
            self.notify(
                other,
                NotificationType.SYSTEM,
                f"Work on {event.job_title} marked complete",
                body=f"{event.completed_by} marked the job as completed.",
                job_id=event.job_id,
                job_title=event.job_title,
                event_id=event.event_id
            )
