"""Wiring of the marketplace components around one event bus."""

from typing import Any, Dict, Optional

from skygig.config import Settings, settings as default_settings
from skygig.core.clock import Clock, IdGenerator
from skygig.core.events import DeliveryMode, EventBus
from skygig.jobs.matchhub import MatchHub
from skygig.jobs.pipeline import ApplicantPipeline
from skygig.jobs.store import JobStore
from skygig.messaging.conversations import ContactPolicy, ConversationStore
from skygig.messaging.notifications import NotificationCenter
from skygig.utils.logging import get_logger

logger = get_logger(__name__)


class Marketplace:
    """
    The lifecycle service behind the marketplace UI.

    Builds every component and subscribes MatchHub, NotificationCenter and
    the JobStore applicant index to the shared event bus. Subscriptions are
    registered before any operation can run, so no event is missed.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        ids: Optional[IdGenerator] = None,
        is_contactable: Optional[ContactPolicy] = None
    ):
        self.settings = settings or default_settings
        self.logger = logger.bind(component="marketplace")
        self.clock = clock or Clock()
        self.ids = ids or IdGenerator()
        self.bus = EventBus(poll_seconds=self.settings.event_worker_poll_seconds)

        self.jobs = JobStore(self.bus, self.clock, self.ids, self.settings)
        self.pipeline = ApplicantPipeline(self.jobs, self.bus, self.clock, self.ids)
        self.matches = MatchHub(self.bus, self.clock)
        self.conversations = ConversationStore(self.bus, self.clock, self.ids, is_contactable)
        self.notifications = NotificationCenter(
            self.bus,
            self.clock,
            self.ids,
            mode=DeliveryMode(self.settings.notification_dispatch),
            dedup_window=self.settings.notification_dedup_window
        )

        self.logger.info(
            "Marketplace initialized",
            notification_dispatch=self.settings.notification_dispatch,
            closing_soon_days=self.settings.closing_soon_days
        )

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until every published event has reached its subscribers."""
        return self.bus.wait_idle(timeout)

    def health(self) -> Dict[str, Any]:
        return {
            "events_published": self.bus.published,
            "subscriptions": self.bus.stats(),
        }

    def close(self) -> None:
        self.bus.close()
        self.logger.info("Marketplace closed")

    def __enter__(self) -> "Marketplace":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
