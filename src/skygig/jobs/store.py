"""Job posting storage and lifecycle."""

import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Set

from skygig.config import Settings, settings as default_settings
from skygig.core.clock import Clock, IdGenerator
from skygig.core.errors import Conflict, Forbidden, InvalidState, InvalidTransition, NotFound, ValidationError
from skygig.core.events import (
    ApplicantApplied,
    ApplicantDecided,
    ApplicantWithdrawn,
    DomainEvent,
    EventBus,
    JobClosed,
    JobDeleted,
    JobPublished,
)
from skygig.core.locking import LockRegistry
from skygig.core.models import JobPosting, JobPrice, JobStatus
from skygig.utils.logging import get_logger, log_transition

logger = get_logger(__name__)

OPEN_STATUSES = (JobStatus.OPEN, JobStatus.CLOSING_SOON)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def compute_status(job: JobPosting, now: datetime, horizon: timedelta) -> JobStatus:
    """Derive the visible status of ``job`` at ``now``.

    Drafts stay drafts. A job is closed once explicitly closed or past its
    expiry, and closing soon while open with expiry inside ``horizon``.
    """
    if job.status == JobStatus.DRAFT:
        return JobStatus.DRAFT
    if job.status == JobStatus.CLOSED or now > job.expired_at:
        return JobStatus.CLOSED
    if job.expired_at - now <= horizon:
        return JobStatus.CLOSING_SOON
    return JobStatus.OPEN


def count_words(text: Optional[str]) -> int:
    return len(text.split()) if text and text.strip() else 0


class JobStore:
    """Owns job postings and their draft/open/closed lifecycle."""

    def __init__(
        self,
        bus: EventBus,
        clock: Clock,
        ids: IdGenerator,
        settings: Optional[Settings] = None
    ):
        self.logger = logger.bind(component="job_store")
        self.bus = bus
        self.clock = clock
        self.ids = ids
        self.settings = settings or default_settings

        self._jobs: Dict[str, JobPosting] = {}
        self._locks = LockRegistry("jobs")

        # Pending applicants per job, fed by pipeline events only.
        self._pending: Dict[str, Set[str]] = defaultdict(set)
        self._pending_lock = threading.Lock()
        self._index = bus.subscribe(
            "job_store.pending_index",
            self._on_applicant_event,
            ApplicantApplied,
            ApplicantDecided,
            ApplicantWithdrawn
        )

    @property
    def horizon(self) -> timedelta:
        return timedelta(days=self.settings.closing_soon_days)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(
        self,
        title: str,
        description: str,
        expired_at: datetime,
        price: Optional[JobPrice],
        now: datetime,
        check_expiry: bool = True
    ) -> None:
        errors: Dict[str, str] = {}
        if len(title) < self.settings.title_min_length:
            errors["title"] = f"Title must be at least {self.settings.title_min_length} characters"
        elif len(title) > self.settings.title_max_length:
            errors["title"] = f"Title must be at most {self.settings.title_max_length} characters"
        if count_words(description) < self.settings.description_min_words:
            errors["description"] = f"Description must have at least {self.settings.description_min_words} words"
        if check_expiry and expired_at <= now:
            errors["expired_at"] = "Expiry must be in the future"
        if price is not None and price.amount <= 0:
            errors["price"] = "Price must be greater than 0"
        if errors:
            raise ValidationError("Job posting is invalid", errors)

    @staticmethod
    def _clean_tags(tags: Iterable[str]) -> List[str]:
        cleaned: List[str] = []
        for tag in tags:
            tag = tag.strip()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        return cleaned

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _require(self, job_id: str) -> JobPosting:
        job = self._jobs.get(job_id)
        if job is None:
            raise NotFound("job", job_id)
        return job

    def _view(self, job: JobPosting, now: datetime) -> JobPosting:
        return job.model_copy(deep=True, update={"status": compute_status(job, now, self.horizon)})

    def _require_owner(self, job: JobPosting, caller_id: str) -> None:
        if job.owner_id != caller_id:
            raise Forbidden(f"user {caller_id} does not own job {job.id}")

    def get(self, job_id: str) -> JobPosting:
        """Return a snapshot of the job with its status derived at read time."""
        return self._view(self._require(job_id), self.clock.now())

    def locked(self, job_id: str):
        """Hold the lock of ``job_id``; writers that must not race a delete commit under it."""
        return self._locks.hold(job_id)

    def status_of(self, job_id: str) -> JobStatus:
        return compute_status(self._require(job_id), self.clock.now(), self.horizon)

    def pending_applicants(self, job_id: str) -> int:
        with self._pending_lock:
            return len(self._pending.get(job_id, ()))

    def list_for_owner(
        self,
        owner_id: str,
        view: str = "list",
        query: Optional[str] = None,
        status: str = "all"
    ) -> List[JobPosting]:
        """List a poster's jobs.

        ``view="list"`` hides drafts and ``view="archive"`` shows only drafts.
        ``status`` is ``all``, ``open`` (includes closing soon) or ``closed``.
        Open jobs come first ordered by nearest expiry, then the rest newest
        first.
        """
        if view not in ("list", "archive"):
            raise ValidationError("Unknown view", {"view": f"Unsupported view {view!r}"})
        if status not in ("all", "open", "closed"):
            raise ValidationError("Unknown status filter", {"status": f"Unsupported status {status!r}"})

        now = self.clock.now()
        jobs = [self._view(j, now) for j in list(self._jobs.values()) if j.owner_id == owner_id]
        if view == "list":
            jobs = [j for j in jobs if j.status != JobStatus.DRAFT]
        else:
            jobs = [j for j in jobs if j.status == JobStatus.DRAFT]

        if query and query.strip():
            q = query.strip().lower()
            jobs = [j for j in jobs if q in j.title.lower()]

        if status == "open":
            jobs = [j for j in jobs if j.status in OPEN_STATUSES]
        elif status == "closed":
            jobs = [j for j in jobs if j.status == JobStatus.CLOSED]

        open_jobs = sorted((j for j in jobs if j.status in OPEN_STATUSES), key=lambda j: j.expired_at)
        others = sorted((j for j in jobs if j.status not in OPEN_STATUSES), key=lambda j: j.posted_at, reverse=True)
        return open_jobs + others

    def browse_open(self, query: Optional[str] = None) -> List[JobPosting]:
        """Jobs seekers can apply to, newest first."""
        now = self.clock.now()
        jobs = [self._view(j, now) for j in list(self._jobs.values())]
        jobs = [j for j in jobs if j.status in OPEN_STATUSES]
        if query and query.strip():
            q = query.strip().lower()
            jobs = [j for j in jobs if q in j.title.lower() or q in j.description.lower()]
        return sorted(jobs, key=lambda j: j.posted_at, reverse=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_job(
        self,
        owner_id: str,
        title: str,
        description: str,
        expired_at: datetime,
        publish: bool = False,
        category: Optional[str] = None,
        tags: Iterable[str] = (),
        price: Optional[JobPrice] = None
    ) -> JobPosting:
        """Create a job posting as a draft, or directly open when ``publish``."""
        now = self.clock.now()
        title = (title or "").strip()
        description = (description or "").strip()
        expired_at = as_utc(expired_at)
        self._validate(title, description, expired_at, price, now)

        job = JobPosting(
            id=self.ids.new_id("job"),
            owner_id=owner_id,
            title=title,
            description=description,
            posted_at=now,
            expired_at=expired_at,
            status=JobStatus.OPEN if publish else JobStatus.DRAFT,
            category=category.strip() if category else None,
            tags=self._clean_tags(tags),
            price=price,
            updated_at=now
        )
        with self._locks.hold(job.id):
            self._jobs[job.id] = job
            if publish:
                self.bus.publish(JobPublished(
                    aggregate_id=job.id, occurred_at=now, job_id=job.id, owner_id=owner_id, title=title
                ))
        self.bus.flush()

        self.logger.info("Job created", job_id=job.id, owner_id=owner_id, status=job.status.value)
        return self._view(job, now)

    def update_job(
        self,
        job_id: str,
        caller_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        expired_at: Optional[datetime] = None,
        category: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        price: Optional[JobPrice] = None
    ) -> JobPosting:
        """Edit a draft or open job. Omitted fields are left unchanged."""
        with self._locks.hold(job_id):
            job = self._require(job_id)
            self._require_owner(job, caller_id)
            now = self.clock.now()
            if compute_status(job, now, self.horizon) == JobStatus.CLOSED:
                raise InvalidState(f"job {job_id} is closed and can no longer be edited")

            new_title = title.strip() if title is not None else job.title
            new_description = description.strip() if description is not None else job.description
            new_expiry = as_utc(expired_at) if expired_at is not None else job.expired_at
            new_price = price if price is not None else job.price
            self._validate(
                new_title, new_description, new_expiry, new_price, now, check_expiry=expired_at is not None
            )

            updated = job.model_copy(update={
                "title": new_title,
                "description": new_description,
                "expired_at": new_expiry,
                "category": category.strip() if category is not None else job.category,
                "tags": self._clean_tags(tags) if tags is not None else list(job.tags),
                "price": new_price,
                "updated_at": now,
            })
            self._jobs[job_id] = updated

        self.logger.info("Job updated", job_id=job_id)
        return self._view(updated, now)

    def publish(self, job_id: str, caller_id: str) -> JobPosting:
        """Move a draft to open."""
        with self._locks.hold(job_id):
            job = self._require(job_id)
            self._require_owner(job, caller_id)
            if job.status != JobStatus.DRAFT:
                raise InvalidTransition(f"job {job_id} is {job.status.value}, only drafts can be published")
            now = self.clock.now()
            if job.expired_at <= now:
                raise ValidationError("Job posting is invalid", {"expired_at": "Expiry must be in the future"})

            job = job.model_copy(update={"status": JobStatus.OPEN, "updated_at": now})
            self._jobs[job_id] = job
            self.bus.publish(JobPublished(
                aggregate_id=job_id, occurred_at=now, job_id=job_id, owner_id=job.owner_id, title=job.title
            ))
        self.bus.flush()

        self.logger.info("Job published", **log_transition("job", job_id, JobStatus.DRAFT, JobStatus.OPEN))
        return self._view(job, now)

    def close(self, job_id: str, caller_id: str) -> JobPosting:
        """Close an open job. A job already closed, explicitly or by expiry, is returned unchanged."""
        with self._locks.hold(job_id):
            job = self._require(job_id)
            self._require_owner(job, caller_id)
            now = self.clock.now()
            if job.status == JobStatus.DRAFT:
                raise InvalidTransition(f"job {job_id} is a draft and cannot be closed")
            previous = compute_status(job, now, self.horizon)
            if previous == JobStatus.CLOSED:
                return self._view(job, now)

            job = job.model_copy(update={"status": JobStatus.CLOSED, "closed_at": now, "updated_at": now})
            self._jobs[job_id] = job
            self.bus.publish(JobClosed(
                aggregate_id=job_id, occurred_at=now, job_id=job_id, owner_id=job.owner_id, title=job.title
            ))
        self.bus.flush()

        self.logger.info("Job closed", **log_transition("job", job_id, previous, JobStatus.CLOSED))
        return self._view(job, now)

    def delete(self, job_id: str, caller_id: str) -> None:
        """Remove a job that has no pending applicants."""
        with self._locks.hold(job_id):
            job = self._require(job_id)
            self._require_owner(job, caller_id)
            # Applications commit under this lock, so their events are queued.
            self.bus.drain(self._index)
            pending = self.pending_applicants(job_id)
            if pending:
                raise Conflict(
                    f"job {job_id} still has {pending} pending applicant(s)",
                    {"pending_applicants": pending}
                )
            del self._jobs[job_id]
            self.bus.publish(JobDeleted(
                aggregate_id=job_id, occurred_at=self.clock.now(), job_id=job_id, owner_id=job.owner_id
            ))
        self._locks.forget(job_id)
        self.bus.flush()

        self.logger.info("Job deleted", job_id=job_id, owner_id=caller_id)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_applicant_event(self, event: DomainEvent) -> None:
        with self._pending_lock:
            if isinstance(event, ApplicantApplied):
                self._pending[event.job_id].add(event.applicant_id)
            else:
                pending = self._pending.get(event.job_id)
                if pending is not None:
                    pending.discard(event.applicant_id)
                    if not pending:
                        del self._pending[event.job_id]
