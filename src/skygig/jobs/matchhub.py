"""Match hub: the seeker-facing stage of each application.

The hub stores no stage. It keeps a projection of committed applicant state,
fed by pipeline events, plus the completion flag and progress fields it owns,
and derives the stage from those on every read.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Union

from skygig.core.clock import Clock
from skygig.core.errors import Forbidden, InvalidTransition, NotFound, ValidationError, parse_enum
from skygig.core.events import ApplicantApplied, ApplicantDecided, ApplicantWithdrawn, EventBus, StageCompleted
from skygig.core.locking import LockRegistry
from skygig.core.models import (
    ApplicantStatus,
    InProgressInfo,
    Milestone,
    PaymentStatus,
    RiskFlag,
    Stage,
    StageItem,
)
from skygig.jobs.store import as_utc
from skygig.utils.logging import get_logger

logger = get_logger(__name__)


def derive_stage(status: ApplicantStatus, completed: bool) -> Optional[Stage]:
    """Stage of an application; ``None`` once rejected or withdrawn."""
    if status == ApplicantStatus.PENDING:
        return Stage.MATCHING
    if status == ApplicantStatus.APPROVED:
        return Stage.COMPLETED if completed else Stage.IN_PROGRESS
    return None


def derive_risk_flags(info: InProgressInfo, now: datetime) -> List[RiskFlag]:
    """Stored flags plus ``overdue`` when the next milestone has slipped."""
    flags = [flag for flag in info.risk_flags if flag != RiskFlag.OVERDUE]
    milestone = info.next_milestone
    if milestone is not None and milestone.due < now and info.progress_pct < 100:
        flags.append(RiskFlag.OVERDUE)
    return flags


@dataclass
class _Track:
    """Committed applicant state as seen by the hub."""
    applicant_id: str
    job_id: str
    candidate_id: str
    owner_id: str
    job_title: str
    applied_at: datetime
    status: ApplicantStatus = ApplicantStatus.PENDING
    completed_at: Optional[datetime] = None
    info: Optional[InProgressInfo] = None

    @property
    def stage(self) -> Optional[Stage]:
        return derive_stage(self.status, self.completed_at is not None)


class MatchHub:
    """Derives matching / in_progress / completed and tracks work progress."""

    def __init__(self, bus: EventBus, clock: Clock):
        self.logger = logger.bind(component="match_hub")
        self.bus = bus
        self.clock = clock

        self._tracks: Dict[str, _Track] = {}
        self._locks = LockRegistry("match_tracks")

        bus.subscribe(
            "match_hub.projection",
            self._on_applicant_event,
            ApplicantApplied,
            ApplicantDecided,
            ApplicantWithdrawn
        )

    @staticmethod
    def _key(job_id: str, candidate_id: str) -> str:
        return f"{job_id}\x1f{candidate_id}"

    def _require(self, job_id: str, candidate_id: str) -> _Track:
        track = self._tracks.get(self._key(job_id, candidate_id))
        if track is None:
            raise NotFound("application", f"{job_id}/{candidate_id}")
        return track

    @staticmethod
    def _require_party(track: _Track, caller_id: str) -> None:
        if caller_id not in (track.candidate_id, track.owner_id):
            raise Forbidden(f"user {caller_id} is not a party to job {track.job_id} for {track.candidate_id}")

    def _item(self, track: _Track, now: datetime) -> StageItem:
        info = None
        if track.info is not None and track.stage is not None:
            info = track.info.model_copy(deep=True, update={"risk_flags": derive_risk_flags(track.info, now)})
        return StageItem(
            job_id=track.job_id,
            candidate_id=track.candidate_id,
            owner_id=track.owner_id,
            job_title=track.job_title,
            applicant_id=track.applicant_id,
            stage=track.stage,
            applied_at=track.applied_at,
            completed_at=track.completed_at,
            in_progress=info
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def stage_for(self, candidate_id: str, job_id: str) -> Optional[Stage]:
        return self._require(job_id, candidate_id).stage

    def in_progress_info(self, job_id: str, candidate_id: str) -> Optional[InProgressInfo]:
        track = self._require(job_id, candidate_id)
        if track.stage is None:
            return None
        return self._item(track, self.clock.now()).in_progress

    def list_for_candidate(
        self,
        candidate_id: str,
        stage: Union[Stage, str],
        query: Optional[str] = None
    ) -> List[StageItem]:
        """Applications of a seeker in one stage.

        Matching is ordered by newest application, in progress by the nearest
        milestone (none last), completed by newest completion.
        """
        stage = parse_enum(Stage, stage, "stage")
        now = self.clock.now()
        items = [
            self._item(t, now) for t in list(self._tracks.values())
            if t.candidate_id == candidate_id and t.stage == stage
        ]
        if query and query.strip():
            q = query.strip().lower()
            items = [i for i in items if q in i.job_title.lower()]

        if stage == Stage.MATCHING:
            items.sort(key=lambda i: i.applied_at, reverse=True)
        elif stage == Stage.IN_PROGRESS:
            items.sort(key=lambda i: (
                i.in_progress is None or i.in_progress.next_milestone is None,
                i.in_progress.next_milestone.due if i.in_progress and i.in_progress.next_milestone else now,
            ))
        else:
            items.sort(key=lambda i: i.completed_at or i.applied_at, reverse=True)
        return items

    def stage_counts(self, candidate_id: str) -> Dict[str, int]:
        counts = {stage.value: 0 for stage in Stage}
        for track in list(self._tracks.values()):
            if track.candidate_id == candidate_id and track.stage is not None:
                counts[track.stage.value] += 1
        return counts

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def mark_complete(self, job_id: str, candidate_id: str, caller_id: str) -> StageItem:
        """Mark in-progress work as completed. Repeating it is a no-op."""
        key = self._key(job_id, candidate_id)
        with self._locks.hold(key):
            track = self._require(job_id, candidate_id)
            self._require_party(track, caller_id)
            now = self.clock.now()
            if track.stage == Stage.COMPLETED:
                return self._item(track, now)
            if track.stage != Stage.IN_PROGRESS:
                current = track.stage.value if track.stage else track.status.value
                raise InvalidTransition(
                    f"application {job_id}/{candidate_id} is {current}, only in-progress work can be completed",
                    {"stage": current}
                )

            track.completed_at = now
            self.bus.publish(StageCompleted(
                aggregate_id=key,
                occurred_at=now,
                job_id=job_id,
                job_title=track.job_title,
                candidate_id=candidate_id,
                owner_id=track.owner_id,
                completed_by=caller_id
            ))
            item = self._item(track, now)
        self.bus.flush()

        self.logger.info("Work completed", job_id=job_id, candidate_id=candidate_id, completed_by=caller_id)
        return item

    def update_progress(
        self,
        job_id: str,
        candidate_id: str,
        caller_id: str,
        progress_pct: float,
        next_milestone: Optional[Milestone] = None,
        payment_status: Optional[Union[PaymentStatus, str]] = None,
        risk_flags: Optional[Iterable[Union[RiskFlag, str]]] = None
    ) -> InProgressInfo:
        """Update progress fields of in-progress work.

        ``progress_pct`` is clamped to [0, 100]. ``overdue`` is derived and
        cannot be passed in ``risk_flags``.
        """
        flags: Optional[List[RiskFlag]] = None
        if risk_flags is not None:
            try:
                flags = [RiskFlag(flag) for flag in risk_flags]
            except ValueError as e:
                raise ValidationError("Unknown risk flag", {"risk_flags": str(e)}) from None
            if RiskFlag.OVERDUE in flags:
                raise ValidationError("Overdue is derived", {"risk_flags": "overdue cannot be set directly"})
            flags = list(dict.fromkeys(flags))
        payment = parse_enum(PaymentStatus, payment_status, "payment_status") if payment_status is not None else None

        key = self._key(job_id, candidate_id)
        with self._locks.hold(key):
            track = self._require(job_id, candidate_id)
            self._require_party(track, caller_id)
            if track.stage != Stage.IN_PROGRESS:
                current = track.stage.value if track.stage else track.status.value
                raise InvalidTransition(
                    f"application {job_id}/{candidate_id} is {current}, progress can only change while in progress",
                    {"stage": current}
                )

            info = track.info or InProgressInfo()
            update = {"progress_pct": int(round(max(0.0, min(100.0, float(progress_pct)))))}
            if next_milestone is not None:
                update["next_milestone"] = next_milestone.model_copy(update={"due": as_utc(next_milestone.due)})
            if payment is not None:
                update["payment_status"] = payment
            if flags is not None:
                update["risk_flags"] = flags
            track.info = info.model_copy(update=update)
            result = self._item(track, self.clock.now()).in_progress

        self.logger.info(
            "Progress updated",
            job_id=job_id,
            candidate_id=candidate_id,
            progress_pct=result.progress_pct,
            risk_flags=[f.value for f in result.risk_flags]
        )
        return result

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    def _on_applicant_event(self, event) -> None:
        key = self._key(event.job_id, event.candidate_id)
        with self._locks.hold(key):
            if isinstance(event, ApplicantApplied):
                self._tracks[key] = _Track(
                    applicant_id=event.applicant_id,
                    job_id=event.job_id,
                    candidate_id=event.candidate_id,
                    owner_id=event.owner_id,
                    job_title=event.job_title,
                    applied_at=event.occurred_at
                )
                return

            track = self._tracks.get(key)
            if track is None or track.applicant_id != event.applicant_id:
                self.logger.warning("Event for unknown application", event_name=event.name, applicant_id=event.applicant_id)
                return
            if isinstance(event, ApplicantDecided):
                track.status = event.status
                if event.status == ApplicantStatus.APPROVED:
                    track.info = InProgressInfo(started_at=event.occurred_at)
            elif isinstance(event, ApplicantWithdrawn):
                track.status = ApplicantStatus.WITHDRAWN
