"""Applicant pipeline: applications against jobs and poster decisions."""

from typing import Dict, List, Optional, Union

from skygig.core.clock import Clock, IdGenerator
from skygig.core.errors import Conflict, Forbidden, InvalidState, InvalidTransition, NotFound, ValidationError, parse_enum
from skygig.core.events import ApplicantApplied, ApplicantDecided, ApplicantWithdrawn, EventBus
from skygig.core.locking import LockRegistry
from skygig.core.models import Applicant, ApplicantStatus, Decision
from skygig.jobs.store import OPEN_STATUSES, JobStore
from skygig.utils.logging import get_logger, log_transition

logger = get_logger(__name__)

_DECISION_STATUS = {
    Decision.APPROVE: ApplicantStatus.APPROVED,
    Decision.REJECT: ApplicantStatus.REJECTED,
}


class ApplicantPipeline:
    """Owns applicants and their one-way pending -> terminal transitions.

    Applicants are never deleted. A (job, candidate) pair has at most one
    applicant that is not withdrawn; a withdrawn candidate may apply again.
    """

    def __init__(self, jobs: JobStore, bus: EventBus, clock: Clock, ids: IdGenerator):
        self.logger = logger.bind(component="applicant_pipeline")
        self.jobs = jobs
        self.bus = bus
        self.clock = clock
        self.ids = ids

        self._applicants: Dict[str, Applicant] = {}
        # (job_id, candidate_id) -> current non-withdrawn applicant id
        self._by_pair: Dict[str, str] = {}
        self._applicant_locks = LockRegistry("applicants")

    @staticmethod
    def _pair_key(job_id: str, candidate_id: str) -> str:
        return f"{job_id}\x1f{candidate_id}"

    def _require(self, applicant_id: str) -> Applicant:
        applicant = self._applicants.get(applicant_id)
        if applicant is None:
            raise NotFound("applicant", applicant_id)
        return applicant

    def get(self, applicant_id: str) -> Applicant:
        return self._require(applicant_id).model_copy()

    def apply(self, job_id: str, candidate_id: str) -> Applicant:
        """Create a pending application of ``candidate_id`` to ``job_id``."""
        pair = self._pair_key(job_id, candidate_id)
        # The job lock also serializes applications of one (job, candidate) pair.
        with self.jobs.locked(job_id):
            job = self.jobs.get(job_id)
            if job.owner_id == candidate_id:
                raise Forbidden(f"user {candidate_id} cannot apply to their own job {job_id}")
            if job.status not in OPEN_STATUSES:
                raise InvalidState(f"job {job_id} is {job.status.value} and not accepting applications")

            existing_id = self._by_pair.get(pair)
            if existing_id is not None:
                existing = self._applicants[existing_id]
                raise Conflict(
                    f"candidate {candidate_id} already applied to job {job_id}",
                    {"applicant_id": existing.id, "status": existing.status.value}
                )

            now = self.clock.now()
            applicant = Applicant(
                id=self.ids.new_id("app"),
                job_id=job_id,
                candidate_id=candidate_id,
                owner_id=job.owner_id,
                job_title=job.title,
                applied_at=now
            )
            self._applicants[applicant.id] = applicant
            self._by_pair[pair] = applicant.id
            self.bus.publish(ApplicantApplied(
                aggregate_id=applicant.id,
                occurred_at=now,
                applicant_id=applicant.id,
                job_id=job_id,
                job_title=job.title,
                owner_id=job.owner_id,
                candidate_id=candidate_id
            ))
        self.bus.flush()

        self.logger.info("Application received", applicant_id=applicant.id, job_id=job_id, candidate_id=candidate_id)
        return applicant.model_copy()

    def decide(self, applicant_id: str, decision: Union[Decision, str], caller_id: str) -> Applicant:
        """Approve or reject a pending applicant. First decision wins."""
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationError(
                "Unknown decision", {"decision": f"Expected approve or reject, got {decision!r}"}
            ) from None

        with self._applicant_locks.hold(applicant_id):
            applicant = self._require(applicant_id)
            if applicant.owner_id != caller_id:
                raise Forbidden(f"user {caller_id} cannot decide on applicant {applicant_id}")
            if applicant.status != ApplicantStatus.PENDING:
                raise InvalidTransition(
                    f"applicant {applicant_id} is already {applicant.status.value}",
                    {"status": applicant.status.value}
                )

            now = self.clock.now()
            status = _DECISION_STATUS[decision]
            applicant = applicant.model_copy(update={"status": status, "decided_at": now})
            self._applicants[applicant_id] = applicant
            self.bus.publish(ApplicantDecided(
                aggregate_id=applicant_id,
                occurred_at=now,
                applicant_id=applicant_id,
                job_id=applicant.job_id,
                job_title=applicant.job_title,
                owner_id=applicant.owner_id,
                candidate_id=applicant.candidate_id,
                status=status
            ))
        self.bus.flush()

        self.logger.info(
            "Applicant decided",
            **log_transition("applicant", applicant_id, ApplicantStatus.PENDING, status)
        )
        return applicant.model_copy()

    def withdraw(self, applicant_id: str, caller_id: str) -> Applicant:
        """Candidate withdraws a pending application."""
        with self._applicant_locks.hold(applicant_id):
            applicant = self._require(applicant_id)
            if applicant.candidate_id != caller_id:
                raise Forbidden(f"user {caller_id} cannot withdraw applicant {applicant_id}")
            if applicant.status != ApplicantStatus.PENDING:
                raise InvalidTransition(
                    f"applicant {applicant_id} is already {applicant.status.value}",
                    {"status": applicant.status.value}
                )

            now = self.clock.now()
            applicant = applicant.model_copy(update={"status": ApplicantStatus.WITHDRAWN, "decided_at": now})
            self._applicants[applicant_id] = applicant
            self.bus.publish(ApplicantWithdrawn(
                aggregate_id=applicant_id,
                occurred_at=now,
                applicant_id=applicant_id,
                job_id=applicant.job_id,
                job_title=applicant.job_title,
                owner_id=applicant.owner_id,
                candidate_id=applicant.candidate_id
            ))

        # Free the pair so the candidate can apply again.
        pair = self._pair_key(applicant.job_id, applicant.candidate_id)
        with self.jobs.locked(applicant.job_id):
            if self._by_pair.get(pair) == applicant_id:
                del self._by_pair[pair]
        self.bus.flush()

        self.logger.info(
            "Application withdrawn",
            **log_transition("applicant", applicant_id, ApplicantStatus.PENDING, ApplicantStatus.WITHDRAWN)
        )
        return applicant.model_copy()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _job_applicants(self, job_id: str, caller_id: str) -> List[Applicant]:
        job = self.jobs.get(job_id)
        if job.owner_id != caller_id:
            raise Forbidden(f"user {caller_id} does not own job {job_id}")
        return [a for a in list(self._applicants.values()) if a.job_id == job_id]

    def list_for_job(
        self,
        job_id: str,
        caller_id: str,
        status: Optional[Union[ApplicantStatus, str]] = None,
        query: Optional[str] = None
    ) -> List[Applicant]:
        """Applicants of a job for its poster: pending first, then newest."""
        applicants = self._job_applicants(job_id, caller_id)
        if status is not None:
            status = parse_enum(ApplicantStatus, status, "status")
            applicants = [a for a in applicants if a.status == status]
        if query and query.strip():
            q = query.strip().lower()
            applicants = [a for a in applicants if q in a.candidate_id.lower()]

        applicants.sort(key=lambda a: a.applied_at, reverse=True)
        applicants.sort(key=lambda a: a.status != ApplicantStatus.PENDING)
        return [a.model_copy() for a in applicants]

    def counts_for_job(self, job_id: str, caller_id: str) -> Dict[str, int]:
        counts = {status.value: 0 for status in ApplicantStatus}
        for applicant in self._job_applicants(job_id, caller_id):
            counts[applicant.status.value] += 1
        return counts

    def list_for_candidate(self, candidate_id: str) -> List[Applicant]:
        applicants = [a for a in list(self._applicants.values()) if a.candidate_id == candidate_id]
        applicants.sort(key=lambda a: a.applied_at, reverse=True)
        return [a.model_copy() for a in applicants]
