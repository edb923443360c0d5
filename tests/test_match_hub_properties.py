"""Property-based tests for seeker stages and work progress."""

from datetime import timedelta

import pytest
from hypothesis import given, strategies as st, settings

from skygig.core.clock import ManualClock
from skygig.core.errors import Forbidden, InvalidTransition, NotFound, ValidationError
from skygig.core.models import ApplicantStatus, Decision, Milestone, PaymentStatus, RiskFlag, Stage
from skygig.jobs.matchhub import derive_stage
from skygig.marketplace import Marketplace

from conftest import inline_settings, open_job


def _hired(marketplace, candidate_id="pilot_1", owner_id="poster_1", title="Solar farm survey"):
    """Publish a job and approve ``candidate_id`` on it."""
    job = open_job(marketplace, owner_id=owner_id, title=title)
    applicant = marketplace.pipeline.apply(job.id, candidate_id)
    marketplace.pipeline.decide(applicant.id, Decision.APPROVE, owner_id)
    return job


class TestStageDerivationProperties:
    """Property tests for the stage function."""

    @pytest.mark.property
    @given(status=st.sampled_from(list(ApplicantStatus)), completed=st.booleans())
    @settings(max_examples=30, deadline=None)
    def test_stage_is_function_of_status_property(self, status, completed):
        """
        Property 1: Pending is matching, approved is in progress until
        completed, and rejected or withdrawn applications have no stage.
        """
        stage = derive_stage(status, completed)

        if status == ApplicantStatus.PENDING:
            assert stage == Stage.MATCHING
        elif status == ApplicantStatus.APPROVED:
            assert stage == (Stage.COMPLETED if completed else Stage.IN_PROGRESS)
        else:
            assert stage is None

    @pytest.mark.property
    @given(progress=st.floats(min_value=-1e6, max_value=1e6, allow_nan=False, allow_infinity=False))
    @settings(max_examples=50, deadline=None)
    def test_progress_is_clamped_property(self, progress):
        """
        Property 2: Reported progress always lands in [0, 100].
        """
        with Marketplace(inline_settings(), clock=ManualClock()) as marketplace:
            job = _hired(marketplace)

            info = marketplace.matches.update_progress(job.id, "pilot_1", "pilot_1", progress)

            assert 0 <= info.progress_pct <= 100
            assert info.progress_pct == int(round(max(0.0, min(100.0, progress))))


class TestMatchHub:
    """Stage queries and progress updates."""

    def test_rejected_application_has_no_stage(self, marketplace):
        job = open_job(marketplace)
        applicant = marketplace.pipeline.apply(job.id, "pilot_1")
        marketplace.pipeline.decide(applicant.id, Decision.REJECT, "poster_1")

        assert marketplace.matches.stage_for("pilot_1", job.id) is None
        assert marketplace.matches.stage_counts("pilot_1") == {"matching": 0, "in_progress": 0, "completed": 0}

    def test_unknown_application_not_found(self, marketplace):
        with pytest.raises(NotFound):
            marketplace.matches.stage_for("pilot_1", "job_missing")

    def test_approval_starts_progress_tracking(self, marketplace, clock):
        job = _hired(marketplace)

        info = marketplace.matches.in_progress_info(job.id, "pilot_1")

        assert info.progress_pct == 0
        assert info.payment_status == PaymentStatus.NONE
        assert info.started_at == clock.now()

    def test_overdue_is_derived(self, marketplace, clock):
        job = _hired(marketplace)
        marketplace.matches.update_progress(
            job.id, "pilot_1", "poster_1", 40,
            next_milestone=Milestone(name="Raw footage", due=clock.now() + timedelta(days=1)),
            risk_flags=[RiskFlag.AWAITING_CLIENT]
        )

        assert marketplace.matches.in_progress_info(job.id, "pilot_1").risk_flags == [RiskFlag.AWAITING_CLIENT]

        clock.advance(days=2)

        info = marketplace.matches.in_progress_info(job.id, "pilot_1")
        assert info.risk_flags == [RiskFlag.AWAITING_CLIENT, RiskFlag.OVERDUE]

        marketplace.matches.update_progress(job.id, "pilot_1", "pilot_1", 100)
        assert RiskFlag.OVERDUE not in marketplace.matches.in_progress_info(job.id, "pilot_1").risk_flags

    def test_overdue_cannot_be_set(self, marketplace):
        job = _hired(marketplace)

        with pytest.raises(ValidationError):
            marketplace.matches.update_progress(job.id, "pilot_1", "pilot_1", 10, risk_flags=["overdue"])

    def test_progress_requires_in_progress_stage(self, marketplace):
        job = open_job(marketplace)
        marketplace.pipeline.apply(job.id, "pilot_1")

        with pytest.raises(InvalidTransition):
            marketplace.matches.update_progress(job.id, "pilot_1", "pilot_1", 10)

    def test_progress_requires_party(self, marketplace):
        job = _hired(marketplace)

        with pytest.raises(Forbidden):
            marketplace.matches.update_progress(job.id, "pilot_1", "stranger", 10)

    def test_unknown_payment_status_rejected(self, marketplace):
        job = _hired(marketplace)

        with pytest.raises(ValidationError) as exc_info:
            marketplace.matches.update_progress(job.id, "pilot_1", "pilot_1", 10, payment_status="free")

        assert "payment_status" in exc_info.value.errors
        assert marketplace.matches.in_progress_info(job.id, "pilot_1").progress_pct == 0

    def test_unknown_stage_rejected(self, marketplace):
        with pytest.raises(ValidationError) as exc_info:
            marketplace.matches.list_for_candidate("pilot_1", "bogus")

        assert "stage" in exc_info.value.errors

    def test_mark_complete_is_idempotent(self, marketplace, clock):
        job = _hired(marketplace)

        first = marketplace.matches.mark_complete(job.id, "pilot_1", "pilot_1")
        clock.advance(hours=1)
        second = marketplace.matches.mark_complete(job.id, "pilot_1", "poster_1")

        assert first.stage == Stage.COMPLETED
        assert second.completed_at == first.completed_at
        # Only the first completion notifies the poster.
        completed = [
            n for n in marketplace.notifications.list_for("poster_1", tab="system")
            if "complete" in n.title
        ]
        assert len(completed) == 1

    def test_matching_cannot_complete(self, marketplace):
        job = open_job(marketplace)
        marketplace.pipeline.apply(job.id, "pilot_1")

        with pytest.raises(InvalidTransition):
            marketplace.matches.mark_complete(job.id, "pilot_1", "poster_1")

    def test_in_progress_ordered_by_nearest_milestone(self, marketplace, clock):
        late = _hired(marketplace, title="Late milestone job")
        soon = _hired(marketplace, title="Soon milestone job")
        none = _hired(marketplace, title="No milestone job")
        marketplace.matches.update_progress(
            late.id, "pilot_1", "pilot_1", 10, next_milestone=Milestone(name="Edit", due=clock.now() + timedelta(days=5))
        )
        marketplace.matches.update_progress(
            soon.id, "pilot_1", "pilot_1", 10, next_milestone=Milestone(name="Fly", due=clock.now() + timedelta(days=1))
        )

        items = marketplace.matches.list_for_candidate("pilot_1", Stage.IN_PROGRESS)

        assert [i.job_id for i in items] == [soon.id, late.id, none.id]
        assert marketplace.matches.stage_counts("pilot_1")["in_progress"] == 3
        assert [i.job_id for i in marketplace.matches.list_for_candidate("pilot_1", "in_progress", "soon")] == [soon.id]
