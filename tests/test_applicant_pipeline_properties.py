"""Property-based tests for the applicant pipeline."""

import threading
from datetime import timedelta

import pytest
from hypothesis import given, strategies as st, settings

from skygig.core.clock import ManualClock
from skygig.core.errors import Conflict, Forbidden, InvalidState, InvalidTransition, ValidationError
from skygig.core.models import ApplicantStatus, Decision, NotificationType, Stage
from skygig.marketplace import Marketplace

from conftest import DESCRIPTION, inline_settings, open_job


# Test data strategies
action_strategy = st.sampled_from(["approve", "reject", "withdraw"])


def _perform(marketplace, applicant_id, action):
    if action == "withdraw":
        return marketplace.pipeline.withdraw(applicant_id, "pilot_1")
    return marketplace.pipeline.decide(applicant_id, action, "poster_1")


class TestApplicantPipelineProperties:
    """Property tests for one-way applicant transitions."""

    @pytest.mark.property
    @given(actions=st.lists(action_strategy, min_size=1, max_size=6))
    @settings(max_examples=40, deadline=None)
    def test_terminal_status_is_final_property(self, actions):
        """
        Property 1: The first transition out of pending wins and every later
        transition fails without changing the applicant.
        """
        with Marketplace(inline_settings(), clock=ManualClock()) as marketplace:
            job = open_job(marketplace)
            applicant = marketplace.pipeline.apply(job.id, "pilot_1")

            first = _perform(marketplace, applicant.id, actions[0])
            for action in actions[1:]:
                with pytest.raises(InvalidTransition):
                    _perform(marketplace, applicant.id, action)

            final = marketplace.pipeline.get(applicant.id)
            assert final.status == first.status
            assert final.status != ApplicantStatus.PENDING
            assert final.decided_at is not None

    @pytest.mark.property
    @given(candidates=st.lists(st.sampled_from(["pilot_a", "pilot_b", "pilot_c"]), min_size=1, max_size=8))
    @settings(max_examples=40, deadline=None)
    def test_one_applicant_per_pair_property(self, candidates):
        """
        Property 2: Repeated applications from the same candidate are refused
        and never create a second applicant.
        """
        with Marketplace(inline_settings(), clock=ManualClock()) as marketplace:
            job = open_job(marketplace)
            accepted = set()
            for candidate in candidates:
                if candidate in accepted:
                    with pytest.raises(Conflict):
                        marketplace.pipeline.apply(job.id, candidate)
                else:
                    marketplace.pipeline.apply(job.id, candidate)
                    accepted.add(candidate)

            applicants = marketplace.pipeline.list_for_job(job.id, "poster_1")
            assert sorted(a.candidate_id for a in applicants) == sorted(accepted)


class TestHiringFlow:
    """End to end hiring between a poster and a seeker."""

    def test_apply_then_approve(self, marketplace):
        """Approval moves the seeker to in progress and raises one offer notification."""
        job = open_job(marketplace)

        applicant = marketplace.pipeline.apply(job.id, "pilot_1")
        assert applicant.status == ApplicantStatus.PENDING
        assert marketplace.matches.stage_for("pilot_1", job.id) == Stage.MATCHING

        marketplace.pipeline.decide(applicant.id, Decision.APPROVE, "poster_1")

        assert marketplace.pipeline.get(applicant.id).status == ApplicantStatus.APPROVED
        assert marketplace.matches.stage_for("pilot_1", job.id) == Stage.IN_PROGRESS
        offers = marketplace.notifications.list_for("pilot_1", tab="offer")
        assert len(offers) == 1
        assert offers[0].type == NotificationType.OFFER
        assert offers[0].job_id == job.id

    def test_duplicate_application_conflicts(self, marketplace):
        job = open_job(marketplace)
        marketplace.pipeline.apply(job.id, "pilot_1")

        with pytest.raises(Conflict):
            marketplace.pipeline.apply(job.id, "pilot_1")

        assert len(marketplace.pipeline.list_for_job(job.id, "poster_1")) == 1

    def test_owner_notified_of_new_applicant(self, marketplace):
        job = open_job(marketplace)

        marketplace.pipeline.apply(job.id, "pilot_1")

        system = marketplace.notifications.list_for("poster_1", tab="system")
        assert len(system) == 1
        assert marketplace.notifications.list_for("pilot_1") == []

    def test_cannot_apply_to_own_job(self, marketplace):
        job = open_job(marketplace)

        with pytest.raises(Forbidden):
            marketplace.pipeline.apply(job.id, "poster_1")

    def test_cannot_apply_to_draft_or_closed_job(self, marketplace, clock):
        draft = marketplace.jobs.create_job("poster_1", "Draft survey job", DESCRIPTION, clock.now() + timedelta(days=9))
        closed = open_job(marketplace)
        marketplace.jobs.close(closed.id, "poster_1")

        with pytest.raises(InvalidState):
            marketplace.pipeline.apply(draft.id, "pilot_1")
        with pytest.raises(InvalidState):
            marketplace.pipeline.apply(closed.id, "pilot_1")

    def test_cannot_apply_after_expiry(self, marketplace, clock):
        job = open_job(marketplace, days=1)
        clock.advance(days=2)

        with pytest.raises(InvalidState):
            marketplace.pipeline.apply(job.id, "pilot_1")

    def test_only_owner_decides(self, marketplace):
        job = open_job(marketplace)
        applicant = marketplace.pipeline.apply(job.id, "pilot_1")

        with pytest.raises(Forbidden):
            marketplace.pipeline.decide(applicant.id, Decision.APPROVE, "pilot_1")
        assert marketplace.pipeline.get(applicant.id).status == ApplicantStatus.PENDING

    def test_unknown_decision_rejected(self, marketplace):
        job = open_job(marketplace)
        applicant = marketplace.pipeline.apply(job.id, "pilot_1")

        with pytest.raises(ValidationError):
            marketplace.pipeline.decide(applicant.id, "maybe", "poster_1")

    def test_only_candidate_withdraws(self, marketplace):
        job = open_job(marketplace)
        applicant = marketplace.pipeline.apply(job.id, "pilot_1")

        with pytest.raises(Forbidden):
            marketplace.pipeline.withdraw(applicant.id, "poster_1")

    def test_withdrawn_candidate_may_reapply(self, marketplace):
        job = open_job(marketplace)
        first = marketplace.pipeline.apply(job.id, "pilot_1")
        marketplace.pipeline.withdraw(first.id, "pilot_1")

        assert marketplace.matches.stage_for("pilot_1", job.id) is None

        second = marketplace.pipeline.apply(job.id, "pilot_1")

        assert second.id != first.id
        assert marketplace.pipeline.get(first.id).status == ApplicantStatus.WITHDRAWN
        assert marketplace.matches.stage_for("pilot_1", job.id) == Stage.MATCHING

    def test_rejected_candidate_cannot_reapply(self, marketplace):
        job = open_job(marketplace)
        applicant = marketplace.pipeline.apply(job.id, "pilot_1")
        marketplace.pipeline.decide(applicant.id, Decision.REJECT, "poster_1")

        with pytest.raises(Conflict):
            marketplace.pipeline.apply(job.id, "pilot_1")


class TestApplicantQueries:
    """Poster and seeker views of applicants."""

    def test_pending_first_then_newest(self, marketplace, clock):
        job = open_job(marketplace)
        oldest = marketplace.pipeline.apply(job.id, "pilot_1")
        clock.advance(minutes=5)
        middle = marketplace.pipeline.apply(job.id, "pilot_2")
        clock.advance(minutes=5)
        newest = marketplace.pipeline.apply(job.id, "pilot_3")
        marketplace.pipeline.decide(newest.id, Decision.REJECT, "poster_1")

        listed = marketplace.pipeline.list_for_job(job.id, "poster_1")

        assert [a.id for a in listed] == [middle.id, oldest.id, newest.id]
        assert marketplace.pipeline.counts_for_job(job.id, "poster_1") == {
            "pending": 2, "approved": 0, "rejected": 1, "withdrawn": 0
        }
        pending = marketplace.pipeline.list_for_job(job.id, "poster_1", status="pending", query="PILOT_2")
        assert [a.id for a in pending] == [middle.id]

    def test_unknown_status_filter_rejected(self, marketplace):
        job = open_job(marketplace)
        marketplace.pipeline.apply(job.id, "pilot_1")

        with pytest.raises(ValidationError) as exc_info:
            marketplace.pipeline.list_for_job(job.id, "poster_1", status="bogus")

        assert "status" in exc_info.value.errors

    def test_only_owner_lists_applicants(self, marketplace):
        job = open_job(marketplace)

        with pytest.raises(Forbidden):
            marketplace.pipeline.list_for_job(job.id, "pilot_1")

    def test_candidate_sees_own_applications(self, marketplace, clock):
        first_job = open_job(marketplace)
        second_job = open_job(marketplace, owner_id="poster_2")
        marketplace.pipeline.apply(first_job.id, "pilot_1")
        clock.advance(minutes=1)
        marketplace.pipeline.apply(second_job.id, "pilot_1")

        mine = marketplace.pipeline.list_for_candidate("pilot_1")

        assert [a.job_id for a in mine] == [second_job.id, first_job.id]


class TestConcurrentDecisions:
    """Competing writers on one applicant."""

    def test_racing_decisions_single_winner(self, marketplace):
        """Two simultaneous decisions: one commits, the other sees a terminal status."""
        job = open_job(marketplace)
        applicant = marketplace.pipeline.apply(job.id, "pilot_1")
        barrier = threading.Barrier(2)
        outcomes = []

        def decide(decision):
            barrier.wait()
            try:
                outcomes.append(marketplace.pipeline.decide(applicant.id, decision, "poster_1").status)
            except InvalidTransition:
                outcomes.append("refused")

        threads = [
            threading.Thread(target=decide, args=(Decision.APPROVE,)),
            threading.Thread(target=decide, args=(Decision.REJECT,)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert len(outcomes) == 2
        assert outcomes.count("refused") == 1
        winner = next(o for o in outcomes if o != "refused")
        assert marketplace.pipeline.get(applicant.id).status == winner
        assert len(marketplace.notifications.list_for("pilot_1", tab="offer")) == 1
