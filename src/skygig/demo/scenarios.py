"""Demo scenarios for SkyGig.

Each scenario drives a fresh marketplace on a manual clock and returns a
transcript of what happened, which the CLI prints.
"""

from typing import Callable, Dict, List, Optional
from dataclasses import dataclass
from datetime import timedelta

from skygig.config import Settings
from skygig.core.clock import ManualClock
from skygig.core.errors import Conflict
from skygig.core.models import Decision
from skygig.marketplace import Marketplace

SAMPLE_DESCRIPTION = (
    "We need an experienced drone pilot to capture aerial footage of a coastal resort "
    "for a new promotional video. The shoot covers the main building, the beach front "
    "and the surrounding gardens at sunrise and sunset. You must hold a valid commercial "
    "licence, bring your own equipment with spare batteries and deliver edited 4K clips "
    "plus the raw files within one week after the final flight day."
)


@dataclass
class DemoScenario:
    """A scripted walk through the marketplace."""
    name: str
    description: str
    run: Callable[[Marketplace, ManualClock], List[str]]


def _hiring(marketplace: Marketplace, clock: ManualClock) -> List[str]:
    transcript = []
    job = marketplace.jobs.create_job(
        "poster_lan", "Resort aerial video shoot", SAMPLE_DESCRIPTION,
        clock.now() + timedelta(days=10), publish=True, tags=["video", "4k"]
    )
    transcript.append(f"poster_lan published '{job.title}' ({job.status.value})")

    applicant = marketplace.pipeline.apply(job.id, "pilot_minh")
    transcript.append(f"pilot_minh applied, stage {marketplace.matches.stage_for('pilot_minh', job.id).value}")

    clock.advance(hours=2)
    marketplace.pipeline.decide(applicant.id, Decision.APPROVE, "poster_lan")
    marketplace.wait_idle()
    transcript.append(f"poster_lan approved, stage {marketplace.matches.stage_for('pilot_minh', job.id).value}")

    offers = marketplace.notifications.list_for("pilot_minh", tab="offer")
    transcript.append(f"pilot_minh has {len(offers)} offer notification(s): {offers[0].title}")

    marketplace.matches.update_progress(job.id, "pilot_minh", "pilot_minh", 60)
    marketplace.matches.mark_complete(job.id, "pilot_minh", "poster_lan")
    transcript.append(f"work completed, stage {marketplace.matches.stage_for('pilot_minh', job.id).value}")
    return transcript


def _messaging(marketplace: Marketplace, clock: ManualClock) -> List[str]:
    transcript = []
    conversation = marketplace.conversations.open_or_get("job_resort", "poster_lan", "pilot_minh")
    marketplace.conversations.send(conversation.id, "pilot_minh", "Is the sunrise slot fixed?")
    clock.advance(minutes=1)
    marketplace.conversations.send(conversation.id, "pilot_minh", "I can also fly on Sunday.")
    transcript.append(
        f"poster_lan has {marketplace.conversations.unread_count(conversation.id, 'poster_lan')} unread message(s)"
    )

    marketplace.conversations.mark_read(conversation.id, "poster_lan")
    statuses = [m.status.value for m in marketplace.conversations.messages(conversation.id, "poster_lan")]
    transcript.append(
        f"after reading: {marketplace.conversations.unread_count(conversation.id, 'poster_lan')} unread, "
        f"statuses {', '.join(statuses)}"
    )
    return transcript


def _closing_soon(marketplace: Marketplace, clock: ManualClock) -> List[str]:
    transcript = []
    job = marketplace.jobs.create_job(
        "poster_lan", "Rice field survey mapping", SAMPLE_DESCRIPTION,
        clock.now() + timedelta(days=2), publish=True
    )
    transcript.append(f"expires in 2 days: {marketplace.jobs.status_of(job.id).value}")
    clock.advance(days=3)
    transcript.append(f"3 days later: {marketplace.jobs.status_of(job.id).value}")
    return transcript


def _duplicate_application(marketplace: Marketplace, clock: ManualClock) -> List[str]:
    transcript = []
    job = marketplace.jobs.create_job(
        "poster_lan", "Bridge inspection flight", SAMPLE_DESCRIPTION,
        clock.now() + timedelta(days=7), publish=True
    )
    marketplace.pipeline.apply(job.id, "pilot_minh")
    try:
        marketplace.pipeline.apply(job.id, "pilot_minh")
    except Conflict as e:
        transcript.append(f"second application refused: {e.message}")
    applicants = marketplace.pipeline.list_for_job(job.id, "poster_lan")
    transcript.append(f"job has {len(applicants)} applicant(s)")
    return transcript


class DemoRunner:
    """Runs demo scenarios against throwaway marketplaces."""

    def __init__(self):
        self.scenarios = [
            DemoScenario("hiring", "Publish, apply, approve and complete a job", _hiring),
            DemoScenario("messaging", "Unread counts before and after reading a conversation", _messaging),
            DemoScenario("closing-soon", "A job moves from closing soon to closed as time passes", _closing_soon),
            DemoScenario("duplicate", "Applying twice to the same job is refused", _duplicate_application),
        ]

    def get_scenario(self, name: str) -> Optional[DemoScenario]:
        for scenario in self.scenarios:
            if scenario.name == name:
                return scenario
        return None

    def get_all_scenarios(self) -> List[DemoScenario]:
        return list(self.scenarios)

    def run(self, scenario: DemoScenario) -> List[str]:
        clock = ManualClock()
        with Marketplace(Settings(notification_dispatch="inline"), clock=clock) as marketplace:
            return scenario.run(marketplace, clock)

    def run_all(self) -> Dict[str, List[str]]:
        return {scenario.name: self.run(scenario) for scenario in self.scenarios}


# Create global instance for easy access
demo_runner = DemoRunner()
