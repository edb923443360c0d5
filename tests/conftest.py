"""Shared fixtures for SkyGig tests."""

from datetime import timedelta

import pytest

from skygig.config import Settings
from skygig.core.clock import ManualClock
from skygig.marketplace import Marketplace

DESCRIPTION = " ".join(
    ["Aerial survey of a solar farm with thermal imaging of every panel row."] * 5
)


def inline_settings(**overrides) -> Settings:
    """Settings delivering every event on the publishing thread."""
    return Settings(notification_dispatch="inline", **overrides)


def open_job(marketplace: Marketplace, owner_id: str = "poster_1", days: float = 10, title: str = "Solar farm survey"):
    """Create a published job expiring ``days`` from now."""
    return marketplace.jobs.create_job(
        owner_id,
        title,
        DESCRIPTION,
        marketplace.clock.now() + timedelta(days=days),
        publish=True
    )


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def marketplace(clock):
    with Marketplace(inline_settings(), clock=clock) as marketplace:
        yield marketplace
