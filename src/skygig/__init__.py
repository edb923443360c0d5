"""
SkyGig: lifecycle backend for a drone-gig marketplace.

Posters publish jobs, seekers apply, posters approve or reject, both sides
chat about the job, and everyone receives notifications for what concerns
them. Components coordinate through an in-process event bus and serialize
writes with per-aggregate locks.
"""

__version__ = "0.1.0"

from skygig.config import Settings
from skygig.core.errors import (
    Conflict,
    Forbidden,
    InvalidState,
    InvalidTransition,
    MarketplaceError,
    NotFound,
    ValidationError,
)
from skygig.marketplace import Marketplace

__all__ = [
    "Marketplace",
    "Settings",
    "MarketplaceError",
    "ValidationError",
    "InvalidState",
    "InvalidTransition",
    "Conflict",
    "Forbidden",
    "NotFound",
]
