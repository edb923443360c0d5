"""Job postings, applicant pipeline and seeker stages."""

from .store import (
    JobStore,
    compute_status
)
from .pipeline import ApplicantPipeline
from .matchhub import (
    MatchHub,
    derive_stage,
    derive_risk_flags
)

__all__ = [
    "JobStore",
    "compute_status",
    "ApplicantPipeline",
    "MatchHub",
    "derive_stage",
    "derive_risk_flags"
]
