"""API models for request/response schemas."""

from typing import Dict, List, Optional, Any
from pydantic import BaseModel, Field
from datetime import datetime

from skygig.core.models import (
    Decision,
    InProgressInfo,
    JobPrice,
    Milestone,
    PaymentStatus,
    RiskFlag,
    Stage,
)


class JobCreateRequest(BaseModel):
    """Request to create a job posting."""
    title: str = Field(..., description="Job title")
    description: str = Field(..., description="Job description")
    expired_at: datetime = Field(..., description="Application cutoff")
    publish: bool = Field(False, description="Open the job immediately instead of saving a draft")
    category: Optional[str] = Field(None, description="Job category")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    price: Optional[JobPrice] = Field(None, description="Advertised pay")


class JobUpdateRequest(BaseModel):
    """Partial update of a draft or open job."""
    title: Optional[str] = Field(None, description="Job title")
    description: Optional[str] = Field(None, description="Job description")
    expired_at: Optional[datetime] = Field(None, description="Application cutoff")
    category: Optional[str] = Field(None, description="Job category")
    tags: Optional[List[str]] = Field(None, description="Free-form tags")
    price: Optional[JobPrice] = Field(None, description="Advertised pay")


class DecisionRequest(BaseModel):
    """Poster decision on an applicant."""
    decision: Decision = Field(..., description="approve or reject")


class ProgressUpdateRequest(BaseModel):
    """Progress report for in-progress work."""
    progress_pct: float = Field(..., description="Completion percentage, clamped to 0-100")
    next_milestone: Optional[Milestone] = Field(None, description="Upcoming milestone")
    payment_status: Optional[PaymentStatus] = Field(None, description="Payment state")
    risk_flags: Optional[List[RiskFlag]] = Field(None, description="awaiting_client and/or blocked")


class StageResponse(BaseModel):
    """Stage of the caller's application to a job."""
    job_id: str = Field(..., description="Job identifier")
    candidate_id: str = Field(..., description="Candidate identifier")
    stage: Optional[Stage] = Field(None, description="Current stage, empty once rejected or withdrawn")
    in_progress: Optional[InProgressInfo] = Field(None, description="Progress of approved work")


class ConversationOpenRequest(BaseModel):
    """Open (or fetch) the conversation with another user about a job."""
    job_id: str = Field(..., description="Job the conversation is about")
    participant_id: str = Field(..., description="The other participant")


class MessageSendRequest(BaseModel):
    text: str = Field(..., description="Message text")


class PinRequest(BaseModel):
    pinned: bool = Field(..., description="Whether the conversation is pinned for the caller")


class CountResponse(BaseModel):
    count: int = Field(..., description="Number of affected or matching items")


class HealthCheck(BaseModel):
    """Health check response."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Check timestamp")
    version: str = Field(..., description="Service version")
    components: Dict[str, Any] = Field(..., description="Component status")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Error message")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(..., description="Error timestamp")
