"""Core data models for the SkyGig marketplace."""

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    """Job posting lifecycle status."""
    DRAFT = "draft"
    OPEN = "open"
    CLOSING_SOON = "closingSoon"
    CLOSED = "closed"


class ApplicantStatus(str, Enum):
    """Applicant pipeline status. Everything but PENDING is terminal."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class Decision(str, Enum):
    """Poster decision on a pending applicant."""
    APPROVE = "approve"
    REJECT = "reject"


class Stage(str, Enum):
    """Seeker-facing phase of an application."""
    MATCHING = "matching"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class PaymentStatus(str, Enum):
    NONE = "none"
    PARTIAL = "partial"
    PAID = "paid"


class RiskFlag(str, Enum):
    OVERDUE = "overdue"
    AWAITING_CLIENT = "awaiting_client"
    BLOCKED = "blocked"


class MessageStatus(str, Enum):
    """Message delivery status, ordered sent < delivered < read."""
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"

    @property
    def rank(self) -> int:
        return _MESSAGE_STATUS_ORDER.index(self)


_MESSAGE_STATUS_ORDER = [MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ]


class NotificationType(str, Enum):
    MESSAGE = "message"
    OFFER = "offer"
    SYSTEM = "system"


class JobPrice(BaseModel):
    """Advertised pay for a job."""
    amount: float = Field(..., description="Price amount")
    currency: str = Field("VND", pattern="^(USD|VND)$", description="Currency code")
    unit: str = Field("project", pattern="^(hour|project)$", description="Billing unit")


class JobPosting(BaseModel):
    """A unit of drone work published by a poster."""
    id: str = Field(..., description="Job posting identifier")
    owner_id: str = Field(..., description="Poster who owns the job")
    title: str = Field(..., description="Job title")
    description: str = Field(..., description="Job description")
    posted_at: datetime = Field(..., description="Creation time")
    expired_at: datetime = Field(..., description="Application cutoff")
    status: JobStatus = Field(JobStatus.DRAFT, description="Lifecycle status")
    category: Optional[str] = Field(None, description="Job category")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    price: Optional[JobPrice] = Field(None, description="Advertised pay")
    updated_at: Optional[datetime] = Field(None, description="Last edit time")
    closed_at: Optional[datetime] = Field(None, description="Explicit close time")


class Applicant(BaseModel):
    """One candidate's application to one job posting."""
    id: str = Field(..., description="Applicant identifier")
    job_id: str = Field(..., description="Job applied to")
    candidate_id: str = Field(..., description="Applying seeker")
    owner_id: str = Field(..., description="Poster of the job at apply time")
    job_title: str = Field("", description="Job title at apply time")
    applied_at: datetime = Field(..., description="Application time")
    status: ApplicantStatus = Field(ApplicantStatus.PENDING, description="Pipeline status")
    decided_at: Optional[datetime] = Field(None, description="Time of the terminal transition")


class Milestone(BaseModel):
    name: str = Field(..., min_length=1, description="Milestone name")
    due: datetime = Field(..., description="Milestone due time")


class InProgressInfo(BaseModel):
    """Progress tracking attached to an in-progress stage."""
    progress_pct: int = Field(0, ge=0, le=100, description="Completion percentage")
    next_milestone: Optional[Milestone] = Field(None, description="Upcoming milestone")
    payment_status: PaymentStatus = Field(PaymentStatus.NONE, description="Payment state")
    risk_flags: List[RiskFlag] = Field(default_factory=list, description="Risk flags, overdue derived")
    started_at: Optional[datetime] = Field(None, description="Approval time")


class StageItem(BaseModel):
    """A seeker's view of one application in the match hub."""
    job_id: str
    candidate_id: str
    owner_id: str
    job_title: str = ""
    applicant_id: str
    stage: Stage
    applied_at: datetime
    completed_at: Optional[datetime] = None
    in_progress: Optional[InProgressInfo] = None


class Conversation(BaseModel):
    """A 1:1 thread between two users about a job."""
    id: str = Field(..., description="Conversation identifier")
    job_id: str = Field(..., description="Job the conversation is about")
    participant_ids: List[str] = Field(..., min_length=2, max_length=2, description="Exactly two users")
    created_at: datetime = Field(..., description="Creation time")
    last_message_id: Optional[str] = Field(None, description="Most recent message")
    last_message_text: Optional[str] = Field(None, description="Preview of the most recent message")
    last_at: Optional[datetime] = Field(None, description="Time of last activity")
    unread_count: Dict[str, int] = Field(default_factory=dict, description="Unread messages per participant")
    pinned: Dict[str, bool] = Field(default_factory=dict, description="Pinned flag per participant")
    closed: bool = Field(False, description="Whether new messages are refused")

    def other_participant(self, participant_id: str) -> str:
        first, second = self.participant_ids
        return second if participant_id == first else first


class Message(BaseModel):
    """A single chat message."""
    id: str = Field(..., description="Message identifier")
    conversation_id: str = Field(..., description="Owning conversation")
    sender_id: str = Field(..., description="Author")
    text: str = Field(..., description="Message body")
    status: MessageStatus = Field(MessageStatus.SENT, description="Delivery status")
    created_at: datetime = Field(..., description="Append time")
    seq: int = Field(..., description="Append sequence within the conversation")


class Notification(BaseModel):
    """A per-recipient alert raised by a domain event."""
    id: str = Field(..., description="Notification identifier")
    recipient_id: str = Field(..., description="User notified")
    type: NotificationType = Field(..., description="Notification type")
    title: str = Field(..., description="Headline")
    body: Optional[str] = Field(None, description="Detail text")
    created_at: datetime = Field(..., description="Creation time")
    read: bool = Field(False, description="Whether the recipient has read it")
    job_id: Optional[str] = Field(None, description="Related job, display only")
    job_title: Optional[str] = Field(None, description="Related job title, display only")
    event_id: Optional[str] = Field(None, description="Domain event that raised it")
