"""API routes for SkyGig.

Handlers are plain ``def`` functions: the marketplace components block on
per-aggregate locks, so FastAPI runs them in its worker threadpool.
"""

from typing import Dict, List, Optional
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Request, Response

from skygig import __version__
from skygig.api.models import (
    JobCreateRequest, JobUpdateRequest, DecisionRequest, ProgressUpdateRequest,
    StageResponse, ConversationOpenRequest, MessageSendRequest, PinRequest,
    CountResponse, HealthCheck
)
from skygig.config import settings
from skygig.core.models import (
    Applicant, ApplicantStatus, Conversation, InProgressInfo, JobPosting,
    Message, Notification, Stage, StageItem
)
from skygig.marketplace import Marketplace
from skygig.utils.logging import get_logger

logger = get_logger(__name__)

# Create routers
jobs_router = APIRouter(prefix="/jobs", tags=["jobs"])
applicants_router = APIRouter(prefix="/applicants", tags=["applicants"])
matches_router = APIRouter(prefix="/matches", tags=["matches"])
conversations_router = APIRouter(prefix="/conversations", tags=["conversations"])
notifications_router = APIRouter(prefix="/notifications", tags=["notifications"])
health_router = APIRouter(prefix="/health", tags=["health"])


def get_marketplace(request: Request) -> Marketplace:
    """Marketplace instance attached to the application."""
    marketplace = getattr(request.app.state, "marketplace", None)
    if marketplace is None:
        raise HTTPException(status_code=503, detail="Marketplace not initialized")
    return marketplace


def get_caller_id(request: Request) -> str:
    """Extract the caller identity from the configured user header.

    Authentication happens upstream; this service trusts the header.
    """
    caller_id = request.headers.get(settings.user_header, "").strip()
    if not caller_id:
        raise HTTPException(status_code=401, detail=f"Missing {settings.user_header} header")
    return caller_id


# ----------------------------------------------------------------------
# Jobs
# ----------------------------------------------------------------------

@jobs_router.post("", response_model=JobPosting, status_code=201)
def create_job(
    body: JobCreateRequest,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    """Create a draft job, or an open one when ``publish`` is set."""
    return marketplace.jobs.create_job(
        caller_id,
        body.title,
        body.description,
        body.expired_at,
        publish=body.publish,
        category=body.category,
        tags=body.tags,
        price=body.price
    )


@jobs_router.get("", response_model=List[JobPosting])
def list_my_jobs(
    view: str = "list",
    q: Optional[str] = None,
    status: str = "all",
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    """Jobs owned by the caller. ``view=archive`` lists drafts."""
    return marketplace.jobs.list_for_owner(caller_id, view=view, query=q, status=status)


@jobs_router.get("/browse", response_model=List[JobPosting])
def browse_jobs(
    q: Optional[str] = None,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.jobs.browse_open(q)


@jobs_router.get("/{job_id}", response_model=JobPosting)
def get_job(
    job_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.jobs.get(job_id)


@jobs_router.patch("/{job_id}", response_model=JobPosting)
def update_job(
    job_id: str,
    body: JobUpdateRequest,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.jobs.update_job(
        job_id,
        caller_id,
        title=body.title,
        description=body.description,
        expired_at=body.expired_at,
        category=body.category,
        tags=body.tags,
        price=body.price
    )


@jobs_router.post("/{job_id}/publish", response_model=JobPosting)
def publish_job(
    job_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.jobs.publish(job_id, caller_id)


@jobs_router.post("/{job_id}/close", response_model=JobPosting)
def close_job(
    job_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.jobs.close(job_id, caller_id)


@jobs_router.delete("/{job_id}", status_code=204)
def delete_job(
    job_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    marketplace.jobs.delete(job_id, caller_id)
    return Response(status_code=204)


@jobs_router.post("/{job_id}/applicants", response_model=Applicant, status_code=201)
def apply_to_job(
    job_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    """Apply to a job as the caller."""
    return marketplace.pipeline.apply(job_id, caller_id)


@jobs_router.get("/{job_id}/applicants", response_model=List[Applicant])
def list_job_applicants(
    job_id: str,
    status: Optional[ApplicantStatus] = None,
    q: Optional[str] = None,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.pipeline.list_for_job(job_id, caller_id, status=status, query=q)


@jobs_router.get("/{job_id}/applicants/counts", response_model=Dict[str, int])
def count_job_applicants(
    job_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.pipeline.counts_for_job(job_id, caller_id)


# ----------------------------------------------------------------------
# Applicants
# ----------------------------------------------------------------------

@applicants_router.get("/mine", response_model=List[Applicant])
def list_my_applications(
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.pipeline.list_for_candidate(caller_id)


@applicants_router.post("/{applicant_id}/decision", response_model=Applicant)
def decide_applicant(
    applicant_id: str,
    body: DecisionRequest,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    """Approve or reject a pending applicant as the job's poster."""
    applicant = marketplace.pipeline.decide(applicant_id, body.decision, caller_id)
    logger.info("Decision recorded via API", applicant_id=applicant_id, status=applicant.status.value)
    return applicant


@applicants_router.post("/{applicant_id}/withdraw", response_model=Applicant)
def withdraw_applicant(
    applicant_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.pipeline.withdraw(applicant_id, caller_id)


# ----------------------------------------------------------------------
# Match hub
# ----------------------------------------------------------------------

@matches_router.get("", response_model=List[StageItem])
def list_my_matches(
    stage: Stage = Stage.MATCHING,
    q: Optional[str] = None,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.matches.list_for_candidate(caller_id, stage, q)


@matches_router.get("/counts", response_model=Dict[str, int])
def count_my_matches(
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.matches.stage_counts(caller_id)


@matches_router.get("/{job_id}", response_model=StageResponse)
def get_my_stage(
    job_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    """Stage of the caller's application to ``job_id``."""
    return StageResponse(
        job_id=job_id,
        candidate_id=caller_id,
        stage=marketplace.matches.stage_for(caller_id, job_id),
        in_progress=marketplace.matches.in_progress_info(job_id, caller_id)
    )


@matches_router.put("/{job_id}/{candidate_id}/progress", response_model=InProgressInfo)
def update_progress(
    job_id: str,
    candidate_id: str,
    body: ProgressUpdateRequest,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.matches.update_progress(
        job_id,
        candidate_id,
        caller_id,
        body.progress_pct,
        next_milestone=body.next_milestone,
        payment_status=body.payment_status,
        risk_flags=body.risk_flags
    )


@matches_router.post("/{job_id}/{candidate_id}/complete", response_model=StageItem)
def complete_work(
    job_id: str,
    candidate_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.matches.mark_complete(job_id, candidate_id, caller_id)


# ----------------------------------------------------------------------
# Conversations
# ----------------------------------------------------------------------

@conversations_router.post("", response_model=Conversation)
def open_conversation(
    body: ConversationOpenRequest,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    """Open the caller's conversation with another user about a job, or return the existing one."""
    return marketplace.conversations.open_or_get(body.job_id, caller_id, body.participant_id)


@conversations_router.get("", response_model=List[Conversation])
def list_conversations(
    q: Optional[str] = None,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.conversations.list_for(caller_id, q)


@conversations_router.get("/unread", response_model=CountResponse)
def count_unread_messages(
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return CountResponse(count=marketplace.conversations.unread_total(caller_id))


@conversations_router.get("/{conversation_id}", response_model=Conversation)
def get_conversation(
    conversation_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.conversations.get(conversation_id, caller_id)


@conversations_router.get("/{conversation_id}/messages", response_model=List[Message])
def list_messages(
    conversation_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.conversations.messages(conversation_id, caller_id)


@conversations_router.post("/{conversation_id}/messages", response_model=Message, status_code=201)
def send_message(
    conversation_id: str,
    body: MessageSendRequest,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.conversations.send(conversation_id, caller_id, body.text)


@conversations_router.post("/{conversation_id}/read", response_model=Conversation)
def read_conversation(
    conversation_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.conversations.mark_read(conversation_id, caller_id)


@conversations_router.post("/{conversation_id}/delivered", response_model=CountResponse)
def deliver_conversation(
    conversation_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return CountResponse(count=marketplace.conversations.mark_delivered(conversation_id, caller_id))


@conversations_router.put("/{conversation_id}/pin", response_model=Conversation)
def pin_conversation(
    conversation_id: str,
    body: PinRequest,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.conversations.set_pinned(conversation_id, caller_id, body.pinned)


@conversations_router.post("/{conversation_id}/close", response_model=Conversation)
def close_conversation(
    conversation_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.conversations.close(conversation_id, caller_id)


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------

@notifications_router.get("", response_model=List[Notification])
def list_notifications(
    tab: str = "all",
    q: Optional[str] = None,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.notifications.list_for(caller_id, tab, q)


@notifications_router.get("/unread-count", response_model=CountResponse)
def count_unread_notifications(
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return CountResponse(count=marketplace.notifications.unread_count(caller_id))


@notifications_router.post("/read-all", response_model=CountResponse)
def read_all_notifications(
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return CountResponse(count=marketplace.notifications.mark_all_read(caller_id))


@notifications_router.post("/clear-read", response_model=CountResponse)
def clear_read_notifications(
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    """Delete the caller's read notifications. Cannot be undone."""
    return CountResponse(count=marketplace.notifications.clear_read(caller_id))


@notifications_router.post("/{notification_id}/read", response_model=Notification)
def read_notification(
    notification_id: str,
    caller_id: str = Depends(get_caller_id),
    marketplace: Marketplace = Depends(get_marketplace)
):
    return marketplace.notifications.mark_read(notification_id, caller_id)


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------

@health_router.get("", response_model=HealthCheck)
def health_check(request: Request):
    """Health check endpoint."""
    marketplace = getattr(request.app.state, "marketplace", None)
    components = {"marketplace": "unavailable"}
    if marketplace is not None:
        components = {"marketplace": "healthy", **marketplace.health()}

    return HealthCheck(
        status="healthy" if marketplace is not None else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
        components=components
    )


# Export all routers
all_routers = [
    jobs_router,
    applicants_router,
    matches_router,
    conversations_router,
    notifications_router,
    health_router
]
