"""Ticket lifecycle, timeline and queue APIs.

Reporters (actor type ``user``) may submit tickets, read their own tickets
and reporter-visible timelines, send messages and upload attachments on
their own tickets. Everything else needs an admin, agent or system actor.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from ticketflow.core.deps import get_actor, get_db, require_admin, require_staff
from ticketflow.db.enums import (
    ActivityType,
    AuthorType,
    TicketPriority,
    TicketStatus,
    TicketType,
    Visibility,
)
from ticketflow.db.models import TicketActivity
from ticketflow.schemas.tickets import (
    ActivityRead,
    Actor,
    ApproveRequest,
    AttachmentCreate,
    AttachmentRead,
    CommentCreate,
    MessageCreate,
    PipelineCountsRead,
    RejectRequest,
    ResolveData,
    StatusChangeRequest,
    SubmittedTestResult,
    TicketCreate,
    TicketListFilters,
    TicketListResponse,
    TicketRead,
    TicketReceipt,
    TicketStatsRead,
    TicketUpdate,
    TimelineOptions,
    TriageData,
)
from ticketflow.services import (
    activity_service,
    attachment_service,
    queue_service,
    stats_service,
    ticket_service,
)

router = APIRouter(prefix="/tickets", tags=["Tickets"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Ticket not found")


def _ticket_or_404(ticket) -> TicketRead:
    if ticket is None:
        raise _not_found()
    return TicketRead.model_validate(ticket)


def _reads(tickets) -> list[TicketRead]:
    return [TicketRead.model_validate(t) for t in tickets]


def _require_activity_on_ticket(db: Session, ticket_id: UUID, activity_id: UUID) -> None:
    activity = db.get(TicketActivity, activity_id)
    if activity is None or activity.ticket_id != ticket_id:
        raise HTTPException(status_code=404, detail="Activity not found")


def _reporter_id_or_422(reporter_id: str | None) -> str:
    if not reporter_id:
        raise HTTPException(status_code=422, detail="reporter_id is required for reporters")
    return reporter_id


def _require_access(db: Session, ticket_id: UUID, actor: Actor, reporter_id: str | None) -> None:
    """Reporters may only touch their own live tickets; others pass through."""
    if actor.type != AuthorType.USER:
        return
    reporter_id = _reporter_id_or_422(reporter_id)
    ticket = ticket_service.get_ticket(db, ticket_id)
    if ticket is None or ticket.reporter_id != reporter_id:
        raise _not_found()


# =============================================================================
# Create / list
# =============================================================================


@router.post("", response_model=TicketRead, status_code=201)
def create_ticket(
    data: TicketCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TicketRead:
    """Create a ticket (idempotent via client_reference_id)."""
    return TicketRead.model_validate(ticket_service.create_ticket(db, data, actor))


@router.post("/submit", response_model=TicketReceipt, status_code=201)
def submit_ticket(data: TicketCreate, db: Session = Depends(get_db)) -> TicketReceipt:
    """Public portal/widget submission. Returns a receipt, not the full ticket."""
    actor = Actor(type=AuthorType.USER, name=data.reporter_name or data.reporter_id)
    ticket = ticket_service.create_ticket(db, data, actor)
    return TicketReceipt.model_validate(ticket)


@router.get("", response_model=TicketListResponse)
def list_tickets(
    project_id: str | None = None,
    status: Annotated[list[TicketStatus] | None, Query()] = None,
    ticket_type: Annotated[list[TicketType] | None, Query()] = None,
    priority: Annotated[list[TicketPriority] | None, Query()] = None,
    assignee: str | None = None,
    reporter_id: str | None = None,
    needs_followup: bool | None = None,
    parent_id: UUID | None = None,
    top_level_only: bool = False,
    search: str | None = None,
    sort: Literal["created_at", "updated_at", "work_priority", "ticket_number"] = "created_at",
    order: Literal["asc", "desc"] = "desc",
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int | None, Query(ge=1)] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TicketListResponse:
    """List tickets with filters, sorting and pagination. Reporters see only their own."""
    if actor.type == AuthorType.USER:
        reporter_id = _reporter_id_or_422(reporter_id)
    filters = TicketListFilters(
        project_id=project_id,
        status=status,
        ticket_type=ticket_type,
        priority=priority,
        assignee=assignee,
        reporter_id=reporter_id,
        needs_followup=needs_followup,
        parent_id=parent_id,
        top_level_only=top_level_only,
        search=search,
        sort=sort,
        order=order,
        page=page,
        **({"page_size": page_size} if page_size else {}),
    )
    result = ticket_service.list_tickets(db, filters)
    return TicketListResponse(
        items=_reads(result.items),
        total=result.total,
        page=result.page,
        page_size=result.per_page,
        total_pages=result.pages,
    )


# =============================================================================
# Queues and statistics
# =============================================================================


@router.get("/stats", response_model=TicketStatsRead, dependencies=[Depends(require_staff)])
def get_stats(project_id: str | None = None, db: Session = Depends(get_db)) -> TicketStatsRead:
    stats = stats_service.get_ticket_stats(db, project_id)
    return TicketStatsRead(**stats.__dict__)


@router.get("/pipeline", response_model=PipelineCountsRead, dependencies=[Depends(require_staff)])
def get_pipeline(project_id: str | None = None, db: Session = Depends(get_db)) -> PipelineCountsRead:
    counts = stats_service.get_pipeline_counts(db, project_id)
    return PipelineCountsRead(**counts.__dict__)


@router.get("/triage-batch", response_model=list[TicketRead], dependencies=[Depends(require_staff)])
def get_triage_batch(
    project_id: str | None = None,
    size: Annotated[int | None, Query(ge=1, le=50)] = None,
    db: Session = Depends(get_db),
) -> list[TicketRead]:
    return _reads(queue_service.get_triage_batch(db, project_id, size))


@router.get("/work-queue", response_model=list[TicketRead], dependencies=[Depends(require_staff)])
def get_work_queue(project_id: str | None = None, db: Session = Depends(get_db)) -> list[TicketRead]:
    return _reads(queue_service.get_work_queue(db, project_id))


@router.get("/rework", response_model=list[TicketRead], dependencies=[Depends(require_staff)])
def get_rework_items(project_id: str | None = None, db: Session = Depends(get_db)) -> list[TicketRead]:
    return _reads(queue_service.get_rework_items(db, project_id))


@router.get("/followups", response_model=list[TicketRead], dependencies=[Depends(require_staff)])
def get_follow_ups(
    project_id: str | None = None,
    due_by: datetime | None = None,
    db: Session = Depends(get_db),
) -> list[TicketRead]:
    return _reads(queue_service.get_follow_ups(db, project_id, due_by))


@router.get(
    "/by-number/{project_id}/{ticket_number}",
    response_model=TicketRead,
    dependencies=[Depends(require_staff)],
)
def get_ticket_by_number(
    project_id: str, ticket_number: int, db: Session = Depends(get_db)
) -> TicketRead:
    return _ticket_or_404(ticket_service.get_ticket_by_number(db, project_id, ticket_number))


# =============================================================================
# Single ticket
# =============================================================================


@router.get("/{ticket_id}", response_model=TicketRead)
def get_ticket(
    ticket_id: UUID,
    reporter_id: str | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> TicketRead:
    """Single ticket. Reporters get 404 for tickets they did not report."""
    _require_access(db, ticket_id, actor, reporter_id)
    return _ticket_or_404(ticket_service.get_ticket(db, ticket_id))


@router.patch("/{ticket_id}", response_model=TicketRead)
def update_ticket(
    ticket_id: UUID,
    data: TicketUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> TicketRead:
    """Update allow-listed fields. Unknown fields are rejected with 422."""
    return _ticket_or_404(ticket_service.update_ticket(db, ticket_id, data, actor))


@router.delete("/{ticket_id}", status_code=204)
def delete_ticket(
    ticket_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_admin),
) -> Response:
    if not ticket_service.delete_ticket(db, ticket_id, actor):
        raise _not_found()
    return Response(status_code=204)


@router.post("/{ticket_id}/status", response_model=TicketRead)
def change_status(
    ticket_id: UUID,
    data: StatusChangeRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> TicketRead:
    return _ticket_or_404(
        ticket_service.change_status(db, ticket_id, data.status, actor, notes=data.notes)
    )


@router.post("/{ticket_id}/triage", response_model=TicketRead)
def triage_ticket(
    ticket_id: UUID,
    data: TriageData,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> TicketRead:
    return _ticket_or_404(ticket_service.triage_ticket(db, ticket_id, data, actor))


@router.post("/{ticket_id}/approve", response_model=TicketRead)
def approve_ticket(
    ticket_id: UUID,
    data: ApproveRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> TicketRead:
    return _ticket_or_404(
        ticket_service.approve_ticket(db, ticket_id, actor, data.direction, data.work_priority)
    )


@router.post("/{ticket_id}/reject", response_model=TicketRead)
def reject_ticket(
    ticket_id: UUID,
    data: RejectRequest,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> TicketRead:
    return _ticket_or_404(
        ticket_service.reject_ticket(db, ticket_id, data.resolution, data.reason, actor)
    )


@router.post("/{ticket_id}/resolve", response_model=TicketRead)
def resolve_ticket(
    ticket_id: UUID,
    data: ResolveData,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> TicketRead:
    return _ticket_or_404(ticket_service.resolve_ticket(db, ticket_id, data, actor))


@router.post("/{ticket_id}/test-result", response_model=ActivityRead, status_code=201)
def submit_test_result(
    ticket_id: UUID,
    data: SubmittedTestResult,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> ActivityRead:
    return ActivityRead.model_validate(
        ticket_service.submit_test_result(db, ticket_id, data, actor)
    )


# =============================================================================
# Timeline
# =============================================================================


@router.get("/{ticket_id}/timeline", response_model=list[ActivityRead])
def get_timeline(
    ticket_id: UUID,
    view: Literal["full", "user", "agent"] = "full",
    reporter_id: str | None = None,
    visibility: Visibility | None = None,
    activity_type: Annotated[list[ActivityType] | None, Query()] = None,
    since: datetime | None = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
):
    """
    Ticket timeline.

    view=user returns only what the reporter may see (requires reporter_id);
    view=agent returns the plain-text narrative. Reporters always get the
    view=user entries for their own reporter_id, whatever view they ask for.
    """
    if actor.type == AuthorType.USER:
        view = "user"

    if view == "agent":
        if ticket_service.get_ticket(db, ticket_id) is None:
            raise _not_found()
        return PlainTextResponse(activity_service.get_timeline_for_agent(db, ticket_id))

    if view == "user":
        if not reporter_id:
            raise HTTPException(status_code=422, detail="reporter_id is required for view=user")
        entries = activity_service.get_timeline_for_user(db, ticket_id, reporter_id)
        return [ActivityRead.model_validate(e) for e in entries]

    if ticket_service.get_ticket(db, ticket_id) is None:
        raise _not_found()
    options = TimelineOptions(
        visibility=visibility,
        activity_types=activity_type or [],
        since=since,
        limit=limit,
    )
    return [ActivityRead.model_validate(e) for e in activity_service.get_timeline(db, ticket_id, options)]


@router.post("/{ticket_id}/comments", response_model=ActivityRead, status_code=201)
def add_comment(
    ticket_id: UUID,
    data: CommentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(require_staff),
) -> ActivityRead:
    return ActivityRead.model_validate(
        activity_service.add_comment(db, ticket_id, data.content, actor)
    )


@router.post("/{ticket_id}/messages", response_model=ActivityRead, status_code=201)
def send_message(
    ticket_id: UUID,
    data: MessageCreate,
    reporter_id: str | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ActivityRead:
    """Reporter-facing message. Agent messages are always held for approval."""
    _require_access(db, ticket_id, actor, reporter_id)
    return ActivityRead.model_validate(
        activity_service.send_message(db, ticket_id, data.content, actor, data.requires_approval)
    )


@router.post("/{ticket_id}/activity/{activity_id}/approve", response_model=ActivityRead)
def approve_draft(
    ticket_id: UUID,
    activity_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ActivityRead:
    _require_activity_on_ticket(db, ticket_id, activity_id)
    activity = activity_service.approve_draft(db, activity_id, actor)
    if activity is None:
        raise HTTPException(status_code=404, detail="No draft awaiting approval")
    return ActivityRead.model_validate(activity)


@router.post("/{ticket_id}/activity/{activity_id}/promote", response_model=ActivityRead)
def promote_activity(
    ticket_id: UUID,
    activity_id: UUID,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> ActivityRead:
    _require_activity_on_ticket(db, ticket_id, activity_id)
    activity = activity_service.promote_to_user_visible(db, activity_id, actor)
    if activity is None:
        raise HTTPException(status_code=404, detail="No internal entry to promote")
    return ActivityRead.model_validate(activity)


# =============================================================================
# Attachments
# =============================================================================


@router.post("/{ticket_id}/attachments", response_model=AttachmentRead, status_code=201)
def record_attachment(
    ticket_id: UUID,
    data: AttachmentCreate,
    reporter_id: str | None = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_actor),
) -> AttachmentRead:
    _require_access(db, ticket_id, actor, reporter_id)
    return AttachmentRead.model_validate(
        attachment_service.record_attachment(db, ticket_id, data, actor)
    )


@router.get(
    "/{ticket_id}/attachments",
    response_model=list[AttachmentRead],
    dependencies=[Depends(require_staff)],
)
def list_attachments(ticket_id: UUID, db: Session = Depends(get_db)) -> list[AttachmentRead]:
    return [AttachmentRead.model_validate(a) for a in attachment_service.list_attachments(db, ticket_id)]
