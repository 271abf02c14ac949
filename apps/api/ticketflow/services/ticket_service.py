"""Ticket lifecycle service - creation, updates, status machine and decisions.

Every mutation runs as one transaction (ticket row plus its activity rows)
and funnels its audit entries through activity_service.add_activity.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ticketflow.core.structured_logging import build_log_context
from ticketflow.db.enums import (
    STATUS_FLOW,
    ActivityType,
    AuthorType,
    Decision,
    TestingResult,
    TicketStatus,
    Visibility,
)
from ticketflow.db.models import ProjectCounter, Ticket, TicketActivity
from ticketflow.db.session import atomic
from ticketflow.schemas.tickets import (
    UPDATABLE_FIELDS,
    Actor,
    ResolveData,
    SubmittedTestResult,
    TicketCreate,
    TicketListFilters,
    TicketUpdate,
    TriageData,
)
from ticketflow.services import activity_service
from ticketflow.services.errors import (
    DisallowedFieldError,
    TicketNotFoundError,
    TicketValidationError,
)
from ticketflow.utils.datetime_utils import ensure_utc, utc_now
from ticketflow.utils.pagination import PaginatedResponse, clamp_pagination

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "created_at": Ticket.created_at,
    "updated_at": Ticket.updated_at,
    "work_priority": Ticket.work_priority,
    "ticket_number": Ticket.ticket_number,
}

_DATETIME_FIELDS = frozenset({"followup_after"})


# =============================================================================
# Helpers
# =============================================================================


def _json_value(value):
    """Make a field value safe for the activity metadata JSON column."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value).isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_json_value(v) for v in value]
    return value


def _touch(ticket: Ticket, actor: Actor) -> None:
    ticket.updated_at = utc_now()
    ticket.updated_by = actor.name


def _set_status(ticket: Ticket, new_status: TicketStatus) -> None:
    """Move to new_status, stamping resolved_at the first time it resolves."""
    ticket.status = new_status
    if new_status == TicketStatus.RESOLVED and ticket.resolved_at is None:
        ticket.resolved_at = utc_now()


def _is_backwards(old: TicketStatus, new: TicketStatus) -> bool:
    if new == TicketStatus.CLOSED:
        return False
    return STATUS_FLOW.index(new) < STATUS_FLOW.index(old)


def _next_ticket_number(db: Session, project_id: str) -> int:
    """Increment and return the project's ticket counter."""
    bump = (
        update(ProjectCounter)
        .where(ProjectCounter.project_id == project_id)
        .values(current_value=ProjectCounter.current_value + 1, updated_at=utc_now())
        .returning(ProjectCounter.current_value)
        .execution_options(synchronize_session=False)
    )
    value = db.execute(bump).scalar_one_or_none()
    if value is not None:
        return value

    try:
        with db.begin_nested():
            db.add(ProjectCounter(project_id=project_id, current_value=1))
            db.flush()
        return 1
    except IntegrityError:
        # Another writer created the counter first
        return db.execute(bump).scalar_one()


def _find_by_client_reference(db: Session, project_id: str, client_reference_id: str) -> Ticket | None:
    return (
        db.query(Ticket)
        .filter(
            Ticket.project_id == project_id,
            Ticket.client_reference_id == client_reference_id,
        )
        .first()
    )


def _values_differ(field: str, old, new) -> bool:
    if field in _DATETIME_FIELDS:
        return ensure_utc(old) != ensure_utc(new)
    return old != new


# =============================================================================
# Core CRUD
# =============================================================================


def create_ticket(db: Session, data: TicketCreate, actor: Actor) -> Ticket:
    """
    Create a ticket in status new. Idempotent via client_reference_id.

    A second create with the same (project_id, client_reference_id) returns
    the stored ticket unchanged and writes nothing, including when the
    duplicate is detected by the unique constraint under a concurrent insert.
    """
    if data.client_reference_id:
        existing = _find_by_client_reference(db, data.project_id, data.client_reference_id)
        if existing is not None:
            logger.info(
                "Idempotent create returned existing ticket",
                extra=build_log_context(ticket_id=existing.id, project_id=data.project_id),
            )
            return existing

    if data.parent_id is not None:
        parent = get_ticket(db, data.parent_id)
        if parent is None or parent.project_id != data.project_id:
            raise TicketValidationError(f"Parent ticket {data.parent_id} not found in project")

    with atomic(db):
        try:
            with db.begin_nested():
                ticket = Ticket(
                    project_id=data.project_id,
                    ticket_number=_next_ticket_number(db, data.project_id),
                    source=data.source,
                    ticket_type=data.ticket_type,
                    title=data.title,
                    description=data.description,
                    priority=data.priority,
                    tags=list(data.tags),
                    route=data.route,
                    environment=data.environment,
                    browser_info=data.browser_info,
                    os_info=data.os_info,
                    reporter_id=data.reporter_id,
                    reporter_name=data.reporter_name,
                    reporter_email=data.reporter_email,
                    parent_id=data.parent_id,
                    client_reference_id=data.client_reference_id,
                    status=TicketStatus.NEW,
                    updated_by=actor.name,
                )
                db.add(ticket)
                db.flush()
        except IntegrityError:
            if not data.client_reference_id:
                raise
            existing = _find_by_client_reference(db, data.project_id, data.client_reference_id)
            if existing is None:
                raise
            logger.info(
                "Idempotent create resolved after conflict",
                extra=build_log_context(ticket_id=existing.id, project_id=data.project_id),
            )
            return existing

        activity_service.add_activity(
            db,
            ticket.id,
            activity_type=ActivityType.SYSTEM,
            author_type=AuthorType.SYSTEM,
            author_name="System",
            content=f"Ticket created via {data.source}",
            visibility=Visibility.USER_VISIBLE,
        )

    logger.info(
        "Ticket created",
        extra=build_log_context(
            ticket_id=ticket.id,
            ticket_number=ticket.ticket_number,
            project_id=ticket.project_id,
            actor_type=actor.type.value,
        ),
    )
    return ticket


def get_ticket(db: Session, ticket_id: UUID) -> Ticket | None:
    """Get a ticket by id. None if missing or soft-deleted."""
    ticket = db.get(Ticket, ticket_id)
    if ticket is None or ticket.deleted_at is not None:
        return None
    return ticket


def get_ticket_by_number(db: Session, project_id: str, ticket_number: int) -> Ticket | None:
    """Get a ticket by its human-facing number within a project."""
    return (
        db.query(Ticket)
        .filter(
            Ticket.project_id == project_id,
            Ticket.ticket_number == ticket_number,
            Ticket.deleted_at.is_(None),
        )
        .first()
    )


def list_tickets(db: Session, filters: TicketListFilters | None = None) -> PaginatedResponse[Ticket]:
    """List tickets with filtering, sorting and pagination."""
    filters = filters or TicketListFilters()
    pagination = clamp_pagination(filters.page, filters.page_size)

    query = db.query(Ticket)
    if not filters.include_deleted:
        query = query.filter(Ticket.deleted_at.is_(None))
    if filters.project_id:
        query = query.filter(Ticket.project_id == filters.project_id)
    if filters.status:
        query = query.filter(Ticket.status.in_(filters.status))
    if filters.ticket_type:
        query = query.filter(Ticket.ticket_type.in_(filters.ticket_type))
    if filters.priority:
        query = query.filter(Ticket.priority.in_(filters.priority))
    if filters.assignee:
        query = query.filter(Ticket.assignee == filters.assignee)
    if filters.reporter_id:
        query = query.filter(Ticket.reporter_id == filters.reporter_id)
    if filters.needs_followup is not None:
        query = query.filter(Ticket.needs_followup.is_(filters.needs_followup))
    if filters.top_level_only:
        query = query.filter(Ticket.parent_id.is_(None))
    elif filters.parent_id:
        query = query.filter(Ticket.parent_id == filters.parent_id)
    if filters.search and filters.search.strip():
        search = f"%{filters.search.strip()}%"
        query = query.filter(
            or_(
                Ticket.title.ilike(search),
                Ticket.description.ilike(search),
            )
        )

    total = query.count()

    column = _SORT_COLUMNS.get(filters.sort, Ticket.created_at)
    if filters.order == "asc":
        query = query.order_by(column.asc(), Ticket.ticket_number.asc())
    else:
        query = query.order_by(column.desc(), Ticket.ticket_number.desc())

    items = query.offset(pagination.offset).limit(pagination.per_page).all()
    return PaginatedResponse.create(items, total, pagination)


def _coerce_update(changes: TicketUpdate | dict) -> TicketUpdate:
    if isinstance(changes, TicketUpdate):
        return changes
    disallowed = [key for key in changes if key not in UPDATABLE_FIELDS]
    if disallowed:
        raise DisallowedFieldError(disallowed)
    try:
        return TicketUpdate.model_validate(changes)
    except ValidationError as exc:
        raise TicketValidationError(str(exc)) from exc


def update_ticket(
    db: Session,
    ticket_id: UUID,
    changes: TicketUpdate | dict,
    actor: Actor,
) -> Ticket | None:
    """
    Apply allow-listed field changes.

    One internal field_change entry is written per field whose value actually
    changed. A payload that changes nothing returns the ticket untouched.

    Raises:
        DisallowedFieldError: a key outside the allow-list was supplied
        TicketValidationError: a value failed validation
    """
    payload = _coerce_update(changes)
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return None

    diffs: list[tuple[str, object, object]] = []
    for field in UPDATABLE_FIELDS:
        if field not in payload.model_fields_set:
            continue
        old = getattr(ticket, field)
        new = getattr(payload, field)
        if _values_differ(field, old, new):
            diffs.append((field, old, new))

    if not diffs:
        return ticket

    with atomic(db):
        for field, _old, new in diffs:
            setattr(ticket, field, list(new) if isinstance(new, list) else new)
        _touch(ticket, actor)
        db.flush()

        for field, old, new in diffs:
            activity_service.add_activity(
                db,
                ticket.id,
                activity_type=ActivityType.FIELD_CHANGE,
                author_type=actor.type,
                author_name=actor.name,
                content=f"Changed {field}",
                metadata={"field": field, "from": _json_value(old), "to": _json_value(new)},
                visibility=Visibility.INTERNAL,
            )
    return ticket


def delete_ticket(db: Session, ticket_id: UUID, actor: Actor) -> bool:
    """Soft-delete a ticket. Returns False if it was already gone."""
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return False

    with atomic(db):
        ticket.deleted_at = utc_now()
        _touch(ticket, actor)
    logger.info(
        "Ticket soft-deleted",
        extra=build_log_context(ticket_id=ticket_id, actor_type=actor.type.value),
    )
    return True


# =============================================================================
# Status & pipeline operations
# =============================================================================


def change_status(
    db: Session,
    ticket_id: UUID,
    new_status: TicketStatus | str,
    actor: Actor,
    notes: str | None = None,
) -> Ticket | None:
    """
    Move a ticket to new_status and log a user_visible status_change.

    Backwards moves are allowed but logged as warnings. No-op when the
    status is unchanged.
    """
    try:
        new_status = TicketStatus(new_status)
    except ValueError as exc:
        raise TicketValidationError(f"Invalid ticket status: {new_status}") from exc

    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return None

    old_status = ticket.status
    if old_status == new_status:
        return ticket

    if _is_backwards(old_status, new_status):
        logger.warning(
            "Unusual status transition (backwards)",
            extra=build_log_context(
                ticket_id=ticket_id,
                from_status=old_status.value,
                to_status=new_status.value,
            ),
        )

    with atomic(db):
        _set_status(ticket, new_status)
        _touch(ticket, actor)
        db.flush()
        activity_service.log_status_change(
            db, ticket.id, actor, old_status.value, new_status.value, content=notes
        )
    return ticket


def triage_ticket(db: Session, ticket_id: UUID, data: TriageData, actor: Actor) -> Ticket | None:
    """Attach AI triage analysis and move the ticket to triaged."""
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return None

    old_status = ticket.status
    with atomic(db):
        if data.ai_assessment is not None:
            ticket.ai_assessment = data.ai_assessment
        if data.ai_solution_proposal is not None:
            ticket.ai_solution_proposal = data.ai_solution_proposal
        if data.ai_suggested_priority is not None:
            ticket.ai_suggested_priority = data.ai_suggested_priority
            if ticket.priority is None:
                ticket.priority = data.ai_suggested_priority
        if data.ai_complexity is not None:
            ticket.ai_complexity = data.ai_complexity
        if data.ai_estimated_files is not None:
            ticket.ai_estimated_files = list(data.ai_estimated_files)
        if data.autonomy_score is not None:
            ticket.autonomy_score = data.autonomy_score
        _set_status(ticket, TicketStatus.TRIAGED)
        _touch(ticket, actor)
        db.flush()

        activity_service.add_activity(
            db,
            ticket.id,
            activity_type=ActivityType.COMMENT,
            author_type=actor.type,
            author_name=actor.name,
            content=data.ai_assessment or "Ticket triaged",
            metadata={
                "solution_proposal": data.ai_solution_proposal,
                "suggested_priority": _json_value(data.ai_suggested_priority),
                "complexity": _json_value(data.ai_complexity),
                "estimated_files": data.ai_estimated_files,
                "autonomy_score": data.autonomy_score,
            },
            visibility=Visibility.INTERNAL,
        )
        if old_status != TicketStatus.TRIAGED:
            activity_service.log_status_change(
                db, ticket.id, actor, old_status.value, TicketStatus.TRIAGED.value
            )
    return ticket


def _next_work_priority(db: Session) -> int:
    current = (
        db.query(func.coalesce(func.max(Ticket.work_priority), 0))
        .filter(
            Ticket.status == TicketStatus.APPROVED,
            Ticket.deleted_at.is_(None),
        )
        .scalar()
    )
    return int(current or 0) + 1


def approve_ticket(
    db: Session,
    ticket_id: UUID,
    actor: Actor,
    direction: str | None = None,
    work_priority: int | None = None,
) -> Ticket | None:
    """
    Approve a ticket for work.

    Without an explicit work_priority the ticket goes to the back of the
    approved queue (max + 1). This is read-then-write; concurrent approvals
    may produce equal priorities, which the queue tolerates.
    """
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return None

    old_status = ticket.status
    with atomic(db):
        priority = work_priority if work_priority is not None else _next_work_priority(db)
        _set_status(ticket, TicketStatus.APPROVED)
        if direction is not None:
            ticket.direction = direction
        ticket.work_priority = priority
        _touch(ticket, actor)
        db.flush()

        activity_service.add_activity(
            db,
            ticket.id,
            activity_type=ActivityType.DECISION,
            author_type=actor.type,
            author_name=actor.name,
            content=direction or "Approved for work",
            metadata={
                "decision": Decision.APPROVED.value,
                "direction": direction,
                "work_priority": priority,
            },
            visibility=Visibility.INTERNAL,
        )
        if old_status != TicketStatus.APPROVED:
            activity_service.log_status_change(
                db, ticket.id, actor, old_status.value, TicketStatus.APPROVED.value
            )
    return ticket


def reject_ticket(
    db: Session,
    ticket_id: UUID,
    resolution: str,
    reason: str,
    actor: Actor,
    decision: Decision = Decision.REJECTED,
) -> Ticket | None:
    """
    Close a ticket with a resolution (reject or defer).

    Writes, in order: internal decision, user_visible resolution,
    user_visible status_change.
    """
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return None

    old_status = ticket.status
    with atomic(db):
        _set_status(ticket, TicketStatus.CLOSED)
        ticket.resolution = resolution
        _touch(ticket, actor)
        db.flush()

        activity_service.add_activity(
            db,
            ticket.id,
            activity_type=ActivityType.DECISION,
            author_type=actor.type,
            author_name=actor.name,
            content=reason,
            metadata={"decision": decision.value, "direction": reason},
            visibility=Visibility.INTERNAL,
        )
        activity_service.add_activity(
            db,
            ticket.id,
            activity_type=ActivityType.RESOLUTION,
            author_type=actor.type,
            author_name=actor.name,
            content=reason,
            metadata={"resolution": resolution, "notes": reason},
            visibility=Visibility.USER_VISIBLE,
        )
        activity_service.log_status_change(
            db, ticket.id, actor, old_status.value, TicketStatus.CLOSED.value
        )
    return ticket


def resolve_ticket(db: Session, ticket_id: UUID, data: ResolveData, actor: Actor) -> Ticket | None:
    """Submit a fix for testing: status in_review, testing_result pending."""
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        return None

    old_status = ticket.status
    with atomic(db):
        _set_status(ticket, TicketStatus.IN_REVIEW)
        ticket.testing_result = TestingResult.PENDING
        _touch(ticket, actor)
        db.flush()

        activity_service.add_activity(
            db,
            ticket.id,
            activity_type=ActivityType.TEST_RESULT,
            author_type=actor.type,
            author_name=actor.name,
            content=data.resolution_notes,
            metadata={
                "result": TestingResult.PENDING.value,
                "testing_url": data.testing_url,
                "testing_instructions": data.testing_instructions,
            },
            visibility=Visibility.INTERNAL,
        )
        if old_status != TicketStatus.IN_REVIEW:
            activity_service.log_status_change(
                db, ticket.id, actor, old_status.value, TicketStatus.IN_REVIEW.value
            )
    return ticket


def submit_test_result(
    db: Session, ticket_id: UUID, data: SubmittedTestResult, actor: Actor
) -> TicketActivity:
    """
    Record a test outcome and update the ticket's testing_result.

    Raises:
        TicketNotFoundError: ticket missing or soft-deleted
    """
    ticket = get_ticket(db, ticket_id)
    if ticket is None:
        raise TicketNotFoundError(f"Ticket {ticket_id} not found")

    result = TestingResult(data.result)
    with atomic(db):
        ticket.testing_result = result
        _touch(ticket, actor)
        db.flush()
        return activity_service.add_activity(
            db,
            ticket.id,
            activity_type=ActivityType.TEST_RESULT,
            author_type=actor.type,
            author_name=actor.name,
            content=data.content or f"Test result: {result.value}",
            metadata={
                "result": result.value,
                "testing_url": data.testing_url,
                "testing_instructions": data.testing_instructions,
            },
            visibility=Visibility.INTERNAL,
        )
