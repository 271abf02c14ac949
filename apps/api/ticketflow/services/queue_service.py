"""Derived work queues - read-only views over current ticket state."""

from datetime import datetime

from sqlalchemy.orm import Query, Session

from ticketflow.core.config import settings
from ticketflow.db.enums import REWORK_RESULTS, REWORK_STATUSES, TicketStatus
from ticketflow.db.models import Ticket
from ticketflow.utils.datetime_utils import ensure_utc


def _live_tickets(db: Session, project_id: str | None) -> Query:
    query = db.query(Ticket).filter(Ticket.deleted_at.is_(None))
    if project_id:
        query = query.filter(Ticket.project_id == project_id)
    return query


def rework_filter():
    """Predicate shared by the rework queue and the rework statistic."""
    return (
        Ticket.testing_result.in_(list(REWORK_RESULTS)),
        Ticket.status.in_(list(REWORK_STATUSES)),
    )


def get_triage_batch(
    db: Session, project_id: str | None = None, batch_size: int | None = None
) -> list[Ticket]:
    """Oldest untriaged tickets, at most batch_size of them."""
    size = settings.TRIAGE_BATCH_SIZE if batch_size is None else batch_size
    return (
        _live_tickets(db, project_id)
        .filter(Ticket.status == TicketStatus.NEW)
        .order_by(Ticket.created_at.asc(), Ticket.ticket_number.asc())
        .limit(size)
        .all()
    )


def get_work_queue(db: Session, project_id: str | None = None) -> list[Ticket]:
    """Approved tickets in work-priority order (unranked last)."""
    return (
        _live_tickets(db, project_id)
        .filter(Ticket.status == TicketStatus.APPROVED)
        .order_by(
            Ticket.work_priority.asc().nulls_last(),
            Ticket.created_at.asc(),
        )
        .all()
    )


def get_rework_items(db: Session, project_id: str | None = None) -> list[Ticket]:
    """Tickets whose fix failed testing, most recently updated first."""
    return (
        _live_tickets(db, project_id)
        .filter(*rework_filter())
        .order_by(Ticket.updated_at.desc())
        .all()
    )


def get_follow_ups(
    db: Session, project_id: str | None = None, due_by: datetime | None = None
) -> list[Ticket]:
    """
    Tickets flagged for follow-up.

    With due_by, only tickets whose followup_after is at or before it are
    returned; tickets without a followup_after are then excluded.
    """
    query = _live_tickets(db, project_id).filter(Ticket.needs_followup.is_(True))
    if due_by is not None:
        query = query.filter(Ticket.followup_after <= ensure_utc(due_by))
    return query.order_by(
        Ticket.followup_after.asc().nulls_last(),
        Ticket.created_at.asc(),
    ).all()
