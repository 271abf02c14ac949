"""Aggregate ticket statistics for the admin dashboard."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy import func, or_
from sqlalchemy.orm import Query, Session

from ticketflow.db.enums import CLOSED_STATUSES, TicketStatus
from ticketflow.db.models import Ticket
from ticketflow.services.queue_service import rework_filter
from ticketflow.utils.datetime_utils import ensure_utc, utc_now


@dataclass(frozen=True)
class TicketStats:
    total: int
    open: int
    by_status: dict[str, int] = field(default_factory=dict)
    by_type: dict[str, int] = field(default_factory=dict)
    by_priority: dict[str, int] = field(default_factory=dict)
    needing_decision: int = 0
    needing_rework: int = 0
    follow_ups_due: int = 0
    avg_resolution_hours: float | None = None


@dataclass(frozen=True)
class PipelineCounts:
    untriaged: int = 0
    your_decision: int = 0
    agent_working: int = 0
    testing: int = 0
    user_review: int = 0
    done: int = 0
    follow_ups: int = 0


def _scoped(query: Query, project_id: str | None) -> Query:
    query = query.filter(Ticket.deleted_at.is_(None))
    if project_id:
        query = query.filter(Ticket.project_id == project_id)
    return query


def _count(db: Session, project_id: str | None, *criteria) -> int:
    return _scoped(db.query(func.count(Ticket.id)), project_id).filter(*criteria).scalar() or 0


def _grouped(db: Session, project_id: str | None, column) -> dict:
    rows = _scoped(db.query(column, func.count(Ticket.id)), project_id).group_by(column).all()
    return {key: count for key, count in rows}


def _avg_resolution_hours(db: Session, project_id: str | None) -> float | None:
    # Computed in Python so it works the same on SQLite and PostgreSQL
    rows = (
        _scoped(db.query(Ticket.created_at, Ticket.resolved_at), project_id)
        .filter(Ticket.resolved_at.is_not(None))
        .all()
    )
    if not rows:
        return None
    total_seconds = sum(
        (ensure_utc(resolved) - ensure_utc(created)).total_seconds() for created, resolved in rows
    )
    return round(total_seconds / len(rows) / 3600, 2)


def get_ticket_stats(
    db: Session, project_id: str | None = None, now: datetime | None = None
) -> TicketStats:
    """
    Counts and averages over live tickets, optionally scoped to one project.

    Priority buckets use "unset" for tickets without a priority. A follow-up
    is due when needs_followup is set and followup_after is unset or past.
    """
    now = ensure_utc(now) or utc_now()

    by_status = {status.value: count for status, count in _grouped(db, project_id, Ticket.status).items()}
    by_type = {kind.value: count for kind, count in _grouped(db, project_id, Ticket.ticket_type).items()}
    by_priority = {
        (priority.value if priority is not None else "unset"): count
        for priority, count in _grouped(db, project_id, Ticket.priority).items()
    }

    total = sum(by_status.values())
    closed = sum(by_status.get(status.value, 0) for status in CLOSED_STATUSES)

    return TicketStats(
        total=total,
        open=total - closed,
        by_status=by_status,
        by_type=by_type,
        by_priority=by_priority,
        needing_decision=by_status.get(TicketStatus.TRIAGED.value, 0),
        needing_rework=_count(db, project_id, *rework_filter()),
        follow_ups_due=_count(
            db,
            project_id,
            Ticket.needs_followup.is_(True),
            or_(Ticket.followup_after.is_(None), Ticket.followup_after <= now),
        ),
        avg_resolution_hours=_avg_resolution_hours(db, project_id),
    )


def get_pipeline_counts(db: Session, project_id: str | None = None) -> PipelineCounts:
    """Bucket live tickets into the seven dashboard stages."""
    by_status = _grouped(db, project_id, Ticket.status)

    def total(*statuses: TicketStatus) -> int:
        return sum(by_status.get(status, 0) for status in statuses)

    return PipelineCounts(
        untriaged=total(TicketStatus.NEW),
        your_decision=total(TicketStatus.TRIAGED),
        agent_working=total(TicketStatus.APPROVED, TicketStatus.IN_PROGRESS),
        testing=total(TicketStatus.IN_REVIEW),
        user_review=total(TicketStatus.USER_REVIEW),
        done=total(TicketStatus.RESOLVED, TicketStatus.CLOSED),
        follow_ups=_count(db, project_id, Ticket.needs_followup.is_(True)),
    )
