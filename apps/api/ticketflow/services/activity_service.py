"""Activity timeline service - audit trail writes, visibility gating and rendering."""

import json
import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ticketflow.core.structured_logging import build_log_context
from ticketflow.db.enums import ActivityType, AuthorType, Visibility
from ticketflow.db.models import Ticket, TicketActivity
from ticketflow.db.session import atomic
from ticketflow.schemas.tickets import Actor, TimelineOptions
from ticketflow.services.errors import ApprovalNotPermittedError, TicketNotFoundError
from ticketflow.utils.datetime_utils import ensure_utc, format_timestamp, utc_now

logger = logging.getLogger(__name__)

_MIN_STEP = timedelta(microseconds=1)


def _get_live_ticket(db: Session, ticket_id: UUID) -> Ticket | None:
    ticket = db.get(Ticket, ticket_id)
    if ticket is None or ticket.deleted_at is not None:
        return None
    return ticket


def _next_created_at(db: Session, ticket_id: UUID):
    """Timestamp for a new entry, strictly after the ticket's latest one."""
    now = utc_now()
    last = (
        db.query(func.max(TicketActivity.created_at))
        .filter(TicketActivity.ticket_id == ticket_id)
        .scalar()
    )
    last = ensure_utc(last)
    if last is not None and now <= last:
        return last + _MIN_STEP
    return now


def _require_admin(actor: Actor) -> None:
    if actor.type != AuthorType.ADMIN:
        raise ApprovalNotPermittedError(
            f"{actor.type.value} actors cannot approve reporter-visible content"
        )


# =============================================================================
# Writes
# =============================================================================


def add_activity(
    db: Session,
    ticket_id: UUID,
    *,
    activity_type: ActivityType,
    author_type: AuthorType,
    author_name: str | None,
    content: str | None = None,
    metadata: dict | None = None,
    visibility: Visibility = Visibility.INTERNAL,
    requires_approval: bool = False,
    approved_by: str | None = None,
    approved_at=None,
) -> TicketActivity:
    """
    Append one entry to a ticket's timeline.

    This is the single write primitive for the audit trail. It flushes but
    does not commit; the calling operation owns the transaction so the ticket
    change and its entries land together.

    Raises:
        TicketNotFoundError: ticket missing or soft-deleted
    """
    if _get_live_ticket(db, ticket_id) is None:
        raise TicketNotFoundError(f"Ticket {ticket_id} not found")

    activity = TicketActivity(
        ticket_id=ticket_id,
        activity_type=activity_type,
        author_type=author_type,
        author_name=author_name,
        content=content,
        meta=metadata,
        visibility=visibility,
        requires_approval=requires_approval,
        approved_by=approved_by,
        approved_at=approved_at,
        created_at=_next_created_at(db, ticket_id),
    )
    db.add(activity)
    db.flush()  # Don't commit - let caller control transaction
    return activity


def log_status_change(
    db: Session,
    ticket_id: UUID,
    actor: Actor,
    from_status: str,
    to_status: str,
    content: str | None = None,
) -> TicketActivity:
    """Log a reporter-visible status transition."""
    return add_activity(
        db,
        ticket_id,
        activity_type=ActivityType.STATUS_CHANGE,
        author_type=actor.type,
        author_name=actor.name,
        content=content or f"Status changed from {from_status} to {to_status}",
        metadata={"from": from_status, "to": to_status},
        visibility=Visibility.USER_VISIBLE,
    )


def add_comment(db: Session, ticket_id: UUID, content: str, actor: Actor) -> TicketActivity:
    """Add an internal comment (never shown to the reporter)."""
    with atomic(db):
        return add_activity(
            db,
            ticket_id,
            activity_type=ActivityType.COMMENT,
            author_type=actor.type,
            author_name=actor.name,
            content=content,
            visibility=Visibility.INTERNAL,
        )


def send_message(
    db: Session,
    ticket_id: UUID,
    content: str,
    actor: Actor,
    requires_approval: bool = False,
) -> TicketActivity:
    """
    Send a reporter-facing message.

    Agent-authored messages always require approval, whatever the caller
    asked for; they stay hidden from the reporter until an admin approves.
    """
    gated = True if actor.is_agent else requires_approval
    with atomic(db):
        activity = add_activity(
            db,
            ticket_id,
            activity_type=ActivityType.MESSAGE,
            author_type=actor.type,
            author_name=actor.name,
            content=content,
            visibility=Visibility.USER_VISIBLE,
            requires_approval=gated,
        )
    if gated:
        logger.info(
            "Message held for approval",
            extra=build_log_context(
                ticket_id=ticket_id, activity_id=activity.id, actor_type=actor.type.value
            ),
        )
    return activity


def approve_draft(db: Session, activity_id: UUID, admin: Actor) -> TicketActivity | None:
    """
    Approve a gated entry so the reporter can see it.

    Returns None when the entry does not exist or does not require approval.
    An already-approved entry is returned unchanged.
    """
    _require_admin(admin)
    activity = db.get(TicketActivity, activity_id)
    if activity is None or not activity.requires_approval:
        return None
    if activity.approved_at is not None:
        return activity

    with atomic(db):
        activity.approved_by = admin.name
        activity.approved_at = utc_now()
    logger.info(
        "Draft approved",
        extra=build_log_context(ticket_id=activity.ticket_id, activity_id=activity.id),
    )
    return activity


def promote_to_user_visible(
    db: Session, activity_id: UUID, admin: Actor
) -> TicketActivity | None:
    """
    Flip an internal entry to user_visible (one-way) and stamp approval.

    Returns None when the entry does not exist or is already user_visible.
    """
    _require_admin(admin)
    activity = db.get(TicketActivity, activity_id)
    if activity is None or activity.visibility != Visibility.INTERNAL:
        return None

    with atomic(db):
        activity.visibility = Visibility.USER_VISIBLE
        activity.approved_by = admin.name
        activity.approved_at = utc_now()
    logger.info(
        "Internal entry promoted to user_visible",
        extra=build_log_context(ticket_id=activity.ticket_id, activity_id=activity.id),
    )
    return activity


# =============================================================================
# Reads
# =============================================================================


def get_timeline(
    db: Session, ticket_id: UUID, options: TimelineOptions | None = None
) -> list[TicketActivity]:
    """Full chronological timeline, optionally filtered."""
    options = options or TimelineOptions()
    query = db.query(TicketActivity).filter(TicketActivity.ticket_id == ticket_id)

    if options.visibility:
        query = query.filter(TicketActivity.visibility == options.visibility)
    if options.activity_types:
        query = query.filter(TicketActivity.activity_type.in_(options.activity_types))
    if options.since:
        query = query.filter(TicketActivity.created_at > ensure_utc(options.since))

    query = query.order_by(TicketActivity.created_at.asc())
    if options.limit:
        query = query.limit(options.limit)
    return query.all()


def get_timeline_for_user(db: Session, ticket_id: UUID, reporter_id: str) -> list[TicketActivity]:
    """
    Entries the reporter may see: user_visible and not awaiting approval.

    Fails closed: a missing ticket or a reporter who does not own it gets an
    empty list.
    """
    ticket = _get_live_ticket(db, ticket_id)
    if ticket is None or ticket.reporter_id != reporter_id:
        return []

    return (
        db.query(TicketActivity)
        .filter(
            TicketActivity.ticket_id == ticket_id,
            TicketActivity.visibility == Visibility.USER_VISIBLE,
            or_(
                TicketActivity.requires_approval.is_(False),
                TicketActivity.approved_at.is_not(None),
            ),
        )
        .order_by(TicketActivity.created_at.asc())
        .all()
    )


def _author_label(entry: TicketActivity) -> str:
    label = entry.author_type.value.upper()
    if entry.author_name:
        label += f" ({entry.author_name})"
    return label


def _format_entry(entry: TicketActivity) -> str:
    ts = format_timestamp(entry.created_at)
    meta = entry.meta or {}
    kind = entry.activity_type

    if kind == ActivityType.STATUS_CHANGE:
        return f"[{ts}] STATUS: {meta.get('from', '?')} → {meta.get('to', '?')}"
    if kind == ActivityType.DECISION:
        line = f"[{ts}] DECISION: {meta.get('decision', '?')} by {_author_label(entry)}"
        if meta.get("direction"):
            line += f' | "{meta["direction"]}"'
        return line
    if kind == ActivityType.TEST_RESULT:
        line = f"[{ts}] TEST: result={meta.get('result', '?')}"
        if entry.content:
            line += f" | {entry.content}"
        return line
    if kind == ActivityType.ASSIGNMENT:
        return (
            f"[{ts}] ASSIGNED: {meta.get('from') or 'unassigned'}"
            f" → {meta.get('to') or 'unassigned'}"
        )
    if kind == ActivityType.RESOLUTION:
        line = f"[{ts}] RESOLVED: {meta.get('resolution', '?')}"
        if meta.get("notes"):
            line += f" | {meta['notes']}"
        return line
    if kind == ActivityType.SYSTEM:
        return f"[{ts}] SYSTEM: {entry.content or ''}"
    if kind == ActivityType.FIELD_CHANGE:
        return (
            f"[{ts}] CHANGED: {meta.get('field', '?')}: "
            f"{json.dumps(meta.get('from'), default=str)} → {json.dumps(meta.get('to'), default=str)}"
        )

    line = f"[{ts}] {_author_label(entry)}: {entry.content or ''}"
    if entry.requires_approval and entry.approved_at is None:
        line += " [pending approval]"
    return line


def get_timeline_for_agent(db: Session, ticket_id: UUID) -> str:
    """Plain-text narrative of a ticket and its full timeline for agents."""
    ticket = _get_live_ticket(db, ticket_id)
    if ticket is None:
        return "Ticket not found."

    status_line = f"Status: {ticket.status.value}"
    if ticket.resolution:
        status_line += f" | Resolution: {ticket.resolution}"
    priority = ticket.priority.value if ticket.priority else "unset"
    status_line += f" | Priority: {priority} | Type: {ticket.ticket_type.value}"

    reporter_line = f"Reporter: {ticket.reporter_name or ticket.reporter_id}"
    if ticket.assignee:
        reporter_line += f" | Assigned to: {ticket.assignee}"

    lines = [
        f'Ticket T-{ticket.ticket_number}: "{ticket.title}"',
        status_line,
        reporter_line,
    ]
    if ticket.direction:
        lines.append(f"Direction: {ticket.direction}")
    lines.append("")
    lines.append("Timeline:")

    for entry in get_timeline(db, ticket_id):
        lines.append(_format_entry(entry))

    return "\n".join(lines)
