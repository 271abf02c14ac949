"""Attachment metadata for tickets.

The file bytes are written by the external blob store before these calls;
this module only records what was stored and logs it on the timeline.
"""

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from ticketflow.core.structured_logging import build_log_context
from ticketflow.db.enums import ActivityType, Visibility
from ticketflow.db.models import TicketAttachment
from ticketflow.db.session import atomic
from ticketflow.schemas.tickets import Actor, AttachmentCreate
from ticketflow.services import activity_service, ticket_service
from ticketflow.services.errors import TicketNotFoundError

logger = logging.getLogger(__name__)


def record_attachment(
    db: Session, ticket_id: UUID, data: AttachmentCreate, actor: Actor
) -> TicketAttachment:
    """
    Store attachment metadata and log a reporter-visible system entry.

    Raises:
        TicketNotFoundError: ticket missing or soft-deleted
    """
    with atomic(db):
        # add_activity runs first so a missing ticket aborts before the insert
        activity_service.add_activity(
            db,
            ticket_id,
            activity_type=ActivityType.SYSTEM,
            author_type=actor.type,
            author_name=actor.name,
            content=f"Attachment uploaded: {data.original_name}",
            metadata={
                "filename": data.filename,
                "mime_type": data.mime_type,
                "size_bytes": data.size_bytes,
            },
            visibility=Visibility.USER_VISIBLE,
        )
        attachment = TicketAttachment(
            ticket_id=ticket_id,
            filename=data.filename,
            original_name=data.original_name,
            mime_type=data.mime_type,
            size_bytes=data.size_bytes,
            uploaded_by=actor.name,
        )
        db.add(attachment)
        db.flush()

    logger.info(
        "Attachment recorded",
        extra=build_log_context(ticket_id=ticket_id, actor_type=actor.type.value),
    )
    return attachment


def list_attachments(db: Session, ticket_id: UUID) -> list[TicketAttachment]:
    """Attachments for a ticket, oldest first."""
    if ticket_service.get_ticket(db, ticket_id) is None:
        raise TicketNotFoundError(f"Ticket {ticket_id} not found")
    return (
        db.query(TicketAttachment)
        .filter(TicketAttachment.ticket_id == ticket_id)
        .order_by(TicketAttachment.created_at.asc())
        .all()
    )
