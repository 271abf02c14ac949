"""SQLAlchemy ORM models."""

from ticketflow.db.models.tickets import (
    ProjectCounter,
    Ticket,
    TicketActivity,
    TicketAttachment,
)

__all__ = [
    "ProjectCounter",
    "Ticket",
    "TicketActivity",
    "TicketAttachment",
]
