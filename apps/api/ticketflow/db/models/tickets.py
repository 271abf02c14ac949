"""Ticket, activity timeline and attachment ORM models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ticketflow.db.base import Base
from ticketflow.db.enums import (
    AIComplexity,
    ActivityType,
    AuthorType,
    TestingResult,
    TicketPriority,
    TicketStatus,
    TicketType,
    Visibility,
)
from ticketflow.utils.datetime_utils import utc_now


def _enum_type(enum_cls, *, name: str) -> Enum:
    """Store str-enums as their value strings (portable, no native enum type)."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
    )


class ProjectCounter(Base):
    """Per-project sequence backing human-facing ticket numbers."""

    __tablename__ = "project_counters"

    project_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)


class Ticket(Base):
    """
    A tracked unit of work.

    ticket_number is assigned once from ProjectCounter and never changes.
    deleted_at marks a soft delete; such rows drop out of every listing,
    queue and statistic.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("project_id", "ticket_number", name="uq_tickets_project_number"),
        UniqueConstraint(
            "project_id", "client_reference_id", name="uq_tickets_project_client_ref"
        ),
        CheckConstraint(
            "autonomy_score IS NULL OR (autonomy_score BETWEEN 1 AND 5)",
            name="ck_tickets_autonomy_score",
        ),
        Index("idx_tickets_project_status", "project_id", "status"),
        Index("idx_tickets_status_work_priority", "status", "work_priority"),
        Index("idx_tickets_reporter", "reporter_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    project_id: Mapped[str] = mapped_column(String(100), nullable=False)
    ticket_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Classification
    source: Mapped[str] = mapped_column(String(50), nullable=False)
    ticket_type: Mapped[TicketType] = mapped_column(
        _enum_type(TicketType, name="ticket_type"), nullable=False
    )
    priority: Mapped[TicketPriority | None] = mapped_column(
        _enum_type(TicketPriority, name="ticket_priority"), nullable=True
    )
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Content
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    route: Mapped[str | None] = mapped_column(Text, nullable=True)
    environment: Mapped[str | None] = mapped_column(String(100), nullable=True)
    browser_info: Mapped[str | None] = mapped_column(Text, nullable=True)
    os_info: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Reporter
    reporter_id: Mapped[str] = mapped_column(String(255), nullable=False)
    reporter_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reporter_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Workflow
    status: Mapped[TicketStatus] = mapped_column(
        _enum_type(TicketStatus, name="ticket_status"),
        nullable=False,
        default=TicketStatus.NEW,
    )
    assignee: Mapped[str | None] = mapped_column(String(255), nullable=True)
    direction: Mapped[str | None] = mapped_column(Text, nullable=True)
    work_priority: Mapped[int | None] = mapped_column(Integer, nullable=True)
    resolution: Mapped[str | None] = mapped_column(String(50), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # AI assist
    ai_assessment: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_solution_proposal: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_suggested_priority: Mapped[TicketPriority | None] = mapped_column(
        _enum_type(TicketPriority, name="ticket_ai_priority"), nullable=True
    )
    ai_complexity: Mapped[AIComplexity | None] = mapped_column(
        _enum_type(AIComplexity, name="ticket_ai_complexity"), nullable=True
    )
    ai_estimated_files: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    autonomy_score: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Testing / follow-up
    testing_result: Mapped[TestingResult | None] = mapped_column(
        _enum_type(TestingResult, name="ticket_testing_result"), nullable=True
    )
    needs_followup: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    followup_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    followup_after: Mapped[datetime | None] = mapped_column(nullable=True)

    # Hierarchy / idempotency
    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="SET NULL"), nullable=True
    )
    client_reference_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Audit
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    parent: Mapped["Ticket | None"] = relationship(remote_side=[id])

    def __repr__(self) -> str:
        return f"<Ticket(project={self.project_id}, number={self.ticket_number}, status={self.status})>"


class TicketActivity(Base):
    """
    Immutable entry in a ticket's audit trail.

    Only approved_by/approved_at (and the one-way internal → user_visible
    promotion) ever change after insert. Rows are never deleted.
    """

    __tablename__ = "ticket_activity"
    __table_args__ = (
        Index("idx_ticket_activity_ticket_created", "ticket_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    activity_type: Mapped[ActivityType] = mapped_column(
        _enum_type(ActivityType, name="ticket_activity_type"), nullable=False
    )
    author_type: Mapped[AuthorType] = mapped_column(
        _enum_type(AuthorType, name="ticket_author_type"), nullable=False
    )
    author_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    visibility: Mapped[Visibility] = mapped_column(
        _enum_type(Visibility, name="ticket_activity_visibility"),
        nullable=False,
        default=Visibility.INTERNAL,
    )
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    ticket: Mapped["Ticket"] = relationship()

    @property
    def is_reporter_visible(self) -> bool:
        """True when the reporter may see this entry."""
        if self.visibility != Visibility.USER_VISIBLE:
            return False
        return not self.requires_approval or self.approved_at is not None


class TicketAttachment(Base):
    """Attachment metadata (bytes live in the external blob store)."""

    __tablename__ = "ticket_attachments"
    __table_args__ = (
        Index("idx_ticket_attachments_ticket_created", "ticket_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ticket_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False
    )
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    uploaded_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utc_now, nullable=False)

    ticket: Mapped["Ticket"] = relationship()
