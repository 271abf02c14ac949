"""Pydantic schemas for the ticket lifecycle and timeline APIs."""

from __future__ import annotations

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ticketflow.core.config import settings
from ticketflow.db.enums import (
    AIComplexity,
    ActivityType,
    AuthorType,
    Decision,
    TestingResult,
    TicketPriority,
    TicketStatus,
    TicketType,
    Visibility,
)


def _strip_required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be blank")
    return value


# =============================================================================
# Actor
# =============================================================================


class Actor(BaseModel):
    """Who is performing an operation (resolved by the auth layer)."""

    model_config = ConfigDict(frozen=True)

    type: AuthorType
    name: str

    @classmethod
    def system(cls) -> "Actor":
        return cls(type=AuthorType.SYSTEM, name="System")

    @property
    def is_agent(self) -> bool:
        return self.type == AuthorType.AGENT


# =============================================================================
# Ticket input
# =============================================================================


class TicketCreate(BaseModel):
    """Payload for creating a ticket."""

    project_id: str = Field(default_factory=lambda: settings.DEFAULT_PROJECT_ID, max_length=100)
    source: str = Field("api", max_length=50)
    ticket_type: TicketType
    title: str = Field(..., max_length=500)
    description: str
    priority: TicketPriority | None = None
    tags: list[str] = Field(default_factory=list)
    route: str | None = None
    environment: str | None = None
    browser_info: str | None = None
    os_info: str | None = None
    reporter_id: str = Field(..., max_length=255)
    reporter_name: str | None = None
    reporter_email: str | None = None
    parent_id: UUID | None = None
    client_reference_id: str | None = Field(None, max_length=255)

    @field_validator("project_id", "source", "title", "description", "reporter_id")
    @classmethod
    def _required_text(cls, value: str) -> str:
        return _strip_required(value)

    @field_validator("client_reference_id")
    @classmethod
    def _idempotency_key(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _strip_required(value)


# Fields that may be changed through update(); everything else is owned by
# dedicated lifecycle operations.
UPDATABLE_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "ticket_type",
    "priority",
    "tags",
    "route",
    "environment",
    "assignee",
    "direction",
    "ai_assessment",
    "ai_solution_proposal",
    "ai_suggested_priority",
    "ai_complexity",
    "ai_estimated_files",
    "autonomy_score",
    "work_priority",
    "testing_result",
    "needs_followup",
    "followup_notes",
    "followup_after",
    "resolution",
    "reporter_name",
    "reporter_email",
)

_NON_NULLABLE_UPDATE_FIELDS = frozenset(
    {"title", "description", "ticket_type", "tags", "needs_followup"}
)


class TicketUpdate(BaseModel):
    """
    Allow-listed field changes.

    Only fields explicitly present in the payload are considered; an
    explicit null clears a nullable field.
    """

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(None, max_length=500)
    description: str | None = None
    ticket_type: TicketType | None = None
    priority: TicketPriority | None = None
    tags: list[str] | None = None
    route: str | None = None
    environment: str | None = None
    assignee: str | None = None
    direction: str | None = None
    ai_assessment: str | None = None
    ai_solution_proposal: str | None = None
    ai_suggested_priority: TicketPriority | None = None
    ai_complexity: AIComplexity | None = None
    ai_estimated_files: list[str] | None = None
    autonomy_score: int | None = Field(None, ge=1, le=5)
    work_priority: int | None = None
    testing_result: TestingResult | None = None
    needs_followup: bool | None = None
    followup_notes: str | None = None
    followup_after: datetime | None = None
    resolution: str | None = Field(None, max_length=50)
    reporter_name: str | None = None
    reporter_email: str | None = None

    @model_validator(mode="after")
    def _reject_null_required(self) -> "TicketUpdate":
        for field in _NON_NULLABLE_UPDATE_FIELDS & self.model_fields_set:
            if getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


class TriageData(BaseModel):
    """AI triage analysis pushed onto a ticket."""

    ai_assessment: str | None = None
    ai_solution_proposal: str | None = None
    ai_suggested_priority: TicketPriority | None = None
    ai_complexity: AIComplexity | None = None
    ai_estimated_files: list[str] | None = None
    autonomy_score: int | None = Field(None, ge=1, le=5)


class ResolveData(BaseModel):
    """Fix submitted for testing."""

    resolution_notes: str
    testing_instructions: str | None = None
    testing_url: str | None = None

    @field_validator("resolution_notes")
    @classmethod
    def _notes_required(cls, value: str) -> str:
        return _strip_required(value)


class SubmittedTestResult(BaseModel):
    """Outcome of testing a fix."""

    result: Literal["pass", "fail", "partial"]
    content: str | None = None
    testing_url: str | None = None
    testing_instructions: str | None = None


class TicketListFilters(BaseModel):
    """Filters, sort and paging for list_tickets."""

    project_id: str | None = None
    status: list[TicketStatus] = Field(default_factory=list)
    ticket_type: list[TicketType] = Field(default_factory=list)
    priority: list[TicketPriority] = Field(default_factory=list)
    assignee: str | None = None
    reporter_id: str | None = None
    needs_followup: bool | None = None
    parent_id: UUID | None = None
    top_level_only: bool = False
    search: str | None = None
    sort: Literal["created_at", "updated_at", "work_priority", "ticket_number"] = "created_at"
    order: Literal["asc", "desc"] = "desc"
    page: int = Field(1, ge=1)
    page_size: int = Field(default_factory=lambda: settings.DEFAULT_PAGE_SIZE, ge=1)
    include_deleted: bool = False

    @field_validator("status", "ticket_type", "priority", mode="before")
    @classmethod
    def _one_or_many(cls, value):
        if value is None:
            return []
        if isinstance(value, (str, bytes)):
            return [value]
        return value


class TimelineOptions(BaseModel):
    """Filters for the raw timeline."""

    visibility: Visibility | None = None
    activity_types: list[ActivityType] = Field(default_factory=list)
    since: datetime | None = None
    limit: int | None = Field(None, ge=1)


# =============================================================================
# HTTP request bodies
# =============================================================================


class StatusChangeRequest(BaseModel):
    status: TicketStatus
    notes: str | None = None


class ApproveRequest(BaseModel):
    direction: str | None = None
    work_priority: int | None = None


class RejectRequest(BaseModel):
    resolution: str = Field("wont_fix", max_length=50)
    reason: str = "Rejected"


class DecisionRequest(BaseModel):
    """Approve/reject/defer in one call (agent set_decision)."""

    decision: Decision
    direction: str | None = None
    work_priority: int | None = None
    resolution: str | None = Field(None, max_length=50)
    reason: str | None = None


class CommentCreate(BaseModel):
    content: str

    @field_validator("content")
    @classmethod
    def _content_required(cls, value: str) -> str:
        return _strip_required(value)


class MessageCreate(CommentCreate):
    requires_approval: bool = False


class AttachmentCreate(BaseModel):
    """Metadata for a blob already written to the attachment store."""

    filename: str = Field(..., max_length=255)
    original_name: str = Field(..., max_length=255)
    mime_type: str = Field(..., max_length=100)
    size_bytes: int = Field(..., ge=0)


# =============================================================================
# Responses
# =============================================================================


class TicketRead(BaseModel):
    """Full ticket representation (admin/agent)."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    project_id: str
    ticket_number: int
    source: str
    ticket_type: TicketType
    priority: TicketPriority | None = None
    tags: list[str] = Field(default_factory=list)
    title: str
    description: str
    route: str | None = None
    environment: str | None = None
    browser_info: str | None = None
    os_info: str | None = None
    reporter_id: str
    reporter_name: str | None = None
    reporter_email: str | None = None
    status: TicketStatus
    assignee: str | None = None
    direction: str | None = None
    work_priority: int | None = None
    resolution: str | None = None
    resolved_at: datetime | None = None
    ai_assessment: str | None = None
    ai_solution_proposal: str | None = None
    ai_suggested_priority: TicketPriority | None = None
    ai_complexity: AIComplexity | None = None
    ai_estimated_files: list[str] | None = None
    autonomy_score: int | None = None
    testing_result: TestingResult | None = None
    needs_followup: bool
    followup_notes: str | None = None
    followup_after: datetime | None = None
    parent_id: UUID | None = None
    client_reference_id: str | None = None
    created_at: datetime
    updated_at: datetime
    updated_by: str | None = None
    deleted_at: datetime | None = None


class TicketReceipt(BaseModel):
    """Limited view returned to public submitters."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_number: int
    title: str
    status: TicketStatus
    created_at: datetime


class TicketListResponse(BaseModel):
    items: list[TicketRead]
    total: int
    page: int
    page_size: int
    total_pages: int


class ActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_id: UUID
    activity_type: ActivityType
    author_type: AuthorType
    author_name: str | None = None
    content: str | None = None
    metadata: dict | None = Field(None, validation_alias="meta")
    visibility: Visibility
    requires_approval: bool
    approved_by: str | None = None
    approved_at: datetime | None = None
    created_at: datetime


class AttachmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    ticket_id: UUID
    filename: str
    original_name: str
    mime_type: str
    size_bytes: int
    uploaded_by: str | None = None
    created_at: datetime


class TicketStatsRead(BaseModel):
    total: int
    open: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    by_priority: dict[str, int]
    needing_decision: int
    needing_rework: int
    follow_ups_due: int
    avg_resolution_hours: float | None = None


class PipelineCountsRead(BaseModel):
    untriaged: int
    your_decision: int
    agent_working: int
    testing: int
    user_review: int
    done: int
    follow_ups: int
