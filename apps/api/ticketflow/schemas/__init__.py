"""Pydantic schemas for API request/response models."""

from ticketflow.schemas.tickets import (
    ActivityRead,
    Actor,
    AttachmentCreate,
    AttachmentRead,
    ResolveData,
    SubmittedTestResult,
    TicketCreate,
    TicketListFilters,
    TicketListResponse,
    TicketRead,
    TicketReceipt,
    TicketUpdate,
    TimelineOptions,
    TriageData,
)

__all__ = [
    "ActivityRead",
    "Actor",
    "AttachmentCreate",
    "AttachmentRead",
    "ResolveData",
    "SubmittedTestResult",
    "TicketCreate",
    "TicketListFilters",
    "TicketListResponse",
    "TicketRead",
    "TicketReceipt",
    "TicketUpdate",
    "TimelineOptions",
    "TriageData",
]
