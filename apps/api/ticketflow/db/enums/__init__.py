"""Enum definitions for application constants."""

from ticketflow.db.enums.tickets import (
    AIComplexity,
    ActivityType,
    AuthorType,
    CLOSED_STATUSES,
    Decision,
    REWORK_RESULTS,
    REWORK_STATUSES,
    STATUS_FLOW,
    TestingResult,
    TicketPriority,
    TicketStatus,
    TicketType,
    Visibility,
)

__all__ = [
    "AIComplexity",
    "ActivityType",
    "AuthorType",
    "CLOSED_STATUSES",
    "Decision",
    "REWORK_RESULTS",
    "REWORK_STATUSES",
    "STATUS_FLOW",
    "TestingResult",
    "TicketPriority",
    "TicketStatus",
    "TicketType",
    "Visibility",
]
