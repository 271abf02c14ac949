"""Service layer modules."""

# Import service modules (not individual functions) for cleaner access
from ticketflow.services import (
    activity_service,
    agent_tools,
    attachment_service,
    queue_service,
    stats_service,
    ticket_service,
)

__all__ = [
    "activity_service",
    "agent_tools",
    "attachment_service",
    "queue_service",
    "stats_service",
    "ticket_service",
]
