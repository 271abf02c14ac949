"""Structured logging helpers (PII-safe)."""

import logging
from typing import Any

from ticketflow.core.config import settings


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once at process start."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def build_log_context(
    *,
    ticket_id: Any = None,
    ticket_number: int | None = None,
    project_id: str | None = None,
    actor_type: str | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    activity_id: Any = None,
) -> dict[str, Any]:
    """Return a PII-safe log context dict.

    Reporter name/email are never accepted here; only identifiers and
    workflow values make it into log records.
    """
    context: dict[str, Any] = {}
    if ticket_id:
        context["ticket_id"] = str(ticket_id)
    if ticket_number is not None:
        context["ticket_number"] = ticket_number
    if project_id:
        context["project_id"] = project_id
    if actor_type:
        context["actor_type"] = actor_type
    if from_status:
        context["from_status"] = from_status
    if to_status:
        context["to_status"] = to_status
    if activity_id:
        context["activity_id"] = str(activity_id)
    return context
