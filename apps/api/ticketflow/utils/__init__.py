"""Utility modules."""

from ticketflow.utils.datetime_utils import ensure_utc, format_timestamp, utc_now
from ticketflow.utils.pagination import (
    PaginatedResponse,
    PaginationParams,
    clamp_pagination,
)

__all__ = [
    # Datetime
    "ensure_utc",
    "format_timestamp",
    "utc_now",
    # Pagination
    "PaginatedResponse",
    "PaginationParams",
    "clamp_pagination",
]
