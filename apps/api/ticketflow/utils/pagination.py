"""Pagination utilities for list operations."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from ticketflow.core.config import settings


T = TypeVar("T")

# Pagination limits
DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = settings.DEFAULT_PAGE_SIZE
MAX_PER_PAGE = settings.MAX_PAGE_SIZE


@dataclass
class PaginationParams:
    """Pagination parameters (1-indexed page)."""
    page: int
    per_page: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


def clamp_pagination(page: int | None = None, per_page: int | None = None) -> PaginationParams:
    """Coerce caller-supplied paging values into the allowed range."""
    page = page if page and page > 0 else DEFAULT_PAGE
    per_page = per_page if per_page and per_page > 0 else DEFAULT_PER_PAGE
    return PaginationParams(page=page, per_page=min(per_page, MAX_PER_PAGE))


@dataclass
class PaginatedResponse(Generic[T]):
    """Standard paginated result structure."""
    items: list[T]
    total: int
    page: int
    per_page: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, pagination: PaginationParams) -> "PaginatedResponse[T]":
        pages = (total + pagination.per_page - 1) // pagination.per_page if pagination.per_page > 0 else 0
        return cls(
            items=items,
            total=total,
            page=pagination.page,
            per_page=pagination.per_page,
            pages=pages,
        )
