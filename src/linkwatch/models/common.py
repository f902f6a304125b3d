"""Response envelopes shared by the HTTP API."""

from math import ceil
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")

# Matches the largest page the alert list accepts.
MAX_PAGE_SIZE = 500


class Pagination(BaseModel):
    """Position of one page within a filtered alert list."""

    page: int = Field(ge=1)
    limit: int = Field(ge=1, le=MAX_PAGE_SIZE)
    total: int = Field(ge=0)
    pages: int = Field(ge=0)

    @classmethod
    def for_total(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=ceil(total / limit) if total else 0)


class PaginatedResponse(BaseModel, Generic[T]):
    """A page of rows plus where it sits in the full result."""

    success: bool = True
    data: list[T]
    pagination: Pagination

    @classmethod
    def page_of(cls, rows: list[T], page: int, limit: int, total: int) -> "PaginatedResponse[T]":
        return cls(data=rows, pagination=Pagination.for_total(page, limit, total))


class APIResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T
    message: str | None = None


class ErrorResponse(BaseModel):
    """Body of every non-2xx reply; code is the exception's machine-readable name."""

    success: bool = False
    error: str
    code: str | None = None
    details: dict[str, Any] | None = None
