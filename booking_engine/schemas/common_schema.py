"""Caller identity and pagination models shared by all services."""

from math import ceil
from typing import Generic, TypeVar

from pydantic import BaseModel, Field

T = TypeVar("T")


class Actor(BaseModel):
    """Authenticated caller as supplied by the outer auth layer."""
    id: str = Field(min_length=1)
    is_admin: bool = False


class Page(BaseModel, Generic[T]):
    """One page of a sorted, filtered listing."""
    items: list[T] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 20
    total_pages: int = 0
    has_next: bool = False
    has_prev: bool = False

    @classmethod
    def from_items(cls, items: list, page: int, limit: int) -> "Page":
        """Slice an already sorted list into the requested page."""
        total = len(items)
        total_pages = ceil(total / limit) if limit else 0
        offset = (page - 1) * limit
        return cls(
            items=items[offset:offset + limit],
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
