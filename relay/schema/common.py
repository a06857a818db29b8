"""
Response envelopes shared by all endpoints.
"""
from typing import Generic, List, Optional, TypeVar
from pydantic import BaseModel, Field

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
    """{success, data, message} wrapper around every successful response."""
    success: bool = True
    data: Optional[T] = None
    message: Optional[str] = None


class Page(BaseModel, Generic[T]):
    """Paginated list."""
    items: List[T]
    page: int = Field(..., description="Current page (1-based).")
    limit: int = Field(..., description="Items per page.")
    total: int = Field(..., description="Total matching items.")
    total_pages: int = Field(..., description="Total pages.")

    @classmethod
    def build(cls, items: List[T], *, page: int, limit: int, total: int) -> "Page[T]":
        total_pages = (total + limit - 1) // limit if total else 0
        return cls(items=items, page=page, limit=limit, total=total, total_pages=total_pages)
