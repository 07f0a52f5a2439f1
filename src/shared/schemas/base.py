from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base Pydantic schema; reads ORM rows directly."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class ErrorDetail(BaseSchema):
    """Error detail for a specific field."""

    field: str | None = None
    message: str


class ApiResponse(BaseSchema, Generic[T]):
    """Envelope of every JSON endpoint except the gateway callback."""

    success: bool = True
    data: T
    message: str | None = None


class ErrorResponse(BaseSchema):
    success: bool = False
    data: None = None
    message: str
    errors: list[ErrorDetail] = []
    # Machine-readable context, e.g. the id of a payment marked FAILED
    details: dict[str, Any] | None = None


class PaginatedResponse(BaseSchema, Generic[T]):
    items: list[T]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, page: int, limit: int) -> "PaginatedResponse[T]":
        pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(items=items, total=total, page=page, limit=limit, pages=pages)
