"""Pydantic schemas for Payments module."""

from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_validator, model_validator

from src.modules.payments.models import MobileMoneyOperator, PaymentMethod, PaymentStatus
from src.shared.schemas.base import BaseSchema
from src.shared.utils.money import positive_money


class PaymentCreate(BaseSchema):
    """
    Schema for recording a payment.

    Mobile money needs operator and phone number; the transaction id is then
    always generated. Cash and bank deposits may carry the id printed on the
    slip or receipt book.
    """

    student_id: int
    amount: Decimal = Field(gt=0, description="Requested amount, before any surcharge")
    method: PaymentMethod
    notes: str | None = None
    operator: MobileMoneyOperator | None = None
    phone_number: str | None = Field(None, max_length=20)
    transaction_id: str | None = Field(None, max_length=100)

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        return positive_money(v)

    @model_validator(mode="after")
    def check_mobile_money_fields(self):
        if self.method == PaymentMethod.MOBILE_MONEY:
            if self.operator is None:
                raise ValueError("operator is required for mobile money payments")
            if not (self.phone_number or "").strip():
                raise ValueError("phone_number is required for mobile money payments")
        return self


class PaymentVoid(BaseSchema):
    reason: str = Field(..., min_length=1, max_length=500)


class PaymentResponse(BaseSchema):
    """Schema for payment response."""

    id: int
    tenant_id: int
    student_id: int
    amount: Decimal
    requested_amount: Decimal
    surcharge: Decimal
    method: str
    operator: str | None
    phone_number: str | None
    status: str
    transaction_id: str
    provider_reference: str | None
    receipt_number: str | None
    failure_reason: str | None
    notes: str | None
    recorded_by_id: int | None
    completed_at: datetime | None
    void_reason: str | None
    voided_at: datetime | None
    voided_by_id: int | None
    created_at: datetime
    updated_at: datetime


class PaymentFilters(BaseSchema):
    """Filters for listing payments."""

    student_id: int | None = None
    status: PaymentStatus | None = None
    method: PaymentMethod | None = None
    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=100)
