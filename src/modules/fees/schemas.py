"""Pydantic schemas for the fees module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field, field_validator, model_validator

from src.shared.schemas.base import BaseSchema
from src.shared.utils.money import positive_money


# --- Billing periods ---


class BillingPeriodCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    is_active: bool = False

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class BillingPeriodResponse(BaseSchema):
    id: int
    name: str
    start_date: date
    end_date: date
    is_active: bool


# --- Fee templates ---


class FeeTemplateCreate(BaseSchema):
    """Schema for creating a fee template."""

    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(gt=0, description="Amount owed before discounts")
    applicable_grade: str | None = Field(None, max_length=50)
    billing_period_id: int | None = None

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        return positive_money(v)


class FeeTemplateUpdate(BaseSchema):
    name: str | None = Field(None, min_length=1, max_length=200)
    amount: Decimal | None = Field(None, gt=0)
    applicable_grade: str | None = Field(None, max_length=50)
    billing_period_id: int | None = None

    @field_validator("amount")
    @classmethod
    def check_amount(cls, v):
        return positive_money(v)


class FeeTemplateBulkCreate(BaseSchema):
    """Several templates at once. Templates without a period get the active one."""

    templates: list[FeeTemplateCreate] = Field(..., min_length=1)


class FeeTemplateResponse(BaseSchema):
    id: int
    name: str
    amount: Decimal
    applicable_grade: str | None
    billing_period_id: int | None
    created_at: datetime
    updated_at: datetime


class FeeTemplateBulkResult(BaseSchema):
    created: int
    skipped: int
    templates: list[FeeTemplateResponse]


# --- Scholarships ---


class ScholarshipCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=200)
    discount_percentage: Decimal = Field(..., ge=0, le=100)


class ScholarshipUpdate(BaseSchema):
    name: str | None = Field(None, min_length=1, max_length=200)
    discount_percentage: Decimal | None = Field(None, ge=0, le=100)
    is_active: bool | None = None


class ScholarshipResponse(BaseSchema):
    id: int
    name: str
    discount_percentage: Decimal
    is_active: bool


class StudentScholarshipUpdate(BaseSchema):
    """Attach (or with null, detach) a scholarship. Affects future assignments only."""

    scholarship_id: int | None = None


class StudentScholarshipResponse(BaseSchema):
    student_id: int
    scholarship_id: int | None


# --- Assignment ---


class AssignFeeToClassRequest(BaseSchema):
    fee_template_id: int
    class_id: int
    due_date: date | None = None


class FeeObligationResponse(BaseSchema):
    id: int
    student_id: int
    fee_template_id: int
    amount_due: Decimal
    amount_paid: Decimal
    due_date: date | None
    created_at: datetime


class AssignmentError(BaseSchema):
    """A student the assignment could not be applied to."""

    student_id: int
    student_name: str
    error: str


class ClassAssignmentResult(BaseSchema):
    """Outcome of expanding a template over a class. Partial success is normal."""

    fee_template_id: int
    class_id: int
    assigned: int
    already_assigned: int
    failed: int
    errors: list[AssignmentError] = []
    obligations: list[FeeObligationResponse] = []
