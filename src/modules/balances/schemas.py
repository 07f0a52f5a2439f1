from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from src.shared.schemas.base import BaseSchema


class StudentBalance(BaseSchema):
    """balance = total_due - total_paid; total_paid counts COMPLETED payments only."""

    student_id: int
    total_due: Decimal
    total_paid: Decimal
    balance: Decimal
    allocated: Decimal


class StatementEntry(BaseSchema):
    date: datetime
    entry_type: str  # DEBIT | CREDIT
    description: str
    reference: str | None
    debit: Decimal | None
    credit: Decimal | None
    balance: Decimal


class StudentStatement(BaseSchema):
    student_id: int
    student_name: str
    entries: list[StatementEntry]
    total_due: Decimal
    total_paid: Decimal
    closing_balance: Decimal


class TenantSummary(BaseSchema):
    total_due: Decimal
    revenue: Decimal
    outstanding: Decimal
    overdue_students: int
    pending_payments: int
    revenue_by_method: dict[str, Decimal]


class OutstandingStudent(BaseSchema):
    """An active student whose obligations are not yet settled."""

    student_id: int
    student_name: str
    class_name: str | None
    guardian_name: str | None
    guardian_email: str | None
    guardian_phone: str | None
    outstanding: Decimal
    earliest_due_date: date | None
    is_overdue: bool
    fee_count: int


class FeeReminderRequest(BaseSchema):
    # Empty or missing means every student with an outstanding balance
    student_ids: list[int] | None = Field(None, max_length=1000)


class FeeReminderResult(BaseSchema):
    total: int
    sent: int
    failed: int
