"""Payment ledger model and its status machine."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BigIntPK, TenantScopedModel
from src.shared.utils.state_machine import LedgerStateMachine


class PaymentMethod(StrEnum):
    """Payment method options."""

    CASH = "CASH"
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK_DEPOSIT = "BANK_DEPOSIT"


class PaymentStatus(StrEnum):
    """Payment status options."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class MobileMoneyOperator(StrEnum):
    MTN = "mtn"
    AIRTEL = "airtel"


# COMPLETED and FAILED leave only through a void; CANCELLED is final.
# PENDING -> COMPLETED covers a callback that beats the PROCESSING write.
PAYMENT_STATE_MACHINE = LedgerStateMachine(
    {
        PaymentStatus.PENDING: frozenset(
            {
                PaymentStatus.PROCESSING,
                PaymentStatus.COMPLETED,
                PaymentStatus.FAILED,
                PaymentStatus.CANCELLED,
            }
        ),
        PaymentStatus.PROCESSING: frozenset(
            {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
        ),
        PaymentStatus.COMPLETED: frozenset({PaymentStatus.CANCELLED}),
        PaymentStatus.FAILED: frozenset({PaymentStatus.CANCELLED}),
        PaymentStatus.CANCELLED: frozenset(),
    }
)


class Payment(TenantScopedModel):
    """
    One payment attempt for a student.

    ``amount`` is gross: for mobile money it is the requested amount plus the
    surcharge and is exactly what the gateway is asked to collect. Status is
    changed only through PAYMENT_STATE_MACHINE.
    """

    __tablename__ = "payments"

    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("students.id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    requested_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    surcharge: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )

    method: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    operator: Mapped[str | None] = mapped_column(String(20), nullable=True)
    phone_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    # TXN-... for mobile money (the gateway reference), free text for cash/bank
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    provider_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    receipt_number: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    recorded_by_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id"), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    void_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("users.id"), nullable=True
    )

    student: Mapped["Student"] = relationship("Student", lazy="selectin")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        UniqueConstraint("tenant_id", "transaction_id", name="uq_payments_tenant_transaction_id"),
    )

    @property
    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED.value

    @property
    def is_cancelled(self) -> bool:
        return self.status == PaymentStatus.CANCELLED.value

    @property
    def is_mobile_money(self) -> bool:
        return self.method == PaymentMethod.MOBILE_MONEY.value
