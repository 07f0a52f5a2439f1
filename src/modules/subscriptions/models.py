"""Platform plans and the tenant subscription payment ledger."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BaseModel, BigIntPK, TenantScopedModel
from src.shared.utils.state_machine import LedgerStateMachine


class BillingCycle(StrEnum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUAL = "ANNUAL"


class SubscriptionPaymentStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SubscriptionPaymentMethod(StrEnum):
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK_TRANSFER = "BANK_TRANSFER"


SUBSCRIPTION_STATE_MACHINE = LedgerStateMachine(
    {
        SubscriptionPaymentStatus.PENDING: frozenset(
            {
                SubscriptionPaymentStatus.PROCESSING,
                SubscriptionPaymentStatus.COMPLETED,
                SubscriptionPaymentStatus.FAILED,
            }
        ),
        SubscriptionPaymentStatus.PROCESSING: frozenset(
            {SubscriptionPaymentStatus.COMPLETED, SubscriptionPaymentStatus.FAILED}
        ),
        SubscriptionPaymentStatus.COMPLETED: frozenset(),
        SubscriptionPaymentStatus.FAILED: frozenset(),
    }
)


class SubscriptionPlan(BaseModel):
    """A plan a school can buy. Quotas of 0 mean unlimited."""

    __tablename__ = "subscription_plans"

    tier: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    monthly_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    # Unset means three months at the monthly price
    quarterly_price: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    yearly_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    max_students: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_teachers: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_classes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    features: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class SubscriptionPayment(TenantScopedModel):
    """
    A school's payment for a plan period.

    Mobile-money payments carry a SUB- external_ref the gateway echoes back.
    Reaching COMPLETED is what activates the plan on the tenant, and only
    the caller that performs that transition applies it.
    """

    __tablename__ = "subscription_payments"

    plan_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("subscription_plans.id"), nullable=False, index=True
    )

    base_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    # Mobile-money processing fee
    overage_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    total_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ZMW")

    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionPaymentStatus.PENDING.value, index=True
    )
    external_ref: Mapped[str | None] = mapped_column(
        String(100), nullable=True, unique=True, index=True
    )
    # Bank/transfer reference the school submits as proof of a manual payment
    proof_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    receipt_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    plan: Mapped["SubscriptionPlan"] = relationship("SubscriptionPlan", lazy="selectin")

    @property
    def is_completed(self) -> bool:
        return self.status == SubscriptionPaymentStatus.COMPLETED.value
