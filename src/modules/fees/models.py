"""Fee catalog and per-student obligation models."""

from datetime import date
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import BigIntPK, TenantScopedModel
from src.shared.utils.money import round_money


class BillingPeriod(TenantScopedModel):
    """Term or semester fees are billed against."""

    __tablename__ = "billing_periods"

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class FeeTemplate(TenantScopedModel):
    """
    Reusable definition of an amount owed, scoped to a grade and billing period.

    Editable until any obligation created from it has a recorded payment;
    deletable only while no obligation references it.
    """

    __tablename__ = "fee_templates"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    applicable_grade: Mapped[str | None] = mapped_column(String(50), nullable=True)
    billing_period_id: Mapped[int | None] = mapped_column(
        BigIntPK, ForeignKey("billing_periods.id"), nullable=True, index=True
    )

    billing_period: Mapped["BillingPeriod | None"] = relationship("BillingPeriod", lazy="selectin")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_fee_templates_amount_positive"),
        UniqueConstraint(
            "tenant_id",
            "name",
            "billing_period_id",
            "applicable_grade",
            name="uq_fee_templates_tenant_name_period_grade",
        ),
    )


class Scholarship(TenantScopedModel):
    """Percentage discount applied to every obligation of the students carrying it."""

    __tablename__ = "scholarships"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    discount_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "discount_percentage >= 0 AND discount_percentage <= 100",
            name="ck_scholarships_percentage_range",
        ),
        UniqueConstraint("tenant_id", "name", name="uq_scholarships_tenant_name"),
    )


class FeeObligation(TenantScopedModel):
    """
    Per-student instantiation of a fee template, after discount.

    amount_paid is advanced only by completed payments (cash/bank deposit at
    recording time, mobile money when the gateway confirms).
    """

    __tablename__ = "fee_obligations"

    student_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("students.id"), nullable=False, index=True
    )
    fee_template_id: Mapped[int] = mapped_column(
        BigIntPK, ForeignKey("fee_templates.id"), nullable=False, index=True
    )
    amount_due: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    fee_template: Mapped["FeeTemplate"] = relationship("FeeTemplate", lazy="selectin")

    __table_args__ = (
        UniqueConstraint("student_id", "fee_template_id", name="uq_fee_obligations_student_template"),
    )

    @property
    def remaining(self) -> Decimal:
        return round_money(max(self.amount_due - self.amount_paid, Decimal("0")))

    @property
    def is_settled(self) -> bool:
        return self.amount_paid >= self.amount_due
