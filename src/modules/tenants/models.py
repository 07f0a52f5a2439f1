"""Tenant (school) and its subscription state."""

from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class TenantTier(StrEnum):
    """Subscription tiers offered by the platform."""

    FREE = "FREE"
    STARTER = "STARTER"
    PROFESSIONAL = "PROFESSIONAL"
    ENTERPRISE = "ENTERPRISE"


class TenantStatus(StrEnum):
    """Subscription status of a tenant."""

    TRIAL = "TRIAL"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"


class Tenant(BaseModel):
    """
    A school whose data and billing are isolated from other schools.

    Subscription fields (tier, status, period, quotas, features) are written
    only by Subscription Billing: on a completed subscription payment, on an
    explicit cancel, or when the expiry job finds a lapsed period.
    """

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    tier: Mapped[str] = mapped_column(String(20), nullable=False, default=TenantTier.FREE.value)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TenantStatus.TRIAL.value, index=True
    )
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    subscription_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_ends_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Quotas (0 = unlimited)
    max_students: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    max_teachers: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_classes: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    # Usage counters, maintained by the records side of the platform
    current_student_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_teacher_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_user_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    enabled_features: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    @property
    def expiry_date(self) -> datetime | None:
        if self.status == TenantStatus.TRIAL.value and self.trial_ends_at:
            return self.trial_ends_at
        return self.subscription_ends_at
