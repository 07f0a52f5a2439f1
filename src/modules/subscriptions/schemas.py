"""Pydantic schemas for the subscriptions module."""

from datetime import datetime
from decimal import Decimal

from pydantic import Field

from src.modules.payments.models import MobileMoneyOperator
from src.modules.subscriptions.models import BillingCycle
from src.shared.schemas.base import BaseSchema


class PlanResponse(BaseSchema):
    id: int
    tier: str
    name: str
    description: str | None
    monthly_price: Decimal
    quarterly_price: Decimal | None
    yearly_price: Decimal
    max_students: int
    max_teachers: int
    max_users: int
    max_classes: int
    features: list[str]


class UpgradeRequest(BaseSchema):
    plan_id: int
    billing_cycle: BillingCycle = BillingCycle.MONTHLY


class MobileMoneyUpgradeRequest(UpgradeRequest):
    operator: MobileMoneyOperator
    phone_number: str = Field(..., min_length=5, max_length=20)


class PaymentProofRequest(BaseSchema):
    transaction_reference: str = Field(..., min_length=1, max_length=100)
    notes: str | None = None


class SubscriptionPaymentResponse(BaseSchema):
    id: int
    tenant_id: int
    plan_id: int
    base_amount: Decimal
    overage_amount: Decimal
    total_amount: Decimal
    currency: str
    payment_method: str
    billing_cycle: str
    period_start: datetime
    period_end: datetime
    status: str
    external_ref: str | None
    proof_reference: str | None
    receipt_number: str | None
    failure_reason: str | None
    notes: str | None
    paid_at: datetime | None
    created_at: datetime


class UsageItem(BaseSchema):
    current: int
    max: int
    percentage: int


class SubscriptionUsage(BaseSchema):
    students: UsageItem
    teachers: UsageItem
    users: UsageItem


class SubscriptionStatusResponse(BaseSchema):
    tier: str
    status: str
    expiry_date: datetime | None
    days_until_expiry: int | None
    plan: PlanResponse | None
    usage: SubscriptionUsage
    features: list[str]
    recent_payments: list[SubscriptionPaymentResponse]


class ExpiringTenant(BaseSchema):
    id: int
    name: str
    email: str | None
    status: str
    expiry_date: datetime | None
