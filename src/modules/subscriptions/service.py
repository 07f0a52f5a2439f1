"""Service for tenant subscription billing."""

import calendar
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditService
from src.core.config import settings
from src.core.documents.number_generator import PLATFORM_TENANT, DocumentNumberGenerator
from src.core.exceptions import ConflictError, GatewayError, NotFoundError, ValidationError
from src.integrations.gateway.client import GatewayClient
from src.integrations.gateway.references import new_subscription_reference
from src.modules.subscriptions.models import (
    SUBSCRIPTION_STATE_MACHINE,
    BillingCycle,
    SubscriptionPayment,
    SubscriptionPaymentMethod,
    SubscriptionPaymentStatus,
    SubscriptionPlan,
)
from src.modules.subscriptions.schemas import (
    PlanResponse,
    SubscriptionPaymentResponse,
    SubscriptionStatusResponse,
    SubscriptionUsage,
    UsageItem,
)
from src.modules.tenants.models import Tenant, TenantStatus
from src.shared.utils.money import apply_surcharge, round_money

logger = logging.getLogger(__name__)

SUBSCRIPTION_RECEIPT_PREFIX = "SRC"
DEFAULT_FAILURE_REASON = "Payment failed via mobile money"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def add_months(start: datetime, months: int) -> datetime:
    """Same day ``months`` later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def period_end_for(start: datetime, cycle: BillingCycle) -> datetime:
    if cycle == BillingCycle.ANNUAL:
        return add_months(start, 12)
    if cycle == BillingCycle.QUARTERLY:
        return add_months(start, 3)
    return add_months(start, 1)


def price_for(plan: SubscriptionPlan, cycle: BillingCycle) -> Decimal:
    if cycle == BillingCycle.ANNUAL:
        return round_money(plan.yearly_price)
    if cycle == BillingCycle.QUARTERLY:
        if plan.quarterly_price is not None:
            return round_money(plan.quarterly_price)
        return round_money(plan.monthly_price * 3)
    return round_money(plan.monthly_price)


def _usage(current: int, maximum: int) -> UsageItem:
    percentage = round(current / maximum * 100) if maximum > 0 else 0
    return UsageItem(current=current, max=maximum, percentage=percentage)


class SubscriptionService:
    """
    Plans, upgrades and activation for one tenant.

    tenant_id is None for platform administrators, who act across tenants
    (manual confirmation, the expiry job).
    """

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: int | None = None,
        gateway: GatewayClient | None = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.gateway = gateway or GatewayClient()
        self.audit = AuditService(db)

    # --- Plans and status ---

    async def list_plans(self) -> list[SubscriptionPlan]:
        result = await self.db.execute(
            select(SubscriptionPlan)
            .where(SubscriptionPlan.is_active.is_(True))
            .order_by(SubscriptionPlan.sort_order, SubscriptionPlan.id)
        )
        return list(result.scalars().all())

    async def get_plan(self, plan_id: int) -> SubscriptionPlan:
        plan = await self.db.scalar(
            select(SubscriptionPlan).where(
                SubscriptionPlan.id == plan_id, SubscriptionPlan.is_active.is_(True)
            )
        )
        if not plan:
            raise NotFoundError("Subscription plan", plan_id)
        return plan

    async def get_tenant(self, tenant_id: int | None = None) -> Tenant:
        tenant_id = tenant_id or self.tenant_id
        result = await self.db.execute(
            select(Tenant).where(Tenant.id == tenant_id).execution_options(populate_existing=True)
        )
        tenant = result.scalar_one_or_none()
        if not tenant:
            raise NotFoundError("Tenant", tenant_id)
        return tenant

    async def get_status(self, now: datetime | None = None) -> SubscriptionStatusResponse:
        """Tier, expiry, usage against quotas and the last five payments."""
        now = now or _now()
        tenant = await self.get_tenant()
        plan = await self.db.scalar(
            select(SubscriptionPlan).where(
                SubscriptionPlan.tier == tenant.tier, SubscriptionPlan.is_active.is_(True)
            )
        )

        expiry = _aware(tenant.expiry_date)
        days_until_expiry = None
        if expiry is not None:
            seconds = (expiry - now).total_seconds()
            days_until_expiry = int(-(-seconds // 86400))

        recent, _ = await self.payment_history(page=1, limit=5)
        return SubscriptionStatusResponse(
            tier=tenant.tier,
            status=tenant.status,
            expiry_date=expiry,
            days_until_expiry=days_until_expiry,
            plan=PlanResponse.model_validate(plan) if plan else None,
            usage=SubscriptionUsage(
                students=_usage(tenant.current_student_count, tenant.max_students),
                teachers=_usage(tenant.current_teacher_count, tenant.max_teachers),
                users=_usage(tenant.current_user_count, tenant.max_users),
            ),
            features=list(tenant.enabled_features or []),
            recent_payments=[SubscriptionPaymentResponse.model_validate(p) for p in recent],
        )

    async def payment_history(self, page: int = 1, limit: int = 20) -> tuple[list[SubscriptionPayment], int]:
        query = select(SubscriptionPayment).where(SubscriptionPayment.tenant_id == self.tenant_id)
        total = (
            await self.db.execute(select(func.count()).select_from(query.subquery()))
        ).scalar() or 0
        result = await self.db.execute(
            query.order_by(SubscriptionPayment.created_at.desc(), SubscriptionPayment.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def get_payment(self, payment_id: int) -> SubscriptionPayment:
        query = select(SubscriptionPayment).where(SubscriptionPayment.id == payment_id)
        if self.tenant_id is not None:
            query = query.where(SubscriptionPayment.tenant_id == self.tenant_id)
        result = await self.db.execute(query.execution_options(populate_existing=True))
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Subscription payment", payment_id)
        return payment

    # --- Upgrades ---

    def _new_payment(
        self, plan: SubscriptionPlan, cycle: BillingCycle, method: SubscriptionPaymentMethod
    ) -> SubscriptionPayment:
        if self.tenant_id is None:
            raise ValidationError("A school account is required to buy a plan")
        if plan.monthly_price <= 0 and plan.yearly_price <= 0:
            raise ValidationError("The free plan does not need a payment", field="plan_id")

        start = _now()
        base = price_for(plan, cycle)
        return SubscriptionPayment(
            tenant_id=self.tenant_id,
            plan_id=plan.id,
            base_amount=base,
            overage_amount=Decimal("0.00"),
            total_amount=base,
            currency=settings.currency,
            payment_method=method.value,
            billing_cycle=cycle.value,
            period_start=start,
            period_end=period_end_for(start, cycle),
            status=SubscriptionPaymentStatus.PENDING.value,
        )

    async def initiate_upgrade(
        self, plan_id: int, billing_cycle: BillingCycle, user_id: int | None = None
    ) -> SubscriptionPayment:
        """Open a PENDING manual payment; the school submits proof, an admin confirms."""
        plan = await self.get_plan(plan_id)
        payment = self._new_payment(plan, billing_cycle, SubscriptionPaymentMethod.BANK_TRANSFER)
        self.db.add(payment)
        await self.db.flush()

        await self.audit.log(
            action="subscription.upgrade",
            entity_type="SubscriptionPayment",
            entity_id=payment.id,
            tenant_id=self.tenant_id,
            user_id=user_id,
            new_values={"plan": plan.tier, "cycle": billing_cycle.value, "amount": str(payment.total_amount)},
        )
        await self.db.commit()
        return await self.get_payment(payment.id)

    async def pay_with_mobile_money(
        self,
        plan_id: int,
        billing_cycle: BillingCycle,
        operator: str,
        phone_number: str,
        user_id: int | None = None,
    ) -> SubscriptionPayment:
        """
        Charge the plan to a phone. The surcharge is kept as overage_amount.
        Gateway acceptance moves the payment to PROCESSING; any gateway error
        moves it to FAILED and is re-raised with the payment id.
        """
        plan = await self.get_plan(plan_id)
        payment = self._new_payment(plan, billing_cycle, SubscriptionPaymentMethod.MOBILE_MONEY)
        surcharge, total = apply_surcharge(payment.base_amount, settings.mobile_money_surcharge_rate)
        payment.overage_amount = surcharge
        payment.total_amount = total
        payment.external_ref = new_subscription_reference(self.tenant_id)
        self.db.add(payment)
        await self.db.flush()

        await self.audit.log(
            action="subscription.upgrade",
            entity_type="SubscriptionPayment",
            entity_id=payment.id,
            entity_identifier=payment.external_ref,
            tenant_id=self.tenant_id,
            user_id=user_id,
            new_values={"plan": plan.tier, "cycle": billing_cycle.value, "amount": str(total)},
        )
        await self.db.commit()
        payment_id = payment.id

        try:
            await self.gateway.initiate_collection(
                amount=total, phone=phone_number, reference=payment.external_ref, operator=operator
            )
        except Exception as exc:
            message = exc.message if isinstance(exc, GatewayError) else f"Payment gateway error: {exc}"
            if not isinstance(exc, GatewayError):
                logger.exception("unexpected gateway failure for subscription payment %s", payment_id)
            await self.mark_payment_failed(payment_id, message)
            raise GatewayError(message, payment_id=payment_id) from exc

        await SUBSCRIPTION_STATE_MACHINE.advance(
            self.db, SubscriptionPayment, payment_id, SubscriptionPaymentStatus.PROCESSING
        )
        await self.db.commit()
        logger.info("subscription payment %s PROCESSING (%s)", payment_id, payment.external_ref)
        return await self.get_payment(payment_id)

    async def submit_payment_proof(
        self, payment_id: int, transaction_reference: str, notes: str | None = None
    ) -> SubscriptionPayment:
        payment = await self.get_payment(payment_id)
        combined_notes = payment.notes
        if notes:
            combined_notes = f"{payment.notes}\nUser Note: {notes}" if payment.notes else f"User Note: {notes}"

        advanced = await SUBSCRIPTION_STATE_MACHINE.advance(
            self.db,
            SubscriptionPayment,
            payment.id,
            SubscriptionPaymentStatus.PROCESSING,
            proof_reference=transaction_reference,
            notes=combined_notes,
        )
        if not advanced:
            raise ConflictError("Payment is not in pending state", details={"payment_id": payment_id})
        await self.db.commit()
        return await self.get_payment(payment_id)

    async def confirm_payment(self, payment_id: int, user_id: int | None = None) -> SubscriptionPayment:
        """Manual confirmation by a platform administrator."""
        payment = await self.get_payment(payment_id)
        if not await self.activate_subscription_from_payment(payment.id, user_id=user_id):
            raise ConflictError("Payment already processed", details={"payment_id": payment_id})
        return await self.get_payment(payment_id)

    # --- Outcomes ---

    async def activate_subscription_from_payment(
        self, payment_id: int, user_id: int | None = None
    ) -> bool:
        """
        Complete the payment and apply its plan to the tenant.

        Only the caller whose COMPLETED transition succeeds touches the tenant,
        so redelivered callbacks and a racing admin confirmation apply it once.
        """
        won = await SUBSCRIPTION_STATE_MACHINE.advance(
            self.db,
            SubscriptionPayment,
            payment_id,
            SubscriptionPaymentStatus.COMPLETED,
            paid_at=_now(),
        )
        if not won:
            return False

        receipt_number = await DocumentNumberGenerator(self.db).generate(
            SUBSCRIPTION_RECEIPT_PREFIX, PLATFORM_TENANT
        )
        await self.db.execute(
            update(SubscriptionPayment)
            .where(SubscriptionPayment.id == payment_id)
            .values(receipt_number=receipt_number)
            .execution_options(synchronize_session=False)
        )

        result = await self.db.execute(
            select(SubscriptionPayment)
            .where(SubscriptionPayment.id == payment_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one()
        plan = payment.plan
        tenant = await self.get_tenant(payment.tenant_id)

        old_values = {"tier": tenant.tier, "status": tenant.status}
        tenant.tier = plan.tier
        tenant.status = TenantStatus.ACTIVE.value
        tenant.subscription_started_at = payment.period_start
        tenant.subscription_ends_at = payment.period_end
        tenant.max_students = plan.max_students
        tenant.max_teachers = plan.max_teachers
        tenant.max_users = plan.max_users
        tenant.max_classes = plan.max_classes
        tenant.enabled_features = list(plan.features or [])

        await self.audit.log(
            action="subscription.activate",
            entity_type="Tenant",
            entity_id=tenant.id,
            entity_identifier=tenant.name,
            tenant_id=tenant.id,
            user_id=user_id,
            old_values=old_values,
            new_values={
                "tier": plan.tier,
                "status": TenantStatus.ACTIVE.value,
                "subscription_payment_id": payment.id,
                "period_end": payment.period_end.isoformat(),
            },
        )
        await self.db.commit()
        logger.info("subscription payment %s COMPLETED, tenant %s now %s", payment_id, tenant.id, plan.tier)
        return True

    async def mark_payment_failed(self, payment_id: int, reason: str | None = None) -> bool:
        reason = reason or DEFAULT_FAILURE_REASON
        won = await SUBSCRIPTION_STATE_MACHINE.advance(
            self.db,
            SubscriptionPayment,
            payment_id,
            SubscriptionPaymentStatus.FAILED,
            failure_reason=reason[:500],
        )
        await self.db.commit()
        if won:
            logger.warning("subscription payment %s FAILED: %s", payment_id, reason)
        return won

    # --- Lifecycle ---

    async def cancel_subscription(self, user_id: int | None = None) -> Tenant:
        """Stop renewal. History is kept and access lasts until the period ends."""
        tenant = await self.get_tenant()
        if tenant.status == TenantStatus.CANCELLED.value:
            raise ConflictError("Subscription is already cancelled")

        old_status = tenant.status
        tenant.status = TenantStatus.CANCELLED.value
        await self.audit.log(
            action="subscription.cancel",
            entity_type="Tenant",
            entity_id=tenant.id,
            entity_identifier=tenant.name,
            tenant_id=tenant.id,
            user_id=user_id,
            old_values={"status": old_status},
            new_values={"status": TenantStatus.CANCELLED.value},
        )
        await self.db.commit()
        return await self.get_tenant()

    async def find_expiring(self, days: int = 7, now: datetime | None = None) -> list[Tenant]:
        """Active or trial tenants whose period ends within ``days``."""
        now = now or _now()
        horizon = now + timedelta(days=days)
        result = await self.db.execute(
            select(Tenant)
            .where(
                or_(
                    and_(
                        Tenant.status == TenantStatus.ACTIVE.value,
                        Tenant.subscription_ends_at >= now,
                        Tenant.subscription_ends_at <= horizon,
                    ),
                    and_(
                        Tenant.status == TenantStatus.TRIAL.value,
                        Tenant.trial_ends_at >= now,
                        Tenant.trial_ends_at <= horizon,
                    ),
                )
            )
            .order_by(Tenant.id)
        )
        return list(result.scalars().all())

    async def expire_lapsed_subscriptions(self, now: datetime | None = None) -> int:
        """Move tenants past their period end (or trial end) to EXPIRED."""
        now = now or _now()
        lapsed_paid = (
            update(Tenant)
            .where(
                Tenant.status.in_([TenantStatus.ACTIVE.value, TenantStatus.CANCELLED.value]),
                Tenant.subscription_ends_at.is_not(None),
                Tenant.subscription_ends_at < now,
            )
            .values(status=TenantStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        lapsed_trial = (
            update(Tenant)
            .where(
                Tenant.status == TenantStatus.TRIAL.value,
                Tenant.trial_ends_at.is_not(None),
                Tenant.trial_ends_at < now,
            )
            .values(status=TenantStatus.EXPIRED.value)
            .execution_options(synchronize_session=False)
        )
        expired = (await self.db.execute(lapsed_paid)).rowcount
        expired += (await self.db.execute(lapsed_trial)).rowcount
        await self.db.commit()
        if expired:
            logger.info("%d tenant subscriptions expired", expired)
        return expired
