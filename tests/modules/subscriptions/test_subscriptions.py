from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.models import UserRole
from src.core.exceptions import ConflictError, GatewayError, NotFoundError, ValidationError
from src.modules.subscriptions.models import BillingCycle, SubscriptionPaymentStatus
from src.modules.subscriptions.service import SubscriptionService, add_months, period_end_for, price_for
from src.modules.tenants.models import Tenant, TenantStatus
from tests.conftest import auth_headers, make_plan, make_tenant, make_user


def _utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class TestPricing:
    def test_add_months_clamps_to_month_end(self):
        assert add_months(_utc(2026, 1, 31), 1) == _utc(2026, 2, 28)
        assert add_months(_utc(2028, 1, 31), 1) == _utc(2028, 2, 29)
        assert add_months(_utc(2026, 11, 15), 3) == _utc(2027, 2, 15)

    def test_period_end(self):
        start = _utc(2026, 3, 10)
        assert period_end_for(start, BillingCycle.MONTHLY) == _utc(2026, 4, 10)
        assert period_end_for(start, BillingCycle.QUARTERLY) == _utc(2026, 6, 10)
        assert period_end_for(start, BillingCycle.ANNUAL) == _utc(2027, 3, 10)

    async def test_price_for_cycle(self, db_session: AsyncSession):
        plan = await make_plan(db_session)
        assert price_for(plan, BillingCycle.MONTHLY) == Decimal("600.00")
        assert price_for(plan, BillingCycle.QUARTERLY) == Decimal("1800.00")
        assert price_for(plan, BillingCycle.ANNUAL) == Decimal("6000.00")

        plan.quarterly_price = Decimal("1700")
        assert price_for(plan, BillingCycle.QUARTERLY) == Decimal("1700.00")


class TestUpgrade:
    async def test_manual_upgrade_is_pending(self, db_session: AsyncSession, school):
        plan = await make_plan(db_session)

        payment = await SubscriptionService(db_session, school.tenant.id).initiate_upgrade(
            plan.id, BillingCycle.QUARTERLY, school.admin.id
        )

        assert payment.status == SubscriptionPaymentStatus.PENDING.value
        assert payment.total_amount == Decimal("1800.00")
        assert payment.overage_amount == Decimal("0.00")
        assert payment.external_ref is None

    async def test_free_plan_cannot_be_bought(self, db_session: AsyncSession, school):
        plan = await make_plan(db_session, tier="FREE", monthly_price="0", yearly_price="0")
        with pytest.raises(ValidationError):
            await SubscriptionService(db_session, school.tenant.id).initiate_upgrade(
                plan.id, BillingCycle.MONTHLY
            )

    async def test_unknown_plan(self, db_session: AsyncSession, school):
        with pytest.raises(NotFoundError):
            await SubscriptionService(db_session, school.tenant.id).initiate_upgrade(999, BillingCycle.MONTHLY)

    async def test_mobile_money_adds_surcharge(self, db_session: AsyncSession, school, gateway):
        plan = await make_plan(db_session)

        payment = await SubscriptionService(db_session, school.tenant.id, gateway=gateway).pay_with_mobile_money(
            plan.id, BillingCycle.MONTHLY, "mtn", "0961000000", school.admin.id
        )

        assert payment.status == SubscriptionPaymentStatus.PROCESSING.value
        assert payment.base_amount == Decimal("600.00")
        assert payment.overage_amount == Decimal("15.00")
        assert payment.total_amount == Decimal("615.00")
        assert payment.external_ref.startswith("SUB-")
        assert gateway.calls == [
            {
                "amount": Decimal("615.00"),
                "phone": "0961000000",
                "reference": payment.external_ref,
                "operator": "mtn",
            }
        ]

    async def test_gateway_failure_marks_failed(self, db_session: AsyncSession, school, gateway):
        plan = await make_plan(db_session)
        gateway.error = "Subscriber not found"
        service = SubscriptionService(db_session, school.tenant.id, gateway=gateway)

        with pytest.raises(GatewayError) as exc_info:
            await service.pay_with_mobile_money(plan.id, BillingCycle.MONTHLY, "mtn", "0961000000")

        payment = await service.get_payment(exc_info.value.details["payment_id"])
        assert payment.status == SubscriptionPaymentStatus.FAILED.value
        assert payment.failure_reason == "Subscriber not found"

    async def test_unexpected_gateway_exception_marks_failed(self, db_session: AsyncSession, school, gateway):
        plan = await make_plan(db_session)
        gateway.crash = TimeoutError("read timed out")
        service = SubscriptionService(db_session, school.tenant.id, gateway=gateway)

        with pytest.raises(GatewayError) as exc_info:
            await service.pay_with_mobile_money(plan.id, BillingCycle.MONTHLY, "airtel", "0977000000")

        payment = await service.get_payment(exc_info.value.details["payment_id"])
        assert payment.status == SubscriptionPaymentStatus.FAILED.value
        assert payment.failure_reason == "Payment gateway error: read timed out"


class TestManualConfirmation:
    async def test_proof_then_confirm_activates(self, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        service = SubscriptionService(db_session, school.tenant.id)
        payment = await service.initiate_upgrade(plan.id, BillingCycle.ANNUAL)

        proved = await service.submit_payment_proof(payment.id, "ZANACO-778812", "Paid at branch")
        assert proved.status == SubscriptionPaymentStatus.PROCESSING.value
        assert proved.proof_reference == "ZANACO-778812"
        assert proved.notes == "User Note: Paid at branch"

        confirmed = await SubscriptionService(db_session).confirm_payment(payment.id)
        assert confirmed.status == SubscriptionPaymentStatus.COMPLETED.value
        assert confirmed.receipt_number.startswith("SRC-")
        assert confirmed.paid_at is not None

        tenant = await service.get_tenant()
        assert tenant.tier == "PROFESSIONAL"
        assert tenant.status == TenantStatus.ACTIVE.value
        assert tenant.max_classes == 40

    async def test_confirm_twice_conflicts(self, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        payment = await SubscriptionService(db_session, school.tenant.id).initiate_upgrade(
            plan.id, BillingCycle.MONTHLY
        )
        platform = SubscriptionService(db_session)
        await platform.confirm_payment(payment.id)

        with pytest.raises(ConflictError):
            await platform.confirm_payment(payment.id)

    async def test_proof_requires_pending(self, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        service = SubscriptionService(db_session, school.tenant.id)
        payment = await service.initiate_upgrade(plan.id, BillingCycle.MONTHLY)
        await service.submit_payment_proof(payment.id, "REF-1")

        with pytest.raises(ConflictError):
            await service.submit_payment_proof(payment.id, "REF-2")

    async def test_failed_payment_cannot_be_confirmed(self, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        service = SubscriptionService(db_session, school.tenant.id)
        payment = await service.initiate_upgrade(plan.id, BillingCycle.MONTHLY)
        assert await service.mark_payment_failed(payment.id) is True

        with pytest.raises(ConflictError):
            await SubscriptionService(db_session).confirm_payment(payment.id)
        stored = await service.get_payment(payment.id)
        assert stored.failure_reason == "Payment failed via mobile money"

    async def test_payment_of_other_tenant_not_found(self, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        payment = await SubscriptionService(db_session, school.tenant.id).initiate_upgrade(
            plan.id, BillingCycle.MONTHLY
        )
        other = await make_tenant(db_session, "Riverside School")
        await db_session.commit()

        with pytest.raises(NotFoundError):
            await SubscriptionService(db_session, other.id).get_payment(payment.id)


class TestLifecycle:
    async def test_cancel_keeps_period(self, db_session: AsyncSession, school):
        ends = datetime.now(timezone.utc) + timedelta(days=20)
        school.tenant.status = TenantStatus.ACTIVE.value
        school.tenant.subscription_ends_at = ends
        await db_session.commit()
        service = SubscriptionService(db_session, school.tenant.id)

        tenant = await service.cancel_subscription(school.admin.id)

        assert tenant.status == TenantStatus.CANCELLED.value
        assert tenant.subscription_ends_at is not None
        with pytest.raises(ConflictError):
            await service.cancel_subscription()

    async def test_expiry_job(self, db_session: AsyncSession):
        now = datetime.now(timezone.utc)
        lapsed = await make_tenant(
            db_session, "Lapsed School", status=TenantStatus.ACTIVE.value,
            subscription_ends_at=now - timedelta(days=1),
        )
        soon = await make_tenant(
            db_session, "Soon School", status=TenantStatus.ACTIVE.value,
            subscription_ends_at=now + timedelta(days=3),
        )
        trial = await make_tenant(db_session, "Trial School", trial_ends_at=now + timedelta(days=5))
        later = await make_tenant(
            db_session, "Later School", status=TenantStatus.ACTIVE.value,
            subscription_ends_at=now + timedelta(days=60),
        )
        await db_session.commit()
        service = SubscriptionService(db_session)

        expiring = await service.find_expiring(days=7, now=now)
        assert [t.id for t in expiring] == [soon.id, trial.id]

        assert await service.expire_lapsed_subscriptions(now=now) == 1
        statuses = dict(
            (await db_session.execute(select(Tenant.id, Tenant.status))).all()
        )
        assert statuses[lapsed.id] == TenantStatus.EXPIRED.value
        assert statuses[later.id] == TenantStatus.ACTIVE.value

    async def test_status_reports_usage(self, db_session: AsyncSession, school):
        await make_plan(db_session, tier="FREE", monthly_price="0", yearly_price="0", max_students=50)
        school.tenant.current_student_count = 25
        await db_session.commit()

        status = await SubscriptionService(db_session, school.tenant.id).get_status()

        assert status.tier == "FREE"
        assert status.plan.tier == "FREE"
        assert status.usage.students.current == 25
        assert status.usage.students.percentage == 50
        assert status.recent_payments == []


class TestSubscriptionAPI:
    async def test_plans_listed(self, client: AsyncClient, db_session: AsyncSession, school):
        await make_plan(db_session)
        response = await client.get("/api/v1/subscriptions/plans", headers=auth_headers(school.parent))
        assert response.status_code == 200
        assert [p["tier"] for p in response.json()["data"]] == ["PROFESSIONAL"]

    async def test_mobile_money_upgrade_202(
        self, client: AsyncClient, db_session: AsyncSession, school, gateway
    ):
        plan = await make_plan(db_session)

        response = await client.post(
            "/api/v1/subscriptions/pay-mobile-money",
            json={"plan_id": plan.id, "billing_cycle": "MONTHLY", "operator": "airtel", "phone_number": "0977000000"},
            headers=auth_headers(school.admin),
        )

        assert response.status_code == 202
        data = response.json()["data"]
        assert data["status"] == SubscriptionPaymentStatus.PROCESSING.value
        assert Decimal(str(data["total_amount"])) == Decimal("615.00")

    async def test_bursar_cannot_upgrade(self, client: AsyncClient, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        response = await client.post(
            "/api/v1/subscriptions/upgrade",
            json={"plan_id": plan.id},
            headers=auth_headers(school.bursar),
        )
        assert response.status_code == 403

    async def test_only_platform_admin_confirms(self, client: AsyncClient, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        payment = await SubscriptionService(db_session, school.tenant.id).initiate_upgrade(
            plan.id, BillingCycle.MONTHLY
        )
        platform_admin = await make_user(db_session, None, UserRole.PLATFORM_ADMIN, "ops@platform.test")
        await db_session.commit()
        url = f"/api/v1/subscriptions/payments/{payment.id}/confirm"

        denied = await client.post(url, headers=auth_headers(school.admin))
        confirmed = await client.post(url, headers=auth_headers(platform_admin))
        again = await client.post(url, headers=auth_headers(platform_admin))

        assert denied.status_code == 403
        assert confirmed.status_code == 200
        assert confirmed.json()["data"]["status"] == SubscriptionPaymentStatus.COMPLETED.value
        assert again.status_code == 409

    async def test_history_is_tenant_scoped(self, client: AsyncClient, db_session: AsyncSession, school):
        plan = await make_plan(db_session)
        await SubscriptionService(db_session, school.tenant.id).initiate_upgrade(plan.id, BillingCycle.MONTHLY)
        other = await make_tenant(db_session, "Riverside School")
        other_admin = await make_user(db_session, other, UserRole.ADMIN, "admin@riverside.test")
        await db_session.commit()

        mine = await client.get("/api/v1/subscriptions/payments", headers=auth_headers(school.admin))
        theirs = await client.get("/api/v1/subscriptions/payments", headers=auth_headers(other_admin))

        assert mine.json()["data"]["total"] == 1
        assert theirs.json()["data"]["total"] == 0
