from datetime import date
from decimal import Decimal

from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.balances.service import BalanceService
from src.modules.fees.schemas import FeeTemplateCreate
from src.modules.fees.service import FeeAssignmentService, FeeCatalogService
from src.modules.payments.models import MobileMoneyOperator, PaymentMethod
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import PaymentService
from src.modules.students.models import StudentStatus
from tests.conftest import BrokenNotifier, auth_headers


async def _bill_class(db: AsyncSession, school, name: str, amount: str) -> None:
    template = await FeeCatalogService(db, school.tenant.id).create_template(
        FeeTemplateCreate(name=name, amount=Decimal(amount))
    )
    await FeeAssignmentService(db, school.tenant.id).assign_fee_to_class(template.id, school.school_class.id)


async def _pay(
    db: AsyncSession, school, student, amount: str, method=PaymentMethod.CASH, gateway=None, notifier=None
):
    extra = {}
    if method == PaymentMethod.MOBILE_MONEY:
        extra = {"operator": MobileMoneyOperator.MTN, "phone_number": "0971234567"}
    data = PaymentCreate(student_id=student.id, amount=Decimal(amount), method=method, **extra)
    payment, _ = await PaymentService(db, school.tenant.id, gateway=gateway, notifier=notifier).create_payment(
        data, school.bursar
    )
    return payment


class TestStudentBalance:
    async def test_balance_is_due_minus_completed(self, db_session: AsyncSession, school, notifier):
        await _bill_class(db_session, school, "Tuition", "1500")
        await _bill_class(db_session, school, "Sports", "200")
        student = school.students[1]
        await _pay(db_session, school, student, "400", notifier=notifier)

        balance = await BalanceService(db_session, school.tenant.id).student_balance(student.id)

        assert balance.total_due == Decimal("1700.00")
        assert balance.total_paid == Decimal("400.00")
        assert balance.balance == Decimal("1300.00")
        assert balance.allocated == Decimal("400.00")

    async def test_pending_and_voided_payments_do_not_count(
        self, db_session: AsyncSession, school, gateway, notifier
    ):
        await _bill_class(db_session, school, "Tuition", "1000")
        student = school.students[1]
        voided = await _pay(db_session, school, student, "300", notifier=notifier)
        await PaymentService(db_session, school.tenant.id).void_payment(voided.id, "Wrong student", school.admin)
        await _pay(
            db_session, school, student, "500",
            method=PaymentMethod.MOBILE_MONEY, gateway=gateway, notifier=notifier,
        )

        balance = await BalanceService(db_session, school.tenant.id).student_balance(student.id)

        assert balance.total_paid == Decimal("0.00")
        assert balance.balance == Decimal("1000.00")

    async def test_overpayment_gives_negative_balance(self, db_session: AsyncSession, school, notifier):
        await _bill_class(db_session, school, "Tuition", "100")
        student = school.students[2]
        await _pay(db_session, school, student, "250", notifier=notifier)

        balance = await BalanceService(db_session, school.tenant.id).student_balance(student.id)

        assert balance.balance == Decimal("-150.00")
        assert balance.allocated == Decimal("100.00")


class TestStatement:
    async def test_running_balance(self, db_session: AsyncSession, school, notifier):
        await _bill_class(db_session, school, "Tuition", "1000")
        student = school.students[1]
        first = await _pay(db_session, school, student, "300", notifier=notifier)
        await _pay(db_session, school, student, "200", notifier=notifier)

        statement = await BalanceService(db_session, school.tenant.id).student_statement(student.id)

        assert statement.student_name == "Daliso Mwale"
        assert [e.entry_type for e in statement.entries] == ["DEBIT", "CREDIT", "CREDIT"]
        assert [e.balance for e in statement.entries] == [
            Decimal("1000.00"),
            Decimal("700.00"),
            Decimal("500.00"),
        ]
        assert statement.entries[0].description == "Tuition"
        assert statement.entries[1].reference == first.receipt_number
        assert statement.entries[1].description == "Payment - Cash"
        assert statement.closing_balance == Decimal("500.00")


class TestTenantSummary:
    async def test_summary(self, db_session: AsyncSession, school, gateway, notifier):
        await _bill_class(db_session, school, "Tuition", "1000")
        await _pay(db_session, school, school.students[0], "1000", notifier=notifier)
        await _pay(db_session, school, school.students[1], "400", notifier=notifier)
        await _pay(
            db_session, school, school.students[2], "100",
            method=PaymentMethod.MOBILE_MONEY, gateway=gateway, notifier=notifier,
        )

        summary = await BalanceService(db_session, school.tenant.id).tenant_summary()

        assert summary.total_due == Decimal("3000.00")
        assert summary.revenue == Decimal("1400.00")
        assert summary.outstanding == Decimal("1600.00")
        assert summary.overdue_students == 2
        assert summary.pending_payments == 1
        assert summary.revenue_by_method == {"CASH": Decimal("1400.00")}



class TestOutstandingFees:
    async def _bill_with_due_date(self, db: AsyncSession, school, name: str, amount: str, due: date) -> None:
        template = await FeeCatalogService(db, school.tenant.id).create_template(
            FeeTemplateCreate(name=name, amount=Decimal(amount))
        )
        await FeeAssignmentService(db, school.tenant.id).assign_fee_to_class(
            template.id, school.school_class.id, due_date=due
        )

    async def test_lists_students_still_owing(self, db_session: AsyncSession, school, notifier):
        await self._bill_with_due_date(db_session, school, "Tuition", "1000", date(2026, 2, 15))
        await self._bill_with_due_date(db_session, school, "Sports", "200", date(2026, 3, 31))
        await _pay(db_session, school, school.students[0], "1200", notifier=notifier)
        await _pay(db_session, school, school.students[1], "1000", notifier=notifier)

        students = await BalanceService(db_session, school.tenant.id).students_with_outstanding_fees(
            today=date(2026, 3, 1)
        )

        assert [s.student_name for s in students] == ["Daliso Mwale", "Esther Zulu"]
        daliso, esther = students
        assert daliso.outstanding == Decimal("200.00")
        assert daliso.earliest_due_date == date(2026, 3, 31)
        assert daliso.is_overdue is False
        assert daliso.class_name == "Grade 5 Blue"
        assert daliso.fee_count == 2
        assert esther.outstanding == Decimal("1200.00")
        assert esther.earliest_due_date == date(2026, 2, 15)
        assert esther.is_overdue is True

    async def test_inactive_students_left_out(self, db_session: AsyncSession, school):
        await _bill_class(db_session, school, "Tuition", "500")
        school.students[2].status = StudentStatus.INACTIVE.value
        await db_session.commit()

        students = await BalanceService(db_session, school.tenant.id).students_with_outstanding_fees()

        assert [s.student_name for s in students] == ["Daliso Mwale", "Chipo Phiri"]
        assert all(s.earliest_due_date is None and not s.is_overdue for s in students)

    async def test_reminders_counted_per_guardian(self, db_session: AsyncSession, school, notifier, sender):
        await self._bill_with_due_date(db_session, school, "Tuition", "1000", date(2026, 2, 15))

        result = await BalanceService(db_session, school.tenant.id).send_fee_reminders(
            notifier, today=date(2026, 3, 1)
        )

        # Only Chipo's guardian has contact details
        assert (result.total, result.sent, result.failed) == (3, 1, 2)
        await notifier.drain()
        assert len(sender.sent) == 1
        reminder = sender.sent[0]
        assert reminder.recipient == "parent@greenfield.test"
        assert reminder.phone == "+260971111111"
        assert reminder.subject == "OVERDUE: Fee reminder for Chipo Phiri - Greenfield Academy"
        assert "ZMW 1,000.00" in reminder.body
        assert "15 February 2026" in reminder.body

    async def test_reminders_for_selected_students(self, db_session: AsyncSession, school, notifier, sender):
        await _bill_class(db_session, school, "Tuition", "1000")
        school.students[1].guardian_email = "mwale@example.test"
        await db_session.commit()

        result = await BalanceService(db_session, school.tenant.id).send_fee_reminders(
            notifier, student_ids=[school.students[1].id]
        )

        assert (result.total, result.sent, result.failed) == (1, 1, 0)
        await notifier.drain()
        assert [n.recipient for n in sender.sent] == ["mwale@example.test"]
        assert not sender.sent[0].subject.startswith("OVERDUE")

    async def test_queue_failure_counted_not_raised(self, db_session: AsyncSession, school):
        await _bill_class(db_session, school, "Tuition", "1000")
        broken = BrokenNotifier()

        result = await BalanceService(db_session, school.tenant.id).send_fee_reminders(broken)

        assert broken.calls == 1
        assert (result.total, result.sent, result.failed) == (3, 0, 3)

class TestBalanceAPI:
    async def test_parent_sees_own_child(self, client: AsyncClient, school):
        response = await client.get(
            f"/api/v1/balances/students/{school.students[0].id}", headers=auth_headers(school.parent)
        )
        assert response.status_code == 200
        assert Decimal(str(response.json()["data"]["balance"])) == Decimal("0")

    async def test_parent_cannot_see_other_child(self, client: AsyncClient, school):
        response = await client.get(
            f"/api/v1/balances/students/{school.students[1].id}/statement",
            headers=auth_headers(school.parent),
        )
        assert response.status_code == 403

    async def test_summary_is_staff_only(self, client: AsyncClient, school):
        denied = await client.get("/api/v1/balances/summary", headers=auth_headers(school.parent))
        allowed = await client.get("/api/v1/balances/summary", headers=auth_headers(school.bursar))
        assert denied.status_code == 403
        assert allowed.status_code == 200

    async def test_outstanding_list_is_staff_only(self, client: AsyncClient, db_session: AsyncSession, school):
        await _bill_class(db_session, school, "Tuition", "750")

        denied = await client.get("/api/v1/balances/outstanding", headers=auth_headers(school.parent))
        allowed = await client.get("/api/v1/balances/outstanding", headers=auth_headers(school.bursar))

        assert denied.status_code == 403
        assert allowed.status_code == 200
        data = allowed.json()["data"]
        assert len(data) == 3
        assert Decimal(str(data[0]["outstanding"])) == Decimal("750.00")

    async def test_send_reminders_endpoint(
        self, client: AsyncClient, db_session: AsyncSession, school, notifier, sender
    ):
        await _bill_class(db_session, school, "Tuition", "750")

        denied = await client.post("/api/v1/balances/reminders", headers=auth_headers(school.parent))
        response = await client.post(
            "/api/v1/balances/reminders",
            json={"student_ids": [school.students[0].id]},
            headers=auth_headers(school.admin),
        )

        assert denied.status_code == 403
        assert response.status_code == 200
        assert response.json()["data"] == {"total": 1, "sent": 1, "failed": 0}
        await notifier.drain()
        assert sender.sent[0].subject.startswith("Fee reminder for Chipo Phiri")
