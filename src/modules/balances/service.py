"""Balance views derived from obligations and completed payments, and fee reminders."""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.config import settings
from src.core.notifications import NotificationQueue
from src.core.notifications.receipts import METHOD_LABELS, build_fee_reminder
from src.modules.balances.schemas import (
    FeeReminderResult,
    OutstandingStudent,
    StatementEntry,
    StudentBalance,
    StudentStatement,
    TenantSummary,
)
from src.modules.fees.models import FeeObligation, FeeTemplate
from src.modules.fees.service import get_tenant_student
from src.modules.payments.models import Payment, PaymentStatus
from src.modules.students.models import Student, StudentStatus
from src.modules.tenants.models import Tenant
from src.shared.utils.money import ZERO, round_money, to_decimal

logger = logging.getLogger(__name__)


def _sort_key(value: datetime | None) -> datetime:
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BalanceService:
    """Recomputed on every call; nothing here is cached."""

    def __init__(self, db: AsyncSession, tenant_id: int):
        self.db = db
        self.tenant_id = tenant_id

    async def _total_due(self, student_id: int | None = None):
        query = select(func.coalesce(func.sum(FeeObligation.amount_due), 0)).where(
            FeeObligation.tenant_id == self.tenant_id
        )
        if student_id is not None:
            query = query.where(FeeObligation.student_id == student_id)
        return round_money(to_decimal(await self.db.scalar(query)))

    async def _total_paid(self, student_id: int | None = None):
        query = select(func.coalesce(func.sum(Payment.amount), 0)).where(
            Payment.tenant_id == self.tenant_id,
            Payment.status == PaymentStatus.COMPLETED.value,
        )
        if student_id is not None:
            query = query.where(Payment.student_id == student_id)
        return round_money(to_decimal(await self.db.scalar(query)))

    async def student_balance(self, student_id: int) -> StudentBalance:
        await get_tenant_student(self.db, self.tenant_id, student_id)
        total_due = await self._total_due(student_id)
        total_paid = await self._total_paid(student_id)
        allocated = to_decimal(
            await self.db.scalar(
                select(func.coalesce(func.sum(FeeObligation.amount_paid), 0)).where(
                    FeeObligation.tenant_id == self.tenant_id,
                    FeeObligation.student_id == student_id,
                )
            )
        )
        return StudentBalance(
            student_id=student_id,
            total_due=total_due,
            total_paid=total_paid,
            balance=round_money(total_due - total_paid),
            allocated=round_money(allocated),
        )

    async def student_statement(self, student_id: int) -> StudentStatement:
        """Obligations as debits, completed payments as credits, oldest first."""
        student = await get_tenant_student(self.db, self.tenant_id, student_id)

        obligations = (
            await self.db.execute(
                select(FeeObligation, FeeTemplate.name)
                .join(FeeTemplate, FeeTemplate.id == FeeObligation.fee_template_id)
                .where(
                    FeeObligation.tenant_id == self.tenant_id,
                    FeeObligation.student_id == student_id,
                )
            )
        ).all()
        payments = (
            await self.db.execute(
                select(Payment).where(
                    Payment.tenant_id == self.tenant_id,
                    Payment.student_id == student_id,
                    Payment.status == PaymentStatus.COMPLETED.value,
                )
            )
        ).scalars().all()

        raw = []
        for obligation, template_name in obligations:
            raw.append((obligation.created_at, 0, "DEBIT", template_name, None, obligation.amount_due))
        for payment in payments:
            label = METHOD_LABELS.get(payment.method, payment.method)
            raw.append(
                (
                    payment.completed_at or payment.created_at,
                    1,
                    "CREDIT",
                    f"Payment - {label}",
                    payment.receipt_number or payment.transaction_id,
                    payment.amount,
                )
            )
        raw.sort(key=lambda item: (_sort_key(item[0]), item[1]))

        entries: list[StatementEntry] = []
        running = ZERO
        total_due = ZERO
        total_paid = ZERO
        for when, _, entry_type, description, reference, amount in raw:
            amount = round_money(amount)
            if entry_type == "DEBIT":
                running += amount
                total_due += amount
            else:
                running -= amount
                total_paid += amount
            entries.append(
                StatementEntry(
                    date=when,
                    entry_type=entry_type,
                    description=description,
                    reference=reference,
                    debit=amount if entry_type == "DEBIT" else None,
                    credit=amount if entry_type == "CREDIT" else None,
                    balance=round_money(running),
                )
            )

        return StudentStatement(
            student_id=student.id,
            student_name=student.full_name,
            entries=entries,
            total_due=round_money(total_due),
            total_paid=round_money(total_paid),
            closing_balance=round_money(running),
        )

    async def tenant_summary(self) -> TenantSummary:
        total_due = await self._total_due()
        revenue = await self._total_paid()

        due_by_student = dict(
            (
                await self.db.execute(
                    select(FeeObligation.student_id, func.sum(FeeObligation.amount_due))
                    .where(FeeObligation.tenant_id == self.tenant_id)
                    .group_by(FeeObligation.student_id)
                )
            ).all()
        )
        paid_by_student = dict(
            (
                await self.db.execute(
                    select(Payment.student_id, func.sum(Payment.amount))
                    .where(
                        Payment.tenant_id == self.tenant_id,
                        Payment.status == PaymentStatus.COMPLETED.value,
                    )
                    .group_by(Payment.student_id)
                )
            ).all()
        )
        overdue = sum(
            1
            for student_id, due in due_by_student.items()
            if to_decimal(due) > to_decimal(paid_by_student.get(student_id))
        )

        pending = await self.db.scalar(
            select(func.count(Payment.id)).where(
                Payment.tenant_id == self.tenant_id,
                Payment.status.in_([PaymentStatus.PENDING.value, PaymentStatus.PROCESSING.value]),
            )
        )

        by_method_rows = (
            await self.db.execute(
                select(Payment.method, func.sum(Payment.amount))
                .where(
                    Payment.tenant_id == self.tenant_id,
                    Payment.status == PaymentStatus.COMPLETED.value,
                )
                .group_by(Payment.method)
            )
        ).all()

        return TenantSummary(
            total_due=total_due,
            revenue=revenue,
            outstanding=round_money(total_due - revenue),
            overdue_students=overdue,
            pending_payments=pending or 0,
            revenue_by_method={method: round_money(to_decimal(total)) for method, total in by_method_rows},
        )

    async def students_with_outstanding_fees(
        self, student_ids: list[int] | None = None, today: date | None = None
    ) -> list[OutstandingStudent]:
        """
        Active students whose obligations still carry an unsettled amount.

        Outstanding is the sum of amount_due - amount_paid over the student's
        obligations. The due date reported is the earliest among obligations
        not yet settled; a student is overdue once that date has passed.
        """
        today = today or datetime.now(timezone.utc).date()
        unsettled = FeeObligation.amount_due - FeeObligation.amount_paid
        totals = (
            select(
                FeeObligation.student_id.label("student_id"),
                func.sum(unsettled).label("outstanding"),
                func.min(case((unsettled > 0, FeeObligation.due_date))).label("earliest_due"),
                func.count(FeeObligation.id).label("fee_count"),
            )
            .where(FeeObligation.tenant_id == self.tenant_id)
            .group_by(FeeObligation.student_id)
            .having(func.sum(unsettled) > 0)
            .subquery()
        )
        query = (
            select(Student, totals.c.outstanding, totals.c.earliest_due, totals.c.fee_count)
            .join(totals, totals.c.student_id == Student.id)
            .where(
                Student.tenant_id == self.tenant_id,
                Student.status == StudentStatus.ACTIVE.value,
            )
            .options(selectinload(Student.school_class))
            .order_by(Student.last_name, Student.first_name, Student.id)
        )
        if student_ids:
            query = query.where(Student.id.in_(student_ids))

        rows = (await self.db.execute(query)).all()
        return [
            OutstandingStudent(
                student_id=student.id,
                student_name=student.full_name,
                class_name=student.school_class.name if student.school_class else None,
                guardian_name=student.guardian_name,
                guardian_email=student.guardian_email,
                guardian_phone=student.guardian_phone,
                outstanding=round_money(to_decimal(outstanding)),
                earliest_due_date=earliest_due,
                is_overdue=earliest_due is not None and earliest_due < today,
                fee_count=fee_count,
            )
            for student, outstanding, earliest_due, fee_count in rows
        ]

    async def send_fee_reminders(
        self,
        notifier: NotificationQueue,
        student_ids: list[int] | None = None,
        today: date | None = None,
    ) -> FeeReminderResult:
        """
        Queue one reminder per student with an outstanding balance.

        Students without any guardian contact, and reminders the queue
        refuses, are counted as failed; the rest as sent.
        """
        students = await self.students_with_outstanding_fees(student_ids, today)
        tenant_name = await self.db.scalar(select(Tenant.name).where(Tenant.id == self.tenant_id))

        sent = 0
        failed = 0
        for entry in students:
            if not entry.guardian_email and not entry.guardian_phone:
                logger.warning("no guardian contact for student %s, reminder skipped", entry.student_id)
                failed += 1
                continue
            notification = build_fee_reminder(
                entry, self.tenant_id, tenant_name or "School", settings.currency
            )
            try:
                notifier.enqueue(notification)
            except Exception:
                logger.exception("could not queue fee reminder for student %s", entry.student_id)
                failed += 1
            else:
                sent += 1

        logger.info(
            "fee reminders for tenant %s: %d queued, %d failed", self.tenant_id, sent, failed
        )
        return FeeReminderResult(total=len(students), sent=sent, failed=failed)
