"""Service for Payments module."""

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditService
from src.core.auth.models import User
from src.core.config import settings
from src.core.documents.number_generator import DocumentNumberGenerator
from src.core.exceptions import (
    AuthorizationError,
    ConflictError,
    DuplicateError,
    GatewayError,
    NotFoundError,
    ValidationError,
)
from src.core.notifications import (
    NotificationQueue,
    build_payment_failure,
    build_payment_receipt,
    notification_queue,
)
from src.integrations.gateway.client import GatewayClient
from src.integrations.gateway.references import is_reserved, new_student_reference
from src.modules.fees.service import FeeAssignmentService, get_tenant_student
from src.modules.payments.models import (
    PAYMENT_STATE_MACHINE,
    Payment,
    PaymentMethod,
    PaymentStatus,
)
from src.modules.payments.schemas import PaymentCreate, PaymentFilters
from src.modules.students.models import Student
from src.modules.tenants.models import Tenant
from src.shared.utils.money import ZERO, apply_surcharge, round_money

logger = logging.getLogger(__name__)

RECEIPT_PREFIX = "RCP"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PaymentService:
    """Records payments for one tenant and moves them through their lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        tenant_id: int,
        gateway: GatewayClient | None = None,
        notifier: NotificationQueue | None = None,
    ):
        self.db = db
        self.tenant_id = tenant_id
        self.gateway = gateway or GatewayClient()
        self.notifier = notifier or notification_queue
        self.audit = AuditService(db)

    # --- Authorization ---

    def authorize_payer(self, actor: User, student: Student) -> None:
        """
        Staff of the school may pay for any of its students. A parent may pay
        for a student linked to their account or, when the student has no
        linked account, one whose guardian email is theirs.
        """
        if actor.tenant_id != self.tenant_id:
            raise AuthorizationError("Not authorized for this school")
        if actor.is_staff:
            return
        if actor.is_parent:
            if student.parent_id is not None:
                if student.parent_id == actor.id:
                    return
            elif (
                student.guardian_email
                and actor.email
                and student.guardian_email.strip().lower() == actor.email.strip().lower()
            ):
                return
        raise AuthorizationError("Not authorized to pay for this student")

    # --- Create ---

    async def _resolve_transaction_id(self, data: PaymentCreate) -> str:
        if data.method == PaymentMethod.MOBILE_MONEY:
            if data.transaction_id:
                raise ValidationError(
                    "transaction_id is generated for mobile money payments", field="transaction_id"
                )
            return new_student_reference()

        if not data.transaction_id or not data.transaction_id.strip():
            return f"PAY-{uuid.uuid4().hex.upper()}"

        transaction_id = data.transaction_id.strip()
        if is_reserved(transaction_id):
            raise ValidationError(
                "transaction_id uses a prefix reserved for gateway references",
                field="transaction_id",
            )
        exists = await self.db.scalar(
            select(Payment.id).where(
                Payment.tenant_id == self.tenant_id, Payment.transaction_id == transaction_id
            )
        )
        if exists:
            raise DuplicateError("Payment", "transaction_id", transaction_id)
        return transaction_id

    async def create_payment(self, data: PaymentCreate, actor: User) -> tuple[Payment, bool]:
        """
        Record a payment.

        Cash and bank deposits complete immediately. Mobile money is stored as
        PENDING, the gateway is asked to collect, and the row moves to
        PROCESSING on acceptance or FAILED on any gateway error (re-raised with
        the payment id). Returns (payment, awaiting_gateway).
        """
        student = await get_tenant_student(self.db, self.tenant_id, data.student_id)
        self.authorize_payer(actor, student)
        requested = round_money(data.amount)
        if requested <= 0:
            raise ValidationError("amount must be at least 0.01", field="amount")
        transaction_id = await self._resolve_transaction_id(data)

        if data.method == PaymentMethod.MOBILE_MONEY:
            return await self._create_mobile_money(data, actor, student, requested, transaction_id), True
        return await self._create_immediate(data, actor, student, requested, transaction_id), False

    async def _create_immediate(
        self, data: PaymentCreate, actor: User, student: Student, requested, transaction_id: str
    ) -> Payment:
        receipt_number = await DocumentNumberGenerator(self.db).generate(RECEIPT_PREFIX, self.tenant_id)
        payment = Payment(
            tenant_id=self.tenant_id,
            student_id=student.id,
            amount=requested,
            requested_amount=requested,
            surcharge=ZERO,
            method=data.method.value,
            status=PaymentStatus.COMPLETED.value,
            transaction_id=transaction_id,
            receipt_number=receipt_number,
            notes=data.notes,
            recorded_by_id=actor.id,
            completed_at=_now(),
        )
        self.db.add(payment)
        await self.db.flush()

        allocated = await FeeAssignmentService(self.db, self.tenant_id).allocate_payment(
            student.id, payment.amount
        )

        await self.audit.log(
            action="payment.create",
            entity_type="Payment",
            entity_id=payment.id,
            entity_identifier=transaction_id,
            tenant_id=self.tenant_id,
            user_id=actor.id,
            new_values={
                "student_id": student.id,
                "amount": str(payment.amount),
                "method": payment.method,
                "status": payment.status,
                "allocated": str(allocated),
            },
        )
        await self.db.commit()
        logger.info("payment %s COMPLETED (%s %s)", payment.id, payment.method, payment.amount)

        payment = await self.get_payment(payment.id)
        await self._notify(payment, failed=False)
        return payment

    async def _create_mobile_money(
        self, data: PaymentCreate, actor: User, student: Student, requested, transaction_id: str
    ) -> Payment:
        surcharge, gross = apply_surcharge(requested, settings.mobile_money_surcharge_rate)
        payment = Payment(
            tenant_id=self.tenant_id,
            student_id=student.id,
            amount=gross,
            requested_amount=requested,
            surcharge=surcharge,
            method=PaymentMethod.MOBILE_MONEY.value,
            operator=data.operator.value,
            phone_number=data.phone_number.strip(),
            status=PaymentStatus.PENDING.value,
            transaction_id=transaction_id,
            notes=data.notes,
            recorded_by_id=actor.id,
        )
        self.db.add(payment)
        await self.db.flush()

        await self.audit.log(
            action="payment.create",
            entity_type="Payment",
            entity_id=payment.id,
            entity_identifier=transaction_id,
            tenant_id=self.tenant_id,
            user_id=actor.id,
            new_values={
                "student_id": student.id,
                "amount": str(gross),
                "surcharge": str(surcharge),
                "method": payment.method,
                "operator": payment.operator,
            },
        )
        # The row must exist before the provider can call back about it
        await self.db.commit()
        payment_id = payment.id

        try:
            handle = await self.gateway.initiate_collection(
                amount=gross,
                phone=payment.phone_number,
                reference=transaction_id,
                operator=payment.operator,
            )
        except Exception as exc:
            message = exc.message if isinstance(exc, GatewayError) else f"Payment gateway error: {exc}"
            if not isinstance(exc, GatewayError):
                logger.exception("unexpected gateway failure for payment %s", payment_id)
            await self._fail_initiation(payment_id, message, actor.id)
            raise GatewayError(message, payment_id=payment_id) from exc

        advanced = await PAYMENT_STATE_MACHINE.advance(
            self.db,
            Payment,
            payment_id,
            PaymentStatus.PROCESSING,
            provider_reference=handle.provider_reference,
        )
        await self.db.commit()
        if advanced:
            logger.info("payment %s PROCESSING, gateway ref %s", payment_id, handle.provider_reference)
        else:
            # The callback got there first
            logger.info("payment %s already finalised before PROCESSING", payment_id)
        return await self.get_payment(payment_id)

    async def _fail_initiation(self, payment_id: int, reason: str, actor_id: int | None) -> None:
        await PAYMENT_STATE_MACHINE.advance(
            self.db, Payment, payment_id, PaymentStatus.FAILED, failure_reason=reason[:500]
        )
        await self.audit.log(
            action="payment.fail",
            entity_type="Payment",
            entity_id=payment_id,
            tenant_id=self.tenant_id,
            user_id=actor_id,
            new_values={"status": PaymentStatus.FAILED.value, "reason": reason},
            comment="Gateway initiation failed",
        )
        await self.db.commit()
        logger.warning("payment %s FAILED at initiation: %s", payment_id, reason)

    # --- Gateway outcomes ---

    async def complete_from_gateway(self, payment_id: int) -> bool:
        """
        Apply a successful collection. Returns False if another actor already
        moved the row to a terminal state; nothing is re-applied then.
        """
        won = await PAYMENT_STATE_MACHINE.advance(
            self.db, Payment, payment_id, PaymentStatus.COMPLETED, completed_at=_now()
        )
        if not won:
            return False

        receipt_number = await DocumentNumberGenerator(self.db).generate(RECEIPT_PREFIX, self.tenant_id)
        await self.db.execute(
            update(Payment)
            .where(Payment.id == payment_id)
            .values(receipt_number=receipt_number)
            .execution_options(synchronize_session=False)
        )
        payment = await self.get_payment(payment_id)
        allocated = await FeeAssignmentService(self.db, self.tenant_id).allocate_payment(
            payment.student_id, payment.amount
        )

        await self.audit.log(
            action="payment.complete",
            entity_type="Payment",
            entity_id=payment_id,
            entity_identifier=payment.transaction_id,
            tenant_id=self.tenant_id,
            new_values={
                "status": PaymentStatus.COMPLETED.value,
                "receipt_number": receipt_number,
                "allocated": str(allocated),
            },
            comment="Confirmed by gateway callback",
        )
        await self.db.commit()
        logger.info("payment %s COMPLETED via webhook", payment_id)

        await self._notify(await self.get_payment(payment_id), failed=False)
        return True

    async def fail_from_gateway(self, payment_id: int, reason: str) -> bool:
        won = await PAYMENT_STATE_MACHINE.advance(
            self.db, Payment, payment_id, PaymentStatus.FAILED, failure_reason=reason[:500]
        )
        if not won:
            return False

        await self.audit.log(
            action="payment.fail",
            entity_type="Payment",
            entity_id=payment_id,
            tenant_id=self.tenant_id,
            new_values={"status": PaymentStatus.FAILED.value, "reason": reason},
            comment="Declined per gateway callback",
        )
        await self.db.commit()
        logger.info("payment %s FAILED via webhook: %s", payment_id, reason)

        await self._notify(await self.get_payment(payment_id), failed=True)
        return True

    # --- Void ---

    async def void_payment(self, payment_id: int, reason: str, actor: User) -> Payment:
        """
        Cancel a payment. Allowed from any status except CANCELLED; amounts
        already allocated to obligations are left as they are.
        """
        payment = await self.get_payment(payment_id)
        previous_status = payment.status

        won = await PAYMENT_STATE_MACHINE.advance(
            self.db,
            Payment,
            payment.id,
            PaymentStatus.CANCELLED,
            void_reason=reason,
            voided_at=_now(),
            voided_by_id=actor.id,
        )
        if not won:
            raise ConflictError(
                "Payment is already cancelled", details={"payment_id": payment_id}
            )

        await self.audit.log(
            action="payment.void",
            entity_type="Payment",
            entity_id=payment.id,
            entity_identifier=payment.transaction_id,
            tenant_id=self.tenant_id,
            user_id=actor.id,
            old_values={"status": previous_status},
            new_values={"status": PaymentStatus.CANCELLED.value},
            comment=reason,
        )
        await self.db.commit()
        logger.info("payment %s CANCELLED by user %s", payment.id, actor.id)
        return await self.get_payment(payment_id)

    # --- Queries ---

    async def get_payment(self, payment_id: int) -> Payment:
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.tenant_id == self.tenant_id)
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(self, filters: PaymentFilters) -> tuple[list[Payment], int]:
        """List payments of the tenant, newest first."""
        query = select(Payment).where(Payment.tenant_id == self.tenant_id)

        if filters.student_id:
            query = query.where(Payment.student_id == filters.student_id)
        if filters.status:
            query = query.where(Payment.status == filters.status.value)
        if filters.method:
            query = query.where(Payment.method == filters.method.value)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Payment.created_at.desc(), Payment.id.desc())
        query = query.offset((filters.page - 1) * filters.limit).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    # --- Notifications ---

    async def _notify(self, payment: Payment, failed: bool) -> None:
        """Queue the guardian message. Failures are logged, never raised."""
        try:
            tenant_name = await self.db.scalar(select(Tenant.name).where(Tenant.id == self.tenant_id))
            student = payment.student
            build = build_payment_failure if failed else build_payment_receipt
            self.notifier.enqueue(build(payment, student, tenant_name or "School", settings.currency))
        except Exception:
            logger.exception("could not queue notification for payment %s", payment.id)
