"""
Applies gateway callbacks to the payment ledgers.

Callbacks arrive at least once and in any order, and may race a void or a
manual confirmation. Every state change goes through a conditional update,
so a duplicate or late callback finds nothing to do and is acknowledged.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import IntegrityFault
from src.core.notifications import NotificationQueue
from src.integrations.gateway.references import (
    StudentPaymentRef,
    SubscriptionPaymentRef,
    UnknownReferenceError,
    parse_reference,
)
from src.integrations.gateway.schemas import CollectionOutcome, WebhookEvent
from src.modules.payments.models import Payment, PaymentStatus
from src.modules.payments.service import PaymentService
from src.modules.subscriptions.models import SubscriptionPayment, SubscriptionPaymentStatus
from src.modules.subscriptions.service import DEFAULT_FAILURE_REASON, SubscriptionService

logger = logging.getLogger(__name__)


class ReconcileStatus(Enum):
    PROCESSED = "processed"
    ALREADY_PROCESSED = "already_processed"
    FINALISED_ELSEWHERE = "finalised_elsewhere"
    IGNORED = "ignored"
    MISSING_REFERENCE = "missing_reference"
    UNKNOWN_FORMAT = "unknown_format"
    NOT_FOUND = "not_found"
    ERROR = "error"


@dataclass(frozen=True)
class ReconcileOutcome:
    status: ReconcileStatus
    http_status: int
    message: str


OUTCOMES = {
    ReconcileStatus.PROCESSED: (200, "Webhook received"),
    ReconcileStatus.ALREADY_PROCESSED: (200, "Payment already processed"),
    ReconcileStatus.FINALISED_ELSEWHERE: (200, "Payment already finalised"),
    ReconcileStatus.IGNORED: (200, "Webhook received"),
    ReconcileStatus.MISSING_REFERENCE: (400, "No reference provided"),
    ReconcileStatus.UNKNOWN_FORMAT: (400, "Unknown reference format"),
    ReconcileStatus.NOT_FOUND: (404, "Payment not found"),
    ReconcileStatus.ERROR: (500, "Internal error"),
}


def outcome(status: ReconcileStatus) -> ReconcileOutcome:
    http_status, message = OUTCOMES[status]
    return ReconcileOutcome(status=status, http_status=http_status, message=message)


class WebhookReconciler:
    def __init__(self, db: AsyncSession, notifier: NotificationQueue | None = None):
        self.db = db
        self.notifier = notifier

    async def reconcile(self, event: WebhookEvent) -> ReconcileOutcome:
        """Never raises; every path maps to an acknowledgement."""
        if not event.reference:
            logger.warning("gateway callback without reference")
            return outcome(ReconcileStatus.MISSING_REFERENCE)

        try:
            reference = parse_reference(event.reference)
        except UnknownReferenceError:
            logger.error("gateway callback with unknown reference format: %s", event.reference)
            return outcome(ReconcileStatus.UNKNOWN_FORMAT)

        try:
            if isinstance(reference, SubscriptionPaymentRef):
                return await self._reconcile_subscription(reference, event)
            return await self._reconcile_student_payment(reference, event)
        except IntegrityFault as fault:
            logger.error("integrity fault: %s", fault.message)
            return outcome(ReconcileStatus.NOT_FOUND)
        except Exception:
            # Boundary: the provider only understands the status code
            await self.db.rollback()
            logger.exception("gateway callback for %s failed", event.reference)
            return outcome(ReconcileStatus.ERROR)

    async def _reconcile_student_payment(
        self, reference: StudentPaymentRef, event: WebhookEvent
    ) -> ReconcileOutcome:
        payment = await self.db.scalar(
            select(Payment)
            .where(Payment.transaction_id == reference.value)
            .execution_options(populate_existing=True)
        )
        if payment is None:
            raise IntegrityFault(reference.value)

        if payment.status == PaymentStatus.COMPLETED.value:
            return outcome(ReconcileStatus.ALREADY_PROCESSED)

        service = PaymentService(self.db, payment.tenant_id, notifier=self.notifier)
        if event.outcome == CollectionOutcome.SUCCESSFUL:
            applied = await service.complete_from_gateway(payment.id)
        elif event.outcome == CollectionOutcome.FAILED:
            applied = await service.fail_from_gateway(payment.id, event.reason or DEFAULT_FAILURE_REASON)
        else:
            logger.info("gateway callback for %s with status %r ignored", reference.value, event.status)
            return outcome(ReconcileStatus.IGNORED)

        return self._result(applied, reference.value)

    async def _reconcile_subscription(
        self, reference: SubscriptionPaymentRef, event: WebhookEvent
    ) -> ReconcileOutcome:
        payment = await self.db.scalar(
            select(SubscriptionPayment)
            .where(SubscriptionPayment.external_ref == reference.value)
            .execution_options(populate_existing=True)
        )
        if payment is None:
            raise IntegrityFault(reference.value)

        if payment.status == SubscriptionPaymentStatus.COMPLETED.value:
            return outcome(ReconcileStatus.ALREADY_PROCESSED)

        service = SubscriptionService(self.db, payment.tenant_id)
        if event.outcome == CollectionOutcome.SUCCESSFUL:
            applied = await service.activate_subscription_from_payment(payment.id)
        elif event.outcome == CollectionOutcome.FAILED:
            applied = await service.mark_payment_failed(payment.id, event.reason or DEFAULT_FAILURE_REASON)
        else:
            logger.info("gateway callback for %s with status %r ignored", reference.value, event.status)
            return outcome(ReconcileStatus.IGNORED)

        return self._result(applied, reference.value)

    def _result(self, applied: bool, reference: str) -> ReconcileOutcome:
        if applied:
            return outcome(ReconcileStatus.PROCESSED)
        # Lost the race: completed, failed or voided by someone else in between
        logger.info("gateway callback for %s found the payment already finalised", reference)
        return outcome(ReconcileStatus.FINALISED_ELSEWHERE)
