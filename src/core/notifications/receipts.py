"""Receipt, failure and reminder messages sent to guardians."""

from src.core.notifications.queue import Notification

METHOD_LABELS = {
    "CASH": "Cash",
    "MOBILE_MONEY": "Mobile Money",
    "BANK_DEPOSIT": "Bank Deposit",
}


def build_payment_receipt(payment, student, tenant_name: str, currency: str = "ZMW") -> Notification:
    method = METHOD_LABELS.get(payment.method, payment.method)
    reference = payment.receipt_number or payment.transaction_id
    when = payment.completed_at.strftime("%d %b %Y %H:%M") if payment.completed_at else ""

    body = "\n".join(
        [
            f"Dear {student.guardian_name or 'Parent/Guardian'},",
            "",
            f"{tenant_name} has received a payment for {student.full_name}.",
            "",
            f"Amount: {currency} {payment.amount:,.2f}",
            f"Method: {method}",
            f"Reference: {reference}",
            f"Date: {when}",
            "",
            "Thank you.",
        ]
    )
    return Notification(
        tenant_id=payment.tenant_id,
        recipient=student.guardian_email,
        phone=student.guardian_phone,
        subject=f"Payment receipt {reference} - {student.full_name}",
        body=body,
        sms_body=(
            f"{tenant_name}: {currency} {payment.amount:,.2f} received for "
            f"{student.full_name}. Ref {reference}."
        ),
    )


def build_payment_failure(payment, student, tenant_name: str, currency: str = "ZMW") -> Notification:
    reason = payment.failure_reason or "The payment was not authorised"
    return Notification(
        tenant_id=payment.tenant_id,
        recipient=student.guardian_email,
        phone=student.guardian_phone,
        subject=f"Payment not completed - {student.full_name}",
        body=(
            f"The mobile money payment of {currency} {payment.amount:,.2f} for "
            f"{student.full_name} to {tenant_name} did not go through.\n\n"
            f"Reason: {reason}\nReference: {payment.transaction_id}"
        ),
        sms_body=f"{tenant_name}: payment {payment.transaction_id} failed. {reason}",
    )


def build_fee_reminder(entry, tenant_id: int, tenant_name: str, currency: str = "ZMW") -> Notification:
    """Balance reminder for one row of the outstanding-fees list."""
    urgency = "OVERDUE: " if entry.is_overdue else ""
    due = entry.earliest_due_date
    due_line = f" Payment is due by {due:%d %B %Y}." if due else ""
    body = "\n".join(
        [
            f"Dear {entry.guardian_name or 'Parent/Guardian'},",
            "",
            f"This is a reminder that {entry.student_name} has an outstanding fee balance "
            f"of {currency} {entry.outstanding:,.2f}.{due_line}",
            "",
            "Please make the payment at your earliest convenience.",
            "",
            "Thank you,",
            tenant_name,
        ]
    )
    return Notification(
        tenant_id=tenant_id,
        recipient=entry.guardian_email,
        phone=entry.guardian_phone,
        subject=f"{urgency}Fee reminder for {entry.student_name} - {tenant_name}",
        body=body,
        sms_body=(
            f"{tenant_name}: {urgency}{entry.student_name} owes {currency} {entry.outstanding:,.2f}."
            f"{due_line}"
        ),
    )
