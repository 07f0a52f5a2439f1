"""
Collection references shared with the mobile-money provider.

The prefix is the only routing signal a callback carries, so it is parsed
once at the boundary into a tagged reference:

    TXN-<opaque>  student fee payment (payments.transaction_id)
    SUB-<opaque>  tenant subscription payment (subscription_payments.external_ref)
"""

import time
import uuid
from dataclasses import dataclass

STUDENT_PAYMENT_PREFIX = "TXN-"
SUBSCRIPTION_PREFIX = "SUB-"
RESERVED_PREFIXES = (STUDENT_PAYMENT_PREFIX, SUBSCRIPTION_PREFIX)


class UnknownReferenceError(ValueError):
    """Reference does not carry a known prefix."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Unknown reference format: {reference}")


@dataclass(frozen=True)
class StudentPaymentRef:
    value: str


@dataclass(frozen=True)
class SubscriptionPaymentRef:
    value: str


CollectionRef = StudentPaymentRef | SubscriptionPaymentRef


def parse_reference(raw: str) -> CollectionRef:
    reference = (raw or "").strip()
    if reference.startswith(SUBSCRIPTION_PREFIX):
        return SubscriptionPaymentRef(reference)
    if reference.startswith(STUDENT_PAYMENT_PREFIX):
        return StudentPaymentRef(reference)
    raise UnknownReferenceError(reference)


def new_student_reference() -> str:
    return f"{STUDENT_PAYMENT_PREFIX}{uuid.uuid4().hex.upper()}"


def new_subscription_reference(tenant_id: int) -> str:
    """SUB-<epoch millis>-<tenant>-<random>; the random part keeps same-millisecond calls apart."""
    millis = int(time.time() * 1000)
    return f"{SUBSCRIPTION_PREFIX}{millis}-{tenant_id}-{uuid.uuid4().hex[:8].upper()}"


def is_reserved(reference: str) -> bool:
    """Manually entered transaction ids may not look like gateway references."""
    return reference.strip().upper().startswith(RESERVED_PREFIXES)
