from datetime import date
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditService
from src.modules.payments.models import PaymentStatus


async def test_values_stored_as_json(db_session: AsyncSession):
    audit = AuditService(db_session)
    await audit.log(
        action="fee_template.update",
        entity_type="FeeTemplate",
        entity_id=7,
        tenant_id=1,
        old_values={"amount": Decimal("1000.00"), "due_date": None},
        new_values={"amount": Decimal("1200.00"), "due_date": date(2026, 2, 1)},
    )
    await audit.log(
        action="payment.void",
        entity_type="Payment",
        entity_id=7,
        tenant_id=1,
        new_values={"status": PaymentStatus.CANCELLED},
    )
    await db_session.commit()

    history = await audit.list_for_entity("FeeTemplate", 7, tenant_id=1)
    assert len(history) == 1
    assert history[0].old_values == {"amount": "1000.00", "due_date": None}
    assert history[0].new_values == {"amount": "1200.00", "due_date": "2026-02-01"}

    payment_history = await audit.list_for_entity("Payment", 7)
    assert payment_history[0].new_values == {"status": "CANCELLED"}
    assert await audit.list_for_entity("Payment", 7, tenant_id=2) == []
