from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.documents.models import DocumentSequence

# Platform-level documents (subscription receipts) use tenant 0
PLATFORM_TENANT = 0


class DocumentNumberGenerator:
    """
    Generates sequential receipt numbers in format: PREFIX-YYYY-NNNNNN

    Sequences are independent per tenant, so two schools can both issue
    RCP-2026-000001.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def generate(
        self, prefix: str, tenant_id: int = PLATFORM_TENANT, year: int | None = None
    ) -> str:
        """
        Generate next document number for given tenant, prefix and year.

        Uses SELECT FOR UPDATE to ensure uniqueness in concurrent scenarios.
        """
        if year is None:
            year = datetime.now().year

        stmt = (
            select(DocumentSequence)
            .where(
                DocumentSequence.tenant_id == tenant_id,
                DocumentSequence.prefix == prefix,
                DocumentSequence.year == year,
            )
            .with_for_update()
        )
        result = await self.session.execute(stmt)
        sequence = result.scalar_one_or_none()

        if sequence is None:
            sequence = DocumentSequence(tenant_id=tenant_id, prefix=prefix, year=year, last_number=0)
            self.session.add(sequence)
            await self.session.flush()

            result = await self.session.execute(stmt)
            sequence = result.scalar_one()

        sequence.last_number += 1
        await self.session.flush()

        return f"{prefix}-{year}-{sequence.last_number:06d}"
