from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


def _jsonable(value: Any) -> Any:
    """Money, dates and enums as strings so the JSON column accepts them."""
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


class AuditService:
    """
    Writes the audit trail. Entries are flushed into the caller's transaction,
    so a rolled-back ledger change leaves no audit row behind.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: int,
        tenant_id: int | None = None,
        user_id: int | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        audit_log = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=_jsonable(old_values) if old_values is not None else None,
            new_values=_jsonable(new_values) if new_values is not None else None,
            comment=comment,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def list_for_entity(
        self, entity_type: str, entity_id: int, tenant_id: int | None = None
    ) -> list[AuditLog]:
        """History of one entity, oldest first."""
        query = select(AuditLog).where(
            AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id
        )
        if tenant_id is not None:
            query = query.where(AuditLog.tenant_id == tenant_id)
        result = await self.db.execute(query.order_by(AuditLog.id))
        return list(result.scalars().all())
