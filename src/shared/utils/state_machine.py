"""Ledger status transitions enforced with compare-and-set writes.

A row may be advanced concurrently by the request that created it, by the
gateway webhook and by an administrator. Instead of read-then-write, every
transition is a single ``UPDATE ... WHERE id = :id AND status IN (:sources)``
and the caller learns from the affected row count whether it won.
"""

from collections.abc import Mapping
from enum import StrEnum
from typing import Any

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession


class LedgerStateMachine:
    """Allowed status transitions for one ledger table."""

    def __init__(self, transitions: Mapping[str, frozenset[str]]):
        self.transitions = {str(k): frozenset(str(t) for t in v) for k, v in transitions.items()}

    def can_transition(self, current: str, target: str) -> bool:
        return str(target) in self.transitions.get(str(current), frozenset())

    def is_terminal(self, status: str) -> bool:
        return str(status) in self.transitions and not self.transitions[str(status)]

    def sources_for(self, target: str) -> frozenset[str]:
        """All statuses from which ``target`` can be reached in one step."""
        return frozenset(
            source for source, targets in self.transitions.items() if str(target) in targets
        )

    async def advance(
        self,
        db: AsyncSession,
        model: Any,
        row_id: int,
        target: str | StrEnum,
        **values: Any,
    ) -> bool:
        """
        Move ``model`` row ``row_id`` to ``target`` if its current status allows it.

        Returns True when this call performed the transition, False when the row
        was already elsewhere (including already at ``target``). Instances of the
        row loaded in ``db`` are stale afterwards; reload with populate_existing.
        """
        target_value = target.value if isinstance(target, StrEnum) else str(target)
        sources = self.sources_for(target_value)
        if not sources:
            return False

        stmt = (
            update(model)
            .where(model.id == row_id, model.status.in_(sorted(sources)))
            .values(status=target_value, **values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        return result.rowcount == 1
