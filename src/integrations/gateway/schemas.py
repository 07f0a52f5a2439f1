"""Inbound callback payload from the collection provider."""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict


class CollectionOutcome(StrEnum):
    SUCCESSFUL = "successful"
    FAILED = "failed"
    OTHER = "other"


class WebhookEvent(BaseModel):
    """
    Normalised callback. Providers send either ``{"data": {...}}`` or the
    same fields at the top level; both are accepted.
    """

    model_config = ConfigDict(extra="ignore")

    reference: str | None = None
    status: str | None = None
    reason: str | None = None
    provider_reference: str | None = None
    raw: dict[str, Any] = {}

    @classmethod
    def from_payload(cls, payload: Any) -> "WebhookEvent":
        if not isinstance(payload, dict):
            return cls()
        data = payload.get("data")
        if not isinstance(data, dict):
            data = payload

        reference = data.get("reference")
        status = data.get("status")
        reason = data.get("reasonForFailure") or data.get("reason") or data.get("message")
        return cls(
            reference=str(reference).strip() if reference else None,
            status=str(status).strip().lower() if status else None,
            reason=str(reason) if reason else None,
            provider_reference=(
                str(data.get("lencoReference") or data.get("id") or "") or None
            ),
            raw=payload,
        )

    @property
    def outcome(self) -> CollectionOutcome:
        if self.status == CollectionOutcome.SUCCESSFUL.value:
            return CollectionOutcome.SUCCESSFUL
        if self.status == CollectionOutcome.FAILED.value:
            return CollectionOutcome.FAILED
        return CollectionOutcome.OTHER
