"""Outbound client for the mobile-money collection provider."""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import httpx

from src.core.config import settings
from src.core.exceptions import GatewayError

logger = logging.getLogger(__name__)


@dataclass
class CollectionHandle:
    """Provider acknowledgement of a collection request."""

    reference: str
    provider_reference: str | None = None
    status: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"{response.status_code}: {response.text[:200]}"
    if isinstance(body, dict):
        message = body.get("message") or body.get("error")
        if message:
            return str(message)
    return f"Payment gateway returned {response.status_code}"


class GatewayClient:
    """
    Sends collection requests. One attempt per call: a failed initiation is
    final for the ledger, so nothing here retries.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        country: str | None = None,
        fee_bearer: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url if base_url is not None else settings.gateway_base_url
        self.api_token = api_token if api_token is not None else settings.gateway_api_token
        self.country = country or settings.gateway_country
        self.fee_bearer = fee_bearer or settings.gateway_fee_bearer
        self.timeout = timeout if timeout is not None else settings.gateway_timeout_seconds
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_token)

    async def initiate_collection(
        self, amount: Decimal, phone: str, reference: str, operator: str
    ) -> CollectionHandle:
        """
        Ask the provider to collect ``amount`` from ``phone``.

        Raises GatewayError on a non-2xx answer, a timeout or a transport error.
        """
        if not self.configured:
            # Startup refuses to run unconfigured in production
            raise GatewayError("Payment gateway is not configured")

        payload = {
            "amount": float(amount),
            "phone": phone,
            "reference": reference,
            "operator": operator,
            "country": self.country,
            "bearer": self.fee_bearer,
        }
        headers = {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.base_url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            logger.warning("gateway timeout for %s: %s", reference, exc)
            raise GatewayError("Payment gateway timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("gateway transport error for %s: %s", reference, exc)
            raise GatewayError(f"Payment gateway unreachable: {exc}") from exc

        if not response.is_success:
            message = _error_message(response)
            logger.warning("gateway rejected %s: %s", reference, message)
            raise GatewayError(message)

        try:
            body = response.json()
        except ValueError:
            body = {}
        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            data = body if isinstance(body, dict) else {}

        logger.info("gateway accepted collection %s", reference)
        return CollectionHandle(
            reference=reference,
            provider_reference=data.get("lencoReference") or data.get("id") or data.get("reference"),
            status=data.get("status"),
            raw=body if isinstance(body, dict) else {},
        )


def get_gateway_client() -> GatewayClient:
    """FastAPI dependency; tests override it with a fake."""
    return GatewayClient()
