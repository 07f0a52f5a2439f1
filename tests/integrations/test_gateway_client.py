import json
from decimal import Decimal

import httpx
import pytest

from src.core.exceptions import GatewayError
from src.integrations.gateway.client import GatewayClient
from src.integrations.gateway.references import (
    StudentPaymentRef,
    SubscriptionPaymentRef,
    UnknownReferenceError,
    is_reserved,
    new_student_reference,
    new_subscription_reference,
    parse_reference,
)
from src.integrations.gateway.schemas import CollectionOutcome, WebhookEvent


def _client(handler) -> GatewayClient:
    return GatewayClient(
        base_url="https://gateway.test/v2/collections/mobile-money",
        api_token="secret-token",
        country="zm",
        fee_bearer="merchant",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


class TestGatewayClient:
    async def test_posts_collection_request(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"status": True, "data": {"lencoReference": "LEN-99", "status": "pending"}}
            )

        handle = await _client(handler).initiate_collection(
            amount=Decimal("1025.00"), phone="0971234567", reference="TXN-ABC", operator="mtn"
        )

        assert seen["auth"] == "Bearer secret-token"
        assert seen["body"] == {
            "amount": 1025.0,
            "phone": "0971234567",
            "reference": "TXN-ABC",
            "operator": "mtn",
            "country": "zm",
            "bearer": "merchant",
        }
        assert handle.provider_reference == "LEN-99"
        assert handle.status == "pending"

    async def test_non_2xx_raises_with_provider_message(self):
        def handler(request):
            return httpx.Response(422, json={"status": False, "message": "Invalid phone number"})

        with pytest.raises(GatewayError) as exc_info:
            await _client(handler).initiate_collection(Decimal("10"), "1", "TXN-A", "mtn")
        assert exc_info.value.message == "Invalid phone number"

    async def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(GatewayError) as exc_info:
            await _client(handler).initiate_collection(Decimal("10"), "1", "TXN-A", "mtn")
        assert "timed out" in exc_info.value.message

    async def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GatewayError):
            await _client(handler).initiate_collection(Decimal("10"), "1", "TXN-A", "mtn")

    async def test_unconfigured_client_refuses(self):
        client = GatewayClient(base_url="", api_token="")
        with pytest.raises(GatewayError):
            await client.initiate_collection(Decimal("10"), "1", "TXN-A", "mtn")


class TestReferences:
    def test_parse(self):
        assert parse_reference("TXN-ABC") == StudentPaymentRef("TXN-ABC")
        assert parse_reference(" SUB-1-2-XYZ ") == SubscriptionPaymentRef("SUB-1-2-XYZ")

    @pytest.mark.parametrize("raw", ["", "PAY-1", "txn-abc", "INV-2026-000001"])
    def test_unknown(self, raw):
        with pytest.raises(UnknownReferenceError):
            parse_reference(raw)

    def test_generated_references_are_distinct(self):
        assert new_student_reference() != new_student_reference()
        first, second = new_subscription_reference(7), new_subscription_reference(7)
        assert first != second
        assert first.startswith("SUB-") and "-7-" in first

    def test_reserved(self):
        assert is_reserved("TXN-1")
        assert is_reserved("sub-1")
        assert not is_reserved("SLIP-0042")


class TestWebhookEvent:
    def test_nested_payload(self):
        event = WebhookEvent.from_payload(
            {"event": "collection.successful", "data": {"reference": "TXN-A", "status": "SUCCESSFUL"}}
        )
        assert event.reference == "TXN-A"
        assert event.outcome == CollectionOutcome.SUCCESSFUL

    def test_top_level_payload_with_reason(self):
        event = WebhookEvent.from_payload(
            {"reference": "SUB-1", "status": "failed", "reasonForFailure": "Insufficient funds"}
        )
        assert event.outcome == CollectionOutcome.FAILED
        assert event.reason == "Insufficient funds"

    def test_other_status(self):
        assert WebhookEvent.from_payload({"reference": "TXN-A", "status": "pay-offline"}).outcome == (
            CollectionOutcome.OTHER
        )

    def test_not_a_dict(self):
        assert WebhookEvent.from_payload(["nope"]).reference is None
