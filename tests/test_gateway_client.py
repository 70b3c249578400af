import asyncio
import base64
import json

import httpx
import pytest

from chargeflow.common.errors import GatewayUnavailable, IntentExpired, InvalidInstrument, InvalidRequest
from chargeflow.services.gateway.client import GatewayClient
from chargeflow.services.gateway.models import AuthorizationStatus, InstrumentKind

from conftest import card_selection, make_billing


def client_for(handler):
    return GatewayClient(
        base_url="https://gateway.test/v1",
        secret_key="sk_test",
        public_key="pk_test",
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


def basic(key):
    return "Basic " + base64.b64encode(f"{key}:".encode()).decode()


def test_create_intent_request_shape():
    """Secret key auth, minor-unit amount and 3DS requested on cards."""

    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"id": "pi_1", "client_secret": "pi_1_secret", "amount": 150000, "currency": "PHP",
                  "status": "awaiting_payment_method"},
        )

    intent = asyncio.run(client_for(handler).create_intent(150000, "php", "BK-1", metadata={"is_deposit": True}))
    assert seen["auth"] == basic("sk_test")
    assert seen["url"] == "https://gateway.test/v1/intents"
    assert seen["body"]["amount"] == 150000
    assert seen["body"]["currency"] == "PHP"
    assert seen["body"]["payment_method_options"] == {"card": {"request_three_d_secure": "any"}}
    assert seen["body"]["metadata"] == {"reference": "BK-1", "is_deposit": True}
    assert intent.id == "pi_1" and intent.client_secret == "pi_1_secret"
    assert intent.status is AuthorizationStatus.AWAITING_INSTRUMENT


def test_create_instrument_uses_public_key():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "pm_1"})

    selection = card_selection()
    instrument = asyncio.run(client_for(handler).create_instrument(selection.kind, selection.card, make_billing()))
    assert seen["auth"] == basic("pk_test")
    assert seen["body"]["kind"] == "card"
    assert seen["body"]["details"]["card_number"] == "4343434343434345"
    assert instrument.id == "pm_1"


def test_card_without_details_rejected_locally():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"id": "pm_1"})

    with pytest.raises(InvalidInstrument):
        asyncio.run(client_for(handler).create_instrument(InstrumentKind.CARD, None, make_billing()))
    assert calls == []


def test_instrument_4xx_is_invalid_instrument_with_detail():
    def handler(request):
        return httpx.Response(400, json={"errors": [{"code": "parameter_invalid", "detail": "Card number is invalid"}]})

    selection = card_selection()
    with pytest.raises(InvalidInstrument) as exc:
        asyncio.run(client_for(handler).create_instrument(selection.kind, selection.card, make_billing()))
    assert exc.value.message == "Card number is invalid"


def test_intent_4xx_is_invalid_request():
    def handler(request):
        return httpx.Response(422, json={"message": "amount below minimum"})

    with pytest.raises(InvalidRequest) as exc:
        asyncio.run(client_for(handler).create_intent(1, "PHP", "BK-1"))
    assert exc.value.message == "amount below minimum"


def test_5xx_is_gateway_unavailable():
    def handler(request):
        return httpx.Response(500, text="upstream error")

    with pytest.raises(GatewayUnavailable) as exc:
        asyncio.run(client_for(handler).create_intent(1000, "PHP", "BK-1"))
    assert exc.value.retryable is True


def test_connect_error_is_gateway_unavailable():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayUnavailable):
        asyncio.run(client_for(handler).check_status("pi_1", "pi_1_secret"))


def test_attach_parses_challenge_url():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"id": "pi_1", "status": "awaiting_next_action",
                  "next_action": {"type": "redirect", "redirect": {"url": "https://acs.test/3ds"}}},
        )

    result = asyncio.run(client_for(handler).attach_instrument("pi_1", "pi_1_secret", "pm_1"))
    assert seen["url"] == "https://gateway.test/v1/intents/pi_1/attach"
    assert seen["body"] == {"instrument_id": "pm_1", "client_secret": "pi_1_secret"}
    assert result.status is AuthorizationStatus.AWAITING_CHALLENGE
    assert result.challenge.url == "https://acs.test/3ds"


def test_attach_failure_reason_from_last_error():
    def handler(request):
        return httpx.Response(
            200, json={"id": "pi_1", "status": "failed", "last_error": {"failed_message": "Card was declined"}}
        )

    result = asyncio.run(client_for(handler).attach_instrument("pi_1", "pi_1_secret", "pm_1"))
    assert result.status is AuthorizationStatus.FAILED
    assert result.failure_reason == "Card was declined"
    assert result.challenge is None


def test_status_404_is_intent_expired():
    def handler(request):
        return httpx.Response(404, json={"error": "no such intent"})

    with pytest.raises(IntentExpired):
        asyncio.run(client_for(handler).check_status("pi_1", "pi_1_secret"))


def test_check_status_is_a_repeatable_read():
    """Same GET twice with the client secret as query param, same answer."""

    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(200, json={"id": "pi_1", "status": "processing"})

    client = client_for(handler)

    async def scenario():
        return [await client.check_status("pi_1", "pi_1_secret") for _ in range(2)]

    first, second = asyncio.run(scenario())
    assert first == second
    assert first.status is AuthorizationStatus.PROCESSING
    assert all(r.method == "GET" for r in requests)
    assert requests[0].url.params["client_secret"] == "pi_1_secret"


def test_malformed_body_is_gateway_unavailable():
    def handler(request):
        return httpx.Response(200, text="<html>")

    with pytest.raises(GatewayUnavailable):
        asyncio.run(client_for(handler).check_status("pi_1", "pi_1_secret"))


def test_status_for_another_intent_is_gateway_unavailable():
    """A response naming a different intent is retryable, never applied."""

    def handler(request):
        return httpx.Response(200, json={"id": "pi_other", "status": "succeeded"})

    client = client_for(handler)
    with pytest.raises(GatewayUnavailable):
        asyncio.run(client.check_status("pi_1", "pi_1_secret"))
    with pytest.raises(GatewayUnavailable):
        asyncio.run(client.attach_instrument("pi_1", "pi_1_secret", "pm_1"))
