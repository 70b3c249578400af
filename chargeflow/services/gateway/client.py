"""Typed async client for the payment gateway's four authorization calls.

Holds no session state: every call is one HTTP round trip. Transport
exceptions and HTTP error statuses are classified here into the typed errors
of `chargeflow.common.errors`.
"""

import base64
import time
from typing import Any

import httpx

from chargeflow.common.config import settings
from chargeflow.common.errors import (
    AuthorizationError,
    GatewayUnavailable,
    IntentExpired,
    InvalidInstrument,
    InvalidRequest,
)
from chargeflow.common.logging import logger
from chargeflow.common.metrics import gateway_request_duration_seconds, gateway_requests_total
from chargeflow.common.tracing import get_tracer
from chargeflow.services.gateway.models import (
    AttachResult,
    AuthorizationIntent,
    AuthorizationStatus,
    Billing,
    CardDetails,
    ChallengeDescriptor,
    InstrumentKind,
    IntentStatus,
    PaymentInstrument,
)

tracer = get_tracer(__name__)


def _basic_auth(key: str) -> str:
    return "Basic " + base64.b64encode(f"{key}:".encode("utf-8")).decode("ascii")


def _error_detail(response: httpx.Response) -> str:
    """Best-effort human readable error from a gateway error body."""

    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            return str(errors[0].get("detail") or errors[0].get("code") or errors[0])
        for key in ("error", "detail", "message"):
            if body.get(key):
                return str(body[key])
    return f"HTTP {response.status_code}"


def _last_error(raw: Any) -> str | None:
    if not raw:
        return None
    if isinstance(raw, dict):
        return raw.get("message") or raw.get("failed_message") or raw.get("code")
    return str(raw)


def _challenge(raw: Any) -> ChallengeDescriptor | None:
    """Extract the redirect URL from `next_action`, in either nesting."""

    if not isinstance(raw, dict) or raw.get("type", "redirect") != "redirect":
        return None
    redirect = raw.get("redirect")
    url = redirect.get("url") if isinstance(redirect, dict) else raw.get("url")
    return ChallengeDescriptor(url=url) if url else None


class GatewayClient:
    """Issues create-intent, create-instrument, attach and status calls."""

    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        public_key: str | None = None,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        service_name: str | None = None,
    ) -> None:
        self.base_url = (base_url or settings.gateway_url).rstrip("/")
        self.secret_key = secret_key if secret_key is not None else settings.gateway_secret_key
        self.public_key = public_key if public_key is not None else settings.gateway_public_key
        self.timeout_seconds = timeout_seconds or settings.gateway_timeout_seconds
        self.transport = transport
        self.service_name = service_name or settings.service_name

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        client_error: type[AuthorizationError],
        *,
        key: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict:
        """Run one round trip and return the decoded JSON body.

        Network errors, timeouts and 5xx become `GatewayUnavailable`; any other
        4xx becomes `client_error`.
        """

        headers = {"Content-Type": "application/json", "Authorization": _basic_auth(key)}
        started = time.perf_counter()
        result = "unavailable"
        with tracer.start_as_current_span(f"gateway.{operation}"):
            try:
                try:
                    async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                        response = await client.request(
                            method, f"{self.base_url}{path}", headers=headers, json=json, params=params
                        )
                except httpx.HTTPError as exc:
                    logger.warning("gateway_call_failed operation=%s error=%s", operation, exc)
                    raise GatewayUnavailable(f"{operation}: {exc.__class__.__name__}: {exc}") from exc

                if response.status_code >= 500:
                    raise GatewayUnavailable(f"{operation}: {_error_detail(response)}")
                if response.status_code >= 400:
                    result = "rejected"
                    raise client_error(_error_detail(response))
                try:
                    body = response.json()
                except ValueError as exc:
                    raise GatewayUnavailable(f"{operation}: malformed response body") from exc
                result = "ok"
                return body if isinstance(body, dict) else {}
            finally:
                gateway_request_duration_seconds.labels(service=self.service_name, operation=operation).observe(
                    max(0.0, time.perf_counter() - started)
                )
                gateway_requests_total.labels(service=self.service_name, operation=operation, result=result).inc()

    async def create_intent(
        self,
        amount: int,
        currency: str,
        reference: str,
        *,
        description: str | None = None,
        metadata: dict | None = None,
    ) -> AuthorizationIntent:
        payload = {
            "amount": amount,
            "currency": currency.upper(),
            "reference": reference,
            "description": description or f"Payment for {reference}",
            "statement_descriptor": settings.statement_descriptor,
            "payment_method_allowed": [kind.value for kind in InstrumentKind],
            "payment_method_options": {"card": {"request_three_d_secure": "any"}},
            "metadata": {"reference": reference, **(metadata or {})},
        }
        body = await self._request(
            "create_intent", "POST", "/intents", InvalidRequest, key=self.secret_key, json=payload
        )
        try:
            return AuthorizationIntent(
                id=body["id"],
                client_secret=body["client_secret"],
                amount=body.get("amount", amount),
                currency=body.get("currency", currency.upper()),
                status=body.get("status", AuthorizationStatus.AWAITING_INSTRUMENT),
                failure_reason=_last_error(body.get("last_error")),
            )
        except (KeyError, ValueError) as exc:
            raise GatewayUnavailable(f"create_intent: unexpected response {exc}") from exc

    async def create_instrument(
        self, kind: InstrumentKind, details: CardDetails | None, billing: Billing
    ) -> PaymentInstrument:
        if kind is InstrumentKind.CARD and details is None:
            raise InvalidInstrument("card details are required for card payments")
        payload = {
            "kind": kind.value,
            "details": details.model_dump() if kind is InstrumentKind.CARD else None,
            "billing": billing.model_dump(exclude_none=True),
        }
        body = await self._request(
            "create_instrument", "POST", "/instruments", InvalidInstrument, key=self.public_key, json=payload
        )
        if "id" not in body:
            raise GatewayUnavailable("create_instrument: response without id")
        return PaymentInstrument(id=body["id"], kind=kind, billing=billing)

    def _status_view(self, operation: str, intent_id: str, body: dict, cls: type[IntentStatus]) -> IntentStatus:
        returned_id = body.get("id", intent_id)
        if returned_id != intent_id:
            raise GatewayUnavailable(f"{operation}: response for intent {returned_id}, expected {intent_id}")
        try:
            return cls(
                intent_id=returned_id,
                status=body["status"],
                challenge=_challenge(body.get("next_action")),
                failure_reason=_last_error(body.get("last_error")),
            )
        except (KeyError, ValueError) as exc:
            raise GatewayUnavailable(f"{operation}: unexpected response {exc}") from exc

    async def attach_instrument(self, intent_id: str, client_secret: str, instrument_id: str) -> AttachResult:
        body = await self._request(
            "attach_instrument",
            "POST",
            f"/intents/{intent_id}/attach",
            IntentExpired,
            key=self.secret_key,
            json={"instrument_id": instrument_id, "client_secret": client_secret},
        )
        return self._status_view("attach_instrument", intent_id, body, AttachResult)

    async def check_status(self, intent_id: str, client_secret: str) -> IntentStatus:
        """Idempotent read of the intent's current status."""

        body = await self._request(
            "check_status",
            "GET",
            f"/intents/{intent_id}/status",
            IntentExpired,
            key=self.secret_key,
            params={"client_secret": client_secret},
        )
        return self._status_view("check_status", intent_id, body, IntentStatus)
