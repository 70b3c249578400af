"""HTTP surface for authorization attempts and the reconciliation worker."""

import asyncio
from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Header, HTTPException

from chargeflow.common.config import settings
from chargeflow.common.db import SessionLocal
from chargeflow.common.errors import AttemptInProgress
from chargeflow.common.logging import configure_logging, trace_id_ctx
from chargeflow.common.metrics import metrics_response
from chargeflow.common.startup import log_startup_config
from chargeflow.common.tracing import instrument_app, setup_tracing
from chargeflow.services.booking.client import HttpBookingStore
from chargeflow.services.gateway.client import GatewayClient
from chargeflow.services.notification.service import KafkaNotificationSink
from chargeflow.services.orchestrator.outcome import OutcomeHandler, RecordingNavigator, mark_deposit_paid
from chargeflow.services.orchestrator.schemas import (
    AuthorizationCreateRequest,
    AuthorizationView,
    ChallengeMessage,
    ChargeVariant,
    InstrumentSubmission,
)
from chargeflow.services.orchestrator.service import AttemptRegistry, AuthorizationOrchestrator
from chargeflow.services.reconciliation.service import ReconciliationService


def build_orchestrators(
    gateway,
    outcome_handler: OutcomeHandler,
    booking_store,
) -> dict[ChargeVariant, AuthorizationOrchestrator]:
    """Full-charge and deposit engines sharing one attempt registry."""

    registry = AttemptRegistry()
    return {
        ChargeVariant.FULL: AuthorizationOrchestrator(
            gateway, outcome_handler, registry=registry, variant=ChargeVariant.FULL
        ),
        ChargeVariant.DEPOSIT: AuthorizationOrchestrator(
            gateway,
            outcome_handler,
            registry=registry,
            variant=ChargeVariant.DEPOSIT,
            post_success_hook=mark_deposit_paid(booking_store),
        ),
    }


def create_app(
    gateway=None,
    booking_store=None,
    notifier=None,
    reconciliation: ReconciliationService | None = None,
    run_workers: bool = True,
) -> FastAPI:
    """Wire collaborators and return the FastAPI app (tests pass fakes)."""

    gateway = gateway or GatewayClient()
    booking_store = booking_store or HttpBookingStore()
    notifier = notifier if notifier is not None else KafkaNotificationSink()
    reconciliation = reconciliation or ReconciliationService(SessionLocal, booking_store)
    outcome_handler = OutcomeHandler(RecordingNavigator(), notifier=notifier, reconciliation=reconciliation)
    orchestrators = build_orchestrators(gateway, outcome_handler, booking_store)
    registry = orchestrators[ChargeVariant.FULL].registry

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        """Run the reconciliation worker with app lifecycle."""

        worker_task = asyncio.create_task(reconciliation.worker()) if run_workers else None
        yield
        if worker_task is not None:
            worker_task.cancel()
        for orchestrator in orchestrators.values():
            orchestrator.shutdown()
        if hasattr(notifier, "close"):
            await notifier.close()

    app = FastAPI(title="ChargeFlow Authorization Orchestrator", lifespan=lifespan)

    def enforce_api_key(x_api_key: str | None) -> None:
        """Reject requests that do not provide the configured API key."""

        if x_api_key != settings.api_key:
            raise HTTPException(status_code=401, detail="invalid API key")

    def orchestrator_for(reference: str) -> AuthorizationOrchestrator:
        lifecycle = registry.get(reference)
        if lifecycle is None:
            raise HTTPException(status_code=404, detail="authorization not found")
        is_deposit = lifecycle.post_success_hook is not None
        return orchestrators[ChargeVariant.DEPOSIT if is_deposit else ChargeVariant.FULL]

    @app.post("/authorizations", response_model=AuthorizationView)
    async def create_authorization(
        req: AuthorizationCreateRequest,
        x_api_key: str | None = Header(default=None),
        x_trace_id: str | None = Header(default=None),
    ):
        """Start an attempt; the response reflects the state after attach."""

        enforce_api_key(x_api_key)
        trace_id_ctx.set(x_trace_id or str(uuid4()))
        orchestrator = orchestrators[req.variant]
        try:
            await orchestrator.authorize(req)
        except AttemptInProgress as exc:
            raise HTTPException(status_code=409, detail=exc.message) from exc
        return orchestrator.view(req.reference)

    @app.post("/authorizations/{reference}/instrument", response_model=AuthorizationView)
    async def submit_instrument(
        reference: str, req: InstrumentSubmission, x_api_key: str | None = Header(default=None)
    ):
        """Retry the instrument step on the existing intent."""

        enforce_api_key(x_api_key)
        orchestrator = orchestrator_for(reference)
        try:
            await orchestrator.submit_instrument(reference, req.selection, req.billing)
        except AttemptInProgress as exc:
            raise HTTPException(status_code=409, detail=exc.message) from exc
        except ValueError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        return orchestrator.view(reference)

    @app.post("/authorizations/{reference}/challenge-message")
    async def challenge_message(reference: str, req: ChallengeMessage, x_api_key: str | None = Header(default=None)):
        """Relay the message posted by the challenge completion page."""

        enforce_api_key(x_api_key)
        accepted = orchestrator_for(reference).deliver_message(reference, req.payload)
        return {"accepted": accepted}

    @app.post("/authorizations/{reference}/check")
    async def check_now(reference: str, x_api_key: str | None = Header(default=None)):
        """Manual status check while a challenge is shown."""

        enforce_api_key(x_api_key)
        return {"accepted": orchestrator_for(reference).check_now(reference)}

    @app.post("/authorizations/{reference}/abandon")
    async def abandon(reference: str, x_api_key: str | None = Header(default=None)):
        """Payer closed the challenge."""

        enforce_api_key(x_api_key)
        return {"accepted": orchestrator_for(reference).abandon_challenge(reference)}

    @app.delete("/authorizations/{reference}")
    async def cancel(reference: str, x_api_key: str | None = Header(default=None)):
        enforce_api_key(x_api_key)
        return {"cancelled": orchestrator_for(reference).cancel(reference)}

    @app.get("/authorizations/{reference}", response_model=AuthorizationView)
    async def get_authorization(reference: str, x_api_key: str | None = Header(default=None)):
        """Fetch current state, outcome and failure redirect for one reference."""

        enforce_api_key(x_api_key)
        return orchestrator_for(reference).view(reference)

    @app.get("/metrics")
    def metrics():
        """Prometheus scrape endpoint."""

        return metrics_response()

    @app.get("/health")
    def health():
        """Container health probe endpoint."""

        return {"ok": True}

    return app


def main_app() -> FastAPI:
    """Process entrypoint: `uvicorn chargeflow.services.orchestrator.main:main_app --factory`."""

    configure_logging()
    setup_tracing(settings.service_name)
    log_startup_config(
        settings,
        ["gateway_url", "gateway_secret_key", "challenge_fallback_seconds", "kafka_bootstrap_servers", "database_dsn"],
    )
    app = create_app()
    instrument_app(app)
    return app
