"""JSON logs carrying the payment reference and intent id of the current attempt."""

import logging
import sys
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from chargeflow.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
reference_ctx: ContextVar[str] = ContextVar("reference", default="")
intent_id_ctx: ContextVar[str] = ContextVar("intent_id", default="")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(service_name)s %(trace_id)s %(reference)s %(intent_id)s %(message)s"


def bind_attempt(reference: str, intent_id: str | None = None) -> None:
    """Tag subsequent records in this task with the attempt's identifiers."""

    reference_ctx.set(reference)
    if intent_id is not None:
        intent_id_ctx.set(intent_id)


class AttemptContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        record.trace_id = trace_id_ctx.get()
        record.reference = reference_ctx.get()
        record.intent_id = intent_id_ctx.get()
        return True


def configure_logging(level: str | None = None) -> None:
    """Send every record to stdout as one JSON object."""

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(AttemptContextFilter())
    handler.setFormatter(JsonFormatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level or settings.log_level)
    # Producer connection chatter drowns out attempt logs at INFO.
    logging.getLogger("aiokafka").setLevel(logging.WARNING)


logger = logging.getLogger("chargeflow")
