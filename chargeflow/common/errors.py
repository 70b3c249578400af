"""Typed authorization failures.

Gateway transport problems are classified into these at the client boundary;
nothing above the gateway client sees a raw `httpx` exception.
"""


class AuthorizationError(Exception):
    """Base class for every failure reported to authorization callers."""

    reason = "AUTHORIZATION_ERROR"
    retryable = False

    def __init__(self, message: str = "", *, reference: str | None = None) -> None:
        super().__init__(message or self.reason)
        self.message = message or self.reason
        self.reference = reference

    def to_dict(self) -> dict:
        return {"reason": self.reason, "message": self.message, "reference": self.reference}


class InvalidRequest(AuthorizationError):
    """Intent creation input was rejected by the gateway."""

    reason = "INVALID_REQUEST"


class InvalidInstrument(AuthorizationError):
    """Gateway rejected instrument details; the intent stays reusable."""

    reason = "INVALID_INSTRUMENT"


class GatewayUnavailable(AuthorizationError):
    """Network failure, request timeout or 5xx from the gateway."""

    reason = "GATEWAY_UNAVAILABLE"
    retryable = True


class IntentExpired(AuthorizationError):
    """Intent id/secret mismatch or TTL exceeded; a new attempt is required."""

    reason = "INTENT_EXPIRED"


class Declined(AuthorizationError):
    """Gateway reported the charge as failed."""

    reason = "DECLINED"


class ChallengeAbandoned(AuthorizationError):
    """Payer closed or cancelled the step-up surface."""

    reason = "CHALLENGE_ABANDONED"


class AuthorizationTimeout(AuthorizationError):
    """Poll budget exhausted without a terminal status.

    The charge may still settle at the gateway later.
    """

    reason = "TIMEOUT"


class AttemptInProgress(AuthorizationError):
    """An attempt for this reference is still outstanding."""

    reason = "ATTEMPT_IN_PROGRESS"
