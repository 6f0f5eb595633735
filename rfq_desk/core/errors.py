# rfq_desk/core/errors.py
from __future__ import annotations

from typing import Optional


class RfqDeskError(Exception):
    """Base class for every error raised by the negotiation engine."""


# ─────────────────────────────────────────────
# REMOTE / TRANSIENT
# ─────────────────────────────────────────────


class TransientError(RfqDeskError):
    """Remote failure worth retrying (timeouts, dropped connections)."""


class RemoteTimeoutError(TransientError):
    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(f"{operation} timed out after {timeout_seconds:g}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class NetworkError(TransientError):
    pass


class RequestCancelled(RfqDeskError):
    """The request was superseded by a newer one. Never shown to the user."""


class RetryExhaustedError(RfqDeskError):
    def __init__(self, operation: str, attempts: int, last_error: Optional[BaseException]):
        msg = f"{operation} failed after {attempts} attempts"
        if last_error is not None:
            msg = f"{msg}: {last_error}"
        super().__init__(msg)
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


# ─────────────────────────────────────────────
# STORE-REPORTED
# ─────────────────────────────────────────────


class PermissionDeniedError(RfqDeskError, PermissionError):
    """Access-control rejection from the remote store."""


class QuoteNotFoundError(RfqDeskError, LookupError):
    def __init__(self, quote_id: str):
        super().__init__(f"Quote {quote_id} not found.")
        self.quote_id = quote_id


# ─────────────────────────────────────────────
# LOCAL PRECONDITIONS
# ─────────────────────────────────────────────


class QuoteValidationError(RfqDeskError, ValueError):
    """Rejected locally, before any remote call is made."""


class ApprovalNotConfirmedError(QuoteValidationError):
    pass


class InvalidTransitionError(RfqDeskError, ValueError):
    def __init__(self, action: str, status: str):
        super().__init__(f"Cannot {action} a quote in status {status}.")
        self.action = action
        self.status = status


# ─────────────────────────────────────────────
# SIDE EFFECTS
# ─────────────────────────────────────────────


class DownstreamSideEffectError(RfqDeskError):
    """A follow-up action failed after the primary change was committed."""
