"""Error taxonomy for the circuit tracker.

Each class maps to the scope at which it is recovered:

  CatalogError        - instrument list unavailable; the cycle is skipped.
  BatchFailure        - one quote batch unavailable; the batch is skipped and
                        the remaining batches still run.
  PersistenceFailure  - one record failed to save; logged, in-memory state
                        stays authoritative.
  FatalError          - internal invariant broken; caught only by the loop's
                        outermost handler which backs off and retries.
  ShutdownRequested   - cooperative cancellation, never counted as a failure.

Raw broker exceptions are mapped onto this taxonomy at the provider boundary
with `classify_provider_exception` so callers never inspect message strings.
"""
from __future__ import annotations


class TrackerError(Exception):
    """Base class (allows isinstance checks across the taxonomy)."""


class CatalogError(TrackerError):
    """Instrument catalog could not be fetched for this cycle."""


class BatchFailure(TrackerError):
    """A whole quote batch failed; carries no partial result."""


class QuoteFetchError(BatchFailure):
    """Provider returned an error for the batch."""


class QuoteTimeoutError(BatchFailure):
    """Quote call exceeded its configured timeout."""


class MalformedQuoteError(BatchFailure):
    """Provider response could not be parsed into quotes."""


class PartialQuoteResponseError(MalformedQuoteError):
    """Provider response did not cover every requested instrument."""

    def __init__(self, missing: list[int]):
        self.missing = list(missing)
        preview = ",".join(str(t) for t in self.missing[:5])
        super().__init__(f"quote response missing {len(self.missing)} instruments ({preview})")


class AuthenticationError(BatchFailure):
    """Credential rejected by the broker; session must be refreshed."""


class PersistenceFailure(TrackerError):
    """A single change event or snapshot could not be written."""


class FatalError(TrackerError):
    """Unexpected internal failure indicating a defect or contract change."""


class ShutdownRequested(TrackerError):
    """Raised inside long waits once the shutdown event is set."""


def classify_exception(exc: BaseException) -> str:
    if isinstance(exc, BatchFailure):
        return 'batch'
    if isinstance(exc, PersistenceFailure):
        return 'persistence'
    if isinstance(exc, CatalogError):
        return 'catalog'
    if isinstance(exc, FatalError):
        return 'fatal'
    return 'unknown'


_AUTH_TOKENS = ("token expired", "invalid token", "invalid access_token",
                "incorrect `api_key` or `access_token`")
_TIMEOUT_TOKENS = ("timeout", "timed out", "deadline")


def classify_provider_exception(exc: BaseException) -> type[BatchFailure]:
    """Best-effort mapping of a raw provider exception onto a BatchFailure type.

    Order: already-typed -> kiteconnect exception classes -> timeout hints ->
    auth hints -> generic fetch error.
    """
    if isinstance(exc, BatchFailure):
        return type(exc)
    if isinstance(exc, TimeoutError):
        return QuoteTimeoutError
    kind = type(exc).__name__
    if kind == 'TokenException':
        return AuthenticationError
    if kind in ('DataException',):
        return MalformedQuoteError
    msg = str(exc).lower()
    if any(t in msg for t in _TIMEOUT_TOKENS):
        return QuoteTimeoutError
    if any(t in msg for t in _AUTH_TOKENS):
        return AuthenticationError
    return QuoteFetchError


__all__ = [
    "TrackerError",
    "CatalogError",
    "BatchFailure",
    "QuoteFetchError",
    "QuoteTimeoutError",
    "MalformedQuoteError",
    "PartialQuoteResponseError",
    "AuthenticationError",
    "PersistenceFailure",
    "FatalError",
    "ShutdownRequested",
    "classify_exception",
    "classify_provider_exception",
]
