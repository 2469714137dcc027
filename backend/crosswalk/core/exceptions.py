"""Engine error kinds.

ValidationError and UpstreamUnavailable are raised to callers.
DataIntegrityWarning is never raised as an error: anomalies in reference data
are reported through :func:`report_integrity_issue` and processing continues.
"""

import warnings

import structlog

logger = structlog.get_logger()


class CrosswalkError(Exception):
    """Base class for errors surfaced by the engine."""


class ValidationError(CrosswalkError, ValueError):
    """The request cannot be served as asked (bad ids, counts, arguments)."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field


class UpstreamUnavailable(CrosswalkError):
    """A collaborator read failed.

    Distinct from an empty result so callers can tell "no data" apart from
    "the engine computed zero".
    """

    def __init__(self, operation: str, message: str | None = None):
        super().__init__(message or f"Upstream read failed: {operation}")
        self.operation = operation


class DataIntegrityWarning(UserWarning):
    """Reference data violates an invariant the engine tolerates."""


def report_integrity_issue(issue: str, **context) -> None:
    """Log a data integrity anomaly and emit a DataIntegrityWarning."""
    logger.warning("data_integrity_warning", issue=issue, **context)
    details = ", ".join(f"{k}={v}" for k, v in sorted(context.items()))
    warnings.warn(
        DataIntegrityWarning(f"{issue}: {details}" if details else issue),
        stacklevel=2,
    )
