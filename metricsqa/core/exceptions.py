"""
Error taxonomy for the question-answering pipeline.

Generation errors come from the text-generation client, query errors from
the metrics executor, validation errors from request checks that run before
the pipeline is entered.
"""

from typing import Optional


class MetricsQAError(Exception):
    """Base class for every error raised by this package."""


# =========================
# Text generation
# =========================
class GenerationError(MetricsQAError):
    """The generation endpoint could not produce a completion."""


class UpstreamUnavailable(GenerationError):
    """The generation endpoint is unreachable (connect error, timeout)."""


class UpstreamError(GenerationError):
    """The endpoint answered with a non-success status or an unusable body."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EmptyCompletion(GenerationError):
    """The endpoint answered but the body carries no completion text."""


# =========================
# Query execution
# =========================
class QueryExecutionError(MetricsQAError):
    """A model-produced query could not be parsed, compiled or executed."""


# =========================
# Request validation
# =========================
class ValidationError(MetricsQAError):
    """Caller input rejected before any pipeline work starts."""
