"""
Shared error handling for the metrics federation service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from opentelemetry import trace


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class FederationException(Exception):
    """Base exception for the federation service."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        # Get trace ID from current span
        trace_id = None
        current_span = trace.get_current_span()
        if current_span and current_span.is_recording():
            span_context = current_span.get_span_context()
            if span_context.trace_id != 0:
                trace_id = f"{span_context.trace_id:032x}"

        return ErrorResponse(
            trace_id=trace_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ConfigurationError(FederationException):
    """Missing or invalid service configuration."""

    def __init__(self, message: str = "Invalid configuration", details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIGURATION_ERROR", message, details)


class ResolveFailed(FederationException):
    """The platform API could not resolve the application's instances.

    Fatal to the collection cycle that raised it.
    """

    def __init__(self, message: str = "Failed to resolve application instances", details: Optional[Dict[str, Any]] = None):
        super().__init__("RESOLVE_FAILED", message, details)


class FetchFailed(FederationException):
    """Retrieving metrics from a single instance failed."""

    def __init__(self, instance_number: int, cause: str, details: Optional[Dict[str, Any]] = None):
        self.instance_number = instance_number
        self.cause = cause
        super().__init__(
            "FETCH_FAILED",
            f"instance {instance_number}: {cause}",
            {"instance_number": instance_number, **(details or {})}
        )


class ParseFailed(FederationException):
    """An instance returned metrics text that could not be decoded."""

    def __init__(self, cause: str, instance_number: Optional[int] = None, details: Optional[Dict[str, Any]] = None):
        self.instance_number = instance_number
        self.cause = cause
        prefix = f"instance {instance_number}: " if instance_number is not None else ""
        extra = {"instance_number": instance_number} if instance_number is not None else {}
        super().__init__("PARSE_FAILED", f"{prefix}{cause}", {**extra, **(details or {})})

    def for_instance(self, instance_number: int) -> "ParseFailed":
        """Attach the originating instance to a codec error."""
        return ParseFailed(self.cause, instance_number, self.details)


class CycleFailed(FederationException):
    """A collection cycle produced no snapshot."""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        self.reason = reason
        super().__init__("CYCLE_FAILED", reason, details)
