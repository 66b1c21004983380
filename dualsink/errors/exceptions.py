"""
Exception classes for dualsink.

This module provides the TelemetryException base class and the two
concrete failures the library surfaces to the embedding application:
configuration errors at construction time and a missing service name at
call time. Sink transport failures are never raised.
"""

from typing import Any, Optional

from dualsink.errors.codes import ErrorCode


class TelemetryException(Exception):
    """
    Base exception class for all library errors.

    This exception provides structured error information including:
    - error_code: A standardized error code from the ErrorCode enum
    - message: A human-readable error message
    - details: Optional additional context (e.g., field-level errors)

    Example:
        raise TelemetryException(
            error_code=ErrorCode.INVALID_LOG_LEVEL,
            message="Unknown log level",
            details={"log_level": "verbose"}
        )
    """

    def __init__(
        self,
        error_code: ErrorCode,
        message: str,
        details: Optional[dict[str, Any]] = None
    ):
        """
        Initialize a TelemetryException.

        Args:
            error_code: The error code from the ErrorCode enum
            message: A human-readable error message
            details: Optional dictionary with additional error context
        """
        self.error_code = error_code
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the exception to a dictionary for JSON serialization.

        Returns:
            Dictionary containing error_code, message, and details
        """
        result = {
            "error_code": self.error_code.value,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(error_code={self.error_code.value!r}, "
            f"message={self.message!r}, details={self.details!r})"
        )


class ConfigurationError(TelemetryException):
    """
    Raised when a facade cannot be built from its configuration.

    A facade is never returned half-built: if this is raised, no sink
    was left open.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INVALID_CONFIGURATION,
        invalid_fields: Optional[dict[str, str]] = None
    ):
        self.invalid_fields = invalid_fields or {}
        super().__init__(
            error_code=error_code,
            message=message,
            details={"invalid_fields": self.invalid_fields} if self.invalid_fields else None
        )

    def __str__(self) -> str:
        if not self.invalid_fields:
            return self.message
        invalid_parts = [f"  - {field}: {error}" for field, error in self.invalid_fields.items()]
        return self.message + "\nInvalid field values:\n" + "\n".join(invalid_parts)


class MissingServiceNameError(TelemetryException):
    """
    Raised when a carrier without a service name reaches a sink.

    This is a bug in the embedding application. Emitting telemetry under
    the wrong service identity is worse than failing, so the library
    never catches this.
    """

    def __init__(self, message: str = "Carrier has no service name; call with_service_name at the request boundary"):
        super().__init__(error_code=ErrorCode.MISSING_SERVICE_NAME, message=message)


# Convenience factory functions for common error types

def invalid_log_level(log_level: str) -> ConfigurationError:
    """Create an invalid log level error."""
    return ConfigurationError(
        f"Unsupported log level {log_level!r}",
        error_code=ErrorCode.INVALID_LOG_LEVEL,
        invalid_fields={"log_level": "must be one of: debug, info, warn, error"}
    )


def log_sink_unavailable(output: str, reason: str) -> ConfigurationError:
    """Create a log sink unavailable error."""
    return ConfigurationError(
        f"Cannot open structured log output {output!r}",
        error_code=ErrorCode.LOG_SINK_UNAVAILABLE,
        invalid_fields={"log_output": reason}
    )
