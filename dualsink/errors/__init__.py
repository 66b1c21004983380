"""
Error handling module for dualsink.

This module provides:
- ErrorCode enum for standardized error codes
- TelemetryException base class and its concrete subclasses
"""

from dualsink.errors.codes import ErrorCode, is_configuration_code
from dualsink.errors.exceptions import (
    TelemetryException,
    ConfigurationError,
    MissingServiceNameError,
    invalid_log_level,
    log_sink_unavailable,
)

__all__ = [
    "ErrorCode",
    "is_configuration_code",
    "TelemetryException",
    "ConfigurationError",
    "MissingServiceNameError",
    "invalid_log_level",
    "log_sink_unavailable",
]
