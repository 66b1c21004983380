"""
Error code catalog for dualsink.

This module defines the error codes raised by the telemetry library,
covering configuration failures detected while building the sinks and
programming errors detected while emitting.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """
    Enumeration of all error codes used by the library.

    Each error code belongs to one category:
    - Configuration errors: raised while building a facade, before any
      telemetry is emitted
    - Programming errors: raised at call time when the embedding
      application passes an unusable carrier
    """

    # Configuration errors
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    """A configuration value failed validation"""

    INVALID_LOG_LEVEL = "INVALID_LOG_LEVEL"
    """The log level is not one of debug, info, warn, error"""

    LOG_SINK_UNAVAILABLE = "LOG_SINK_UNAVAILABLE"
    """The structured log output stream could not be opened"""

    # Programming errors
    MISSING_SERVICE_NAME = "MISSING_SERVICE_NAME"
    """The carrier has no service name"""


# Codes that describe a broken startup rather than a broken call site
CONFIGURATION_CODES: frozenset = frozenset({
    ErrorCode.INVALID_CONFIGURATION,
    ErrorCode.INVALID_LOG_LEVEL,
    ErrorCode.LOG_SINK_UNAVAILABLE,
})


def is_configuration_code(error_code: ErrorCode) -> bool:
    """
    Check whether an error code belongs to the configuration category.

    Args:
        error_code: The error code to classify

    Returns:
        True if the code is raised during facade construction
    """
    return error_code in CONFIGURATION_CODES
