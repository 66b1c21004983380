"""Abstract severity levels, independent of either sink's native type."""

from enum import IntEnum


class Severity(IntEnum):
    """Ordered severity of a telemetry event."""

    VERBOSE = 0
    INFORMATION = 1
    WARNING = 2
    ERROR = 3
    CRITICAL = 4
