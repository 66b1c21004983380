"""
Telemetry module for correlated dual-sink telemetry.

This module provides:
- Carrier and its helpers for request-scoped correlation values
- Field and Severity, the sink-independent event model
- StructuredLogAdapter and JSONFormatter for the local JSON log sink
- DisabledApmAdapter and OpenTelemetryApmAdapter for the remote APM sink
- TelemetryFacade, the single public surface for emitting telemetry
"""

from dualsink.telemetry.carrier import (
    Carrier,
    current_carrier_var,
    get_current_carrier,
    get_operation_id,
    get_service_name,
    with_operation_id,
    with_service_name,
)
from dualsink.telemetry.fields import (
    Field,
    FieldKind,
    boolean,
    error,
    error_field,
    integer,
    string,
)
from dualsink.telemetry.severity import Severity
from dualsink.telemetry.log_adapter import JSONFormatter, StructuredLogAdapter
from dualsink.telemetry.apm_adapter import (
    DisabledApmAdapter,
    OpenTelemetryApmAdapter,
    build_apm_adapter,
)
from dualsink.telemetry.facade import TelemetryFacade, create_telemetry

__all__ = [
    "Carrier",
    "current_carrier_var",
    "get_current_carrier",
    "get_operation_id",
    "get_service_name",
    "with_operation_id",
    "with_service_name",
    "Field",
    "FieldKind",
    "boolean",
    "error",
    "error_field",
    "integer",
    "string",
    "Severity",
    "JSONFormatter",
    "StructuredLogAdapter",
    "DisabledApmAdapter",
    "OpenTelemetryApmAdapter",
    "build_apm_adapter",
    "TelemetryFacade",
    "create_telemetry",
]
