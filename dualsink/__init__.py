"""
dualsink: correlated telemetry fanned out to a JSON log and an APM backend.
"""

from dualsink.config.settings import TelemetryConfiguration, load_configuration
from dualsink.errors.exceptions import ConfigurationError, MissingServiceNameError
from dualsink.telemetry.carrier import Carrier, with_operation_id, with_service_name
from dualsink.telemetry.facade import TelemetryFacade, create_telemetry

__all__ = [
    "Carrier",
    "ConfigurationError",
    "MissingServiceNameError",
    "TelemetryConfiguration",
    "TelemetryFacade",
    "create_telemetry",
    "load_configuration",
    "with_operation_id",
    "with_service_name",
]
