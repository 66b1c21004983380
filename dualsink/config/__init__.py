# Configuration module for dualsink
from .settings import (
    TelemetryConfiguration,
    TelemetrySettings,
    ConfigSource,
    EnvironmentConfigSource,
    get_var_or_default,
    load_configuration,
)

__all__ = [
    "TelemetryConfiguration",
    "TelemetrySettings",
    "ConfigSource",
    "EnvironmentConfigSource",
    "get_var_or_default",
    "load_configuration",
]
