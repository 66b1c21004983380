"""
Configuration management for dualsink.

This module provides the immutable TelemetryConfiguration value object a
facade is built from, and two ways of producing one at process startup:

- TelemetrySettings: pydantic settings loaded from TELEMETRY_* environment
  variables or a .env file
- load_configuration: a one-shot read through any ConfigSource exposing
  get_var(key) -> (value, found), such as a remote key-value store client

Configuration is read once. Missing values fall back to defaults; invalid
values fail startup with a descriptive ConfigurationError.
"""

import os
from typing import Optional, Protocol, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dualsink.errors.exceptions import ConfigurationError


VALID_LOG_LEVELS = ("debug", "info", "warn", "error")

# Keys read through a ConfigSource
INSTRUMENTATION_KEY_VAR = "APPINSIGHTS_INSTRUMENTATIONKEY"
SERVICE_NAME_VAR = "SERVICE_NAME"
LOG_LEVEL_VAR = "LOG_LEVEL"
OTLP_ENDPOINT_VAR = "OTLP_ENDPOINT"


def _normalize_log_level(v: str) -> str:
    v = v.strip().lower()
    if v not in VALID_LOG_LEVELS:
        raise ValueError(f"log_level must be one of: {', '.join(VALID_LOG_LEVELS)}")
    return v


class TelemetryConfiguration(BaseModel):
    """
    Immutable parameters for building a TelemetryFacade.

    An empty instrumentation_key is valid and selects local-only mode.
    caller_skip is the number of extra stack frames between the facade
    and the code that should be reported as the log record's origin,
    for applications that wrap the facade in their own helpers.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    instrumentation_key: str = Field(
        default="",
        description="APM instrumentation key; empty disables the remote sink"
    )
    service_name: str = Field(
        ...,
        description="Service identity attached to every record"
    )
    log_level: str = Field(
        default="info",
        description="Minimum structured log level (debug, info, warn, error)"
    )
    caller_skip: int = Field(
        default=0,
        ge=0,
        description="Extra caller frames to skip when reporting the log origin"
    )
    otlp_endpoint: Optional[str] = Field(
        default=None,
        description="OTLP collector endpoint for the remote sink"
    )
    log_output: str = Field(
        default="stdout",
        description="Structured log destination: stdout, stderr, or a file path"
    )

    @field_validator("instrumentation_key")
    @classmethod
    def validate_instrumentation_key(cls, v: str) -> str:
        """Strip whitespace so a blank key means local-only mode."""
        return v.strip()

    @field_validator("service_name")
    @classmethod
    def validate_service_name(cls, v: str) -> str:
        """Validate that service_name is not empty."""
        if not v or not v.strip():
            raise ValueError("service_name cannot be empty")
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a supported level."""
        return _normalize_log_level(v)

    @field_validator("log_output")
    @classmethod
    def validate_log_output(cls, v: str) -> str:
        """Validate that log_output is not empty."""
        if not v or not v.strip():
            raise ValueError("log_output cannot be empty")
        return v.strip()

    @property
    def remote_enabled(self) -> bool:
        """Whether this configuration enables the remote APM sink."""
        return bool(self.instrumentation_key)


class TelemetrySettings(BaseSettings):
    """
    Telemetry settings loaded from environment variables.

    Every variable is prefixed with TELEMETRY_, e.g. TELEMETRY_SERVICE_NAME.
    Values may also come from a .env file in the working directory.
    """

    instrumentation_key: str = Field(default="")
    service_name: str = Field(default="")
    log_level: str = Field(default="info")
    caller_skip: int = Field(default=0, ge=0)
    otlp_endpoint: Optional[str] = Field(default=None)
    log_output: str = Field(default="stdout")

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def to_configuration(self) -> TelemetryConfiguration:
        """
        Build the immutable configuration from these settings.

        Raises:
            ConfigurationError: If any value is missing or invalid.
        """
        return _build_configuration(
            instrumentation_key=self.instrumentation_key,
            service_name=self.service_name,
            log_level=self.log_level,
            caller_skip=self.caller_skip,
            otlp_endpoint=self.otlp_endpoint,
            log_output=self.log_output,
        )


class ConfigSource(Protocol):
    """A synchronous key lookup, such as a remote key-value store client."""

    def get_var(self, key: str) -> Tuple[str, bool]:
        ...


class EnvironmentConfigSource:
    """ConfigSource reading process environment variables."""

    def __init__(self, prefix: str = ""):
        self.prefix = prefix

    def get_var(self, key: str) -> Tuple[str, bool]:
        value = os.environ.get(self.prefix + key)
        if value is None:
            return "", False
        return value, True


def get_var_or_default(source: ConfigSource, key: str, default: str) -> str:
    """
    Look up a key, falling back to a default when it is not found.

    Args:
        source: The configuration source to query
        key: The key to look up
        default: Value returned when the key is not found

    Returns:
        The stored value, or the default
    """
    value, found = source.get_var(key)
    if not found:
        return default
    return value


def load_configuration(source: ConfigSource, caller_skip: int = 0) -> TelemetryConfiguration:
    """
    Read the telemetry configuration once from a ConfigSource.

    Keys that are not found fall back to defaults (an empty
    instrumentation key selects local-only mode). The source is queried
    exactly once per key and never polled again.

    Args:
        source: The configuration source to query
        caller_skip: Extra caller frames to skip in log records

    Returns:
        TelemetryConfiguration: The validated configuration.

    Raises:
        ConfigurationError: If the service name is missing or a value is invalid.
    """
    otlp_endpoint = get_var_or_default(source, OTLP_ENDPOINT_VAR, "")
    return _build_configuration(
        instrumentation_key=get_var_or_default(source, INSTRUMENTATION_KEY_VAR, ""),
        service_name=get_var_or_default(source, SERVICE_NAME_VAR, ""),
        log_level=get_var_or_default(source, LOG_LEVEL_VAR, "info"),
        caller_skip=caller_skip,
        otlp_endpoint=otlp_endpoint or None,
    )


def _build_configuration(**values) -> TelemetryConfiguration:
    try:
        return TelemetryConfiguration(**values)
    except ValidationError as e:
        # Turn pydantic errors into a single descriptive startup error
        invalid_fields = {}
        for error in e.errors():
            field_name = ".".join(str(loc) for loc in error.get("loc", []))
            invalid_fields[field_name] = error.get("msg", str(error))

        raise ConfigurationError(
            "Invalid telemetry configuration",
            invalid_fields=invalid_fields
        ) from e
