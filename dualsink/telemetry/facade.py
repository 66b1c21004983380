"""
Telemetry facade: the single public surface for emitting telemetry.

Every call resolves the correlation values from the carrier it is given,
writes one structured log record, and forwards the matching record to
the remote APM sink. The APM adapter variant is chosen once at
construction; with no instrumentation key the facade runs local-only.

Routing:

    method      log level    APM record
    debug       debug        none
    info        info         trace (Information)
    warn        warn         trace (Warning)
    error       error        exception (Error)
    critical    critical     exception (Error)
    dependency  info         dependency
    request     info         request

Calls run synchronously on the caller's thread. The facade holds no
mutable state and is shared across concurrent callers.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, Optional, TextIO, Tuple

from opentelemetry.sdk.trace import TracerProvider

from dualsink.config.settings import TelemetryConfiguration
from dualsink.telemetry.apm_adapter import ApmAdapter, build_apm_adapter
from dualsink.telemetry.carrier import Carrier, Correlation
from dualsink.telemetry.fields import Field
from dualsink.telemetry.log_adapter import StructuredLogAdapter
from dualsink.telemetry.severity import Severity

logger = logging.getLogger(__name__)


class TelemetryFacade:
    """
    Correlated dual-sink telemetry for one service.

    Build one per process (or per service in a multi-tenant host) and
    share it by reference.
    """

    def __init__(
        self,
        config: TelemetryConfiguration,
        *,
        stream: Optional[TextIO] = None,
        tracer_provider: Optional[TracerProvider] = None
    ):
        """
        Build both sinks.

        Args:
            config: Telemetry configuration
            stream: Text stream for structured records, overriding config.log_output
            tracer_provider: Provider for APM records instead of an OTLP exporter

        Raises:
            ConfigurationError: If the structured log sink cannot be built.
                A missing instrumentation key is not an error.
        """
        self._config = config
        # The log sink is built first; if it fails no remote provider is left running
        self._local = StructuredLogAdapter(
            config.log_level,
            output=config.log_output,
            name=config.service_name,
            caller_skip=config.caller_skip,
            stream=stream,
        )
        self._remote: ApmAdapter = build_apm_adapter(config, tracer_provider)

    @property
    def config(self) -> TelemetryConfiguration:
        return self._config

    @property
    def remote_enabled(self) -> bool:
        """Whether records are forwarded to the remote APM sink."""
        return self._remote.enabled

    def debug(self, carrier: Carrier, message: str, *fields: Field) -> None:
        """Log a debug record. Debug detail is never sent to the remote sink."""
        correlation = Correlation.resolve(carrier)
        self._local.emit(Severity.VERBOSE, message, fields, correlation)

    def info(self, carrier: Carrier, message: str, *fields: Field) -> None:
        correlation = Correlation.resolve(carrier)
        self._local.emit(Severity.INFORMATION, message, fields, correlation)
        self._remote.trace(Severity.INFORMATION, message, fields, correlation)

    def warn(self, carrier: Carrier, message: str, *fields: Field) -> None:
        correlation = Correlation.resolve(carrier)
        self._local.emit(Severity.WARNING, message, fields, correlation)
        self._remote.trace(Severity.WARNING, message, fields, correlation)

    def error(self, carrier: Carrier, message: str, *fields: Field) -> None:
        """
        Log an error and report it as an exception record.

        Pass the exception with fields.error_field(exc) to have it recorded
        on the remote exception record.
        """
        correlation = Correlation.resolve(carrier)
        self._local.emit(Severity.ERROR, message, fields, correlation)
        self._remote.exception(message, fields, correlation)

    def critical(self, carrier: Carrier, message: str, *fields: Field) -> None:
        """Like error(), but logged at critical level locally."""
        correlation = Correlation.resolve(carrier)
        self._local.emit(Severity.CRITICAL, message, fields, correlation)
        self._remote.exception(message, fields, correlation)

    def dependency(
        self,
        carrier: Carrier,
        kind: str,
        target: str,
        success: bool,
        start: datetime,
        end: datetime,
        message: str,
        *fields: Field
    ) -> str:
        """
        Record an outbound call this service made to another system.

        Args:
            carrier: Correlation carrier of the current unit of work
            kind: Dependency type (e.g. "HTTP", "SQL", "Redis")
            target: The system called (host, database, queue)
            success: Whether the call succeeded
            start: When the call started
            end: When the call finished; must not be before start
            message: Human-readable description
            *fields: Additional attributes

        Returns:
            The APM record id, or an empty string when running local-only
        """
        return self._dependency(
            1, carrier, kind, target, success, start, end, message, fields
        )

    def _dependency(
        self,
        stacklevel: int,
        carrier: Carrier,
        kind: str,
        target: str,
        success: bool,
        start: datetime,
        end: datetime,
        message: str,
        fields: Tuple[Field, ...]
    ) -> str:
        # stacklevel counts the frames between this method and the public caller
        correlation = Correlation.resolve(carrier)
        self._local.emit(
            Severity.INFORMATION, message, fields, correlation,
            extra={
                "dependency_type": kind,
                "target": target,
                "success": success,
                "duration_ms": (end - start).total_seconds() * 1000,
            },
            stacklevel=stacklevel
        )
        return self._remote.dependency(
            kind, target, success, start, end, message, fields, correlation
        )

    def request(
        self,
        carrier: Carrier,
        method: str,
        url: str,
        duration: timedelta,
        response_code: str,
        success: bool,
        source: str,
        message: str,
        *fields: Field
    ) -> str:
        """
        Record an inbound call this service served.

        Args:
            carrier: Correlation carrier of the request
            method: HTTP method (or equivalent verb)
            url: Requested URL
            duration: Time taken to serve the request
            response_code: Response status code
            success: Whether the request succeeded
            source: Caller identity (e.g. client address)
            message: Human-readable description
            *fields: Additional attributes

        Returns:
            The APM record id, or an empty string when running local-only
        """
        correlation = Correlation.resolve(carrier)
        self._local.emit(
            Severity.INFORMATION, message, fields, correlation,
            extra={
                "method": method,
                "url": url,
                "response_code": response_code,
                "success": success,
                "source": source,
                "duration_ms": duration.total_seconds() * 1000,
            }
        )
        return self._remote.request(
            method, url, duration, response_code, success, source, message, fields, correlation
        )

    @contextmanager
    def track_dependency(
        self,
        carrier: Carrier,
        kind: str,
        target: str,
        message: str,
        *fields: Field
    ) -> Iterator[None]:
        """
        Time a block as an outbound call and record it as a dependency.

        The dependency is marked unsuccessful if the block raises; the
        exception propagates unchanged.

        Example:
            with telemetry.track_dependency(carrier, "HTTP", "billing-api", "charge card"):
                client.post(...)
        """
        # Fail on a bad carrier before running the block
        Correlation.resolve(carrier)
        start = datetime.now(timezone.utc)
        success = False
        try:
            yield
            success = True
        finally:
            end = datetime.now(timezone.utc)
            # Emitted from this generator, resumed by contextlib's __exit__
            self._dependency(
                2, carrier, kind, target, success, start, end, message, fields
            )

    def flush(self) -> None:
        """Flush both sinks."""
        self._local.flush()
        self._remote.flush()

    def shutdown(self) -> None:
        """Flush and release both sinks. The facade must not be used afterwards."""
        self._remote.shutdown()
        self._local.close()


def create_telemetry(
    config: TelemetryConfiguration,
    *,
    stream: Optional[TextIO] = None,
    tracer_provider: Optional[TracerProvider] = None
) -> TelemetryFacade:
    """
    Build a TelemetryFacade and log how it was configured.

    Raises:
        ConfigurationError: If the structured log sink cannot be built.
    """
    facade = TelemetryFacade(config, stream=stream, tracer_provider=tracer_provider)
    logger.debug(
        "Telemetry initialized",
        extra={"extra_data": {
            "service_name": config.service_name,
            "log_level": config.log_level,
            "remote_enabled": facade.remote_enabled,
        }}
    )
    return facade
