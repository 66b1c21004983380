"""
Remote APM sink adapter.

The remote sink accepts four record kinds: trace, exception, dependency
(an outbound call this service made) and request (an inbound call this
service served). The adapter is one of two variants, chosen once when the
facade is built:

- DisabledApmAdapter when no instrumentation key is configured; every
  record is dropped
- OpenTelemetryApmAdapter, which emits every record as one finished span
  on a TracerProvider owned by the facade and exported over OTLP

Every record carries ServiceName and, when the call has a parent
operation, OperationID and operation.parent_id as explicit properties.
Field values are converted to strings for the property map.

Failures inside the OpenTelemetry SDK or exporter are reported to the
package logger and never raised to the caller.
"""

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Protocol, Sequence

from opentelemetry.context import Context
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, format_span_id

from dualsink.config.settings import TelemetryConfiguration
from dualsink.telemetry.carrier import Correlation
from dualsink.telemetry.fields import Field, first_error
from dualsink.telemetry.log_adapter import OPERATION_ID_KEY, SERVICE_NAME_KEY
from dualsink.telemetry.severity import Severity

logger = logging.getLogger(__name__)

INSTRUMENTATION_NAME = "dualsink"
INSTRUMENTATION_KEY_HEADER = "x-instrumentation-key"

RECORD_KIND_KEY = "apm.record_kind"
PARENT_ID_KEY = "operation.parent_id"

SEVERITY_LABELS: Dict[Severity, str] = {
    Severity.VERBOSE: "Verbose",
    Severity.INFORMATION: "Information",
    Severity.WARNING: "Warning",
    Severity.ERROR: "Error",
    Severity.CRITICAL: "Critical",
}

# Exception records are always reported as errors remotely
EXCEPTION_SEVERITY = SEVERITY_LABELS[Severity.ERROR]


class ApmAdapter(Protocol):
    """Record kinds accepted by the remote sink."""

    enabled: bool

    def trace(self, severity: Severity, message: str, fields: Sequence[Field],
              correlation: Correlation) -> None: ...

    def exception(self, message: str, fields: Sequence[Field],
                  correlation: Correlation) -> None: ...

    def dependency(self, kind: str, target: str, success: bool, start: datetime,
                   end: datetime, message: str, fields: Sequence[Field],
                   correlation: Correlation) -> str: ...

    def request(self, method: str, url: str, duration: timedelta, response_code: str,
                success: bool, source: str, message: str, fields: Sequence[Field],
                correlation: Correlation) -> str: ...

    def flush(self) -> None: ...

    def shutdown(self) -> None: ...


class DisabledApmAdapter:
    """
    APM adapter used when no instrumentation key is configured.

    Every record is silently dropped.
    """

    enabled = False

    def trace(self, severity, message, fields, correlation) -> None:
        pass

    def exception(self, message, fields, correlation) -> None:
        pass

    def dependency(self, kind, target, success, start, end, message, fields, correlation) -> str:
        return ""

    def request(self, method, url, duration, response_code, success, source, message,
                fields, correlation) -> str:
        return ""

    def flush(self) -> None:
        pass

    def shutdown(self) -> None:
        pass


def _to_ns(moment: datetime) -> int:
    return int(moment.timestamp() * 1_000_000) * 1_000


def _duration_ms(duration: timedelta) -> float:
    return duration.total_seconds() * 1000


def _record_id(span: Span) -> str:
    return format_span_id(span.get_span_context().span_id)


class OpenTelemetryApmAdapter:
    """
    APM adapter emitting each record as a finished OpenTelemetry span.

    Record kinds map onto span kinds the way APM backends read them:
    trace and exception records are INTERNAL spans, dependency records
    are CLIENT spans and request records are SERVER spans. Spans are
    started from an empty context, so the parent-operation linkage is
    exactly the carrier's operation id and never an ambient span.
    """

    enabled = True

    def __init__(self, tracer_provider: TracerProvider, owns_provider: bool = False):
        """
        Args:
            tracer_provider: Provider the records are emitted on
            owns_provider: Whether shutdown() should shut the provider down
        """
        self._provider = tracer_provider
        self._owns_provider = owns_provider
        self._tracer = tracer_provider.get_tracer(INSTRUMENTATION_NAME)

    def _attributes(
        self,
        record_kind: str,
        message: str,
        fields: Sequence[Field],
        correlation: Correlation,
        extra: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        attributes: Dict[str, Any] = {}
        for f in fields:
            attributes[f.key] = f.to_property()
        if extra:
            attributes.update(extra)

        attributes[RECORD_KIND_KEY] = record_kind
        attributes["message"] = message
        attributes[SERVICE_NAME_KEY] = correlation.service_name
        if correlation.operation_id:
            attributes[OPERATION_ID_KEY] = correlation.operation_id
            attributes[PARENT_ID_KEY] = correlation.operation_id
        return attributes

    def trace(self, severity: Severity, message: str, fields: Sequence[Field],
              correlation: Correlation) -> None:
        try:
            attributes = self._attributes(
                "trace", message, fields, correlation,
                {"severity": SEVERITY_LABELS[severity]}
            )
            span = self._tracer.start_span(
                message or "trace",
                context=Context(),
                kind=SpanKind.INTERNAL,
                attributes=attributes,
            )
            span.end()
        except Exception:
            logger.warning("Dropped APM trace record", exc_info=True)

    def exception(self, message: str, fields: Sequence[Field],
                  correlation: Correlation) -> None:
        try:
            attributes = self._attributes(
                "exception", message, fields, correlation,
                {"severity": EXCEPTION_SEVERITY}
            )
            span = self._tracer.start_span(
                message or "exception",
                context=Context(),
                kind=SpanKind.INTERNAL,
                attributes=attributes,
            )
            exc = first_error(fields)
            if exc is not None:
                span.record_exception(exc)
            else:
                span.add_event("exception", {"exception.message": message})
            span.set_status(Status(StatusCode.ERROR, message))
            span.end()
        except Exception:
            logger.warning("Dropped APM exception record", exc_info=True)

    def dependency(self, kind: str, target: str, success: bool, start: datetime,
                   end: datetime, message: str, fields: Sequence[Field],
                   correlation: Correlation) -> str:
        try:
            attributes = self._attributes(
                "dependency", message, fields, correlation,
                {
                    "dependency.type": kind,
                    "dependency.target": target,
                    "success": success,
                    "duration_ms": _duration_ms(end - start),
                }
            )
            span = self._tracer.start_span(
                message or f"{kind} {target}",
                context=Context(),
                kind=SpanKind.CLIENT,
                attributes=attributes,
                start_time=_to_ns(start),
            )
            if not success:
                span.set_status(Status(StatusCode.ERROR))
            span.end(end_time=_to_ns(end))
            return _record_id(span)
        except Exception:
            logger.warning("Dropped APM dependency record", exc_info=True)
            return ""

    def request(self, method: str, url: str, duration: timedelta, response_code: str,
                success: bool, source: str, message: str, fields: Sequence[Field],
                correlation: Correlation) -> str:
        try:
            attributes = self._attributes(
                "request", message, fields, correlation,
                {
                    "http.method": method,
                    "http.url": url,
                    "http.status_code": response_code,
                    "success": success,
                    "source": source,
                    "duration_ms": _duration_ms(duration),
                }
            )
            end_ns = time.time_ns()
            start_ns = end_ns - (duration // timedelta(microseconds=1)) * 1_000
            span = self._tracer.start_span(
                f"{method} {url}",
                context=Context(),
                kind=SpanKind.SERVER,
                attributes=attributes,
                start_time=start_ns,
            )
            if not success:
                span.set_status(Status(StatusCode.ERROR))
            span.end(end_time=end_ns)
            return _record_id(span)
        except Exception:
            logger.warning("Dropped APM request record", exc_info=True)
            return ""

    def flush(self) -> None:
        try:
            self._provider.force_flush()
        except Exception:
            logger.warning("Failed to flush APM records", exc_info=True)

    def shutdown(self) -> None:
        self.flush()
        if self._owns_provider:
            self._provider.shutdown()


def _create_tracer_provider(config: TelemetryConfiguration) -> TracerProvider:
    resource = Resource(attributes={
        SERVICE_NAME: config.service_name
    })
    provider = TracerProvider(resource=resource)

    exporter = OTLPSpanExporter(
        endpoint=config.otlp_endpoint,
        headers={INSTRUMENTATION_KEY_HEADER: config.instrumentation_key},
    )
    provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def build_apm_adapter(
    config: TelemetryConfiguration,
    tracer_provider: Optional[TracerProvider] = None
) -> ApmAdapter:
    """
    Select the APM adapter variant for a configuration.

    Args:
        config: Telemetry configuration
        tracer_provider: Provider to emit on instead of building an OTLP one;
            the caller keeps ownership of it

    Returns:
        DisabledApmAdapter when the instrumentation key is empty,
        otherwise an OpenTelemetryApmAdapter
    """
    if not config.remote_enabled:
        logger.debug("APM instrumentation key not configured, remote telemetry disabled")
        return DisabledApmAdapter()

    if tracer_provider is not None:
        return OpenTelemetryApmAdapter(tracer_provider)

    provider = _create_tracer_provider(config)
    logger.info(
        "APM telemetry configured",
        extra={"extra_data": {"otlp_endpoint": config.otlp_endpoint,
                              "service_name": config.service_name}}
    )
    return OpenTelemetryApmAdapter(provider, owns_provider=True)
