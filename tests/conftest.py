"""
Shared pytest fixtures and configuration for all tests.
"""
import io
import json
import os
from typing import Callable, List

import pytest
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

# Hypothesis configuration for property-based testing
from hypothesis import settings, Verbosity, Phase

from dualsink.config.settings import TelemetryConfiguration
from dualsink.telemetry.carrier import Carrier, with_operation_id, with_service_name
from dualsink.telemetry.facade import TelemetryFacade

# Default profile: balanced for local development
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,
    print_blob=True,
)

# CI profile: more thorough testing for continuous integration
settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,
)

# Debug profile: minimal examples for quick debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


def read_records(stream: io.StringIO) -> List[dict]:
    """Parse every JSON line written to a stream."""
    return [json.loads(line) for line in stream.getvalue().splitlines() if line.strip()]


@pytest.fixture
def log_stream() -> io.StringIO:
    """In-memory stream receiving structured log records."""
    return io.StringIO()


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """In-memory exporter receiving APM records."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter) -> TracerProvider:
    """Tracer provider exporting synchronously to the in-memory exporter."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider
    provider.shutdown()


@pytest.fixture
def make_facade(log_stream, tracer_provider) -> Callable[..., TelemetryFacade]:
    """Factory building a facade wired to the in-memory sinks."""
    def _make(**overrides) -> TelemetryFacade:
        values = {
            "instrumentation_key": "test-ikey",
            "service_name": "billing",
            "log_level": "debug",
        }
        values.update(overrides)
        return TelemetryFacade(
            TelemetryConfiguration(**values),
            stream=log_stream,
            tracer_provider=tracer_provider,
        )
    return _make


@pytest.fixture
def carrier() -> Carrier:
    """Carrier with a service name and an operation id."""
    return with_operation_id(with_service_name(Carrier(), "billing"), "op-1")


@pytest.fixture
def read_log(log_stream) -> Callable[[], List[dict]]:
    """Callable returning the records written to log_stream so far."""
    return lambda: read_records(log_stream)
