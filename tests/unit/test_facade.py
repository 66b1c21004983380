"""
Unit tests for the telemetry facade.

Tests cover:
- Routing of each method to the structured log and the APM sink
- Correlation propagation to both sinks
- Local-only mode when no instrumentation key is configured
- Construction failures
- Caller frames and concurrent use of one facade
"""

import io
import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from hypothesis import given, strategies as st
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from dualsink.config.settings import TelemetryConfiguration
from dualsink.errors.codes import ErrorCode
from dualsink.errors.exceptions import ConfigurationError, MissingServiceNameError
from dualsink.telemetry import fields
from dualsink.telemetry.carrier import Carrier, with_operation_id, with_service_name
from dualsink.telemetry.facade import TelemetryFacade, create_telemetry


LOG_METHODS = ["debug", "info", "warn", "error", "critical"]


def _isolated_facade(**overrides):
    """Build a facade with private sinks, for property-based tests."""
    stream = io.StringIO()
    exporter = InMemorySpanExporter()
    provider = TracerProvider(shutdown_on_exit=False)
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    values = {"instrumentation_key": "test-ikey", "service_name": "billing", "log_level": "debug"}
    values.update(overrides)
    facade = TelemetryFacade(TelemetryConfiguration(**values), stream=stream, tracer_provider=provider)
    return facade, stream, exporter


def _lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestConstruction:
    """Tests for building a facade."""

    def test_empty_key_runs_local_only(self, log_stream):
        facade = TelemetryFacade(TelemetryConfiguration(service_name="billing"), stream=log_stream)
        assert facade.remote_enabled is False

    def test_key_enables_remote(self, make_facade):
        assert make_facade().remote_enabled is True

    def test_invalid_log_level_fails_construction(self, log_stream):
        config = TelemetryConfiguration.model_construct(
            instrumentation_key="", service_name="billing", log_level="loud",
            caller_skip=0, otlp_endpoint=None, log_output="stdout",
        )

        with pytest.raises(ConfigurationError) as exc_info:
            TelemetryFacade(config, stream=log_stream)

        assert exc_info.value.error_code == ErrorCode.INVALID_LOG_LEVEL

    def test_unopenable_output_fails_before_remote_is_built(self, tmp_path):
        config = TelemetryConfiguration(
            service_name="billing",
            instrumentation_key="ikey",
            log_output=str(tmp_path / "missing" / "out.log"),
        )

        with patch("dualsink.telemetry.facade.build_apm_adapter") as build:
            with pytest.raises(ConfigurationError):
                TelemetryFacade(config)

        build.assert_not_called()

    def test_create_telemetry_returns_facade(self, log_stream):
        facade = create_telemetry(TelemetryConfiguration(service_name="billing"), stream=log_stream)
        assert isinstance(facade, TelemetryFacade)


class TestRouting:
    """Tests for which sink each method reaches."""

    def test_debug_never_reaches_apm(self, make_facade, carrier, read_log, span_exporter):
        make_facade().debug(carrier, "cache miss", fields.string("key", "user:1"))

        [record] = read_log()
        assert record["level"] == "debug"
        assert span_exporter.get_finished_spans() == ()

    def test_info_and_warn_send_traces(self, make_facade, carrier, read_log, span_exporter):
        facade = make_facade()

        facade.info(carrier, "started")
        facade.warn(carrier, "slow")

        assert [r["level"] for r in read_log()] == ["info", "warn"]
        spans = span_exporter.get_finished_spans()
        assert [s.attributes["apm.record_kind"] for s in spans] == ["trace", "trace"]
        assert [s.attributes["severity"] for s in spans] == ["Information", "Warning"]

    def test_error_and_critical_send_error_exceptions(self, make_facade, carrier, read_log, span_exporter):
        facade = make_facade()

        facade.error(carrier, "failed", fields.error_field(ValueError("x")))
        facade.critical(carrier, "down")

        assert [r["level"] for r in read_log()] == ["error", "critical"]
        spans = span_exporter.get_finished_spans()
        assert [s.attributes["apm.record_kind"] for s in spans] == ["exception", "exception"]
        assert [s.attributes["severity"] for s in spans] == ["Error", "Error"]

    def test_local_only_error_emits_one_record_and_no_apm_call(self, log_stream, read_log, carrier):
        facade = TelemetryFacade(TelemetryConfiguration(service_name="billing"), stream=log_stream)

        with patch("dualsink.telemetry.apm_adapter.OpenTelemetryApmAdapter.exception") as exception:
            facade.error(carrier, "boom")

        assert len(read_log()) == 1
        exception.assert_not_called()

    @pytest.mark.parametrize("success", [True, False])
    def test_dependency_logs_information_regardless_of_success(
        self, make_facade, carrier, read_log, span_exporter, success
    ):
        start = datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)
        end = start + timedelta(milliseconds=40)

        record_id = make_facade().dependency(
            carrier, "SQL", "orders-db", success, start, end, "load order",
            fields.integer("rows", 3),
        )

        [record] = read_log()
        assert record["level"] == "info"
        assert record["success"] is success
        assert record["dependency_type"] == "SQL"
        assert record["target"] == "orders-db"
        assert record["duration_ms"] == pytest.approx(40)
        assert record["rows"] == 3
        [span] = span_exporter.get_finished_spans()
        assert span.attributes["apm.record_kind"] == "dependency"
        assert record_id != ""

    @pytest.mark.parametrize("success", [True, False])
    def test_request_logs_information_regardless_of_success(
        self, make_facade, carrier, read_log, span_exporter, success
    ):
        make_facade().request(
            carrier, "GET", "http://svc/orders", timedelta(milliseconds=15),
            "200" if success else "503", success, "10.0.0.1", "list orders",
        )

        [record] = read_log()
        assert record["level"] == "info"
        assert record["success"] is success
        assert record["method"] == "GET"
        assert record["url"] == "http://svc/orders"
        assert record["source"] == "10.0.0.1"
        [span] = span_exporter.get_finished_spans()
        assert span.attributes["apm.record_kind"] == "request"

    def test_request_and_dependency_return_empty_id_when_local_only(self, log_stream, carrier):
        facade = TelemetryFacade(TelemetryConfiguration(service_name="billing"), stream=log_stream)
        now = datetime.now(timezone.utc)

        assert facade.dependency(carrier, "HTTP", "t", True, now, now, "d") == ""
        assert facade.request(carrier, "GET", "/", timedelta(0), "200", True, "", "r") == ""

    def test_log_level_threshold(self, make_facade, carrier, read_log):
        facade = make_facade(log_level="warn")

        facade.debug(carrier, "d")
        facade.info(carrier, "i")
        facade.warn(carrier, "w")
        facade.error(carrier, "e")

        assert [r["message"] for r in read_log()] == ["w", "e"]

    def test_level_threshold_does_not_filter_apm(self, make_facade, carrier, span_exporter):
        make_facade(log_level="error").info(carrier, "still traced")

        assert len(span_exporter.get_finished_spans()) == 1


class TestCorrelation:
    """Tests for correlation values reaching both sinks."""

    def test_payment_processed_scenario(self, log_stream, read_log):
        facade = TelemetryFacade(
            TelemetryConfiguration(instrumentation_key="", service_name="billing", log_level="info"),
            stream=log_stream,
        )
        carrier = with_service_name(with_operation_id(Carrier(), "op-1"), "billing")

        with patch("dualsink.telemetry.apm_adapter.OpenTelemetryApmAdapter.trace") as trace:
            facade.info(carrier, "payment processed", fields.string("amount", "42"))

        [record] = read_log()
        assert record["level"] == "info"
        assert record["message"] == "payment processed"
        assert record["amount"] == "42"
        assert record["OperationID"] == "op-1"
        assert record["ServiceName"] == "billing"
        trace.assert_not_called()

    def test_missing_service_name_fails_loudly(self, make_facade, read_log, span_exporter):
        facade = make_facade()
        carrier = with_operation_id(Carrier(), "op-1")

        for method in LOG_METHODS:
            with pytest.raises(MissingServiceNameError):
                getattr(facade, method)(carrier, "mislabeled")

        assert read_log() == []
        assert span_exporter.get_finished_spans() == ()

    @given(method=st.sampled_from(LOG_METHODS), message=st.text())
    def test_missing_operation_id_is_valid(self, method, message):
        facade, stream, exporter = _isolated_facade()

        getattr(facade, method)(with_service_name(Carrier(), "billing"), message)

        [record] = _lines(stream)
        assert record.get("OperationID", "") == ""
        assert record["message"] == message
        for span in exporter.get_finished_spans():
            assert "OperationID" not in span.attributes

    @given(
        method=st.sampled_from(LOG_METHODS),
        operation_id=st.text(min_size=1),
        values=st.lists(st.text(), max_size=3),
    )
    def test_operation_id_reaches_every_record(self, method, operation_id, values):
        facade, stream, exporter = _isolated_facade()
        carrier = with_service_name(with_operation_id(Carrier(), operation_id), "billing")

        getattr(facade, method)(carrier, "event", *[fields.string(f"k{i}", v) for i, v in enumerate(values)])

        for record in _lines(stream):
            assert record["OperationID"] == operation_id
        for span in exporter.get_finished_spans():
            assert span.attributes["OperationID"] == operation_id
            assert span.attributes["operation.parent_id"] == operation_id

    @given(message=st.text(), values=st.lists(st.integers(), max_size=3))
    def test_debug_never_traced_with_key(self, message, values):
        facade, stream, exporter = _isolated_facade()

        facade.debug(
            with_service_name(Carrier(), "billing"), message,
            *[fields.integer(f"n{i}", v) for i, v in enumerate(values)],
        )

        assert len(_lines(stream)) == 1
        assert exporter.get_finished_spans() == ()


class TestTrackDependency:
    """Tests for the track_dependency context manager."""

    def test_successful_block(self, make_facade, carrier, read_log, span_exporter):
        with make_facade().track_dependency(carrier, "HTTP", "payments-api", "charge"):
            pass

        [record] = read_log()
        assert record["success"] is True
        assert record["target"] == "payments-api"
        [span] = span_exporter.get_finished_spans()
        assert span.attributes["success"] is True

    def test_failing_block_is_unsuccessful_and_reraises(self, make_facade, carrier, read_log):
        with pytest.raises(TimeoutError):
            with make_facade().track_dependency(carrier, "HTTP", "payments-api", "charge"):
                raise TimeoutError("no answer")

        [record] = read_log()
        assert record["success"] is False

    def test_bad_carrier_fails_before_block_runs(self, make_facade):
        ran = []

        with pytest.raises(MissingServiceNameError):
            with make_facade().track_dependency(Carrier(), "HTTP", "t", "m"):
                ran.append(True)

        assert ran == []

    def test_reports_caller_frame(self, make_facade, carrier, read_log):
        facade = make_facade()

        def charge_card():
            with facade.track_dependency(carrier, "HTTP", "payments-api", "charge"):
                pass

        def refund_card():
            with facade.track_dependency(carrier, "HTTP", "payments-api", "refund"):
                raise TimeoutError("no answer")

        charge_card()
        with pytest.raises(TimeoutError):
            refund_card()

        assert [r["function"] for r in read_log()] == ["charge_card", "refund_card"]


class TestCallerFrame:
    """Tests for the call origin reported in log records."""

    def test_direct_calls_report_caller(self, make_facade, carrier, read_log):
        facade = make_facade()
        now = datetime.now(timezone.utc)

        def place_order():
            facade.info(carrier, "placed")
            facade.dependency(carrier, "SQL", "orders-db", True, now, now, "insert")
            facade.request(carrier, "POST", "/orders", timedelta(0), "201", True, "", "served")

        place_order()

        assert [r["function"] for r in read_log()] == ["place_order"] * 3

    def test_caller_skip_reports_wrapper_caller(self, make_facade, carrier, read_log):
        facade = make_facade(caller_skip=1)

        def log_event(message):
            facade.info(carrier, message)

        def checkout():
            log_event("checkout started")

        checkout()

        [record] = read_log()
        assert record["function"] == "checkout"

    def test_caller_field_cannot_replace_origin(self, make_facade, carrier, read_log):
        facade = make_facade()

        def ship():
            facade.info(carrier, "shipped", fields.string("line", "express"), fields.string("function", "x"))

        ship()

        [record] = read_log()
        assert record["function"] == "ship"
        assert isinstance(record["line"], int)
        assert record["field.line"] == "express"
        assert record["field.function"] == "x"


class TestConcurrency:
    """Tests for sharing one facade across threads."""

    def test_concurrent_calls_keep_their_own_operation_id(self, make_facade, read_log, span_exporter):
        facade = make_facade()
        num_threads = 8
        calls_per_thread = 50
        methods = [facade.info, facade.warn, facade.error]

        def emit_events(worker):
            carrier = with_service_name(with_operation_id(Carrier(), f"op-{worker}"), "billing")
            for i in range(calls_per_thread):
                methods[i % len(methods)](carrier, f"event {i}", fields.integer("worker", worker))
            return worker

        with ThreadPoolExecutor(max_workers=num_threads) as executor:
            futures = [executor.submit(emit_events, i) for i in range(num_threads)]
            results = [f.result() for f in as_completed(futures)]

        assert sorted(results) == list(range(num_threads))

        records = read_log()
        assert len(records) == num_threads * calls_per_thread
        for record in records:
            assert record["OperationID"] == f"op-{record['worker']}"
            assert record["ServiceName"] == "billing"

        spans = span_exporter.get_finished_spans()
        assert len(spans) == num_threads * calls_per_thread
        for span in spans:
            expected = f"op-{span.attributes['worker']}"
            assert span.attributes["OperationID"] == expected
            assert span.attributes["operation.parent_id"] == expected


class TestLifecycle:
    """Tests for flush and shutdown."""

    def test_flush_and_shutdown(self, make_facade, carrier, span_exporter):
        facade = make_facade()
        facade.info(carrier, "before shutdown")

        facade.flush()
        facade.shutdown()

        assert len(span_exporter.get_finished_spans()) == 1
