"""Tests for logging context, in-process metrics and tracing helpers."""

import asyncio
import logging

import pytest

from takealot_sync.infrastructure.observability import (
    add_span_event,
    current_log_context,
    format_prometheus,
    get_metrics_summary,
    get_trace_context,
    is_tracing_enabled,
    log_context,
    record_api_request,
    record_proxy_request,
    record_sync_run,
    set_span_attribute,
    trace_span,
    traced,
)
from takealot_sync.infrastructure.observability.logging import ContextualFormatter
from takealot_sync.infrastructure.observability.metrics import (
    SYNC_PRODUCTS_WRITTEN,
    SYNC_RUNS,
    get_registry,
)


class TestLogContext:
    def test_fields_nest_and_restore(self) -> None:
        with log_context(integration_id=1):
            with log_context(run_id=7):
                assert current_log_context() == {"integration_id": 1, "run_id": 7}
            assert current_log_context() == {"integration_id": 1}
        assert current_log_context() == {}

    def test_formatter_appends_context_without_touching_message(self) -> None:
        formatter = ContextualFormatter("%(message)s")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "Fetched page %d", (3,), None)
        with log_context(run_id=9):
            output = formatter.format(record)
        assert output == "Fetched page 3 [run_id=9]"
        assert record.msg == "Fetched page %d"

    def test_formatter_prefers_captured_context(self) -> None:
        formatter = ContextualFormatter("%(message)s")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)
        record.log_context = {"integration_id": 4}
        assert formatter.format(record) == "hello [integration_id=4]"


class TestMetrics:
    def test_record_sync_run_counts_runs_and_products(self) -> None:
        record_sync_run("manual", "success", 1.5, imported=10, updated=4)
        record_sync_run("cron", "partial", 0.5, imported=1, updated=0)

        registry = get_registry()
        assert registry.counter(SYNC_RUNS).get({"sync_type": "manual", "status": "success"}) == 1
        written = registry.counter(SYNC_PRODUCTS_WRITTEN)
        assert written.get({"outcome": "imported"}) == 11
        assert written.get({"outcome": "updated"}) == 4

    def test_prometheus_export_lists_counters_and_summaries(self) -> None:
        record_api_request("/sync", "POST", 200, 0.25)
        record_proxy_request("p1", "rate_limited")

        text = format_prometheus()

        assert "# TYPE api_requests_total counter" in text
        assert 'api_requests_total{endpoint="/sync",method="POST",status="200"} 1.0' in text
        assert "# TYPE api_request_duration_seconds summary" in text
        assert 'proxy_requests_total{endpoint="p1",outcome="rate_limited"} 1.0' in text

    def test_summary_uses_unquoted_labels(self) -> None:
        record_proxy_request("direct", "success")
        summary = get_metrics_summary()
        assert summary["counters"]["proxy_requests_total"] == {
            "endpoint=direct,outcome=success": 1.0
        }


class TestTracingDisabled:
    def test_disabled_by_default(self) -> None:
        assert is_tracing_enabled() is False
        assert get_trace_context() == {}

    def test_trace_span_yields_none(self) -> None:
        with trace_span("noop", key="value") as span:
            assert span is None

    def test_traced_wraps_sync_and_async_functions(self) -> None:
        @traced("double")
        def double(x: int) -> int:
            return x * 2

        @traced()
        async def triple(x: int) -> int:
            return x * 3

        assert double(21) == 42
        assert asyncio.run(triple(3)) == 9

    def test_helpers_are_noops(self) -> None:
        add_span_event("event", key="value")
        set_span_attribute("key", "value")

    def test_exceptions_propagate_through_traced(self) -> None:
        @traced("boom")
        def boom() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            boom()


class TestTracingEnabled:
    @pytest.fixture(autouse=True)
    def _tracing(self):
        from takealot_sync.infrastructure.observability import configure_tracing, disable_tracing

        assert configure_tracing(service_name="takealot-sync-test")
        yield
        disable_tracing()

    def test_trace_span_yields_recording_span(self) -> None:
        with trace_span("sync_catalog", integration_id=1) as span:
            assert span is not None
            assert get_trace_context()["trace_id"]

    def test_configure_can_disable(self) -> None:
        from takealot_sync.infrastructure.observability import configure_tracing

        assert configure_tracing(enable=False) is False
        assert is_tracing_enabled() is False


class TestTracingFromEnv:
    @pytest.fixture(autouse=True)
    def _reset(self, monkeypatch):
        from takealot_sync.infrastructure.observability import disable_tracing

        for name in ("TAKEALOT_SYNC_TRACING", "OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_TRACES_SAMPLER_ARG"):
            monkeypatch.delenv(name, raising=False)
        yield
        disable_tracing()

    def test_stays_off_without_flag(self) -> None:
        from takealot_sync.infrastructure.observability import configure_tracing_from_env

        assert configure_tracing_from_env() is False
        assert is_tracing_enabled() is False

    def test_flag_enables_and_bad_rate_falls_back(self, monkeypatch) -> None:
        from takealot_sync.infrastructure.observability import configure_tracing_from_env

        monkeypatch.setenv("TAKEALOT_SYNC_TRACING", "true")
        monkeypatch.setenv("OTEL_TRACES_SAMPLER_ARG", "often")

        assert configure_tracing_from_env(service_name="takealot-sync-test") is True
        assert is_tracing_enabled() is True
