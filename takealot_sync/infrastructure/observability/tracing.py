"""OpenTelemetry tracing support.

Tracing is disabled until ``configure_tracing`` is called. While disabled,
``trace_span`` and ``traced`` are no-ops, so sync code can be instrumented
unconditionally.

Usage:
    from takealot_sync.infrastructure.observability import configure_tracing, trace_span

    configure_tracing(service_name="takealot-sync-api", endpoint="http://localhost:4317")

    with trace_span("fetch_page", page_number=3):
        ...

    @traced("run_sync")
    def run_sync(options): ...
"""

from __future__ import annotations

import functools
import inspect
import os
from contextlib import AbstractContextManager
from contextvars import ContextVar
from typing import Any, Callable, TypeVar

from .logging import get_logger

logger = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

_tracer: Any = None
_tracing_enabled: bool = False

# trace/span ids of the active span, for log correlation
_trace_context: ContextVar[dict[str, str]] = ContextVar("trace_context", default={})


def is_tracing_enabled() -> bool:
    return _tracing_enabled


def get_trace_context() -> dict[str, str]:
    """Get current trace context for log correlation."""
    return _trace_context.get()


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def configure_tracing(
    *,
    service_name: str = "takealot-sync",
    endpoint: str | None = None,
    enable: bool = True,
    sample_rate: float = 1.0,
) -> bool:
    """Configure OpenTelemetry tracing.

    Args:
        service_name: Name of this service in traces.
        endpoint: OTLP endpoint URL. Without one, spans are only exported to
            the console when ``OTEL_TRACES_CONSOLE=true``.
        enable: Whether to enable tracing at all.
        sample_rate: Fraction of traces to sample (0.0 to 1.0).

    Returns:
        True if tracing is now enabled.
    """
    global _tracer, _tracing_enabled

    if not enable:
        _tracing_enabled = False
        logger.info("Tracing disabled by configuration")
        return False

    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import (
        BatchSpanProcessor,
        ConsoleSpanExporter,
        SimpleSpanProcessor,
    )
    from opentelemetry.sdk.trace.sampling import TraceIdRatioBased

    resource = Resource.create({SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource, sampler=TraceIdRatioBased(sample_rate))

    if endpoint:
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError:
            logger.warning(
                "opentelemetry-exporter-otlp not installed; traces won't be exported"
            )
        else:
            provider.add_span_processor(
                BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint))
            )
            logger.info("Tracing exporter configured for %s", endpoint)
    elif os.environ.get("OTEL_TRACES_CONSOLE", "").lower() == "true":
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
        logger.info("Console trace exporter enabled")

    _tracer = provider.get_tracer(service_name)
    _tracing_enabled = True
    logger.info("Tracing enabled for service '%s'", service_name)
    return True


def disable_tracing() -> None:
    global _tracer, _tracing_enabled
    _tracer = None
    _tracing_enabled = False


# ---------------------------------------------------------------------------
# Tracing helpers
# ---------------------------------------------------------------------------


class trace_span(AbstractContextManager):
    """Open a span for the duration of a ``with`` block.

    Yields the span, or ``None`` when tracing is disabled.
    """

    def __init__(self, name: str, *, kind: str = "internal", **attributes: Any):
        self.name = name
        self.kind = kind
        self.attributes = attributes
        self.span: Any = None
        self._span_cm: Any = None
        self._ctx_token: Any = None

    def __enter__(self):
        if not _tracing_enabled or _tracer is None:
            return None
        from opentelemetry.trace import SpanKind

        kind_map = {
            "internal": SpanKind.INTERNAL,
            "server": SpanKind.SERVER,
            "client": SpanKind.CLIENT,
        }
        self._span_cm = _tracer.start_as_current_span(
            self.name, kind=kind_map.get(self.kind, SpanKind.INTERNAL)
        )
        self.span = self._span_cm.__enter__()
        for key, value in self.attributes.items():
            if value is not None:
                self.span.set_attribute(key, str(value))
        ctx = self.span.get_span_context()
        if ctx.is_valid:
            self._ctx_token = _trace_context.set(
                {
                    "trace_id": format(ctx.trace_id, "032x"),
                    "span_id": format(ctx.span_id, "016x"),
                }
            )
        return self.span

    def __exit__(self, exc_type, exc_value, traceback):
        if self._ctx_token is not None:
            _trace_context.reset(self._ctx_token)
        if self._span_cm is not None:
            self._span_cm.__exit__(exc_type, exc_value, traceback)
        return False


def traced(
    name: str | None = None,
    *,
    kind: str = "internal",
) -> Callable[[F], F]:
    """Decorator to trace a function (sync or async).

    Example:
        @traced("run_sync")
        def run_sync(options: TakealotSyncOptions) -> TakealotApiResponse: ...
    """

    def decorator(func: F) -> F:
        span_name = name or func.__name__

        if inspect.iscoroutinefunction(func):

            @functools.wraps(func)
            async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
                with trace_span(span_name, kind=kind):
                    return await func(*args, **kwargs)

            return async_wrapper  # type: ignore[return-value]

        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            with trace_span(span_name, kind=kind):
                return func(*args, **kwargs)

        return sync_wrapper  # type: ignore[return-value]

    return decorator


def _current_span() -> Any:
    if not _tracing_enabled:
        return None
    from opentelemetry import trace

    span = trace.get_current_span()
    if span is None or not span.is_recording():
        return None
    return span


def add_span_event(name: str, **attributes: Any) -> None:
    """Add a timestamped event to the current span."""
    span = _current_span()
    if span is not None:
        span.add_event(name, attributes={k: str(v) for k, v in attributes.items()})


def set_span_attribute(key: str, value: Any) -> None:
    span = _current_span()
    if span is not None:
        span.set_attribute(key, str(value))


def record_exception(exception: BaseException) -> None:
    """Record an exception on the current span and mark it as an error."""
    span = _current_span()
    if span is not None:
        from opentelemetry.trace import Status, StatusCode

        span.record_exception(exception)
        span.set_status(Status(StatusCode.ERROR))


TRACING_ENV = "TAKEALOT_SYNC_TRACING"


def configure_tracing_from_env(service_name: str = "takealot-sync") -> bool:
    """Enable tracing when ``TAKEALOT_SYNC_TRACING`` is set to a true value.

    The exporter endpoint is read from ``OTEL_EXPORTER_OTLP_ENDPOINT`` and
    the sample rate from ``OTEL_TRACES_SAMPLER_ARG``.
    """
    if os.environ.get(TRACING_ENV, "").strip().lower() not in {"1", "true", "yes"}:
        return False
    raw_rate = os.environ.get("OTEL_TRACES_SAMPLER_ARG", "").strip()
    try:
        sample_rate = float(raw_rate) if raw_rate else 1.0
    except ValueError:
        logger.warning("Ignoring invalid OTEL_TRACES_SAMPLER_ARG %r", raw_rate)
        sample_rate = 1.0
    return configure_tracing(
        service_name=service_name,
        endpoint=os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or None,
        sample_rate=min(1.0, max(0.0, sample_rate)),
    )
