"""Logging and tracing setup for the namespace provisioner.

Logs are JSON lines rendered by structlog on top of the stdlib root logger.
The service understands six verbosity names (``all`` through ``none``) rather
than the stdlib level names, although the latter are accepted too.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Dict, Iterator, Optional
from urllib.parse import unquote

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SimpleSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode
from structlog.contextvars import bind_contextvars

from .. import __version__

NAMESPACE_ATTRIBUTE = "provisioner.namespace"
UNTRACED_PATHS = "healthz,readyz,metrics"

_logging_configured = False
_tracer_configured = False

# "none" sits above CRITICAL so nothing passes the filter.
_VERBOSITY = {
    "all": logging.NOTSET,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "none": logging.CRITICAL + 10,
}


def _log_level(level: str | int | None) -> int:
    if isinstance(level, int):
        return level
    if not isinstance(level, str):
        return logging.INFO
    name = level.strip().lower()
    if name in _VERBOSITY:
        return _VERBOSITY[name]
    numeric = logging.getLevelName(name.upper())
    return numeric if isinstance(numeric, int) else logging.INFO


_FILTER_LEVELS = (logging.NOTSET, logging.DEBUG, logging.INFO, logging.WARNING, logging.ERROR, logging.CRITICAL)


def _filter_level(threshold: int) -> int:
    # structlog only builds filtering loggers for the standard levels.
    return max(level for level in _FILTER_LEVELS if level <= threshold)


def _drop_event(logger, method_name, event_dict):  # noqa: ANN001
    raise structlog.DropEvent


def _processors(silent: bool = False) -> list:
    head = [_drop_event] if silent else []
    return head + [
        structlog.contextvars.merge_contextvars,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.add_log_level,
        structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.dict_tracebacks,
        structlog.processors.EventRenamer("message"),
        structlog.processors.JSONRenderer(),
    ]


def configure_logging(service_name: str, level: str | int | None = None) -> None:
    """Route structlog through the root logger as JSON, filtered at ``level``.

    Safe to call again; later calls only change the threshold.
    """

    global _logging_configured
    threshold = _log_level(level)
    root = logging.getLogger()
    if not _logging_configured:
        logging.basicConfig(stream=sys.stderr, format="%(message)s")
        _logging_configured = True
    root.setLevel(threshold)

    structlog.configure(
        processors=_processors(silent=threshold > logging.CRITICAL),
        wrapper_class=structlog.make_filtering_bound_logger(_filter_level(threshold)),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    bind_contextvars(service=service_name, version=__version__)


def parse_otlp_headers(headers: str | None) -> Dict[str, str]:
    """Parse ``OTEL_EXPORTER_OTLP_HEADERS`` style ``k=v,k2=v2`` pairs.

    Values are percent-decoded. Entries without a key or value are skipped.
    """

    parsed: Dict[str, str] = {}
    for item in (headers or "").split(","):
        key, sep, value = item.partition("=")
        key, value = key.strip(), value.strip()
        if sep and key and value:
            parsed[unquote(key)] = unquote(value)
    return parsed


def configure_tracing(
    service_name: str,
    *,
    endpoint: Optional[str] = None,
    headers: Optional[str] = None,
    sampler_ratio: float = 1.0,
    exporter: Optional[SpanExporter] = None,
) -> None:
    """Install the global tracer provider once per process.

    Spans go to the OTLP/HTTP ``endpoint`` when one is set, to ``exporter``
    when given, and otherwise to an in-memory exporter that is never read.
    """

    global _tracer_configured
    if _tracer_configured or isinstance(trace.get_tracer_provider(), TracerProvider):
        _tracer_configured = True
        return

    ratio = min(1.0, max(0.0, sampler_ratio))
    provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": __version__}),
        sampler=ParentBased(TraceIdRatioBased(ratio)),
    )
    if endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=parse_otlp_headers(headers)))
        )
    else:
        provider.add_span_processor(SimpleSpanProcessor(exporter or InMemorySpanExporter()))
    trace.set_tracer_provider(provider)
    _tracer_configured = True


def instrument_fastapi_app(app) -> None:
    """Trace inbound requests except the probe and scrape endpoints."""

    if getattr(app, "_is_instrumented_by_opentelemetry", False):
        return
    FastAPIInstrumentor.instrument_app(
        app,
        tracer_provider=trace.get_tracer_provider(),
        excluded_urls=UNTRACED_PATHS,
    )


@contextmanager
def namespace_span(tracer: trace.Tracer, name: str, namespace: str) -> Iterator[Span]:
    """Span tagged with the tenant namespace; failures mark it as an error."""

    with tracer.start_as_current_span(name, record_exception=False, set_status_on_exception=False) as span:
        span.set_attribute(NAMESPACE_ATTRIBUTE, namespace)
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
