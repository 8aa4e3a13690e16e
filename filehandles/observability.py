"""
File handle console observability (logging + OpenTelemetry)

Logging is always configured from FHC_LOG_LEVEL. Tracing is enabled via
environment variables:
- FHC_OTEL_ENABLED=true
- FHC_OTEL_SERVICE_NAME=file-handle-console
- FHC_OTEL_EXPORTER=console|otlp
- FHC_OTEL_OTLP_ENDPOINT=https://... (only if exporter=otlp)

Once tracing is configured, span() wraps the console's own work: each attach
helper run and each handle dump gets a span tagged with the target pid.
"""

from __future__ import annotations

import logging
import os
from contextlib import nullcontext
from typing import Optional

from .config import FHC_VERSION, LOG_LEVEL

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
TRACER_NAME = "filehandles"

_tracing = False


def _bool_env(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(level=getattr(logging, level, logging.INFO), format=LOG_FORMAT)


def tracing_enabled() -> bool:
    return _tracing


def span(name: str, attributes: Optional[dict] = None):
    """Context manager for a console span; a no-op until tracing is configured."""
    if not _tracing:
        return nullcontext()
    from opentelemetry import trace

    clean = {k: v for k, v in (attributes or {}).items() if v is not None}
    return trace.get_tracer(TRACER_NAME).start_as_current_span(name, attributes=clean)


def _span_exporter(kind: str):
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter

    if kind != "otlp":
        return ConsoleSpanExporter()
    try:
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
    except ImportError:
        logger.warning("OTLP exporter unavailable, falling back to console spans")
        return ConsoleSpanExporter()
    endpoint = os.environ.get("FHC_OTEL_OTLP_ENDPOINT")
    return OTLPSpanExporter(endpoint=endpoint) if endpoint else OTLPSpanExporter()


def configure_observability() -> bool:
    global _tracing
    if not _bool_env("FHC_OTEL_ENABLED", False):
        return False

    service_name = os.environ.get("FHC_OTEL_SERVICE_NAME", "file-handle-console")
    exporter = os.environ.get("FHC_OTEL_EXPORTER", "console").lower()

    try:
        from opentelemetry import trace
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError:
        logger.warning("FHC_OTEL_ENABLED is set but opentelemetry-sdk is not installed")
        return False

    # the console always reports on the process it runs in
    resource = Resource.create({
        "service.name": service_name,
        "service.version": FHC_VERSION,
        "process.pid": os.getpid(),
    })
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(_span_exporter(exporter)))

    trace.set_tracer_provider(provider)
    _tracing = True
    logger.info("OpenTelemetry tracing enabled (exporter=%s)", exporter)
    return True


def instrument_app(app) -> bool:
    if not _tracing:
        return False
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.instrumentation.logging import LoggingInstrumentor
    except ImportError:
        logger.warning("FastAPI instrumentation not installed, only console spans are traced")
        return False

    LoggingInstrumentor().instrument(set_logging_format=True)
    # health checks would drown out the console's own requests
    FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
    return True
