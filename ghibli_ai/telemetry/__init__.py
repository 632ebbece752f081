"""Prometheus metrics and OpenTelemetry tracing for the API."""

from __future__ import annotations

import contextlib
import time
from typing import Dict, Iterator
from urllib.parse import unquote

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Status, StatusCode
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .. import __version__
from ..core.config import Settings, get_settings

REQUEST_COUNT = Counter(
    "ghibli_ai_http_requests_total",
    "HTTP requests by route template and status",
    labelnames=("method", "route", "status"),
)
REQUEST_LATENCY = Histogram(
    "ghibli_ai_http_request_duration_seconds",
    "HTTP request latency by route template",
    labelnames=("method", "route"),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 90),
)
GENERATION_COUNT = Counter(
    "ghibli_ai_generations_total",
    "Image generations by provider path and outcome code",
    labelnames=("path", "outcome"),
)
GENERATION_LATENCY = Histogram(
    "ghibli_ai_generation_duration_seconds",
    "Latency of successful generations, archiving included",
    labelnames=("path",),
    buckets=(1, 2, 5, 10, 20, 30, 45, 60, 90, 120),
)

UNMATCHED_ROUTE = "unmatched"

tracer = trace.get_tracer(__name__)
_tracing_configured = False


class GenerationTracker:
    """Outcome holder yielded by :func:`track_generation`."""

    def __init__(self, path: str) -> None:
        self.path = path
        self.outcome = "success"


@contextlib.contextmanager
def track_generation(path: str) -> Iterator[GenerationTracker]:
    """Count one generation on ``path`` and time it when it succeeds.

    Errors carrying a ``code`` attribute are counted under that code, anything
    else as ``INTERNAL_ERROR``. The exception always propagates.
    """

    tracker = GenerationTracker(path)
    started = time.perf_counter()
    with tracer.start_as_current_span("generation", attributes={"generation.path": path}) as span:
        try:
            yield tracker
        except Exception as exc:
            tracker.outcome = getattr(exc, "code", None) or "INTERNAL_ERROR"
            span.set_status(Status(StatusCode.ERROR, tracker.outcome))
            raise
        finally:
            span.set_attribute("generation.outcome", tracker.outcome)
            GENERATION_COUNT.labels(path=path, outcome=tracker.outcome).inc()
        GENERATION_LATENCY.labels(path=path).observe(time.perf_counter() - started)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Records request counts and latency keyed by the matched route template."""

    def __init__(self, app: ASGIApp, *, metrics_path: str) -> None:
        super().__init__(app)
        self._metrics_path = metrics_path

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.url.path == self._metrics_path:
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        route = _route_template(request)
        REQUEST_COUNT.labels(method=request.method, route=route, status=str(response.status_code)).inc()
        REQUEST_LATENCY.labels(method=request.method, route=route).observe(time.perf_counter() - start)
        return response


def setup_prometheus(app: FastAPI, settings: Settings | None = None) -> None:
    settings = settings or get_settings()
    app.add_middleware(PrometheusMiddleware, metrics_path=settings.prometheus_metrics_path)

    @app.get(settings.prometheus_metrics_path, include_in_schema=False)
    async def prometheus_metrics() -> Response:
        return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


def configure_tracing(app: FastAPI, settings: Settings | None = None) -> None:
    """Export spans over OTLP/HTTP when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set."""

    global _tracing_configured
    settings = settings or get_settings()
    if not settings.otel_exporter_otlp_endpoint:
        return
    if _tracing_configured:
        # the provider is process-wide; later apps (tests, reloads) only need instrumenting
        FastAPIInstrumentor.instrument_app(app)
        return

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name or settings.app_name,
                "service.version": __version__,
                "deployment.environment": settings.app_env,
            }
        )
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(
                endpoint=settings.otel_exporter_otlp_endpoint,
                headers=parse_otlp_headers(settings.otel_exporter_otlp_headers),
            )
        )
    )
    trace.set_tracer_provider(provider)
    FastAPIInstrumentor.instrument_app(app, tracer_provider=provider)
    _tracing_configured = True


def _route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


def parse_otlp_headers(raw: str | None) -> Dict[str, str]:
    """Parse ``key=value`` pairs in the W3C baggage style used by OTLP env vars."""

    headers: Dict[str, str] = {}
    for part in (raw or "").split(","):
        key, sep, value = part.partition("=")
        if sep and key.strip():
            headers[unquote(key.strip())] = unquote(value.strip())
    return headers
