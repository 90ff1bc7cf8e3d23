import logging
from contextlib import asynccontextmanager
from typing import Optional, Sequence

import httpx
from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import ReadableSpan, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SpanExporter,
    SpanExportResult,
)
from prometheus_client import REGISTRY, CollectorRegistry, Info
from prometheus_fastapi_instrumentator import Instrumentator

from doogle.overrides import OverrideStore
from doogle.relay.config import ProxyConfig
from doogle.relay.dispatcher import UpstreamDispatcher, build_client
from doogle.relay.pipeline import PreCheck
from doogle.routes import router
from doogle.vars import (
    METRICS_PATH,
    OTLP_ENDPOINT,
    OTLP_HEADERS,
    OVERRIDES_DIR,
    OVERRIDES_ENABLED,
    SERVICE_NAME,
)

logger = logging.getLogger("uvicorn.error")


class FilteringSpanExporter(SpanExporter):
    """
    Drops the per-send ASGI spans before export.

    The FastAPI instrumentation opens a span for every ``send`` call, and a
    streamed relay calls ``send`` once per upstream chunk, so a single image or
    script download would otherwise export hundreds of spans. The relay's own
    ``relay_request`` span already covers the body phase.
    """

    def __init__(self, exporter: SpanExporter):
        self.exporter = exporter

    @staticmethod
    def is_chunk_span(span: ReadableSpan) -> bool:
        attributes = span.attributes or {}
        return attributes.get("asgi.event.type") == "http.response.body"

    def export(self, spans: Sequence[ReadableSpan]) -> SpanExportResult:
        kept = [span for span in spans if not self.is_chunk_span(span)]
        if not kept:
            return SpanExportResult.SUCCESS
        return self.exporter.export(kept)

    def shutdown(self):
        return self.exporter.shutdown()

    def force_flush(self, timeout_millis: int = 30000):
        return self.exporter.force_flush(timeout_millis)


trace.set_tracer_provider(
    TracerProvider(resource=Resource.create({"service.name": SERVICE_NAME}))
)
if OTLP_ENDPOINT:
    otlp_exporter = OTLPSpanExporter(
        endpoint=OTLP_ENDPOINT,
        headers=(
            dict(h.split("=", 1) for h in OTLP_HEADERS.split(",") if "=" in h)
            if OTLP_HEADERS
            else None
        ),
    )
    trace.get_tracer_provider().add_span_processor(
        BatchSpanProcessor(FilteringSpanExporter(otlp_exporter))
    )

# Add app_name to the metrics
app_info = Info("fastapi_app_info", "Application Info")
app_info.info({"app_name": SERVICE_NAME})


def default_pre_checks() -> list:
    if not OVERRIDES_ENABLED:
        return []
    logger.info(f"Static overrides enabled from {OVERRIDES_DIR}")
    return [OverrideStore(OVERRIDES_DIR)]


def create_app(
    config: Optional[ProxyConfig] = None,
    pre_checks: Optional[Sequence[PreCheck]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    metrics_registry: Optional[CollectorRegistry] = None,
) -> FastAPI:
    """
    Build the proxy application.

    ``transport`` replaces the network transport of the upstream client (tests
    pass an ``httpx.MockTransport``).
    """
    config = config or ProxyConfig.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        dispatcher = UpstreamDispatcher(build_client(config, transport))
        app.state.dispatcher = dispatcher
        logger.info(
            f"Relaying {config.public_origin} -> {config.upstream_scheme}://{config.upstream_hostname} "
            f"(mode: {config.mode})"
        )
        try:
            yield
        finally:
            await dispatcher.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.config = config
    app.state.pre_checks = list(default_pre_checks() if pre_checks is None else pre_checks)

    Instrumentator(registry=metrics_registry or REGISTRY).instrument(app).expose(
        app, endpoint=METRICS_PATH
    )
    FastAPIInstrumentor.instrument_app(app, excluded_urls=METRICS_PATH)

    app.include_router(router)
    return app


app = create_app()
