"""
Observability setup:
  - OpenTelemetry distributed tracing → Jaeger (via OTLP gRPC)
  - Prometheus metrics for the realtime layer, notifications and cache

Both are initialised once at startup and injected into FastAPI via middleware.
"""
import logging

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.redis import RedisInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from prometheus_client import Counter, Gauge

from social_api.config import settings

logger = logging.getLogger(__name__)

# ─────────────────────────── Prometheus Metrics ───────────────────────────
WS_CONNECTIONS = Gauge(
    "ws_connections",
    "Live WebSocket connections held by this process",
)

ONLINE_USERS = Gauge(
    "online_users",
    "Distinct users with at least one live connection",
)

REALTIME_EVENTS_TOTAL = Counter(
    "realtime_events_total",
    "Client → server realtime events handled",
    ["event", "outcome"],  # outcome: 'ok' | 'declined'
)

DELIVERIES_TOTAL = Counter(
    "deliveries_total",
    "Delivery Router outcomes per deliver() call",
    ["outcome"],  # 'delivered' | 'offline' | 'dropped'
)

NOTIFICATIONS_TOTAL = Counter(
    "notifications_total",
    "Notification decisions",
    ["type", "outcome"],  # outcome: 'created' | 'suppressed'
)

CACHE_INVALIDATIONS_TOTAL = Counter(
    "cache_invalidations_total",
    "Invalidation table evaluations",
    ["mutation"],
)

CACHE_ERRORS_TOTAL = Counter(
    "cache_errors_total",
    "Cache operations that failed and were swallowed",
    ["operation"],
)


# ─────────────────────────── OpenTelemetry Setup ──────────────────────────
def setup_tracing() -> None:
    """Configure the global OTel TracerProvider with OTLP/Jaeger export."""
    if not settings.otel_enabled:
        logger.info("OTel tracing disabled")
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "deployment.environment": settings.environment,
        }
    )

    provider = TracerProvider(resource=resource)

    try:
        otlp_exporter = OTLPSpanExporter(
            endpoint=settings.otel_exporter_otlp_endpoint,
            insecure=True,
        )
        provider.add_span_processor(BatchSpanProcessor(otlp_exporter))
        logger.info(
            "OTel tracing configured → %s", settings.otel_exporter_otlp_endpoint
        )
    except Exception as exc:
        logger.warning("Could not connect to OTLP exporter: %s — traces disabled", exc)

    trace.set_tracer_provider(provider)

    RedisInstrumentor().instrument()
    SQLAlchemyInstrumentor().instrument()


def instrument_app(app) -> None:  # noqa: ANN001
    """Call after app is created to add FastAPI request spans."""
    if settings.otel_enabled:
        FastAPIInstrumentor.instrument_app(app)
