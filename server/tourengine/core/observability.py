"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

from opentelemetry import trace, metrics
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry
import structlog

from .config import API_VERSION, SERVICE_NAME, settings

# Prometheus metrics
REGISTRY = CollectorRegistry()

# Request metrics
REQUEST_COUNT = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status_code'],
    registry=REGISTRY
)

REQUEST_DURATION = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    registry=REGISTRY
)

# Business metrics
SLOT_RESERVATIONS = Counter(
    'slot_reservations_total',
    'Slot reservation attempts by outcome',
    ['outcome'],
    registry=REGISTRY
)

SLOT_SPOTS_RELEASED = Counter(
    'slot_spots_released_total',
    'Spots returned to slot inventory',
    registry=REGISTRY
)

OFFER_TRANSITIONS = Counter(
    'offer_transitions_total',
    'Offer status transitions by target status',
    ['to_status'],
    registry=REGISTRY
)

BOOKINGS_CONFIRMED = Counter(
    'bookings_confirmed_total',
    'Total bookings confirmed',
    ['source'],
    registry=REGISTRY
)

BOOKINGS_CANCELLED = Counter(
    'bookings_cancelled_total',
    'Total bookings cancelled',
    ['reason'],
    registry=REGISTRY
)

SWEEPER_ITEMS = Counter(
    'sweeper_items_total',
    'Items handled by lifecycle sweepers',
    ['sweeper', 'outcome'],
    registry=REGISTRY
)

NOTIFICATIONS_FAILED = Counter(
    'notifications_failed_total',
    'Notifications that could not be delivered',
    ['channel'],
    registry=REGISTRY
)

SLOT_UTILIZATION = Gauge(
    'slot_capacity_utilization',
    'Booked share of a slot capacity, in percent',
    ['slot_id'],
    registry=REGISTRY
)


def setup_structured_logging():
    """Configure structured logging with structlog."""

    def add_trace_context(logger, method_name, event_dict):
        """Add trace context to log events."""
        span = trace.get_current_span()
        if span and span.is_recording():
            ctx = span.get_span_context()
            event_dict['trace_id'] = format(ctx.trace_id, '032x')
            event_dict['span_id'] = format(ctx.span_id, '016x')
        return event_dict

    # request_id arrives through structlog.contextvars, bound by RequestIDMiddleware
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=getattr(logging, settings.log_level))


def _resource() -> Resource:
    return Resource.create({
        "service.name": SERVICE_NAME,
        "service.version": API_VERSION,
        "environment": settings.environment,
    })


def setup_tracing():
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource())
    if settings.otlp_endpoint:
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
        )
    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics():
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=settings.otlp_endpoint),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=_resource(), metric_readers=[reader]))
    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine=None):
    """Instrument SQLAlchemy with OpenTelemetry."""
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)
    else:
        SQLAlchemyInstrumentor().instrument()


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, status_code: int, duration: float):
        """Record one served HTTP request."""
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration)

    @staticmethod
    def record_reservation(outcome: str):
        """Record a reservation attempt: reserved, capacity_exceeded or not_found."""
        SLOT_RESERVATIONS.labels(outcome=outcome).inc()

    @staticmethod
    def record_spots_released(count: int):
        SLOT_SPOTS_RELEASED.inc(count)

    @staticmethod
    def record_offer_transition(to_status: str):
        OFFER_TRANSITIONS.labels(to_status=to_status).inc()

    @staticmethod
    def record_booking_confirmed(source: str):
        """Record a booking confirmation from a slot checkout or an offer."""
        BOOKINGS_CONFIRMED.labels(source=source).inc()

    @staticmethod
    def record_booking_cancelled(reason: str):
        BOOKINGS_CANCELLED.labels(reason=reason).inc()

    @staticmethod
    def record_sweep_item(sweeper: str, outcome: str):
        SWEEPER_ITEMS.labels(sweeper=sweeper, outcome=outcome).inc()

    @staticmethod
    def record_notification_failed(channel: str):
        NOTIFICATIONS_FAILED.labels(channel=channel).inc()

    @staticmethod
    def set_slot_utilization(slot_id: str, spots_booked: int, spots_total: int):
        """Set capacity utilization percentage for a slot."""
        utilization = (spots_booked / spots_total * 100) if spots_total else 0.0
        SLOT_UTILIZATION.labels(slot_id=slot_id).set(utilization)


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
