"""Observability setup for OpenTelemetry, metrics, and structured logging."""

import logging

import structlog
from opentelemetry import metrics, trace
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .config import settings

SERVICE_NAME = "tour-marketplace-api"
SERVICE_VERSION = "1.0.0"

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

# Booking metrics
BOOKINGS_REQUESTED = Counter(
    'bookings_requested_total',
    'Booking requests admitted as pending',
    registry=REGISTRY
)

ADMISSIONS_REJECTED = Counter(
    'booking_admissions_rejected_total',
    'Booking requests or acceptances refused by admission control',
    ['reason'],
    registry=REGISTRY
)

BOOKING_TRANSITIONS = Counter(
    'booking_transitions_total',
    'Booking lifecycle transitions applied',
    ['from_status', 'to_status'],
    registry=REGISTRY
)

CAPACITY_UTILIZATION = Gauge(
    'tour_date_capacity_utilization',
    'Committed share of a tour date capacity (0-1)',
    ['tour_id', 'travel_date'],
    registry=REGISTRY
)

# Payment metrics
PAYMENT_INTENTS = Counter(
    'payment_intents_total',
    'Payment intents handed to travelers',
    ['reused'],
    registry=REGISTRY
)

PAYMENT_EVENTS = Counter(
    'payment_events_total',
    'Payment gateway outcomes applied to bookings',
    ['event_type', 'outcome'],
    registry=REGISTRY
)

REFUNDS = Counter(
    'payment_refunds_total',
    'Refunds processed',
    ['outcome'],
    registry=REGISTRY
)

GATEWAY_ERRORS = Counter(
    'payment_gateway_errors_total',
    'Errors returned by the payment gateway',
    ['operation'],
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

    # Request IDs are bound into contextvars by the request middleware
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer() if settings.debug else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def _resource(app_name: str) -> Resource:
    return Resource.create({
        "service.name": app_name,
        "service.version": SERVICE_VERSION,
        "environment": settings.environment,
    })


def setup_tracing(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry tracing."""
    provider = TracerProvider(resource=_resource(app_name))

    # Export only when an OTLP collector is configured
    if settings.otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint)))

    trace.set_tracer_provider(provider)
    return trace.get_tracer(__name__)


def setup_metrics(app_name: str = SERVICE_NAME):
    """Setup OpenTelemetry metrics."""
    if settings.otlp_endpoint:
        reader = PeriodicExportingMetricReader(
            exporter=OTLPMetricExporter(endpoint=settings.otlp_endpoint),
            export_interval_millis=60000,
        )
        metrics.set_meter_provider(MeterProvider(resource=_resource(app_name), metric_readers=[reader]))

    return metrics.get_meter(__name__)


def instrument_fastapi(app):
    """Instrument FastAPI with OpenTelemetry."""
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine):
    """Instrument the SQLAlchemy engine with OpenTelemetry."""
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


class MetricsCollector:
    """Collector for business metrics."""

    @staticmethod
    def record_http_request(method: str, endpoint: str, status_code: int, duration_seconds: float):
        """Record a served HTTP request."""
        REQUEST_COUNT.labels(method=method, endpoint=endpoint, status_code=str(status_code)).inc()
        REQUEST_DURATION.labels(method=method, endpoint=endpoint).observe(duration_seconds)

    @staticmethod
    def record_booking_requested():
        """Record a booking admitted as pending."""
        BOOKINGS_REQUESTED.inc()

    @staticmethod
    def record_admission_rejected(reason: str):
        """Record an admission refusal (capacity_exceeded, tour_full, duplicate)."""
        ADMISSIONS_REJECTED.labels(reason=reason).inc()

    @staticmethod
    def record_transition(from_status: str, to_status: str):
        """Record a booking lifecycle transition."""
        BOOKING_TRANSITIONS.labels(from_status=from_status, to_status=to_status).inc()

    @staticmethod
    def set_capacity_utilization(tour_id: str, travel_date: str, utilization: float):
        """Set committed share of capacity for a tour date."""
        CAPACITY_UTILIZATION.labels(tour_id=tour_id, travel_date=travel_date).set(utilization)

    @staticmethod
    def record_payment_intent(reused: bool):
        """Record a payment intent returned to a traveler."""
        PAYMENT_INTENTS.labels(reused=str(reused).lower()).inc()

    @staticmethod
    def record_payment_event(event_type: str, outcome: str):
        """Record the outcome of applying a gateway event."""
        PAYMENT_EVENTS.labels(event_type=event_type, outcome=outcome).inc()

    @staticmethod
    def record_refund(outcome: str):
        """Record a refund (refunded, already_refunded)."""
        REFUNDS.labels(outcome=outcome).inc()

    @staticmethod
    def record_gateway_error(operation: str):
        """Record a failed gateway call."""
        GATEWAY_ERRORS.labels(operation=operation).inc()


def get_prometheus_metrics():
    """Get Prometheus metrics for the /metrics endpoint."""
    return generate_latest(REGISTRY)


# Global metrics collector instance
metrics_collector = MetricsCollector()
