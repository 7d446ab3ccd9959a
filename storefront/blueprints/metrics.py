"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics plus checkout and payment counters.
The endpoint is unauthenticated; restrict it at the network level.
"""
import os
import time

from flask import Blueprint, Response, g, request
from prometheus_client import (
    CONTENT_TYPE_LATEST, REGISTRY, CollectorRegistry, Counter, Gauge, Histogram,
    generate_latest, multiprocess,
)

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share metrics through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_metric_registry = None if MULTIPROCESS_MODE else registry

http_requests_total = Counter(
    'storefront_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'storefront_http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_requests_in_flight = Gauge(
    'storefront_http_requests_in_flight',
    'Number of HTTP requests currently being processed',
    registry=_metric_registry,
    multiprocess_mode='livesum'
)

checkout_orders_total = Counter(
    'storefront_checkout_orders_total',
    'Checkout attempts by payment method and outcome',
    ['payment_method', 'outcome'],
    registry=_metric_registry
)

payment_events_total = Counter(
    'storefront_payment_events_total',
    'Payment confirmations, refunds and webhooks by outcome',
    ['event', 'outcome'],
    registry=_metric_registry
)


def record_checkout(payment_method, outcome):
    checkout_orders_total.labels(payment_method=payment_method or 'unknown', outcome=outcome).inc()


def record_payment_event(event, outcome):
    payment_events_total.labels(event=event or 'unknown', outcome=outcome).inc()


def setup_metrics_instrumentation(app):
    """Register request hooks that time and count every request."""

    @app.before_request
    def before_request_metrics():
        g._metrics_start_time = time.time()
        http_requests_in_flight.inc()

    @app.after_request
    def after_request_metrics(response):
        start = g.pop('_metrics_start_time', None)
        if start is None:
            return response
        try:
            endpoint = request.endpoint or 'unknown'
            http_request_duration_seconds.labels(
                method=request.method, endpoint=endpoint
            ).observe(time.time() - start)
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, http_status=response.status_code
            ).inc()
            http_requests_in_flight.dec()
        except Exception as e:
            app.logger.warning(f"Failed to record metrics: {e}")
        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus exposition format."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
