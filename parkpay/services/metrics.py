# -*- coding: utf-8 -*-
"""
Service for managing Prometheus metrics.

Records HTTP requests, checkout session creation and webhook outcomes, and
exposes them on /metrics.
"""

import os
import time
from typing import Optional
from flask import Flask, request, g, current_app, has_app_context
from prometheus_client import CollectorRegistry, Counter, Histogram
from prometheus_client.exposition import generate_latest


def init_metrics(app: Flask) -> None:
    """Initialize metrics service and endpoints."""
    service = MetricsService()
    app.extensions['metrics'] = service

    if service.enabled:
        @app.before_request
        def before_request():
            g.start_time = time.time()

        @app.after_request
        def after_request(response):
            duration = time.time() - getattr(g, 'start_time', time.time())
            service.record_http_request(
                route=request.url_rule.rule if request.url_rule else 'unmatched',
                method=request.method,
                status_code=response.status_code,
                duration_seconds=duration
            )
            return response

        @app.route("/metrics")
        def metrics():
            return generate_latest(service.registry), 200, {
                'Content-Type': 'text/plain; version=0.0.4; charset=utf-8'}


def get_metrics_service() -> Optional['MetricsService']:
    """Get the metrics service instance from the current app context."""
    if has_app_context():
        return current_app.extensions.get('metrics')
    return None


class MetricsService:
    """Service for managing Prometheus metrics.

    Each app gets its own registry so repeated create_app() calls (tests,
    RQ workers) never collide on metric names.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.enabled = os.environ.get(
            "PARKPAY_METRICS_ENABLED",
            "true").lower() == "true"
        self.registry = registry if registry is not None else CollectorRegistry()

        if self.enabled:
            self.http_requests_total = Counter(
                "parkpay_http_requests_total",
                "Total number of HTTP requests.",
                ["route", "method", "status"],
                registry=self.registry
            )
            self.http_request_duration_seconds = Histogram(
                "parkpay_http_request_duration_seconds",
                "Duration of HTTP requests in seconds.",
                ["route", "method"],
                registry=self.registry
            )
            self.checkout_sessions_total = Counter(
                "parkpay_checkout_sessions_total",
                "Checkout sessions created, by mode and outcome.",
                ["mode", "outcome"],
                registry=self.registry
            )
            self.webhook_events_total = Counter(
                "parkpay_webhook_events_total",
                "Webhook events, by type and outcome.",
                ["event_type", "outcome"],
                registry=self.registry
            )

    def record_http_request(self, route: str, method: str, status_code: int, duration_seconds: float):
        if not self.enabled:
            return
        self.http_requests_total.labels(route=route, method=method, status=str(status_code)).inc()
        self.http_request_duration_seconds.labels(route=route, method=method).observe(duration_seconds)

    def record_checkout(self, mode: str, outcome: str):
        if not self.enabled:
            return
        self.checkout_sessions_total.labels(mode=mode, outcome=outcome).inc()

    def record_webhook(self, event_type: str, outcome: str):
        if not self.enabled:
            return
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()


def record_checkout(mode: str, outcome: str):
    """Record a checkout outcome if metrics are available in this context."""
    service = get_metrics_service()
    if service:
        service.record_checkout(mode, outcome)


def record_webhook(event_type: str, outcome: str):
    """Record a webhook outcome if metrics are available in this context."""
    service = get_metrics_service()
    if service:
        service.record_webhook(event_type, outcome)
