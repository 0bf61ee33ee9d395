"""
Prometheus Metrics
==================
Counters for the OTP lifecycle, deliveries and sessions.

Each ``ServiceMetrics`` owns its own ``CollectorRegistry`` so several app
instances (tests, workers) never collide on metric names.
"""

from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, make_asgi_app

logger = structlog.get_logger(__name__)


class ServiceMetrics:
    """Prometheus counters exposed at ``/metrics``."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.otp_operations = Counter(
            name="accessotp_otp_operations_total",
            documentation="OTP engine operations by outcome",
            labelnames=["operation", "outcome"],
            registry=self.registry,
        )

        self.deliveries = Counter(
            name="accessotp_deliveries_total",
            documentation="Messages handed to delivery gateways",
            labelnames=["channel", "kind", "outcome"],
            registry=self.registry,
        )

        self.lockouts = Counter(
            name="accessotp_lockouts_total",
            documentation="Accounts locked out after exhausting OTP attempts",
            registry=self.registry,
        )

        self.sessions = Counter(
            name="accessotp_sessions_total",
            documentation="Session lifecycle events",
            labelnames=["event"],
            registry=self.registry,
        )

    def record_operation(self, operation: str, outcome: str) -> None:
        self.otp_operations.labels(operation=operation, outcome=outcome).inc()

    def record_delivery(self, channel: str, kind: str, success: bool) -> None:
        self.deliveries.labels(
            channel=channel,
            kind=kind,
            outcome="success" if success else "failure",
        ).inc()

    def record_lockout(self) -> None:
        self.lockouts.inc()

    def record_session(self, event: str) -> None:
        self.sessions.labels(event=event).inc()

    def value(self, name: str, **labels) -> float:
        """Current sample value, ``0.0`` when the series has not been touched."""
        sample = self.registry.get_sample_value(name, labels or None)
        return sample or 0.0

    def asgi_app(self):
        """ASGI app serving this registry in the Prometheus text format."""
        return make_asgi_app(registry=self.registry)
