# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Prometheus metrics for the contact relay.

All metrics use the ``relay_`` prefix and live in a private registry, which
is exported on a separate port (see :meth:`RelayMetrics.serve`) so the public
HTTP surface stays limited to ``/api/send``.

Metrics exposed:
    - ``relay_sent_total``: Counter of relayed emails per origin.
    - ``relay_errors_total``: Counter of SMTP delivery failures per origin.
    - ``relay_rate_limited_total``: Counter of 429 responses per origin.
    - ``relay_rejected_total``: Counter of other rejected requests per reason.
    - ``relay_rate_limit_keys``: Gauge of client keys tracked by the limiter.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest, start_http_server


class RelayMetrics:
    """Prometheus metrics collector for the relay.

    Attributes:
        registry: The CollectorRegistry holding all metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.sent = Counter(
            "relay_sent_total",
            "Total relayed emails",
            ["origin"],
            registry=self.registry,
        )
        self.errors = Counter(
            "relay_errors_total",
            "Total SMTP delivery failures",
            ["origin"],
            registry=self.registry,
        )
        self.rate_limited = Counter(
            "relay_rate_limited_total",
            "Total rate limited requests",
            ["origin"],
            registry=self.registry,
        )
        self.rejected = Counter(
            "relay_rejected_total",
            "Total rejected requests",
            ["reason"],
            registry=self.registry,
        )
        self.rate_limit_keys = Gauge(
            "relay_rate_limit_keys",
            "Client keys currently tracked by the rate limiter",
            registry=self.registry,
        )

    def inc_sent(self, origin: str | None) -> None:
        self.sent.labels(origin=origin or "unknown").inc()

    def inc_error(self, origin: str | None) -> None:
        self.errors.labels(origin=origin or "unknown").inc()

    def inc_rate_limited(self, origin: str | None) -> None:
        self.rate_limited.labels(origin=origin or "unknown").inc()

    def inc_rejected(self, reason: str) -> None:
        """Count a rejection such as ``forbidden``, ``invalid_json`` or ``invalid_body``."""
        self.rejected.labels(reason=reason).inc()

    def set_rate_limit_keys(self, value: int) -> None:
        self.rate_limit_keys.set(value)

    def generate_latest(self) -> bytes:
        """Export all metrics in Prometheus text exposition format."""
        return generate_latest(self.registry)

    def serve(self, port: int, addr: str = "0.0.0.0") -> None:
        """Start the exporter thread on ``addr:port``."""
        start_http_server(port, addr=addr, registry=self.registry)
