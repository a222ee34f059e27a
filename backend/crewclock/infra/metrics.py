"""Prometheus series for the time-tracking service.

A disabled ``Metrics`` keeps every collector as ``None`` and all recorders are
no-ops, so domain code can record unconditionally.
"""

import logging

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

logger = logging.getLogger(__name__)

_DISABLED_PAYLOAD = (b"metrics_disabled 1\n", "text/plain; version=0.0.4")


class Metrics:
    def __init__(self, enabled: bool = False) -> None:
        self._configure(enabled)

    def _configure(self, enabled: bool) -> None:
        self.enabled = enabled
        self.registry = CollectorRegistry(auto_describe=True)
        self.time_tracking_actions: Counter | None = None
        self.stale_sessions: Counter | None = None
        self.http_5xx: Counter | None = None
        self.http_latency: Histogram | None = None
        if not enabled:
            return

        self.time_tracking_actions = Counter(
            "time_tracking_actions_total",
            "Clock-in, clock-out and break actions by outcome.",
            ["action", "outcome"],
            registry=self.registry,
        )
        self.stale_sessions = Counter(
            "time_tracking_stale_sessions_total",
            "Sessions closed after running past the maximum session length.",
            ["reason"],
            registry=self.registry,
        )
        self.http_5xx = Counter(
            "http_5xx_total",
            "Responses with a 5xx status by route template.",
            ["method", "path"],
            registry=self.registry,
        )
        self.http_latency = Histogram(
            "http_request_latency_seconds",
            "Request latency by route template and status class.",
            ["method", "path", "status_class"],
            registry=self.registry,
        )

    def record_time_tracking(self, action: str, outcome: str) -> None:
        if self.time_tracking_actions is not None:
            self.time_tracking_actions.labels(action=action, outcome=outcome).inc()

    def record_stale_session(self, reason: str, count: int = 1) -> None:
        if self.stale_sessions is not None and count > 0:
            self.stale_sessions.labels(reason=reason).inc(count)

    def record_http_5xx(self, method: str, path: str) -> None:
        if self.http_5xx is not None:
            self.http_5xx.labels(method=method, path=path).inc()

    def record_http_latency(self, method: str, path: str, status_code: int, duration_seconds: float) -> None:
        if self.http_latency is None:
            return
        status_class = f"{status_code // 100}xx"
        self.http_latency.labels(method=method, path=path, status_class=status_class).observe(duration_seconds)

    def render(self) -> tuple[bytes, str]:
        if not self.enabled:
            return _DISABLED_PAYLOAD
        return generate_latest(self.registry), CONTENT_TYPE_LATEST


metrics = Metrics(enabled=False)


def configure_metrics(enabled: bool) -> Metrics:
    """Reset the process-wide collector so importers keep a valid reference."""
    metrics._configure(enabled)
    logger.debug("metrics_configured", extra={"extra": {"enabled": enabled}})
    return metrics
