"""
In-memory webhook counters for monitoring.

Simple per-process counters; can be replaced with Prometheus later.
"""
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


@dataclass
class WebhookMetrics:
    """Per-provider delivery counts keyed by outcome (or error code)."""

    received_total: int = 0
    dispatch_failures: int = 0
    started_at: float = field(default_factory=time.monotonic)
    _by_provider: dict[str, dict[str, int]] = field(
        default_factory=lambda: defaultdict(lambda: defaultdict(int))
    )

    def record(self, provider: str, outcome: str) -> None:
        self.received_total += 1
        self._by_provider[provider][outcome] += 1
        if outcome == "dispatch_failed":
            self.dispatch_failures += 1

    def count(self, provider: str, outcome: str) -> int:
        return self._by_provider.get(provider, {}).get(outcome, 0)

    def to_dict(self) -> dict:
        return {
            "received_total": self.received_total,
            "dispatch_failures": self.dispatch_failures,
            "by_provider": {p: dict(c) for p, c in self._by_provider.items()},
            "uptime_seconds": round(time.monotonic() - self.started_at, 1),
        }


# Singleton metrics instance
_metrics: WebhookMetrics | None = None


def get_webhook_metrics() -> WebhookMetrics:
    global _metrics
    if _metrics is None:
        _metrics = WebhookMetrics()
    return _metrics
