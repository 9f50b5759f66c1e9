# ─────────────────────────────────────────────────────────────────────────────
# Gateway Metrics — thread-safe request accounting
# ─────────────────────────────────────────────────────────────────────────────
# Tracks quota decisions, upstream outcomes per error category, and upstream
# chat latency. Exposed via GET /api/stats and GET /metrics/prometheus.
#
# Bounded: latency history uses deque(maxlen=1000), auto-evicts oldest.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import threading
import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any


@dataclass
class GatewayMetrics:
    """Thread-safe gateway counters."""

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    requests_total: int = 0
    quota_admitted: int = 0
    quota_rejected: int = 0
    chat_successes: int = 0
    image_successes: int = 0
    errors_total: int = 0

    _errors_by_category: Counter[str] = field(default_factory=Counter, repr=False)

    # Bounded -- only keeps last 1000 upstream latencies, oldest auto-evicted
    _latency_history: deque[float] = field(default_factory=lambda: deque(maxlen=1000), repr=False)

    _start_time: float = field(default_factory=time.time, repr=False)

    def record_quota(self, admitted: bool) -> None:
        """Record one quota decision."""
        with self._lock:
            self.requests_total += 1
            if admitted:
                self.quota_admitted += 1
            else:
                self.quota_rejected += 1

    def record_chat(self, latency_ms: float, category: str | None = None) -> None:
        """Record a finished chat proxy call. ``category`` is set on failure."""
        with self._lock:
            self._latency_history.append(latency_ms)
            if category is None:
                self.chat_successes += 1
            else:
                self.errors_total += 1
                self._errors_by_category[category] += 1

    def record_image(self) -> None:
        with self._lock:
            self.image_successes += 1

    def record_error(self, category: str) -> None:
        """Record a failure that never reached the upstream."""
        with self._lock:
            self.errors_total += 1
            self._errors_by_category[category] += 1

    @property
    def uptime_seconds(self) -> float:
        return time.time() - self._start_time

    def to_dict(self) -> dict[str, Any]:
        """Serialize metrics for the stats endpoints."""
        with self._lock:
            latencies = sorted(self._latency_history)
            n = len(latencies)
            return {
                "requests_total": self.requests_total,
                "quota_admitted": self.quota_admitted,
                "quota_rejected": self.quota_rejected,
                "chat_successes": self.chat_successes,
                "image_successes": self.image_successes,
                "errors_total": self.errors_total,
                "errors_by_category": dict(self._errors_by_category),
                "upstream_latency_p50_ms": round(latencies[n // 2], 1) if n else 0,
                "upstream_latency_p95_ms": round(latencies[int(n * 0.95)], 1) if n else 0,
                "upstream_latency_mean_ms": round(sum(latencies) / n, 1) if n else 0,
                "uptime_seconds": int(time.time() - self._start_time),
            }
