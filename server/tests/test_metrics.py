# ─────────────────────────────────────────────────────────────────────────────
# Tests — GatewayMetrics counters
# ─────────────────────────────────────────────────────────────────────────────

from concurrent.futures import ThreadPoolExecutor

from dirty_equals import IsInt

from gateway.services.metrics import GatewayMetrics


def test_starts_empty():
    assert GatewayMetrics().to_dict() == {
        "requests_total": 0,
        "quota_admitted": 0,
        "quota_rejected": 0,
        "chat_successes": 0,
        "image_successes": 0,
        "errors_total": 0,
        "errors_by_category": {},
        "upstream_latency_p50_ms": 0,
        "upstream_latency_p95_ms": 0,
        "upstream_latency_mean_ms": 0,
        "uptime_seconds": IsInt(ge=0),
    }


def test_counts_outcomes():
    metrics = GatewayMetrics()
    metrics.record_quota(True)
    metrics.record_quota(False)
    metrics.record_chat(120.0)
    metrics.record_chat(30_000.0, category="upstream_timeout")
    metrics.record_error("configuration")
    metrics.record_image()

    data = metrics.to_dict()
    assert data["requests_total"] == 2
    assert data["quota_rejected"] == 1
    assert data["chat_successes"] == 1
    assert data["image_successes"] == 1
    assert data["errors_total"] == 2
    assert data["errors_by_category"] == {"upstream_timeout": 1, "configuration": 1}


def test_latency_percentiles():
    metrics = GatewayMetrics()
    for ms in range(1, 101):
        metrics.record_chat(float(ms))

    data = metrics.to_dict()
    assert data["upstream_latency_p50_ms"] == 51.0
    assert data["upstream_latency_p95_ms"] == 96.0
    assert data["upstream_latency_mean_ms"] == 50.5


def test_latency_history_is_bounded():
    metrics = GatewayMetrics()
    for _ in range(1500):
        metrics.record_chat(1.0)
    assert len(metrics._latency_history) == 1000
    assert metrics.to_dict()["chat_successes"] == 1500


def test_thread_safe_counting():
    metrics = GatewayMetrics()

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: metrics.record_quota(True), range(2000)))

    assert metrics.to_dict()["quota_admitted"] == 2000
