"""Prometheus metrics for the AI gateway."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


# ── HTTP metrics ─────────────────────────────────────────────
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Provider dispatch metrics ────────────────────────────────
LLM_ATTEMPTS_TOTAL = Counter(
    "llm_attempts_total",
    "Provider attempts by outcome",
    ["provider", "outcome"],  # success / rate_limited / failed
)

LLM_DISPATCH_TOTAL = Counter(
    "llm_dispatch_total",
    "Terminal outcomes of dispatched requests",
    ["feature", "status"],
)

LLM_DISPATCH_LATENCY = Histogram(
    "llm_dispatch_latency_seconds",
    "End-to-end dispatch latency including failover",
    ["feature"],
    buckets=(0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

LLM_CREDENTIAL_COOLDOWNS = Counter(
    "llm_credential_cooldowns_total",
    "Credentials placed into rate-limit cooldown",
    ["provider"],
)

LLM_USAGE_WRITE_FAILURES = Counter(
    "llm_usage_write_failures_total",
    "Usage telemetry writes that failed",
)
