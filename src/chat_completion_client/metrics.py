from __future__ import annotations

from prometheus_client import Counter, Histogram

completions_total = Counter(
    "chat_completions_total",
    "Chat completion calls by terminal outcome",
    labelnames=["outcome"],
)

completion_latency_seconds = Histogram(
    "chat_completion_latency_seconds",
    "End-to-end chat completion latency (seconds)",
    buckets=[0.05, 0.1, 0.3, 0.5, 1, 2, 5, 10, 30, 60, 120, 300],
)

cache_lookups_total = Counter(
    "chat_cache_lookups_total",
    "Response cache lookups",
    labelnames=["result"],
)

stream_discarded_payloads_total = Counter(
    "chat_stream_discarded_payloads_total",
    "SSE payloads dropped by the stream decoder",
    labelnames=["reason"],
)

transport_retries_total = Counter(
    "transport_retries_total",
    "HTTP attempts retried by the transport",
    labelnames=["reason"],
)
