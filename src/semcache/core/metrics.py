"""Prometheus metrics for cache decisions, refreshes and housekeeping."""

from prometheus_client import Counter, Histogram

semcache_lookups_total = Counter(
    "semcache_lookups_total",
    "Cache lookups by outcome (hit, miss, stale)",
    ["protocol", "outcome"],
)

semcache_refreshes_total = Counter(
    "semcache_refreshes_total",
    "In-place result refreshes by mode and status",
    ["mode", "status"],
)

semcache_entries_stored_total = Counter(
    "semcache_entries_stored_total", "New query/result pairs written to the store"
)

semcache_entries_removed_total = Counter(
    "semcache_entries_removed_total",
    "Entries removed by housekeeping",
    ["reason"],
)

semcache_retrieval_duration_seconds = Histogram(
    "semcache_retrieval_duration_seconds",
    "Latency of the caller-supplied retrieval function",
    ["mode"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)

semcache_http_requests_total = Counter(
    "semcache_http_requests_total",
    "Operational API requests",
    ["path", "status_code"],
)


class CacheMetrics:
    def record_lookup(self, protocol: str, outcome: str) -> None:
        semcache_lookups_total.labels(protocol=protocol, outcome=outcome).inc()

    def record_refresh(self, mode: str, status: str) -> None:
        semcache_refreshes_total.labels(mode=mode, status=status).inc()

    def record_store(self) -> None:
        semcache_entries_stored_total.inc()

    def record_removed(self, reason: str, count: int) -> None:
        if count > 0:
            semcache_entries_removed_total.labels(reason=reason).inc(count)

    def record_retrieval_latency(self, mode: str, duration: float) -> None:
        semcache_retrieval_duration_seconds.labels(mode=mode).observe(duration)

    def record_http_request(self, path: str, status_code: int) -> None:
        semcache_http_requests_total.labels(path=path, status_code=status_code).inc()


cache_metrics = CacheMetrics()
