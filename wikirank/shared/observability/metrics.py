# Prometheus metrics for the wikirank search core

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest

from .logging import get_logger

logger = get_logger(__name__)

# ===== Search metrics =====
search_requests_total = Counter(
    "search_requests_total",
    "Total search requests",
    ["cache"],
)

search_latency_ms = Histogram(
    "search_latency_ms",
    "End-to-end search latency in milliseconds",
    buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000),
)

search_results_returned = Histogram(
    "search_results_returned",
    "Number of results returned per search",
    buckets=(0, 1, 3, 5, 10, 20, 50),
)

# ===== Retrieval metrics =====
retrieval_backend_errors_total = Counter(
    "retrieval_backend_errors_total",
    "Backend failures during retrieval (degraded, not fatal)",
    ["backend"],
)

retrieval_latency_ms = Histogram(
    "retrieval_latency_ms",
    "Per-backend retrieval latency in milliseconds",
    ["backend"],
    buckets=(1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000),
)

retrieval_candidates = Histogram(
    "retrieval_candidates",
    "Candidates returned per retrieval source",
    ["source"],
    buckets=(0, 5, 10, 25, 50, 100, 250, 500, 1000),
)

lexical_warmup_skipped_total = Counter(
    "lexical_warmup_skipped_total",
    "Queries that skipped lexical retrieval because the index was not ready",
)

vector_fallback_total = Counter(
    "vector_fallback_total",
    "Structural fallback lookups on the vector path",
    ["stage", "result"],
)

# ===== Title rescue metrics =====
title_rescue_lookups_total = Counter(
    "title_rescue_lookups_total",
    "Title rescue sub-searches",
    ["result"],
)

title_rescue_added_total = Counter(
    "title_rescue_added_total",
    "Documents added to the candidate pool by title rescue",
)

# ===== Ranking metrics =====
ranking_latency_ms = Histogram(
    "ranking_latency_ms",
    "Scoring, fusion and composite ranking latency in milliseconds",
    buckets=(0.5, 1, 2, 5, 10, 25, 50, 100, 250),
)

ranking_candidates_total = Histogram(
    "ranking_candidates_total",
    "Candidates entering composite ranking",
    buckets=(0, 10, 25, 50, 100, 250, 500, 1000, 2500),
)

ranking_tier_total = Counter(
    "ranking_tier_total",
    "Candidates scored per composite tier",
    ["tier"],
)

filter_removed_total = Counter(
    "filter_removed_total",
    "Candidates removed by post-ranking filters",
    ["filter"],
)

# ===== Cache metrics =====
cache_operations_total = Counter(
    "cache_operations_total",
    "Total cache operations",
    ["operation", "cache", "result"],
)

cache_hit_rate = Gauge(
    "cache_hit_rate",
    "Cache hit rate since last clear",
    ["cache"],
)

cache_entries = Gauge(
    "cache_entries",
    "Current number of cache entries",
    ["cache"],
)

cache_evictions_total = Counter(
    "cache_evictions_total",
    "Cache evictions",
    ["cache", "policy"],
)

service_info = Info("wikirank_service", "wikirank service information")


def setup_metrics(app_name: str, version: str, environment: str) -> None:
    """Publish static service information."""
    service_info.info(
        {
            "name": app_name,
            "version": version,
            "environment": environment,
        }
    )
    logger.info("Prometheus metrics enabled", app=app_name, version=version)


def get_metrics() -> bytes:
    """
    Get current metrics in Prometheus exposition format.

    Returns:
        Metrics as bytes
    """
    return generate_latest()
