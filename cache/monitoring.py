"""
Monitoring for the document cache and the coalescer.

Prometheus metrics are process wide; each ``CacheMonitor`` additionally keeps
its own counters so one engine instance can report on itself.
"""
import time
from collections import Counter as TallyCounter
from typing import Any, Dict

import structlog
from prometheus_client import Counter, Gauge, Histogram

logger = structlog.get_logger()

# Define Prometheus metrics
CACHE_HITS = Counter('chainsync_cache_hits_total', 'Total number of cache hits', ['cache_type'])
CACHE_MISSES = Counter('chainsync_cache_misses_total', 'Total number of cache misses', ['cache_type'])
CACHE_WRITES = Counter('chainsync_cache_writes_total', 'Total number of successful cache writes',
                       ['cache_type'])
CACHE_CONFLICTS = Counter('chainsync_cache_conflicts_total', 'Total number of revision conflicts',
                          ['cache_type'])
CACHE_LATENCY = Histogram('chainsync_cache_latency_seconds', 'Cache operation latency in seconds',
                          ['cache_type', 'operation'])
COALESCER_PENDING = Gauge('chainsync_coalescer_pending', 'Operations queued or running in the coalescer')
COALESCER_REJECTED = Counter('chainsync_coalescer_rejected_total', 'Operations rejected by the coalescer',
                             ['reason'])

# Cache types for metrics
ACCOUNT_CACHE = 'account'
TX_CACHE = 'transaction'
BALANCE_CACHE = 'balance'
NAT_CACHE = 'nat'
OTHER_CACHE = 'other'


def cache_type_for(key: str) -> str:
    """Classify a document key for metric labels."""
    if key.endswith('.balance'):
        return BALANCE_CACHE
    if key == 'nat':
        return NAT_CACHE
    if key.startswith('0x') and len(key) == 66:
        return TX_CACHE
    if key.startswith('0x') and len(key) == 42:
        return ACCOUNT_CACHE
    return OTHER_CACHE


class CacheMonitor:
    """
    Monitor for one engine's cache.

    This class tracks hits, misses, writes and conflicts both in Prometheus
    and in local tallies used for ``get_metrics_report``.
    """

    def __init__(self):
        """Initialize the cache monitor."""
        self.start_time = time.time()
        self.hits: TallyCounter = TallyCounter()
        self.misses: TallyCounter = TallyCounter()
        self.writes: TallyCounter = TallyCounter()
        self.conflicts: TallyCounter = TallyCounter()

    def record_hit(self, key: str) -> None:
        cache_type = cache_type_for(key)
        self.hits[cache_type] += 1
        CACHE_HITS.labels(cache_type=cache_type).inc()

    def record_miss(self, key: str) -> None:
        cache_type = cache_type_for(key)
        self.misses[cache_type] += 1
        CACHE_MISSES.labels(cache_type=cache_type).inc()

    def record_write(self, key: str) -> None:
        cache_type = cache_type_for(key)
        self.writes[cache_type] += 1
        CACHE_WRITES.labels(cache_type=cache_type).inc()

    def record_conflict(self, key: str) -> None:
        cache_type = cache_type_for(key)
        self.conflicts[cache_type] += 1
        CACHE_CONFLICTS.labels(cache_type=cache_type).inc()

    def record_latency(self, key: str, operation: str, latency: float) -> None:
        """
        Record cache operation latency.

        Args:
            key: Document key the operation touched
            operation: Operation type (get, put, bulk_put)
            latency: Operation latency in seconds
        """
        CACHE_LATENCY.labels(cache_type=cache_type_for(key), operation=operation).observe(latency)

    def get_hit_ratio(self, cache_type: str) -> float:
        hits = self.hits[cache_type]
        total = hits + self.misses[cache_type]

        if total == 0:
            return 0.0

        return hits / total

    def get_metrics_report(self) -> Dict[str, Any]:
        """
        Generate a metrics report for this engine.

        Returns:
            Dictionary with cache metrics
        """
        total_hits = sum(self.hits.values())
        total_misses = sum(self.misses.values())
        total = total_hits + total_misses

        return {
            'uptime_seconds': time.time() - self.start_time,
            'total_hits': total_hits,
            'total_misses': total_misses,
            'total_writes': sum(self.writes.values()),
            'total_conflicts': sum(self.conflicts.values()),
            'overall_hit_ratio': total_hits / total if total else 0.0,
            'account_hit_ratio': self.get_hit_ratio(ACCOUNT_CACHE),
            'transaction_hit_ratio': self.get_hit_ratio(TX_CACHE),
            'balance_hit_ratio': self.get_hit_ratio(BALANCE_CACHE),
        }

    def log_metrics(self) -> None:
        """Log current cache metrics."""
        report = self.get_metrics_report()
        logger.info("cache_metrics_report", **report)
