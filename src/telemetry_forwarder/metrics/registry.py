"""
Forwarder metrics, registered in the Prometheus global REGISTRY on import.
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Item flow ---

ITEMS_SUBMITTED_TOTAL = Counter(
    "tfwd_items_submitted_total",
    "Total number of records submitted to an engine",
    ["destination"],
)

ITEMS_DELIVERED_TOTAL = Counter(
    "tfwd_items_delivered_total",
    "Total number of records acknowledged by the delivery boundary",
    ["destination"],
)

ITEMS_REQUEUED_TOTAL = Counter(
    "tfwd_items_requeued_total",
    "Total number of records put back in the buffer after a failed cycle",
    ["destination"],
)

ITEMS_DROPPED_TOTAL = Counter(
    "tfwd_items_dropped_total",
    "Total number of records dropped after exhausting retries",
    ["destination"],
)

BEACON_SENDS_TOTAL = Counter(
    "tfwd_beacon_sends_total",
    "Total number of one-way teardown transmissions",
    ["destination", "outcome"],
)

# --- Cycles ---

CYCLES_TOTAL = Counter(
    "tfwd_cycles_total",
    "Total number of batching cycles",
    ["engine", "outcome"],
)

CYCLE_LATENCY_MS = Histogram(
    "tfwd_cycle_latency_ms",
    "Batching cycle latency in milliseconds",
    ["engine"],
    buckets=[1, 2.5, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000],
)

BUFFER_DEPTH = Gauge(
    "tfwd_buffer_depth",
    "Current number of pending records",
    ["engine"],
)


class MetricsRegistry:
    """Centralized access to forwarder metrics."""

    items_submitted_total = ITEMS_SUBMITTED_TOTAL
    items_delivered_total = ITEMS_DELIVERED_TOTAL
    items_requeued_total = ITEMS_REQUEUED_TOTAL
    items_dropped_total = ITEMS_DROPPED_TOTAL
    beacon_sends_total = BEACON_SENDS_TOTAL
    cycles_total = CYCLES_TOTAL
    cycle_latency_ms = CYCLE_LATENCY_MS
    buffer_depth = BUFFER_DEPTH


# Singleton instance
metrics_registry = MetricsRegistry()
