"""Prometheus metrics for collections, ledger conflicts, defaulter syncs and reminders"""

from prometheus_client import Counter, Histogram

# Collection metrics
collection_counter = Counter(
    "fee_collection_total",
    "Fee collections applied to ledgers",
    ["kind", "payment_method"],  # kind: monthly | one_time
)

collected_amount_counter = Counter(
    "fee_collected_amount_total",
    "Money received across all collections",
    ["payment_method"],
)

collection_rejected_counter = Counter(
    "fee_collection_rejected_total",
    "Collections refused before touching the ledger",
    ["reason"],  # invalid_input | already_settled | not_found
)

ledger_conflict_counter = Counter(
    "fee_ledger_conflicts_total",
    "Optimistic-lock conflicts retried on ledger writes",
)

# Defaulter metrics
defaulter_sync_histogram = Histogram(
    "fee_defaulter_sync_seconds",
    "Duration of a defaulter reconciliation run",
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0],
)

defaulter_rows_counter = Counter(
    "fee_defaulter_rows_total",
    "Defaulter rows written or evicted by reconciliation",
    ["action"],  # synced | removed
)

reminder_counter = Counter(
    "fee_reminders_total",
    "Defaulter reminders by delivery outcome",
    ["outcome"],  # sent | failed
)

# Service health
request_duration_histogram = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint", "status"],
)


def record_collection(kind: str, payment_method: str, amount: int) -> None:
    """Count an applied collection and the money it brought in"""
    collection_counter.labels(kind=kind, payment_method=payment_method).inc()
    collected_amount_counter.labels(payment_method=payment_method).inc(amount)


def record_sync(synced: int, removed: int) -> None:
    defaulter_rows_counter.labels(action="synced").inc(synced)
    defaulter_rows_counter.labels(action="removed").inc(removed)
