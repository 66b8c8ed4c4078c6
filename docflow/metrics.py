"""
Prometheus metrics: orders created, dispatch outcomes, rejected transitions, notifications, overrides.
"""
from prometheus_client import Counter, Gauge, generate_latest

orders_created_total = Counter(
    "orders_created_total",
    "Total orders materialized from paid invoices",
)

dispatch_outcomes_total = Counter(
    "dispatch_outcomes_total",
    "Delegate dispatch attempts by outcome",
    ["outcome"],
)

transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions applied",
    ["to_status"],
)
transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total transitions rejected due to status or actor mismatch",
    ["current_status", "attempted_status"],
)

notifications_sent_total = Counter(
    "notifications_sent_total",
    "Total notifications handed to the queue",
    ["event"],
)
notifications_failed_total = Counter(
    "notifications_failed_total",
    "Total notifications that could not be queued (logged and dropped)",
    ["event"],
)

directory_integrity_warnings_total = Counter(
    "directory_integrity_warnings_total",
    "Lookups that found more than one available delegate for a (city, service)",
)

overrides_total = Counter(
    "admin_overrides_total",
    "Administrative overrides applied",
    ["action"],
)

invoices_expired_total = Counter(
    "invoices_expired_total",
    "Pending invoices swept to expired",
)

notification_queue_backlog = Gauge(
    "notification_queue_backlog",
    "Approximate number of notification messages waiting to be delivered",
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
