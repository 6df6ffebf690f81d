"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Module may be re-imported (tests, reloaders); reuse the registered collector
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Checkout metrics
checkouts_counter = _counter(
    'eventpay_checkouts_total',
    'Total number of checkout initiations',
    ['provider', 'outcome']
)

# Webhook metrics
webhook_events_counter = _counter(
    'eventpay_webhook_events_total',
    'Total number of provider webhook events handled',
    ['provider', 'outcome']
)

# Capacity metrics
capacity_commits_counter = _counter(
    'eventpay_capacity_commits_total',
    'Total number of capacity ledger commits',
    ['outcome']
)

# Reservation metrics
reservation_cancellations_counter = _counter(
    'eventpay_reservation_cancellations_total',
    'Total number of reservations cancelled by users',
    ['payment_status']
)

# Refund metrics
refund_requests_counter = _counter(
    'eventpay_refund_requests_total',
    'Total number of refund requests created and decided',
    ['outcome']
)
