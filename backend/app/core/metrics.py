"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY

# Webhook metrics
try:
    webhook_events_counter = Counter(
        'invoicing_webhook_events_total',
        'Total number of Stripe webhook deliveries by event type and outcome',
        ['event_type', 'outcome']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('invoicing_webhook_events_total')

try:
    refund_attempts_counter = Counter(
        'invoicing_refund_attempts_total',
        'Total number of automatic dispute refunds by outcome',
        ['outcome']
    )
except ValueError:
    refund_attempts_counter = REGISTRY._names_to_collectors.get('invoicing_refund_attempts_total')

# Ledger metrics
try:
    ledger_write_failures_counter = Counter(
        'invoicing_ledger_write_failures_total',
        'Total number of activity ledger writes that failed'
    )
except ValueError:
    ledger_write_failures_counter = REGISTRY._names_to_collectors.get('invoicing_ledger_write_failures_total')

# Cleanup metrics
try:
    cleanup_runs_counter = Counter(
        'invoicing_cleanup_runs_total',
        'Total number of processed-event cleanup runs',
        ['status']
    )
except ValueError:
    cleanup_runs_counter = REGISTRY._names_to_collectors.get('invoicing_cleanup_runs_total')

# Auth metrics
try:
    login_attempts_counter = Counter(
        'invoicing_login_attempts_total',
        'Total number of login attempts',
        ['status', 'role']
    )
except ValueError:
    login_attempts_counter = REGISTRY._names_to_collectors.get('invoicing_login_attempts_total')
