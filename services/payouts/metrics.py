import os

import structlog
from prometheus_client import Counter, Histogram, start_http_server

logger = structlog.get_logger(__name__)

# --- Celery Task Metrics (for Payouts Worker component) ---
CELERY_TASKS_PROCESSED_TOTAL = Counter(
    "payouts_celery_tasks_processed_total",
    "Total Celery tasks processed by Payouts worker.",
    ["task_name", "status"]
)

CELERY_TASK_DURATION_SECONDS = Histogram(
    "payouts_celery_task_duration_seconds",
    "Celery task duration for Payouts worker.",
    ["task_name"]
)

# --- Payout Request Metrics ---
PAYOUT_TRANSITIONS_TOTAL = Counter(
    "payouts_request_transitions_total",
    "Payout request state transitions.",
    ["to_status"]  # pending, approved, rejected, paid, cancelled
)

# --- Transfer Metrics ---
TRANSFERS_TOTAL = Counter(
    "payouts_transfers_total",
    "Transfer orchestrator runs by outcome.",
    ["outcome"]  # success, claim_lost, recipient_rejected, transfer_rejected, partial_failure
)

TRANSFER_DURATION_SECONDS = Histogram(
    "payouts_transfer_duration_seconds",
    "End to end duration of a transfer orchestrator run."
)

RECIPIENTS_CREATED_TOTAL = Counter(
    "payouts_recipients_created_total",
    "Transfer recipients created at the processor."
)

PARTIAL_FAILURES_TOTAL = Counter(
    "payouts_partial_failures_total",
    "Transfers that moved money but could not be recorded locally."
)

# --- General Application Metrics ---
APP_ERRORS_TOTAL = Counter(
    "payouts_app_errors_total",
    "Total application errors in Payouts service (API or worker).",
    ["component", "error_type"]  # component: 'api', 'worker'
)


def start_worker_metrics_server(port: int = 8003, addr: str = '0.0.0.0'):  # Different default port for worker
    metrics_port = int(os.getenv("PAYOUTS_WORKER_METRICS_PORT", str(port)))
    try:
        start_http_server(metrics_port, addr=addr)
        logger.info("Payouts Worker Prometheus metrics server started", port=metrics_port)
    except OSError as e:
        logger.error("Payouts Worker Prometheus metrics server failed to start", port=metrics_port, error=str(e))

# Note: The Payouts API uses starlette-prometheus middleware to expose its HTTP metrics on /metrics.
# The Payouts Worker (Celery part) calls start_worker_metrics_server().
