from prometheus_client import Counter, Histogram

# --- Webhook Metrics ---
WEBHOOK_EVENTS_TOTAL = Counter(
    "payments_webhook_events_total",
    "Processor webhook deliveries by outcome.",
    ["outcome"]  # credited, ignored_event, unknown_reference, already_paid, bad_signature, invalid_payload
)

WEBHOOK_PROCESSING_SECONDS = Histogram(
    "payments_webhook_processing_seconds",
    "Time spent handling a verified webhook delivery."
)

WEBHOOK_AMOUNT_MISMATCH_TOTAL = Counter(
    "payments_webhook_amount_mismatch_total",
    "Verified payments whose amount differs from the order total."
)

# --- Initiation Metrics ---
PAYMENT_INITIATIONS_TOTAL = Counter(
    "payments_initiations_total",
    "Checkout initiations by outcome.",
    ["outcome"]  # success, processor_error, partial_failure, conflict
)

PARTIAL_FAILURES_TOTAL = Counter(
    "payments_partial_failures_total",
    "External side effects whose local record failed to commit.",
    ["operation"]
)
