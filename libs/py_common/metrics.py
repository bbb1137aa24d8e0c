from prometheus_client import Counter, Gauge, Histogram

# --- Payment Processor Metrics (shared by payments and payouts) ---
PROCESSOR_CALLS_TOTAL = Counter(
    "processor_calls_total",
    "Total payment processor API calls.",
    ["api_call", "outcome"]  # outcome: success, rejected, transport_error, circuit_open
)

PROCESSOR_LATENCY_SECONDS = Histogram(
    "processor_latency_seconds",
    "Payment processor API call latency.",
    ["api_call"]
)

PROCESSOR_CIRCUIT_BREAKER_STATE = Gauge(
    "processor_circuit_breaker_state",
    "State of the processor circuit breaker (0=closed, 1=open, 0.5=half-open).",
    []
)

EVENTS_PUBLISHED_TOTAL = Counter(
    "domain_events_published_total",
    "Events handed to the event feed.",
    ["event_type", "status"]
)
