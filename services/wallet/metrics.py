from prometheus_client import Counter

LEDGER_ENTRIES_TOTAL = Counter(
    "wallet_ledger_entries_total",
    "Ledger transactions written.",
    ["kind"]  # order_credit, payout_debit
)

LEDGER_AMOUNT_MINOR_TOTAL = Counter(
    "wallet_ledger_amount_minor_total",
    "Sum of ledger amounts written, in minor units.",
    ["kind"]
)

LEDGER_REPLAYS_TOTAL = Counter(
    "wallet_ledger_replays_total",
    "Ledger writes short-circuited by an existing idempotency key.",
    ["kind"]
)

LEDGER_RECONCILE_MISMATCH_TOTAL = Counter(
    "wallet_ledger_reconcile_mismatch_total",
    "Reconciliations where the cached wallet balance disagreed with the ledger sum."
)
