from prometheus_client import Counter, Histogram

# Reconciliation metrics
RECONCILE_LATENCY = Histogram("rideshare_reconcile_latency_seconds", "Latency for a full history reconciliation pass")
SELF_HEALS = Counter("rideshare_self_heals_total", "Stored bookings corrected to system-cancelled", ["reason"])

# Cancellation metrics
SEAT_CANCELLATIONS = Counter("rideshare_seat_cancellations_total", "Per-seat cancellation outcomes", ["result"])
REFUNDS = Counter("rideshare_refunds_total", "Owner balance refunds", ["result"])

# Record store metrics
ATOMIC_UPDATE_RETRIES = Counter("rideshare_atomic_update_retries_total", "Optimistic update retries caused by concurrent writers", ["store"])
SIDE_EFFECT_FAILURES = Counter("rideshare_side_effect_failures_total", "Best-effort writes that failed", ["effect"])
