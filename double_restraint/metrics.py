from prometheus_client import Counter, Gauge, Histogram

# Metriken
THROTTLED_TOTAL = Counter("restraint_throttled_total", "Executions rejected because a pool was full", ["pool"])
ESCALATIONS_TOTAL = Counter(
    "restraint_escalations_total", "Executions retried in the long running pool after a timeout", ["restraint"]
)
WORK_DURATION = Histogram(
    "restraint_work_duration_seconds", "Duration of a single work invocation", ["restraint", "tier"]
)
SLOT_RELEASE_FAILURES = Counter(
    "restraint_slot_release_failures_total", "Slots whose release could not be confirmed", ["pool"]
)
POOL_OCCUPANCY = Gauge("restraint_pool_occupancy", "Slots currently held in a pool", ["pool"])
