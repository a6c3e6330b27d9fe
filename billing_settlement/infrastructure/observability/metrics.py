"""Prometheus metrics for monitoring allocations, credit movement and penalties"""

from prometheus_client import Counter, Histogram

# Allocation metrics
allocation_counter = Counter(
    "settlement_allocation_total",
    "Total payment allocations computed",
    ["policy", "outcome"],  # outcome: overpayment | credit_used | exact
)

credit_movement_counter = Counter(
    "settlement_credit_movement_cents_total",
    "Credit balance movement in centavos",
    ["direction"],  # added | used
)

allocation_duration_histogram = Histogram(
    "settlement_allocation_duration_seconds",
    "Time to assess penalties and allocate one payment",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25],
)

# Penalty metrics
penalty_assessed_counter = Counter(
    "settlement_penalty_assessed_cents_total",
    "Penalties charged by settled payments in centavos",
)

# Rejections
settlement_rejection_counter = Counter(
    "settlement_rejections_total",
    "Settlements refused before producing a result",
    ["code"],  # VALIDATION_ERROR | INSUFFICIENT_BALANCE | NOT_FOUND | ARITHMETIC_RANGE
)


def record_allocation(policy: str, credit_used_cents: int, overpayment_cents: int) -> None:
    """Record allocation metrics for monitoring credit usage vs overpayment"""
    if overpayment_cents > 0:
        outcome = "overpayment"
        credit_movement_counter.labels(direction="added").inc(overpayment_cents)
    elif credit_used_cents > 0:
        outcome = "credit_used"
        credit_movement_counter.labels(direction="used").inc(credit_used_cents)
    else:
        outcome = "exact"

    allocation_counter.labels(policy=policy, outcome=outcome).inc()
