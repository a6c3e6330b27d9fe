"""Penalty calculation for overdue bills

Penalty rules:
- Nothing accrues on or before due date + grace period
- After grace, every started penalty month (30 days by default) counts
- Monthly compounding: each month's penalty is charged on principal plus
  all earlier penalties
- Bills sharing a due date are penalized once on their combined unpaid
  principal, and the result is split back across the group

Penalties are always recomputed from the current unpaid principal and the
evaluation date. Nothing here accepts a previously stored penalty.
"""

import math
from collections import OrderedDict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Sequence

from billing_settlement.domain.exceptions import ValidationError
from billing_settlement.domain.models import AssessedBill, Bill, PenaltyRecalculation
from billing_settlement.domain.money import require_cents
from billing_settlement.utils.date_utils import add_days

DEFAULT_PENALTY_MONTH_DAYS = 30


def months_overdue(
    due_date: date,
    as_of: date,
    grace_period_days: int = 0,
    month_days: int = DEFAULT_PENALTY_MONTH_DAYS,
) -> int:
    """
    Number of penalty months elapsed past the grace period.

    Returns 0 on or before due_date + grace_period_days. Past that, any part
    of a month counts as a whole one, so a single day late is 1 month.

    Example:
        due 2026-07-01, grace 30 -> grace ends 2026-07-31
        as of 2026-09-01 is 32 days past grace -> 2 months
    """
    grace_end = add_days(due_date, grace_period_days)
    if as_of <= grace_end:
        return 0

    days_past_grace = (as_of - grace_end).days
    return max(1, math.ceil(days_past_grace / month_days))


def compounding_penalty(principal_cents: int, months: int, penalty_rate: Decimal) -> int:
    """
    Total compounding penalty on an unpaid principal.

    Each month's penalty is rounded half-up to a whole centavo before it is
    added to the running total.

    Example:
        1,500,000 at 5% for 2 months:
        month 1: 1,500,000 x 0.05 = 75,000 (running 1,575,000)
        month 2: 1,575,000 x 0.05 = 78,750
        total: 153,750
    """
    if months <= 0 or principal_cents <= 0:
        return 0

    rate = Decimal(str(penalty_rate))
    running_total = principal_cents
    total_penalty = 0
    for _ in range(months):
        monthly_penalty = int((running_total * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
        total_penalty += monthly_penalty
        running_total += monthly_penalty
    return total_penalty


def distribute_penalty(total_penalty_cents: int, count: int) -> List[int]:
    """
    Split a group penalty across its members.

    Every member but the last gets floor(total / count); the last absorbs
    the remainder so the shares always sum to the total.

    Example:
        100 across 3 bills -> [33, 33, 34]
    """
    if count <= 0:
        return []

    per_bill = total_penalty_cents // count
    shares = [per_bill] * (count - 1)
    shares.append(total_penalty_cents - per_bill * (count - 1))
    return shares


def group_bills(bills: Sequence[Bill]) -> Dict[str, List[Bill]]:
    """
    Group bills by due-date group, preserving first-seen order.

    A group is penalized once on its summed principal, so its members must
    share one due date, one penalty rate and one grace period.

    Raises:
        ValidationError: members of one group disagree on those terms
    """
    groups: Dict[str, List[Bill]] = OrderedDict()
    for bill in bills:
        members = groups.setdefault(bill.group, [])
        if members:
            lead = members[0]
            if lead.due_date != bill.due_date:
                raise ValidationError(
                    f"Bills in group {bill.group} disagree on due date: "
                    f"{lead.due_date.isoformat()} vs {bill.due_date.isoformat()}"
                )
            if Decimal(str(lead.penalty_rate)) != Decimal(str(bill.penalty_rate)):
                raise ValidationError(
                    f"Bills in group {bill.group} disagree on penalty rate: "
                    f"{lead.penalty_rate} vs {bill.penalty_rate}"
                )
            if lead.grace_period_days != bill.grace_period_days:
                raise ValidationError(
                    f"Bills in group {bill.group} disagree on grace period: "
                    f"{lead.grace_period_days} vs {bill.grace_period_days} days"
                )
        members.append(bill)
    return groups


def validate_bill(bill: Bill) -> None:
    """Reject bill snapshots that cannot be assessed"""
    if not isinstance(bill, Bill):
        raise ValidationError(f"Expected Bill, got {type(bill).__name__}")
    if not bill.id:
        raise ValidationError("Bill id is required")
    if not isinstance(bill.due_date, date):
        raise ValidationError(f"Bill {bill.id} has invalid due date: {bill.due_date!r}")
    require_cents(bill.base_amount_cents, f"Bill {bill.id} base_amount_cents")
    require_cents(bill.paid_amount_cents, f"Bill {bill.id} paid_amount_cents")
    require_cents(bill.penalty_paid_cents, f"Bill {bill.id} penalty_paid_cents")
    if bill.penalty_paid_cents > bill.paid_amount_cents:
        raise ValidationError(f"Bill {bill.id} penalty_paid_cents exceeds paid_amount_cents")
    if Decimal(str(bill.penalty_rate)) < 0:
        raise ValidationError(f"Bill {bill.id} penalty_rate must be non-negative")
    if bill.grace_period_days < 0:
        raise ValidationError(f"Bill {bill.id} grace_period_days must be non-negative")


def assess_bills(
    bills: Sequence[Bill],
    as_of: date,
    month_days: int = DEFAULT_PENALTY_MONTH_DAYS,
) -> PenaltyRecalculation:
    """
    Assess fresh penalties for every bill, grouped by due date.

    For each group, the penalty is computed once on the summed unpaid
    principal of the members that still owe principal, then distributed
    across those members in group order. Members with no unpaid principal
    get a zero penalty.

    Returns assessed bills in input order.
    """
    if not isinstance(bills, (list, tuple)):
        raise ValidationError("bills must be a list of Bill")
    seen = set()
    for bill in bills:
        validate_bill(bill)
        if bill.id in seen:
            raise ValidationError(f"Bill {bill.id} appears more than once")
        seen.add(bill.id)

    assessed: Dict[str, AssessedBill] = {}
    bills_penalized = 0
    total_penalty = 0
    groups = group_bills(bills)

    for members in groups.values():
        lead = members[0]
        owing = [bill for bill in members if bill.unpaid_principal_cents > 0]
        months = months_overdue(lead.due_date, as_of, lead.grace_period_days, month_days)

        group_penalty = 0
        if owing and months > 0:
            # Members share their terms, see group_bills
            group_penalty = compounding_penalty(
                sum(bill.unpaid_principal_cents for bill in owing),
                months,
                lead.penalty_rate,
            )

        shares = distribute_penalty(group_penalty, len(owing))
        for bill, share in zip(owing, shares):
            assessed[bill.id] = AssessedBill(bill=bill, penalty_cents=share, months_overdue=months)
            if share > 0:
                bills_penalized += 1
        for bill in members:
            if bill.id not in assessed:
                assessed[bill.id] = AssessedBill(bill=bill, penalty_cents=0, months_overdue=months)

        total_penalty += group_penalty

    return PenaltyRecalculation(
        bills=tuple(assessed[bill.id] for bill in bills),
        groups_processed=len(groups),
        bills_penalized=bills_penalized,
        total_penalty_cents=total_penalty,
    )
