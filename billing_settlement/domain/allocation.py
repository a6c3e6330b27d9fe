"""Payment allocation engine - applies a payment plus credit balance to bills

Funds go to bills strictly in the given priority order (earliest due date
first), and within a bill to the penalty before the principal.

Grouped bills (one due date, e.g. a quarter billed together) follow one of
two named policies:
- ATOMIC: a group is paid in full or not at all; allocation stops at the
  first group the remaining funds cannot cover
- PER_BILL: bills are paid one at a time, the last one reached may end
  up partial

Whatever is not applied to bills stays in, or is added to, the credit
balance.
"""

from collections import OrderedDict
from typing import Dict, List, Optional, Sequence, Tuple

from billing_settlement.domain.exceptions import ValidationError
from billing_settlement.domain.ledger import build_entry
from billing_settlement.domain.models import (
    AllocationResult,
    AssessedBill,
    BillPayment,
    BillStatus,
    CreditLedgerEntry,
    EntryType,
    GroupPolicy,
    PaymentAllocationRequest,
)
from billing_settlement.domain.money import MAX_SAFE_CENTS, ensure_in_range, require_cents


def validate_request(request: PaymentAllocationRequest, max_cents: int = MAX_SAFE_CENTS) -> None:
    """
    Reject malformed allocation input before any computation.

    Raises:
        ValidationError: bills not a list of AssessedBill, a negative payment,
            duplicate bill ids, group members with different due dates,
            or a bill whose payments exceed its principal
    """
    if not isinstance(request.bills, (list, tuple)):
        raise ValidationError("bills must be a list of assessed bills")

    require_cents(request.payment_amount_cents, "payment_amount_cents")
    # An adjustment may have left the balance negative; the deficit nets
    # against the payment
    require_cents(request.current_credit_balance_cents, "current_credit_balance_cents", allow_negative=True)
    ensure_in_range(request.payment_amount_cents, max_cents)
    ensure_in_range(request.current_credit_balance_cents, max_cents)
    ensure_in_range(request.payment_amount_cents + request.current_credit_balance_cents, max_cents)

    try:
        GroupPolicy(request.policy)
    except ValueError as e:
        raise ValidationError(f"Unknown group allocation policy: {request.policy!r}") from e

    seen_ids = set()
    group_due_dates = {}
    for assessed in request.bills:
        if not isinstance(assessed, AssessedBill):
            raise ValidationError(f"Expected AssessedBill, got {type(assessed).__name__}")

        bill = assessed.bill
        if bill.id in seen_ids:
            raise ValidationError(f"Bill {bill.id} appears more than once")
        seen_ids.add(bill.id)

        due = group_due_dates.setdefault(bill.group, bill.due_date)
        if due != bill.due_date:
            raise ValidationError(f"Bills in group {bill.group} disagree on due date")

        require_cents(bill.paid_amount_cents, f"Bill {bill.id} paid_amount_cents")
        require_cents(assessed.penalty_cents, f"Bill {bill.id} penalty_cents")
        if bill.base_paid_cents > bill.base_amount_cents:
            raise ValidationError(f"Bill {bill.id} has been paid more than its total")
        ensure_in_range(assessed.total_owed_cents, max_cents)


def prioritize_bills(bills: Sequence[AssessedBill]) -> List[AssessedBill]:
    """
    Order bills for allocation: earliest due date first, group members kept
    together. Stable, so an order the caller already chose survives.
    """
    first_seen: Dict[str, int] = {}
    for index, assessed in enumerate(bills):
        first_seen.setdefault(assessed.group, index)
    return sorted(bills, key=lambda assessed: (assessed.due_date, first_seen[assessed.group]))


def apply_to_bill(assessed: AssessedBill, funds_cents: int) -> BillPayment:
    """Apply up to funds_cents to one bill, penalty first then principal"""
    owed = assessed.total_owed_cents
    applied = max(0, min(funds_cents, owed))
    penalty_paid = min(applied, assessed.penalty_owed_cents)
    base_paid = applied - penalty_paid

    if applied >= owed:
        status = BillStatus.PAID
    elif applied > 0:
        status = BillStatus.PARTIAL
    else:
        status = assessed.status

    return BillPayment(
        bill_id=assessed.id,
        period=assessed.period,
        amount_paid_cents=applied,
        base_charge_paid_cents=base_paid,
        penalty_paid_cents=penalty_paid,
        new_status=status,
        new_paid_amount_cents=assessed.bill.paid_amount_cents + applied,
        new_penalty_paid_cents=assessed.bill.penalty_paid_cents + penalty_paid,
        total_due_cents=owed,
    )


def allocate_per_bill(bills: Sequence[AssessedBill], funds_cents: int) -> Tuple[Dict[str, BillPayment], int]:
    """Pay bills one at a time until funds run out"""
    payments: Dict[str, BillPayment] = {}
    remaining = funds_cents

    for assessed in bills:
        if remaining <= 0:
            break
        payment = apply_to_bill(assessed, remaining)
        payments[assessed.id] = payment
        remaining -= payment.amount_paid_cents

    return payments, remaining


def allocate_atomic(bills: Sequence[AssessedBill], funds_cents: int) -> Tuple[Dict[str, BillPayment], int]:
    """Pay whole due-date groups; stop at the first group funds cannot cover"""
    groups: Dict[str, List[AssessedBill]] = OrderedDict()
    for assessed in bills:
        groups.setdefault(assessed.group, []).append(assessed)

    payments: Dict[str, BillPayment] = {}
    remaining = funds_cents

    for members in groups.values():
        if remaining <= 0:
            break
        group_total = sum(assessed.total_owed_cents for assessed in members)
        if group_total > remaining:
            # Later groups are never paid ahead of an earlier one
            break
        for assessed in members:
            payment = apply_to_bill(assessed, assessed.total_owed_cents)
            payments[assessed.id] = payment
            remaining -= payment.amount_paid_cents

    return payments, remaining


def settle_credit(payment_cents: int, total_paid_cents: int, current_credit_cents: int) -> Tuple[int, int, int]:
    """
    Split the settlement into credit used vs overpayment.

    Returns: (credit_used, overpayment, new_credit_balance)

    At most one of credit_used / overpayment is nonzero.
    """
    if payment_cents >= total_paid_cents:
        credit_used = 0
        overpayment = payment_cents - total_paid_cents
    else:
        credit_used = total_paid_cents - payment_cents
        overpayment = 0

    new_balance = current_credit_cents - credit_used + overpayment
    return credit_used, overpayment, new_balance


def build_ledger_entries(
    credit_used_cents: int,
    overpayment_cents: int,
    transaction_id: Optional[str],
    timestamp=None,
    source: str = "unifiedPayment",
) -> Tuple[CreditLedgerEntry, ...]:
    """Ledger entries summarizing the net credit change of one allocation"""
    if overpayment_cents > 0:
        return (
            build_entry(
                overpayment_cents,
                EntryType.CREDIT_ADDED,
                transaction_id=transaction_id,
                notes="Overpayment added to credit balance",
                timestamp=timestamp,
                source=source,
            ),
        )
    if credit_used_cents > 0:
        return (
            build_entry(
                -credit_used_cents,
                EntryType.CREDIT_USED,
                transaction_id=transaction_id,
                notes="Credit balance applied to bills",
                timestamp=timestamp,
                source=source,
            ),
        )
    return ()


def allocate_payment(request: PaymentAllocationRequest, max_cents: int = MAX_SAFE_CENTS) -> AllocationResult:
    """
    Main entry point: distribute a payment plus credit balance across bills.

    Bills must already be priority-sorted and penalty-assessed. The request
    is not mutated; the caller persists the returned bill payments and
    ledger entries in one atomic write.
    """
    validate_request(request, max_cents)

    policy = GroupPolicy(request.policy)
    bills = list(request.bills)
    total_available = max(0, request.payment_amount_cents + request.current_credit_balance_cents)
    total_bills_due = sum(assessed.total_owed_cents for assessed in bills)

    if policy == GroupPolicy.ATOMIC:
        applied, _ = allocate_atomic(bills, total_available)
    else:
        applied, _ = allocate_per_bill(bills, total_available)

    bill_payments = tuple(applied.get(assessed.id) or apply_to_bill(assessed, 0) for assessed in bills)

    total_base = sum(bp.base_charge_paid_cents for bp in bill_payments)
    total_penalties = sum(bp.penalty_paid_cents for bp in bill_payments)
    total_applied = total_base + total_penalties

    credit_used, overpayment, new_balance = settle_credit(
        request.payment_amount_cents,
        total_applied,
        request.current_credit_balance_cents,
    )
    ensure_in_range(new_balance, max_cents)

    return AllocationResult(
        unit_id=request.unit_id,
        policy=policy,
        transaction_id=request.transaction_id,
        payment_amount_cents=request.payment_amount_cents,
        bill_payments=bill_payments,
        total_base_charges_cents=total_base,
        total_penalties_cents=total_penalties,
        total_applied_cents=total_applied,
        credit_used_cents=credit_used,
        overpayment_cents=overpayment,
        current_credit_balance_cents=request.current_credit_balance_cents,
        new_credit_balance_cents=new_balance,
        total_bills_due_cents=total_bills_due,
        total_available_cents=total_available,
        ledger_entries=build_ledger_entries(
            credit_used,
            overpayment,
            request.transaction_id,
            timestamp=request.payment_timestamp,
            source=request.source,
        ),
    )
