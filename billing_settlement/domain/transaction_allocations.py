"""Split-transaction allocation lines and notes for a settled payment

Turns an AllocationResult into the audit-friendly pieces a transaction
record carries: one line per base charge and per penalty paid, one line for
the credit balance movement, and a human-readable summary note.
"""

from typing import List

from billing_settlement.domain.models import AllocationResult, TransactionAllocation
from billing_settlement.domain.money import format_major_units

CREDIT_CATEGORY = "Account Credit"


def allocation_id(index: int) -> str:
    """Sequential allocation id: alloc_001, alloc_002, ..."""
    return f"alloc_{index:03d}"


def build_transaction_allocations(result: AllocationResult, module_type: str = "hoa") -> List[TransactionAllocation]:
    """
    Split a payment into allocation lines.

    Lines sum to the payment amount: bill lines add up to total_applied,
    and the credit line is +overpayment or -credit_used.
    """
    module_name = _module_name(module_type)
    lines: List[TransactionAllocation] = []

    for bp in result.bill_payments:
        if bp.base_charge_paid_cents > 0:
            lines.append(
                TransactionAllocation(
                    id=allocation_id(len(lines) + 1),
                    type=f"{module_type}_bill",
                    target_id=f"bill_{bp.bill_id}",
                    target_name=f"{bp.period} - Unit {result.unit_id}",
                    amount_cents=bp.base_charge_paid_cents,
                    category=f"{module_name} Charges",
                    bill_id=bp.bill_id,
                    period=bp.period,
                )
            )
        if bp.penalty_paid_cents > 0:
            lines.append(
                TransactionAllocation(
                    id=allocation_id(len(lines) + 1),
                    type=f"{module_type}_penalty",
                    target_id=f"penalty_{bp.bill_id}",
                    target_name=f"{bp.period} Penalties - Unit {result.unit_id}",
                    amount_cents=bp.penalty_paid_cents,
                    category=f"{module_name} Penalties",
                    bill_id=bp.bill_id,
                    period=bp.period,
                )
            )

    credit_change = result.overpayment_cents - result.credit_used_cents
    if credit_change != 0:
        lines.append(
            TransactionAllocation(
                id=allocation_id(len(lines) + 1),
                type="account_credit",
                target_id=f"credit_{result.unit_id}",
                target_name=f"Account Credit - Unit {result.unit_id}",
                amount_cents=credit_change,
                category=CREDIT_CATEGORY,
            )
        )

    return lines


def describe_allocation(result: AllocationResult, module_type: str = "hoa") -> str:
    """
    One-line summary of what a payment settled.

    Example:
        "Hoa bills paid: 2026-07, 2026-08 (Base: $1,000.00, Penalties: $0.00)"
    """
    module_name = _module_name(module_type)
    paid = result.paid_bills
    if not paid:
        return f"{module_name} bill overpayment - no bills due"

    periods = ", ".join(bp.period for bp in paid)
    return (
        f"{module_name} bills paid: {periods} "
        f"(Base: {format_major_units(result.total_base_charges_cents)}, "
        f"Penalties: {format_major_units(result.total_penalties_cents)})"
    )


def _module_name(module_type: str) -> str:
    return module_type[:1].upper() + module_type[1:]
