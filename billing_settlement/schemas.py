"""Pydantic schemas for the settlement boundary.

All amounts here are in major currency units (pesos) as Decimal. The service
converts them to integer centavos exactly once on the way in and once on the
way out.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from billing_settlement.domain.models import BillStatus, EntryType, GroupPolicy


class BillSnapshot(BaseModel):
    """Unpaid bill as loaded from bill storage"""

    id: str = Field(..., min_length=1, description="Bill identifier")
    period: str = Field(..., min_length=1, description="Billing period key, e.g. 2026-07")
    due_date: date
    group_key: Optional[str] = Field(None, description="Bills sharing a due date; defaults to the due date")
    base_amount: Decimal = Field(..., ge=0, description="Base charge in major units")
    paid_amount: Decimal = Field(Decimal("0"), ge=0, description="Total paid so far, penalties included")
    penalty_paid: Decimal = Field(Decimal("0"), ge=0, description="Part of paid_amount that settled penalties")
    penalty_rate: Decimal = Field(Decimal("0"), ge=0, description="Monthly penalty rate as a fraction")
    grace_period_days: int = Field(0, ge=0)


class LedgerEntrySchema(BaseModel):
    """Credit ledger entry at the boundary"""

    id: str
    amount: Decimal = Field(..., description="Signed amount: positive adds credit, negative uses it")
    timestamp: datetime
    entry_type: EntryType
    transaction_id: Optional[str] = None
    source: str = ""
    notes: str = ""


class PaymentRequest(BaseModel):
    """Incoming payment to settle against a unit's bills"""

    unit_id: str = Field(..., min_length=1, description="Billing unit identifier")
    bills: List[BillSnapshot] = Field(default_factory=list, description="Unpaid bills in priority order")
    payment_amount: Decimal = Field(..., ge=0, description="Payment in major units")
    credit_history: List[LedgerEntrySchema] = Field(default_factory=list)
    payment_date: Optional[datetime] = Field(None, description="Defaults to now")
    transaction_id: Optional[str] = None
    policy: Optional[GroupPolicy] = Field(None, description="Overrides the configured group policy")


class BillPaymentSchema(BaseModel):
    """Funds applied to one bill"""

    bill_id: str
    period: str
    amount_paid: Decimal
    base_charge_paid: Decimal
    penalty_paid: Decimal
    new_status: BillStatus
    new_paid_amount: Decimal
    new_penalty_paid: Decimal
    total_due: Decimal


class TransactionAllocationSchema(BaseModel):
    """Split line of the payment transaction"""

    id: str
    type: str
    target_id: str
    target_name: str
    amount: Decimal
    category: str
    bill_id: Optional[str] = None
    period: Optional[str] = None


class SettlementResponse(BaseModel):
    """Allocation outcome the caller persists in one atomic write"""

    unit_id: str
    transaction_id: Optional[str] = None
    policy: GroupPolicy
    payment_date: datetime
    total_available: Decimal
    bill_payments: List[BillPaymentSchema]
    total_base_charges: Decimal
    total_penalties: Decimal
    total_applied: Decimal
    credit_used: Decimal
    overpayment: Decimal
    current_credit_balance: Decimal
    new_credit_balance: Decimal
    total_bills_due: Decimal
    ledger_entries: List[LedgerEntrySchema]
    allocations: List[TransactionAllocationSchema]
    note: str


class PenaltyPreviewItem(BaseModel):
    """Freshly assessed penalty for one bill"""

    bill_id: str
    period: str
    due_date: date
    months_overdue: int
    unpaid_principal: Decimal
    penalty: Decimal
    total_due: Decimal
    status: BillStatus


class PenaltyPreview(BaseModel):
    """Penalty assessment for display"""

    as_of: date
    bills: List[PenaltyPreviewItem]
    total_penalty: Decimal
    groups_processed: int
