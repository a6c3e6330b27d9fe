"""Domain models - pure Python dataclasses representing billing and credit entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence, Tuple


class BillStatus(str, Enum):
    """Payment state of a bill, derived from paid amount vs total due"""

    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class EntryType(str, Enum):
    """Kind of credit ledger entry"""

    STARTING_BALANCE = "starting_balance"
    CREDIT_ADDED = "credit_added"
    CREDIT_USED = "credit_used"
    ADJUSTMENT = "adjustment"


class GroupPolicy(str, Enum):
    """How bills sharing one due date are paid"""

    ATOMIC = "atomic"  # whole group or nothing
    PER_BILL = "per_bill"  # bill by bill, partial allowed


@dataclass(frozen=True)
class Bill:
    """Snapshot of one billing-period obligation as loaded by the caller.

    Carries no penalty field: penalties are always assessed fresh from the
    unpaid principal (see AssessedBill).
    """

    id: str
    period: str
    due_date: date
    base_amount_cents: int
    paid_amount_cents: int = 0
    penalty_rate: Decimal = Decimal("0")
    grace_period_days: int = 0
    group_key: Optional[str] = None
    penalty_paid_cents: int = 0  # share of paid_amount_cents that settled penalties

    @property
    def group(self) -> str:
        """Due-date group this bill belongs to"""
        return self.group_key or self.due_date.isoformat()

    @property
    def base_paid_cents(self) -> int:
        return self.paid_amount_cents - self.penalty_paid_cents

    @property
    def unpaid_principal_cents(self) -> int:
        return max(0, self.base_amount_cents - self.base_paid_cents)


@dataclass(frozen=True)
class AssessedBill:
    """Bill with a freshly computed penalty. Transient, never persisted."""

    bill: Bill
    penalty_cents: int = 0
    months_overdue: int = 0

    @property
    def id(self) -> str:
        return self.bill.id

    @property
    def period(self) -> str:
        return self.bill.period

    @property
    def due_date(self) -> date:
        return self.bill.due_date

    @property
    def group(self) -> str:
        return self.bill.group

    @property
    def base_owed_cents(self) -> int:
        return self.bill.unpaid_principal_cents

    @property
    def penalty_owed_cents(self) -> int:
        return max(0, self.penalty_cents - self.bill.penalty_paid_cents)

    @property
    def total_owed_cents(self) -> int:
        return self.base_owed_cents + self.penalty_owed_cents

    @property
    def status(self) -> BillStatus:
        if self.total_owed_cents == 0:
            return BillStatus.PAID
        if self.bill.paid_amount_cents > 0:
            return BillStatus.PARTIAL
        return BillStatus.UNPAID


@dataclass(frozen=True)
class PenaltyRecalculation:
    """Output of a penalty pass over a set of bills"""

    bills: Tuple[AssessedBill, ...]
    groups_processed: int
    bills_penalized: int
    total_penalty_cents: int


@dataclass(frozen=True)
class CreditLedgerEntry:
    """One immutable fact in a unit's credit journal"""

    id: str
    amount_cents: int  # positive = credit added, negative = credit used
    timestamp: datetime  # aware UTC, millisecond precision
    entry_type: EntryType
    transaction_id: Optional[str] = None
    source: str = ""
    notes: str = ""


@dataclass(frozen=True)
class LedgerHistoryItem:
    """Ledger entry paired with the balance projected right after it"""

    entry: CreditLedgerEntry
    balance_after_cents: int


@dataclass(frozen=True)
class YearEndRollover:
    """Result of closing a fiscal year's credit journal"""

    archived: Tuple[CreditLedgerEntry, ...]
    history: Tuple[CreditLedgerEntry, ...]
    closing_balance_cents: int


@dataclass(frozen=True)
class PaymentAllocationRequest:
    """Everything the allocator needs for one payment"""

    unit_id: str
    bills: Sequence[AssessedBill]
    payment_amount_cents: int
    current_credit_balance_cents: int = 0
    transaction_id: Optional[str] = None
    policy: GroupPolicy = GroupPolicy.PER_BILL
    payment_timestamp: Optional[datetime] = None
    source: str = "unifiedPayment"


@dataclass(frozen=True)
class BillPayment:
    """How much of a payment landed on one bill"""

    bill_id: str
    period: str
    amount_paid_cents: int
    base_charge_paid_cents: int
    penalty_paid_cents: int
    new_status: BillStatus
    new_paid_amount_cents: int
    new_penalty_paid_cents: int
    total_due_cents: int  # owed before this payment


@dataclass(frozen=True)
class AllocationResult:
    """Outcome of allocating one payment; the caller persists it atomically"""

    unit_id: str
    policy: GroupPolicy
    transaction_id: Optional[str]
    payment_amount_cents: int
    bill_payments: Tuple[BillPayment, ...]
    total_base_charges_cents: int
    total_penalties_cents: int
    total_applied_cents: int
    credit_used_cents: int
    overpayment_cents: int
    current_credit_balance_cents: int
    new_credit_balance_cents: int
    total_bills_due_cents: int
    total_available_cents: int
    ledger_entries: Tuple[CreditLedgerEntry, ...] = field(default_factory=tuple)

    @property
    def paid_bills(self) -> Tuple[BillPayment, ...]:
        """Bill payments that received any funds"""
        return tuple(bp for bp in self.bill_payments if bp.amount_paid_cents > 0)


@dataclass(frozen=True)
class TransactionAllocation:
    """One split line linking part of a payment to a bill charge or to credit"""

    id: str
    type: str
    target_id: str
    target_name: str
    amount_cents: int
    category: str
    bill_id: Optional[str] = None
    period: Optional[str] = None
