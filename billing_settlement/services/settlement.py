"""Settlement service - major-unit boundary around the settlement core

Flow for one payment:
1. Validate the request and convert pesos to centavos (once)
2. Project the current credit balance from the ledger history
3. Assess fresh penalties as of the payment date
4. Allocate payment + credit across bills in priority order
5. Convert the result back to pesos (once) with split lines and a note

The service holds no state beyond its settings. It performs no I/O; the
caller persists bill updates and ledger entries in one transaction.
"""

import time
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Type, TypeVar, Union

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from billing_settlement.config import Settings, settings
from billing_settlement.domain.allocation import allocate_payment, prioritize_bills
from billing_settlement.domain.exceptions import SettlementError, ValidationError
from billing_settlement.domain.ledger import (
    append_entry,
    delete_entry,
    get_balance,
    history_view,
    roll_over_year,
)
from billing_settlement.domain.models import (
    AllocationResult,
    Bill,
    CreditLedgerEntry,
    EntryType,
    GroupPolicy,
    LedgerHistoryItem,
    PaymentAllocationRequest,
    PenaltyRecalculation,
    YearEndRollover,
)
from billing_settlement.domain.money import to_cents, to_major_units
from billing_settlement.domain.penalties import assess_bills
from billing_settlement.domain.transaction_allocations import (
    build_transaction_allocations,
    describe_allocation,
)
from billing_settlement.infrastructure.observability.logging import (
    log_allocation,
    log_penalty_assessment,
    log_settlement_rejected,
)
from billing_settlement.infrastructure.observability.metrics import (
    allocation_duration_histogram,
    penalty_assessed_counter,
    record_allocation,
    settlement_rejection_counter,
)
from billing_settlement.schemas import (
    BillPaymentSchema,
    BillSnapshot,
    LedgerEntrySchema,
    PaymentRequest,
    PenaltyPreview,
    PenaltyPreviewItem,
    SettlementResponse,
    TransactionAllocationSchema,
)
from billing_settlement.utils.date_utils import (
    TimestampLike,
    fiscal_year_start,
    normalize_timestamp,
    utc_now,
)

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class SettlementService:
    """Stateless settlement facade; construct once and share"""

    def __init__(self, config: Optional[Settings] = None):
        self.config = config or settings

    def settle(self, request: Union[PaymentRequest, Dict[str, Any]]) -> SettlementResponse:
        """
        Compute how a payment settles a unit's bills.

        Raises:
            ValidationError: malformed request or bill data
            ArithmeticRangeError: amounts beyond max_amount_cents
        """
        start_time = time.time()
        with self._rejections(_unit_id_of(request)):
            payload = self._parse(PaymentRequest, request)
            payment_timestamp = (
                normalize_timestamp(payload.payment_date) if payload.payment_date else utc_now()
            )
            recalculation, result = self._allocate(payload, payment_timestamp)

        duration = time.time() - start_time
        allocation_duration_histogram.observe(duration)
        penalty_assessed_counter.inc(recalculation.total_penalty_cents)
        record_allocation(result.policy.value, result.credit_used_cents, result.overpayment_cents)
        log_allocation(
            result.unit_id,
            result.transaction_id,
            result.policy.value,
            len(result.paid_bills),
            result.total_applied_cents,
            result.credit_used_cents,
            result.overpayment_cents,
            result.new_credit_balance_cents,
            duration * 1000,
        )

        return self._to_response(result, payment_timestamp)

    def preview(
        self,
        request: Union[PaymentRequest, Dict[str, Any]],
        as_of: Optional[TimestampLike] = None,
    ) -> SettlementResponse:
        """
        Show what a payment would settle without recording an allocation.

        as_of overrides the request's payment date; both default to now.
        """
        with self._rejections(_unit_id_of(request)):
            payload = self._parse(PaymentRequest, request)
            moment = as_of if as_of is not None else payload.payment_date
            payment_timestamp = normalize_timestamp(moment) if moment is not None else utc_now()
            _, result = self._allocate(payload, payment_timestamp)
        return self._to_response(result, payment_timestamp)

    def settle_cents(
        self,
        unit_id: str,
        bills: Sequence[Bill],
        payment_amount_cents: int,
        credit_history: Sequence[CreditLedgerEntry] = (),
        payment_timestamp: Optional[TimestampLike] = None,
        transaction_id: Optional[str] = None,
        policy: Optional[GroupPolicy] = None,
    ) -> AllocationResult:
        """Centavo-level settlement for callers already holding domain objects"""
        recalculation, result = self._settle(
            unit_id, bills, payment_amount_cents, credit_history, payment_timestamp, transaction_id, policy
        )
        penalty_assessed_counter.inc(recalculation.total_penalty_cents)
        return result

    def assess(
        self,
        bills: Sequence[Union[BillSnapshot, Dict[str, Any]]],
        as_of: Optional[date] = None,
        unit_id: str = "unknown",
    ) -> PenaltyPreview:
        """Penalty preview for display, as of today unless a date is given"""
        as_of = as_of or utc_now().date()
        with self._rejections(unit_id):
            snapshots = [self._parse(BillSnapshot, bill) for bill in bills]
            recalculation = self._assess(unit_id, [self._bill_to_domain(bill) for bill in snapshots], as_of)

        return PenaltyPreview(
            as_of=as_of,
            bills=[
                PenaltyPreviewItem(
                    bill_id=assessed.id,
                    period=assessed.period,
                    due_date=assessed.due_date,
                    months_overdue=assessed.months_overdue,
                    unpaid_principal=to_major_units(assessed.base_owed_cents),
                    penalty=to_major_units(assessed.penalty_cents),
                    total_due=to_major_units(assessed.total_owed_cents),
                    status=assessed.status,
                )
                for assessed in recalculation.bills
            ],
            total_penalty=to_major_units(recalculation.total_penalty_cents),
            groups_processed=recalculation.groups_processed,
        )

    # Credit ledger operations

    def record_credit(
        self,
        unit_id: str,
        history: Sequence[CreditLedgerEntry],
        amount: Union[Decimal, str, int],
        entry_type: EntryType = EntryType.CREDIT_ADDED,
        transaction_id: Optional[str] = None,
        notes: str = "",
        timestamp: Optional[TimestampLike] = None,
    ) -> Tuple[CreditLedgerEntry, Tuple[CreditLedgerEntry, ...]]:
        """Append one entry given in pesos; returns (entry, new_history)"""
        with self._rejections(unit_id):
            return append_entry(
                history,
                to_cents(amount, self.config.max_amount_cents),
                transaction_id=transaction_id,
                notes=notes,
                entry_type=entry_type,
                timestamp=timestamp,
                source=self.config.credit_source,
                max_cents=self.config.max_amount_cents,
            )

    def reverse_transaction(
        self,
        unit_id: str,
        history: Sequence[CreditLedgerEntry],
        transaction_id: str,
    ) -> Tuple[CreditLedgerEntry, ...]:
        """Drop the ledger entries a deleted payment transaction created"""
        with self._rejections(unit_id):
            return delete_entry(history, transaction_id=transaction_id)

    def credit_history(
        self,
        history: Sequence[CreditLedgerEntry],
        limit: Optional[int] = None,
    ) -> List[LedgerHistoryItem]:
        return history_view(history, limit or self.config.history_view_limit)

    def close_fiscal_year(
        self,
        unit_id: str,
        history: Sequence[CreditLedgerEntry],
        year: int,
    ) -> YearEndRollover:
        """
        Roll the ledger over at the last millisecond of a fiscal year.

        With a July start, closing 2026 archives everything up to
        2026-06-30T23:59:59.999Z.
        """
        next_start = fiscal_year_start(year + 1, self.config.fiscal_year_start_month)
        cutoff = normalize_timestamp(next_start) - timedelta(milliseconds=1)
        with self._rejections(unit_id):
            return roll_over_year(history, cutoff, notes=f"Starting balance for fiscal year {year + 1}")

    def _settle(
        self,
        unit_id: str,
        bills: Sequence[Bill],
        payment_amount_cents: int,
        credit_history: Sequence[CreditLedgerEntry],
        payment_timestamp: Optional[TimestampLike],
        transaction_id: Optional[str],
        policy: Optional[GroupPolicy],
    ) -> Tuple[PenaltyRecalculation, AllocationResult]:
        payment_timestamp = normalize_timestamp(payment_timestamp) if payment_timestamp is not None else utc_now()
        recalculation = self._assess(unit_id, bills, payment_timestamp.date())

        result = allocate_payment(
            PaymentAllocationRequest(
                unit_id=unit_id,
                bills=prioritize_bills(recalculation.bills),
                payment_amount_cents=payment_amount_cents,
                current_credit_balance_cents=get_balance(credit_history),
                transaction_id=transaction_id,
                policy=policy or self.config.group_allocation_policy,
                payment_timestamp=payment_timestamp,
                source=self.config.credit_source,
            ),
            self.config.max_amount_cents,
        )
        return recalculation, result

    def _allocate(
        self, payload: PaymentRequest, payment_timestamp: datetime
    ) -> Tuple[PenaltyRecalculation, AllocationResult]:
        max_cents = self.config.max_amount_cents
        return self._settle(
            unit_id=payload.unit_id,
            bills=[self._bill_to_domain(bill) for bill in payload.bills],
            payment_amount_cents=to_cents(payload.payment_amount, max_cents),
            credit_history=[self._entry_to_domain(entry) for entry in payload.credit_history],
            payment_timestamp=payment_timestamp,
            transaction_id=payload.transaction_id,
            policy=payload.policy,
        )

    def _assess(self, unit_id: str, bills: Sequence[Bill], as_of: date) -> PenaltyRecalculation:
        recalculation = assess_bills(list(bills), as_of, self.config.penalty_month_days)
        log_penalty_assessment(
            unit_id,
            as_of.isoformat(),
            recalculation.groups_processed,
            recalculation.bills_penalized,
            recalculation.total_penalty_cents,
        )
        return recalculation

    @contextmanager
    def _rejections(self, unit_id: str) -> Iterator[None]:
        try:
            yield
        except SettlementError as e:
            settlement_rejection_counter.labels(code=e.code).inc()
            log_settlement_rejected(unit_id, e.code, str(e))
            raise

    @staticmethod
    def _parse(schema: Type[SchemaT], data: Union[SchemaT, Dict[str, Any]]) -> SchemaT:
        if isinstance(data, schema):
            return data
        try:
            return schema.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid {schema.__name__}: {e}") from e

    def _bill_to_domain(self, snapshot: BillSnapshot) -> Bill:
        max_cents = self.config.max_amount_cents
        return Bill(
            id=snapshot.id,
            period=snapshot.period,
            due_date=snapshot.due_date,
            group_key=snapshot.group_key,
            base_amount_cents=to_cents(snapshot.base_amount, max_cents),
            paid_amount_cents=to_cents(snapshot.paid_amount, max_cents),
            penalty_paid_cents=to_cents(snapshot.penalty_paid, max_cents),
            penalty_rate=snapshot.penalty_rate,
            grace_period_days=snapshot.grace_period_days,
        )

    def _entry_to_domain(self, entry: LedgerEntrySchema) -> CreditLedgerEntry:
        return CreditLedgerEntry(
            id=entry.id,
            amount_cents=to_cents(entry.amount, self.config.max_amount_cents),
            timestamp=normalize_timestamp(entry.timestamp),
            entry_type=entry.entry_type,
            transaction_id=entry.transaction_id,
            source=entry.source,
            notes=entry.notes,
        )

    def _to_response(self, result: AllocationResult, payment_timestamp: datetime) -> SettlementResponse:
        module_type = self.config.module_type
        return SettlementResponse(
            unit_id=result.unit_id,
            transaction_id=result.transaction_id,
            policy=result.policy,
            payment_date=payment_timestamp,
            total_available=to_major_units(result.total_available_cents),
            bill_payments=[
                BillPaymentSchema(
                    bill_id=bp.bill_id,
                    period=bp.period,
                    amount_paid=to_major_units(bp.amount_paid_cents),
                    base_charge_paid=to_major_units(bp.base_charge_paid_cents),
                    penalty_paid=to_major_units(bp.penalty_paid_cents),
                    new_status=bp.new_status,
                    new_paid_amount=to_major_units(bp.new_paid_amount_cents),
                    new_penalty_paid=to_major_units(bp.new_penalty_paid_cents),
                    total_due=to_major_units(bp.total_due_cents),
                )
                for bp in result.bill_payments
            ],
            total_base_charges=to_major_units(result.total_base_charges_cents),
            total_penalties=to_major_units(result.total_penalties_cents),
            total_applied=to_major_units(result.total_applied_cents),
            credit_used=to_major_units(result.credit_used_cents),
            overpayment=to_major_units(result.overpayment_cents),
            current_credit_balance=to_major_units(result.current_credit_balance_cents),
            new_credit_balance=to_major_units(result.new_credit_balance_cents),
            total_bills_due=to_major_units(result.total_bills_due_cents),
            ledger_entries=[_entry_to_schema(entry) for entry in result.ledger_entries],
            allocations=[
                TransactionAllocationSchema(
                    id=line.id,
                    type=line.type,
                    target_id=line.target_id,
                    target_name=line.target_name,
                    amount=to_major_units(line.amount_cents),
                    category=line.category,
                    bill_id=line.bill_id,
                    period=line.period,
                )
                for line in build_transaction_allocations(result, module_type)
            ],
            note=describe_allocation(result, module_type),
        )


def _entry_to_schema(entry: CreditLedgerEntry) -> LedgerEntrySchema:
    return LedgerEntrySchema(
        id=entry.id,
        amount=to_major_units(entry.amount_cents),
        timestamp=entry.timestamp,
        entry_type=entry.entry_type,
        transaction_id=entry.transaction_id,
        source=entry.source,
        notes=entry.notes,
    )


def _unit_id_of(request: Union[PaymentRequest, Dict[str, Any]]) -> str:
    if isinstance(request, PaymentRequest):
        return request.unit_id
    if isinstance(request, dict):
        return str(request.get("unit_id", "unknown"))
    return "unknown"
