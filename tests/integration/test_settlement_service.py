"""Integration tests for the settlement service boundary"""

import logging
import pytest
from datetime import date, datetime, timezone
from decimal import Decimal

from prometheus_client import REGISTRY
from pydantic import ValidationError as PydanticValidationError

from billing_settlement.config import Settings
from billing_settlement.domain.exceptions import (
    ArithmeticRangeError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from billing_settlement.domain.ledger import get_balance
from billing_settlement.domain.models import Bill, BillStatus, EntryType, GroupPolicy
from billing_settlement.services.settlement import SettlementService

pytestmark = pytest.mark.integration


def payment(bills, amount, **overrides):
    request = {
        "unit_id": "101",
        "bills": bills,
        "payment_amount": amount,
        "payment_date": "2026-09-01T12:00:00Z",
        "transaction_id": "txn_q3",
    }
    request.update(overrides)
    return request


def test_settle_quarter_with_penalties(service, quarter_bill_payload):
    """Test overdue quarter is paid in full and the rest becomes credit"""
    response = service.settle(payment(quarter_bill_payload, "20000.00"))

    assert response.total_bills_due == Decimal("16537.50")  # 15,000 + 1,537.50 penalty
    assert response.total_penalties == Decimal("1537.50")
    assert response.overpayment == Decimal("3462.50")
    assert response.credit_used == Decimal("0.00")
    assert response.new_credit_balance == Decimal("3462.50")
    assert response.payment_date == datetime(2026, 9, 1, 12, tzinfo=timezone.utc)

    for bill_payment in response.bill_payments:
        assert bill_payment.new_status == BillStatus.PAID
        assert bill_payment.penalty_paid == Decimal("512.50")
        assert bill_payment.base_charge_paid == Decimal("5000.00")
        assert bill_payment.new_paid_amount == Decimal("5512.50")


def test_settle_records_ledger_entry_and_note(service, quarter_bill_payload):
    """Test overpayment produces one credit entry, split lines and a note"""
    response = service.settle(payment(quarter_bill_payload, "20000.00"))

    assert len(response.ledger_entries) == 1
    entry = response.ledger_entries[0]
    assert entry.entry_type == EntryType.CREDIT_ADDED
    assert entry.amount == Decimal("3462.50")
    assert entry.transaction_id == "txn_q3"
    assert entry.source == "unifiedPayment"

    assert len(response.allocations) == 7  # base + penalty per bill, one credit line
    assert sum(line.amount for line in response.allocations) == Decimal("20000.00")
    assert response.note == (
        "Hoa bills paid: 2026-07, 2026-08, 2026-09 (Base: $15,000.00, Penalties: $1,537.50)"
    )


def test_settle_uses_credit_from_history(service):
    """Test ledger history supplies the credit balance"""
    bills = [{"id": "b1", "period": "2026-09", "due_date": "2026-09-01", "base_amount": "6000.00"}]
    history = [
        {
            "id": "credit_start",
            "amount": "1000.00",
            "timestamp": "2026-01-01T00:00:00Z",
            "entry_type": "starting_balance",
        }
    ]

    response = service.settle(payment(bills, "5500.00", credit_history=history))

    assert response.current_credit_balance == Decimal("1000.00")
    assert response.credit_used == Decimal("500.00")
    assert response.overpayment == Decimal("0.00")
    assert response.new_credit_balance == Decimal("500.00")
    assert response.ledger_entries[0].amount == Decimal("-500.00")
    assert response.ledger_entries[0].entry_type == EntryType.CREDIT_USED
    assert response.allocations[-1].amount == Decimal("-500.00")


def test_policy_override(service, quarter_bill_payload):
    """Test atomic policy per request; per-bill stays the default"""
    atomic = service.settle(payment(quarter_bill_payload, "12000.00", policy="atomic"))
    per_bill = service.settle(payment(quarter_bill_payload, "12000.00"))

    assert atomic.policy == GroupPolicy.ATOMIC
    assert atomic.total_applied == Decimal("0.00")
    assert atomic.overpayment == Decimal("12000.00")
    assert atomic.note == "Hoa bill overpayment - no bills due"

    assert per_bill.policy == GroupPolicy.PER_BILL
    assert [bp.new_status for bp in per_bill.bill_payments] == [
        BillStatus.PAID,
        BillStatus.PAID,
        BillStatus.PARTIAL,
    ]


def test_configured_policy_applies(quarter_bill_payload):
    """Test settings pick the group policy when the request does not"""
    service = SettlementService(Settings(_env_file=None, group_allocation_policy=GroupPolicy.ATOMIC))
    response = service.settle(payment(quarter_bill_payload, "12000.00"))
    assert response.policy == GroupPolicy.ATOMIC


def test_bills_are_prioritized_by_due_date(service):
    """Test a later bill listed first is paid after the earlier one"""
    bills = [
        {"id": "aug", "period": "2026-08", "due_date": "2026-08-01", "base_amount": "100.00"},
        {"id": "jul", "period": "2026-07", "due_date": "2026-07-01", "base_amount": "100.00"},
    ]

    response = service.settle(payment(bills, "150.00", payment_date="2026-07-02T00:00:00Z"))

    assert [bp.bill_id for bp in response.bill_payments] == ["jul", "aug"]
    assert response.bill_payments[0].new_status == BillStatus.PAID
    assert response.bill_payments[1].amount_paid == Decimal("50.00")


def test_preview_within_grace(service, quarter_bill_payload):
    """Test preview at an earlier date shows no penalties"""
    response = service.preview(payment(quarter_bill_payload, "15000.00"), as_of="2026-07-20T00:00:00Z")

    assert response.total_penalties == Decimal("0.00")
    assert response.total_applied == Decimal("15000.00")
    assert response.ledger_entries == []
    assert response.payment_date == datetime(2026, 7, 20, tzinfo=timezone.utc)


def test_assess_preview(service, quarter_bill_payload):
    """Test penalty preview for display"""
    preview = service.assess(quarter_bill_payload, as_of=date(2026, 9, 1))

    assert preview.total_penalty == Decimal("1537.50")
    assert preview.groups_processed == 1
    assert [item.penalty for item in preview.bills] == [Decimal("512.50")] * 3
    assert all(item.months_overdue == 2 for item in preview.bills)
    assert all(item.total_due == Decimal("5512.50") for item in preview.bills)


def test_settle_cents_with_domain_bills(service, quarter_bills, credit_history):
    """Test centavo-level entry point"""
    result = service.settle_cents(
        "101",
        quarter_bills,
        1500000,
        credit_history=credit_history,
        payment_timestamp="2026-09-01T00:00:00Z",
    )

    assert result.current_credit_balance_cents == 150000
    assert result.total_applied_cents == 1650000  # 1,500,000 payment + 150,000 credit
    assert result.credit_used_cents == 150000
    assert result.new_credit_balance_cents == 0


def penalty_total():
    return REGISTRY.get_sample_value("settlement_penalty_assessed_cents_total") or 0


def test_only_settlement_counts_penalties(service, quarter_bill_payload):
    """Test previews leave the penalty counter alone while a settlement adds its penalties"""
    before = penalty_total()

    service.preview(payment(quarter_bill_payload, "20000.00"))
    service.assess(quarter_bill_payload, as_of=date(2026, 9, 1))
    assert penalty_total() == before

    service.settle(payment(quarter_bill_payload, "20000.00"))
    assert penalty_total() == before + 153750


def test_settle_against_negative_balance(service):
    """Test a unit left in deficit by an adjustment can still pay its bills"""
    _, history = service.record_credit("101", (), "-50.00", entry_type=EntryType.ADJUSTMENT)
    bill = Bill(
        id="sep",
        period="2026-09",
        due_date=date(2026, 9, 1),
        base_amount_cents=100000,
        penalty_rate=Decimal("0.05"),
    )

    result = service.settle_cents(
        "101",
        [bill],
        200000,
        credit_history=history,
        payment_timestamp="2026-09-01T00:00:00Z",
    )

    assert result.current_credit_balance_cents == -5000
    assert result.bill_payments[0].new_status == BillStatus.PAID
    assert result.overpayment_cents == 100000
    assert result.new_credit_balance_cents == 95000
    assert get_balance([*history, *result.ledger_entries]) == 95000


def test_invalid_request_raises_domain_validation_error(service):
    """Test pydantic errors surface as the domain ValidationError"""
    with pytest.raises(ValidationError) as exc_info:
        service.settle({"unit_id": "101", "payment_amount": "-1"})
    assert isinstance(exc_info.value.__cause__, PydanticValidationError)

    with pytest.raises(ValidationError):
        service.settle({"payment_amount": "10.00"})


def test_mixed_group_due_dates_rejected(service, quarter_bill_payload):
    """Test one group spanning two due dates is refused"""
    quarter_bill_payload[2]["due_date"] = "2026-08-01"
    with pytest.raises(ValidationError):
        service.settle(payment(quarter_bill_payload, "100.00"))


def test_out_of_range_amount(service):
    """Test amounts the centavo representation cannot hold"""
    with pytest.raises(ArithmeticRangeError):
        service.settle(payment([], "1e20"))


def test_rejection_metric_and_log(service, caplog):
    """Test refused settlements are counted and logged"""
    labels = {"code": "VALIDATION_ERROR"}
    before = REGISTRY.get_sample_value("settlement_rejections_total", labels) or 0

    with caplog.at_level(logging.WARNING):
        with pytest.raises(ValidationError):
            service.settle({"unit_id": "404", "payment_amount": "-1"})

    assert REGISTRY.get_sample_value("settlement_rejections_total", labels) == before + 1
    record = next(r for r in caplog.records if r.getMessage().startswith("Settlement rejected"))
    assert record.unit_id == "404"
    assert record.error_code == "VALIDATION_ERROR"


def test_allocation_is_logged(service, quarter_bill_payload, caplog):
    """Test a completed allocation emits one structured record"""
    with caplog.at_level(logging.INFO):
        service.settle(payment(quarter_bill_payload, "20000.00"))

    record = next(r for r in caplog.records if r.getMessage() == "Allocation completed")
    assert record.unit_id == "101"
    assert record.overpayment_cents == 346250
    assert record.policy == "per_bill"


def test_water_module_notes(quarter_bill_payload):
    """Test module type from settings drives the note"""
    service = SettlementService(Settings(_env_file=None, module_type="water"))
    response = service.settle(payment(quarter_bill_payload, "20000.00"))
    assert response.note.startswith("Water bills paid:")
    assert response.allocations[0].type == "water_bill"


def test_record_and_reverse_credit(service, credit_history):
    """Test ledger operations through the service"""
    entry, history = service.record_credit("101", credit_history, "250.00", transaction_id="txn_manual")

    assert entry.amount_cents == 25000
    assert entry.source == "unifiedPayment"
    assert get_balance(history) == 175000

    reversed_history = service.reverse_transaction("101", history, "txn_manual")
    assert get_balance(reversed_history) == 150000

    with pytest.raises(NotFoundError):
        service.reverse_transaction("101", reversed_history, "txn_manual")


def test_record_credit_overdraw(service, credit_history):
    """Test credit use beyond the balance is refused"""
    with pytest.raises(InsufficientBalanceError):
        service.record_credit("101", credit_history, "-2000.00", entry_type=EntryType.CREDIT_USED)


def test_credit_history_limit(credit_history):
    """Test history view honours the configured limit"""
    service = SettlementService(Settings(_env_file=None, history_view_limit=1))

    view = service.credit_history(credit_history)

    assert len(view) == 1
    assert view[0].balance_after_cents == 150000
    assert len(service.credit_history(credit_history, limit=5)) == 2


def test_close_fiscal_year(service, credit_history):
    """Test fiscal year close at the end of June"""
    _, history = service.record_credit("101", credit_history, "70.00", timestamp="2026-07-01T00:00:00Z")

    rollover = service.close_fiscal_year("101", history, 2026)

    assert rollover.closing_balance_cents == 150000
    assert len(rollover.archived) == 2
    starting = rollover.history[0]
    assert starting.timestamp == datetime(2026, 6, 30, 23, 59, 59, 999000, tzinfo=timezone.utc)
    assert starting.notes == "Starting balance for fiscal year 2027"
    assert get_balance(rollover.history) == 157000
