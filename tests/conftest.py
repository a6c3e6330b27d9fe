"""Pytest fixtures for testing"""

import pytest
from datetime import date
from decimal import Decimal

from billing_settlement.config import Settings
from billing_settlement.domain.ledger import append_entry
from billing_settlement.domain.models import Bill, CreditLedgerEntry, EntryType
from billing_settlement.services.settlement import SettlementService

QUARTER_DUE = date(2026, 7, 1)


@pytest.fixture
def test_settings() -> Settings:
    """Settings that ignore any local .env file"""
    return Settings(_env_file=None)


@pytest.fixture
def service(test_settings: Settings) -> SettlementService:
    """Settlement service with default configuration"""
    return SettlementService(test_settings)


@pytest.fixture
def quarter_bills() -> list[Bill]:
    """Three monthly bills billed together for one quarter"""
    return [
        Bill(
            id=f"bill_{month}",
            period=f"2026-{month:02d}",
            due_date=QUARTER_DUE,
            base_amount_cents=500000,  # $5,000
            penalty_rate=Decimal("0.05"),
            grace_period_days=30,
            group_key="2026-Q3",
        )
        for month in (7, 8, 9)
    ]


@pytest.fixture
def quarter_bill_payload() -> list[dict]:
    """The same quarter as boundary dicts in pesos"""
    return [
        {
            "id": f"bill_{month}",
            "period": f"2026-{month:02d}",
            "due_date": "2026-07-01",
            "group_key": "2026-Q3",
            "base_amount": "5000.00",
            "penalty_rate": "0.05",
            "grace_period_days": 30,
        }
        for month in (7, 8, 9)
    ]


@pytest.fixture
def credit_history() -> tuple[CreditLedgerEntry, ...]:
    """Starting balance plus one overpayment credit"""
    _, history = append_entry(
        None,
        100000,  # $1,000 carried from last year
        entry_type=EntryType.STARTING_BALANCE,
        timestamp="2026-01-01T00:00:00Z",
        source="yearEndRollover",
    )
    _, history = append_entry(
        history,
        50000,  # $500 overpayment
        transaction_id="txn_overpay",
        timestamp="2026-02-15T09:30:00Z",
        source="unifiedPayment",
    )
    return history
