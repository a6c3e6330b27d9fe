"""Unit tests for structured logging and metrics helpers"""

import json
import logging

from prometheus_client import REGISTRY

from billing_settlement.config import settings
from billing_settlement.infrastructure.observability.logging import (
    log_penalty_assessment,
    setup_logging,
)
from billing_settlement.infrastructure.observability.metrics import record_allocation


def test_setup_logging_emits_json(capsys):
    """Test records are written to stdout as JSON with service metadata"""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging("INFO")
        log_penalty_assessment("101", "2026-09-01", 1, 3, 153750)
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    line = capsys.readouterr().out.strip().splitlines()[-1]
    record = json.loads(line)
    assert record["message"] == "Penalties assessed"
    assert record["level"] == "INFO"
    assert record["service"] == "billing-settlement"
    assert record["unit_id"] == "101"
    assert record["total_penalty_cents"] == 153750


def sample(name, labels):
    return REGISTRY.get_sample_value(name, labels) or 0


def test_record_allocation_outcomes():
    """Test allocations are counted by outcome with credit movement"""
    added_before = sample("settlement_credit_movement_cents_total", {"direction": "added"})
    used_before = sample("settlement_credit_movement_cents_total", {"direction": "used"})
    exact_before = sample("settlement_allocation_total", {"policy": "atomic", "outcome": "exact"})

    record_allocation("per_bill", 0, 40000)
    record_allocation("per_bill", 2500, 0)
    record_allocation("atomic", 0, 0)

    assert sample("settlement_credit_movement_cents_total", {"direction": "added"}) == added_before + 40000
    assert sample("settlement_credit_movement_cents_total", {"direction": "used"}) == used_before + 2500
    assert sample("settlement_allocation_total", {"policy": "atomic", "outcome": "exact"}) == exact_before + 1


def test_setup_logging_defaults_to_configured_level(monkeypatch):
    """Test the root level comes from settings when none is passed"""
    monkeypatch.setattr(settings, "log_level", "WARNING")
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        setup_logging()
        configured = root.level
        setup_logging("DEBUG")
        overridden = root.level
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)

    assert configured == logging.WARNING
    assert overridden == logging.DEBUG
