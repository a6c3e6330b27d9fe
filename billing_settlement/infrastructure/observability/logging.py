"""Structured JSON logging for settlement observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

from pythonjsonlogger import jsonlogger

from billing_settlement.config import settings


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name


def setup_logging(level: str | None = None) -> None:
    """Configure structured JSON logging at the given level, LOG_LEVEL by default"""
    logger = logging.getLogger()
    logger.setLevel(level or settings.log_level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_allocation(
    unit_id: str,
    transaction_id: str | None,
    policy: str,
    bills_paid: int,
    total_applied_cents: int,
    credit_used_cents: int,
    overpayment_cents: int,
    new_credit_balance_cents: int,
    duration_ms: float,
) -> None:
    """Log structured allocation outcome for the audit trail"""
    logging.info(
        "Allocation completed",
        extra={
            "unit_id": unit_id,
            "transaction_id": transaction_id,
            "step": "allocation_complete",
            "policy": policy,
            "bills_paid": bills_paid,
            "total_applied_cents": total_applied_cents,
            "credit_used_cents": credit_used_cents,
            "overpayment_cents": overpayment_cents,
            "new_credit_balance_cents": new_credit_balance_cents,
            "duration_ms": duration_ms,
        },
    )


def log_penalty_assessment(
    unit_id: str,
    as_of: str,
    groups_processed: int,
    bills_penalized: int,
    total_penalty_cents: int,
) -> None:
    """Log the result of a penalty pass"""
    logging.info(
        "Penalties assessed",
        extra={
            "unit_id": unit_id,
            "step": "penalty_assessment",
            "as_of": as_of,
            "groups_processed": groups_processed,
            "bills_penalized": bills_penalized,
            "total_penalty_cents": total_penalty_cents,
        },
    )


def log_settlement_rejected(unit_id: str, error_code: str, reason: str) -> None:
    """Log a settlement refused by validation or a ledger invariant"""
    logging.warning(
        f"Settlement rejected: {reason}",
        extra={
            "unit_id": unit_id,
            "step": "settlement_rejected",
            "error_code": error_code,
        },
    )
