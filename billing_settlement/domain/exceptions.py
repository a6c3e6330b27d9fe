"""Domain-specific exceptions"""


class SettlementError(Exception):
    """Base exception for the settlement core"""

    code = "SETTLEMENT_ERROR"


class ValidationError(SettlementError):
    """Input is malformed, missing or out of range"""

    code = "VALIDATION_ERROR"


class InsufficientBalanceError(SettlementError):
    """Ledger change would drive the credit balance below zero"""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, current_balance_cents: int, attempted_change_cents: int):
        self.current_balance_cents = current_balance_cents
        self.attempted_change_cents = attempted_change_cents
        super().__init__(
            f"Insufficient credit balance: current {current_balance_cents} centavos, "
            f"change {attempted_change_cents} centavos would leave "
            f"{current_balance_cents + attempted_change_cents}"
        )


class NotFoundError(SettlementError):
    """Referenced bill or ledger entry is absent"""

    code = "NOT_FOUND"


class ArithmeticRangeError(SettlementError):
    """Amount falls outside the representable minor-unit range"""

    code = "ARITHMETIC_RANGE"
