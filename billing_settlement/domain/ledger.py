"""Credit ledger - event-sourced credit balance for one billing unit

The balance is never stored. It is the sum of the raw journal, recomputed on
every read, so deleting or editing an entry needs no reversal bookkeeping.

Every operation takes a history snapshot and returns a new tuple; the input is
never mutated. Any change that would drive the balance below zero is rejected
whole, except through an explicit ADJUSTMENT entry.
"""

import uuid
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence, Tuple

from billing_settlement.domain.exceptions import (
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from billing_settlement.domain.models import (
    CreditLedgerEntry,
    EntryType,
    LedgerHistoryItem,
    YearEndRollover,
)
from billing_settlement.domain.money import MAX_SAFE_CENTS, ensure_in_range, require_cents
from billing_settlement.utils.date_utils import TimestampLike, normalize_timestamp, utc_now

MUTABLE_FIELDS = frozenset({"timestamp", "amount_cents", "notes", "source"})

History = Sequence[CreditLedgerEntry]


def get_balance(history: Optional[Iterable[CreditLedgerEntry]]) -> int:
    """Project the current credit balance: the plain sum of every entry amount"""
    if history is None:
        return 0
    return sum(entry.amount_cents for entry in history)


def sort_history(history: Optional[Iterable[CreditLedgerEntry]]) -> Tuple[CreditLedgerEntry, ...]:
    """Order entries ascending by timestamp (stable for equal timestamps)"""
    return tuple(sorted(history or (), key=lambda entry: entry.timestamp))


def last_change(history: Optional[History]) -> Optional[Tuple[int, CreditLedgerEntry]]:
    """Index and entry of the latest change in timestamp order"""
    ordered = sort_history(history)
    if not ordered:
        return None
    return len(ordered) - 1, ordered[-1]


def validate_entry_amount(
    amount_cents: int,
    entry_type: EntryType,
    max_cents: int = MAX_SAFE_CENTS,
) -> int:
    """
    Check an entry amount against the sign convention of its type.

    - credit_added: strictly positive
    - credit_used: strictly negative
    - starting_balance: zero or positive
    - adjustment: any nonzero amount
    """
    require_cents(amount_cents, "amount_cents", allow_negative=True)
    ensure_in_range(amount_cents, max_cents)

    if entry_type == EntryType.CREDIT_ADDED and amount_cents <= 0:
        raise ValidationError("credit_added entries must have a positive amount")
    if entry_type == EntryType.CREDIT_USED and amount_cents >= 0:
        raise ValidationError("credit_used entries must have a negative amount")
    if entry_type == EntryType.STARTING_BALANCE and amount_cents < 0:
        raise ValidationError("starting_balance entries cannot be negative")
    if entry_type == EntryType.ADJUSTMENT and amount_cents == 0:
        raise ValidationError("adjustment entries must change the balance")
    return amount_cents


def append_entry(
    history: Optional[History],
    amount_cents: int,
    transaction_id: Optional[str] = None,
    notes: str = "",
    entry_type: EntryType = EntryType.CREDIT_ADDED,
    timestamp: Optional[TimestampLike] = None,
    source: str = "",
    max_cents: int = MAX_SAFE_CENTS,
) -> Tuple[CreditLedgerEntry, Tuple[CreditLedgerEntry, ...]]:
    """
    Build a new entry and the history that would result from committing it.

    Returns:
        (entry, new_history) with new_history sorted by timestamp

    Raises:
        ValidationError: bad type, amount or timestamp
        InsufficientBalanceError: the entry would drive the balance negative
            (never raised for ADJUSTMENT entries)
    """
    entry = build_entry(
        amount_cents,
        entry_type,
        transaction_id=transaction_id,
        notes=notes,
        timestamp=timestamp,
        source=source,
        max_cents=max_cents,
    )

    before = get_balance(history)
    new_history = sort_history([*(history or ()), entry])
    _guard_balance(before, get_balance(new_history), allow_negative=entry.entry_type == EntryType.ADJUSTMENT)
    ensure_in_range(get_balance(new_history), max_cents)

    return entry, new_history


def build_entry(
    amount_cents: int,
    entry_type: EntryType,
    transaction_id: Optional[str] = None,
    notes: str = "",
    timestamp: Optional[TimestampLike] = None,
    source: str = "",
    max_cents: int = MAX_SAFE_CENTS,
) -> CreditLedgerEntry:
    """Construct a validated entry with a fresh id and canonical timestamp.

    Does not check the balance; append_entry does that against a history.
    """
    entry_type = _coerce_entry_type(entry_type)
    validate_entry_amount(amount_cents, entry_type, max_cents)
    return CreditLedgerEntry(
        id=_new_entry_id(),
        amount_cents=amount_cents,
        timestamp=normalize_timestamp(timestamp) if timestamp is not None else utc_now(),
        entry_type=entry_type,
        transaction_id=transaction_id,
        source=source,
        notes=notes,
    )


def delete_entry(
    history: Optional[History],
    *,
    entry_id: Optional[str] = None,
    transaction_id: Optional[str] = None,
) -> Tuple[CreditLedgerEntry, ...]:
    """
    Remove every entry matching an entry id or a transaction id.

    The new balance is simply get_balance() of what remains.

    Raises:
        ValidationError: neither or both selectors given
        NotFoundError: nothing matched
        InsufficientBalanceError: the remaining history would project a
            negative balance
    """
    if (entry_id is None) == (transaction_id is None):
        raise ValidationError("Provide exactly one of entry_id or transaction_id")

    if entry_id is not None:
        matches = lambda entry: entry.id == entry_id  # noqa: E731
        selector = f"entry {entry_id}"
    else:
        matches = lambda entry: entry.transaction_id == transaction_id  # noqa: E731
        selector = f"transaction {transaction_id}"

    entries = tuple(history or ())
    remaining = tuple(entry for entry in entries if not matches(entry))
    if len(remaining) == len(entries):
        raise NotFoundError(f"No credit ledger entry found for {selector}")

    _guard_balance(get_balance(entries), get_balance(remaining), allow_negative=False)
    return sort_history(remaining)


def update_entry(
    history: Optional[History],
    entry_id: str,
    max_cents: int = MAX_SAFE_CENTS,
    **fields,
) -> Tuple[CreditLedgerEntry, ...]:
    """
    Replace mutable fields of one entry, then re-sort the whole history.

    Mutable fields: timestamp, amount_cents, notes, source.
    The sum is order-independent, so only the position of the edited entry
    (and thus last_change) can move.
    """
    unknown = set(fields) - MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Cannot update ledger entry fields: {', '.join(sorted(unknown))}")

    entries = tuple(history or ())
    target = next((entry for entry in entries if entry.id == entry_id), None)
    if target is None:
        raise NotFoundError(f"No credit ledger entry found for entry {entry_id}")

    changes = dict(fields)
    if "timestamp" in changes:
        changes["timestamp"] = normalize_timestamp(changes["timestamp"])
    if "amount_cents" in changes:
        validate_entry_amount(changes["amount_cents"], target.entry_type, max_cents)

    updated = replace(target, **changes)
    new_history = sort_history(updated if entry.id == entry_id else entry for entry in entries)

    _guard_balance(
        get_balance(entries),
        get_balance(new_history),
        allow_negative=target.entry_type == EntryType.ADJUSTMENT,
    )
    ensure_in_range(get_balance(new_history), max_cents)
    return new_history


def history_view(history: Optional[History], limit: int = 50) -> List[LedgerHistoryItem]:
    """
    Most-recent-first listing with the balance right after each entry.

    Running balances are projected from the journal here; they are never
    read from storage.
    """
    running = 0
    items = []
    for entry in sort_history(history):
        running += entry.amount_cents
        items.append(LedgerHistoryItem(entry=entry, balance_after_cents=running))
    items.reverse()
    return items[:limit]


def roll_over_year(
    history: Optional[History],
    as_of: TimestampLike,
    source: str = "yearEndRollover",
    notes: Optional[str] = None,
) -> YearEndRollover:
    """
    Close the journal at as_of and seed the next year with its closing balance.

    Entries stamped at or before as_of are archived and replaced by a single
    starting_balance entry; later entries carry over unchanged.
    """
    cutoff = normalize_timestamp(as_of)
    ordered = sort_history(history)
    archived = tuple(entry for entry in ordered if entry.timestamp <= cutoff)
    carried = tuple(entry for entry in ordered if entry.timestamp > cutoff)

    closing_balance = get_balance(archived)
    if closing_balance < 0:
        raise ValidationError(
            f"Closing balance is negative ({closing_balance} centavos); "
            "record an adjustment before rolling over"
        )

    starting = CreditLedgerEntry(
        id=_new_entry_id(),
        amount_cents=closing_balance,
        timestamp=cutoff,
        entry_type=EntryType.STARTING_BALANCE,
        source=source,
        notes=notes or f"Starting balance carried forward from {cutoff.date().isoformat()}",
    )
    return YearEndRollover(
        archived=archived,
        history=sort_history((starting,) + carried),
        closing_balance_cents=closing_balance,
    )


def _guard_balance(before: int, after: int, allow_negative: bool) -> None:
    # A change may not push the balance below zero; it may still raise a
    # balance an earlier adjustment left negative.
    if not allow_negative and after < 0 and after < before:
        raise InsufficientBalanceError(before, after - before)


def _coerce_entry_type(entry_type) -> EntryType:
    try:
        return EntryType(entry_type)
    except ValueError as e:
        raise ValidationError(f"Unknown ledger entry type: {entry_type!r}") from e


def _new_entry_id() -> str:
    return f"credit_{uuid.uuid4().hex}"
