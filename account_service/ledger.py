"""
Ledger balance maintenance.

Every create, update and delete of a transaction goes through this module so
that ``Account.balance`` and each ``Transaction.balance_after`` stay in step:

    balance       == opening_balance + sum(amount)
    balance_after == opening_balance + sum(amount of this and every earlier
                     transaction, ordered by (date, id))

A mutation rewrites the snapshots of all transactions of the account, so
editing or deleting an older transaction no longer leaves later snapshots
stale. The transaction rows and the account row are written in a single
commit, and the account row is updated with a compare-and-swap on
``Account.version``: a writer that lost the race gets ``BalanceConflict``
instead of overwriting the other writer's balance.
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional

import structlog
from sqlalchemy import update
from sqlmodel import Session, select

from .config import BALANCE_TOLERANCE, URGENT_THRESHOLD
from .errors import AccountNotFound, BalanceConflict, TransactionNotFound
from .models import (
    Account,
    Category,
    RecurringFrequency,
    Transaction,
    TransactionType,
    as_utc,
    utcnow,
)

logger = structlog.get_logger(__name__)

# fields an update may touch besides amount/type
EDITABLE_FIELDS = ("category", "description", "date", "tags", "location", "is_recurring", "recurring_frequency")
# editable fields that may be cleared with an explicit null
NULLABLE_FIELDS = ("location", "recurring_frequency")

CENT = Decimal("0.01")


def to_cents(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def signed_amount(tx_type: TransactionType, amount) -> Decimal:
    """Expenses are stored negative, income and transfers positive, whatever the input sign."""
    magnitude = to_cents(abs(Decimal(str(amount))))
    if TransactionType(tx_type) == TransactionType.expense:
        return -magnitude
    return magnitude


def is_urgent(amount) -> bool:
    return abs(Decimal(str(amount))) > URGENT_THRESHOLD


def get_owned_account(session: Session, owner_id: str, account_id: int, active_only: bool = True) -> Account:
    stmt = select(Account).where(Account.id == account_id, Account.owner_id == owner_id)
    if active_only:
        stmt = stmt.where(Account.is_active == True)  # noqa: E712
    account = session.exec(stmt).first()
    if not account:
        raise AccountNotFound(account_id)
    return account


def get_owned_transaction(session: Session, owner_id: str, transaction_id: int) -> Transaction:
    tx = session.exec(
        select(Transaction).where(Transaction.id == transaction_id, Transaction.owner_id == owner_id)
    ).first()
    if not tx:
        raise TransactionNotFound(transaction_id)
    return tx


def ordered_transactions(session: Session, account_id: int) -> list[Transaction]:
    return list(
        session.exec(
            select(Transaction)
            .where(Transaction.account_id == account_id)
            .order_by(Transaction.date, Transaction.id)
        ).all()
    )


def recompute(session: Session, account: Account, opening: Optional[Decimal] = None) -> Decimal:
    """Rewrite every balance_after of the account and return the resulting balance.

    Only the transaction rows are touched; the caller stores the balance.
    """
    session.flush()
    running = Decimal(account.opening_balance if opening is None else opening)
    for tx in ordered_transactions(session, account.id):
        running += Decimal(tx.amount)
        if Decimal(tx.balance_after) != running:
            tx.balance_after = running
            session.add(tx)
    return running


def _store_balance(session: Session, account: Account, balance: Decimal, **values) -> None:
    expected = account.version
    result = session.exec(
        update(Account)
        .where(Account.id == account.id, Account.version == expected)
        .values(balance=balance, version=expected + 1, updated_at=utcnow(), **values)
    )
    if result.rowcount != 1:
        session.rollback()
        logger.warning("balance_conflict", account_id=account.id, expected_version=expected)
        raise BalanceConflict(account.id)


def _commit_balance(session: Session, account: Account, **values) -> Decimal:
    balance = recompute(session, account)
    _store_balance(session, account, balance, **values)
    session.commit()
    return balance


def create_transaction(
    session: Session,
    owner_id: str,
    account_id: int,
    amount,
    tx_type: TransactionType,
    category: Category,
    description: str,
    date: Optional[datetime] = None,
    tags: Optional[Iterable[str]] = None,
    location: Optional[str] = None,
    is_recurring: bool = False,
    recurring_frequency: Optional[RecurringFrequency] = None,
    external_id: Optional[str] = None,
) -> Transaction:
    account = get_owned_account(session, owner_id, account_id)
    value = signed_amount(tx_type, amount)

    tx = Transaction(
        owner_id=owner_id,
        account_id=account.id,
        amount=value,
        type=tx_type,
        category=category,
        description=description,
        date=as_utc(date) if date else utcnow(),
        tags=list(tags or []),
        location=location,
        is_recurring=is_recurring,
        recurring_frequency=recurring_frequency,
        is_urgent=is_urgent(value),
        balance_after=Decimal(account.balance) + value,
        external_id=external_id,
        is_synced=external_id is not None,
    )
    session.add(tx)
    balance = _commit_balance(session, account)
    session.refresh(tx)
    logger.info(
        "transaction_created",
        transaction_id=tx.id,
        account_id=account.id,
        amount=str(value),
        balance=str(balance),
    )
    return tx


def update_transaction(session: Session, owner_id: str, transaction_id: int, amount=None,
                       tx_type: Optional[TransactionType] = None, **changes) -> Transaction:
    """Revert the stored amount, apply the new one and rewrite the affected snapshots.

    ``amount``/``tx_type`` left as None keep their stored values; the sign rule
    is applied to whichever combination results. Fields missing from
    ``changes`` are kept; ``location`` and ``recurring_frequency`` are cleared
    by an explicit None.
    """
    tx = get_owned_transaction(session, owner_id, transaction_id)
    account = session.get(Account, tx.account_id)
    if account is None:
        raise AccountNotFound(tx.account_id)

    new_type = TransactionType(tx_type) if tx_type is not None else tx.type
    new_amount = signed_amount(new_type, amount if amount is not None else tx.amount)
    reverted = Decimal(tx.balance_after) - Decimal(tx.amount)

    tx.type = new_type
    tx.amount = new_amount
    tx.is_urgent = is_urgent(new_amount)
    tx.balance_after = reverted + new_amount
    for field in EDITABLE_FIELDS:
        if field not in changes:
            continue
        value = changes[field]
        if value is None and field not in NULLABLE_FIELDS:
            continue
        if field == "date":
            value = as_utc(value)
        elif field == "tags":
            value = list(value)
        setattr(tx, field, value)
    tx.updated_at = utcnow()
    session.add(tx)

    balance = _commit_balance(session, account)
    session.refresh(tx)
    logger.info("transaction_updated", transaction_id=tx.id, account_id=account.id, balance=str(balance))
    return tx


def delete_transaction(session: Session, owner_id: str, transaction_id: int) -> Decimal:
    tx = get_owned_transaction(session, owner_id, transaction_id)
    account = session.get(Account, tx.account_id)
    if account is None:
        raise AccountNotFound(tx.account_id)

    session.delete(tx)
    balance = _commit_balance(session, account)
    logger.info("transaction_deleted", transaction_id=transaction_id, account_id=account.id, balance=str(balance))
    return balance


def reconcile(session: Session, account: Account, reported_balance, **values) -> bool:
    """Align the ledger with an externally reported balance.

    The difference is absorbed by the opening balance so the ledger invariant
    keeps holding. Extra column values (sync timestamps) are written in the
    same update. Returns True when the balance moved.
    """
    reported = to_cents(reported_balance)
    current = recompute(session, account)
    moved = abs(current - reported) > BALANCE_TOLERANCE
    if moved:
        opening = Decimal(account.opening_balance) + (reported - current)
        values["opening_balance"] = opening
        current = recompute(session, account, opening)
        logger.info("balance_reconciled", account_id=account.id, reported=str(reported))
    _store_balance(session, account, current, **values)
    session.commit()
    return moved
