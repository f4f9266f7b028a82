"""
Aggregator synchronisation.

Accounts and transactions pulled from the aggregator are upserted into the
local ledger through ``ledger`` so they follow the same balance rules as
manual entries. Each sync run holds a ``SyncJob`` row for its scope; a second
run for the same scope, in this process or another instance sharing the
database, skips instead of running concurrently.
"""

import os
import socket
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any

import structlog
from sqlalchemy import delete, insert, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from . import config, ledger
from .aggregator import as_date, map_account_type
from .categorization import Categorizer, get_categorizer
from .models import Account, LinkStatus, SyncJob, Transaction, TransactionType, utcnow

logger = structlog.get_logger(__name__)

INSTANCE_ID = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class SyncAlreadyRunning(Exception):
    def __init__(self, name: str):
        super().__init__(f"sync '{name}' is already running")
        self.name = name


def acquire_job(session: Session, name: str, owner: str = INSTANCE_ID,
                ttl_seconds: int = config.SYNC_LOCK_TTL_SECONDS) -> bool:
    """Claim the job row; an existing row older than the TTL is taken over."""
    now = utcnow()
    try:
        session.exec(insert(SyncJob).values(name=name, owner=owner, started_at=now))
        session.commit()
        return True
    except IntegrityError:
        session.rollback()

    current = session.exec(
        select(SyncJob.owner, SyncJob.started_at).where(SyncJob.name == name)
    ).first()
    if current is None or now - current.started_at < timedelta(seconds=ttl_seconds):
        return False
    result = session.exec(
        update(SyncJob)
        .where(SyncJob.name == name, SyncJob.started_at == current.started_at)
        .values(owner=owner, started_at=now)
    )
    session.commit()
    if result.rowcount == 1:
        logger.warning("sync_lock_taken_over", job=name, previous_owner=current.owner)
        return True
    return False


def release_job(session: Session, name: str, owner: str = INSTANCE_ID) -> None:
    session.exec(delete(SyncJob).where(SyncJob.name == name, SyncJob.owner == owner))
    session.commit()


@contextmanager
def job_lock(session: Session, name: str, owner: str = INSTANCE_ID):
    if not acquire_job(session, name, owner):
        raise SyncAlreadyRunning(name)
    try:
        yield
    finally:
        session.rollback()
        release_job(session, name, owner)


def _aggregator_amount(raw: dict[str, Any]) -> tuple[TransactionType, Decimal]:
    # aggregator convention: positive = money leaving the account
    amount = Decimal(str(raw["amount"]))
    tx_type = TransactionType.expense if amount > 0 else TransactionType.income
    return tx_type, amount


def _location(raw: dict[str, Any]) -> str | None:
    location = raw.get("location") or {}
    return location.get("address") if isinstance(location, dict) else None


class SyncService:
    def __init__(self, session: Session, aggregator, categorizer: Categorizer | None = None):
        self.session = session
        self.aggregator = aggregator
        self.categorizer = categorizer or get_categorizer()

    # -- accounts ---------------------------------------------------------

    def sync_accounts(self, owner_id: str, access_token: str, item_id: str | None = None) -> list[Account]:
        synced = []
        for raw in self.aggregator.get_accounts(access_token):
            balances = raw.get("balances") or {}
            current = balances.get("current")
            account = self.session.exec(
                select(Account).where(
                    Account.owner_id == owner_id,
                    Account.external_account_id == raw["account_id"],
                )
            ).first()

            if account is None:
                opening = ledger.to_cents(current or 0)
                account = Account(
                    owner_id=owner_id,
                    name=(raw.get("name") or "Linked account")[:50],
                    type=map_account_type(raw.get("subtype") or raw.get("type")),
                    opening_balance=opening,
                    balance=opening,
                    currency=(balances.get("iso_currency_code") or "USD").upper(),
                    description=f"{raw.get('official_name') or raw.get('name')} - Auto-synced"[:200],
                    external_account_id=raw["account_id"],
                    external_item_id=item_id,
                    external_access_token=access_token,
                    link_status=LinkStatus.linked,
                    last_synced_at=utcnow(),
                )
                self.session.add(account)
                self.session.commit()
                self.session.refresh(account)
                logger.info("account_linked", account_id=account.id, owner_id=owner_id)
            else:
                values = {
                    "last_synced_at": utcnow(),
                    "link_status": LinkStatus.linked,
                    "external_access_token": access_token,
                    "is_active": True,
                }
                if item_id:
                    values["external_item_id"] = item_id
                reported = current if current is not None else account.balance
                ledger.reconcile(self.session, account, reported, **values)
                self.session.refresh(account)
            synced.append(account)
        return synced

    # -- transactions -----------------------------------------------------

    def upsert_transaction(self, account: Account, raw: dict[str, Any]) -> tuple[str, Transaction | None]:
        """Insert or update one aggregator transaction keyed by its external id.

        Returns ("created" | "updated" | "unchanged", transaction).
        """
        external_id = raw["transaction_id"]
        tx_type, amount = _aggregator_amount(raw)
        description = (raw.get("name") or raw.get("merchant_name") or "Bank transaction")[:200]
        occurred = datetime.combine(as_date(raw["date"]), datetime.min.time())

        existing = self.session.exec(
            select(Transaction).where(Transaction.external_id == external_id)
        ).first()

        if existing is None:
            categorization = self.categorizer.categorize(description, -amount)
            tx = ledger.create_transaction(
                self.session,
                account.owner_id,
                account.id,
                amount,
                tx_type,
                categorization.category,
                description,
                date=occurred,
                location=_location(raw),
                external_id=external_id,
            )
            return "created", tx

        if existing.account_id != account.id:
            return "unchanged", existing
        if (
            existing.amount == ledger.signed_amount(tx_type, amount)
            and existing.description == description
            and existing.date == occurred
        ):
            return "unchanged", existing

        tx = ledger.update_transaction(
            self.session,
            existing.owner_id,
            existing.id,
            amount=amount,
            tx_type=tx_type,
            description=description,
            date=occurred,
        )
        return "updated", tx

    def sync_transactions(self, owner_id: str, access_token: str, start, end) -> list[Transaction]:
        """Import a date window for every linked account of the owner; returns new transactions.

        Touched accounts are reconciled to the aggregator's reported balance
        afterwards.
        """
        created = []
        accounts: dict[str, Account | None] = {}
        for raw in self.aggregator.get_transactions(access_token, start, end):
            ext_account = raw.get("account_id")
            if ext_account not in accounts:
                accounts[ext_account] = self.session.exec(
                    select(Account).where(
                        Account.owner_id == owner_id,
                        Account.external_account_id == ext_account,
                        Account.is_active == True,  # noqa: E712
                    )
                ).first()
            account = accounts[ext_account]
            if account is None:
                continue
            outcome, tx = self.upsert_transaction(account, raw)
            if outcome == "created":
                created.append(tx)

        touched = {ext: account for ext, account in accounts.items() if account is not None}
        if touched:
            reported = {
                raw.get("account_id"): (raw.get("balances") or {}).get("current")
                for raw in self.aggregator.get_accounts(access_token)
            }
            for ext, account in touched.items():
                if reported.get(ext) is None:
                    continue
                self.session.refresh(account)
                ledger.reconcile(self.session, account, reported[ext], last_synced_at=utcnow())
        logger.info("transactions_synced", owner_id=owner_id, created=len(created))
        return created

    def sync_account(self, account: Account, lookback_days: int = config.SYNC_LOOKBACK_DAYS) -> int:
        """Pull recent transactions for one linked account and reconcile its balance."""
        end = utcnow()
        start = end - timedelta(days=lookback_days)
        token = account.external_access_token
        try:
            raw_transactions = self.aggregator.get_transactions(token, start, end)
            reported = None
            for raw in self.aggregator.get_accounts(token):
                if raw.get("account_id") == account.external_account_id:
                    reported = (raw.get("balances") or {}).get("current")
        except Exception:
            self.session.rollback()
            self.session.exec(
                update(Account).where(Account.id == account.id).values(link_status=LinkStatus.error)
            )
            self.session.commit()
            raise

        count = 0
        for raw in raw_transactions:
            if raw.get("account_id") != account.external_account_id:
                continue
            outcome, _ = self.upsert_transaction(account, raw)
            if outcome == "created":
                count += 1

        self.session.refresh(account)
        values = {"last_synced_at": utcnow(), "link_status": LinkStatus.linked}
        ledger.reconcile(self.session, account, reported if reported is not None else account.balance, **values)
        if count:
            logger.info("account_synced", account_id=account.id, new_transactions=count)
        return count

    def _linked_accounts(self, *criteria) -> list[Account]:
        return list(
            self.session.exec(
                select(Account).where(
                    Account.link_status != LinkStatus.unlinked,
                    Account.external_access_token != None,  # noqa: E711
                    Account.is_active == True,  # noqa: E712
                    *criteria,
                )
            ).all()
        )

    def sync_user(self, owner_id: str) -> dict[str, int]:
        with job_lock(self.session, f"user:{owner_id}"):
            accounts = self._linked_accounts(Account.owner_id == owner_id)
            total = sum(self.sync_account(account) for account in accounts)
        return {"accountsSynced": len(accounts), "newTransactions": total}

    def sync_item(self, item_id: str) -> dict[str, int]:
        with job_lock(self.session, f"item:{item_id}"):
            accounts = self._linked_accounts(Account.external_item_id == item_id)
            total = 0
            for account in accounts:
                logger.info("webhook_sync", account_id=account.id, item_id=item_id)
                total += self.sync_account(account)
        return {"accountsSynced": len(accounts), "newTransactions": total}

    def sync_all(self) -> dict[str, int]:
        """Sync every linked account; one failing account does not stop the rest."""
        synced = failed = total = 0
        with job_lock(self.session, "all-accounts"):
            accounts = self._linked_accounts()
            logger.info("sync_all_started", accounts=len(accounts))
            for account in accounts:
                account_id = account.id
                try:
                    total += self.sync_account(account)
                    synced += 1
                except Exception:
                    self.session.rollback()
                    failed += 1
                    logger.exception("account_sync_failed", account_id=account_id)
        logger.info("sync_all_finished", synced=synced, failed=failed, new_transactions=total)
        return {"accountsSynced": synced, "accountsFailed": failed, "newTransactions": total}
