"""
Aggregator sync tests
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlmodel import select

from account_service.models import (
    Account,
    AccountType,
    Category,
    LinkStatus,
    SyncJob,
    Transaction,
    TransactionType,
    utcnow,
)
from account_service.sync import (
    SyncAlreadyRunning,
    SyncService,
    acquire_job,
    job_lock,
    release_job,
)

from .conftest import USER

CHECKING = {
    "account_id": "ext-chk",
    "name": "Plaid Checking",
    "official_name": "Plaid Gold Standard Checking",
    "type": "depository",
    "subtype": "checking",
    "balances": {"current": 110.0, "iso_currency_code": "USD"},
}
CREDIT = {
    "account_id": "ext-cc",
    "name": "Plaid Credit Card",
    "official_name": None,
    "type": "credit",
    "subtype": "credit card",
    "balances": {"current": -410.0, "iso_currency_code": "usd"},
}
COFFEE = {
    "transaction_id": "tx-coffee",
    "account_id": "ext-chk",
    "amount": 4.33,
    "name": "Starbucks",
    "date": "2026-01-10",
    "location": {"address": "1 Main St"},
}
PAYROLL = {
    "transaction_id": "tx-payroll",
    "account_id": "ext-chk",
    "amount": -2500.0,
    "name": "ACME Payroll",
    "date": "2026-01-15",
}
STRAY = {
    "transaction_id": "tx-stray",
    "account_id": "ext-unknown",
    "amount": 12.0,
    "name": "Somewhere",
    "date": "2026-01-12",
}


@pytest.fixture
def service(session, aggregator) -> SyncService:
    return SyncService(session, aggregator)


@pytest.fixture
def linked(service, aggregator) -> Account:
    aggregator.accounts = [CHECKING]
    return service.sync_accounts(USER, "access-1", "item-1")[0]


class TestSyncAccounts:
    def test_creates_accounts_at_reported_balance(self, service, aggregator) -> None:
        aggregator.accounts = [CHECKING, CREDIT]

        accounts = service.sync_accounts(USER, "access-1", "item-1")

        checking, credit = accounts
        assert checking.balance == Decimal("110")
        assert checking.opening_balance == Decimal("110")
        assert checking.type == AccountType.checking
        assert checking.link_status == LinkStatus.linked
        assert checking.external_item_id == "item-1"
        assert checking.description == "Plaid Gold Standard Checking - Auto-synced"
        assert credit.type == AccountType.credit
        assert credit.currency == "USD"

    def test_existing_account_is_reconciled_not_duplicated(self, service, aggregator, session, linked) -> None:
        aggregator.accounts = [dict(CHECKING, balances={"current": 150.0})]

        again = service.sync_accounts(USER, "access-1", "item-1")

        assert again[0].id == linked.id
        assert again[0].balance == Decimal("150")
        assert len(session.exec(select(Account)).all()) == 1


class TestSyncTransactions:
    def test_imports_with_aggregator_sign_convention(self, service, aggregator, session, linked) -> None:
        aggregator.transactions = [COFFEE, PAYROLL, STRAY]

        created = service.sync_transactions(USER, "access-1", utcnow() - timedelta(days=30), utcnow())

        assert len(created) == 2
        coffee = session.exec(select(Transaction).where(Transaction.external_id == "tx-coffee")).one()
        payroll = session.exec(select(Transaction).where(Transaction.external_id == "tx-payroll")).one()
        assert coffee.type == TransactionType.expense
        assert coffee.amount == Decimal("-4.33")
        assert coffee.category == Category.food
        assert coffee.location == "1 Main St"
        assert coffee.is_synced is True
        assert payroll.type == TransactionType.income
        assert payroll.amount == Decimal("2500")
        assert payroll.category == Category.salary
        assert payroll.is_urgent is True
        session.refresh(linked)
        assert linked.balance == Decimal("110")
        assert linked.opening_balance == Decimal("-2385.67")
        assert payroll.balance_after == Decimal("110")

    def test_repeated_sync_is_idempotent(self, service, aggregator, session, linked) -> None:
        aggregator.transactions = [COFFEE, PAYROLL]
        start, end = utcnow() - timedelta(days=30), utcnow()
        service.sync_transactions(USER, "access-1", start, end)

        created = service.sync_transactions(USER, "access-1", start, end)

        assert created == []
        assert len(session.exec(select(Transaction)).all()) == 2
        session.refresh(linked)
        assert linked.balance == Decimal("110")
        assert linked.opening_balance == Decimal("-2385.67")

    def test_changed_amount_updates_existing(self, service, aggregator, session, linked) -> None:
        aggregator.transactions = [COFFEE]
        start, end = utcnow() - timedelta(days=30), utcnow()
        service.sync_transactions(USER, "access-1", start, end)

        aggregator.transactions = [dict(COFFEE, amount=5.0)]
        created = service.sync_transactions(USER, "access-1", start, end)

        assert created == []
        coffee = session.exec(select(Transaction).where(Transaction.external_id == "tx-coffee")).one()
        assert coffee.amount == Decimal("-5")
        session.refresh(linked)
        assert linked.balance == Decimal("110")
        assert linked.opening_balance == Decimal("115")

    def test_upsert_outcomes(self, service, linked) -> None:
        outcome, tx = service.upsert_transaction(linked, COFFEE)
        assert outcome == "created"

        outcome, same = service.upsert_transaction(linked, COFFEE)
        assert outcome == "unchanged"
        assert same.id == tx.id


class TestSyncAccount:
    def test_reconciles_to_reported_balance(self, service, aggregator, session, linked) -> None:
        aggregator.transactions = [dict(COFFEE, amount=10.0)]

        created = service.sync_account(linked)

        assert created == 1
        session.refresh(linked)
        # the reported 110 already includes the pulled transaction
        assert linked.balance == Decimal("110")
        assert linked.opening_balance == Decimal("120")
        assert linked.last_synced_at is not None

    def test_aggregator_failure_marks_link_error(self, service, aggregator, session, linked) -> None:
        aggregator.failing_tokens.add("access-1")

        with pytest.raises(RuntimeError):
            service.sync_account(linked)

        session.expire_all()
        assert session.get(Account, linked.id).link_status == LinkStatus.error

    def test_sync_all_continues_after_failure(self, service, aggregator, session, linked, make_account) -> None:
        make_account(
            name="Broken",
            external_account_id="ext-broken",
            external_access_token="access-bad",
            link_status=LinkStatus.linked,
        )
        aggregator.failing_tokens.add("access-bad")

        result = service.sync_all()

        assert result == {"accountsSynced": 1, "accountsFailed": 1, "newTransactions": 0}
        assert session.get(SyncJob, "all-accounts") is None

    def test_sync_item_only_touches_item_accounts(self, service, aggregator, linked) -> None:
        aggregator.transactions = [COFFEE]

        assert service.sync_item("item-other") == {"accountsSynced": 0, "newTransactions": 0}
        assert service.sync_item("item-1") == {"accountsSynced": 1, "newTransactions": 1}

    def test_sync_user_skips_when_running(self, service, session, linked) -> None:
        assert acquire_job(session, f"user:{USER}", owner="elsewhere")

        with pytest.raises(SyncAlreadyRunning):
            service.sync_user(USER)


class TestJobLock:
    """SyncJob lease rows"""

    def test_second_claim_fails_until_released(self, session) -> None:
        assert acquire_job(session, "job", owner="a") is True
        assert acquire_job(session, "job", owner="b") is False

        release_job(session, "job", owner="a")

        assert acquire_job(session, "job", owner="b") is True

    def test_release_by_other_owner_is_ignored(self, session) -> None:
        acquire_job(session, "job", owner="a")
        release_job(session, "job", owner="b")

        assert acquire_job(session, "job", owner="c") is False

    def test_expired_lease_is_taken_over(self, session) -> None:
        session.add(SyncJob(name="job", owner="dead", started_at=utcnow() - timedelta(hours=1)))
        session.commit()

        assert acquire_job(session, "job", owner="b", ttl_seconds=60) is True
        session.expire_all()
        assert session.get(SyncJob, "job").owner == "b"

    def test_context_manager_releases(self, session) -> None:
        with job_lock(session, "job", owner="a"):
            with pytest.raises(SyncAlreadyRunning):
                with job_lock(session, "job", owner="b"):
                    pass

        assert acquire_job(session, "job", owner="b") is True
