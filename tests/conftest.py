"""
Shared fixtures: in-memory database, fake aggregator, recording publisher.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("EVENTS_ENABLED", "0")
os.environ.setdefault("SYNC_INTERVAL_MINUTES", "0")

from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from account_service.aggregator import get_aggregator  # noqa: E402
from account_service.db import get_session, init_db  # noqa: E402
from account_service.events import get_publisher  # noqa: E402
from account_service.main import app  # noqa: E402
from account_service.models import Account, AccountType  # noqa: E402
from finance_common.security import create_token  # noqa: E402

USER = "user-1"
OTHER_USER = "user-2"


class FakeAggregator:
    """Stands in for the Plaid client; data is set per test."""

    def __init__(self):
        self.accounts: list[dict] = []
        self.transactions: list[dict] = []
        self.failing_tokens: set[str] = set()
        self.calls: list[tuple] = []

    def _check(self, access_token):
        if access_token in self.failing_tokens:
            raise RuntimeError("ITEM_LOGIN_REQUIRED")

    def create_link_token(self, user_id):
        self.calls.append(("create_link_token", user_id))
        return "link-sandbox-token"

    def exchange_public_token(self, public_token):
        self.calls.append(("exchange_public_token", public_token))
        return {"access_token": "access-sandbox-1", "item_id": "item-1"}

    def get_accounts(self, access_token):
        self.calls.append(("get_accounts", access_token))
        self._check(access_token)
        return [dict(a) for a in self.accounts]

    def get_transactions(self, access_token, start, end):
        self.calls.append(("get_transactions", access_token))
        self._check(access_token)
        return [dict(t) for t in self.transactions]


class RecordingPublisher:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    async def publish(self, key, payload):
        self.events.append((key, payload))

    def keys(self) -> list[str]:
        return [key for key, _ in self.events]


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def aggregator() -> FakeAggregator:
    return FakeAggregator()


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def client(engine, aggregator, publisher):
    def override_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_aggregator] = lambda: aggregator
    app.dependency_overrides[get_publisher] = lambda: publisher
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(USER)}"}


@pytest.fixture
def other_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {create_token(OTHER_USER)}"}


@pytest.fixture
def make_account(session):
    """Factory inserting an account whose opening balance equals its balance."""

    def factory(owner=USER, balance="100", name="Checking", type=AccountType.checking, **fields) -> Account:
        value = Decimal(balance)
        account = Account(owner_id=owner, name=name, type=type, opening_balance=value, balance=value, **fields)
        session.add(account)
        session.commit()
        session.refresh(account)
        return account

    return factory
