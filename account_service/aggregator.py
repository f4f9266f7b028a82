"""
Bank aggregator client (Plaid).

Responses are handed back as plain dicts so the sync code does not depend on
the SDK's model classes.
"""

from datetime import date, datetime
from typing import Any

import plaid
import structlog
from plaid.api import plaid_api
from plaid.model.accounts_get_request import AccountsGetRequest
from plaid.model.country_code import CountryCode
from plaid.model.item_public_token_exchange_request import ItemPublicTokenExchangeRequest
from plaid.model.link_token_create_request import LinkTokenCreateRequest
from plaid.model.link_token_create_request_user import LinkTokenCreateRequestUser
from plaid.model.products import Products
from plaid.model.transactions_get_request import TransactionsGetRequest
from plaid.model.transactions_get_request_options import TransactionsGetRequestOptions

from . import config
from .models import AccountType

logger = structlog.get_logger(__name__)

PLAID_ENV_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}

ACCOUNT_TYPE_MAP = {
    "checking": AccountType.checking,
    "savings": AccountType.savings,
    "credit card": AccountType.credit,
    "credit": AccountType.credit,
    "investment": AccountType.investment,
    "loan": AccountType.credit,
    "mortgage": AccountType.credit,
}

PAGE_SIZE = 100


def map_account_type(kind: str | None) -> AccountType:
    return ACCOUNT_TYPE_MAP.get((kind or "").lower(), AccountType.checking)


def as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


class PlaidAggregator:
    def __init__(self, client_id: str, secret: str, environment: str = "sandbox",
                 client_name: str = config.PLAID_CLIENT_NAME):
        if environment not in PLAID_ENV_HOSTS:
            raise ValueError(f"Invalid PLAID_ENV: {environment}")
        configuration = plaid.Configuration(
            host=PLAID_ENV_HOSTS[environment],
            api_key={"clientId": client_id, "secret": secret},
        )
        self.client = plaid_api.PlaidApi(plaid.ApiClient(configuration))
        self.client_name = client_name

    def create_link_token(self, user_id: str) -> str:
        request = LinkTokenCreateRequest(
            products=[Products("transactions")],
            client_name=self.client_name,
            country_codes=[CountryCode("US")],
            language="en",
            user=LinkTokenCreateRequestUser(client_user_id=str(user_id)),
        )
        return self.client.link_token_create(request).link_token

    def exchange_public_token(self, public_token: str) -> dict[str, str]:
        resp = self.client.item_public_token_exchange(
            ItemPublicTokenExchangeRequest(public_token=public_token)
        )
        return {"access_token": resp.access_token, "item_id": resp.item_id}

    def get_accounts(self, access_token: str) -> list[dict[str, Any]]:
        resp = self.client.accounts_get(AccountsGetRequest(access_token=access_token))
        return [a.to_dict() for a in resp.accounts]

    def get_transactions(self, access_token: str, start, end) -> list[dict[str, Any]]:
        fetched: list[dict[str, Any]] = []
        offset = 0
        while True:
            request = TransactionsGetRequest(
                access_token=access_token,
                start_date=as_date(start),
                end_date=as_date(end),
                options=TransactionsGetRequestOptions(count=PAGE_SIZE, offset=offset),
            )
            resp = self.client.transactions_get(request)
            batch = [t.to_dict() for t in resp.transactions]
            fetched.extend(batch)
            if not batch or len(fetched) >= resp.total_transactions:
                break
            offset += len(batch)
        logger.info("aggregator_transactions_fetched", count=len(fetched))
        return fetched


_aggregator: PlaidAggregator | None = None


def get_aggregator() -> PlaidAggregator:
    global _aggregator
    if _aggregator is None:
        _aggregator = PlaidAggregator(config.PLAID_CLIENT_ID, config.PLAID_SECRET, config.PLAID_ENV)
    return _aggregator
