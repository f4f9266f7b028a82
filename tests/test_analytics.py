"""
Analytics tests
"""

from datetime import datetime
from decimal import Decimal

import pytest

from account_service import ledger
from account_service.analytics import AnalyticsService, month_start, previous_month_start
from account_service.models import Category, TransactionType

from .conftest import OTHER_USER, USER

NOW = datetime(2026, 3, 15, 12, 0)


@pytest.fixture
def account(make_account):
    return make_account(balance="5000")


@pytest.fixture
def record(session, account):
    def add(amount, date, category=Category.food, tx_type=TransactionType.expense, description="entry"):
        return ledger.create_transaction(
            session, USER, account.id, Decimal(amount), tx_type, category, description, date=date
        )

    return add


@pytest.fixture
def analytics(session) -> AnalyticsService:
    return AnalyticsService(session, USER)


class TestMonthHelpers:
    def test_month_start(self) -> None:
        assert month_start(NOW) == datetime(2026, 3, 1)

    def test_previous_month_start_crosses_year(self) -> None:
        assert previous_month_start(datetime(2026, 1, 20)) == datetime(2025, 12, 1)


class TestSpendingByCategory:
    def test_groups_and_orders(self, analytics, record) -> None:
        record("30", datetime(2026, 3, 2), Category.food)
        record("10", datetime(2026, 3, 3), Category.food)
        record("100", datetime(2026, 3, 4), Category.rent)
        record("999", datetime(2026, 3, 5), Category.salary, TransactionType.income)

        rows = analytics.spending_by_category(datetime(2026, 3, 1), NOW)

        assert rows == [
            {"category": "rent", "total": 100.0, "count": 1, "avgAmount": 100.0},
            {"category": "food", "total": 40.0, "count": 2, "avgAmount": 20.0},
        ]

    def test_only_owner_data(self, session, make_account, analytics) -> None:
        other = make_account(owner=OTHER_USER)
        ledger.create_transaction(session, OTHER_USER, other.id, Decimal("50"), TransactionType.expense,
                                  Category.food, "theirs", date=datetime(2026, 3, 2))

        assert analytics.spending_by_category(datetime(2026, 3, 1), NOW) == []


class TestIncomeVsExpenses:
    def test_monthly_buckets(self, analytics, record) -> None:
        record("500", datetime(2026, 1, 5), Category.salary, TransactionType.income)
        record("100", datetime(2026, 1, 20))
        record("100", datetime(2026, 2, 10))
        record("40", datetime(2026, 2, 11), Category.transfer, TransactionType.transfer)

        assert analytics.income_vs_expenses("month") == [
            {"period": "2026-01", "income": 500.0, "expenses": 100.0},
            {"period": "2026-02", "income": 0.0, "expenses": 100.0},
        ]

    def test_daily_buckets(self, analytics, record) -> None:
        record("5", datetime(2026, 1, 5, 8))
        record("7", datetime(2026, 1, 5, 20))

        assert analytics.income_vs_expenses("day") == [{"period": "2026-01-05", "income": 0.0, "expenses": 12.0}]


class TestBalanceTrends:
    def test_series_per_account(self, analytics, record, account) -> None:
        record("100", datetime(2026, 1, 5))
        record("50", datetime(2026, 1, 6), Category.gift, TransactionType.income)

        trends = analytics.balance_trends()

        assert len(trends) == 1
        assert trends[0]["accountId"] == account.id
        assert [p["balance"] for p in trends[0]["transactions"]] == [4900.0, 4950.0]
        assert [p["amount"] for p in trends[0]["transactions"]] == [-100.0, 50.0]


class TestInsights:
    def test_increased_spending_and_top_category(self, analytics, record) -> None:
        record("100", datetime(2026, 2, 10))
        record("200", datetime(2026, 3, 10))

        insights = {i["title"]: i for i in analytics.insights(NOW)}

        assert insights["Increased Spending Alert"]["message"] == "Your spending is 100% higher than last month"
        assert insights["Increased Spending Alert"]["type"] == "warning"
        assert insights["Top Spending Category"]["message"] == "You spent most on food this month: $200.00"

    def test_no_increase_alert_without_last_month(self, analytics, record) -> None:
        record("200", datetime(2026, 3, 10))

        titles = [i["title"] for i in analytics.insights(NOW)]

        assert "Increased Spending Alert" not in titles

    def test_weekend_pattern(self, analytics, record) -> None:
        # 2026-03-07 is a Saturday, 2026-03-10 a Tuesday
        record("80", datetime(2026, 3, 7))
        record("20", datetime(2026, 3, 10))

        titles = [i["title"] for i in analytics.insights(NOW)]

        assert "Weekend Spending Pattern" in titles

    def test_unusual_transactions(self, analytics, record) -> None:
        record("10", datetime(2026, 1, 20))
        record("10", datetime(2026, 2, 3))
        record("10", datetime(2026, 2, 17))
        big = record("100", datetime(2026, 3, 10))

        unusual = analytics.unusual_transactions(NOW)

        assert [tx.id for tx in unusual] == [big.id]
        titles = [i["title"] for i in analytics.insights(NOW)]
        assert "Unusual Transactions" in titles


class TestPredictions:
    def test_average_with_growth(self, analytics, record) -> None:
        record("100", datetime(2026, 2, 10))
        record("200", datetime(2026, 3, 10))
        record("30", datetime(2026, 3, 11), Category.travel)

        predictions = analytics.predictions(NOW)

        assert predictions == [
            {"category": "food", "predictedAmount": 158, "confidence": "high"},
            {"category": "travel", "predictedAmount": 32, "confidence": "low"},
        ]


class TestAnalyticsRoutes:
    def test_dashboard_stats(self, client, auth_headers, record) -> None:
        record("25", datetime(2026, 3, 10))

        body = client.get("/analytics/dashboard-stats", headers=auth_headers).json()

        assert set(body) == {"spendingByCategory", "incomeVsExpenses", "insights", "predictions"}

    def test_spending_by_category_window(self, client, auth_headers, record) -> None:
        record("25", datetime(2026, 3, 10))

        body = client.get(
            "/analytics/spending-by-category",
            params={"startDate": "2026-03-01T00:00:00", "endDate": "2026-03-31T00:00:00"},
            headers=auth_headers,
        ).json()

        assert body["data"] == [{"category": "food", "total": 25.0, "count": 1, "avgAmount": 25.0}]

    def test_invalid_period(self, client, auth_headers) -> None:
        r = client.get("/analytics/income-vs-expenses", params={"period": "year"}, headers=auth_headers)
        assert r.status_code == 422
