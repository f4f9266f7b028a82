"""
Spending analytics over an owner's transactions.

All figures are computed from the stored ledger; nothing here writes.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional

from sqlmodel import Session, select

from .models import Account, Category, Transaction, TransactionType, utcnow

PERIOD_FORMATS = {
    "day": "%Y-%m-%d",
    "week": "%Y-W%U",
    "month": "%Y-%m",
}

SPENDING_INCREASE_RATIO = Decimal("1.2")
WEEKEND_SHARE = Decimal("0.4")
UNUSUAL_MULTIPLIER = 2
PREDICTION_GROWTH = Decimal("1.05")


def _money(value: Decimal) -> float:
    return float(round(value, 2))


def _label(category) -> str:
    return Category(category).value.replace("-", " ")


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def previous_month_start(moment: datetime) -> datetime:
    return month_start(month_start(moment) - timedelta(days=1))


class AnalyticsService:
    def __init__(self, session: Session, owner_id: str):
        self.session = session
        self.owner_id = owner_id

    def _transactions(self, start: Optional[datetime] = None, end: Optional[datetime] = None,
                      tx_type: Optional[TransactionType] = None) -> list[Transaction]:
        stmt = select(Transaction).where(Transaction.owner_id == self.owner_id)
        if tx_type is not None:
            stmt = stmt.where(Transaction.type == tx_type)
        if start is not None:
            stmt = stmt.where(Transaction.date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.date <= end)
        return list(self.session.exec(stmt.order_by(Transaction.date, Transaction.id)).all())

    def spending_by_category(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        totals: dict[Category, Decimal] = defaultdict(Decimal)
        counts: dict[Category, int] = defaultdict(int)
        for tx in self._transactions(start, end, TransactionType.expense):
            totals[tx.category] += abs(Decimal(tx.amount))
            counts[tx.category] += 1

        rows = [
            {
                "category": Category(category).value,
                "total": _money(total),
                "count": counts[category],
                "avgAmount": _money(total / counts[category]),
            }
            for category, total in totals.items()
        ]
        rows.sort(key=lambda row: row["total"], reverse=True)
        return rows

    def income_vs_expenses(self, period: str = "month") -> list[dict[str, Any]]:
        fmt = PERIOD_FORMATS.get(period, PERIOD_FORMATS["month"])
        buckets: dict[str, dict[str, Decimal]] = defaultdict(lambda: {"income": Decimal(0), "expenses": Decimal(0)})
        for tx in self._transactions():
            bucket = buckets[tx.date.strftime(fmt)]
            if tx.type == TransactionType.income:
                bucket["income"] += abs(Decimal(tx.amount))
            elif tx.type == TransactionType.expense:
                bucket["expenses"] += abs(Decimal(tx.amount))
        return [
            {"period": key, "income": _money(v["income"]), "expenses": _money(v["expenses"])}
            for key, v in sorted(buckets.items())
        ]

    def balance_trends(self) -> list[dict[str, Any]]:
        series: dict[int, list[dict[str, Any]]] = defaultdict(list)
        for tx in self._transactions():
            series[tx.account_id].append(
                {"date": tx.date, "balance": _money(Decimal(tx.balance_after)), "amount": _money(Decimal(tx.amount))}
            )
        if not series:
            return []
        accounts = self.session.exec(select(Account).where(Account.id.in_(list(series)))).all()
        return [
            {
                "accountId": account.id,
                "name": account.name,
                "type": account.type.value,
                "transactions": series[account.id],
            }
            for account in accounts
        ]

    def insights(self, now: Optional[datetime] = None) -> list[dict[str, str]]:
        now = now or utcnow()
        insights = []
        this_month = month_start(now)
        last_month = previous_month_start(now)

        current = self.spending_by_category(this_month, now)
        previous = self.spending_by_category(last_month, this_month)
        current_total = sum(Decimal(str(row["total"])) for row in current)
        previous_total = sum(Decimal(str(row["total"])) for row in previous)

        if previous_total > 0 and current_total > previous_total * SPENDING_INCREASE_RATIO:
            increase = round((current_total - previous_total) / previous_total * 100)
            insights.append({
                "type": "warning",
                "title": "Increased Spending Alert",
                "message": f"Your spending is {increase}% higher than last month",
                "category": "spending",
            })

        if current:
            top = current[0]
            insights.append({
                "type": "info",
                "title": "Top Spending Category",
                "message": f"You spent most on {_label(top['category'])} this month: ${top['total']:.2f}",
                "category": "analysis",
            })

        weekend = weekday = Decimal(0)
        for tx in self._transactions(now - timedelta(days=30), now, TransactionType.expense):
            if tx.date.weekday() >= 5:
                weekend += abs(Decimal(tx.amount))
            else:
                weekday += abs(Decimal(tx.amount))
        if weekend > 0 and weekend > weekday * WEEKEND_SHARE:
            insights.append({
                "type": "tip",
                "title": "Weekend Spending Pattern",
                "message": "Most of your spending occurs on weekends. Consider planning weekend budgets.",
                "category": "behavior",
            })

        unusual = self.unusual_transactions(now)
        if unusual:
            insights.append({
                "type": "alert",
                "title": "Unusual Transactions",
                "message": f"{len(unusual)} expense(s) this month are more than twice your usual amount for their category",
                "category": "anomaly",
            })
        return insights

    def unusual_transactions(self, now: Optional[datetime] = None) -> list[Transaction]:
        """Current-month expenses above twice their category's 90-day average."""
        now = now or utcnow()
        history = self._transactions(now - timedelta(days=90), now, TransactionType.expense)
        sums: dict[Category, Decimal] = defaultdict(Decimal)
        counts: dict[Category, int] = defaultdict(int)
        for tx in history:
            sums[tx.category] += abs(Decimal(tx.amount))
            counts[tx.category] += 1

        this_month = month_start(now)
        return [
            tx for tx in history
            if tx.date >= this_month
            and counts[tx.category] > 1
            and abs(Decimal(tx.amount)) > sums[tx.category] / counts[tx.category] * UNUSUAL_MULTIPLIER
        ]

    def predictions(self, now: Optional[datetime] = None) -> list[dict[str, Any]]:
        now = now or utcnow()
        monthly: dict[Category, dict[tuple[int, int], Decimal]] = defaultdict(lambda: defaultdict(Decimal))
        for tx in self._transactions(now - timedelta(days=91), now, TransactionType.expense):
            monthly[tx.category][(tx.date.year, tx.date.month)] += abs(Decimal(tx.amount))

        predictions = []
        for category, months in monthly.items():
            average = sum(months.values()) / len(months)
            predictions.append({
                "category": Category(category).value,
                "predictedAmount": int((average * PREDICTION_GROWTH).quantize(Decimal(1), rounding=ROUND_HALF_UP)),
                "confidence": "high" if len(months) >= 2 else "low",
            })
        predictions.sort(key=lambda p: p["predictedAmount"], reverse=True)
        return predictions

    def dashboard(self, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utcnow()
        return {
            "spendingByCategory": self.spending_by_category(now - timedelta(days=30), now),
            "incomeVsExpenses": self.income_vs_expenses("month"),
            "insights": self.insights(now),
            "predictions": self.predictions(now),
        }
