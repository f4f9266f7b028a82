"""
Transaction categorization.

Callers depend on the ``Categorizer`` protocol only: a description and a
signed amount go in, a category with a confidence comes out. The keyword
table below is the default implementation; a learned model can replace it
by providing the same two methods.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

import structlog

from .models import Category

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Categorization:
    category: Category
    confidence: float


@dataclass(frozen=True)
class Suggestion:
    category: Category
    confidence: float
    reason: str


class Categorizer(Protocol):
    def categorize(self, description: str, amount) -> Categorization: ...

    def suggestions(self, description: str, limit: int = 3) -> list[Suggestion]: ...


# first match wins, so order matters (groceries before food, etc.)
KEYWORD_RULES: dict[Category, tuple[str, ...]] = {
    Category.groceries: (
        "walmart", "target", "kroger", "safeway", "whole foods", "trader joe",
        "costco", "sam's club", "grocery", "supermarket", "food mart",
    ),
    Category.food: (
        "restaurant", "mcdonald", "burger king", "subway", "pizza", "starbucks",
        "dunkin", "cafe", "diner", "bistro", "grill", "kitchen", "taco bell",
        "kfc", "domino", "papa john", "chipotle",
    ),
    Category.transportation: (
        "uber", "lyft", "taxi", "gas station", "shell", "exxon", "chevron",
        "bp", "mobil", "parking", "metro", "bus", "train", "airline",
    ),
    Category.shopping: (
        "amazon", "ebay", "best buy", "apple store", "nike", "adidas",
        "clothing", "mall", "department store", "retail",
    ),
    Category.entertainment: (
        "netflix", "spotify", "hulu", "disney", "movie", "theater", "cinema",
        "concert", "game", "steam", "playstation", "xbox",
    ),
    Category.bills: (
        "electric", "electricity", "water", "sewer", "internet", "phone",
        "cable", "insurance", "mortgage", "rent",
    ),
    Category.healthcare: (
        "hospital", "clinic", "doctor", "pharmacy", "cvs", "walgreens",
        "medical", "dental", "vision",
    ),
    Category.utilities: (
        "pge", "edison", "water dept", "waste management", "comcast",
        "verizon", "at&t", "spectrum",
    ),
    Category.subscriptions: ("subscription", "monthly", "annual", "premium", "pro", "plus"),
    Category.salary: ("payroll", "salary", "wages", "direct deposit", "employer"),
    Category.investment: ("dividend", "interest", "capital gains", "stock", "bond", "mutual fund"),
}

MATCH_CONFIDENCE = 0.9
FALLBACK_CONFIDENCE = 0.1


class KeywordCategorizer:
    def __init__(self, rules: dict[Category, tuple[str, ...]] | None = None):
        self.rules = rules or KEYWORD_RULES

    def categorize(self, description: str, amount) -> Categorization:
        desc = (description or "").lower()
        for category, keywords in self.rules.items():
            for keyword in keywords:
                if keyword in desc:
                    return Categorization(category, MATCH_CONFIDENCE)

        fallback = Category.other_expense if Decimal(str(amount)) < 0 else Category.other_income
        return Categorization(fallback, FALLBACK_CONFIDENCE)

    def suggestions(self, description: str, limit: int = 3) -> list[Suggestion]:
        desc = (description or "").lower()
        found = [
            Suggestion(category, MATCH_CONFIDENCE, f'Matched keyword: "{keyword}"')
            for category, keywords in self.rules.items()
            for keyword in keywords
            if keyword in desc
        ]
        return found[:limit]


def record_correction(description: str, original: Category, corrected: Category) -> None:
    """Keep user corrections in the log so they can feed a trained model later."""
    logger.info(
        "categorization_corrected",
        description=description,
        original=Category(original).value,
        corrected=Category(corrected).value,
    )


_default = KeywordCategorizer()


def get_categorizer() -> Categorizer:
    return _default
