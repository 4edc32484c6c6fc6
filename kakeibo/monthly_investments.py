from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Optional

from kakeibo.price_series import month_key

INVESTMENT_CATEGORY = "investment"
OTHER_CATEGORY = "others"
EXPENSE_CATEGORIES = ("food", "transport", "clothing", "entertainment", INVESTMENT_CATEGORY, OTHER_CATEGORY)


@dataclass(frozen=True)
class ExpenseRecord:
    title: str
    category: str
    amount: int
    date: date
    id: Optional[int] = None
    owner_id: Optional[int] = None


@dataclass(frozen=True)
class MonthlyInvestment:
    month: str
    total_amount: int
    records: tuple[ExpenseRecord, ...]


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total_amount: int
    count: int
    share_percent: float


def is_investment(record: ExpenseRecord) -> bool:
    return _normalize_category(record.category) == INVESTMENT_CATEGORY


def filter_investments(records: Iterable[ExpenseRecord]) -> List[ExpenseRecord]:
    return [record for record in records if is_investment(record)]


def group_investments_by_month(records: Iterable[ExpenseRecord]) -> List[MonthlyInvestment]:
    grouped: dict[str, list[ExpenseRecord]] = {}
    for record in filter_investments(records):
        grouped.setdefault(month_key(record.date), []).append(record)

    return [
        MonthlyInvestment(
            month=key,
            total_amount=sum(int(record.amount) for record in grouped[key]),
            records=tuple(sorted(grouped[key], key=lambda record: record.date)),
        )
        for key in sorted(grouped)
    ]


def investments_by_month(groups: Iterable[MonthlyInvestment]) -> dict[str, int]:
    return {group.month: group.total_amount for group in groups}


def summarize_by_category(records: Iterable[ExpenseRecord]) -> List[CategoryTotal]:
    """Total spending per known category, in the fixed category order.

    Every known category is present even with no records. Unrecognized
    categories are counted under "others".
    """
    totals = {category: 0 for category in EXPENSE_CATEGORIES}
    counts = {category: 0 for category in EXPENSE_CATEGORIES}
    for record in records:
        category = _normalize_category(record.category)
        if category not in totals:
            category = OTHER_CATEGORY
        totals[category] += int(record.amount)
        counts[category] += 1

    grand_total = sum(totals.values())
    return [
        CategoryTotal(
            category=category,
            total_amount=totals[category],
            count=counts[category],
            share_percent=totals[category] / grand_total * 100 if grand_total else 0.0,
        )
        for category in EXPENSE_CATEGORIES
    ]


def _normalize_category(value: str) -> str:
    return value.strip().lower()
