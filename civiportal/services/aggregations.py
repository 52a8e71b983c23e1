"""Pure summary builders over already-fetched budget, actual, revenue and transaction rows.

Rows may be ORM entities or plain mappings. Every builder sorts descending by its
primary metric and relies on the stable sort so ties keep first-seen order.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

ZERO = Decimal("0.00")
Q2 = Decimal("0.01")
HUNDRED = Decimal("100")

UNSPECIFIED = "Unspecified"
OTHER = "Other"

INSIGHT_MIN_BUDGET = Decimal("1000")
INSIGHT_UNDER_MIN_BUDGET = Decimal("10000")
INSIGHT_CRITICAL_PCT = Decimal("150")
INSIGHT_OVER_PCT = Decimal("105")
INSIGHT_UNDER_PCT = Decimal("50")
INSIGHT_MIN_COUNT = 3
INSIGHT_MAX_COUNT = 5


def _q2(value: Decimal) -> Decimal:
    return value.quantize(Q2)


def _percent(numerator: Decimal, denominator: Decimal) -> Decimal:
    if denominator == ZERO:
        return ZERO
    return (numerator / denominator * HUNDRED).quantize(Q2)


def _field(row: object, name: str) -> object:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def _amount(row: object) -> Decimal:
    value = _field(row, "amount")
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _label(value: object) -> str:
    if value is None:
        return UNSPECIFIED
    text = str(value).strip()
    return text or UNSPECIFIED


def _in_year(rows: Iterable[object], year: int | None) -> Iterable[object]:
    if year is None:
        return rows
    return (row for row in rows if _field(row, "fiscal_year") == year)


@dataclass(slots=True)
class DepartmentSummary:
    department_name: str
    budget: Decimal
    actuals: Decimal
    variance: Decimal
    percent_spent: Decimal
    transaction_count: int
    transaction_total: Decimal

    def as_dict(self) -> dict[str, object]:
        return {
            "department_name": self.department_name,
            "budget": str(self.budget),
            "actuals": str(self.actuals),
            "variance": str(self.variance),
            "percent_spent": str(self.percent_spent),
            "transaction_count": self.transaction_count,
            "transaction_total": str(self.transaction_total),
        }


@dataclass(slots=True)
class VendorSummary:
    vendor: str
    total: Decimal
    transaction_count: int
    average: Decimal
    first_date: date | None
    last_date: date | None

    def as_dict(self) -> dict[str, object]:
        return {
            "vendor": self.vendor,
            "total": str(self.total),
            "transaction_count": self.transaction_count,
            "average": str(self.average),
            "first_date": self.first_date.isoformat() if self.first_date else None,
            "last_date": self.last_date.isoformat() if self.last_date else None,
        }


@dataclass(slots=True)
class RevenueSourceSummary:
    source: str
    total: Decimal
    record_count: int
    share_percent: Decimal

    def as_dict(self) -> dict[str, object]:
        return {
            "source": self.source,
            "total": str(self.total),
            "record_count": self.record_count,
            "share_percent": str(self.share_percent),
        }


@dataclass(slots=True)
class YearTotals:
    fiscal_year: int
    budget: Decimal
    actuals: Decimal
    revenues: Decimal
    transactions: Decimal
    budget_change_percent: Decimal | None
    actuals_change_percent: Decimal | None

    def as_dict(self) -> dict[str, object]:
        return {
            "fiscal_year": self.fiscal_year,
            "budget": str(self.budget),
            "actuals": str(self.actuals),
            "revenues": str(self.revenues),
            "transactions": str(self.transactions),
            "budget_change_percent": (
                str(self.budget_change_percent) if self.budget_change_percent is not None else None
            ),
            "actuals_change_percent": (
                str(self.actuals_change_percent) if self.actuals_change_percent is not None else None
            ),
        }


@dataclass(slots=True)
class Insight:
    key: str
    kind: str
    priority: int
    title: str
    description: str
    department_name: str
    percent_spent: Decimal

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.key,
            "type": self.kind,
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "department_name": self.department_name,
            "percent_spent": str(self.percent_spent),
        }


def summarize_by_department(
    budgets: Iterable[object],
    actuals: Iterable[object],
    transactions: Iterable[object] = (),
    year: int | None = None,
    *,
    group_by: str = "department_name",
) -> list[DepartmentSummary]:
    """Budget vs. actuals per department, ordered by budget descending.

    Departments are grouped by exact ``department_name``; blank or missing names
    collapse into ``"Unspecified"``. ``group_by`` swaps the grouping column (the
    department detail page breaks spending down by ``category``).
    """

    budget_totals: dict[str, Decimal] = {}
    actual_totals: dict[str, Decimal] = {}
    txn_counts: dict[str, int] = {}
    txn_totals: dict[str, Decimal] = {}
    order: dict[str, None] = {}

    for row in _in_year(budgets, year):
        name = _label(_field(row, group_by))
        order.setdefault(name, None)
        budget_totals[name] = budget_totals.get(name, ZERO) + _amount(row)

    for row in _in_year(actuals, year):
        name = _label(_field(row, group_by))
        order.setdefault(name, None)
        actual_totals[name] = actual_totals.get(name, ZERO) + _amount(row)

    for row in _in_year(transactions, year):
        name = _label(_field(row, group_by))
        order.setdefault(name, None)
        txn_counts[name] = txn_counts.get(name, 0) + 1
        txn_totals[name] = txn_totals.get(name, ZERO) + _amount(row)

    summaries: list[DepartmentSummary] = []
    for name in order:
        budget = _q2(budget_totals.get(name, ZERO))
        spent = _q2(actual_totals.get(name, ZERO))
        summaries.append(
            DepartmentSummary(
                department_name=name,
                budget=budget,
                actuals=spent,
                variance=_q2(spent - budget),
                percent_spent=_percent(spent, budget),
                transaction_count=txn_counts.get(name, 0),
                transaction_total=_q2(txn_totals.get(name, ZERO)),
            )
        )

    summaries.sort(key=lambda item: item.budget, reverse=True)
    return summaries


def summarize_vendors(
    transactions: Iterable[object],
    year: int | None = None,
    limit: int | None = None,
    query: str | None = None,
) -> list[VendorSummary]:
    """Vendor spend totals (top-N by total when ``limit`` is given)."""

    needle = query.strip().lower() if query and query.strip() else None
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    first_dates: dict[str, date | None] = {}
    last_dates: dict[str, date | None] = {}

    for row in _in_year(transactions, year):
        vendor = _label(_field(row, "vendor"))
        if needle is not None and needle not in vendor.lower():
            continue
        totals[vendor] = totals.get(vendor, ZERO) + _amount(row)
        counts[vendor] = counts.get(vendor, 0) + 1

        txn_date = _field(row, "date")
        if isinstance(txn_date, date):
            first = first_dates.get(vendor)
            last = last_dates.get(vendor)
            first_dates[vendor] = txn_date if first is None or txn_date < first else first
            last_dates[vendor] = txn_date if last is None or txn_date > last else last

    summaries = [
        VendorSummary(
            vendor=vendor,
            total=_q2(total),
            transaction_count=counts[vendor],
            average=_q2(total / counts[vendor]),
            first_date=first_dates.get(vendor),
            last_date=last_dates.get(vendor),
        )
        for vendor, total in totals.items()
    ]
    summaries.sort(key=lambda item: item.total, reverse=True)
    if limit is not None:
        return summaries[:limit]
    return summaries


def summarize_revenue_sources(
    revenues: Iterable[object],
    year: int | None = None,
    top_n: int = 7,
) -> list[RevenueSourceSummary]:
    """Revenue distribution by category: the top ``top_n`` plus an ``"Other"`` bucket."""

    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for row in _in_year(revenues, year):
        source = _label(_field(row, "category"))
        totals[source] = totals.get(source, ZERO) + _amount(row)
        counts[source] = counts.get(source, 0) + 1

    ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
    grand_total = sum(totals.values(), ZERO)

    head = ranked[:top_n]
    tail = ranked[top_n:]
    summaries = [
        RevenueSourceSummary(
            source=source,
            total=_q2(total),
            record_count=counts[source],
            share_percent=_percent(total, grand_total),
        )
        for source, total in head
    ]
    if tail:
        other_total = sum((total for _, total in tail), ZERO)
        summaries.append(
            RevenueSourceSummary(
                source=OTHER,
                total=_q2(other_total),
                record_count=sum(counts[source] for source, _ in tail),
                share_percent=_percent(other_total, grand_total),
            )
        )
    return summaries


def _year_totals(rows: Iterable[object]) -> dict[int, Decimal]:
    totals: dict[int, Decimal] = {}
    for row in rows:
        year = _field(row, "fiscal_year")
        if year is None:
            continue
        totals[int(year)] = totals.get(int(year), ZERO) + _amount(row)
    return totals


def _change(current: Decimal, previous: Decimal | None) -> Decimal | None:
    if previous is None or previous == ZERO:
        return None
    return ((current - previous) / previous * HUNDRED).quantize(Q2)


def summarize_year_over_year(
    budgets: Iterable[object],
    actuals: Iterable[object] = (),
    revenues: Iterable[object] = (),
    transactions: Iterable[object] = (),
) -> list[YearTotals]:
    """Per-fiscal-year totals, newest first, with change against the prior year."""

    budget_totals = _year_totals(budgets)
    actual_totals = _year_totals(actuals)
    revenue_totals = _year_totals(revenues)
    txn_totals = _year_totals(transactions)
    years = sorted(set(budget_totals) | set(actual_totals) | set(revenue_totals) | set(txn_totals))

    rows: list[YearTotals] = []
    for year in years:
        budget = _q2(budget_totals.get(year, ZERO))
        spent = _q2(actual_totals.get(year, ZERO))
        previous_budget = budget_totals.get(year - 1)
        previous_actuals = actual_totals.get(year - 1)
        rows.append(
            YearTotals(
                fiscal_year=year,
                budget=budget,
                actuals=spent,
                revenues=_q2(revenue_totals.get(year, ZERO)),
                transactions=_q2(txn_totals.get(year, ZERO)),
                budget_change_percent=_change(budget, previous_budget),
                actuals_change_percent=_change(spent, previous_actuals),
            )
        )

    rows.sort(key=lambda item: item.fiscal_year, reverse=True)
    return rows


def summarize_fiscal_periods(rows: Iterable[object], year: int) -> list[dict[str, object]]:
    """Monthly totals (fiscal periods 1..12) for one fiscal year."""

    totals = {period: ZERO for period in range(1, 13)}
    for row in _in_year(rows, year):
        period = _field(row, "fiscal_period")
        if period is None or int(period) not in totals:
            continue
        totals[int(period)] += _amount(row)
    return [{"fiscal_period": period, "amount": str(_q2(total))} for period, total in totals.items()]


def calculate_insights(departments: Sequence[DepartmentSummary]) -> list[Insight]:
    """Budget warnings for departments with meaningful budgets.

    Returns nothing unless at least three departments qualify, and at most five.
    Critical overruns come first, then overruns, then under-utilisation.
    """

    insights: list[Insight] = []
    for dept in departments:
        if dept.budget <= INSIGHT_MIN_BUDGET:
            continue
        pct = _percent(dept.actuals, dept.budget)
        name = dept.department_name
        if pct > INSIGHT_CRITICAL_PCT:
            insights.append(
                Insight(
                    key=f"dept-critical-{name}",
                    kind="warning",
                    priority=1,
                    title=f"{name} is significantly over budget",
                    description=f"Spent ${dept.actuals - dept.budget:,.2f} more than budgeted ({pct:.0f}% of budget used)",
                    department_name=name,
                    percent_spent=pct,
                )
            )
        elif pct > INSIGHT_OVER_PCT:
            insights.append(
                Insight(
                    key=f"dept-over-{name}",
                    kind="warning",
                    priority=2,
                    title=f"{name} is over budget",
                    description=f"Spent ${dept.actuals - dept.budget:,.2f} more than budgeted ({pct:.0f}% of budget used)",
                    department_name=name,
                    percent_spent=pct,
                )
            )
        elif pct < INSIGHT_UNDER_PCT and dept.budget > INSIGHT_UNDER_MIN_BUDGET:
            insights.append(
                Insight(
                    key=f"dept-under-{name}",
                    kind="info",
                    priority=3,
                    title=f"{name} is under-utilizing budget",
                    description=f"Only {pct:.0f}% spent, with ${dept.budget - dept.actuals:,.2f} remaining",
                    department_name=name,
                    percent_spent=pct,
                )
            )

    # Warnings: most over first. Under-utilisation: least spent first.
    insights.sort(key=lambda item: (item.priority, -item.percent_spent if item.priority <= 2 else item.percent_spent))

    if len(insights) < INSIGHT_MIN_COUNT:
        return []
    return insights[:INSIGHT_MAX_COUNT]
