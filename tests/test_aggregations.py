from __future__ import annotations

from datetime import date
from decimal import Decimal

from civiportal.services.aggregations import (
    DepartmentSummary,
    calculate_insights,
    summarize_by_department,
    summarize_fiscal_periods,
    summarize_revenue_sources,
    summarize_vendors,
    summarize_year_over_year,
)


def _row(**values: object) -> dict[str, object]:
    values.setdefault("fiscal_year", 2025)
    return values


def test_department_summary_for_fire_example() -> None:
    budgets = [_row(department_name="Fire", amount=100), _row(department_name="Fire", amount=50)]
    actuals = [_row(department_name="Fire", amount=120)]

    [fire] = summarize_by_department(budgets, actuals, year=2025)

    assert fire.department_name == "Fire"
    assert fire.budget == Decimal("150.00")
    assert fire.actuals == Decimal("120.00")
    assert fire.variance == Decimal("-30.00")
    assert fire.percent_spent == Decimal("80.00")


def test_department_summary_groups_blanks_and_orders_by_budget() -> None:
    budgets = [
        _row(department_name="Parks", amount=10),
        _row(department_name="  ", amount=30),
        _row(department_name=None, amount=5),
        _row(department_name="Police", amount=10),
        _row(department_name="Police", amount=99, fiscal_year=2024),
    ]
    transactions = [_row(department_name="Police", amount=4), _row(department_name="Police", amount=6)]

    summaries = summarize_by_department(budgets, [], transactions, year=2025)

    assert [item.department_name for item in summaries] == ["Unspecified", "Parks", "Police"]
    assert summaries[0].budget == Decimal("35.00")
    assert summaries[0].percent_spent == Decimal("0.00")
    assert summaries[2].transaction_count == 2
    assert summaries[2].transaction_total == Decimal("10.00")


def test_department_with_zero_budget_reports_zero_percent() -> None:
    [summary] = summarize_by_department([], [_row(department_name="Fire", amount=40)])

    assert summary.budget == Decimal("0.00")
    assert summary.percent_spent == Decimal("0.00")
    assert summary.variance == Decimal("40.00")


def test_vendor_summary_filters_and_limits() -> None:
    transactions = [
        _row(vendor="Acme", amount=100, date=date(2024, 7, 3)),
        _row(vendor="Beta", amount=300, date=date(2024, 8, 1)),
        _row(vendor="Acme", amount=50, date=date(2024, 7, 1)),
        _row(vendor=None, amount=1, date=date(2024, 7, 1)),
    ]

    summaries = summarize_vendors(transactions, year=2025)
    assert [item.vendor for item in summaries] == ["Beta", "Acme", "Unspecified"]
    acme = summaries[1]
    assert acme.total == Decimal("150.00")
    assert acme.average == Decimal("75.00")
    assert (acme.first_date, acme.last_date) == (date(2024, 7, 1), date(2024, 7, 3))

    assert [item.vendor for item in summarize_vendors(transactions, limit=1)] == ["Beta"]
    assert [item.vendor for item in summarize_vendors(transactions, query="acm")] == ["Acme"]


def test_revenue_sources_keep_top_seven_and_bucket_the_rest() -> None:
    revenues = [_row(category=f"Source {index}", amount=100 - index) for index in range(9)]
    revenues.append(_row(category="", amount=1))

    summaries = summarize_revenue_sources(revenues, year=2025)

    assert len(summaries) == 8
    assert summaries[0].source == "Source 0"
    assert summaries[-1].source == "Other"
    assert summaries[-1].total == Decimal("186.00")
    assert summaries[-1].record_count == 3


def test_year_over_year_is_newest_first_with_change() -> None:
    budgets = [_row(amount=100, fiscal_year=2024), _row(amount=150, fiscal_year=2025)]
    actuals = [_row(amount=80, fiscal_year=2025)]

    years = summarize_year_over_year(budgets, actuals)

    assert [item.fiscal_year for item in years] == [2025, 2024]
    assert years[0].budget_change_percent == Decimal("50.00")
    assert years[0].actuals_change_percent is None
    assert years[1].budget_change_percent is None


def test_fiscal_periods_fill_all_twelve_months() -> None:
    rows = [_row(fiscal_period=1, amount=5), _row(fiscal_period=1, amount=5), _row(fiscal_period=12, amount=3)]

    periods = summarize_fiscal_periods(rows, 2025)

    assert len(periods) == 12
    assert periods[0] == {"fiscal_period": 1, "amount": "10.00"}
    assert periods[11] == {"fiscal_period": 12, "amount": "3.00"}


def _dept(name: str, budget: str, actuals: str) -> DepartmentSummary:
    return DepartmentSummary(
        department_name=name,
        budget=Decimal(budget),
        actuals=Decimal(actuals),
        variance=Decimal(actuals) - Decimal(budget),
        percent_spent=Decimal("0"),
        transaction_count=0,
        transaction_total=Decimal("0"),
    )


def test_insights_need_three_flagged_departments() -> None:
    departments = [_dept("Fire", "10000", "20000"), _dept("Parks", "10000", "11000")]

    assert calculate_insights(departments) == []


def test_insights_order_by_priority_then_severity() -> None:
    departments = [
        _dept("Library", "20000", "2000"),
        _dept("Parks", "10000", "11000"),
        _dept("Fire", "10000", "16000"),
        _dept("Police", "10000", "20000"),
        _dept("Tiny", "500", "5000"),
        _dept("Roads", "50000", "5000"),
        _dept("Water", "20000", "21500"),
    ]

    insights = calculate_insights(departments)

    assert [item.department_name for item in insights] == ["Police", "Fire", "Parks", "Water", "Library"]
    assert [item.kind for item in insights] == ["warning", "warning", "warning", "warning", "info"]
