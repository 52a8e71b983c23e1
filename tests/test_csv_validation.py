from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from civiportal.services.csv_validation import (
    TABLE_SCHEMAS,
    IssueSeverity,
    UploadTable,
    build_template_csv,
    parse_csv_text,
    records_to_rows,
    validate_and_build_records,
)
from civiportal.services.fiscal_calendar import FiscalYearConfig

CONFIG = FiscalYearConfig(start_month=7, start_day=1)


def _validate(table: UploadTable, text: str):
    headers, rows = parse_csv_text(text)
    return validate_and_build_records(table, headers, rows, fiscal_config=CONFIG)


def test_parse_csv_text_handles_quotes_newlines_and_bom() -> None:
    text = (
        "\ufeffdate,vendor,department_name,description,amount\r\n"
        '2024-07-15,"Acme, Inc.",Public Works,"Said ""hello""\nand left",1000\r\n'
        "\r\n"
        "  2024-07-16 , Bob , Parks , Mowing , 25 \n"
    )

    headers, rows = parse_csv_text(text)

    assert headers == ["date", "vendor", "department_name", "description", "amount"]
    assert rows == [
        ["2024-07-15", "Acme, Inc.", "Public Works", 'Said "hello"\nand left', "1000"],
        ["2024-07-16", "Bob", "Parks", "Mowing", "25"],
    ]


def test_parse_csv_text_empty_input() -> None:
    assert parse_csv_text("") == ([], [])
    assert parse_csv_text("\n\n") == ([], [])


def test_budget_rows_build_typed_records() -> None:
    result = _validate(
        UploadTable.BUDGETS,
        "fiscal_year,department_name,amount,fund_code\n2025,Police,\"$1,250,000.00\",100\n2025,Fire,n/a,\n",
    )

    assert result.has_errors is True
    assert [issue.row for issue in result.errors] == [3]
    assert result.errors[0].field == "amount"
    assert result.years_in_data == (2025,)
    assert result.records[0]["amount"] == Decimal("1250000.00")
    assert result.records[0]["fiscal_year"] == 2025
    assert result.records[0]["fund_code"] == "100"


def test_actuals_derive_fiscal_year_and_normalize_period() -> None:
    padded = _validate(UploadTable.ACTUALS, "period,department_name,amount\n2027-08,Fire,10\n")
    unpadded = _validate(UploadTable.ACTUALS, "period,department_name,amount\n2027-8,Fire,10\n")

    assert padded == unpadded
    record = unpadded.records[0]
    assert record["period"] == "2027-08"
    assert record["fiscal_year"] == 2028
    assert record["fiscal_period"] == 2
    assert unpadded.years_in_data == (2028,)


def test_source_fiscal_year_is_ignored_for_derived_tables() -> None:
    result = _validate(
        UploadTable.REVENUES,
        "period,fiscal_year,fiscal_period,department_name,category,amount\n2027-06,1999,5,Finance,Tax,10\n",
    )

    assert result.issues == ()
    assert result.records[0]["fiscal_year"] == 2027
    assert result.records[0]["fiscal_period"] == 12


def test_transactions_derive_year_from_date() -> None:
    result = _validate(
        UploadTable.TRANSACTIONS,
        "date,vendor,department_name,description,amount\n2024-06-30,Acme,Parks,Seeds,5\n2024-07-01,Acme,Parks,Soil,7\n",
    )

    assert result.issues == ()
    assert [record["fiscal_year"] for record in result.records] == [2024, 2025]
    assert result.records[0]["date"] == date(2024, 6, 30)
    assert result.years_in_data == (2024, 2025)


def test_impossible_calendar_date_is_rejected() -> None:
    result = _validate(
        UploadTable.TRANSACTIONS,
        "date,vendor,department_name,description,amount\n2024-02-30,Acme,Parks,Seeds,5\n",
    )

    assert result.records == ()
    assert result.errors[0].row == 2
    assert result.errors[0].field == "date"


@pytest.mark.parametrize(("year", "accepted"), [(1999, False), (2000, True), (2100, True), (2101, False)])
def test_fiscal_year_boundaries(year: int, accepted: bool) -> None:
    result = _validate(UploadTable.BUDGETS, f"fiscal_year,department_name,amount\n{year},Fire,10\n")

    assert result.has_errors is (not accepted)
    if not accepted:
        assert result.errors[0].field == "fiscal_year"


@pytest.mark.parametrize(
    ("table", "text"),
    [
        (UploadTable.BUDGETS, "fiscal_year,department_name,amount\n2025,Fire,-100\n"),
        (UploadTable.ACTUALS, "period,department_name,amount\n2025-01,Fire,-100\n"),
        (UploadTable.REVENUES, "period,department_name,amount\n2025-01,Fire,-100\n"),
        (
            UploadTable.TRANSACTIONS,
            "date,vendor,department_name,description,amount\n2025-01-02,Acme,Fire,Hose,-100\n",
        ),
    ],
)
def test_negative_amount_blocks_every_table(table: UploadTable, text: str) -> None:
    result = _validate(table, text)

    assert result.has_errors is True
    assert result.records == ()
    assert result.errors[0].field == "amount"


@pytest.mark.parametrize(
    ("amount", "accepted"),
    [
        ("99999999999999.99", True),
        ("99999999999999.995", False),
        ("100000000000000", False),
        ("1e400", False),
        ("1" * 30, False),
    ],
)
def test_amount_must_fit_the_money_column(amount: str, accepted: bool) -> None:
    result = _validate(UploadTable.BUDGETS, f"fiscal_year,department_name,amount\n2025,Fire,{amount}\n")

    assert result.has_errors is not accepted
    if accepted:
        assert result.records[0]["amount"] == Decimal(amount)
    else:
        assert result.records == ()
        assert [issue.field for issue in result.errors] == ["amount"]


def test_missing_required_columns_skip_row_checks() -> None:
    result = _validate(UploadTable.BUDGETS, "fiscal_year,amount\n2025,abc\n")

    assert len(result.issues) == 1
    assert result.issues[0].row is None
    assert "department_name" in result.issues[0].message
    assert result.records == ()


def test_extra_columns_are_informational() -> None:
    result = _validate(UploadTable.BUDGETS, "fiscal_year,department_name,amount,notes\n2025,Fire,10,hello\n")

    assert result.has_errors is False
    assert [issue.severity for issue in result.issues] == [IssueSeverity.INFO]
    assert "notes" in result.issues[0].message
    assert len(result.records) == 1


def test_duplicate_header_is_an_error() -> None:
    result = _validate(UploadTable.BUDGETS, "fiscal_year,department_name,amount,amount\n2025,Fire,10,20\n")

    assert result.has_errors is True
    assert result.errors[0].field == "amount"
    assert result.errors[0].row is None


def test_blank_markers_become_none_and_blank_department_is_rejected() -> None:
    result = _validate(UploadTable.BUDGETS, "fiscal_year,department_name,amount,fund_code\n2025,Fire,10,NULL\n2025,N/A,10,\n")

    assert result.records[0]["fund_code"] is None
    assert [(issue.row, issue.field) for issue in result.errors] == [(3, "department_name")]


def test_validation_is_repeatable() -> None:
    headers, rows = parse_csv_text("period,department_name,amount\n2027-8,Fire,10\n2027-13,Fire,x\n")

    first = validate_and_build_records(UploadTable.ACTUALS, headers, rows, fiscal_config=CONFIG)
    second = validate_and_build_records(UploadTable.ACTUALS, headers, rows, fiscal_config=CONFIG)

    assert first == second


def test_records_to_rows_matches_csv_parsing() -> None:
    records = [
        {"fiscal_year": 2025, "department_name": "Fire", "amount": 100},
        {"fiscal_year": 2025, "department_name": "Police", "amount": "50.25", "fund_code": None},
    ]

    headers, rows = records_to_rows(records)
    from_json = validate_and_build_records(UploadTable.BUDGETS, headers, rows, fiscal_config=CONFIG)
    from_csv = _validate(
        UploadTable.BUDGETS,
        "fiscal_year,department_name,amount,fund_code\n2025,Fire,100,\n2025,Police,50.25,\n",
    )

    assert headers == ["fiscal_year", "department_name", "amount", "fund_code"]
    assert from_json == from_csv


@pytest.mark.parametrize("table", list(UploadTable))
def test_template_validates_cleanly(table: UploadTable) -> None:
    template = build_template_csv(table)
    headers, rows = parse_csv_text(template)

    assert headers == list(TABLE_SCHEMAS[table].columns)
    result = validate_and_build_records(table, headers, rows, fiscal_config=CONFIG)
    assert result.issues == ()
    assert len(result.records) == 1
