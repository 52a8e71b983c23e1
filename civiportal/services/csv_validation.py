"""CSV parsing and per-table schema validation for admin uploads.

Everything here is pure: the same headers and rows always produce the same
records, fiscal years and issues. Issues are collected rather than raised so an
operator sees every problem in a file at once.
"""

from __future__ import annotations

import csv
import enum
import io
import re
from collections import Counter
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation

from civiportal.services.fiscal_calendar import (
    FiscalYearConfig,
    derive_fiscal_period,
    derive_fiscal_year,
    format_period,
    parse_period,
)

MIN_FISCAL_YEAR = 2000
MAX_FISCAL_YEAR = 2100

BLANK_MARKERS = frozenset({"", "na", "n/a", "null", "none"})
DATE_PATTERN = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
Q2 = Decimal("0.01")
# Amount columns are NUMERIC(16, 2).
MAX_AMOUNT_INTEGER_DIGITS = 14
MAX_AMOUNT = Decimal(10) ** MAX_AMOUNT_INTEGER_DIGITS


class UploadTable(str, enum.Enum):
    BUDGETS = "budgets"
    ACTUALS = "actuals"
    TRANSACTIONS = "transactions"
    REVENUES = "revenues"


class IssueSeverity(str, enum.Enum):
    ERROR = "error"
    INFO = "info"


@dataclass(frozen=True, slots=True)
class TableSchema:
    required: tuple[str, ...]
    numeric: tuple[str, ...]
    optional: tuple[str, ...] = ()
    # Recognised in source files but never trusted (values are derived).
    ignored: tuple[str, ...] = ()

    @property
    def columns(self) -> tuple[str, ...]:
        return self.required + self.optional

    @property
    def known(self) -> frozenset[str]:
        return frozenset(self.required + self.optional + self.ignored)


_LEDGER_OPTIONAL = (
    "fund_code",
    "fund_name",
    "department_code",
    "category",
    "account_code",
    "account_name",
)

TABLE_SCHEMAS: dict[UploadTable, TableSchema] = {
    UploadTable.BUDGETS: TableSchema(
        required=("fiscal_year", "department_name", "amount"),
        numeric=("fiscal_year", "amount"),
        optional=_LEDGER_OPTIONAL,
    ),
    UploadTable.ACTUALS: TableSchema(
        required=("period", "department_name", "amount"),
        numeric=("amount",),
        optional=_LEDGER_OPTIONAL,
        ignored=("fiscal_year", "fiscal_period"),
    ),
    UploadTable.TRANSACTIONS: TableSchema(
        required=("date", "vendor", "department_name", "description", "amount"),
        numeric=("amount",),
        optional=("fund_code", "fund_name", "department_code", "account_code", "account_name"),
        ignored=("fiscal_year", "fiscal_period"),
    ),
    UploadTable.REVENUES: TableSchema(
        required=("period", "department_name", "amount"),
        numeric=("amount",),
        optional=_LEDGER_OPTIONAL,
        ignored=("fiscal_year", "fiscal_period"),
    ),
}

# Fields that must carry a real value, not just a column header.
NON_BLANK_FIELDS: dict[UploadTable, tuple[str, ...]] = {
    UploadTable.BUDGETS: ("department_name",),
    UploadTable.ACTUALS: ("department_name",),
    UploadTable.TRANSACTIONS: ("description",),
    UploadTable.REVENUES: ("department_name",),
}

TEMPLATE_EXAMPLES: dict[UploadTable, dict[str, str]] = {
    UploadTable.BUDGETS: {
        "fiscal_year": "2025",
        "fund_code": "100",
        "fund_name": "General Fund",
        "department_code": "PD",
        "department_name": "Police",
        "category": "Personnel",
        "account_code": "5100",
        "account_name": "Salaries",
        "amount": "1250000.00",
    },
    UploadTable.ACTUALS: {
        "period": "2024-07",
        "fund_code": "100",
        "fund_name": "General Fund",
        "department_code": "PD",
        "department_name": "Police",
        "category": "Personnel",
        "account_code": "5100",
        "account_name": "Salaries",
        "amount": "98000.00",
    },
    UploadTable.TRANSACTIONS: {
        "date": "2024-07-15",
        "vendor": "Acme Supply Co",
        "department_name": "Public Works",
        "description": "Road repair materials",
        "amount": "4520.75",
        "fund_code": "100",
        "fund_name": "General Fund",
        "department_code": "PW",
        "account_code": "6200",
        "account_name": "Materials",
    },
    UploadTable.REVENUES: {
        "period": "2024-07",
        "fund_code": "100",
        "fund_name": "General Fund",
        "department_code": "FIN",
        "department_name": "Finance",
        "category": "Property Tax",
        "account_code": "4100",
        "account_name": "Secured Property Tax",
        "amount": "310000.00",
    },
}


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    row: int | None
    field: str | None
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR

    def as_dict(self) -> dict[str, object]:
        return {
            "row": self.row,
            "field": self.field,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass(frozen=True, slots=True)
class ValidationResult:
    records: tuple[dict[str, object], ...]
    years_in_data: tuple[int, ...]
    issues: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @property
    def errors(self) -> tuple[ValidationIssue, ...]:
        return tuple(issue for issue in self.issues if issue.severity is IssueSeverity.ERROR)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity is IssueSeverity.ERROR for issue in self.issues)


def is_blank(value: str | None) -> bool:
    return value is None or value.strip().lower() in BLANK_MARKERS


def parse_amount(value: str) -> Decimal | None:
    """Parse a money/number cell, tolerating ``$`` and thousands separators."""

    cleaned = value.replace("$", "").replace(",", "").strip()
    if not cleaned:
        return None
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return None
    if not number.is_finite():
        return None
    return number


def parse_strict_date(value: str) -> date | None:
    """Parse ``YYYY-MM-DD`` without calendar auto-correction (2024-02-30 fails)."""

    match = DATE_PATTERN.match(value.strip())
    if match is None:
        return None
    try:
        parsed = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
    except ValueError:
        return None
    if parsed.isoformat() != value.strip():
        return None
    return parsed


def parse_csv_text(text: str) -> tuple[list[str], list[list[str]]]:
    """Split raw CSV text into trimmed headers and data rows.

    Handles quoted fields with commas, doubled quotes, embedded newlines, any
    line ending and a UTF-8 byte order mark. Fully blank lines are skipped.
    """

    if not text or not text.strip():
        return [], []

    normalized = text.lstrip("\ufeff").replace("\r\n", "\n").replace("\r", "\n")
    rows: list[list[str]] = []
    for raw in csv.reader(io.StringIO(normalized)):
        cells = [cell.strip() for cell in raw]
        if not any(cells):
            continue
        rows.append(cells)

    if not rows:
        return [], []
    return rows[0], rows[1:]


def records_to_rows(records: Sequence[Mapping[str, object]]) -> tuple[list[str], list[list[str]]]:
    """Flatten JSON-submitted records into header/row form for validation.

    Headers are the union of keys in first-seen order; ``None`` becomes an empty
    cell and every other value its string form.
    """

    headers: list[str] = []
    seen: set[str] = set()
    for record in records:
        for key in record:
            if key not in seen:
                seen.add(key)
                headers.append(key)

    rows: list[list[str]] = []
    for record in records:
        row = []
        for header in headers:
            value = record.get(header)
            row.append("" if value is None else str(value).strip())
        rows.append(row)
    return headers, rows


def build_template_csv(table: UploadTable) -> str:
    """CSV template with the table's columns and one example row."""

    schema = TABLE_SCHEMAS[table]
    example = TEMPLATE_EXAMPLES[table]
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(schema.columns)
    writer.writerow([example.get(column, "") for column in schema.columns])
    return buffer.getvalue()


def _header_issues(headers: Sequence[str], schema: TableSchema) -> tuple[list[ValidationIssue], bool]:
    issues: list[ValidationIssue] = []

    counts = Counter(headers)
    for name, count in counts.items():
        if count > 1:
            issues.append(
                ValidationIssue(
                    row=None,
                    field=name,
                    message=f'Duplicate column "{name}" appears {count} times in the header.',
                )
            )

    present = set(headers)
    missing = [column for column in schema.required if column not in present]
    if missing:
        issues.append(
            ValidationIssue(
                row=None,
                field=None,
                message=f"Missing required column(s): {', '.join(missing)}.",
            )
        )

    extra = [name for name in dict.fromkeys(headers) if name and name not in schema.known]
    if extra:
        issues.append(
            ValidationIssue(
                row=None,
                field=None,
                message=f"Unrecognized column(s) will be ignored: {', '.join(extra)}.",
                severity=IssueSeverity.INFO,
            )
        )

    return issues, bool(missing)


def _cell(row: Sequence[str], positions: Mapping[str, int], column: str) -> str:
    index = positions.get(column)
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def _validate_row(
    table: UploadTable,
    schema: TableSchema,
    row: Sequence[str],
    row_number: int,
    positions: Mapping[str, int],
    fiscal_config: FiscalYearConfig,
) -> tuple[dict[str, object] | None, list[ValidationIssue]]:
    issues: list[ValidationIssue] = []

    def fail(column: str | None, message: str) -> None:
        issues.append(ValidationIssue(row=row_number, field=column, message=message))

    raw = {column: _cell(row, positions, column) for column in schema.columns}

    numbers: dict[str, Decimal] = {}
    for column in schema.numeric:
        value = raw[column]
        if not value:
            fail(column, f"{column} is empty; a number is required.")
            continue
        parsed = parse_amount(value)
        if parsed is None:
            fail(column, f'{column} value "{value}" is not a valid number.')
            continue
        numbers[column] = parsed

    for column in NON_BLANK_FIELDS[table]:
        if is_blank(raw[column]):
            fail(column, f"{column} must not be blank.")

    record: dict[str, object] = {
        column: (None if is_blank(raw[column]) else raw[column]) for column in schema.columns
    }

    fiscal_year: int | None = None
    if table is UploadTable.TRANSACTIONS:
        if not raw["date"]:
            fail("date", "date is empty; expected YYYY-MM-DD.")
        else:
            parsed_date = parse_strict_date(raw["date"])
            if parsed_date is None:
                fail("date", f'date "{raw["date"]}" is not a valid calendar date in YYYY-MM-DD format.')
            else:
                record["date"] = parsed_date
                fiscal_year = derive_fiscal_year(parsed_date, fiscal_config)
                record["fiscal_period"] = derive_fiscal_period(parsed_date, fiscal_config)
    elif table in (UploadTable.ACTUALS, UploadTable.REVENUES):
        month = parse_period(raw["period"]) if raw["period"] else None
        if month is None:
            fail("period", f'period "{raw["period"]}" must be YYYY-MM with a month from 01 to 12.')
        else:
            record["period"] = format_period(month)
            fiscal_year = derive_fiscal_year(month, fiscal_config)
            record["fiscal_period"] = derive_fiscal_period(month, fiscal_config)
    elif "fiscal_year" in numbers:
        source_year = numbers["fiscal_year"]
        if source_year != source_year.to_integral_value():
            fail("fiscal_year", f'fiscal_year "{raw["fiscal_year"]}" must be a whole year.')
        else:
            fiscal_year = int(source_year)

    if fiscal_year is not None:
        if MIN_FISCAL_YEAR <= fiscal_year <= MAX_FISCAL_YEAR:
            record["fiscal_year"] = fiscal_year
        else:
            fail(
                "fiscal_year",
                f"fiscal_year {fiscal_year} is outside the supported range "
                f"{MIN_FISCAL_YEAR}-{MAX_FISCAL_YEAR}.",
            )

    amount = numbers.get("amount")
    if amount is not None:
        if amount < 0:
            fail("amount", f"amount {raw['amount']} is negative; amounts must be zero or greater.")
        else:
            try:
                quantized = amount.quantize(Q2)
            except InvalidOperation:
                quantized = None
            if quantized is None or quantized >= MAX_AMOUNT:
                fail(
                    "amount",
                    f"amount {raw['amount']} is too large; at most "
                    f"{MAX_AMOUNT_INTEGER_DIGITS} digits before the decimal point are allowed.",
                )
            else:
                record["amount"] = quantized

    if issues:
        return None, issues
    return record, issues


def validate_and_build_records(
    table: UploadTable,
    headers: Sequence[str],
    data_rows: Iterable[Sequence[str]],
    *,
    fiscal_config: FiscalYearConfig,
    schema: TableSchema | None = None,
) -> ValidationResult:
    """Validate a parsed CSV batch and build insert-ready records.

    Header problems come first (duplicates, missing required columns, ignored
    extras); then every data row is checked. Row numbers are CSV line numbers,
    with the header on line 1.
    """

    schema = schema or TABLE_SCHEMAS[table]
    header_list = [header.strip() for header in headers]
    issues, missing_required = _header_issues(header_list, schema)
    if missing_required:
        return ValidationResult(records=(), years_in_data=(), issues=tuple(issues))

    positions: dict[str, int] = {}
    for index, name in enumerate(header_list):
        positions.setdefault(name, index)

    records: list[dict[str, object]] = []
    years: set[int] = set()
    for offset, row in enumerate(data_rows):
        record, row_issues = _validate_row(
            table,
            schema,
            row,
            offset + 2,
            positions,
            fiscal_config,
        )
        issues.extend(row_issues)
        if record is not None:
            records.append(record)
            years.add(record["fiscal_year"])

    return ValidationResult(
        records=tuple(records),
        years_in_data=tuple(sorted(years)),
        issues=tuple(issues),
    )
