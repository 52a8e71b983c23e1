"""Decide what an upload is allowed to delete and insert.

The resolver never touches the database. It either returns a ``WritePlan`` that
the upload service executes inside one transaction, or raises
``UploadPlanRejected`` carrying every reason the batch cannot be applied.
"""

from __future__ import annotations

import enum
from collections.abc import Sequence
from dataclasses import dataclass

from civiportal.services.csv_validation import UploadTable, ValidationIssue


class UploadMode(str, enum.Enum):
    APPEND = "append"
    REPLACE_YEAR = "replace_year"
    REPLACE_TABLE = "replace_table"


class DeleteScope(str, enum.Enum):
    NONE = "none"
    FISCAL_YEAR = "fiscal_year"
    TABLE = "table"


@dataclass(frozen=True, slots=True)
class WritePlan:
    table: UploadTable
    mode: UploadMode
    delete_scope: DeleteScope
    delete_fiscal_year: int | None
    records: tuple[dict[str, object], ...]
    years_in_data: tuple[int, ...]
    audit_fiscal_year: int | None


class UploadPlanRejected(Exception):
    """Raised when a batch cannot be applied; ``issues`` lists every reason."""

    def __init__(self, issues: Sequence[ValidationIssue]):
        self.issues = tuple(issues)
        super().__init__("; ".join(issue.message for issue in self.issues))


def _reject(message: str, field: str | None = None) -> ValidationIssue:
    return ValidationIssue(row=None, field=field, message=message)


def resolve_write_plan(
    table: UploadTable,
    mode: UploadMode,
    records: Sequence[dict[str, object]],
    years_in_data: Sequence[int],
    *,
    replace_year: int | None = None,
    replace_year_confirmation: int | None = None,
    confirm_replace_table: bool = False,
    max_records: int = 250_000,
) -> WritePlan:
    """Resolve an upload mode into a concrete delete scope and insert set.

    ``years_in_data`` must come from server-side validation; client-declared
    years are never trusted here.
    """

    issues: list[ValidationIssue] = []
    years = tuple(sorted(set(years_in_data)))

    if not records:
        issues.append(_reject("The upload contains no valid rows to insert."))
    if len(records) > max_records:
        issues.append(
            _reject(f"The upload has {len(records)} rows; the maximum per upload is {max_records}.")
        )

    delete_scope = DeleteScope.NONE
    delete_fiscal_year: int | None = None

    if mode is UploadMode.REPLACE_YEAR:
        if replace_year is None:
            issues.append(_reject("replace_year is required when mode is replace_year.", "replace_year"))
        elif replace_year_confirmation != replace_year:
            issues.append(
                _reject(
                    f"Type the fiscal year {replace_year} a second time to confirm the replacement.",
                    "replace_year_confirmation",
                )
            )

        if records and not years:
            issues.append(_reject("No fiscal years were detected in the upload.", "fiscal_year"))
        elif len(years) > 1:
            found = ", ".join(str(year) for year in years)
            issues.append(
                _reject(
                    f"Multiple fiscal years detected ({found}); replace_year uploads must contain exactly one.",
                    "fiscal_year",
                )
            )
        elif len(years) == 1 and replace_year is not None and years[0] != replace_year:
            issues.append(
                _reject(
                    f"Fiscal year mismatch: the data is for FY{years[0]} but FY{replace_year} was selected.",
                    "fiscal_year",
                )
            )

        delete_scope = DeleteScope.FISCAL_YEAR
        delete_fiscal_year = replace_year
    elif mode is UploadMode.REPLACE_TABLE:
        if not confirm_replace_table:
            issues.append(
                _reject(
                    f"Replacing every row in {table.value} requires explicit confirmation.",
                    "confirm_replace_table",
                )
            )
        delete_scope = DeleteScope.TABLE

    if issues:
        raise UploadPlanRejected(issues)

    if mode is UploadMode.REPLACE_YEAR:
        audit_fiscal_year = replace_year
    elif len(years) == 1:
        audit_fiscal_year = years[0]
    else:
        audit_fiscal_year = None

    return WritePlan(
        table=table,
        mode=mode,
        delete_scope=delete_scope,
        delete_fiscal_year=delete_fiscal_year,
        records=tuple(records),
        years_in_data=years,
        audit_fiscal_year=audit_fiscal_year,
    )
