"""
Preview validation for hierarchy import files.

Rules run against a bounded sample of rows so an interactive preview stays
cheap on large uploads. The same rules are re-applied row by row during the
actual import (see ``orchestrator``), so rows outside the sample cannot slip
through unchecked.
"""

from __future__ import annotations

import csv
import enum
import io
from dataclasses import dataclass, field
from typing import Any, Iterable, Sequence

from registry_app.importer.adapters import HierarchyCSVAdapter, HierarchyRow
from registry_app.importer.contracts import (
    FieldSpec,
    get_hierarchy_field_specs,
    is_valid_ip_address,
    starts_with_formula_prefix,
)
from registry_app.models.hierarchy import EquipmentType

DEFAULT_SAMPLE_ROWS = 100
DEFAULT_PREVIEW_ROWS = 10


class IssueSeverity(str, enum.Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class RowIssue:
    """A single field-level finding for one row."""

    rule_code: str
    field: str
    value: Any
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR

    def as_dict(self) -> dict[str, Any]:
        return {
            "rule": self.rule_code,
            "field": self.field,
            "value": self.value,
            "message": self.message,
            "severity": self.severity.value,
        }


@dataclass
class RowValidationReport:
    """All findings for one data row, keyed by its physical line number."""

    row: int
    issues: list[RowIssue] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return any(issue.severity is IssueSeverity.ERROR for issue in self.issues)

    @property
    def errors(self) -> list[RowIssue]:
        return [issue for issue in self.issues if issue.severity is IssueSeverity.ERROR]

    @property
    def warnings(self) -> list[RowIssue]:
        return [issue for issue in self.issues if issue.severity is IssueSeverity.WARNING]

    def as_dict(self) -> dict[str, Any]:
        return {"row": self.row, "errors": [issue.as_dict() for issue in self.issues]}


@dataclass
class ValidationResult:
    is_valid: bool
    header_valid: bool
    header_errors: list[str]
    row_errors: list[RowValidationReport]
    preview: list[dict[str, str | None]]
    total_rows: int
    rows_sampled: int

    @property
    def invalid_row_count(self) -> int:
        """Distinct sampled rows carrying at least one error-severity issue."""

        return sum(1 for report in self.row_errors if report.has_errors)

    @property
    def warnings(self) -> list[dict[str, Any]]:
        """Warning-severity issues flattened with their row numbers."""

        return [{"row": report.row, **issue.as_dict()} for report in self.row_errors for issue in report.warnings]

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "header_errors": list(self.header_errors),
            "row_errors": [report.as_dict() for report in self.row_errors],
            "preview": [dict(row) for row in self.preview],
            "total_rows": self.total_rows,
            "rows_sampled": self.rows_sampled,
            "warnings": self.warnings,
        }


# -------------------------------------------------------------------------
# Row rules
# -------------------------------------------------------------------------


@dataclass(frozen=True)
class RowRule:
    """Declarative rule evaluated against one parsed row."""

    code: str
    description: str

    def evaluate(self, row: HierarchyRow) -> Iterable[RowIssue]:
        raise NotImplementedError


class RequiredFieldsRule(RowRule):
    def __init__(self, specs: Sequence[FieldSpec]) -> None:
        super().__init__(code="ROW_REQUIRED", description="Required columns must not be empty.")
        object.__setattr__(self, "_fields", tuple(spec.name for spec in specs if spec.required))

    def evaluate(self, row: HierarchyRow) -> Iterable[RowIssue]:
        return [
            RowIssue(self.code, name, row.get(name), "Required field is empty")
            for name in self._fields
            if not row.get(name)
        ]


class EquipmentTypeRule(RowRule):
    def __init__(self) -> None:
        super().__init__(code="ROW_EQUIPMENT_TYPE", description="Equipment type must be a known category.")

    def evaluate(self, row: HierarchyRow) -> Iterable[RowIssue]:
        value = row.equipment_type
        if not value:
            return []
        try:
            EquipmentType.parse(value)
        except ValueError as exc:
            return [RowIssue(self.code, "equipment_type", value, str(exc))]
        return []


class FieldLengthRule(RowRule):
    def __init__(self, specs: Sequence[FieldSpec]) -> None:
        super().__init__(code="ROW_LENGTH", description="Values must fit the column length limits.")
        object.__setattr__(self, "_specs", tuple(spec for spec in specs if spec.max_length or spec.min_length))

    def evaluate(self, row: HierarchyRow) -> Iterable[RowIssue]:
        issues: list[RowIssue] = []
        for spec in self._specs:
            value = row.get(spec.name)
            if not value:
                continue
            too_short = spec.min_length is not None and len(value) < spec.min_length
            too_long = spec.max_length is not None and len(value) > spec.max_length
            if not (too_short or too_long):
                continue
            if spec.name == "tag_id":
                message = f"Tag ID must be between {spec.min_length} and {spec.max_length} characters"
            else:
                message = f"Value must be at most {spec.max_length} characters"
            issues.append(RowIssue(self.code, spec.name, value, message))
        return issues


class IpAddressRule(RowRule):
    def __init__(self) -> None:
        super().__init__(code="ROW_IP_FORMAT", description="IP address must be valid IPv4 or IPv6.")

    def evaluate(self, row: HierarchyRow) -> Iterable[RowIssue]:
        value = row.ip_address
        if not value or is_valid_ip_address(value):
            return []
        return [RowIssue(self.code, "ip_address", value, "Invalid IP address format")]


class FormulaPrefixRule(RowRule):
    def __init__(self, specs: Sequence[FieldSpec]) -> None:
        super().__init__(code="ROW_FORMULA_PREFIX", description="Values that look like spreadsheet formulas.")
        object.__setattr__(self, "_fields", tuple(spec.name for spec in specs))

    def evaluate(self, row: HierarchyRow) -> Iterable[RowIssue]:
        return [
            RowIssue(
                self.code,
                name,
                row.get(name),
                "Value begins with a spreadsheet formula character and will be escaped on export",
                IssueSeverity.WARNING,
            )
            for name in self._fields
            if starts_with_formula_prefix(row.get(name))
        ]


def default_rules() -> tuple[RowRule, ...]:
    specs = get_hierarchy_field_specs()
    return (
        RequiredFieldsRule(specs),
        EquipmentTypeRule(),
        FieldLengthRule(specs),
        IpAddressRule(),
        FormulaPrefixRule(specs),
    )


def check_row(row: HierarchyRow, rules: Sequence[RowRule] | None = None) -> list[RowIssue]:
    """Evaluate every rule against ``row`` and return the combined findings."""

    issues: list[RowIssue] = []
    for rule in rules or default_rules():
        issues.extend(rule.evaluate(row))
    return issues


# -------------------------------------------------------------------------
# Validator
# -------------------------------------------------------------------------


class HierarchyValidator:
    """Header checks, sampled row checks, preview, and template generation."""

    def __init__(
        self,
        *,
        sample_rows: int = DEFAULT_SAMPLE_ROWS,
        preview_rows: int = DEFAULT_PREVIEW_ROWS,
        rules: Sequence[RowRule] | None = None,
    ) -> None:
        self.sample_rows = sample_rows
        self.preview_rows = preview_rows
        self.rules = tuple(rules) if rules is not None else default_rules()

    def template(self) -> bytes:
        """Return a header row and one illustrative data row."""

        specs = get_hierarchy_field_specs()
        buffer = io.StringIO(newline="")
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow([spec.name for spec in specs])
        writer.writerow([spec.example for spec in specs])
        return buffer.getvalue().encode("utf-8")

    def validate(self, data: bytes | str) -> ValidationResult:
        adapter = HierarchyCSVAdapter(data)
        header = adapter.header
        header_errors = header.fatal_messages() + header.informational_messages()

        preview: list[dict[str, str | None]] = []
        row_errors: list[RowValidationReport] = []
        total_rows = 0
        for parsed in adapter.iter_rows():
            total_rows += 1
            if total_rows <= self.preview_rows:
                preview.append({name: parsed.row.get(name) for name in header.present})
            if not header.is_valid or total_rows > self.sample_rows:
                continue
            issues = self.check_row(parsed.row)
            if issues:
                row_errors.append(RowValidationReport(row=parsed.source_line, issues=issues))

        has_row_errors = any(report.has_errors for report in row_errors)
        return ValidationResult(
            is_valid=header.is_valid and not has_row_errors,
            header_valid=header.is_valid,
            header_errors=header_errors,
            row_errors=row_errors,
            preview=preview,
            total_rows=total_rows,
            rows_sampled=min(total_rows, self.sample_rows) if header.is_valid else 0,
        )

    def check_row(self, row: HierarchyRow) -> list[RowIssue]:
        return check_row(row, self.rules)

    def count_rows(self, data: bytes | str) -> int:
        """Return the number of data rows (header and blank lines excluded)."""

        return HierarchyCSVAdapter(data).count_rows()
