"""
Hierarchy import orchestration.

Runs validation, opens the ledger entry, and walks every data row in file
order through the resolver and reconciler. Rows are processed sequentially:
a later row may reference a site, cell, or equipment record an earlier row of
the same file just created, and the shared ``HierarchyCache`` only sees those
records if rows are applied one at a time.

Expected row failures (``RowProcessingError`` or a failing row rule) are
recorded and the run continues. Anything else rolls back the whole run, marks
the ledger entry failed, and is re-raised as ``FatalImportError``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy.orm import Session

from registry_app.importer.adapters import HierarchyCSVAdapter, HierarchyCSVRow
from registry_app.importer.metrics import record_import_run
from registry_app.models import db

from .outcomes import (
    Created,
    CreatedEntities,
    Failed,
    FatalImportError,
    RowError,
    RowOutcome,
    RowProcessingError,
    Skipped,
    Updated,
)
from .reconcile import DuplicateHandling, DuplicateReconciler
from .resolver import HierarchyCache, HierarchyResolver
from .run_service import ImportRunService, _coerce_positive_int
from .validation import HierarchyValidator, IssueSeverity, RowIssue, ValidationResult

DEFAULT_BACKGROUND_THRESHOLD = 1000
HEADER_LINE = 1


def _coerce_flag(candidate: Any, *, default: bool) -> bool:
    if candidate is None or candidate == "":
        return default
    if isinstance(candidate, bool):
        return candidate
    normalized = str(candidate).strip().lower()
    if normalized in ("1", "true", "yes", "y", "on"):
        return True
    if normalized in ("0", "false", "no", "n", "off"):
        return False
    raise ValueError(f"Expected a boolean value, received '{candidate}'.")


@dataclass(frozen=True)
class ImportOptions:
    """Caller-selected behaviour for a single import run."""

    create_missing: bool = False
    duplicate_handling: DuplicateHandling = DuplicateHandling.SKIP
    background_threshold: int = DEFAULT_BACKGROUND_THRESHOLD
    validate_only: bool = False
    isolate_row_failures: bool = True

    @classmethod
    def coerce(
        cls,
        *,
        create_missing: bool | str | None = None,
        duplicate_handling: str | DuplicateHandling | None = None,
        background_threshold: int | str | None = None,
        validate_only: bool | str | None = None,
        isolate_row_failures: bool | str | None = None,
    ) -> "ImportOptions":
        return cls(
            create_missing=_coerce_flag(create_missing, default=False),
            duplicate_handling=DuplicateHandling.coerce(duplicate_handling),
            background_threshold=_coerce_positive_int(background_threshold, fallback=DEFAULT_BACKGROUND_THRESHOLD),
            validate_only=_coerce_flag(validate_only, default=False),
            isolate_row_failures=_coerce_flag(isolate_row_failures, default=True),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "create_missing": self.create_missing,
            "duplicate_handling": self.duplicate_handling.value,
            "background_threshold": self.background_threshold,
            "validate_only": self.validate_only,
            "isolate_row_failures": self.isolate_row_failures,
        }


@dataclass
class ImportResult:
    success: bool
    total_rows: int = 0
    successful_rows: int = 0
    failed_rows: int = 0
    errors: list[RowError] = field(default_factory=list)
    warnings: list[RowError] = field(default_factory=list)
    created_entities: CreatedEntities = field(default_factory=CreatedEntities)
    updated_controllers: int = 0
    skipped_rows: int = 0
    is_background: bool = False
    validate_only: bool = False
    run_id: int | None = None
    duration_ms: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "total_rows": self.total_rows,
            "successful_rows": self.successful_rows,
            "failed_rows": self.failed_rows,
            "errors": [error.as_dict() for error in self.errors],
            "warnings": [warning.as_dict() for warning in self.warnings],
            "created_entities": self.created_entities.as_dict(),
            "updated_controllers": self.updated_controllers,
            "skipped_rows": self.skipped_rows,
            "is_background": self.is_background,
            "validate_only": self.validate_only,
            "run_id": self.run_id,
            "duration_ms": self.duration_ms,
        }


def _issue_to_error(row: int, issue: RowIssue) -> RowError:
    return RowError(row=row, field=issue.field, value=issue.value, message=issue.message, severity=issue.severity.value)


def _header_errors(messages: Iterable[str], *, severity: str) -> list[RowError]:
    return [RowError(row=HEADER_LINE, field=None, value=None, message=message, severity=severity) for message in messages]


def fold_outcomes(outcomes: Iterable[RowOutcome], result: ImportResult) -> ImportResult:
    """Accumulate per-row outcomes into ``result`` counts."""

    for outcome in outcomes:
        if isinstance(outcome, Failed):
            result.failed_rows += 1
            result.errors.extend(outcome.errors)
            if not outcome.rolled_back:
                result.created_entities.add(outcome.hierarchy)
            continue

        result.successful_rows += 1
        result.created_entities.add(outcome.hierarchy)
        if isinstance(outcome, Created):
            result.created_entities.record("controllers", outcome.controller.id)
        elif isinstance(outcome, Updated):
            result.updated_controllers += 1
        elif isinstance(outcome, Skipped):
            result.skipped_rows += 1
    return result


class ImportOrchestrator:
    """Coordinates validator, resolver, reconciler, and run ledger for one import."""

    def __init__(
        self,
        session: Session | None = None,
        *,
        validator: HierarchyValidator | None = None,
        run_service: ImportRunService | None = None,
    ) -> None:
        self.session: Session = session or db.session
        self.validator = validator or HierarchyValidator()
        self.run_service = run_service or ImportRunService(self.session)

    def import_csv(
        self,
        data: bytes | str,
        options: ImportOptions | None = None,
        user_id: str | None = None,
        *,
        filename: str | None = None,
    ) -> ImportResult:
        options = options or ImportOptions()
        logger = current_app.logger
        started = time.perf_counter()

        validation = self.validator.validate(data)
        if not validation.header_valid:
            result = self._rejected_result(validation, options)
            result.duration_ms = _elapsed_ms(started)
            record_import_run(status="rejected", duration_seconds=time.perf_counter() - started)
            logger.warning(
                "Import rejected: invalid header",
                extra={"importer_header_errors": validation.header_errors, "importer_filename": filename},
            )
            return result

        if options.validate_only:
            result = self._validate_only_result(validation, options)
            result.duration_ms = _elapsed_ms(started)
            record_import_run(status="validated", duration_seconds=time.perf_counter() - started)
            logger.info(
                "Import validated without writes",
                extra={
                    "importer_total_rows": result.total_rows,
                    "importer_rows_invalid": result.failed_rows,
                    "importer_filename": filename,
                },
            )
            return result

        run = self.run_service.create_run(initiated_by=user_id, source_filename=filename, options=options.as_dict())
        run_id = run.id
        self.run_service.mark_processing(run, total_rows=validation.total_rows)
        logger.info(
            "Import run %s started",
            run_id,
            extra={
                "importer_run_id": run_id,
                "importer_total_rows": validation.total_rows,
                "importer_options": options.as_dict(),
                "importer_filename": filename,
            },
        )

        result = ImportResult(
            success=False,
            is_background=validation.total_rows > options.background_threshold,
            run_id=run_id,
        )
        result.warnings.extend(_header_errors(validation.header_errors, severity="warning"))

        cache = HierarchyCache()
        try:
            resolver = HierarchyResolver(self.session, cache)
            reconciler = DuplicateReconciler(self.session)
            outcomes: list[RowOutcome] = []
            adapter = HierarchyCSVAdapter(data)
            for parsed in adapter.iter_rows():
                result.total_rows += 1
                outcomes.append(self._process_row(parsed, options, user_id, resolver, reconciler, result))

            fold_outcomes(outcomes, result)
            self.run_service.mark_completed(
                run,
                total_rows=result.total_rows,
                successful_rows=result.successful_rows,
                failed_rows=result.failed_rows,
                created_entities=result.created_entities.as_dict(),
                errors=[error.as_dict() for error in result.errors],
                created_entity_ids=result.created_entities.ids_as_dict(),
            )
        except Exception as exc:
            self.session.rollback()
            self.run_service.mark_failed(run_id, exc)
            record_import_run(status="failed", duration_seconds=time.perf_counter() - started)
            logger.exception(
                "Import run %s failed",
                run_id,
                extra={"importer_run_id": run_id, "importer_rows_processed": result.total_rows},
            )
            raise FatalImportError(f"Import run {run_id} failed: {exc}", run_id=run_id) from exc

        result.success = True
        result.duration_ms = _elapsed_ms(started)
        record_import_run(
            status="completed",
            duration_seconds=time.perf_counter() - started,
            row_outcomes={
                "created": result.created_entities.controllers,
                "updated": result.updated_controllers,
                "skipped": result.skipped_rows,
                "failed": result.failed_rows,
            },
            created_entities=result.created_entities.as_dict(),
        )
        logger.info(
            "Import run %s completed",
            run_id,
            extra={
                "importer_run_id": run_id,
                "importer_total_rows": result.total_rows,
                "importer_rows_successful": result.successful_rows,
                "importer_rows_failed": result.failed_rows,
                "importer_created_entities": result.created_entities.as_dict(),
                "importer_cache_hits": cache.hits,
                "importer_cache_misses": cache.misses,
                "importer_duration_ms": result.duration_ms,
            },
        )
        return result

    # ------------------------------------------------------------------
    # Row processing
    # ------------------------------------------------------------------

    def _process_row(
        self,
        parsed: HierarchyCSVRow,
        options: ImportOptions,
        user_id: str | None,
        resolver: HierarchyResolver,
        reconciler: DuplicateReconciler,
        result: ImportResult,
    ) -> RowOutcome:
        row = parsed.row
        line = parsed.source_line

        issues = self.validator.check_row(row)
        result.warnings.extend(_issue_to_error(line, issue) for issue in issues if issue.severity is IssueSeverity.WARNING)
        errors = tuple(_issue_to_error(line, issue) for issue in issues if issue.severity is IssueSeverity.ERROR)
        if errors:
            return Failed(row=line, errors=errors)

        created = CreatedEntities()
        if options.isolate_row_failures:
            try:
                with self.session.begin_nested():
                    outcome = self._apply_row(row, options, user_id, resolver, reconciler, created)
            except RowProcessingError as exc:
                resolver.cache.discard_pending()
                return Failed(row=line, errors=(RowError.from_exception(line, exc),), hierarchy=created, rolled_back=True)
        else:
            try:
                outcome = self._apply_row(row, options, user_id, resolver, reconciler, created)
                self.session.flush()
            except RowProcessingError as exc:
                resolver.cache.commit_pending()
                return Failed(row=line, errors=(RowError.from_exception(line, exc),), hierarchy=created)

        resolver.cache.commit_pending()
        return replace(outcome, hierarchy=created)

    def _apply_row(self, row, options: ImportOptions, user_id, resolver, reconciler, created: CreatedEntities):
        hierarchy = resolver.resolve(row, create_missing=options.create_missing, user_id=user_id, created=created)
        return reconciler.reconcile(row, hierarchy.equipment, policy=options.duplicate_handling, user_id=user_id)

    # ------------------------------------------------------------------
    # Early exits
    # ------------------------------------------------------------------

    def _rejected_result(self, validation: ValidationResult, options: ImportOptions) -> ImportResult:
        return ImportResult(
            success=False,
            total_rows=validation.total_rows,
            failed_rows=validation.total_rows,
            errors=_header_errors(validation.header_errors, severity="error"),
            is_background=validation.total_rows > options.background_threshold,
            validate_only=options.validate_only,
        )

    def _validate_only_result(self, validation: ValidationResult, options: ImportOptions) -> ImportResult:
        errors: list[RowError] = []
        warnings: list[RowError] = _header_errors(validation.header_errors, severity="warning")
        for report in validation.row_errors:
            for issue in report.issues:
                target = errors if issue.severity is IssueSeverity.ERROR else warnings
                target.append(_issue_to_error(report.row, issue))

        invalid = validation.invalid_row_count
        return ImportResult(
            success=validation.is_valid,
            total_rows=validation.total_rows,
            successful_rows=validation.total_rows - invalid,
            failed_rows=invalid,
            errors=errors,
            warnings=warnings,
            is_background=validation.total_rows > options.background_threshold,
            validate_only=True,
        )


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def summarize_errors(errors: Iterable[RowError], *, limit: int = 10) -> list[Mapping[str, Any]]:
    """Return the first ``limit`` errors as plain dictionaries for display."""

    summary: list[Mapping[str, Any]] = []
    for error in errors:
        if len(summary) >= limit:
            break
        summary.append(error.as_dict())
    return summary
