"""
Public facade over the hierarchy import/export pipeline.

Callers (the CLI, or a web layer living outside this package) go through
``ImportExportService`` so configuration-derived defaults such as the
background threshold and the validation sample size are applied in one place.
"""

from __future__ import annotations

from typing import Any, Iterator

from flask import current_app
from sqlalchemy.orm import Session

from registry_app.models import db
from registry_app.utils.importer import (
    get_background_threshold,
    get_isolate_row_failures,
    get_max_upload_bytes,
    get_preview_rows,
    get_validation_sample_rows,
)

from .pipeline import (
    ExportEngine,
    ExportFilters,
    ExportOptions,
    HierarchyValidator,
    ImportOptions,
    ImportOrchestrator,
    ImportResult,
    ImportRunService,
    RunFilters,
    ValidationResult,
)
from .utils import ensure_size, sanitize_filename


class ImportExportService:
    """Entry point for template, validate, count, import, and export operations."""

    def __init__(self, session: Session | None = None, app=None) -> None:
        self.app = app or current_app._get_current_object()
        self.session: Session = session or db.session
        self.validator = HierarchyValidator(
            sample_rows=get_validation_sample_rows(self.app),
            preview_rows=get_preview_rows(self.app),
        )
        self.runs = ImportRunService(self.session)
        self.orchestrator = ImportOrchestrator(self.session, validator=self.validator, run_service=self.runs)
        self.exporter = ExportEngine(self.session)

    def template(self) -> bytes:
        return self.validator.template()

    def validate(self, data: bytes | str) -> ValidationResult:
        return self.validator.validate(self._check_size(data))

    def count_rows(self, data: bytes | str) -> int:
        return self.validator.count_rows(self._check_size(data))

    def default_options(self, **overrides: Any) -> ImportOptions:
        """Build ``ImportOptions`` from config defaults plus caller overrides."""

        params: dict[str, Any] = {
            "background_threshold": get_background_threshold(self.app),
            "isolate_row_failures": get_isolate_row_failures(self.app),
        }
        params.update({key: value for key, value in overrides.items() if value is not None})
        return ImportOptions.coerce(**params)

    def import_csv(
        self,
        data: bytes | str,
        options: ImportOptions | None = None,
        user_id: str | None = None,
        *,
        filename: str | None = None,
    ) -> ImportResult:
        return self.orchestrator.import_csv(
            self._check_size(data),
            options or self.default_options(),
            user_id,
            filename=sanitize_filename(filename),
        )

    def export(self, filters: ExportFilters | None = None, options: ExportOptions | None = None) -> bytes:
        return self.exporter.export(filters, options)

    def stream_export(
        self, filters: ExportFilters | None = None, options: ExportOptions | None = None
    ) -> Iterator[bytes]:
        return self.exporter.stream_export(filters, options)

    def list_runs(self, filters: RunFilters | None = None):
        return self.runs.list_runs(filters or RunFilters())

    def get_run_summary(self, run_id: int):
        return self.runs.get_run_summary(run_id)

    def get_run_stats(self, filters: RunFilters | None = None):
        return self.runs.get_stats(filters)

    def _check_size(self, data: bytes | str) -> bytes | str:
        if isinstance(data, (bytes, bytearray)):
            ensure_size(bytes(data), get_max_upload_bytes(self.app))
        return data
