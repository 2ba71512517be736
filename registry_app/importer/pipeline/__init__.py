"""Importer pipeline helpers."""

from __future__ import annotations

from .export import ExportEngine, ExportFilters, ExportOptions, guard_value
from .orchestrator import ImportOptions, ImportOrchestrator, ImportResult, fold_outcomes
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
from .resolver import HierarchyCache, HierarchyResolver, ResolvedHierarchy
from .run_service import ImportRunService, RunFilters, RunSummary
from .validation import (
    HierarchyValidator,
    IssueSeverity,
    RowIssue,
    RowValidationReport,
    ValidationResult,
    check_row,
    is_valid_ip_address,
)

__all__ = [
    "Created",
    "CreatedEntities",
    "DuplicateHandling",
    "DuplicateReconciler",
    "ExportEngine",
    "ExportFilters",
    "ExportOptions",
    "Failed",
    "FatalImportError",
    "HierarchyCache",
    "HierarchyResolver",
    "HierarchyValidator",
    "ImportOptions",
    "ImportOrchestrator",
    "ImportResult",
    "ImportRunService",
    "IssueSeverity",
    "ResolvedHierarchy",
    "RowError",
    "RowIssue",
    "RowOutcome",
    "RowProcessingError",
    "RowValidationReport",
    "RunFilters",
    "RunSummary",
    "Skipped",
    "Updated",
    "ValidationResult",
    "check_row",
    "fold_outcomes",
    "guard_value",
    "is_valid_ip_address",
]
