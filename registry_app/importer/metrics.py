"""Prometheus metrics helpers for the importer."""

from __future__ import annotations

from typing import Literal, Mapping

from prometheus_client import Counter, Histogram

_import_runs_counter = Counter(
    "registry_import_runs_total",
    "Hierarchy import runs by final status.",
    ["status"],
)
_import_rows_counter = Counter(
    "registry_import_rows_total",
    "Hierarchy import rows by outcome.",
    ["outcome"],
)
_import_run_duration = Histogram(
    "registry_import_run_duration_seconds",
    "Duration of hierarchy import runs in seconds.",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
)
_import_entities_counter = Counter(
    "registry_import_entities_created_total",
    "Hierarchy records created by imports.",
    ["entity"],
)
_export_rows_counter = Counter(
    "registry_export_rows_total",
    "Controller rows written by hierarchy exports.",
)


def record_import_run(
    *,
    status: Literal["completed", "failed", "rejected", "validated"],
    duration_seconds: float,
    row_outcomes: Mapping[str, int] | None = None,
    created_entities: Mapping[str, int] | None = None,
) -> None:
    """Capture metrics for a finished (or aborted) import run."""

    _import_runs_counter.labels(status=status).inc()
    _import_run_duration.observe(duration_seconds)
    for outcome, count in (row_outcomes or {}).items():
        if count:
            _import_rows_counter.labels(outcome=outcome).inc(count)
    for entity, count in (created_entities or {}).items():
        if count:
            _import_entities_counter.labels(entity=entity).inc(count)


def record_export(row_count: int) -> None:
    """Increment the exported-rows counter."""

    if row_count:
        _export_rows_counter.inc(row_count)
