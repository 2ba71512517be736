from __future__ import annotations

import pytest
from sqlalchemy.exc import NoResultFound

from registry_app.importer.pipeline.run_service import ImportRunService, RunFilters
from registry_app.models.importer.schema import ImportRun, ImportRunStatus


def test_run_filters_defaults():
    filters = RunFilters.coerce()
    assert filters.page == 1
    assert filters.page_size == 25
    assert filters.sort == "-created_at"
    assert filters.statuses == ()
    assert filters.initiated_by == ()
    assert filters.search is None


def test_run_filters_invalid_status():
    with pytest.raises(ValueError):
        RunFilters.coerce(statuses=["bogus"])


def test_run_filters_invalid_sort():
    with pytest.raises(ValueError):
        RunFilters.coerce(sort="duration")


def test_run_filters_caps_page_size_and_parses_dates():
    filters = RunFilters.coerce(page="3", page_size="500", started_from="2026-01-01", started_to="2026-01-31")

    assert filters.page == 3
    assert filters.page_size == 100
    assert filters.started_from.isoformat() == "2026-01-01T00:00:00+00:00"
    assert filters.started_to.date().isoformat() == "2026-01-31"
    with pytest.raises(ValueError):
        RunFilters.coerce(started_from="2026-02-01", started_to="2026-01-01")


def test_lifecycle_transitions(app):
    service = ImportRunService()

    run = service.create_run(initiated_by="alice", source_filename="plant.csv", options={"create_missing": True})
    assert run.status == ImportRunStatus.PENDING
    assert run.started_at is None

    service.mark_processing(run, total_rows=3)
    assert run.status == ImportRunStatus.PROCESSING
    assert run.started_at is not None

    errors = [{"row": 2, "field": "site_name", "value": "X", "message": "Site 'X' not found", "severity": "error"}]
    service.mark_completed(
        run,
        total_rows=3,
        successful_rows=2,
        failed_rows=1,
        created_entities={"sites": 0, "cells": 0, "equipment": 0, "controllers": 2},
        errors=errors,
        created_entity_ids={"controllers": (7, 8)},
    )

    summary = service.get_run_summary(run.id)
    assert summary.status == "completed"
    assert summary.failed_rows == 1
    assert summary.error_count == 1
    assert summary.options == {"create_missing": True}
    assert summary.duration_seconds is not None and summary.duration_seconds >= 0
    assert summary.as_dict()["created_entities"]["controllers"] == 2
    assert summary.as_dict()["created_entity_ids"] == {"controllers": [7, 8]}


def test_mark_failed_reloads_run_after_rollback(app):
    service = ImportRunService()
    run = service.create_run(initiated_by="alice")
    run_id = run.id
    service.session.rollback()

    failed = service.mark_failed(run_id, RuntimeError("disk full"))

    assert failed.status == ImportRunStatus.FAILED
    assert failed.error_summary == "disk full"
    assert failed.finished_at is not None
    assert service.mark_failed(9999, "missing") is None


def test_list_runs_basic(app, run_factory):
    run_factory(status=ImportRunStatus.COMPLETED, started_offset_minutes=10)
    run_factory(status=ImportRunStatus.FAILED, started_offset_minutes=5)
    run_factory(status=ImportRunStatus.PROCESSING, started_offset_minutes=2)

    service = ImportRunService()
    result = service.list_runs(RunFilters.coerce())

    assert result.total == 3
    assert result.page == 1
    assert result.total_pages == 1
    assert result.items[0].status == ImportRunStatus.PROCESSING.value


def test_list_runs_filters_and_stats(app, run_factory):
    run_factory(initiated_by="alice", status=ImportRunStatus.COMPLETED, total_rows=5)
    run_factory(initiated_by="bob", status=ImportRunStatus.FAILED, total_rows=7, failed_rows=7)
    run_factory(initiated_by="bob", status=ImportRunStatus.COMPLETED, total_rows=4, failed_rows=1)

    service = ImportRunService()
    filters = RunFilters.coerce(initiated_by=["bob"])
    result = service.list_runs(filters)
    assert result.total == 2
    assert all(item.initiated_by == "bob" for item in result.items)

    stats = service.get_stats(filters)
    assert stats.total == 2
    assert stats.statuses[ImportRunStatus.COMPLETED.value] == 1
    assert stats.statuses[ImportRunStatus.FAILED.value] == 1
    assert stats.rows_total == 11
    assert stats.rows_failed == 8


def test_list_runs_search_and_pagination(app, run_factory):
    run_factory(source_filename="plant_a.csv")
    target = run_factory(source_filename="plant_b.csv")
    for _ in range(3):
        run_factory(source_filename="other.csv")

    service = ImportRunService()
    by_name = service.list_runs(RunFilters.coerce(search="PLANT_B"))
    by_id = service.list_runs(RunFilters.coerce(search=str(target.id)))
    paged = service.list_runs(RunFilters.coerce(page=2, page_size=2, sort="id"))

    assert [item.id for item in by_name.items] == [target.id]
    assert target.id in [item.id for item in by_id.items]
    assert paged.total == 5
    assert paged.total_pages == 3
    assert [item.id for item in paged.items] == [target.id + 1, target.id + 2]


def test_get_run_not_found(app):
    service = ImportRunService()
    with pytest.raises(NoResultFound):
        service.get_run(9999)


def test_get_stats_without_runs(app):
    stats = ImportRunService().get_stats()

    assert stats.total == 0
    assert stats.rows_total == 0
    assert ImportRun.query.count() == 0
