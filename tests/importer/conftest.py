from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from registry_app.importer import ImportExportService
from registry_app.importer.contracts import get_hierarchy_supported_headers
from registry_app.models import db
from registry_app.models.importer.schema import ImportRun, ImportRunStatus

HEADER = ",".join(get_hierarchy_supported_headers())


def build_csv(*rows: str, header: str = HEADER) -> bytes:
    """Join a header and data lines into an upload payload."""
    return ("\n".join([header, *rows]) + "\n").encode("utf-8")


def hierarchy_line(
    tag_id: str,
    *,
    site: str = "Plant A",
    cell: str = "Line 1",
    line_number: str = "001",
    equipment: str = "Robot 1",
    equipment_type: str = "ROBOT",
    description: str = "",
    make: str = "",
    model: str = "",
    ip_address: str = "",
    firmware: str = "",
) -> str:
    return ",".join(
        [site, cell, line_number, equipment, equipment_type, tag_id, description, make, model, ip_address, firmware]
    )


@pytest.fixture
def service(app):
    return ImportExportService()


@pytest.fixture
def run_factory(app):
    created_runs: list[ImportRun] = []

    def _factory(
        *,
        status: ImportRunStatus = ImportRunStatus.COMPLETED,
        initiated_by: str = "alice",
        source_filename: str = "hierarchy.csv",
        started_offset_minutes: int = 0,
        duration_seconds: int = 120,
        total_rows: int = 10,
        failed_rows: int = 0,
    ) -> ImportRun:
        now = datetime.now(timezone.utc)
        started_at = now.replace(microsecond=0) - timedelta(minutes=started_offset_minutes)
        run = ImportRun(
            initiated_by=initiated_by,
            source_filename=source_filename,
            status=status,
            started_at=started_at,
            finished_at=started_at + timedelta(seconds=duration_seconds),
            total_rows=total_rows,
            successful_rows=total_rows - failed_rows,
            failed_rows=failed_rows,
            options_json={"create_missing": True, "duplicate_handling": "skip"},
            created_entities_json={"sites": 1, "cells": 1, "equipment": 1, "controllers": total_rows - failed_rows},
            errors_json=[],
        )
        db.session.add(run)
        db.session.commit()
        created_runs.append(run)
        return run

    yield _factory


@pytest.fixture
def make_csv():
    return build_csv


@pytest.fixture
def make_line():
    return hierarchy_line
