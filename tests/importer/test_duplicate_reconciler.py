from __future__ import annotations

import pytest

from registry_app.importer.adapters import HierarchyRow
from registry_app.importer.pipeline import (
    Created,
    DuplicateHandling,
    DuplicateReconciler,
    RowProcessingError,
    Skipped,
    Updated,
)
from registry_app.models import Controller, db


def _row(tag_id="PLC_001", **overrides) -> HierarchyRow:
    values = {
        "source_line": 2,
        "site_name": "Plant A",
        "cell_name": "Line 1",
        "line_number": "001",
        "equipment_name": "Robot 1",
        "equipment_type": "ROBOT",
        "tag_id": tag_id,
        "description": "Imported description",
        "make": "Siemens",
        "model": "S7-1500",
        "ip_address": "10.0.0.5",
        "firmware_version": "2.9",
    }
    values.update(overrides)
    return HierarchyRow(**values)


def test_duplicate_handling_coerce():
    assert DuplicateHandling.coerce("MERGE") is DuplicateHandling.MERGE
    assert DuplicateHandling.coerce(None) is DuplicateHandling.SKIP
    with pytest.raises(ValueError):
        DuplicateHandling.coerce("replace")


def test_new_tag_creates_controller(app, hierarchy_factory):
    _, _, equipment, _ = hierarchy_factory()

    outcome = DuplicateReconciler().reconcile(_row(), equipment, policy=DuplicateHandling.SKIP, user_id="alice")
    db.session.commit()

    assert isinstance(outcome, Created)
    stored = db.session.query(Controller).filter_by(tag_id="PLC_001").one()
    assert stored.created_by == "alice"
    assert stored.updated_by == "alice"
    assert stored.ip_address == "10.0.0.5"


def test_skip_leaves_existing_untouched(app, hierarchy_factory):
    _, _, equipment, existing = hierarchy_factory(tag_id="PLC_001", description="Original", make=None)

    outcome = DuplicateReconciler().reconcile(_row(), equipment, policy=DuplicateHandling.SKIP, user_id="bob")

    assert isinstance(outcome, Skipped)
    assert outcome.reason == "duplicate"
    assert existing.description == "Original"
    assert existing.make is None


def test_overwrite_replaces_every_reconciled_field(app, hierarchy_factory):
    _, _, equipment, existing = hierarchy_factory(
        tag_id="PLC_001", description="Original", make="AB", model="L83", ip_address="10.0.0.1", firmware_version="1.0"
    )

    outcome = DuplicateReconciler().reconcile(
        _row(firmware_version=None), equipment, policy=DuplicateHandling.OVERWRITE, user_id="bob"
    )
    db.session.commit()

    assert isinstance(outcome, Updated)
    assert existing.description == "Imported description"
    assert existing.make == "Siemens"
    assert existing.model == "S7-1500"
    assert existing.ip_address == "10.0.0.5"
    assert existing.firmware_version is None
    assert existing.updated_by == "bob"
    assert existing.created_by == "fixture"


def test_merge_fills_only_empty_fields(app, hierarchy_factory):
    _, _, equipment, existing = hierarchy_factory(
        tag_id="PLC_001", description="Original", make=None, model="L83", ip_address=None, firmware_version=""
    )

    outcome = DuplicateReconciler().reconcile(_row(), equipment, policy=DuplicateHandling.MERGE, user_id="bob")

    assert isinstance(outcome, Updated)
    assert set(outcome.changed_fields) == {"make", "ip_address", "firmware_version"}
    assert existing.description == "Original"
    assert existing.model == "L83"
    assert existing.make == "Siemens"
    assert existing.ip_address == "10.0.0.5"
    assert existing.firmware_version == "2.9"


def test_merge_without_empty_fields_is_a_no_op(app, hierarchy_factory):
    _, _, equipment, existing = hierarchy_factory(
        tag_id="PLC_001", description="d", make="m", model="x", ip_address="10.0.0.9", firmware_version="1"
    )

    outcome = DuplicateReconciler().reconcile(_row(), equipment, policy=DuplicateHandling.MERGE, user_id="bob")

    assert isinstance(outcome, Skipped)
    assert outcome.reason == "no_change"
    assert existing.updated_by == "fixture"
    assert existing not in db.session.dirty


def test_lookup_falls_back_to_ip_address(app, hierarchy_factory):
    _, _, equipment, existing = hierarchy_factory(tag_id="LEGACY_TAG", ip_address="10.0.0.5")

    outcome = DuplicateReconciler().reconcile(
        _row(tag_id="NEW_TAG"), equipment, policy=DuplicateHandling.OVERWRITE, user_id="bob"
    )

    assert isinstance(outcome, Updated)
    assert outcome.controller.id == existing.id
    assert existing.tag_id == "LEGACY_TAG"
    assert db.session.query(Controller).count() == 1


def test_ip_owned_by_other_controller_fails_row(app, hierarchy_factory):
    _, _, equipment, _ = hierarchy_factory(tag_id="PLC_001", ip_address="10.0.0.1")
    hierarchy_factory(tag_id="PLC_002", ip_address="10.0.0.5")

    with pytest.raises(RowProcessingError) as excinfo:
        DuplicateReconciler().reconcile(_row(), equipment, policy=DuplicateHandling.OVERWRITE, user_id="bob")

    assert excinfo.value.field == "ip_address"
    assert "PLC_002" in str(excinfo.value)
