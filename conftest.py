# conftest.py

import os

import pytest

# Set testing environment BEFORE importing app so app.py picks TestingConfig
# and never touches the development database.
os.environ["FLASK_ENV"] = "testing"

# Now import app and other modules after environment is set
from app import app as flask_app  # noqa: E402
from registry_app.importer import init_importer  # noqa: E402
from registry_app.models import Cell, Controller, Equipment, EquipmentType, Site, db  # noqa: E402


@pytest.fixture(scope="function")
def app():
    """Create and configure a test Flask application"""
    flask_app.config.update(
        {
            "TESTING": True,
            "IMPORTER_ENABLED": True,
            "IMPORTER_BACKGROUND_THRESHOLD": 1000,
            "IMPORTER_PREVIEW_ROWS": 10,
            "IMPORTER_VALIDATION_SAMPLE_ROWS": 100,
            "IMPORTER_MAX_UPLOAD_MB": 10,
            "IMPORTER_ISOLATE_ROW_FAILURES": True,
            "ENABLE_FILE_LOGGING": False,
            "LOG_LEVEL": "DEBUG",
        }
    )
    init_importer(flask_app)

    with flask_app.app_context():
        # Drop any existing tables to ensure clean state
        db.drop_all()
        db.create_all()
        yield flask_app
        db.session.remove()
        db.drop_all()


@pytest.fixture(autouse=True)
def app_context(app):
    """Automatically provide app context for all tests"""
    with app.app_context():
        yield


@pytest.fixture
def runner(app):
    """Create a test CLI runner"""
    return app.test_cli_runner()


@pytest.fixture
def hierarchy_factory(app):
    """Create a site/cell/equipment chain, optionally with one controller."""

    def _factory(
        *,
        site_name="Plant A",
        cell_name="Line 1",
        line_number="001",
        equipment_name="Robot 1",
        equipment_type=EquipmentType.ROBOT,
        tag_id=None,
        user_id="fixture",
        **controller_fields,
    ):
        site = db.session.execute(db.select(Site).filter_by(name=site_name)).scalar_one_or_none()
        if site is None:
            site = Site(name=site_name, created_by=user_id, updated_by=user_id)
            db.session.add(site)
            db.session.flush()

        cell = db.session.execute(
            db.select(Cell).filter_by(site_id=site.id, line_number=line_number)
        ).scalar_one_or_none()
        if cell is None:
            cell = Cell(site_id=site.id, name=cell_name, line_number=line_number, created_by=user_id)
            db.session.add(cell)
            db.session.flush()

        equipment = db.session.execute(
            db.select(Equipment).filter_by(cell_id=cell.id, name=equipment_name)
        ).scalar_one_or_none()
        if equipment is None:
            equipment = Equipment(
                cell_id=cell.id, name=equipment_name, equipment_type=equipment_type, created_by=user_id
            )
            db.session.add(equipment)
            db.session.flush()

        controller = None
        if tag_id is not None:
            controller = Controller(
                equipment_id=equipment.id,
                tag_id=tag_id,
                created_by=user_id,
                updated_by=user_id,
                **controller_fields,
            )
            db.session.add(controller)
        db.session.commit()
        return site, cell, equipment, controller

    return _factory
