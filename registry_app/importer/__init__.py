"""
Hierarchy importer package.

Provides conditional CLI registration and keeps importer state on
``app.extensions['importer']`` while staying lightweight when disabled.
"""

from __future__ import annotations

from flask import Flask

from registry_app.utils.importer import (
    get_background_threshold,
    get_isolate_row_failures,
    get_max_upload_bytes,
    get_validation_sample_rows,
    is_importer_enabled,
)

from .cli import get_disabled_importer_group, importer_cli
from .pipeline import (
    DuplicateHandling,
    ExportFilters,
    ExportOptions,
    FatalImportError,
    ImportOptions,
    ImportResult,
    ImportRunService,
    RunFilters,
    ValidationResult,
)
from .service import ImportExportService

IMPORTER_EXTENSION_KEY = "importer"

__all__ = [
    "init_importer",
    "IMPORTER_EXTENSION_KEY",
    "DuplicateHandling",
    "ExportFilters",
    "ExportOptions",
    "FatalImportError",
    "ImportExportService",
    "ImportOptions",
    "ImportResult",
    "ImportRunService",
    "RunFilters",
    "ValidationResult",
]


def _ensure_extension_state(app: Flask) -> dict:
    return app.extensions.setdefault(
        IMPORTER_EXTENSION_KEY,
        {
            "enabled": False,
            "background_threshold": None,
            "validation_sample_rows": None,
            "max_upload_bytes": None,
            "isolate_row_failures": True,
        },
    )


def _set_cli(app: Flask, enabled: bool) -> None:
    """Register the appropriate CLI group based on flag state."""
    # Avoid duplicate registrations when running tests
    command_name = importer_cli.name
    if command_name in app.cli.commands:
        app.cli.commands.pop(command_name)

    if enabled:
        app.cli.add_command(importer_cli)
    else:
        app.cli.add_command(get_disabled_importer_group())


def init_importer(app: Flask) -> None:
    """
    Conditionally mount the importer CLI based on configuration.

    Records importer state inside ``app.extensions['importer']`` for reuse by
    the CLI and other helpers.
    """
    enabled = is_importer_enabled(app)
    state = _ensure_extension_state(app)
    state["enabled"] = enabled

    if not enabled:
        _set_cli(app, enabled=False)
        app.logger.info("Importer disabled via IMPORTER_ENABLED flag; skipping registration.")
        return

    state.update(
        {
            "background_threshold": get_background_threshold(app),
            "validation_sample_rows": get_validation_sample_rows(app),
            "max_upload_bytes": get_max_upload_bytes(app),
            "isolate_row_failures": get_isolate_row_failures(app),
        }
    )
    _set_cli(app, enabled=True)
    app.logger.info(
        "Importer enabled",
        extra={
            "importer_background_threshold": state["background_threshold"],
            "importer_isolate_row_failures": state["isolate_row_failures"],
        },
    )
