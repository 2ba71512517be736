"""
Utility helpers for importer feature flag and tuning lookups.
"""

from __future__ import annotations

from flask import current_app


def _get_config(app=None):
    if app is not None:
        return app.config
    return current_app.config


def _get_int(config, key: str, default: int) -> int:
    value = config.get(key, default)
    try:
        return max(1, int(value))
    except (TypeError, ValueError):
        return default


def is_importer_enabled(app=None) -> bool:
    """Return True when the importer feature flag is enabled."""
    config = _get_config(app)
    return bool(config.get("IMPORTER_ENABLED", False))


def get_background_threshold(app=None) -> int:
    return _get_int(_get_config(app), "IMPORTER_BACKGROUND_THRESHOLD", 1000)


def get_preview_rows(app=None) -> int:
    return _get_int(_get_config(app), "IMPORTER_PREVIEW_ROWS", 10)


def get_validation_sample_rows(app=None) -> int:
    return _get_int(_get_config(app), "IMPORTER_VALIDATION_SAMPLE_ROWS", 100)


def get_max_upload_bytes(app=None) -> int:
    """Upload ceiling in bytes, derived from ``IMPORTER_MAX_UPLOAD_MB``."""
    return _get_int(_get_config(app), "IMPORTER_MAX_UPLOAD_MB", 10) * 1024 * 1024


def get_isolate_row_failures(app=None) -> bool:
    return bool(_get_config(app).get("IMPORTER_ISOLATE_ROW_FAILURES", True))
