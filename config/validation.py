# config/validation.py

"""
Environment variable validation for the equipment registry.
Validates required environment variables at startup.
"""

import os
import sys
from typing import List, Tuple

_IMPORTER_INT_SETTINGS = (
    "IMPORTER_BACKGROUND_THRESHOLD",
    "IMPORTER_PREVIEW_ROWS",
    "IMPORTER_VALIDATION_SAMPLE_ROWS",
    "IMPORTER_MAX_UPLOAD_MB",
)


def validate_environment(flask_env: str = None) -> Tuple[bool, List[str]]:
    """
    Validate required environment variables.

    Args:
        flask_env: Flask environment (development, production, testing)
                  If None, reads from FLASK_ENV environment variable

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    if flask_env is None:
        flask_env = os.environ.get("FLASK_ENV", "development")

    errors = []

    # Only validate in production
    if flask_env != "production":
        return True, []

    secret_key = os.environ.get("SECRET_KEY", "")
    if not secret_key or secret_key == "dev-secret-key-change-in-production":
        errors.append("SECRET_KEY is required in production and must not be the default value.")

    if not os.environ.get("DATABASE_URL"):
        errors.append("DATABASE_URL is required in production. Set it to your database connection string.")

    for name in _IMPORTER_INT_SETTINGS:
        raw = os.environ.get(name)
        if raw is None or raw.strip() == "":
            continue
        if not raw.strip().isdigit() or int(raw.strip()) < 1:
            errors.append(f"{name} must be a positive integer (got '{raw}').")

    return len(errors) == 0, errors


def validate_and_exit(flask_env: str = None) -> None:
    """
    Validate environment variables and exit with error if validation fails.
    Intended to be called at application startup.
    """
    is_valid, errors = validate_environment(flask_env)

    if not is_valid:
        print("=" * 80, file=sys.stderr)
        print("ENVIRONMENT VALIDATION FAILED", file=sys.stderr)
        print("=" * 80, file=sys.stderr)
        print("\nThe following environment variables are missing or invalid:\n", file=sys.stderr)

        for i, error in enumerate(errors, 1):
            print(f"{i}. {error}", file=sys.stderr)

        print("\n" + "=" * 80, file=sys.stderr)
        print("Please check your .env file or environment variables.", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        sys.exit(1)
