"""
SQLAlchemy model for the import run ledger.

One row is written per import attempt that gets past header validation. The
orchestrator owns the lifecycle; status and history views only read it.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Enum, Index
from sqlalchemy.orm import Mapped, mapped_column

from ..base import BaseModel, db


class ImportRunStatus(str, enum.Enum):
    """Lifecycle states for an import run."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportRun(BaseModel):
    """Ledger entry describing a single import attempt."""

    __tablename__ = "import_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    initiated_by: Mapped[str | None] = mapped_column(db.String(64), nullable=True, index=True)
    source_filename: Mapped[str | None] = mapped_column(db.String(255), nullable=True)
    options_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Import options used for the run (create_missing, duplicate_handling, ...)",
    )
    status: Mapped[ImportRunStatus] = mapped_column(
        Enum(ImportRunStatus, name="import_run_status_enum"),
        nullable=False,
        default=ImportRunStatus.PENDING,
        index=True,
    )
    total_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    successful_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    failed_rows: Mapped[int] = mapped_column(db.Integer, nullable=False, default=0)
    created_entities_json: Mapped[dict | None] = mapped_column(db.JSON, nullable=True)
    created_entity_ids_json: Mapped[dict | None] = mapped_column(
        db.JSON,
        nullable=True,
        comment="Primary keys of the sites, cells, equipment, and controllers the run created",
    )
    errors_json: Mapped[list | None] = mapped_column(db.JSON, nullable=True)
    error_summary: Mapped[str | None] = mapped_column(db.Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(db.DateTime(timezone=True))

    __table_args__ = (Index("idx_import_runs_user_status", "initiated_by", "status"),)

    def __repr__(self):
        return f"<ImportRun {self.id} {self.status.value if self.status else None}>"
