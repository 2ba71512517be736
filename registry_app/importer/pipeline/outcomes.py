"""
Row outcomes and error types shared by the import pipeline.

The resolver and reconciler never touch aggregate counters; they return (or
raise) the types defined here and the orchestrator folds them into totals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from registry_app.models import Controller


class RowProcessingError(Exception):
    """Expected business failure for a single row; the run continues."""

    def __init__(self, message: str, *, field: str | None = None, value: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.value = value


class FatalImportError(RuntimeError):
    """Raised when an unexpected failure aborts and rolls back a whole run."""

    def __init__(self, message: str, *, run_id: int | None = None) -> None:
        super().__init__(message)
        self.run_id = run_id


@dataclass(frozen=True)
class RowError:
    row: int
    field: str | None
    value: Any
    message: str
    severity: str = "error"

    @classmethod
    def from_exception(cls, row: int, exc: RowProcessingError) -> "RowError":
        return cls(row=row, field=exc.field, value=exc.value, message=exc.message)

    def as_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "value": self.value,
            "message": self.message,
            "severity": self.severity,
        }


ENTITY_KINDS: tuple[str, ...] = ("sites", "cells", "equipment", "controllers")


@dataclass
class CreatedEntities:
    """Counts and primary keys of hierarchy records created during a row or a run."""

    sites: int = 0
    cells: int = 0
    equipment: int = 0
    controllers: int = 0
    ids: dict[str, list[int]] = field(default_factory=lambda: {kind: [] for kind in ENTITY_KINDS})

    @property
    def total(self) -> int:
        return self.sites + self.cells + self.equipment + self.controllers

    def record(self, kind: str, entity_id: int | None) -> None:
        setattr(self, kind, getattr(self, kind) + 1)
        if entity_id is not None:
            self.ids[kind].append(entity_id)

    def add(self, other: "CreatedEntities") -> None:
        for kind in ENTITY_KINDS:
            setattr(self, kind, getattr(self, kind) + getattr(other, kind))
            self.ids[kind].extend(other.ids[kind])

    def as_dict(self) -> dict[str, int]:
        return {kind: getattr(self, kind) for kind in ENTITY_KINDS}

    def ids_as_dict(self) -> dict[str, list[int]]:
        return {kind: list(self.ids[kind]) for kind in ENTITY_KINDS}


@dataclass(frozen=True)
class Created:
    row: int
    controller: Controller
    hierarchy: CreatedEntities = field(default_factory=CreatedEntities)


@dataclass(frozen=True)
class Updated:
    row: int
    controller: Controller
    changed_fields: tuple[str, ...] = ()
    hierarchy: CreatedEntities = field(default_factory=CreatedEntities)


@dataclass(frozen=True)
class Skipped:
    row: int
    controller: Controller
    reason: str
    hierarchy: CreatedEntities = field(default_factory=CreatedEntities)


@dataclass(frozen=True)
class Failed:
    row: int
    errors: tuple[RowError, ...]
    hierarchy: CreatedEntities = field(default_factory=CreatedEntities)
    rolled_back: bool = False


RowOutcome = Union[Created, Updated, Skipped, Failed]
