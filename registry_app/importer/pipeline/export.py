"""
Hierarchy export.

Writes controllers (with their equipment, cell, and site) back out in the
import file layout. Rows are ordered by site, cell, equipment, and tag so
repeated exports of unchanged data are byte-identical, and every value that
starts with a spreadsheet formula trigger is prefixed with a quote.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Iterator, Sequence

from flask import current_app
from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from registry_app.importer.contracts import get_hierarchy_supported_headers, starts_with_formula_prefix
from registry_app.importer.metrics import record_export
from registry_app.models import Cell, Controller, Equipment, EquipmentType, Site, db

from .run_service import _coerce_datetime

DEFAULT_CHUNK_SIZE = 500
GUARD_PREFIX = "'"


def guard_value(value: Any) -> str:
    """Render ``value`` as text, neutralizing leading formula characters."""

    if value is None:
        return ""
    if isinstance(value, EquipmentType):
        value = value.value
    text = str(value)
    if starts_with_formula_prefix(text):
        return f"{GUARD_PREFIX}{text}"
    return text


def _coerce_names(values: Iterable[str] | str | None) -> tuple[str, ...]:
    if values is None:
        return ()
    if isinstance(values, str):
        values = values.split(",")
    seen: list[str] = []
    for value in values:
        if value is None:
            continue
        name = str(value).strip()
        if name and name not in seen:
            seen.append(name)
    return tuple(seen)


@dataclass(frozen=True)
class ExportFilters:
    """Conjunctive filters applied to the export query; empty means no filter."""

    site_names: tuple[str, ...] = field(default_factory=tuple)
    cell_names: tuple[str, ...] = field(default_factory=tuple)
    equipment_types: tuple[EquipmentType, ...] = field(default_factory=tuple)
    makes: tuple[str, ...] = field(default_factory=tuple)
    models: tuple[str, ...] = field(default_factory=tuple)
    created_from: datetime | None = None
    created_to: datetime | None = None
    search: str | None = None

    @classmethod
    def coerce(
        cls,
        *,
        site_names: Iterable[str] | str | None = None,
        cell_names: Iterable[str] | str | None = None,
        equipment_types: Iterable[str] | str | None = None,
        makes: Iterable[str] | str | None = None,
        models: Iterable[str] | str | None = None,
        created_from: str | datetime | None = None,
        created_to: str | datetime | None = None,
        search: str | None = None,
    ) -> "ExportFilters":
        resolved_from = _coerce_datetime(created_from)
        resolved_to = _coerce_datetime(created_to, end_of_day=True)
        if resolved_from and resolved_to and resolved_from > resolved_to:
            raise ValueError("created_from must be before created_to.")

        return cls(
            site_names=_coerce_names(site_names),
            cell_names=_coerce_names(cell_names),
            equipment_types=tuple(EquipmentType.parse(value) for value in _coerce_names(equipment_types)),
            makes=_coerce_names(makes),
            models=_coerce_names(models),
            created_from=resolved_from,
            created_to=resolved_to,
            search=search.strip() if isinstance(search, str) and search.strip() else None,
        )


@dataclass(frozen=True)
class ExportOptions:
    quote_all: bool = False
    chunk_size: int = DEFAULT_CHUNK_SIZE
    encoding: str = "utf-8"


class ExportEngine:
    """Streams the filtered controller hierarchy as delimited text."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    @property
    def columns(self) -> tuple[str, ...]:
        return get_hierarchy_supported_headers()

    def build_query(self, filters: ExportFilters):
        stmt = (
            select(Controller, Equipment, Cell, Site)
            .join(Equipment, Controller.equipment_id == Equipment.id)
            .join(Cell, Equipment.cell_id == Cell.id)
            .join(Site, Cell.site_id == Site.id)
        )

        predicates = []
        if filters.site_names:
            predicates.append(Site.name.in_(filters.site_names))
        if filters.cell_names:
            predicates.append(Cell.name.in_(filters.cell_names))
        if filters.equipment_types:
            predicates.append(Equipment.equipment_type.in_(filters.equipment_types))
        if filters.makes:
            predicates.append(Controller.make.in_(filters.makes))
        if filters.models:
            predicates.append(Controller.model.in_(filters.models))
        if filters.created_from:
            predicates.append(Controller.created_at >= filters.created_from)
        if filters.created_to:
            predicates.append(Controller.created_at <= filters.created_to)
        if filters.search:
            predicates.append(_build_search_predicate(filters.search))
        if predicates:
            stmt = stmt.where(and_(*predicates))

        return stmt.order_by(Site.name.asc(), Cell.name.asc(), Equipment.name.asc(), Controller.tag_id.asc())

    def iter_records(self, filters: ExportFilters, options: ExportOptions | None = None) -> Iterator[list[str]]:
        """Yield guarded field lists in column order, one per controller."""

        options = options or ExportOptions()
        stmt = self.build_query(filters).execution_options(yield_per=options.chunk_size)
        for controller, equipment, cell, site in self.session.execute(stmt):
            values = {
                "site_name": site.name,
                "cell_name": cell.name,
                "line_number": cell.line_number,
                "equipment_name": equipment.name,
                "equipment_type": equipment.equipment_type,
                "tag_id": controller.tag_id,
                "description": controller.description,
                "make": controller.make,
                "model": controller.model,
                "ip_address": controller.ip_address,
                "firmware_version": controller.firmware_version,
            }
            yield [guard_value(values[name]) for name in self.columns]

    def stream_export(self, filters: ExportFilters | None = None, options: ExportOptions | None = None) -> Iterator[bytes]:
        """Yield encoded chunks: the header row first, then batches of data rows."""

        filters = filters or ExportFilters()
        options = options or ExportOptions()
        buffer = io.StringIO(newline="")
        writer = csv.writer(
            buffer,
            lineterminator="\n",
            quoting=csv.QUOTE_ALL if options.quote_all else csv.QUOTE_MINIMAL,
        )

        writer.writerow(self.columns)
        yield _drain(buffer, options.encoding)

        pending = 0
        exported = 0
        for record in self.iter_records(filters, options):
            writer.writerow(record)
            pending += 1
            exported += 1
            if pending >= options.chunk_size:
                yield _drain(buffer, options.encoding)
                pending = 0
        if pending:
            yield _drain(buffer, options.encoding)

        record_export(exported)
        current_app.logger.info(
            "Hierarchy export completed",
            extra={"importer_export_rows": exported, "importer_export_filters": _describe_filters(filters)},
        )

    def export(self, filters: ExportFilters | None = None, options: ExportOptions | None = None) -> bytes:
        return b"".join(self.stream_export(filters, options))


def _drain(buffer: io.StringIO, encoding: str) -> bytes:
    chunk = buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)
    return chunk.encode(encoding)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _build_search_predicate(term: str):
    """Case-insensitive substring match across description, make, model, and tag."""
    pattern = f"%{_escape_like(term)}%"
    columns: Sequence = (Controller.description, Controller.make, Controller.model, Controller.tag_id)
    return or_(*(column.ilike(pattern, escape="\\") for column in columns))


def _describe_filters(filters: ExportFilters) -> dict[str, Any]:
    described: dict[str, Any] = {}
    for name in ("site_names", "cell_names", "makes", "models"):
        value = getattr(filters, name)
        if value:
            described[name] = list(value)
    if filters.equipment_types:
        described["equipment_types"] = [member.value for member in filters.equipment_types]
    if filters.created_from:
        described["created_from"] = filters.created_from.isoformat()
    if filters.created_to:
        described["created_to"] = filters.created_to.isoformat()
    if filters.search:
        described["search"] = filters.search
    return described
