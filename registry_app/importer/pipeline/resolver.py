"""
Resolve (or create) the site, cell, and equipment a row points at.

Lookups go through ``HierarchyCache`` first so that a parent created by an
earlier row of the same file is reused rather than looked up again. Records
created by the row being processed are held as *pending* until the caller
either keeps the row (``commit_pending``) or rolls its savepoint back
(``discard_pending``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable

from flask import current_app
from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_app.importer.adapters import HierarchyRow
from registry_app.models import Cell, Equipment, EquipmentType, Site, db

from .outcomes import CreatedEntities, RowProcessingError

_KINDS = ("site", "cell", "equipment")


@dataclass(frozen=True)
class ResolvedHierarchy:
    site: Site
    cell: Cell
    equipment: Equipment


@dataclass
class HierarchyCache:
    """Natural-key lookup cache for one import run."""

    entries: dict[str, dict[Hashable, Any]] = field(default_factory=lambda: {kind: {} for kind in _KINDS})
    pending: dict[str, dict[Hashable, Any]] = field(default_factory=lambda: {kind: {} for kind in _KINDS})
    hits: int = 0
    misses: int = 0

    def get(self, kind: str, key: Hashable) -> Any | None:
        found = self.pending[kind].get(key)
        if found is None:
            found = self.entries[kind].get(key)
        if found is None:
            self.misses += 1
        else:
            self.hits += 1
        return found

    def remember(self, kind: str, key: Hashable, entity: Any) -> None:
        self.entries[kind][key] = entity

    def stage(self, kind: str, key: Hashable, entity: Any) -> None:
        self.pending[kind][key] = entity

    def commit_pending(self) -> None:
        for kind in _KINDS:
            self.entries[kind].update(self.pending[kind])
            self.pending[kind].clear()

    def discard_pending(self) -> None:
        for kind in _KINDS:
            self.pending[kind].clear()


class HierarchyResolver:
    """Walks site -> cell -> equipment for a row, creating parents on request."""

    def __init__(self, session: Session | None = None, cache: HierarchyCache | None = None) -> None:
        self.session: Session = session or db.session
        self.cache = cache if cache is not None else HierarchyCache()

    def resolve(
        self,
        row: HierarchyRow,
        *,
        create_missing: bool,
        user_id: str | None,
        created: CreatedEntities | None = None,
    ) -> ResolvedHierarchy:
        """
        Return the row's parents, raising ``RowProcessingError`` naming the
        first missing level when ``create_missing`` is off.

        ``created`` is incremented in place as records are added so callers
        can still see partial creations if a later step of the row fails.
        """

        created = created if created is not None else CreatedEntities()
        site = self._resolve_site(row, create_missing=create_missing, user_id=user_id, created=created)
        cell = self._resolve_cell(row, site, create_missing=create_missing, user_id=user_id, created=created)
        equipment = self._resolve_equipment(
            row, site, cell, create_missing=create_missing, user_id=user_id, created=created
        )
        return ResolvedHierarchy(site=site, cell=cell, equipment=equipment)

    def _resolve_site(self, row: HierarchyRow, *, create_missing: bool, user_id, created: CreatedEntities) -> Site:
        key = row.site_name
        site = self.cache.get("site", key)
        if site is not None:
            return site

        site = self.session.execute(select(Site).where(Site.name == key)).scalar_one_or_none()
        if site is not None:
            self.cache.remember("site", key, site)
            return site

        if not create_missing:
            raise RowProcessingError(f"Site '{row.site_name}' not found", field="site_name", value=row.site_name)

        site = Site(name=row.site_name, created_by=user_id, updated_by=user_id)
        self._add(site)
        created.record("sites", site.id)
        self.cache.stage("site", key, site)
        current_app.logger.debug("Created site %s", site.name, extra={"importer_row": row.source_line})
        return site

    def _resolve_cell(
        self, row: HierarchyRow, site: Site, *, create_missing: bool, user_id, created: CreatedEntities
    ) -> Cell:
        key = (site.id, row.line_number)
        cell = self.cache.get("cell", key)
        if cell is not None:
            return cell

        cell = self.session.execute(
            select(Cell).where(Cell.site_id == site.id, Cell.line_number == row.line_number)
        ).scalar_one_or_none()
        if cell is not None:
            self.cache.remember("cell", key, cell)
            return cell

        if not create_missing:
            raise RowProcessingError(
                f"Cell '{row.cell_name}' (line {row.line_number}) not found in site '{site.name}'",
                field="cell_name",
                value=row.cell_name,
            )

        cell = Cell(
            site_id=site.id,
            name=row.cell_name,
            line_number=row.line_number,
            created_by=user_id,
            updated_by=user_id,
        )
        self._add(cell)
        created.record("cells", cell.id)
        self.cache.stage("cell", key, cell)
        return cell

    def _resolve_equipment(
        self,
        row: HierarchyRow,
        site: Site,
        cell: Cell,
        *,
        create_missing: bool,
        user_id,
        created: CreatedEntities,
    ) -> Equipment:
        key = (cell.id, row.equipment_name)
        equipment = self.cache.get("equipment", key)
        if equipment is not None:
            return equipment

        equipment = self.session.execute(
            select(Equipment).where(Equipment.cell_id == cell.id, Equipment.name == row.equipment_name)
        ).scalar_one_or_none()
        if equipment is not None:
            self.cache.remember("equipment", key, equipment)
            return equipment

        if not create_missing:
            raise RowProcessingError(
                f"Equipment '{row.equipment_name}' not found in cell '{cell.name}' at site '{site.name}'",
                field="equipment_name",
                value=row.equipment_name,
            )

        try:
            equipment_type = EquipmentType.parse(row.equipment_type)
        except ValueError as exc:
            raise RowProcessingError(str(exc), field="equipment_type", value=row.equipment_type) from exc

        equipment = Equipment(
            cell_id=cell.id,
            name=row.equipment_name,
            equipment_type=equipment_type,
            created_by=user_id,
            updated_by=user_id,
        )
        self._add(equipment)
        created.record("equipment", equipment.id)
        self.cache.stage("equipment", key, equipment)
        return equipment

    def _add(self, entity) -> None:
        # Flush so the generated id is available as the next level's cache key.
        self.session.add(entity)
        self.session.flush()
