"""
Duplicate controller reconciliation.

An incoming row is matched to an existing controller by ``tag_id`` first and
by ``ip_address`` only when no tag match exists. The configured
``DuplicateHandling`` policy then decides whether the existing record is left
alone, overwritten, or has its empty fields filled in.
"""

from __future__ import annotations

import enum
from typing import Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from registry_app.importer.adapters import HierarchyRow
from registry_app.models import Controller, Equipment, db

from .outcomes import Created, RowProcessingError, Skipped, Updated

RECONCILED_FIELDS: tuple[str, ...] = ("description", "make", "model", "ip_address", "firmware_version")


class DuplicateHandling(str, enum.Enum):
    """Policy applied when a row matches an existing controller."""

    SKIP = "skip"
    OVERWRITE = "overwrite"
    MERGE = "merge"

    @classmethod
    def coerce(cls, value: "str | DuplicateHandling | None") -> "DuplicateHandling":
        if value is None or value == "":
            return cls.SKIP
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            choices = ", ".join(member.value for member in cls)
            raise ValueError(f"Unsupported duplicate handling '{value}'. Expected one of: {choices}.") from None


def _is_empty(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class DuplicateReconciler:
    """Creates new controllers or applies the duplicate policy to matches."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    def find_existing(self, row: HierarchyRow) -> Controller | None:
        controller = self.session.execute(
            select(Controller).where(Controller.tag_id == row.tag_id)
        ).scalar_one_or_none()
        if controller is not None or not row.ip_address:
            return controller
        return self._find_by_ip(row.ip_address)

    def reconcile(
        self,
        row: HierarchyRow,
        equipment: Equipment,
        *,
        policy: DuplicateHandling,
        user_id: str | None,
    ) -> Created | Updated | Skipped:
        existing = self.find_existing(row)
        if existing is None:
            return self._create(row, equipment, user_id=user_id)

        if policy is DuplicateHandling.SKIP:
            return Skipped(row=row.source_line, controller=existing, reason="duplicate")
        elif policy is DuplicateHandling.OVERWRITE:
            changes = {name: row.get(name) for name in RECONCILED_FIELDS}
            self._ensure_ip_available(existing, changes.get("ip_address"))
            self._apply(existing, changes, user_id=user_id)
            return Updated(row=row.source_line, controller=existing, changed_fields=tuple(changes))
        elif policy is DuplicateHandling.MERGE:
            changes = {
                name: row.get(name)
                for name in RECONCILED_FIELDS
                if _is_empty(getattr(existing, name)) and not _is_empty(row.get(name))
            }
            if not changes:
                return Skipped(row=row.source_line, controller=existing, reason="no_change")
            self._ensure_ip_available(existing, changes.get("ip_address"))
            self._apply(existing, changes, user_id=user_id)
            return Updated(row=row.source_line, controller=existing, changed_fields=tuple(changes))
        raise ValueError(f"Unsupported duplicate handling '{policy}'.")

    def _create(self, row: HierarchyRow, equipment: Equipment, *, user_id: str | None) -> Created:
        controller = Controller(
            equipment_id=equipment.id,
            tag_id=row.tag_id,
            description=row.description,
            make=row.make,
            model=row.model,
            ip_address=row.ip_address or None,
            firmware_version=row.firmware_version,
            created_by=user_id,
            updated_by=user_id,
        )
        self.session.add(controller)
        return Created(row=row.source_line, controller=controller)

    def _apply(self, controller: Controller, changes: Mapping[str, str | None], *, user_id: str | None) -> None:
        for name, value in changes.items():
            setattr(controller, name, value or None)
        controller.updated_by = user_id

    def _ensure_ip_available(self, controller: Controller, ip_address: str | None) -> None:
        if not ip_address or ip_address == controller.ip_address:
            return
        holder = self._find_by_ip(ip_address)
        if holder is not None and holder.id != controller.id:
            raise RowProcessingError(
                f"IP address '{ip_address}' is already assigned to controller '{holder.tag_id}'",
                field="ip_address",
                value=ip_address,
            )

    def _find_by_ip(self, ip_address: str) -> Controller | None:
        return self.session.execute(
            select(Controller).where(Controller.ip_address == ip_address)
        ).scalar_one_or_none()
