# registry_app/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .hierarchy import Cell, Controller, Equipment, EquipmentType, Site
from .importer import ImportRun, ImportRunStatus

__all__ = [
    "db",
    "BaseModel",
    # Hierarchy models
    "Site",
    "Cell",
    "Equipment",
    "Controller",
    "EquipmentType",
    # Importer models
    "ImportRun",
    "ImportRunStatus",
]
