"""
Equipment hierarchy models package
"""

from .enums import EquipmentType
from .models import Cell, Controller, Equipment, Site

__all__ = [
    "EquipmentType",
    "Site",
    "Cell",
    "Equipment",
    "Controller",
]
