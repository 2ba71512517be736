# registry_app/models/hierarchy/enums.py
"""
Enums for hierarchy models.
"""

from enum import Enum as PyEnum


class EquipmentType(PyEnum):
    """Equipment type enumeration"""

    PRESS = "PRESS"
    ROBOT = "ROBOT"
    OVEN = "OVEN"
    CONVEYOR = "CONVEYOR"
    ASSEMBLY_TABLE = "ASSEMBLY_TABLE"
    OTHER = "OTHER"

    @classmethod
    def choices(cls):
        return tuple(member.value for member in cls)

    @classmethod
    def parse(cls, value):
        """Resolve a raw cell value to a member, ignoring case and surrounding whitespace."""
        if isinstance(value, cls):
            return value
        token = str(value or "").strip().upper().replace(" ", "_")
        try:
            return cls(token)
        except ValueError:
            raise ValueError(
                f"Invalid equipment type '{value}'. Must be one of: {', '.join(cls.choices())}"
            ) from None
