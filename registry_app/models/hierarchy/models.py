# registry_app/models/hierarchy/models.py
"""
Site, cell, equipment, and controller models.

The containment chain is total: every controller belongs to exactly one
equipment record, which belongs to one cell, which belongs to one site.
"""

from sqlalchemy import Enum, Index, UniqueConstraint

from ..base import BaseModel, db
from .enums import EquipmentType


class Site(BaseModel):
    """Top-level plant or facility."""

    __tablename__ = "sites"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False, index=True)
    location = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)

    cells = db.relationship("Cell", back_populates="site", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Site {self.name}>"


class Cell(BaseModel):
    """Production cell (line) inside a site, keyed by its line number."""

    __tablename__ = "cells"

    id = db.Column(db.Integer, primary_key=True)
    site_id = db.Column(db.Integer, db.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    line_number = db.Column(db.String(50), nullable=False)
    created_by = db.Column(db.String(64), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)

    site = db.relationship("Site", back_populates="cells")
    equipment = db.relationship("Equipment", back_populates="cell", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("site_id", "line_number", name="uq_cells_site_line_number"),)

    def __repr__(self):
        return f"<Cell {self.name} (line {self.line_number})>"


class Equipment(BaseModel):
    """Physical equipment inside a cell."""

    __tablename__ = "equipment"

    id = db.Column(db.Integer, primary_key=True)
    cell_id = db.Column(db.Integer, db.ForeignKey("cells.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(100), nullable=False)
    equipment_type = db.Column(
        Enum(EquipmentType, name="equipment_type_enum"),
        nullable=False,
        default=EquipmentType.OTHER,
        index=True,
    )
    created_by = db.Column(db.String(64), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)

    cell = db.relationship("Cell", back_populates="equipment")
    controllers = db.relationship("Controller", back_populates="equipment", cascade="all, delete-orphan")

    __table_args__ = (UniqueConstraint("cell_id", "name", name="uq_equipment_cell_name"),)

    def __repr__(self):
        return f"<Equipment {self.name}>"


class Controller(BaseModel):
    """Controller (PLC) attached to a piece of equipment."""

    __tablename__ = "controllers"

    id = db.Column(db.Integer, primary_key=True)
    equipment_id = db.Column(
        db.Integer, db.ForeignKey("equipment.id", ondelete="CASCADE"), nullable=False, index=True
    )
    tag_id = db.Column(db.String(100), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)
    make = db.Column(db.String(100), nullable=True)
    model = db.Column(db.String(100), nullable=True)
    ip_address = db.Column(db.String(45), unique=True, nullable=True)
    firmware_version = db.Column(db.String(50), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    updated_by = db.Column(db.String(64), nullable=True)

    equipment = db.relationship("Equipment", back_populates="controllers")

    __table_args__ = (Index("idx_controllers_make_model", "make", "model"),)

    def __repr__(self):
        return f"<Controller {self.tag_id}>"
