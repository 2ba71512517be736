"""
Importer adapter implementations.
"""

from .csv_hierarchy import (
    CSVAdapterError,
    CSVStructureError,
    HeaderValidationResult,
    HierarchyCSVAdapter,
    HierarchyCSVRow,
    HierarchyRow,
    decode_payload,
)

__all__ = [
    "CSVAdapterError",
    "CSVStructureError",
    "HeaderValidationResult",
    "HierarchyCSVAdapter",
    "HierarchyCSVRow",
    "HierarchyRow",
    "decode_payload",
]
