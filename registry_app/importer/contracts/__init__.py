"""Canonical ingest contract helpers for the hierarchy importer."""

from __future__ import annotations

from .hierarchy import (
    FORMULA_PREFIXES,
    HIERARCHY_CANONICAL_FIELDS,
    FieldSpec,
    canonical_ip_address,
    get_hierarchy_field_specs,
    get_hierarchy_header_map,
    get_hierarchy_optional_headers,
    get_hierarchy_required_headers,
    get_hierarchy_supported_headers,
    is_valid_ip_address,
    normalize_header,
    starts_with_formula_prefix,
)

__all__ = [
    "FieldSpec",
    "FORMULA_PREFIXES",
    "HIERARCHY_CANONICAL_FIELDS",
    "get_hierarchy_field_specs",
    "get_hierarchy_required_headers",
    "get_hierarchy_optional_headers",
    "get_hierarchy_supported_headers",
    "get_hierarchy_header_map",
    "normalize_header",
    "starts_with_formula_prefix",
    "is_valid_ip_address",
    "canonical_ip_address",
]
