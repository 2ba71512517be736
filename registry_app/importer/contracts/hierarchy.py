"""Canonical hierarchy ingest contract definitions.

Single source of truth for the delimited file layout shared by the template,
the validator, the import pipeline, and the exporter. Column order here is the
order used for the template and for exports.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from typing import Callable, Mapping, Tuple

Normalizer = Callable[[object | None], object | None]


def _strip_to_none(value: object | None) -> object | None:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


# -------------------------------------------------------------------------
# Address handling
# -------------------------------------------------------------------------

_IPV4_OCTET = re.compile(r"[0-9]{1,3}")
_IPV6_GROUP = re.compile(r"[0-9A-Fa-f]{1,4}")


def is_valid_ipv4(value: str) -> bool:
    parts = value.split(".")
    if len(parts) != 4:
        return False
    return all(_IPV4_OCTET.fullmatch(part) and int(part) <= 255 for part in parts)


def is_valid_ipv6(value: str) -> bool:
    if "::" in value:
        if value.count("::") != 1:
            return False
        head, tail = value.split("::")
        groups = (head.split(":") if head else []) + (tail.split(":") if tail else [])
        if len(groups) >= 8:
            return False
    else:
        groups = value.split(":")
        if len(groups) != 8:
            return False
    return all(_IPV6_GROUP.fullmatch(group) for group in groups)


def is_valid_ip_address(value: str | None) -> bool:
    """Accept dotted-quad IPv4 or IPv6 (full form or a single ``::`` compression)."""

    if not value:
        return False
    return is_valid_ipv4(value) or is_valid_ipv6(value)


def canonical_ip_address(value: str) -> str:
    """
    Return the single stored spelling of an address.

    IPv4 octets lose leading zeros; IPv6 is lower-cased and compressed, so
    ``FE80:0:0:0:0:0:0:1`` and ``fe80::1`` compare equal.
    """

    if is_valid_ipv4(value):
        return ".".join(str(int(part)) for part in value.split("."))
    if is_valid_ipv6(value):
        return ipaddress.IPv6Address(value).compressed
    raise ValueError(f"Invalid IP address '{value}'.")


def _normalize_ip_address(value: object | None) -> object | None:
    # Invalid values pass through untouched for the row rules to report.
    value = _strip_to_none(value)
    if isinstance(value, str) and is_valid_ip_address(value):
        return canonical_ip_address(value)
    return value


@dataclass(frozen=True)
class FieldSpec:
    """Metadata describing a canonical ingest column."""

    name: str
    description: str
    required: bool = False
    max_length: int | None = None
    min_length: int | None = None
    example: str = ""
    normalizer: Normalizer | None = _strip_to_none


HIERARCHY_CANONICAL_FIELDS: Tuple[FieldSpec, ...] = (
    FieldSpec(
        name="site_name",
        description="Site (plant) name; unique across the registry.",
        required=True,
        max_length=100,
        example="Plant A",
    ),
    FieldSpec(
        name="cell_name",
        description="Cell display name.",
        required=True,
        max_length=100,
        example="Line 1",
    ),
    FieldSpec(
        name="line_number",
        description="Line number identifying the cell inside its site.",
        required=True,
        max_length=50,
        example="001",
    ),
    FieldSpec(
        name="equipment_name",
        description="Equipment name; unique inside its cell.",
        required=True,
        max_length=100,
        example="Robot 1",
    ),
    FieldSpec(
        name="equipment_type",
        description="Equipment category (PRESS, ROBOT, OVEN, CONVEYOR, ASSEMBLY_TABLE, OTHER).",
        required=True,
        example="ROBOT",
    ),
    FieldSpec(
        name="tag_id",
        description="Controller tag; unique across the registry.",
        required=True,
        min_length=3,
        max_length=100,
        example="ROBOT_001",
    ),
    FieldSpec(
        name="description",
        description="Free-text controller description.",
        required=True,
        example="Main assembly robot controller",
    ),
    FieldSpec(
        name="make",
        description="Controller manufacturer.",
        required=True,
        max_length=100,
        example="ABB",
    ),
    FieldSpec(
        name="model",
        description="Controller model.",
        required=True,
        max_length=100,
        example="IRB 2600",
    ),
    FieldSpec(
        name="ip_address",
        description="IPv4 or IPv6 address; unique across the registry when present.",
        required=False,
        example="192.168.1.100",
        normalizer=_normalize_ip_address,
    ),
    FieldSpec(
        name="firmware_version",
        description="Controller firmware version.",
        required=False,
        max_length=50,
        example="7.10.1",
    ),
)


def get_hierarchy_field_specs() -> Tuple[FieldSpec, ...]:
    """Return the canonical hierarchy field specifications."""

    return HIERARCHY_CANONICAL_FIELDS


def get_hierarchy_required_headers() -> Tuple[str, ...]:
    """Headers that must be present in every import file."""

    return tuple(field.name for field in HIERARCHY_CANONICAL_FIELDS if field.required)


def get_hierarchy_optional_headers() -> Tuple[str, ...]:
    return tuple(field.name for field in HIERARCHY_CANONICAL_FIELDS if not field.required)


def get_hierarchy_supported_headers() -> Tuple[str, ...]:
    """Return all canonical header names, in file order."""

    return tuple(field.name for field in HIERARCHY_CANONICAL_FIELDS)


def get_hierarchy_header_map() -> Mapping[str, str]:
    """Map normalized header tokens to canonical names."""

    return {normalize_header(field.name): field.name for field in HIERARCHY_CANONICAL_FIELDS}


def normalize_header(header: str) -> str:
    """Normalize a header for comparison (case/space/BOM agnostic)."""

    token = (header or "").strip().lstrip("\ufeff").strip().lower()
    for char in (" ", "-", "."):
        token = token.replace(char, "_")
    return token


FORMULA_PREFIXES: Tuple[str, ...] = ("=", "+", "-", "@")


def starts_with_formula_prefix(value: object | None) -> bool:
    """Return True when a cell value would be evaluated as a spreadsheet formula."""

    return isinstance(value, str) and value[:1] in FORMULA_PREFIXES
