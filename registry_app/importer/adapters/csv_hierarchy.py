"""CSV adapter for equipment hierarchy files.

Responsible for decoding the payload, resolving the header row against the
canonical hierarchy contract, and streaming normalized rows. Header problems
are reported rather than raised so the validator can surface fatal and
informational findings together; only bytes that cannot be read as a
delimited file at all raise ``CSVStructureError``.
"""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Sequence

from registry_app.importer.contracts import (
    FieldSpec,
    get_hierarchy_field_specs,
    get_hierarchy_header_map,
    get_hierarchy_required_headers,
    normalize_header,
)


class CSVAdapterError(Exception):
    """Base exception for CSV adapter failures."""


class CSVStructureError(CSVAdapterError):
    """Raised when the payload cannot be parsed as a delimited text file."""

    def __init__(self, message: str, *, line: int | None = None) -> None:
        detail = f"Line {line}: {message}" if line else message
        super().__init__(f"Unable to parse file. {detail}")
        self.line = line


@dataclass(frozen=True)
class HeaderValidationResult:
    raw_headers: tuple[str, ...]
    canonical_headers: tuple[str | None, ...]
    missing: tuple[str, ...] = ()
    unrecognized: tuple[str, ...] = ()
    duplicates: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.missing and not self.duplicates

    @property
    def present(self) -> tuple[str, ...]:
        return tuple(name for name in self.canonical_headers if name is not None)

    def fatal_messages(self) -> list[str]:
        messages: list[str] = []
        if self.missing:
            messages.append(f"Missing required headers: {', '.join(self.missing)}")
        if self.duplicates:
            messages.append(f"Duplicate headers: {', '.join(self.duplicates)}")
        return messages

    def informational_messages(self) -> list[str]:
        if not self.unrecognized:
            return []
        return [f"Unrecognized headers: {', '.join(self.unrecognized)}"]


@dataclass(frozen=True)
class HierarchyRow:
    """One parsed data line of a hierarchy file."""

    source_line: int
    site_name: str | None = None
    cell_name: str | None = None
    line_number: str | None = None
    equipment_name: str | None = None
    equipment_type: str | None = None
    tag_id: str | None = None
    description: str | None = None
    make: str | None = None
    model: str | None = None
    ip_address: str | None = None
    firmware_version: str | None = None
    extras: Mapping[str, str | None] = field(default_factory=dict)

    def get(self, name: str) -> str | None:
        return getattr(self, name, None)

    def as_dict(self) -> dict[str, str | None]:
        return {spec.name: self.get(spec.name) for spec in get_hierarchy_field_specs()}


@dataclass(frozen=True)
class HierarchyCSVRow:
    """Represents a parsed CSV row with raw and canonical payloads."""

    sequence_number: int
    source_line: int
    raw: dict[str, str | None]
    row: HierarchyRow


@dataclass
class HierarchyCSVStatistics:
    """Accumulated statistics from CSV parsing."""

    rows_processed: int = 0
    rows_skipped_blank: int = 0


def decode_payload(data: bytes | str) -> str:
    """Decode an uploaded payload as UTF-8, tolerating a leading byte-order mark."""

    if isinstance(data, str):
        return data.lstrip("\ufeff")
    try:
        return bytes(data).decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise CSVStructureError(f"File is not valid UTF-8 text ({exc.reason} at byte {exc.start}).") from exc


def resolve_headers(raw_headers: Sequence[str]) -> HeaderValidationResult:
    sanitized = tuple((header or "").strip().lstrip("\ufeff") for header in raw_headers)
    header_map = get_hierarchy_header_map()
    seen: set[str] = set()
    duplicates: list[str] = []
    unrecognized: list[str] = []
    canonical: list[str | None] = []

    for header in sanitized:
        name = header_map.get(normalize_header(header))
        if name is None:
            canonical.append(None)
            if header:
                unrecognized.append(header)
            continue
        if name in seen:
            duplicates.append(name)
            canonical.append(None)
            continue
        seen.add(name)
        canonical.append(name)

    missing = tuple(name for name in get_hierarchy_required_headers() if name not in seen)
    return HeaderValidationResult(
        raw_headers=sanitized,
        canonical_headers=tuple(canonical),
        missing=missing,
        unrecognized=tuple(unrecognized),
        duplicates=tuple(duplicates),
    )


def _row_is_blank(values: Sequence[str]) -> bool:
    return all(not value.strip() for value in values)


class HierarchyCSVAdapter:
    """CSV reader that enforces the hierarchy ingest contract."""

    def __init__(self, data: bytes | str, *, skip_blank_rows: bool = True) -> None:
        self._text = decode_payload(data)
        self.skip_blank_rows = skip_blank_rows
        self._header_result: HeaderValidationResult | None = None
        self.statistics = HierarchyCSVStatistics()
        self._field_specs: dict[str, FieldSpec] = {spec.name: spec for spec in get_hierarchy_field_specs()}

    @property
    def header(self) -> HeaderValidationResult:
        if self._header_result is None:
            self._header_result = self._read_header()
        return self._header_result

    def _reader(self):
        return csv.reader(io.StringIO(self._text, newline=""), strict=True)

    def _read_header(self) -> HeaderValidationResult:
        reader = self._reader()
        try:
            for values in reader:
                if values and not _row_is_blank(values):
                    return resolve_headers(values)
        except csv.Error as exc:
            raise CSVStructureError(str(exc), line=reader.line_num) from exc
        raise CSVStructureError("File is empty or has no header row.")

    def iter_rows(self) -> Iterator[HierarchyCSVRow]:
        """Yield data rows in file order, skipping the header and blank lines."""

        header = self.header
        reader = self._reader()
        sequence_number = 0
        header_seen = False
        try:
            for values in reader:
                if not values or _row_is_blank(values):
                    if not header_seen:
                        continue
                    if self.skip_blank_rows:
                        self.statistics.rows_skipped_blank += 1
                        continue
                elif not header_seen:
                    header_seen = True
                    continue

                sequence_number += 1
                raw = self._map_values(header, values)
                self.statistics.rows_processed += 1
                yield HierarchyCSVRow(
                    sequence_number=sequence_number,
                    source_line=reader.line_num,
                    raw=raw,
                    row=self._build_row(header, raw, values, reader.line_num),
                )
        except csv.Error as exc:
            raise CSVStructureError(str(exc), line=reader.line_num) from exc

    def count_rows(self) -> int:
        return sum(1 for _ in self.iter_rows())

    def _map_values(self, header: HeaderValidationResult, values: Sequence[str]) -> dict[str, str | None]:
        raw: dict[str, str | None] = {}
        for index, name in enumerate(header.canonical_headers):
            if name is None:
                continue
            raw[name] = values[index] if index < len(values) else None
        return raw

    def _build_row(
        self,
        header: HeaderValidationResult,
        raw: Mapping[str, str | None],
        values: Sequence[str],
        source_line: int,
    ) -> HierarchyRow:
        normalized: dict[str, str | None] = {}
        for key, value in raw.items():
            spec = self._field_specs[key]
            normalized[key] = spec.normalizer(value) if spec.normalizer else value

        extras: dict[str, str | None] = {}
        for index, name in enumerate(header.canonical_headers):
            if name is None and index < len(values) and header.raw_headers[index]:
                extras[header.raw_headers[index]] = values[index]

        return HierarchyRow(source_line=source_line, extras=extras, **normalized)
