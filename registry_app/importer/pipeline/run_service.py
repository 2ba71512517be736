"""
Service helpers for the import run ledger.

Covers the lifecycle transitions the orchestrator drives (pending ->
processing -> completed/failed) together with the listing, filtering, and
summary helpers used by the CLI history views.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from typing import Any, Iterable, Mapping, Sequence

from sqlalchemy import and_, func, or_
from sqlalchemy.exc import NoResultFound
from sqlalchemy.orm import Session

from registry_app.models import db
from registry_app.models.base import utcnow
from registry_app.models.importer.schema import ImportRun, ImportRunStatus

DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100
DEFAULT_SORT = "-created_at"
MAX_STORED_ERRORS = 500

VALID_SORT_FIELDS = {
    "id": ImportRun.id,
    "run_id": ImportRun.id,
    "status": ImportRun.status,
    "initiated_by": ImportRun.initiated_by,
    "started_at": ImportRun.started_at,
    "finished_at": ImportRun.finished_at,
    "created_at": ImportRun.created_at,
}


@dataclass(frozen=True)
class RunFilters:
    """Canonical set of filter options applied to import run queries."""

    page: int = DEFAULT_PAGE
    page_size: int = DEFAULT_PAGE_SIZE
    sort: str = DEFAULT_SORT
    statuses: tuple[ImportRunStatus, ...] = field(default_factory=tuple)
    initiated_by: tuple[str, ...] = field(default_factory=tuple)
    search: str | None = None
    started_from: datetime | None = None
    started_to: datetime | None = None

    @classmethod
    def coerce(
        cls,
        *,
        page: int | str | None = None,
        page_size: int | str | None = None,
        sort: str | None = None,
        statuses: Iterable[str] | None = None,
        initiated_by: Iterable[str] | None = None,
        search: str | None = None,
        started_from: str | datetime | None = None,
        started_to: str | datetime | None = None,
    ) -> "RunFilters":
        """
        Coerce mixed user input into a validated ``RunFilters`` instance.
        """

        resolved_page = _coerce_positive_int(page, fallback=DEFAULT_PAGE)
        resolved_size = min(_coerce_positive_int(page_size, fallback=DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE)

        resolved_sort = sort or DEFAULT_SORT
        sort_key = resolved_sort.lstrip("-")
        if sort_key not in VALID_SORT_FIELDS:
            raise ValueError(f"Unsupported sort field '{sort_key}'.")

        resolved_statuses: list[ImportRunStatus] = []
        if statuses:
            for value in statuses:
                if value is None or value == "":
                    continue
                resolved_statuses.append(_coerce_status(value))

        resolved_users = tuple(sorted({u.strip() for u in (initiated_by or ()) if u and u.strip()}))

        resolved_search = search.strip() if isinstance(search, str) and search.strip() else None

        resolved_started_from = _coerce_datetime(started_from)
        resolved_started_to = _coerce_datetime(started_to, end_of_day=True)

        if resolved_started_from and resolved_started_to and resolved_started_from > resolved_started_to:
            raise ValueError("started_from must be before started_to.")

        return cls(
            page=resolved_page,
            page_size=resolved_size,
            sort=resolved_sort,
            statuses=tuple(resolved_statuses),
            initiated_by=resolved_users,
            search=resolved_search,
            started_from=resolved_started_from,
            started_to=resolved_started_to,
        )


@dataclass(slots=True)
class RunSummary:
    """Summarized representation of an import run."""

    id: int
    status: str
    initiated_by: str | None
    source_filename: str | None
    started_at: datetime | None
    finished_at: datetime | None
    duration_seconds: float | None
    total_rows: int
    successful_rows: int
    failed_rows: int
    created_entities: Mapping[str, int]
    created_entity_ids: Mapping[str, list[int]]
    error_count: int
    error_summary: str | None
    options: Mapping[str, Any]

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status,
            "initiated_by": self.initiated_by,
            "source_filename": self.source_filename,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "total_rows": self.total_rows,
            "successful_rows": self.successful_rows,
            "failed_rows": self.failed_rows,
            "created_entities": dict(self.created_entities),
            "created_entity_ids": {kind: list(ids) for kind, ids in self.created_entity_ids.items()},
            "error_count": self.error_count,
            "error_summary": self.error_summary,
            "options": dict(self.options),
        }


@dataclass(slots=True)
class RunListResult:
    """Paginated result set for import runs."""

    items: list[RunSummary]
    total: int
    page: int
    page_size: int
    total_pages: int


@dataclass(slots=True)
class RunStats:
    """Aggregate statistics for import runs."""

    total: int
    statuses: Mapping[str, int]
    rows_total: int
    rows_failed: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "statuses": dict(self.statuses),
            "rows_total": self.rows_total,
            "rows_failed": self.rows_failed,
        }


class ImportRunService:
    """Owns ledger transitions and read queries for import runs."""

    def __init__(self, session: Session | None = None) -> None:
        self.session: Session = session or db.session

    # ---------------------------------------------------------------------
    # Lifecycle
    # ---------------------------------------------------------------------

    def create_run(
        self,
        *,
        initiated_by: str | None,
        source_filename: str | None = None,
        options: Mapping[str, Any] | None = None,
    ) -> ImportRun:
        run = ImportRun(
            initiated_by=initiated_by,
            source_filename=source_filename,
            options_json=dict(options or {}),
            status=ImportRunStatus.PENDING,
        )
        self.session.add(run)
        self.session.commit()
        return run

    def mark_processing(self, run: ImportRun, *, total_rows: int) -> ImportRun:
        run.status = ImportRunStatus.PROCESSING
        run.total_rows = total_rows
        run.started_at = utcnow()
        self.session.commit()
        return run

    def mark_completed(
        self,
        run: ImportRun,
        *,
        total_rows: int,
        successful_rows: int,
        failed_rows: int,
        created_entities: Mapping[str, int],
        errors: Sequence[Mapping[str, Any]],
        created_entity_ids: Mapping[str, Sequence[int]] | None = None,
    ) -> ImportRun:
        run.status = ImportRunStatus.COMPLETED
        run.total_rows = total_rows
        run.successful_rows = successful_rows
        run.failed_rows = failed_rows
        run.created_entities_json = dict(created_entities)
        run.created_entity_ids_json = {kind: list(ids) for kind, ids in (created_entity_ids or {}).items()}
        run.errors_json = [dict(error) for error in errors[:MAX_STORED_ERRORS]]
        run.finished_at = utcnow()
        self.session.commit()
        return run

    def mark_failed(self, run_id: int, error: BaseException | str) -> ImportRun | None:
        """
        Record a fatal failure on a run after the caller has rolled back.

        The run is reloaded because the rollback expired every loaded instance.
        """

        run = self.session.get(ImportRun, run_id)
        if run is None:
            return None
        run.status = ImportRunStatus.FAILED
        run.error_summary = str(error) or error.__class__.__name__
        run.finished_at = utcnow()
        self.session.commit()
        return run

    # ---------------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------------

    def list_runs(self, filters: RunFilters) -> RunListResult:
        query = self._apply_filters(self._base_query(), filters, include_sort=False)

        total = query.count()
        if total == 0:
            return RunListResult(items=[], total=0, page=filters.page, page_size=filters.page_size, total_pages=0)

        paginated = (
            query.order_by(_resolve_sort_expression(filters.sort), ImportRun.id.desc())
            .offset((filters.page - 1) * filters.page_size)
            .limit(filters.page_size)
            .all()
        )
        summaries = [self.summarize(run) for run in paginated]

        total_pages = (total + filters.page_size - 1) // filters.page_size
        return RunListResult(
            items=summaries, total=total, page=filters.page, page_size=filters.page_size, total_pages=total_pages
        )

    def get_run(self, run_id: int) -> ImportRun:
        run = self._base_query().filter(ImportRun.id == run_id).one_or_none()
        if run is None:
            raise NoResultFound(f"Import run {run_id} not found.")
        return run

    def get_run_summary(self, run_id: int) -> RunSummary:
        return self.summarize(self.get_run(run_id))

    def get_stats(self, filters: RunFilters | None = None) -> RunStats:
        query = self._apply_filters(self._base_query(), filters or RunFilters(), include_sort=False)

        status_counts = {
            status.value if isinstance(status, ImportRunStatus) else str(status): count
            for status, count in (query.with_entities(ImportRun.status, func.count()).group_by(ImportRun.status).all())
        }
        rows_total, rows_failed = query.with_entities(
            func.coalesce(func.sum(ImportRun.total_rows), 0),
            func.coalesce(func.sum(ImportRun.failed_rows), 0),
        ).one()
        return RunStats(
            total=sum(status_counts.values()),
            statuses=status_counts,
            rows_total=int(rows_total or 0),
            rows_failed=int(rows_failed or 0),
        )

    def summarize(self, run: ImportRun) -> RunSummary:
        duration_seconds: float | None = None
        if run.started_at:
            finished = _as_utc(run.finished_at) or datetime.now(timezone.utc)
            duration_seconds = (finished - _as_utc(run.started_at)).total_seconds()

        return RunSummary(
            id=run.id,
            status=run.status.value if isinstance(run.status, ImportRunStatus) else str(run.status),
            initiated_by=run.initiated_by,
            source_filename=run.source_filename,
            started_at=run.started_at,
            finished_at=run.finished_at,
            duration_seconds=duration_seconds,
            total_rows=run.total_rows or 0,
            successful_rows=run.successful_rows or 0,
            failed_rows=run.failed_rows or 0,
            created_entities=dict(run.created_entities_json or {}),
            created_entity_ids=dict(run.created_entity_ids_json or {}),
            error_count=len(run.errors_json or ()),
            error_summary=run.error_summary,
            options=dict(run.options_json or {}),
        )

    # ---------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------

    def _base_query(self):
        return self.session.query(ImportRun)

    def _apply_filters(self, query, filters: RunFilters, *, include_sort: bool = True):
        predicates = []

        if filters.statuses:
            predicates.append(ImportRun.status.in_(filters.statuses))

        if filters.initiated_by:
            predicates.append(ImportRun.initiated_by.in_(filters.initiated_by))

        if filters.started_from:
            predicates.append(ImportRun.started_at >= filters.started_from)

        if filters.started_to:
            predicates.append(ImportRun.started_at <= filters.started_to)

        if filters.search:
            predicates.append(_build_search_predicate(filters.search))

        if predicates:
            query = query.filter(and_(*predicates))

        if include_sort:
            query = query.order_by(_resolve_sort_expression(filters.sort))

        return query


# -------------------------------------------------------------------------
# Helper functions
# -------------------------------------------------------------------------


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _coerce_positive_int(candidate: int | str | None, *, fallback: int) -> int:
    if candidate in (None, ""):
        return fallback
    if isinstance(candidate, int):
        return max(1, candidate)
    if isinstance(candidate, str) and candidate.isdigit():
        return max(1, int(candidate))
    raise ValueError(f"Expected a positive integer, received '{candidate}'.")


def _coerce_status(value: str | ImportRunStatus) -> ImportRunStatus:
    if isinstance(value, ImportRunStatus):
        return value
    normalized = str(value).strip().lower()
    try:
        return ImportRunStatus(normalized)
    except ValueError:
        raise ValueError(f"Unsupported status filter '{value}'.") from None


def _coerce_datetime(candidate: str | datetime | None, *, end_of_day: bool = False) -> datetime | None:
    if candidate in (None, ""):
        return None
    if isinstance(candidate, datetime):
        return candidate if candidate.tzinfo else candidate.replace(tzinfo=timezone.utc)
    text = str(candidate).strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        if fmt == "%Y-%m-%d":
            parsed = datetime.combine(parsed.date(), time.max if end_of_day else time.min)
        return parsed.replace(tzinfo=timezone.utc)
    raise ValueError(f"Unable to parse datetime value '{candidate}'. Expected ISO-like formats.")


def _resolve_sort_expression(sort: str):
    descending = sort.startswith("-")
    sort_key = sort.lstrip("-")
    expression = VALID_SORT_FIELDS.get(sort_key)
    if expression is None:
        raise ValueError(f"Unsupported sort field '{sort}'.")
    return expression.desc() if descending else expression.asc()


def _build_search_predicate(term: str):
    """Search by run id exact match, filename or initiating user partial matches."""
    like_pattern = f"%{term.lower()}%"
    predicates = [
        func.lower(ImportRun.source_filename).like(like_pattern),
        func.lower(ImportRun.initiated_by).like(like_pattern),
    ]
    if term.isdigit():
        predicates.append(ImportRun.id == int(term))
    return or_(*predicates)
