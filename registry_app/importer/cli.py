"""
CLI commands for the hierarchy importer.

``flask importer`` exposes template generation, validation, imports, exports,
and the run history so operators can work without the web layer.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from flask import current_app
from flask.cli import AppGroup, ScriptInfo
from sqlalchemy.exc import NoResultFound

from registry_app.importer.adapters import CSVStructureError
from registry_app.importer.pipeline import (
    DuplicateHandling,
    ExportFilters,
    ExportOptions,
    FatalImportError,
    ImportResult,
    RunFilters,
    ValidationResult,
)
from registry_app.importer.pipeline.orchestrator import summarize_errors
from registry_app.importer.service import ImportExportService
from registry_app.importer.utils import UnsupportedUploadError, UploadTooLargeError, read_upload
from registry_app.utils.importer import get_max_upload_bytes, is_importer_enabled

_FILE_OPTION = click.Path(path_type=Path, exists=True, dir_okay=False)


@click.group(name="importer", cls=AppGroup, invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """
    Hierarchy import/export commands.

    Lists the available subcommands when invoked without one.
    """
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. " "Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def get_disabled_importer_group() -> click.Group:
    """
    Return a minimal command group that informs the operator the importer is disabled.
    """

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _load_file(file_path: Path) -> tuple[bytes, Optional[str]]:
    try:
        return read_upload(file_path, max_bytes=get_max_upload_bytes(current_app))
    except (UnsupportedUploadError, UploadTooLargeError) as exc:
        raise click.ClickException(str(exc)) from exc


def _format_validation(result: ValidationResult) -> str:
    lines = [
        f"Validation {'passed' if result.is_valid else 'failed'}.",
        f"  total_rows   : {result.total_rows}",
        f"  rows_sampled : {result.rows_sampled}",
        f"  invalid_rows : {result.invalid_row_count}",
    ]
    for message in result.header_errors:
        lines.append(f"  header       : {message}")
    for report in result.row_errors:
        for issue in report.issues:
            lines.append(f"  row {report.row:<8} : [{issue.severity.value}] {issue.field}: {issue.message}")
    return "\n".join(lines)


def _format_result(result: ImportResult) -> str:
    created = result.created_entities
    mode = "validate-only" if result.validate_only else "import"
    run_label = f"Run {result.run_id}" if result.run_id is not None else "Import"
    lines = [
        f"{run_label} finished ({mode}, success={result.success}).",
        f"  total_rows          : {result.total_rows}",
        f"  successful_rows     : {result.successful_rows}",
        f"  failed_rows         : {result.failed_rows}",
        f"  created_sites       : {created.sites}",
        f"  created_cells       : {created.cells}",
        f"  created_equipment   : {created.equipment}",
        f"  created_controllers : {created.controllers}",
        f"  updated_controllers : {result.updated_controllers}",
        f"  skipped_rows        : {result.skipped_rows}",
        f"  background          : {result.is_background}",
    ]
    for error in summarize_errors(result.errors):
        lines.append(f"  row {error['row']:<8} : {error['field'] or '-'}: {error['message']}")
    if len(result.errors) > 10:
        lines.append(f"  ... {len(result.errors) - 10} more error(s)")
    return "\n".join(lines)


@importer_cli.command("template")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Write the template to this file instead of stdout.",
)
def importer_template(output_path: Optional[Path]):
    """Emit a CSV template with the supported headers and one sample row."""
    payload = ImportExportService().template()
    if output_path is None:
        click.echo(payload.decode("utf-8"), nl=False)
        return
    output_path.write_bytes(payload)
    click.echo(f"Template written to {output_path}.")


@importer_cli.command("validate")
@click.option("--file", "file_path", required=True, type=_FILE_OPTION, help="CSV file to validate.")
@click.option("--json", "as_json", is_flag=True, help="Emit the validation result as JSON.")
@click.pass_context
def importer_validate(ctx, file_path: Path, as_json: bool):
    """Check headers and a sample of rows without touching the database."""
    data, _ = _load_file(file_path)
    try:
        result = ImportExportService().validate(data)
    except CSVStructureError as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(result.as_dict(), indent=2, sort_keys=True, default=str))
    else:
        click.echo(_format_validation(result))
    if not result.is_valid:
        ctx.exit(1)


@importer_cli.command("run")
@click.option("--file", "file_path", required=True, type=_FILE_OPTION, help="CSV file to import.")
@click.option("--user", "user_id", default="cli", show_default=True, help="Acting user recorded on created rows.")
@click.option("--create-missing", is_flag=True, help="Create sites, cells, and equipment that do not exist yet.")
@click.option(
    "--duplicate-handling",
    type=click.Choice([member.value for member in DuplicateHandling], case_sensitive=False),
    default=DuplicateHandling.SKIP.value,
    show_default=True,
    help="Policy for rows matching an existing controller.",
)
@click.option("--validate-only", is_flag=True, help="Validate and count rows without writing.")
@click.option(
    "--isolate-rows/--no-isolate-rows",
    default=None,
    help="Discard a failed row's partial writes (defaults to IMPORTER_ISOLATE_ROW_FAILURES).",
)
@click.option("--summary-json", is_flag=True, help="Emit a machine-readable summary payload after completion.")
def importer_run(
    file_path: Path,
    user_id: str,
    create_missing: bool,
    duplicate_handling: str,
    validate_only: bool,
    isolate_rows: Optional[bool],
    summary_json: bool,
):
    """Import a hierarchy CSV file."""
    data, filename = _load_file(file_path)
    service = ImportExportService()
    options = service.default_options(
        create_missing=create_missing,
        duplicate_handling=duplicate_handling,
        validate_only=validate_only,
        isolate_row_failures=isolate_rows,
    )
    try:
        result = service.import_csv(data, options, user_id, filename=filename)
    except CSVStructureError as exc:
        raise click.ClickException(str(exc)) from exc
    except FatalImportError as exc:
        raise click.ClickException(str(exc)) from exc

    click.echo(_format_result(result))
    if summary_json:
        click.echo(json.dumps(result.as_dict(), indent=2, sort_keys=True, default=str))
    if not result.success:
        raise click.ClickException("Import did not complete; see errors above.")


@importer_cli.command("export")
@click.option(
    "--output",
    "output_path",
    type=click.Path(path_type=Path, dir_okay=False),
    help="Write the export to this file instead of stdout.",
)
@click.option("--site", "site_names", multiple=True, help="Restrict to these site names.")
@click.option("--cell", "cell_names", multiple=True, help="Restrict to these cell names.")
@click.option("--type", "equipment_types", multiple=True, help="Restrict to these equipment types.")
@click.option("--make", "makes", multiple=True, help="Restrict to these controller makes.")
@click.option("--model", "models", multiple=True, help="Restrict to these controller models.")
@click.option("--created-from", help="Only controllers created on or after this date (YYYY-MM-DD).")
@click.option("--created-to", help="Only controllers created on or before this date (YYYY-MM-DD).")
@click.option("--search", help="Substring match on description, make, model, or tag.")
@click.option("--quote-all", is_flag=True, help="Quote every field.")
def importer_export(
    output_path: Optional[Path],
    site_names,
    cell_names,
    equipment_types,
    makes,
    models,
    created_from: Optional[str],
    created_to: Optional[str],
    search: Optional[str],
    quote_all: bool,
):
    """Export controllers in the import file layout."""
    try:
        filters = ExportFilters.coerce(
            site_names=site_names,
            cell_names=cell_names,
            equipment_types=equipment_types,
            makes=makes,
            models=models,
            created_from=created_from,
            created_to=created_to,
            search=search,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    chunks = ImportExportService().stream_export(filters, ExportOptions(quote_all=quote_all))
    if output_path is None:
        for chunk in chunks:
            click.echo(chunk.decode("utf-8"), nl=False)
        return
    with output_path.open("wb") as handle:
        for chunk in chunks:
            handle.write(chunk)
    click.echo(f"Export written to {output_path}.")


@importer_cli.command("runs")
@click.option("--status", "statuses", multiple=True, help="Filter by run status.")
@click.option("--user", "users", multiple=True, help="Filter by initiating user.")
@click.option("--search", help="Match run id, filename, or user.")
@click.option("--page", default=1, show_default=True, type=int)
@click.option("--page-size", default=25, show_default=True, type=int)
@click.option("--stats", "show_stats", is_flag=True, help="Print aggregate counts for the matching runs instead.")
@click.option("--json", "as_json", is_flag=True, help="Emit runs as JSON.")
def importer_runs(
    statuses, users, search: Optional[str], page: int, page_size: int, show_stats: bool, as_json: bool
):
    """List recent import runs."""
    try:
        filters = RunFilters.coerce(
            page=page, page_size=page_size, statuses=statuses, initiated_by=users, search=search
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc

    service = ImportExportService()
    if show_stats:
        stats = service.get_run_stats(filters)
        if as_json:
            click.echo(json.dumps(stats.as_dict(), indent=2, sort_keys=True))
            return
        statuses_line = ", ".join(f"{name}={count}" for name, count in sorted(stats.statuses.items())) or "-"
        click.echo(f"Runs: {stats.total} ({statuses_line})")
        click.echo(f"Rows: total={stats.rows_total} failed={stats.rows_failed}")
        return

    listing = service.list_runs(filters)
    if as_json:
        payload = {
            "total": listing.total,
            "page": listing.page,
            "page_size": listing.page_size,
            "total_pages": listing.total_pages,
            "items": [summary.as_dict() for summary in listing.items],
        }
        click.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))
        return

    if not listing.items:
        click.echo("No import runs found.")
        return
    for summary in listing.items:
        click.echo(
            f"{summary.id:>5}  {summary.status:<10}  {summary.initiated_by or '-':<12}  "
            f"{summary.source_filename or '-':<24}  total={summary.total_rows} "
            f"ok={summary.successful_rows} failed={summary.failed_rows}"
        )
    click.echo(f"Page {listing.page} of {listing.total_pages} ({listing.total} run(s)).")


@importer_cli.command("status")
@click.argument("run_id", type=int)
@click.option("--json", "as_json", is_flag=True, help="Emit the run summary as JSON.")
def importer_status(run_id: int, as_json: bool):
    """Show one import run, including the ids of the records it created."""
    try:
        summary = ImportExportService().get_run_summary(run_id)
    except NoResultFound as exc:
        raise click.ClickException(str(exc)) from exc

    if as_json:
        click.echo(json.dumps(summary.as_dict(), indent=2, sort_keys=True, default=str))
        return

    click.echo(f"Run {summary.id}: {summary.status}")
    click.echo(f"  initiated_by        : {summary.initiated_by or '-'}")
    click.echo(f"  source_filename     : {summary.source_filename or '-'}")
    click.echo(
        f"  rows                : total={summary.total_rows} "
        f"ok={summary.successful_rows} failed={summary.failed_rows}"
    )
    for kind, count in summary.created_entities.items():
        ids = summary.created_entity_ids.get(kind) or []
        click.echo(f"  created_{kind:<12}: {count} {ids}")
    if summary.error_summary:
        click.echo(f"  error               : {summary.error_summary}")
