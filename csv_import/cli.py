#!/usr/bin/env python3
"""
Command line interface for creating, running and undoing CSV imports.

    csv-import init-db
    csv-import create items.csv --map 0:field:Title --map 2:tag --map 3:file --batch-size 500
    csv-import start 1 [--until-complete]
    csv-import resume 1
    csv-import undo 1
    csv-import progress 1
    csv-import list
    csv-import delete 1
"""
import argparse
import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from csv_import.core.config import settings
from csv_import.core.logging_config import configure_logging
from csv_import.db.session import init_db, session_scope
from csv_import.domain.imports.column_maps import ColumnMap, TargetKind
from csv_import.domain.imports.controller import ImportController
from csv_import.domain.imports.history import create_import, delete_import, get_import, list_imports
from csv_import.domain.imports.jobs import drain_import, run_import_job
from csv_import.integrations.record_store import SqlRecordStore

console = Console()


def parse_column_map(option: str) -> ColumnMap:
    """
    Parse a --map option of the form INDEX:TARGET[:KEY][:DELIMITER].

    Examples: "0:field:Title", "2:tag", "2:tag::;", "3:file".
    """
    parts = option.split(":")
    if len(parts) < 2:
        raise argparse.ArgumentTypeError(f"Invalid column map '{option}': expected INDEX:TARGET[:KEY]")
    try:
        column_index = int(parts[0])
        target = TargetKind(parts[1])
    except ValueError:
        raise argparse.ArgumentTypeError(
            f"Invalid column map '{option}': index must be a number and target one of "
            f"{', '.join(kind.value for kind in TargetKind)}"
        )
    key = parts[2] if len(parts) > 2 and parts[2] else None
    delimiter = parts[3] if len(parts) > 3 and parts[3] else ","
    try:
        return ColumnMap(column_index=column_index, target=target, key=key, delimiter=delimiter)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Invalid column map '{option}': {e}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="csv-import", description="Resumable CSV imports with undo.")
    parser.add_argument("--log-level", default=settings.log_level, help="Logging level (default: %(default)s)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("init-db", help="Create the database tables")

    create = subparsers.add_parser("create", help="Register a CSV file for import")
    create.add_argument("file", help="Path of the CSV file")
    create.add_argument("--map", dest="maps", action="append", type=parse_column_map, required=True,
                        metavar="INDEX:TARGET[:KEY][:DELIMITER]", help="Column map (repeatable)")
    create.add_argument("--delimiter", default=",", help="Column delimiter (default: %(default)r)")
    create.add_argument("--collection-id", type=int)
    create.add_argument("--item-type-id", type=int)
    create.add_argument("--public", action="store_true", help="Make created items public")
    create.add_argument("--featured", action="store_true", help="Feature created items")
    create.add_argument("--batch-size", type=int, default=0, help="Items per job before pausing (0 = no batching)")

    for name, help_text in (
        ("start", "Start an import"),
        ("resume", "Resume a paused import"),
        ("undo", "Delete every item an import created"),
        ("progress", "Show an import's progress"),
        ("delete", "Delete an import and its stored CSV file"),
    ):
        command = subparsers.add_parser(name, help=help_text)
        command.add_argument("import_id", type=int)
        if name in ("start", "resume"):
            command.add_argument("--batch-size", type=int, help="Override the import's batch size")
        if name == "start":
            command.add_argument("--until-complete", action="store_true",
                                 help="Keep resuming after each batch until the import ends")

    listing = subparsers.add_parser("list", help="List recent imports")
    listing.add_argument("--limit", type=int, default=20)
    return parser


def _print_imports(imports) -> None:
    table = Table(title="CSV Imports")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("File", style="white")
    table.add_column("Status", style="green")
    table.add_column("Skipped Rows", justify="right")
    table.add_column("Skipped Items", justify="right")
    table.add_column("Added", style="dim")
    for import_ in imports:
        table.add_row(
            str(import_.id),
            import_.original_filename or "",
            import_.status or "Not started",
            str(import_.skipped_row_count),
            str(import_.skipped_item_count),
            import_.added.strftime("%Y-%m-%d %H:%M") if import_.added else "",
        )
    console.print(table)


def _print_progress(session, import_id: int) -> int:
    import_ = get_import(session, import_id)
    if import_ is None:
        console.print(f"[red]Import {import_id} not found[/red]")
        return 1
    summary = ImportController(session, import_, SqlRecordStore(session)).progress_summary()
    table = Table(title=f"Import {import_id}: {import_.original_filename}")
    table.add_column("Status", style="green")
    for key in summary:
        table.add_column(key, justify="right")
    table.add_row(import_.status or "Not started", *[str(value) for value in summary.values()])
    console.print(table)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, settings.log_file or None)

    if args.command == "init-db":
        init_db()
        console.print("[green]✓ Database tables initialized[/green]")
        return 0

    if args.command == "create":
        with session_scope() as session:
            import_ = create_import(
                session,
                args.file,
                args.maps,
                delimiter=args.delimiter,
                collection_id=args.collection_id,
                item_type_id=args.item_type_id,
                is_public=args.public,
                is_featured=args.featured,
                batch_size=args.batch_size,
            )
            console.print(f"[green]✓ Created import {import_.id}[/green]")
        return 0

    if args.command == "list":
        with session_scope() as session:
            _print_imports(list_imports(session, limit=args.limit))
        return 0

    if args.command == "progress":
        with session_scope() as session:
            return _print_progress(session, args.import_id)

    if args.command == "delete":
        with session_scope() as session:
            import_ = get_import(session, args.import_id)
            if import_ is None:
                console.print(f"[red]Import {args.import_id} not found[/red]")
                return 1
            delete_import(session, import_)
        console.print(f"[green]✓ Deleted import {args.import_id}[/green]")
        return 0

    if args.command == "start" and args.until_complete:
        jobs = drain_import(args.import_id, batch_size=args.batch_size)
        console.print(f"Ran {jobs} job(s)")
        ok = True
    else:
        ok = run_import_job(args.import_id, args.command, batch_size=getattr(args, "batch_size", None))

    with session_scope() as session:
        _print_progress(session, args.import_id)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
