"""CLI para importar exportaciones de Glooko y consultar lo guardado."""

from __future__ import annotations

import argparse
import logging
from dataclasses import replace
from datetime import date, timedelta
from pathlib import Path

from glooko_ingest.config import BACKENDS, Settings, open_table
from glooko_ingest.consolidate import daily_report
from glooko_ingest.excel_writer import ExcelLayout, write_report_xlsx
from glooko_ingest.pipeline import run_import
from glooko_ingest.queries import RecordQueries
from glooko_ingest.sources.base import SourcePaths
from glooko_ingest.sources.glooko import GlookoExportSource
from glooko_ingest.storage import RecordStore
from glooko_ingest.timestamps import from_ms, start_of_day_ms

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

EXIT_OK = 0
EXIT_MISSING_SOURCE = 1
EXIT_STORE_ERRORS = 2


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging for CLI runs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments.

    Returns:
        Parsed argparse namespace.
    """
    parser = argparse.ArgumentParser(
        description="Import Glooko exports into an idempotent record table."
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logs.")
    parser.add_argument("--user", help="User id (default: GLOOKO_USER_ID).")
    parser.add_argument(
        "--backend", choices=BACKENDS, help="Table backend (default: sqlite)."
    )
    parser.add_argument("--db", help="SQLite file (default: GLOOKO_DB_PATH).")
    parser.add_argument("--tz", help="Timezone of the export timestamps.")
    sub = parser.add_subparsers(dest="command", required=True)

    ingest = sub.add_parser("ingest", help="Import one export.")
    ingest.add_argument(
        "path",
        nargs="?",
        help="ZIP or CSV directory (default: newest in GLOOKO_EXPORT_DIR).",
    )

    summary = sub.add_parser("summary", help="Recent insulin and carbs.")
    summary.add_argument("--hours", type=float, default=4.0)

    daily = sub.add_parser("daily", help="Daily insulin totals.")
    daily.add_argument("--start", required=True, help="YYYY-MM-DD")
    daily.add_argument("--end", required=True, help="YYYY-MM-DD")

    imports = sub.add_parser("imports", help="Recent import runs.")
    imports.add_argument("--limit", type=int, default=10)

    report = sub.add_parser("report", help="Daily report as XLSX.")
    report.add_argument("--start", required=True, help="YYYY-MM-DD")
    report.add_argument("--end", required=True, help="YYYY-MM-DD")
    report.add_argument("--out", help="Output path (default: ./glooko_START_END.xlsx).")

    return parser.parse_args(argv)


def _settings(ns: argparse.Namespace) -> Settings:
    settings = Settings.from_env()
    overrides: dict[str, object] = {}
    if ns.user:
        overrides["user_id"] = ns.user
    if ns.backend:
        overrides["backend"] = ns.backend
    if ns.db:
        overrides["db_path"] = Path(ns.db)
    if ns.tz:
        overrides["source_tz"] = ns.tz
    return replace(settings, **overrides)


def _ingest(ns: argparse.Namespace, settings: Settings) -> int:
    source = GlookoExportSource(SourcePaths(root=settings.export_dir.expanduser()))
    try:
        if ns.path:
            path = Path(ns.path).expanduser()
        else:
            source.validate()
            path = source.newest_export()
        files = source.load_files(path)
    except (FileNotFoundError, ValueError) as exc:
        print(f"ERROR: export not available: {exc}")
        return EXIT_MISSING_SOURCE

    outcome = run_import(
        files,
        open_table(settings),
        settings.user_id,
        batch_size=settings.batch_size,
        zone=settings.zone,
    )
    meta = outcome.metadata
    print(f"OK: Export: {path}")
    print(
        f"OK: Records: {meta.total_records} "
        f"({meta.data_start_date}..{meta.data_end_date})"
    )
    for record_type, count in sorted(meta.record_counts.items()):
        print(f"    {record_type}: {count}")
    print(
        f"OK: Written: {outcome.store.written}, "
        f"duplicates: {outcome.store.duplicates}"
    )
    for error in meta.errors:
        print(f"WARN: {error}")
    return EXIT_STORE_ERRORS if outcome.store.errors else EXIT_OK


def _summary(ns: argparse.Namespace, settings: Settings) -> int:
    queries = RecordQueries(open_table(settings), settings.user_id, settings.zone)
    result = queries.get_treatment_summary(window_hours=ns.hours)
    print(
        f"Last {ns.hours:g}h: insulin {result.total_insulin_units:.2f} U, "
        f"carbs {result.total_carbs_grams:.0f} g, boluses {result.bolus_count}"
    )
    for t in result.treatments:
        when = from_ms(t.timestamp, settings.zone).strftime("%Y-%m-%d %H:%M")
        print(f"    {when} {t.kind:<7} {t.value:g}")
    return EXIT_OK


def _daily(ns: argparse.Namespace, settings: Settings) -> int:
    queries = RecordQueries(open_table(settings), settings.user_id, settings.zone)
    totals = queries.query_daily_aggregates_by_date_range(ns.start, ns.end)
    for day, total in sorted(totals.items()):
        print(f"{day}: {total:.2f} U")
    if not totals:
        print("No daily insulin totals in range.")
    return EXIT_OK


def _imports(ns: argparse.Namespace, settings: Settings) -> int:
    store = RecordStore(open_table(settings), settings.user_id)
    for meta in store.recent_imports(limit=ns.limit):
        started = from_ms(meta.started_at, settings.zone).strftime("%Y-%m-%d %H:%M")
        print(
            f"{started} {meta.import_id} {meta.total_records} records "
            f"{meta.data_start_date}..{meta.data_end_date} "
            f"errors={len(meta.errors)}"
        )
    return EXIT_OK


def _report(ns: argparse.Namespace, settings: Settings) -> int:
    zone = settings.zone
    start_ms = start_of_day_ms(ns.start, zone)
    next_day = (date.fromisoformat(ns.end) + timedelta(days=1)).isoformat()
    end_ms = start_of_day_ms(next_day, zone) - 1
    queries = RecordQueries(open_table(settings), settings.user_id, zone)
    records = queries.query_all_types_by_range(start_ms, end_ms)
    df = daily_report(records, zone)

    out_path = Path(ns.out or f"glooko_{ns.start}_{ns.end}.xlsx").expanduser()
    write_report_xlsx(df, out_path, ExcelLayout())
    print(f"OK: Records: {len(records)}")
    print(f"OK: Days: {len(df)}")
    print(f"OK: Output: {out_path}")
    return EXIT_OK


_COMMANDS = {
    "ingest": _ingest,
    "summary": _summary,
    "daily": _daily,
    "imports": _imports,
    "report": _report,
}


def main(argv: list[str] | None = None) -> int:
    """Run the CLI.

    Returns:
        Exit code: 0 on success, 1 when the export is missing, 2 when some
        records could not be stored.
    """
    ns = parse_args(argv)
    configure_logging(ns.verbose)
    settings = _settings(ns)
    logger.debug("Settings: %s", settings)
    return _COMMANDS[ns.command](ns, settings)
