from __future__ import annotations

import argparse
from datetime import date
from pathlib import Path
import sys

import pandas as pd

from .catalog import apply_duplicate_merge, build_course_groups
from .compliance import PERIODS, ComplianceConfig, expiring_training
from .dates import parse_report_date
from .db import init_db
from .external import import_external_file
from .io_excel import write_csv, write_xlsx
from .paths import resolve_db_path, resolve_duckdb_path, resolve_report_dir
from .reconcile import (
    apply_migration,
    apply_training_import,
    compare_employee,
    course_compare_report,
    gaps_report,
    plan_migration,
    plan_training_import,
)
from .snapshot import export_snapshot


def _log(message: str) -> None:
    print(message, file=sys.stderr)


def _db_path(args: argparse.Namespace) -> Path:
    return resolve_db_path(getattr(args, "db", None))


def _as_of(args: argparse.Namespace) -> date:
    raw = getattr(args, "as_of", None)
    if not raw:
        return date.today()
    parsed = parse_report_date(raw)
    if parsed is None:
        raise ValueError(f"Invalid --as-of date: {raw}")
    return parsed


def _report_path(args: argparse.Namespace, stem: str) -> Path:
    if getattr(args, "out", None):
        return Path(args.out)
    stamp = date.today().strftime("%Y%m%d")
    return resolve_report_dir() / f"{stem}_{stamp}.xlsx"


def cmd_init_db(args: argparse.Namespace) -> int:
    path = _db_path(args)
    init_db(path)
    print(f"Initialized {path}")
    return 0


def cmd_import_external(args: argparse.Namespace) -> int:
    src = Path(args.report)
    if not src.exists():
        print(f"File not found: {src}", file=sys.stderr)
        return 2
    sheet: str | int | None = args.sheet
    if sheet is not None and str(sheet).isdigit():
        sheet = int(sheet)
    engine = init_db(_db_path(args))
    with engine.begin() as conn:
        rows = import_external_file(conn, src, sheet=sheet, header_row=args.header_row, log=_log)
    print(f"Imported {rows} external training rows from {src}")
    return 0


def cmd_compare(args: argparse.Namespace) -> int:
    engine = init_db(_db_path(args))
    with engine.connect() as conn:
        result = compare_employee(conn, args.name)
    if not result["found"]:
        print(result["message"])
        if result["suggestions"]:
            print("Did you mean:")
            for s in result["suggestions"]:
                print(f"  - {s}")
        return 1
    print(f"External name: {result['csv_name']}")
    if not result["in_database"]:
        print("  Employee not found in database")
        for cand in result.get("candidates") or []:
            print(f"  candidate: {cand}")
        return 0
    emp = result["employee"]
    print(f"  Employee: {emp['employee_name']} (id {emp['employee_id']}, match {emp['match']})")
    for key, value in result["summary"].items():
        print(f"  {key.replace('_', ' ')}: {value}")
    for section, rows in result["records"].items():
        if not rows:
            continue
        print(f"[{section.replace('_', ' ')}]")
        for r in rows:
            flag = " (dup)" if r.get("is_duplicate") else ""
            print(f"  {r['requirement']} | expires {r.get('expiration_date') or '-'}{flag}")
    return 0


def cmd_gaps(args: argparse.Namespace) -> int:
    out = _report_path(args, "external_training_gaps")
    engine = init_db(_db_path(args))
    with engine.connect() as conn:
        counts = gaps_report(conn, out)
    for key, value in counts.items():
        print(f"{key}: {value}")
    print(f"Wrote {out}")
    return 0


def cmd_course_compare(args: argparse.Namespace) -> int:
    out = _report_path(args, "course_comparison")
    engine = init_db(_db_path(args))
    with engine.connect() as conn:
        summary = course_compare_report(conn, out, as_of=_as_of(args))
    for key, value in summary.items():
        print(f"{key.replace('_', ' ')}: {value}")
    print(f"Wrote {out}")
    return 0


def cmd_import_training(args: argparse.Namespace) -> int:
    engine = init_db(_db_path(args))
    with engine.begin() as conn:
        plan = plan_training_import(conn)
        for key, value in plan.counts.items():
            print(f"{key.replace('_', ' ')}: {value}")
        if not args.apply:
            if not plan.actions.empty:
                print(plan.actions.head(20).to_string(index=False))
            print("Preview only; re-run with --apply to write changes")
            return 0
        result = apply_training_import(conn, plan, log=_log)
    print(f"Updated {result['updated']}, inserted {result['inserted']} training records")
    return 0


def cmd_migrate(args: argparse.Namespace) -> int:
    if not args.all and not args.name:
        print("Use --name NAME (repeatable) or --all", file=sys.stderr)
        return 2
    engine = init_db(_db_path(args))
    with engine.begin() as conn:
        plan = plan_migration(conn, None if args.all else args.name)
        for skipped in plan.skipped:
            print(f"skip {skipped['name']}: {skipped['reason']}")
        for entry in plan.entries:
            print(f"{entry.employee_name} -> {entry.position_name}: {len(entry.courses)} course(s)")
        if not args.apply:
            print("Dry run; re-run with --apply to create positions and training")
            return 0
        summary = apply_migration(conn, plan, log=_log)
    for key, value in summary.items():
        print(f"{key.replace('_', ' ')}: {value}")
    return 0


def cmd_merge_duplicates(args: argparse.Namespace) -> int:
    engine = init_db(_db_path(args))
    with engine.begin() as conn:
        summary = apply_duplicate_merge(conn, dry_run=not args.apply, log=_log)
    for group in summary["groups"]:
        print(f"{group['course_name']}: keep {group['keep_id']}, merge {', '.join(group['merge_ids'])}")
    print(
        f"courses merged: {summary['courses_merged']}, positions moved: {summary['positions_moved']}, "
        f"training moved: {summary['training_moved']}, groups removed: {summary['groups_removed']}"
    )
    if not args.apply:
        print("Dry run; re-run with --apply to merge")
    return 0


def cmd_build_groups(args: argparse.Namespace) -> int:
    engine = init_db(_db_path(args))
    with engine.begin() as conn:
        result = build_course_groups(conn, log=_log)
    print(f"groups created: {result['groups_created']}, members added: {result['members_added']}")
    return 0


def cmd_expiring(args: argparse.Namespace) -> int:
    cfg = ComplianceConfig(expiring_window_days=args.window)
    engine = init_db(_db_path(args))
    with engine.connect() as conn:
        df = expiring_training(conn, args.period, as_of=_as_of(args), cfg=cfg, limit=args.limit)
    if args.out:
        out = Path(args.out)
        if out.suffix.lower() == ".csv":
            write_csv(df, out)
        else:
            write_xlsx(df, out)
        print(f"Wrote {len(df)} rows to {out}")
        return 0
    if df.empty:
        print("No training records in this period")
        return 0
    cols = ["badge_id", "employee_name", "course_name", "expiration_date", "days_to_expiry", "status"]
    with pd.option_context("display.width", 200, "display.max_colwidth", 60):
        print(df[cols].to_string(index=False))
    return 0


def cmd_export_duckdb(args: argparse.Namespace) -> int:
    target = resolve_duckdb_path(args.duckdb)
    written = export_snapshot(_db_path(args), target, as_of=_as_of(args), log=_log)
    print(f"Wrote {', '.join(f'{t} ({n})' for t, n in written.items()) or 'nothing'} to {target}")
    return 0


def cmd_app(args: argparse.Namespace) -> int:
    from .webapp import run

    run(host=args.host, port=args.port, db_path=getattr(args, "db", None))
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="training_registry", description="Training compliance utilities")
    p.add_argument("--db", help="SQLite database path (default: env TRAINING_DB_PATH or <data root>/training.sqlite)")
    sub = p.add_subparsers(dest="cmd", required=True)

    pi = sub.add_parser("init-db", help="Create the database schema")
    pi.set_defaults(func=cmd_init_db)

    px = sub.add_parser("import-external", help="Load an external training report (CSV/XLS/XLSX)")
    px.add_argument("report", help="Path to the report file")
    px.add_argument("--sheet", help="Sheet name or index (default: first sheet)")
    px.add_argument("--header-row", dest="header_row", type=int, help="Override header row index (0-based)")
    px.set_defaults(func=cmd_import_external)

    pc = sub.add_parser("compare", help="Compare one person's external records with the database")
    pc.add_argument("name", help="Associate name (substring or 'Last, First')")
    pc.set_defaults(func=cmd_compare)

    pg = sub.add_parser("gaps", help="Write the external training gaps workbook")
    pg.add_argument("--out", help="Output XLSX path (default: reports dir)")
    pg.set_defaults(func=cmd_gaps)

    pcc = sub.add_parser("course-compare", help="Write the course comparison workbook")
    pcc.add_argument("--out", help="Output XLSX path (default: reports dir)")
    pcc.add_argument("--as-of", dest="as_of", help="Reference date YYYY-MM-DD (default: today)")
    pcc.set_defaults(func=cmd_course_compare)

    pt = sub.add_parser("import-training", help="Fill training records from the external report")
    pt.add_argument("--apply", action="store_true", help="Write changes (default: preview)")
    pt.set_defaults(func=cmd_import_training)

    pm = sub.add_parser("migrate", help="Move report-only courses into per-employee MG_ positions")
    pm.add_argument("--name", action="append", help="Associate name to migrate (repeatable)")
    pm.add_argument("--all", action="store_true", help="Migrate every employee with missing courses")
    pm.add_argument("--apply", action="store_true", help="Write changes (default: dry run)")
    pm.set_defaults(func=cmd_migrate)

    pd_ = sub.add_parser(
        "merge-duplicates", help="Merge courses with the same name into the most-used id (lowest id on ties)"
    )
    pd_.add_argument("--apply", action="store_true", help="Write changes (default: dry run)")
    pd_.set_defaults(func=cmd_merge_duplicates)

    pb = sub.add_parser("build-groups", help="Group courses sharing a T-code")
    pb.set_defaults(func=cmd_build_groups)

    pe = sub.add_parser("expiring", help="List training expiring within a period")
    pe.add_argument("--period", choices=list(PERIODS), default="30days", help="Period (default: 30days)")
    pe.add_argument("--as-of", dest="as_of", help="Reference date YYYY-MM-DD (default: today)")
    pe.add_argument("--window", type=int, default=30, help="Days before expiry counted as expiring soon (default: 30)")
    pe.add_argument("--limit", type=int, default=None, help="Maximum rows (default: all)")
    pe.add_argument("--out", help="Optional CSV/XLSX output path")
    pe.set_defaults(func=cmd_expiring)

    pdk = sub.add_parser("export-duckdb", help="Export an analysis snapshot to DuckDB")
    pdk.add_argument("--duckdb", help="DuckDB path (default: env TRAINING_DUCKDB_PATH or <data root>/snapshot.duckdb)")
    pdk.add_argument("--as-of", dest="as_of", help="Reference date YYYY-MM-DD (default: today)")
    pdk.set_defaults(func=cmd_export_duckdb)

    pa = sub.add_parser("app", help="Run the JSON API")
    pa.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    pa.add_argument("--port", type=int, default=8766, help="Port (default: 8766)")
    pa.set_defaults(func=cmd_app)

    return p


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except (ValueError, LookupError, RuntimeError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
