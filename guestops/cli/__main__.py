from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from guestops.config.loader import ConfigError, ImportConfig, load_config
from guestops.config.reference import StaticReferenceData, load_reference_data
from guestops.db.postgres_store import PostgresStore
from guestops.db.store import ConcurrentModificationError, GuestStore, InMemoryStore
from guestops.excel.reader import ParseError
from guestops.logging.init import log_summary, setup_logging
from guestops.models.transport import Direction
from guestops.services.apply import ApplyError, ValidationError
from guestops.services.column_mapper import MappingError, MappingIncompleteError
from guestops.services.flight_matching import (
    find_transport_group_with_direction,
    get_time_correction,
    recommended_vehicle,
)
from guestops.services.orchestrator import ImportSession, SessionStateError
from guestops.services.reallocation import ReallocationError, reassign_guest, suggest_reallocation
from guestops.services.summary import render_summary_line

"""CLI entrypoint.

Subcommands:
- inspect FILE            headers, proposed mapping, sample rows, cell issues
- preview FILE            diff + alerts against the store (no writes)
- apply FILE              preview then commit
- transport-group F DATE  reference lookup for a flight
- suggest GUEST DIR       ranked reallocation candidates
- reassign GUEST FROM TO DIR

Exit codes: 0 success, 1 fatal (config / parse / mapping / apply rejected),
2 completed but some rows were excluded with errors.
"""

EXIT_SUCCESS_ALL = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2

DEFAULT_CONFIG = Path("config/import.yml")


def _resolve_dsn(cfg: ImportConfig) -> str:
    """接続情報の優先順位:
        1. `.env` / 環境変数 DATABASE_URL / PGDSN (DSN 全体)
        2. 個別 PGHOST / PGPORT / PGUSER / PGPASSWORD / PGDATABASE
        3. config/import.yml の database セクション (不足分のフォールバック)
    """
    db_cfg = cfg.database
    dsn = os.getenv("DATABASE_URL") or os.getenv("PGDSN") or db_cfg.dsn
    if dsn:
        return dsn
    host = os.getenv("PGHOST", db_cfg.host or "localhost")
    port = os.getenv("PGPORT", str(db_cfg.port) if db_cfg.port else "5432")
    user = os.getenv("PGUSER", db_cfg.user or "postgres")
    password = os.getenv("PGPASSWORD", db_cfg.password or "")
    database = os.getenv("PGDATABASE", db_cfg.database or "postgres")
    dsn = f"host={host} port={port} user={user} dbname={database}"
    if password:
        dsn += f" password={password}"
    return dsn


@contextmanager
def _open_store(cfg: ImportConfig) -> Iterator[tuple[GuestStore, str]]:
    """Yield (store, mode). DISABLE_DB_CONNECT=1 or a failed connect gives the in-memory store."""
    logger = setup_logging()
    if os.getenv("DISABLE_DB_CONNECT") == "1":
        logger.debug("DB connect disabled via DISABLE_DB_CONNECT=1 -> mock mode")
        yield InMemoryStore(), "mock"
        return
    try:
        conn = psycopg2.connect(_resolve_dsn(cfg))
    except psycopg2.Error as e:
        if os.getenv("SUPPRESS_DB_WARNING") == "1":
            logger.debug(f"DB connection failed (suppressed warn) -> fallback to mock mode: {e}")
        else:
            logger.info(f"DB connection failed -> fallback to mock mode: {e}")
        yield InMemoryStore(), "mock"
        return
    # 明示トランザクション境界 (PostgresStore が BEGIN/COMMIT を発行)
    conn.autocommit = True
    cur = conn.cursor()
    try:
        yield PostgresStore(cur), "live"
    finally:
        cur.close()
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env with python-dotenv (override=True: .env wins over the process env)."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_mapping_overrides(values: list[str] | None) -> list[tuple[str, str | None]]:
    out = []
    for item in values or []:
        column, sep, target = item.rpartition("=")
        if not sep or not column:
            raise MappingError(f"invalid --map value {item!r} (expected COLUMN=FIELD)")
        target = target.strip()
        out.append((column, None if target in ("", "-") else target))
    return out


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="guestops", description="Guest roster import & transport matching")
    p.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="Path to import.yml")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    sp = sub.add_parser("inspect", help="Print headers, proposed mapping and sample rows")
    sp.add_argument("file", type=Path)

    for name, help_text in (("preview", "Show the diff without writing"), ("apply", "Preview and commit")):
        sp = sub.add_parser(name, help=help_text)
        sp.add_argument("file", type=Path)
        sp.add_argument("--map", action="append", metavar="COLUMN=FIELD", help="Override one column mapping")
        if name == "apply":
            sp.add_argument("--remove-deleted", action="store_true", help="Soft-delete guests missing from the file")
            sp.add_argument("--performed-by", default=None)

    sp = sub.add_parser("transport-group", help="Look up the planned transport group of a flight")
    sp.add_argument("flight")
    sp.add_argument("date", help="YYYY-MM-DD")

    sp = sub.add_parser("suggest", help="Rank alternative schedules for a guest")
    sp.add_argument("guest_id")
    sp.add_argument("direction", choices=[d.value for d in Direction])

    sp = sub.add_parser("reassign", help="Move a guest between schedules")
    sp.add_argument("guest_id")
    sp.add_argument("from_schedule")
    sp.add_argument("to_schedule")
    sp.add_argument("direction", choices=[d.value for d in Direction])
    sp.add_argument("--performed-by", default=None)
    return p


def _reference(cfg: ImportConfig) -> StaticReferenceData:
    if cfg.reference_data is None:
        raise ConfigError("reference_data is not configured")
    return load_reference_data(cfg.reference_data)


def _inspect(cfg: ImportConfig, path: Path) -> int:
    session = ImportSession(InMemoryStore(), cfg)
    mapping = session.load_file(path)
    sheet = session.loaded_spreadsheet()
    print(f"FILE: {path.name} sheet={sheet.sheet_name} rows={len(sheet)}")
    for col, target in mapping.items():
        print(f"  {col!r} -> {target.value if target is not None else '-'}")
    for r in sheet.rows[:3]:
        # datetime 含む場合 isoformat で表示
        print("  sample_row=", {k: (v.isoformat() if hasattr(v, "isoformat") else v) for k, v in r.items()})
    cells = session.validate_cells()
    print(f"  cell_issues={cells.issue_count} errors={cells.error_count}")
    for issue in cells.issues[:10]:
        print(f"    [{issue.severity.value}] row={issue.row} col={issue.column}: {issue.message}")
    return EXIT_SUCCESS_ALL


def _run_import(cfg: ImportConfig, args: argparse.Namespace, commit: bool) -> int:
    logger = setup_logging()
    with _open_store(cfg) as (store, mode):
        session = ImportSession(store, cfg)
        try:
            session.load_file(args.file)
            for column, target in _parse_mapping_overrides(args.map):
                session.set_mapping(column, target)
            preview = session.preview()
        except (ParseError, MappingError, MappingIncompleteError) as e:
            logger.error(f"{args.file.name}: {e}")
            return EXIT_FATAL

        for alert in preview.alerts:
            logger.warning(f"[{alert.type.value}] {alert.title}: {alert.description}")

        if commit:
            try:
                session.apply(remove_deleted=args.remove_deleted, performed_by=args.performed_by)
            except (ConcurrentModificationError, ValidationError, ApplyError) as e:
                logger.error(f"apply: {e}")
                log_summary(render_summary_line(session.report())[len("SUMMARY "):])
                return EXIT_FATAL

        logger.info(f"mode={mode} session={session.id}")
        log_summary(render_summary_line(session.report())[len("SUMMARY "):])
        return EXIT_PARTIAL_FAILURE if preview.diff.errors else EXIT_SUCCESS_ALL


def _transport_group(cfg: ImportConfig, flight: str, date: str) -> int:
    ref = _reference(cfg)
    match = find_transport_group_with_direction(flight, date, ref)
    corr = get_time_correction(flight, date, ref)
    if corr is not None:
        print(f"time correction: {corr.corrected_time} ({corr.note or '-'})")
    if match is None:
        print(f"{flight} on {date}: no transport group")
        return EXIT_SUCCESS_ALL
    g = match.group
    rec = recommended_vehicle(g.combined_pax, ref)
    print(
        f"{flight} on {date}: group {g.id} ({match.direction.value}) flights={','.join(g.flights)} "
        f"gather={g.gather_time} transport={g.transport_time} vehicle={g.vehicle_type} pax={g.combined_pax}"
    )
    print(f"  recommended: {rec.vehicle_type.code} x{rec.vehicle_count}")
    if g.remark:
        print(f"  remark: {g.remark}")
    return EXIT_SUCCESS_ALL


def _suggest(cfg: ImportConfig, guest_id: str, direction: str) -> int:
    ref = _reference(cfg)
    with _open_store(cfg) as (store, _mode):
        candidates = suggest_reallocation(store, guest_id, direction, reference=ref, tiers=cfg.reallocation)
    if not candidates:
        print("no candidates")
    for c in candidates:
        flag = "*" if c.is_recommended else " "
        night = " midnight" if c.midnight_surcharge else ""
        print(
            f"{flag} {c.schedule.id} {c.schedule.pickup_time} {c.vehicle.name} "
            f"seats={c.available_seats} diff={c.time_diff_minutes}m tier={c.tier.value}{night}"
        )
    return EXIT_SUCCESS_ALL


def _reassign(cfg: ImportConfig, args: argparse.Namespace) -> int:
    with _open_store(cfg) as (store, _mode):
        moved = reassign_guest(
            store, args.guest_id, args.from_schedule, args.to_schedule, args.direction,
            performed_by=args.performed_by,
        )
    print(f"assignment {moved.id}: guest {moved.guest_id} -> schedule {moved.schedule_id}")
    return EXIT_SUCCESS_ALL


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # 空リスト [] を渡された場合に sys.argv が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    try:
        args = _build_parser().parse_args(argv)
    except SystemExit as e:
        return EXIT_FATAL if e.code else EXIT_SUCCESS_ALL

    _load_env_file(Path(".env"), override=True)

    if args.debug:
        setup_logging(debug=True)
        logger.debug("debug mode enabled")

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    try:
        if args.command == "inspect":
            return _inspect(cfg, args.file)
        if args.command == "preview":
            return _run_import(cfg, args, commit=False)
        if args.command == "apply":
            return _run_import(cfg, args, commit=True)
        if args.command == "transport-group":
            return _transport_group(cfg, args.flight, args.date)
        if args.command == "suggest":
            return _suggest(cfg, args.guest_id, args.direction)
        if args.command == "reassign":
            return _reassign(cfg, args)
    except (ConfigError, ParseError, MappingError, ReallocationError, SessionStateError) as e:
        logger.error(f"{args.command}: {e}")
        return EXIT_FATAL
    except FileNotFoundError as e:
        logger.error(f"{args.command}: file not found: {e.filename}")
        return EXIT_FATAL
    logger.error(f"unknown command: {args.command}")
    return EXIT_FATAL


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
