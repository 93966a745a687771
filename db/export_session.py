"""
ECG System - Session Data Exporter
Pulls all data for one or more stored sessions into a local subdirectory.

Usage:
    # Export a single session by ID:
    python -m db.export_session --session-id <uuid>

    # Export multiple sessions:
    python -m db.export_session --session-id <uuid1> --session-id <uuid2>

    # Every session of one user:
    python -m db.export_session --user-id <user>

    # Another database / output directory:
    python -m db.export_session --session-id <uuid> --db-url sqlite:///other.db --out-dir /data/exports

Output directory structure:
    exports/
    └── <session_name>_<session_id_short>_<timestamp>/
        ├── export_manifest.txt
        ├── session_info.csv
        ├── samples.csv
        └── heart_rates.csv
"""

import argparse
import csv
import logging
import sys
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from ecg_system.errors import PersistenceError

from .db_access import DB_CONFIG, SessionStore
from .models import EcgSessionRecord

logger = logging.getLogger(__name__)

SERIES_COLUMNS = ('samples', 'heart_rates')


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _record_to_dict(record: EcgSessionRecord) -> dict:
    """Scalar columns of a stored session as a plain dict."""
    return {
        col.name: getattr(record, col.name)
        for col in record.__table__.columns
        if col.name not in SERIES_COLUMNS
    }


def _write_csv(filepath: Path, rows: List[dict]) -> int:
    """Write a list of dicts to a CSV file. Returns row count written."""
    if not rows:
        filepath.write_text("# no data\n")
        return 0
    with open(filepath, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=rows[0].keys())
        writer.writeheader()
        writer.writerows(rows)
    return len(rows)


def _resolve_uuid(raw: str) -> uuid.UUID:
    """Parse and validate a UUID string, exit cleanly on failure."""
    try:
        return uuid.UUID(raw)
    except ValueError:
        logger.error(f"Invalid UUID: '{raw}'")
        sys.exit(1)


def _safe_label(name: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in name).strip("_") or "session"


# ---------------------------------------------------------------------------
# Core export logic
# ---------------------------------------------------------------------------

def export_session(record: EcgSessionRecord, export_root: Path) -> Path:
    """
    Export one stored session to a timestamped subdirectory.

    Args:
        record:      Stored session row
        export_root: Parent directory where the export folder will be created

    Returns:
        Path to the created export directory.
    """
    ts_tag = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    sid_short = record.session_id[:8]
    export_dir = export_root / f"{_safe_label(record.session_name)}_{sid_short}_{ts_tag}"
    export_dir.mkdir(parents=True, exist_ok=True)
    logger.info(f"Exporting to: {export_dir}")

    file_counts = {}

    # ---- Session info ----
    n = _write_csv(export_dir / "session_info.csv", [_record_to_dict(record)])
    file_counts["session_info.csv"] = n

    # ---- Voltage samples ----
    rate = float(record.sample_rate or 1)
    sample_rows = [
        {"index": i, "time_s": round(i / rate, 6), "voltage": v}
        for i, v in enumerate(record.samples or [])
    ]
    file_counts["samples.csv"] = _write_csv(export_dir / "samples.csv", sample_rows)

    # ---- Heart-rate series ----
    hr_rows = [{"index": i, "bpm": bpm} for i, bpm in enumerate(record.heart_rates or [])]
    file_counts["heart_rates.csv"] = _write_csv(export_dir / "heart_rates.csv", hr_rows)

    # ---- Manifest ----
    manifest = [
        "ECG Session Export",
        "==================",
        f"Exported at  : {datetime.now(timezone.utc).isoformat()}",
        f"Session ID   : {record.session_id}",
        f"Session name : {record.session_name}",
        f"User         : {record.user_id}",
        f"Session start: {record.started_at}",
        f"Session end  : {record.ended_at}",
        f"Status       : {record.terminal_status}",
        f"Device       : {record.device_name or record.device_id or 'unknown'}",
        "",
        "Metrics",
        "-------",
        f"  {'avg_bpm':<20}: {record.avg_bpm}",
        f"  {'min_bpm':<20}: {record.min_bpm}",
        f"  {'max_bpm':<20}: {record.max_bpm}",
        f"  {'rhythm':<20}: {record.rhythm}",
        f"  {'assessment':<20}: {record.assessment}",
        f"  {'quality':<20}: {record.quality}",
        "",
        "Files",
        "-----",
    ]
    for fname, count in file_counts.items():
        manifest.append(f"  {fname:<32} {count} row(s)")

    (export_dir / "export_manifest.txt").write_text("\n".join(manifest) + "\n")

    logger.info(f"✓ Export complete: {export_dir.name}")
    return export_dir


def export_sessions(store: SessionStore, session_ids, export_root: Path) -> List[Path]:
    """Export several sessions by ID, skipping unknown ones."""
    export_dirs = []
    for session_id in session_ids:
        record = store.get_session(session_id)
        if record is None:
            logger.warning(f"Session '{session_id}' not found, skipping.")
            continue
        export_dirs.append(export_session(record, export_root))
    return export_dirs


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Export stored ECG session data to CSV files.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument(
        "--session-id", action="append", dest="session_ids", metavar="UUID",
        help="Session UUID to export. Can be specified multiple times.",
    )
    target.add_argument(
        "--user-id",
        help="Export every session of this user.",
    )
    parser.add_argument(
        "--out-dir", default="exports",
        help="Root output directory (default: ./exports).",
    )
    parser.add_argument(
        "--db-url", default=DB_CONFIG["url"],
        help=f"SQLAlchemy database URL (default: {DB_CONFIG['url']}).",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s  %(levelname)s  %(message)s")

    try:
        store = SessionStore({**DB_CONFIG, "url": args.db_url})
    except Exception as e:
        logger.error(f"Could not connect to database: {e}")
        sys.exit(1)

    try:
        if args.user_id:
            session_ids = [s.session_id for s in store.list_sessions(args.user_id)]
        else:
            session_ids = [_resolve_uuid(raw) for raw in args.session_ids]

        export_dirs = export_sessions(store, session_ids, Path(args.out_dir))
        if not export_dirs:
            logger.error("No sessions were exported.")
            sys.exit(1)

        print(f"\nExported {len(export_dirs)} session(s):")
        for d in export_dirs:
            print(f"  → {d}")

    except PersistenceError as e:
        logger.error(f"Database error during export: {e}")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
