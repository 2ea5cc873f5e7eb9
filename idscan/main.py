import argparse
import logging
import sys
from datetime import datetime, time
from pathlib import Path
from typing import List, Optional

from . import config
from .core import IDScanApp, iter_payload_files
from .models import DateRange, DecodedField, ExportOptions, Scan, SearchFilters
from .storage.query import display_name, field_value

def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Sets up logging to the console and, optionally, a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )

def _parse_since(value: str) -> datetime:
    return datetime.fromisoformat(value)

def _parse_until(value: str) -> datetime:
    # A bare date means "through the end of that day"
    dt = datetime.fromisoformat(value)
    if len(value) == 10:
        dt = datetime.combine(dt.date(), time.max)
    return dt

def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="ID Scan Catalog: decode and manage driver's license barcode scans")

    p.add_argument("--db", type=Path, default=Path(config.DEFAULT_DB_NAME), help="Path to the scan database")
    p.add_argument("--backup-db", type=Path, default=None, help="Path to the backup database (default: next to --db)")
    p.add_argument("--log-file", type=Path, default=None, help="Also write logs to this file")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("decode", help="Decode a payload without saving it")
    s.add_argument("payload", help="Payload file, or '-' for stdin")

    s = sub.add_parser("save", help="Decode a payload and save it")
    s.add_argument("payload", help="Payload file, or '-' for stdin")

    s = sub.add_parser("ingest", help="Decode and save every payload file under a directory")
    s.add_argument("directory", type=Path)

    sub.add_parser("list", help="List stored scans, newest first")

    s = sub.add_parser("search", help="Search stored scans")
    s.add_argument("--name")
    s.add_argument("--license", dest="license_number")
    s.add_argument("--state")
    s.add_argument("--since", type=_parse_since)
    s.add_argument("--until", type=_parse_until)

    s = sub.add_parser("show", help="Show every field of one scan")
    s.add_argument("scan_id")

    s = sub.add_parser("annotate", help="Set notes and/or tags on a scan")
    s.add_argument("scan_id")
    s.add_argument("--notes")
    s.add_argument("--tag", action="append", dest="tags", help="Tag (repeatable); replaces existing tags")

    s = sub.add_parser("delete", help="Delete one scan")
    s.add_argument("scan_id")

    s = sub.add_parser("clear", help="Delete every scan")
    s.add_argument("--yes", action="store_true", help="Confirm deletion")

    s = sub.add_parser("export", help="Export scans")
    s.add_argument("--format", choices=sorted(config.EXPORT_CONTENT_TYPES), default=None)
    s.add_argument("--no-raw", action="store_true", help="Leave raw payloads out of JSON exports")
    s.add_argument("--since", type=_parse_since)
    s.add_argument("--until", type=_parse_until)
    s.add_argument("--out", type=Path, default=None, help="Output file (default: dated name in the current directory)")

    s = sub.add_parser("import", help="Import scans from a JSON export")
    s.add_argument("file", type=Path)

    sub.add_parser("backup", help="Back up all scans")
    sub.add_parser("restore", help="Replace all scans with the backup")
    sub.add_parser("stats", help="Show storage statistics")

    return p.parse_args(argv)

def _read_payload(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding='utf-8')

def _date_range(since: Optional[datetime], until: Optional[datetime]) -> Optional[DateRange]:
    if since is None and until is None:
        return None
    return DateRange(start=since or datetime.min, end=until or datetime.max)

def print_fields(fields: List[DecodedField]):
    if not fields:
        print("(No fields recognised)")
        return
    width = max(len(f.label) for f in fields)
    for f in fields:
        print(f"{f.label.ljust(width)} : {f.value}")

def print_scans(scans: List[Scan]):
    if not scans:
        print("No scans found.")
        return
    print("id                               | timestamp                | state | license          | name")
    print("---------------------------------+--------------------------+-------+------------------+-----")
    for scan in scans:
        state = field_value(scan.fields, 'State') or ''
        license_no = field_value(scan.fields, 'License Number') or ''
        print(f"{scan.id.ljust(32)} | {scan.timestamp.ljust(24)} | {state.ljust(5)} | {license_no.ljust(16)} | {display_name(scan.fields)}")

def run(args, app: IDScanApp) -> int:
    """Executes one command. Returns the process exit code."""
    store = app.store
    cmd = args.command

    if cmd == "decode":
        print_fields(app.decode(_read_payload(args.payload)))
        return 0

    if cmd == "save":
        fields, scan_id = app.scan(_read_payload(args.payload))
        print_fields(fields)
        if not scan_id:
            print("Failed to save scan. Please try again.")
            return 1
        print(f"Saved scan {scan_id}")
        return 0

    if cmd == "ingest":
        saved, failed = app.ingest(iter_payload_files(args.directory))
        print(f"Saved {saved} scans, {failed} failed.")
        return 0 if failed == 0 else 1

    if cmd == "list":
        print_scans(store.get_all())
        return 0

    if cmd == "search":
        filters = SearchFilters(
            name=args.name,
            license_number=args.license_number,
            state=args.state,
            date_range=_date_range(args.since, args.until),
        )
        print_scans(store.search(filters))
        return 0

    if cmd == "show":
        scan = store.get(args.scan_id)
        if scan is None:
            print(f"No scan with id={args.scan_id}")
            return 1
        print(f"Scan {scan.id} ({scan.timestamp})")
        print_fields(scan.fields)
        print(f"Notes: {scan.notes or 'None'}")
        print(f"Tags: {', '.join(scan.tags) or 'None'}")
        return 0

    if cmd == "annotate":
        if not store.update(args.scan_id, notes=args.notes, tags=args.tags):
            print(f"Failed to update scan {args.scan_id}.")
            return 1
        print(f"Updated scan {args.scan_id}")
        return 0

    if cmd == "delete":
        if not store.delete_one(args.scan_id):
            print("Failed to delete scan. Please try again.")
            return 1
        print(f"Deleted scan {args.scan_id}")
        return 0

    if cmd == "clear":
        if not args.yes:
            print("Refusing to clear all scans without --yes.")
            return 1
        if not store.clear_all():
            print("Failed to clear scans. Please try again.")
            return 1
        print("All scans deleted.")
        return 0

    if cmd == "export":
        options = ExportOptions(
            format=args.format or store.get_settings().export_format,
            include_raw_payload=not args.no_raw,
            date_range=_date_range(args.since, args.until),
        )
        result = store.export(options)
        if result is None:
            print("Export failed. Please try again.")
            return 1
        out = args.out or Path(result.filename)
        out.write_bytes(result.data)
        print(f"Exported to {out} ({result.content_type})")
        return 0

    if cmd == "import":
        result = store.import_scans(args.file.read_bytes())
        if not result.success:
            print("Import failed: file must be a JSON list of scans.")
            return 1
        print(f"Imported {result.imported} scans, skipped {result.skipped}.")
        return 0

    if cmd == "backup":
        if not store.backup():
            print("Backup failed. Please try again.")
            return 1
        print("Backup complete.")
        return 0

    if cmd == "restore":
        if not store.restore():
            print("No backup restored.")
            return 1
        print("Restore complete.")
        return 0

    if cmd == "stats":
        stats = store.get_stats()
        print(f"Total scans:  {stats.total_scans}")
        print(f"Storage used: {stats.storage_used}")
        print(f"Newest scan:  {stats.last_scan.isoformat() if stats.last_scan else 'N/A'}")
        print(f"Oldest scan:  {stats.oldest_scan.isoformat() if stats.oldest_scan else 'N/A'}")

        analytics = store.get_analytics()
        print(f"Today:        {analytics.scans_today}")
        print(f"This month:   {analytics.scans_this_month}")
        print(f"Per day:      {analytics.average_scans_per_day}")
        print(f"Top state:    {analytics.most_scanned_state or 'N/A'}")
        print(f"Usage:        {analytics.storage_percentage}% of {analytics.storage_total} bytes")
        return 0

    raise ValueError(f"Unknown command: {cmd}")

def main(argv: Optional[List[str]] = None):
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    logging.debug(f"Database: {args.db}")

    try:
        with IDScanApp.open(args.db, args.backup_db) as app:
            code = run(args, app)
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        sys.exit(1)
    except Exception:
        logging.exception(f"Fatal error running '{args.command}'.")
        sys.exit(1)

    sys.exit(code)

if __name__ == "__main__":
    main()
