"""
The scan record store.

The whole collection is kept as one JSON list under config.STORAGE_KEY in a
KeyValueStore, newest first. Every public operation catches IDScanError at
its boundary and reports a plain success/failure result instead of raising.
"""
import json
import logging
import uuid
from collections import Counter
from dataclasses import asdict, fields as dataclass_fields
from datetime import datetime, UTC
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set, Tuple, Union

from .. import config
from ..exceptions import IDScanError, ImportFormatError, StorageError
from ..models import (
    DecodedField, ExportOptions, ExportResult, ImportResult, Scan, ScanAnalytics,
    SearchFilters, StorageSettings, StorageStats, as_utc,
)
from ..reporting import ReportGenerator
from .backends import BackupStore, KeyValueStore, estimate_size
from .query import derive_tags, field_value, filter_scans

_OLDEST = datetime.min.replace(tzinfo=UTC)


class ScanRepository(Protocol):
    """Everything the app and CLI need from a scan store."""

    def save(self, fields: Iterable[DecodedField], raw_payload: str) -> Optional[str]: ...

    def get_all(self) -> List[Scan]: ...

    def get(self, scan_id: str) -> Optional[Scan]: ...

    def search(self, filters: Optional[SearchFilters] = None) -> List[Scan]: ...

    def update(self, scan_id: str, notes: Optional[str] = None, tags: Optional[List[str]] = None) -> bool: ...

    def delete_one(self, scan_id: str) -> bool: ...

    def clear_all(self) -> bool: ...

    def export(self, options: ExportOptions) -> Optional[ExportResult]: ...

    def import_scans(self, data: Union[bytes, str]) -> ImportResult: ...

    def backup(self) -> bool: ...

    def restore(self) -> bool: ...

    def get_stats(self) -> StorageStats: ...

    def get_settings(self) -> StorageSettings: ...

    def get_analytics(self, now: Optional[datetime] = None) -> ScanAnalytics: ...


def now_iso() -> str:
    """UTC timestamp with millisecond precision and a Z suffix."""
    return datetime.now(UTC).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


def format_size(num_bytes: int) -> str:
    """1024-based, two decimals at most: 1536 -> '1.5 KB'."""
    units = ['Bytes', 'KB', 'MB', 'GB']
    if num_bytes <= 0:
        return '0 Bytes'
    value = float(num_bytes)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _sort_key(scan: Scan) -> datetime:
    return scan.created_at or _OLDEST


class ScanStore:
    """
    Args:
        kv_store: Primary store holding the collection and the settings blob.
        backup_store: Secondary store for backup()/restore().
        max_storage_size: Retention ceiling for the estimated store size, and
                          the total that analytics report usage against.
        max_entries: Number of scans kept when retention kicks in.

    Retention always truncates to the newest max_entries scans, and a
    collection longer than max_entries triggers it on its own. Passing the
    size ceiling with fewer scans than that keeps them all (and logs
    nothing), so in practice max_entries bounds the collection and
    max_storage_size is what analytics measure against.
    """

    def __init__(self,
                 kv_store: KeyValueStore,
                 backup_store: BackupStore,
                 max_storage_size: int = config.MAX_STORAGE_SIZE,
                 max_entries: int = config.MAX_ENTRIES):
        self.kv = kv_store
        self.backup_store = backup_store
        self.max_storage_size = max_storage_size
        self.max_entries = max_entries

    # --- Create ---

    def save(self, fields: Iterable[DecodedField], raw_payload: str) -> Optional[str]:
        """
        Stores a new scan at the front of the collection.
        Returns its id, or None if the write failed.
        """
        fields = list(fields)
        try:
            scans = self._load()
            scan = Scan(
                id=self._generate_id({s.id for s in scans}),
                timestamp=now_iso(),
                fields=fields,
                raw_payload=raw_payload,
                notes="",
                tags=derive_tags(fields),
            )
            scans.insert(0, scan)
            scans, serialized = self._apply_retention(scans)
            self.kv.set(config.STORAGE_KEY, serialized)
        except IDScanError as e:
            logging.error(f"Failed to save scan: {e}")
            return None

        logging.info(f"Saved scan {scan.id} ({len(fields)} fields)")
        self._update_stats(scans)
        return scan.id

    # --- Read ---

    def get_all(self) -> List[Scan]:
        """All scans, newest first. Unreadable storage reads as empty."""
        try:
            return self._load()
        except IDScanError as e:
            logging.error(f"Failed to load scans: {e}")
            return []

    def search(self, filters: Optional[SearchFilters] = None) -> List[Scan]:
        return filter_scans(self.get_all(), filters)

    def get(self, scan_id: str) -> Optional[Scan]:
        for scan in self.get_all():
            if scan.id == scan_id:
                return scan
        return None

    # --- Update / Delete ---

    def update(self, scan_id: str, notes: Optional[str] = None, tags: Optional[List[str]] = None) -> bool:
        """Changes notes and/or tags. Unknown ids return False."""
        try:
            scans = self._load()
            target = next((s for s in scans if s.id == scan_id), None)
            if target is None:
                logging.warning(f"Cannot update scan {scan_id}: not found")
                return False
            if notes is not None:
                target.notes = notes
            if tags is not None:
                target.tags = list(tags)
            self._persist(scans)
        except IDScanError as e:
            logging.error(f"Failed to update scan {scan_id}: {e}")
            return False

        logging.info(f"Updated scan {scan_id}")
        return True

    def delete_one(self, scan_id: str) -> bool:
        """Deleting an id that isn't stored is a successful no-op."""
        try:
            scans = self._load()
            remaining = [s for s in scans if s.id != scan_id]
            if len(remaining) == len(scans):
                logging.debug(f"Scan {scan_id} not found; nothing to delete")
                return True
            self._persist(remaining)
        except IDScanError as e:
            logging.error(f"Failed to delete scan {scan_id}: {e}")
            return False

        logging.info(f"Deleted scan {scan_id}")
        self._update_stats(remaining)
        return True

    def clear_all(self) -> bool:
        try:
            self.kv.remove(config.STORAGE_KEY)
        except IDScanError as e:
            logging.error(f"Failed to clear scans: {e}")
            return False

        logging.info("Cleared all scans")
        self._update_stats([])
        return True

    # --- Export / Import ---

    def export(self, options: ExportOptions) -> Optional[ExportResult]:
        try:
            scans = self._load()
            if options.date_range:
                scans = [s for s in scans if options.date_range.contains(s.created_at)]
            return ReportGenerator(scans).render(options.format, options.include_raw_payload)
        except IDScanError as e:
            logging.error(f"Failed to export scans: {e}")
            return None

    def import_scans(self, data: Union[bytes, str]) -> ImportResult:
        """
        Merges scans from a JSON export. Existing ids are never overwritten;
        invalid records and known ids count as skipped.
        """
        try:
            entries = self._parse_import(data)
            scans = self._load()
            known_ids = {s.id for s in scans}

            imported = 0
            skipped = 0
            for entry in entries:
                if not self._is_valid_entry(entry):
                    logging.debug(f"Skipping invalid import record: {str(entry)[:80]}")
                    skipped += 1
                    continue
                if entry.get('id') and str(entry['id']) in known_ids:
                    skipped += 1
                    continue

                scan = self._repair(Scan.from_dict(entry), entry, known_ids)
                known_ids.add(scan.id)
                scans.append(scan)
                imported += 1

            if imported > 0:
                scans.sort(key=_sort_key, reverse=True)
                self._persist(scans)
                self._update_stats(scans)
        except IDScanError as e:
            logging.error(f"Failed to import scans: {e}")
            return ImportResult(success=False, imported=0, skipped=0)

        logging.info(f"Import complete: {imported} imported, {skipped} skipped")
        return ImportResult(success=True, imported=imported, skipped=skipped)

    # --- Backup / Restore ---

    def backup(self) -> bool:
        """Replaces the single backup record with the current collection."""
        try:
            scans = self._load()
            record = {
                'id': config.BACKUP_KEY,
                'data': [s.to_dict() for s in scans],
                'timestamp': now_iso(),
            }
            self.backup_store.clear()
            self.backup_store.put(config.BACKUP_KEY, record)
        except IDScanError as e:
            logging.error(f"Failed to back up scans: {e}")
            return False

        logging.info(f"Backed up {len(scans)} scans")
        return True

    def restore(self) -> bool:
        """Replaces the collection with the backup. False when there is no backup."""
        try:
            record = self.backup_store.get(config.BACKUP_KEY)
            if not record or not isinstance(record.get('data'), list):
                logging.warning("No backup found to restore")
                return False
            self.kv.set(config.STORAGE_KEY, json.dumps(record['data']))
            scans = self._load()
        except IDScanError as e:
            logging.error(f"Failed to restore scans: {e}")
            return False

        logging.info(f"Restored {len(scans)} scans from backup taken {record.get('timestamp')}")
        self._update_stats(scans)
        return True

    # --- Stats / Settings ---

    def get_stats(self) -> StorageStats:
        return self._compute_stats(self.get_all())

    def get_settings(self) -> StorageSettings:
        blob = self._read_settings_blob()
        defaults = StorageSettings(max_storage_size=self.max_storage_size)
        return StorageSettings(
            auto_backup=bool(blob.get('autoBackup', defaults.auto_backup)),
            max_storage_size=int(blob.get('maxStorageSize', defaults.max_storage_size)),
            export_format=str(blob.get('exportFormat', defaults.export_format)),
        )

    def update_settings(self, **changes: Any) -> bool:
        known = {f.name for f in dataclass_fields(StorageSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

        settings = StorageSettings(**{**asdict(self.get_settings()), **changes})
        try:
            blob = self._read_settings_blob()
            blob.update(settings.to_dict())
            self.kv.set(config.SETTINGS_KEY, json.dumps(blob))
        except IDScanError as e:
            logging.error(f"Failed to update settings: {e}")
            return False
        return True

    def get_analytics(self, now: Optional[datetime] = None) -> ScanAnalytics:
        now = as_utc(now) if now else datetime.now(UTC)
        scans = self.get_all()
        times = [t for t in (s.created_at for s in scans) if t]

        states = Counter(v for v in (field_value(s.fields, 'State') for s in scans) if v)
        most_scanned_state = states.most_common(1)[0][0] if states else ''

        if times:
            days = max(1, (now - min(times)).days + 1)
            average = round(len(scans) / days, 2)
        else:
            average = 0.0

        used = self._storage_size()
        total = self.max_storage_size
        return ScanAnalytics(
            total_scans=len(scans),
            scans_this_month=sum(1 for t in times if (t.year, t.month) == (now.year, now.month)),
            scans_today=sum(1 for t in times if t.date() == now.date()),
            most_scanned_state=most_scanned_state,
            average_scans_per_day=average,
            storage_used=used,
            storage_total=total,
            storage_percentage=round(used / total * 100, 2) if total else 0.0,
        )

    # --- Internals ---

    def _load(self) -> List[Scan]:
        """
        Reads the collection, repairing records saved without id/tags/notes.
        Repairs are written back so generated ids stay stable.
        """
        stored = self.kv.get(config.STORAGE_KEY)
        if not stored:
            return []
        try:
            entries = json.loads(stored)
        except json.JSONDecodeError as e:
            raise StorageError(f"Stored scan collection is corrupt: {e}") from e
        if not isinstance(entries, list):
            raise StorageError("Stored scan collection is not a list")

        scans: List[Scan] = []
        ids: Set[str] = set()
        repaired = False
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get('timestamp'), str):
                logging.warning("Dropping unreadable stored scan record")
                repaired = True
                continue
            scan = Scan.from_dict(entry)
            if not scan.id or scan.id in ids or not self._has_clean_annotations(entry):
                scan = self._repair(scan, entry, ids)
                repaired = True
            ids.add(scan.id)
            scans.append(scan)

        if repaired:
            try:
                self._persist(scans)
                logging.info(f"Repaired legacy scan records ({len(scans)} total)")
            except IDScanError as e:
                logging.warning(f"Could not write back repaired scans: {e}")

        return scans

    def _repair(self, scan: Scan, entry: Dict[str, Any], taken_ids: Set[str]) -> Scan:
        if not scan.id or scan.id in taken_ids:
            scan.id = self._generate_id(taken_ids)
        # Tags that aren't a list (missing, null, a bare string) are derived again
        if not isinstance(entry.get('tags'), list):
            scan.tags = derive_tags(scan.fields)
        if entry.get('notes') is None:
            scan.notes = ""
        return scan

    @staticmethod
    def _has_clean_annotations(entry: Dict[str, Any]) -> bool:
        """True when notes and tags are stored exactly as to_dict() writes them."""
        tags = entry.get('tags')
        return (
            isinstance(entry.get('notes'), str)
            and isinstance(tags, list)
            and all(isinstance(t, str) for t in tags)
        )

    def _persist(self, scans: List[Scan]) -> None:
        self.kv.set(config.STORAGE_KEY, self._serialize(scans))

    def _serialize(self, scans: List[Scan]) -> str:
        return json.dumps([s.to_dict() for s in scans])

    def _apply_retention(self, scans: List[Scan]) -> Tuple[List[Scan], str]:
        """
        Truncates to the newest max_entries scans once the estimated size
        passes the ceiling or the collection outgrows max_entries.
        """
        serialized = self._serialize(scans)
        size = self._storage_size(exclude=config.STORAGE_KEY) + len(config.STORAGE_KEY) + len(serialized)

        if size > self.max_storage_size or len(scans) > self.max_entries:
            kept = scans[:self.max_entries]
            if len(kept) < len(scans):
                logging.warning(
                    f"Retention: dropping {len(scans) - len(kept)} oldest scans "
                    f"(size {format_size(size)}, limit {self.max_entries} scans)"
                )
                scans = kept
                serialized = self._serialize(scans)
        return scans, serialized

    def _storage_size(self, exclude: Optional[str] = None) -> int:
        try:
            if exclude is None:
                return estimate_size(self.kv)
            return sum(len(k) + len(v) for k, v in self.kv.items() if k != exclude)
        except IDScanError as e:
            logging.warning(f"Could not measure storage size: {e}")
            return 0

    def _compute_stats(self, scans: List[Scan]) -> StorageStats:
        times = [t for t in (s.created_at for s in scans) if t]
        return StorageStats(
            total_scans=len(scans),
            storage_used=format_size(self._storage_size()),
            last_scan=max(times) if times else None,
            oldest_scan=min(times) if times else None,
        )

    def _read_settings_blob(self) -> Dict[str, Any]:
        try:
            stored = self.kv.get(config.SETTINGS_KEY)
            blob = json.loads(stored) if stored else {}
        except (IDScanError, json.JSONDecodeError) as e:
            logging.warning(f"Ignoring unreadable settings: {e}")
            return {}
        return blob if isinstance(blob, dict) else {}

    def _update_stats(self, scans: List[Scan]) -> None:
        """Refreshes the settings/stats blob. Failure here never fails the caller."""
        blob = self._read_settings_blob()
        blob['lastUpdated'] = now_iso()
        blob['stats'] = self._compute_stats(scans).to_dict()
        try:
            self.kv.set(config.SETTINGS_KEY, json.dumps(blob))
        except IDScanError as e:
            logging.warning(f"Failed to update storage stats: {e}")

    def _parse_import(self, data: Union[bytes, str]) -> List[Any]:
        try:
            text = data.decode('utf-8') if isinstance(data, bytes) else data
            entries = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise ImportFormatError(f"Import file is not valid JSON: {e}") from e
        if not isinstance(entries, list):
            raise ImportFormatError("Import file must contain a JSON list of scans")
        return entries

    @staticmethod
    def _is_valid_entry(entry: Any) -> bool:
        if not isinstance(entry, dict):
            return False
        parsed = entry.get('parsedData')
        return (
            isinstance(entry.get('timestamp'), str)
            and isinstance(parsed, dict)
            and isinstance(parsed.get('fields'), list)
            and isinstance(entry.get('rawData'), str)
        )

    @staticmethod
    def _generate_id(taken: Set[str]) -> str:
        while True:
            scan_id = uuid.uuid4().hex
            if scan_id not in taken:
                return scan_id
