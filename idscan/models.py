from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Callable, Dict, List, Optional


@dataclass(frozen=True)
class FieldDefinition:
    """
    One catalog entry: a 3-character AAMVA code and its display label.
    """
    code: str
    label: str
    formatter: Optional[Callable[[str], str]] = None


@dataclass
class DecodedField:
    label: str
    value: str

    def to_dict(self) -> Dict[str, str]:
        return {'field': self.label, 'value': self.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DecodedField":
        label, value = data.get('field'), data.get('value')
        return cls(
            label='' if label is None else str(label),
            value='' if value is None else str(value),
        )


@dataclass
class Scan:
    """
    A persisted decode result.
    Only notes and tags change after creation.
    """
    id: str
    timestamp: str          # ISO-8601, UTC
    fields: List[DecodedField]
    raw_payload: str
    notes: str = ""
    tags: List[str] = field(default_factory=list)

    def to_dict(self, include_raw_payload: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            'id': self.id,
            'timestamp': self.timestamp,
            'parsedData': {'fields': [f.to_dict() for f in self.fields]},
        }
        if include_raw_payload:
            data['rawData'] = self.raw_payload
        data['notes'] = self.notes
        data['tags'] = list(self.tags)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Scan":
        """
        Builds a Scan from its stored form. Missing id/notes/tags come back
        empty; so do tags that aren't a list. Non-string tags and notes are
        converted with str().
        """
        parsed = data.get('parsedData') or {}
        tags = data.get('tags')
        notes = data.get('notes')
        raw_payload = data.get('rawData')
        return cls(
            id=str(data['id']) if data.get('id') else "",
            timestamp=data['timestamp'],
            fields=[DecodedField.from_dict(f) for f in parsed.get('fields', []) if isinstance(f, dict)],
            raw_payload=raw_payload if isinstance(raw_payload, str) else "",
            notes=str(notes) if notes else "",
            tags=[str(t) for t in tags if t is not None] if isinstance(tags, list) else [],
        )

    @property
    def created_at(self) -> Optional[datetime]:
        """Parsed timestamp, or None if it is not valid ISO-8601."""
        try:
            return as_utc(datetime.fromisoformat(self.timestamp))
        except (TypeError, ValueError):
            return None


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes are taken to be UTC so they compare with stored timestamps."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


@dataclass
class DateRange:
    start: datetime
    end: datetime

    def contains(self, when: Optional[datetime]) -> bool:
        return when is not None and as_utc(self.start) <= when <= as_utc(self.end)


@dataclass
class SearchFilters:
    name: Optional[str] = None
    license_number: Optional[str] = None
    state: Optional[str] = None
    date_range: Optional[DateRange] = None

    def is_empty(self) -> bool:
        return not (self.name or self.license_number or self.state or self.date_range)


@dataclass
class ExportOptions:
    format: str = 'json'             # json/csv/pdf
    include_raw_payload: bool = True
    date_range: Optional[DateRange] = None


@dataclass
class ExportResult:
    data: bytes
    content_type: str
    filename: str


@dataclass
class ImportResult:
    success: bool
    imported: int = 0
    skipped: int = 0


@dataclass
class StorageStats:
    total_scans: int
    storage_used: str
    last_scan: Optional[datetime] = None
    oldest_scan: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'totalScans': self.total_scans,
            'storageUsed': self.storage_used,
            'lastScan': self.last_scan.isoformat() if self.last_scan else None,
            'oldestScan': self.oldest_scan.isoformat() if self.oldest_scan else None,
        }


@dataclass
class StorageSettings:
    auto_backup: bool = True
    max_storage_size: int = 0
    export_format: str = 'json'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'autoBackup': self.auto_backup,
            'maxStorageSize': self.max_storage_size,
            'exportFormat': self.export_format,
        }


@dataclass
class ScanAnalytics:
    total_scans: int
    scans_this_month: int
    scans_today: int
    most_scanned_state: str
    average_scans_per_day: float

    # Storage usage against the retention ceiling
    storage_used: int
    storage_total: int
    storage_percentage: float
