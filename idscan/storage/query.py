"""
Field lookup and search filtering over stored scans.
"""
from typing import Iterable, List, Optional

from .. import config
from ..decoding.parser import RAW_CODE_PREFIX
from ..models import DecodedField, Scan, SearchFilters


def field_value(fields: Iterable[DecodedField], label: str) -> Optional[str]:
    """
    Value of the first field labeled `label` (or "Raw Code: <label>").
    None when there is no such field or that first match is empty.
    """
    raw_label = f"{RAW_CODE_PREFIX}{label}"
    for f in fields:
        if f.label == label or f.label == raw_label:
            return f.value or None
    return None


def display_name(fields: Iterable[DecodedField]) -> str:
    """Full Name when decoded, otherwise "First Last"."""
    fields = list(fields)
    full_name = field_value(fields, 'Full Name')
    if full_name:
        return full_name
    first = field_value(fields, 'First Name') or ''
    last = field_value(fields, 'Last Name') or ''
    return f"{first} {last}".strip()


def derive_tags(fields: Iterable[DecodedField]) -> List[str]:
    """Auto tags: state, document type, gender."""
    fields = list(fields)
    tags = []

    state = field_value(fields, 'State')
    if state:
        tags.append(f"State: {state}")

    tags.append(config.DOCUMENT_TAG)

    gender = field_value(fields, 'Gender')
    if gender:
        tags.append(f"Gender: {gender}")

    return tags


def _contains(haystack: Optional[str], needle: str) -> bool:
    return haystack is not None and needle.lower() in haystack.lower()


def matches(scan: Scan, filters: SearchFilters) -> bool:
    """All filters that are set must match (AND)."""
    if filters.name and not _contains(display_name(scan.fields), filters.name):
        return False

    if filters.license_number and not _contains(field_value(scan.fields, 'License Number'), filters.license_number):
        return False

    if filters.state and not _contains(field_value(scan.fields, 'State'), filters.state):
        return False

    if filters.date_range and not filters.date_range.contains(scan.created_at):
        return False

    return True


def filter_scans(scans: List[Scan], filters: Optional[SearchFilters]) -> List[Scan]:
    if filters is None or filters.is_empty():
        return list(scans)
    return [s for s in scans if matches(s, filters)]
