"""
Decodes raw AAMVA barcode payloads into labeled fields.
"""
import logging
from typing import Dict, List, Optional, Sequence

from ..models import DecodedField, FieldDefinition
from .catalog import FIELD_CATALOG

RAW_CODE_PREFIX = "Raw Code: "

# label -> label that makes it redundant
SUPPRESSED_BY = {
    'First Name': 'First Name (Full)',
    'Last Name': 'Family Name / Last Name',
}

NAME_PARTS = ('First Name', 'Middle Name', 'Last Name')


class AAMVADecoder:
    """
    Turns the text read from a PDF417 license barcode into DecodedFields.

    Never raises on malformed input: unrecognised lines become "Raw Code: XXX"
    rows, and a payload with nothing usable decodes to an empty list.

    Args:
        catalog: Ordered field definitions; order sets precedence.
        last_wins: When a code appears on several lines, keep the last value
                   (False keeps the first).
    """

    def __init__(self, catalog: Optional[Sequence[FieldDefinition]] = None, last_wins: bool = True):
        self.catalog = list(catalog) if catalog is not None else FIELD_CATALOG
        self.known_codes = {d.code for d in self.catalog}
        self.last_wins = last_wins

    def decode(self, raw: str) -> List[DecodedField]:
        if not raw:
            return []

        lines = [line.strip() for line in raw.split('\n')]
        lines = [line for line in lines if line]

        code_map = self._split_codes(lines[self._data_start(lines):])

        fields: List[DecodedField] = []
        labels = set()

        # 1. Catalog fields, in catalog order
        for definition in self.catalog:
            value = code_map.get(definition.code)
            if not value:
                continue
            if definition.formatter:
                value = definition.formatter(value)

            if definition.label in labels:
                continue
            blocker = SUPPRESSED_BY.get(definition.label)
            if blocker and blocker in labels:
                continue

            fields.append(DecodedField(definition.label, value))
            labels.add(definition.label)

        # 2. Keep anything we don't have a label for
        for code, value in code_map.items():
            if code not in self.known_codes:
                fields.append(DecodedField(f"{RAW_CODE_PREFIX}{code}", value))

        # 3. Full Name from parts
        if 'Full Name' not in labels:
            by_label = {f.label: f.value for f in fields}
            full_name = ' '.join(by_label[p] for p in NAME_PARTS if by_label.get(p))
            if full_name:
                fields.insert(0, DecodedField('Full Name', full_name))

        logging.debug(
            f"Decoded {len(fields)} fields from {len(code_map)} codes "
            f"({len(code_map.keys() - self.known_codes)} unrecognised)"
        )
        return fields

    def _data_start(self, lines: List[str]) -> int:
        """
        Skips the "@" compliance line and the "ANSI ..." header line when present.
        Payloads without the header are read from the first line.
        """
        if lines and lines[0].startswith('@'):
            if len(lines) > 1 and lines[1].startswith('ANSI'):
                return 2
            return 1
        return 0

    def _split_codes(self, lines: List[str]) -> Dict[str, str]:
        code_map: Dict[str, str] = {}
        for line in lines:
            if len(line) < 3:
                continue
            code, value = line[:3], line[3:]
            if code in code_map and not self.last_wins:
                continue
            code_map[code] = value
        return code_map


_default_decoder = AAMVADecoder()


def decode(raw: str) -> List[DecodedField]:
    """Decodes a payload with the default catalog and last-wins policy."""
    return _default_decoder.decode(raw)
