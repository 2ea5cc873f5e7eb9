import csv
import io
import json
import logging
from datetime import datetime, UTC
from typing import List, Optional

from . import config
from .exceptions import ExportFormatError
from .models import ExportResult, Scan
from .storage.query import display_name, field_value


class ReportGenerator:
    """
    Renders a list of scans into one of the export formats.
    """

    def __init__(self, scans: List[Scan]):
        self.scans = scans

    def render(self, fmt: str, include_raw_payload: bool = True, today: Optional[datetime] = None) -> ExportResult:
        if fmt == 'json':
            body = self.to_json(include_raw_payload)
        elif fmt == 'csv':
            body = self.to_csv()
        elif fmt == 'pdf':
            body = self.to_pdf_text()
        else:
            raise ExportFormatError(f"Unsupported export format: {fmt}")

        today = today or datetime.now(UTC)
        filename = config.EXPORT_FILENAME.format(date=today.strftime("%Y-%m-%d"), ext=fmt)

        logging.info(f"Rendered {len(self.scans)} scans as {fmt} ({filename})")
        return ExportResult(
            data=body.encode('utf-8'),
            content_type=config.EXPORT_CONTENT_TYPES[fmt],
            filename=filename,
        )

    def to_json(self, include_raw_payload: bool = True) -> str:
        return json.dumps(
            [scan.to_dict(include_raw_payload=include_raw_payload) for scan in self.scans],
            indent=2,
        )

    def to_csv(self) -> str:
        """
        Fixed columns, every cell quoted. Missing fields are empty strings.
        """
        buf = io.StringIO()
        writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator='\n')
        writer.writerow([header for header, _ in config.CSV_COLUMNS])

        for scan in self.scans:
            writer.writerow(self._csv_row(scan))

        return buf.getvalue()

    def _csv_row(self, scan: Scan) -> list:
        row = []
        for header, label in config.CSV_COLUMNS:
            if label is not None:
                row.append(field_value(scan.fields, label) or '')
            elif header == 'ID':
                row.append(scan.id)
            elif header == 'Timestamp':
                row.append(scan.timestamp)
            elif header == 'Notes':
                row.append(scan.notes or '')
            elif header == 'Tags':
                row.append('; '.join(scan.tags))
        return row

    def to_pdf_text(self) -> str:
        """
        Plain-text stand-in for a PDF report: one block per scan.
        """
        blocks = []
        for scan in self.scans:
            fields = scan.fields
            created = scan.created_at
            date_str = created.astimezone().strftime("%Y-%m-%d %H:%M:%S") if created else scan.timestamp

            blocks.append("\n".join([
                f"Scan ID: {scan.id}",
                f"Date: {date_str}",
                f"Name: {display_name(fields)}",
                f"License #: {field_value(fields, 'License Number') or 'N/A'}",
                f"State: {field_value(fields, 'State') or 'N/A'}",
                f"DOB: {field_value(fields, 'Date of Birth') or 'N/A'}",
                f"Notes: {scan.notes or 'None'}",
                f"Tags: {', '.join(scan.tags) or 'None'}",
                config.PDF_SEPARATOR,
            ]))

        return "\n\n".join(blocks) + ("\n" if blocks else "")
