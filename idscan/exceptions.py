"""
Custom exception hierarchy for the ID scan catalog.

The decoder never raises for malformed payloads; these cover the storage
side, where ScanStore turns them into failure results at each operation
boundary.
"""


class IDScanError(Exception):
    """Base exception for all ID scan catalog errors."""
    pass


class StorageError(IDScanError):
    """Raised when a durable backend read or write fails (including quota exceeded)."""
    pass


class ImportFormatError(IDScanError):
    """Raised when an import file is not a JSON list of scans."""
    pass


class ExportFormatError(IDScanError):
    """Raised when an unsupported export format is requested."""
    pass
