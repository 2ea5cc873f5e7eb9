import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from tqdm import tqdm

from . import config
from .decoding.parser import AAMVADecoder
from .models import DecodedField
from .storage.backends import SQLiteBackupStore, SQLiteKeyValueStore
from .storage.db import DBManager
from .storage.store import ScanRepository, ScanStore

PAYLOAD_EXTS = {'.txt', '.aamva', '.pdf417'}


class IDScanApp:
    """
    Glue between the decoder and the scan store: decode, save, auto-backup.
    The store is injected; `open()` builds the SQLite-backed one.
    """

    def __init__(self, store: ScanRepository, decoder: Optional[AAMVADecoder] = None):
        self.store = store
        self.decoder = decoder or AAMVADecoder()
        self._db_managers: List[DBManager] = []

    @classmethod
    def open(cls, db_path: Path, backup_path: Optional[Path] = None) -> "IDScanApp":
        """
        Opens (or creates) the primary database and the backup database.
        The backup defaults to a sibling file of the primary one.
        """
        backup_path = backup_path or db_path.with_name(config.DEFAULT_BACKUP_DB_NAME)
        primary = DBManager(db_path)
        secondary = DBManager(backup_path)

        store = ScanStore(
            SQLiteKeyValueStore(primary.connect()),
            SQLiteBackupStore(secondary.connect()),
        )
        app = cls(store)
        app._db_managers = [primary, secondary]
        return app

    def close(self):
        for manager in self._db_managers:
            manager.close()
        self._db_managers = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def decode(self, raw: str) -> List[DecodedField]:
        return self.decoder.decode(raw)

    def scan(self, raw: str, save: bool = True) -> Tuple[List[DecodedField], Optional[str]]:
        """
        Decodes one payload and, if anything was recognised, saves it.

        Returns:
            (fields, scan_id) where scan_id is None when nothing was saved.
        """
        fields = self.decode(raw)
        if not save:
            return fields, None

        if not fields:
            logging.warning("Payload produced no fields; not saving.")
            return fields, None

        scan_id = self.store.save(fields, raw)
        if scan_id and self.store.get_settings().auto_backup:
            # Backup is best-effort; the save already succeeded
            if not self.store.backup():
                logging.warning("Auto-backup failed after save.")

        return fields, scan_id

    def ingest(self, paths: Iterable[Path]) -> Tuple[int, int]:
        """
        Decodes and saves every payload file.

        Returns:
            (saved, failed)
        """
        paths = list(paths)
        saved = 0
        failed = 0

        for path in tqdm(paths, desc="Ingesting payloads"):
            try:
                raw = path.read_text(encoding='utf-8')
            except (OSError, UnicodeDecodeError) as e:
                logging.error(f"Could not read {path}: {e}")
                failed += 1
                continue

            _, scan_id = self.scan(raw)
            if scan_id:
                saved += 1
            else:
                failed += 1

        logging.info(f"Ingest complete. Saved {saved}, failed {failed}.")
        return saved, failed


def iter_payload_files(root: Union[Path, str]) -> Iterator[Path]:
    """Payload text files under root, sorted for stable ingest order."""
    root = Path(root)
    for p in sorted(root.rglob("*")):
        if p.is_file() and p.suffix.lower() in PAYLOAD_EXTS:
            yield p
