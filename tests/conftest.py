import pytest
import sqlite3
from idscan.storage.schema import init_schema
from idscan.storage.backends import MemoryBackupStore, MemoryKeyValueStore, SQLiteBackupStore, SQLiteKeyValueStore
from idscan.storage.store import ScanStore

SAMPLE_PAYLOAD = "\n".join([
    "@",
    "ANSI 636014040002DL00410278ZC03190008DLDAQ",
    "DCSSMITH",
    "DACJOHN",
    "DADQUINCY",
    "DBB19850615",
    "DBC1",
    "DAU070",
    "DAYBRO",
    "DAG123 MAIN ST",
    "DAISACRAMENTO",
    "DAJCA",
    "DAK958141234",
    "DAQD1234567",
    "DAW180",
    "DAZBLK",
])

@pytest.fixture
def conn():
    """Returns an in-memory SQLite connection with the schema initialized."""
    c = sqlite3.connect(":memory:")
    init_schema(c)
    try:
        yield c
    finally:
        c.close()

@pytest.fixture
def kv():
    return MemoryKeyValueStore()

@pytest.fixture
def backup_store():
    return MemoryBackupStore()

@pytest.fixture
def store(kv, backup_store):
    """Returns a ScanStore over in-memory backends."""
    return ScanStore(kv, backup_store)

@pytest.fixture
def sqlite_store(conn):
    """Returns a ScanStore over the in-memory SQLite database."""
    return ScanStore(SQLiteKeyValueStore(conn), SQLiteBackupStore(conn))

@pytest.fixture
def sample_payload():
    return SAMPLE_PAYLOAD
