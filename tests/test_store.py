import csv
import io
import json
from datetime import datetime, timedelta, UTC

import pytest

from idscan import config
from idscan.decoding.parser import decode
from idscan.models import DateRange, DecodedField, ExportOptions, SearchFilters
from idscan.storage.backends import MemoryBackupStore, MemoryKeyValueStore
from idscan.storage.query import field_value
from idscan.storage.store import ScanStore, format_size


def _payload(state="CA", last="SMITH", first="JOHN", license_no="D1234567"):
    return f"@\nANSI 1\nDCS{last}\nDAC{first}\nDAJ{state}\nDAQ{license_no}\nDBC2"


def _stored_entry(scan_id, timestamp, state="CA", **extra):
    entry = {
        "id": scan_id,
        "timestamp": timestamp,
        "parsedData": {"fields": [{"field": "State", "value": state}]},
        "rawData": f"DAJ{state}",
        "notes": "",
        "tags": [],
    }
    entry.update(extra)
    return entry


def test_save_and_get_all_round_trip(store, sample_payload):
    fields = decode(sample_payload)
    scan_id = store.save(fields, sample_payload)

    scans = store.get_all()
    assert len(scans) == 1
    scan = scans[0]
    assert scan.id == scan_id
    assert scan.raw_payload == sample_payload
    assert scan.fields == decode(sample_payload)
    assert scan.notes == ""
    assert scan.created_at is not None


def test_save_derives_tags(store):
    store.save(decode(_payload(state="NV")), _payload(state="NV"))
    scan = store.get_all()[0]
    assert scan.tags == ["State: NV", "Driver License", "Gender: Female"]


def test_save_without_fields_keeps_raw_payload(store):
    scan_id = store.save([], "unreadable")
    scan = store.get_all()[0]
    assert scan.id == scan_id
    assert scan.fields == []
    assert scan.raw_payload == "unreadable"
    assert scan.tags == ["Driver License"]


def test_newest_first_and_unique_ids(store):
    ids = [store.save(decode(_payload(license_no=f"L{i}")), _payload(license_no=f"L{i}")) for i in range(5)]
    scans = store.get_all()
    assert [s.id for s in scans] == list(reversed(ids))
    assert len(set(ids)) == 5


def test_save_fails_cleanly_when_write_fails(backup_store, sample_payload):
    kv = MemoryKeyValueStore(quota=200)
    store = ScanStore(kv, backup_store)

    assert store.save(decode(sample_payload), sample_payload) is None
    assert store.get_all() == []


def test_retention_caps_collection_at_max_entries(store):
    for i in range(config.MAX_ENTRIES + 1):
        store.save([], f"payload {i}")

    scans = store.get_all()
    assert len(scans) <= config.MAX_ENTRIES
    # The oldest one went
    assert scans[0].raw_payload == f"payload {config.MAX_ENTRIES}"
    assert all(s.raw_payload != "payload 0" for s in scans)


def test_retention_limits_are_configurable(kv, backup_store):
    store = ScanStore(kv, backup_store, max_storage_size=2000, max_entries=3)
    for i in range(5):
        store.save([], "x" * 300 + str(i))

    scans = store.get_all()
    assert len(scans) == 3
    assert [s.raw_payload[-1] for s in scans] == ["4", "3", "2"]


def test_size_ceiling_alone_keeps_every_scan_under_the_entry_cap(kv, backup_store):
    store = ScanStore(kv, backup_store, max_storage_size=10, max_entries=1000)
    for i in range(3):
        assert store.save([], f"payload {i}")

    assert [s.raw_payload for s in store.get_all()] == ["payload 2", "payload 1", "payload 0"]
    assert store.get_analytics().storage_percentage > 100


def test_search_by_state_is_case_insensitive(store):
    store.save(decode(_payload(state="CA")), _payload(state="CA"))
    store.save(decode(_payload(state="NY")), _payload(state="NY"))

    results = store.search(SearchFilters(state="ca"))
    assert len(results) == 1
    assert results[0].tags[0] == "State: CA"


def test_search_by_name_and_license(store):
    store.save(decode(_payload(first="JANE", last="DOE", license_no="A111")), _payload(first="JANE", last="DOE", license_no="A111"))
    store.save(decode(_payload(first="JOHN", last="ROE", license_no="B222")), _payload(first="JOHN", last="ROE", license_no="B222"))

    assert [s.fields[0].value for s in store.search(SearchFilters(name="jane doe"))] == ["JANE DOE"]
    assert len(store.search(SearchFilters(license_number="b2"))) == 1
    # Filters are ANDed
    assert store.search(SearchFilters(name="jane", license_number="b2")) == []


def test_search_name_falls_back_to_first_and_last(kv, store):
    entry = _stored_entry("a1", "2024-01-01T00:00:00.000Z")
    entry["parsedData"]["fields"] = [
        {"field": "First Name", "value": "ANN"},
        {"field": "Last Name", "value": "LEE"},
    ]
    kv.set(config.STORAGE_KEY, json.dumps([entry]))

    assert len(store.search(SearchFilters(name="ann lee"))) == 1


def test_search_without_filters_returns_everything(store):
    for i in range(3):
        store.save([], f"p{i}")
    assert store.search(SearchFilters()) == store.get_all()
    assert store.search() == store.get_all()


def test_search_by_date_range_is_inclusive(kv, store):
    kv.set(config.STORAGE_KEY, json.dumps([
        _stored_entry("c", "2024-03-01T00:00:00.000Z"),
        _stored_entry("b", "2024-02-01T00:00:00.000Z"),
        _stored_entry("a", "2024-01-01T00:00:00.000Z"),
    ]))
    window = DateRange(datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 2, 1, tzinfo=UTC))

    results = store.search(SearchFilters(date_range=window))
    assert [s.id for s in results] == ["b", "a"]


def test_update_changes_only_notes_and_tags(store):
    scan_id = store.save([], "raw")
    before = store.get_all()[0]

    assert store.update(scan_id, notes="checked at door", tags=["VIP"])
    after = store.get_all()[0]
    assert after.notes == "checked at door"
    assert after.tags == ["VIP"]
    assert after.timestamp == before.timestamp
    assert after.raw_payload == before.raw_payload

    assert store.update("missing", notes="x") is False


def test_delete_one(store):
    keep = store.save([], "keep")
    drop = store.save([], "drop")

    assert store.delete_one(drop)
    assert [s.id for s in store.get_all()] == [keep]


def test_delete_missing_id_is_noop_success(store):
    store.save([], "a")
    before = store.get_all()
    assert store.delete_one("does-not-exist") is True
    assert store.get_all() == before


def test_clear_all(store):
    store.save([], "a")
    store.save([], "b")
    assert store.clear_all()
    assert store.get_all() == []


def test_get_all_repairs_legacy_records(kv, store):
    legacy = {
        "timestamp": "2023-05-01T10:00:00.000Z",
        "parsedData": {"fields": [{"field": "State", "value": "WA"}]},
        "rawData": "DAJWA",
    }
    kv.set(config.STORAGE_KEY, json.dumps([legacy]))

    first = store.get_all()
    assert len(first) == 1
    scan = first[0]
    assert scan.id
    assert scan.notes == ""
    assert scan.tags == ["State: WA", "Driver License"]
    # Repair is written back, so the id is stable
    assert store.get_all()[0].id == scan.id


def test_get_all_on_corrupt_storage_returns_empty(kv, store):
    kv.set(config.STORAGE_KEY, "{not json")
    assert store.get_all() == []
    assert store.save([], "x") is None


def test_export_json_round_trip_imports_nothing_new(store):
    for i in range(3):
        store.save(decode(_payload(license_no=f"L{i}")), _payload(license_no=f"L{i}"))

    exported = store.export(ExportOptions(format="json"))
    result = store.import_scans(exported.data)

    assert result.success
    assert result.imported == 0
    assert result.skipped == 3
    assert len(store.get_all()) == 3


def test_export_json_without_raw_payload(store):
    store.save([], "secret raw")
    exported = store.export(ExportOptions(format="json", include_raw_payload=False))
    data = json.loads(exported.data)
    assert "rawData" not in data[0]
    assert exported.content_type == "application/json"


def test_export_date_range(kv, store):
    kv.set(config.STORAGE_KEY, json.dumps([
        _stored_entry("new", "2024-06-01T00:00:00.000Z"),
        _stored_entry("old", "2020-06-01T00:00:00.000Z"),
    ]))
    window = DateRange(datetime(2024, 1, 1), datetime(2024, 12, 31))
    exported = store.export(ExportOptions(format="json", date_range=window))
    assert [e["id"] for e in json.loads(exported.data)] == ["new"]


def test_export_unknown_format_fails(store):
    assert store.export(ExportOptions(format="xml")) is None


def test_import_merges_and_sorts_newest_first(kv, store):
    kv.set(config.STORAGE_KEY, json.dumps([_stored_entry("mid", "2024-02-01T00:00:00.000Z")]))

    incoming = [
        _stored_entry("new", "2024-03-01T00:00:00.000Z"),
        _stored_entry("old", "2024-01-01T00:00:00.000Z"),
        _stored_entry("mid", "2024-02-01T00:00:00.000Z", notes="should not overwrite"),
        {"timestamp": "2024-01-15T00:00:00.000Z", "parsedData": {"fields": []}, "rawData": "no id"},
        {"timestamp": 12345, "parsedData": {"fields": []}, "rawData": "bad timestamp"},
        {"timestamp": "2024-01-15T00:00:00.000Z", "parsedData": {}, "rawData": "no fields"},
        "not a record",
    ]
    result = store.import_scans(json.dumps(incoming).encode("utf-8"))

    assert result.success
    assert result.imported == 3
    assert result.skipped == 4

    scans = store.get_all()
    assert [s.timestamp[:10] for s in scans] == ["2024-03-01", "2024-02-01", "2024-01-15", "2024-01-01"]
    mid = next(s for s in scans if s.id == "mid")
    assert mid.notes == ""
    no_id = next(s for s in scans if s.raw_payload == "no id")
    assert no_id.id
    assert no_id.tags == ["Driver License"]


def test_import_rejects_non_list(store):
    result = store.import_scans(b'{"id": "x"}')
    assert not result.success
    assert (result.imported, result.skipped) == (0, 0)

    assert not store.import_scans(b"not json at all").success


def test_import_skips_duplicate_ids_within_batch(store):
    batch = [
        _stored_entry("dup", "2024-01-01T00:00:00.000Z"),
        _stored_entry("dup", "2024-01-02T00:00:00.000Z"),
    ]
    result = store.import_scans(json.dumps(batch))
    assert (result.imported, result.skipped) == (1, 1)


def _export_text(store, fmt):
    result = store.export(ExportOptions(format=fmt))
    assert result is not None
    return result.data.decode("utf-8")


def test_import_converts_non_string_tags_and_null_values(store):
    entry = _stored_entry("x1", "2024-01-01T00:00:00.000Z", tags=[1, 2])
    entry["parsedData"]["fields"] = [{"field": "State", "value": None}, {"field": "City", "value": 42}]
    result = store.import_scans(json.dumps([entry]))
    assert (result.imported, result.skipped) == (1, 0)

    scan = store.get("x1")
    assert scan.tags == ["1", "2"]
    assert [(f.label, f.value) for f in scan.fields] == [("State", ""), ("City", "42")]

    rows = list(csv.DictReader(io.StringIO(_export_text(store, "csv"))))
    assert rows[0]["Tags"] == "1; 2"
    assert rows[0]["State"] == ""
    assert "Tags: 1, 2" in _export_text(store, "pdf")


def test_import_rederives_tags_stored_as_a_string(store):
    entry = _stored_entry("x2", "2024-01-01T00:00:00.000Z", state="NV", tags="VIP")
    assert store.import_scans(json.dumps([entry])).imported == 1

    assert store.get("x2").tags == ["State: NV", "Driver License"]

    rows = list(csv.DictReader(io.StringIO(_export_text(store, "csv"))))
    assert rows[0]["Tags"] == "State: NV; Driver License"
    assert "Tags: State: NV, Driver License" in _export_text(store, "pdf")


def test_get_all_cleans_stored_annotations(kv, store):
    kv.set(config.STORAGE_KEY, json.dumps([
        _stored_entry("a", "2024-01-02T00:00:00.000Z", tags=[7, None], notes=None),
        _stored_entry("b", "2024-01-01T00:00:00.000Z", tags={"bad": 1}),
    ]))

    a, b = store.get_all()
    assert (a.tags, a.notes) == (["7"], "")
    assert b.tags == ["State: CA", "Driver License"]

    # Written back in the clean form
    stored = json.loads(kv.get(config.STORAGE_KEY))
    assert [e["tags"] for e in stored] == [["7"], ["State: CA", "Driver License"]]
    assert stored[0]["notes"] == ""
    assert _export_text(store, "csv")


def test_backup_and_restore(store):
    first = store.save([], "first")
    assert store.backup()

    store.save([], "second")
    store.delete_one(first)
    assert [s.raw_payload for s in store.get_all()] == ["second"]

    assert store.restore()
    assert [s.id for s in store.get_all()] == [first]


def test_backup_replaces_previous_backup(store, backup_store):
    store.save([], "one")
    store.backup()
    store.save([], "two")
    store.backup()

    record = backup_store.get(config.BACKUP_KEY)
    assert record["id"] == config.BACKUP_KEY
    assert len(record["data"]) == 2
    assert len(backup_store.records) == 1


def test_restore_without_backup_fails(store):
    store.save([], "x")
    assert store.restore() is False
    assert len(store.get_all()) == 1


def test_get_stats(kv, store):
    empty = store.get_stats()
    assert empty.total_scans == 0
    assert empty.last_scan is None
    assert empty.oldest_scan is None

    kv.set(config.STORAGE_KEY, json.dumps([
        _stored_entry("b", "2024-02-01T00:00:00.000Z"),
        _stored_entry("a", "2024-01-01T00:00:00.000Z"),
    ]))
    stats = store.get_stats()
    assert stats.total_scans == 2
    assert stats.last_scan == datetime(2024, 2, 1, tzinfo=UTC)
    assert stats.oldest_scan == datetime(2024, 1, 1, tzinfo=UTC)
    assert stats.storage_used.endswith("Bytes") or stats.storage_used.endswith("KB")


def test_stats_blob_written_after_save(kv, store):
    store.save([], "x")
    blob = json.loads(kv.get(config.SETTINGS_KEY))
    assert blob["stats"]["totalScans"] == 1
    assert "lastUpdated" in blob


@pytest.mark.parametrize(
    "num_bytes,expected",
    [
        (0, "0 Bytes"),
        (512, "512 Bytes"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (5 * 1024 * 1024, "5 MB"),
        (3 * 1024 ** 3, "3 GB"),
        (1234567, "1.18 MB"),
    ],
)
def test_format_size(num_bytes, expected):
    assert format_size(num_bytes) == expected


def test_settings_round_trip(store):
    settings = store.get_settings()
    assert settings.auto_backup is True
    assert settings.max_storage_size == config.MAX_STORAGE_SIZE

    assert store.update_settings(auto_backup=False, export_format="csv")
    settings = store.get_settings()
    assert settings.auto_backup is False
    assert settings.export_format == "csv"

    with pytest.raises(ValueError):
        store.update_settings(colour="blue")


def test_analytics(kv, store):
    now = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)
    kv.set(config.STORAGE_KEY, json.dumps([
        _stored_entry("d", (now - timedelta(hours=1)).isoformat(), state="CA"),
        _stored_entry("c", (now - timedelta(days=2)).isoformat(), state="CA"),
        _stored_entry("b", "2024-02-20T00:00:00+00:00", state="NY"),
        _stored_entry("a", "2024-03-01T12:00:00+00:00", state="CA"),
    ]))

    analytics = store.get_analytics(now=now)
    assert analytics.total_scans == 4
    assert analytics.scans_today == 1
    assert analytics.scans_this_month == 3
    assert analytics.most_scanned_state == "CA"
    # Oldest scan was 19 days before "now": 20 calendar days
    assert analytics.average_scans_per_day == 0.2
    assert analytics.storage_total == config.MAX_STORAGE_SIZE
    assert analytics.storage_used > 0


def test_field_value_stops_at_first_match_even_when_empty():
    fields = [DecodedField("State", ""), DecodedField("Raw Code: State", "NV")]
    assert field_value(fields, "State") is None
    assert field_value([DecodedField("Raw Code: DAJ", "CA")], "DAJ") == "CA"
    assert field_value(fields, "City") is None
