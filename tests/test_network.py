import json

from scratchkit.telemetry.network import (
    compress_basic_telemetry_to_file,
    compress_telemetry_network,
)
from scratchkit.telemetry.structs import Storage, TelemetryNetwork


def _storage():
    storage = Storage(last_flushed_ts=1000)
    storage.tele_net.extend(
        [
            TelemetryNetwork("http://localhost/a", "caps", True, ""),
            TelemetryNetwork("http://localhost/a", "caps", True, ""),
            TelemetryNetwork("http://localhost/a", "caps", False, "timeout"),
            TelemetryNetwork("http://localhost/b", "chat", True, ""),
        ]
    )
    return storage


def test_compress_groups_and_counts():
    records = compress_telemetry_network(_storage())
    assert len(records) == 3
    by_key = {(r["url"], r["success"]): r["counter"] for r in records}
    assert by_key[("http://localhost/a", True)] == 2
    assert by_key[("http://localhost/a", False)] == 1
    assert by_key[("http://localhost/b", True)] == 1


def test_compress_counter_total_matches_records():
    storage = _storage()
    records = compress_telemetry_network(storage)
    assert sum(r["counter"] for r in records) == len(storage.tele_net)


def test_compress_keeps_record_fields():
    records = compress_telemetry_network(_storage())
    failed = next(r for r in records if not r["success"])
    assert failed["error_message"] == "timeout"
    assert failed["scope"] == "caps"


def test_compress_empty_storage():
    assert compress_telemetry_network(Storage()) == []


def test_compress_to_file_writes_and_clears(tmp_path):
    storage = _storage()
    path = compress_basic_telemetry_to_file(storage, tmp_path, "client-1")
    assert path.name.endswith("-net.json")
    assert path.parent == tmp_path / "telemetry" / "compressed"
    data = json.loads(path.read_text())
    assert data["teletype"] == "network"
    assert data["enduser_client_version"] == "client-1"
    assert data["ts_start"] == 1000
    assert data["ts_end"] == storage.last_flushed_ts
    assert sum(r["counter"] for r in data["records"]) == 4
    assert storage.tele_net == []


def test_compress_to_file_twice_chains_timestamps(tmp_path):
    storage = _storage()
    compress_basic_telemetry_to_file(storage, tmp_path, "v")
    first_end = storage.last_flushed_ts
    path = compress_basic_telemetry_to_file(storage, tmp_path, "v")
    data = json.loads(path.read_text())
    assert data["ts_start"] == first_end
    assert data["records"] == []