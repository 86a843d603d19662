"""Aggregation and storage of network telemetry."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from scratchkit.telemetry.structs import Storage, TelemetryNetwork
from scratchkit.telemetry.utils import file_save, telemetry_storage_dirs

log = logging.getLogger(__name__)


def _key(rec: TelemetryNetwork) -> str:
    return f"{rec.url}/{rec.scope}/{json.dumps(rec.success)}/{rec.error_message}"


def compress_telemetry_network(storage: Storage) -> list[dict[str, Any]]:
    """Group identical network records, adding a ``counter`` to each."""
    grouped: dict[str, dict[str, Any]] = {}
    with storage.lock:
        for rec in storage.tele_net:
            entry = grouped.setdefault(_key(rec), {**rec.to_dict(), "counter": 0})
            entry["counter"] += 1
    return list(grouped.values())


def compress_basic_telemetry_to_file(
    storage: Storage, cache_dir: Path | str, enduser_client_version: str
) -> Path:
    """Flush network telemetry into a JSON file and return its path.

    The storage is cleared even when the file cannot be written.
    """
    now = datetime.now()
    timestamp = int(now.timestamp())
    directory, _ = telemetry_storage_dirs(cache_dir)

    records = compress_telemetry_network(storage)
    path = directory / f"{now:%Y%m%d-%H%M%S}-net.json"
    big_json: dict[str, Any] = {
        "records": records,
        "ts_end": timestamp,
        "teletype": "network",
        "enduser_client_version": enduser_client_version,
    }
    with storage.lock:
        storage.tele_net.clear()
        big_json["ts_start"] = storage.last_flushed_ts
        storage.last_flushed_ts = timestamp

    log.info('basic telemetry save "%s"', path)
    try:
        file_save(path, big_json)
    except OSError as exc:
        log.error("error: %s", exc)
    return path