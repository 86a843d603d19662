"""Counters describing how much of accepted completions survives over time."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from scratchkit.telemetry.structs import SnippetTracker, Storage, TeleCompletionAccum
from scratchkit.telemetry.utils import (
    file_save,
    telemetry_storage_dirs,
    unchanged_percentage_approx,
)

log = logging.getLogger(__name__)

_INTERVALS = (30, 90, 180, 360)
_BUCKETS = ("0", "0_50", "50_80", "80_100", "100")
_COUNTER_NAMES = tuple(
    f"after_{seconds}s_remaining_{bucket}" for seconds in _INTERVALS for bucket in _BUCKETS
)

# (window start, window end or None, accumulator attribute); first match wins.
_WINDOWS = (
    (30, 90, "after_30s_remaining"),
    (90, 180, "after_90s_remaining"),
    (180, 360, "after_180s_remaining"),
    (360, None, "after_360s_remaining"),
)


def _bucket(value: float) -> str | None:
    """Name the bucket a remaining share falls in, or None when unset."""
    if value == -1.0:
        return None
    if value == 0.0:
        return "0"
    if value <= 0.5:
        return "0_50"
    if value <= 0.8:
        return "50_80"
    if value < 1.0:
        return "80_100"
    if value == 1.0:
        return "100"
    return None


def _zero_counts() -> dict[str, int]:
    return dict.fromkeys(_COUNTER_NAMES, 0)


@dataclass
class TeleCompletionCounters:
    """Finalized counters for one (file extension, model, multiline) combination."""

    file_extension: str
    model: str
    multiline: bool
    counts: dict[str, int] = field(default_factory=_zero_counts)

    def update(self, entry: TeleCompletionAccum) -> None:
        """Count the measurements of one finished accumulator."""
        for seconds in _INTERVALS:
            bucket = _bucket(getattr(entry, f"after_{seconds}s_remaining"))
            if bucket is not None:
                self.counts[f"after_{seconds}s_remaining_{bucket}"] += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_extension": self.file_extension,
            "model": self.model,
            "multiline": self.multiline,
            **self.counts,
        }


def create_data_accumulator_for_finished_snippet(
    accumulators: list[TeleCompletionAccum], uri: str, snip: SnippetTracker
) -> None:
    """Start tracking an accepted and finished snippet."""
    if snip.accepted_ts == 0 or snip.finished_ts == 0:
        return
    init_file_text = snip.inputs.sources.get(snip.inputs.cursor.file)
    if init_file_text is None:
        return
    accumulators.append(
        TeleCompletionAccum(
            uri=uri,
            model=snip.model,
            init_file_text=init_file_text,
            init_grey_text=snip.grey_text,
            created_ts=snip.finished_ts,
        )
    )


def on_file_text_changed(
    accumulators: list[TeleCompletionAccum],
    uri: str,
    text: str,
    now: int | None = None,
) -> None:
    """Take measurements for the accumulators of ``uri`` whose time window is open."""
    if now is None:
        now = int(time.time())
    for comp in accumulators:
        if comp.uri != uri or comp.finished_ts != 0:
            continue
        for start, end, attr in _WINDOWS:
            in_window = comp.created_ts + start < now and (
                end is None or comp.created_ts + end > now
            )
            if in_window and getattr(comp, attr) == -1.0:
                setattr(
                    comp,
                    attr,
                    unchanged_percentage_approx(
                        comp.init_file_text, text, comp.init_grey_text
                    ),
                )
                if end is None:
                    comp.finished_ts = now
                break


def compress_into_counters(
    data: list[TeleCompletionAccum],
) -> list[TeleCompletionCounters]:
    """Group accumulators and count the measurements of the finished ones."""
    groups: dict[tuple[str, str, bool], TeleCompletionCounters] = {}
    for accum in data:
        key = (accum.file_extension, accum.model, accum.multiline)
        counters = groups.setdefault(key, TeleCompletionCounters(*key))
        if accum.finished_ts != 0:
            counters.update(accum)
    return list(groups.values())


def compress_tele_completion_to_file(
    storage: Storage, cache_dir: Path | str, enduser_client_version: str
) -> Path:
    """Flush completion counters into a JSON file and return its path."""
    now = datetime.now()
    timestamp = int(now.timestamp())
    with storage.lock:
        records = [c.to_dict() for c in compress_into_counters(storage.snippet_data_accumulators)]
        storage.snippet_data_accumulators.clear()

    directory, _ = telemetry_storage_dirs(cache_dir)
    path = directory / f"{now:%Y%m%d-%H%M%S}-comp.json"
    big_json = {
        "records": records,
        "ts_start": timestamp,
        "ts_end": timestamp,
        "teletype": "comp_counters",
        "enduser_client_version": enduser_client_version,
    }
    log.info('completion telemetry save "%s"', path)
    try:
        file_save(path, big_json)
    except OSError as exc:
        log.error("error: %s", exc)
    return path