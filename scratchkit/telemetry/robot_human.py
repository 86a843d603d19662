"""Counting characters written by the model versus by the user."""

from __future__ import annotations

import logging
import math
import re
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from scratchkit.telemetry.structs import SnippetTracker, Storage, TeleRobotHumanAccum
from scratchkit.telemetry.utils import (
    file_save,
    get_add_del_from_texts,
    telemetry_storage_dirs,
)

log = logging.getLogger(__name__)

ROBOT_HUMAN_FILE_STATS_UPDATE_EVERY = 15

_WHITESPACE_RE = re.compile(r"\s+")


def _non_space_bytes(text: str) -> int:
    return len(_WHITESPACE_RE.sub("", text).encode("utf-8"))


def _robot_characters(snip: SnippetTracker) -> int:
    value = _non_space_bytes(snip.grey_text) * snip.remaining_percentage
    return 0 if math.isnan(value) else int(value)


def _human_characters(rec: TeleRobotHumanAccum, text: str) -> int:
    added, _ = get_add_del_from_texts(rec.baseline_text, text)
    return _non_space_bytes(added) - rec.robot_characters_acc_baseline


@dataclass
class TeleRobotHuman:
    """Aggregated robot/human character counts for one extension and model."""

    file_extension: str
    model: str
    human_characters: int = 0
    robot_characters: int = 0
    completions_cnt: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "file_extension": self.file_extension,
            "model": self.model,
            "human_characters": self.human_characters,
            "robot_characters": self.robot_characters,
            "completions_cnt": self.completions_cnt,
        }


def increase_counters_from_finished_snippet(
    tele_robot_human: list[TeleRobotHumanAccum],
    uri: str,
    text: str,
    snip: SnippetTracker,
    now: int | None = None,
) -> None:
    """Account a finished snippet in the per-file robot/human statistics."""
    if now is None:
        now = int(time.time())
    rec = next((r for r in tele_robot_human if r.uri == uri), None)
    if rec is None:
        init_file_text = snip.inputs.sources.get(snip.inputs.cursor.file)
        if init_file_text is None:
            return
        tele_robot_human.append(
            TeleRobotHumanAccum(
                uri=uri,
                model=snip.model,
                baseline_text=init_file_text,
                robot_characters_acc_baseline=_robot_characters(snip),
                used_snip_ids=[snip.snippet_telemetry_id],
            )
        )
        return

    if snip.snippet_telemetry_id in rec.used_snip_ids:
        return
    rec.robot_characters_acc_baseline += _robot_characters(snip)
    rec.used_snip_ids.append(snip.snippet_telemetry_id)
    if rec.baseline_updated_ts + ROBOT_HUMAN_FILE_STATS_UPDATE_EVERY < now:
        rec.baseline_updated_ts = now
        rec.human_characters += _human_characters(rec, text)
        rec.robot_characters += rec.robot_characters_acc_baseline
        rec.robot_characters_acc_baseline = 0
        rec.baseline_text = text


def compress_robot_human(data: list[TeleRobotHumanAccum]) -> list[TeleRobotHuman]:
    """Sum per-file statistics by (file extension, model)."""
    groups: dict[tuple[str, str], TeleRobotHuman] = {}
    for accum in data:
        key = (accum.file_extension, accum.model)
        record = groups.setdefault(key, TeleRobotHuman(*key))
        record.human_characters += accum.human_characters
        record.robot_characters += accum.robot_characters
        record.completions_cnt += len(accum.used_snip_ids)
    return list(groups.values())


def tele_robot_human_compress_to_file(
    storage: Storage, cache_dir: Path | str, enduser_client_version: str
) -> Path:
    """Flush robot/human statistics into a JSON file and return its path."""
    now = datetime.now()
    timestamp = int(now.timestamp())
    with storage.lock:
        records = [r.to_dict() for r in compress_robot_human(storage.tele_robot_human)]
        storage.tele_robot_human.clear()

    directory, _ = telemetry_storage_dirs(cache_dir)
    path = directory / f"{now:%Y%m%d-%H%M%S}-rh.json"
    big_json = {
        "records": records,
        "ts_start": timestamp,
        "ts_end": timestamp,
        "teletype": "robot_human",
        "enduser_client_version": enduser_client_version,
    }
    log.info('robot_human telemetry save "%s"', path)
    try:
        file_save(path, big_json)
    except OSError as exc:
        log.error("error: %s", exc)
    return path