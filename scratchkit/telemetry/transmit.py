"""Periodic flushing of telemetry to disk and sending it to the server."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

import httpx

from scratchkit.telemetry.comp_counters import compress_tele_completion_to_file
from scratchkit.telemetry.network import compress_basic_telemetry_to_file
from scratchkit.telemetry.robot_human import tele_robot_human_compress_to_file
from scratchkit.telemetry.structs import Storage
from scratchkit.telemetry.utils import (
    cleanup_old_files,
    read_file,
    sorted_json_files,
    telemetry_storage_dirs,
)

log = logging.getLogger(__name__)

TELEMETRY_TRANSMIT_EACH_N_SECONDS = 3600
TELEMETRY_FILES_KEEP = 30

_SENDABLE_SUFFIXES = ("-net.json", "-rh.json", "-comp.json")


class TelemetrySendError(Exception):
    """Telemetry could not be delivered to its destination."""


@dataclass
class TelemetryContext:
    """Everything the telemetry tasks need to know about the running service."""

    cache_dir: Path
    storage: Storage = field(default_factory=Storage)
    api_key: str = ""
    basic_telemetry: bool = False
    snippet_telemetry: bool = False
    enduser_client_version: str = ""
    telemetry_basic_dest: str = ""
    telemetry_corrected_snippets_dest: str = ""


async def send_telemetry_data(contents: str, telemetry_dest: str, api_key: str) -> None:
    """POST ``contents`` to ``telemetry_dest``; raise TelemetrySendError on failure."""
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.post(telemetry_dest, content=contents, headers=headers)
    except httpx.HTTPError as exc:
        raise TelemetrySendError(
            f"telemetry send failed: {exc}\ndest url was\n{telemetry_dest}"
        ) from exc
    if resp.status_code != httpx.codes.OK:
        raise TelemetrySendError(
            f"telemetry send failed: {resp.status_code}\ndest url was\n{telemetry_dest}"
        )
    body = resp.text or "-empty-"
    log.info("telemetry send success, response:\n%s", body)
    try:
        parsed = json.loads(body)
    except ValueError:
        parsed = {}
    retcode = parsed.get("retcode") if isinstance(parsed, dict) else None
    if retcode != "OK":
        raise TelemetrySendError("retcode is not OK")


async def send_telemetry_files_to_mothership(
    dir_compressed: Path | str,
    dir_sent: Path | str,
    telemetry_basic_dest: str,
    api_key: str,
) -> None:
    """Send the files in ``dir_compressed``, moving each delivered one to ``dir_sent``."""
    dir_sent = Path(dir_sent)
    for path in sorted_json_files(dir_compressed):
        try:
            contents = read_file(path)
        except (OSError, UnicodeDecodeError) as exc:
            log.error("cannot read %s: %s", path, exc)
            continue
        if not path.name.endswith(_SENDABLE_SUFFIXES):
            continue
        log.info("sending telemetry file\n%s\nto url\n%s", path, telemetry_basic_dest)
        try:
            await send_telemetry_data(contents, telemetry_basic_dest, api_key)
        except TelemetrySendError as exc:
            log.error("telemetry send failed: %s", exc)
            continue
        new_path = dir_sent / path.name
        log.info("success, moving file to %s", new_path)
        try:
            path.rename(new_path)
        except OSError as exc:
            log.error("telemetry send success, but cannot move file: %s", exc)
            log.error("pretty bad, because this can lead to infinite sending of the same file")
            break


async def telemetry_full_cycle(context: TelemetryContext, skip_sending_part: bool) -> None:
    """Flush all basic telemetry to files, send them if enabled, prune old files."""
    log.info("basic telemetry compression starts")
    dir_compressed, dir_sent = telemetry_storage_dirs(context.cache_dir)
    version = context.enduser_client_version

    compress_basic_telemetry_to_file(context.storage, context.cache_dir, version)
    tele_robot_human_compress_to_file(context.storage, context.cache_dir, version)
    compress_tele_completion_to_file(context.storage, context.cache_dir, version)

    if context.basic_telemetry and context.telemetry_basic_dest and not skip_sending_part:
        await send_telemetry_files_to_mothership(
            dir_compressed, dir_sent, context.telemetry_basic_dest, context.api_key
        )
    if not context.basic_telemetry:
        log.info("telemetry sending not enabled, skip")
    cleanup_old_files(dir_compressed, TELEMETRY_FILES_KEEP)
    cleanup_old_files(dir_sent, TELEMETRY_FILES_KEEP)


async def telemetry_background_task(context: TelemetryContext) -> None:
    """Run a full telemetry cycle every hour, forever."""
    while True:
        await asyncio.sleep(TELEMETRY_TRANSMIT_EACH_N_SECONDS)
        await telemetry_full_cycle(context, False)