"""Pruning tracked snippets and sending the finished ones."""

from __future__ import annotations

import asyncio
import json
import logging
import time

from scratchkit.telemetry.structs import SnippetTracker
from scratchkit.telemetry.transmit import (
    TelemetryContext,
    TelemetrySendError,
    send_telemetry_data,
)

log = logging.getLogger(__name__)

SNIP_NOT_ACCEPTED_TIMEOUT_AFTER = 30
SNIP_ACCEPTED_NOT_FINISHED_TIMEOUT_AFTER = 600


def _take_finished(context: TelemetryContext, now: int) -> list[SnippetTracker]:
    """Drop finished and timed-out snippets, returning the finished ones."""
    storage = context.storage
    to_send: list[SnippetTracker] = []
    kept: list[SnippetTracker] = []
    with storage.lock:
        for snip in storage.tele_snippets:
            if snip.accepted_ts != 0:
                if snip.finished_ts != 0:
                    to_send.append(snip)
                elif snip.created_ts + SNIP_ACCEPTED_NOT_FINISHED_TIMEOUT_AFTER < now:
                    pass
                else:
                    kept.append(snip)
            elif snip.created_ts + SNIP_NOT_ACCEPTED_TIMEOUT_AFTER >= now:
                kept.append(snip)
        storage.tele_snippets[:] = kept
    return to_send


async def send_finished_snippets(context: TelemetryContext) -> int:
    """Prune tracked snippets and send finished ones; return how many were delivered."""
    now = int(time.time())
    to_send = _take_finished(context, now)

    dest = context.telemetry_corrected_snippets_dest
    if not context.snippet_telemetry or not dest or not to_send:
        return 0
    log.info("sending %d snippets", len(to_send))

    delivered = 0
    for snip in to_send:
        big_json = {
            "records": [snip.to_dict()],
            "ts_start": now,
            "ts_end": int(time.time()),
            "teletype": "snippets",
            "enduser_client_version": context.enduser_client_version,
        }
        try:
            await send_telemetry_data(json.dumps(big_json), dest, context.api_key)
        except TelemetrySendError as exc:
            log.error("snippet send failed: %s", exc)
            log.error("too bad snippet is lost now")
            continue
        delivered += 1
    return delivered


async def tele_snip_background_task(context: TelemetryContext) -> None:
    """Send finished snippets every 30 seconds, forever."""
    while True:
        await asyncio.sleep(30)
        await send_finished_snippets(context)