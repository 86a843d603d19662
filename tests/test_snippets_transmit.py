import asyncio
import json
import time
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx

from scratchkit.telemetry.snippets_transmit import (
    send_finished_snippets,
    tele_snip_background_task,
)
from scratchkit.telemetry.structs import (
    CompletionInputs,
    CursorPosition,
    SnippetTracker,
    Storage,
)
from scratchkit.telemetry.transmit import TelemetryContext

DEST = "http://snippets.example.com/upload"


def _snip(snip_id, created_ago, accepted=False, finished=False):
    now = int(time.time())
    inputs = CompletionInputs({"a.py": "x\n"}, CursorPosition("a.py", 0, 0), False)
    return SnippetTracker(
        snippet_telemetry_id=snip_id,
        model="model",
        inputs=inputs,
        grey_text="grey",
        created_ts=now - created_ago,
        accepted_ts=now if accepted else 0,
        finished_ts=now if finished else 0,
    )


def _storage():
    storage = Storage()
    storage.tele_snippets.extend(
        [
            _snip(1, 5, accepted=True, finished=True),
            _snip(2, 5, accepted=True),
            _snip(3, 1000, accepted=True),
            _snip(4, 100),
            _snip(5, 5),
        ]
    )
    return storage


@pytest.mark.asyncio
async def test_prunes_even_when_disabled(tmp_path):
    context = TelemetryContext(cache_dir=tmp_path, storage=_storage())
    delivered = await send_finished_snippets(context)
    assert delivered == 0
    assert [s.snippet_telemetry_id for s in context.storage.tele_snippets] == [2, 5]


@pytest.mark.asyncio
async def test_sends_finished_snippets(tmp_path):
    context = TelemetryContext(
        cache_dir=tmp_path,
        storage=_storage(),
        api_key="placeholder",
        snippet_telemetry=True,
        enduser_client_version="1.0",
        telemetry_corrected_snippets_dest=DEST,
    )
    with respx.mock:
        route = respx.post(DEST).mock(return_value=httpx.Response(200, json={"retcode": "OK"}))
        delivered = await send_finished_snippets(context)
        body = json.loads(route.calls.last.request.content)
    assert delivered == 1
    assert route.call_count == 1
    assert body["teletype"] == "snippets"
    assert body["enduser_client_version"] == "1.0"
    assert [r["snippet_telemetry_id"] for r in body["records"]] == [1]


@pytest.mark.asyncio
async def test_failed_send_counts_nothing_and_snippet_is_dropped(tmp_path):
    context = TelemetryContext(
        cache_dir=tmp_path,
        storage=_storage(),
        snippet_telemetry=True,
        telemetry_corrected_snippets_dest=DEST,
    )
    with respx.mock:
        respx.post(DEST).mock(return_value=httpx.Response(500))
        delivered = await send_finished_snippets(context)
    assert delivered == 0
    assert 1 not in [s.snippet_telemetry_id for s in context.storage.tele_snippets]


@pytest.mark.asyncio
async def test_background_task_prunes_after_sleep(tmp_path):
    context = TelemetryContext(cache_dir=tmp_path, storage=_storage())
    sleep = AsyncMock(side_effect=[None, asyncio.CancelledError()])
    with patch("asyncio.sleep", sleep):
        with pytest.raises(asyncio.CancelledError):
            await tele_snip_background_task(context)
    assert sleep.await_args_list[0].args == (30,)
    assert [s.snippet_telemetry_id for s in context.storage.tele_snippets] == [2, 5]