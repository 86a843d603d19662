"""Tracking completions shown to the user until they are finished.

A completion answer carries a ``snippet_telemetry_id``; the IDE reports when
it was accepted, and subsequent file changes are translated into counters.
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass
from typing import Any

from scratchkit.telemetry.comp_counters import (
    create_data_accumulator_for_finished_snippet,
    on_file_text_changed,
)
from scratchkit.telemetry.robot_human import increase_counters_from_finished_snippet
from scratchkit.telemetry.structs import SnippetTracker, Storage
from scratchkit.telemetry.utils import (
    if_head_tail_equal_return_added_text,
    unchanged_percentage,
)


@dataclass
class CompletionCacheEntry:
    """What a completion produced, as stored alongside the cached answer."""

    completion0_text: str = ""
    completion0_finish_reason: str = ""
    completion0_snippet_telemetry_id: int | None = None


@dataclass
class SaveSnippet:
    """Storage and the completion request a snippet is registered for.

    ``post`` needs ``model`` and ``inputs`` attributes; a copy is kept.
    """

    storage: Storage
    post: Any

    def __post_init__(self) -> None:
        self.post = copy.deepcopy(self.post)


def snippet_register(save: SaveSnippet, grey_text: str) -> int:
    """Start tracking a completion and return its telemetry id."""
    storage = save.storage
    with storage.lock:
        snippet_telemetry_id = storage.tele_snippet_next_id
        storage.tele_snippets.append(
            SnippetTracker(
                snippet_telemetry_id=snippet_telemetry_id,
                model=save.post.model,
                inputs=copy.deepcopy(save.post.inputs),
                grey_text=grey_text,
                created_ts=int(time.time()),
            )
        )
        storage.tele_snippet_next_id += 1
    return snippet_telemetry_id


def snippet_register_from_data4cache(
    save: SaveSnippet, data4cache: CompletionCacheEntry
) -> None:
    """Register the first completion once it has a finish reason."""
    if not data4cache.completion0_finish_reason:
        return
    data4cache.completion0_snippet_telemetry_id = snippet_register(
        save, data4cache.completion0_text
    )


def snippet_accepted(storage: Storage, snippet_telemetry_id: int) -> bool:
    """Mark a snippet accepted; False if no such snippet is tracked."""
    with storage.lock:
        for snip in storage.tele_snippets:
            if snip.snippet_telemetry_id == snippet_telemetry_id:
                snip.accepted_ts = int(time.time())
                return True
    return False


def sources_changed(storage: Storage, uri: str, text: str) -> None:
    """Update tracked snippets after the file at ``uri`` changed to ``text``."""
    now = int(time.time())
    with storage.lock:
        finished: list[SnippetTracker] = []
        for snip in storage.tele_snippets:
            if snip.accepted_ts == 0 or not uri.endswith(snip.inputs.cursor.file):
                continue
            if snip.finished_ts > 0:
                continue
            orig_text = snip.inputs.sources.get(snip.inputs.cursor.file)
            if orig_text is None:
                continue
            grey_valid, grey_corrected = if_head_tail_equal_return_added_text(
                orig_text, text, snip.grey_text
            )
            if grey_valid:
                snip.remaining_percentage = unchanged_percentage(
                    grey_corrected, snip.grey_text
                )
                snip.corrected_by_user = grey_corrected.replace("\r", "")
            elif snip.remaining_percentage >= 0.0:
                snip.finished_ts = now
                finished.append(copy.deepcopy(snip))
            else:
                snip.accepted_ts = 0

        for snip in finished:
            increase_counters_from_finished_snippet(
                storage.tele_robot_human, uri, text, snip, now
            )
            create_data_accumulator_for_finished_snippet(
                storage.snippet_data_accumulators, uri, snip
            )
        on_file_text_changed(storage.snippet_data_accumulators, uri, text, now)