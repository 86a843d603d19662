"""Chat handed to the model as a JSON message list instead of a text prompt."""

from __future__ import annotations

import json
import logging
from typing import Any

from scratchkit.scratchpads.history import (
    ChatMessage,
    ChatPost,
    SamplingParameters,
    ScratchpadError,
    limit_messages_history_in_bytes,
    parse_context_files,
)
from scratchkit.vecdb import VecdbSearch

log = logging.getLogger(__name__)

# one token translates to about 3 bytes
DEFAULT_LIMIT_BYTES = 4096 * 3

PROMPT_PREFIX = "PASSTHROUGH "

_PASSED_ROLES = ("assistant", "system", "user")


class ChatPassthrough:
    """Passes chat messages through, limited by size in bytes."""

    def __init__(self, post: ChatPost, vecdb_search: VecdbSearch | None) -> None:
        self.post = post
        self.default_system_message = ""
        self.limit_bytes = DEFAULT_LIMIT_BYTES
        self.vecdb_search = vecdb_search

    def apply_model_adaptation_patch(self, patch: dict[str, Any]) -> None:
        """Read the default system message and the byte limit."""
        message = patch.get("default_system_message")
        self.default_system_message = message if isinstance(message, str) else ""
        limit = patch.get("limit_bytes")
        valid = isinstance(limit, int) and not isinstance(limit, bool) and limit >= 0
        self.limit_bytes = limit if valid else DEFAULT_LIMIT_BYTES

    async def prompt(self, context_size: int, sampling_parameters: SamplingParameters) -> str:
        """Return ``PASSTHROUGH `` followed by the messages as JSON."""
        limited = limit_messages_history_in_bytes(
            self.post, self.limit_bytes, self.default_system_message
        )
        log.info("chat passthrough %d messages after applying limits", len(limited))
        filtered: list[ChatMessage] = []
        for msg in limited:
            if msg.role in _PASSED_ROLES:
                filtered.append(msg)
            elif msg.role == "context_file":
                filtered.extend(
                    ChatMessage("user", f"{cf.file_name}\n```\n{cf.file_content}```")
                    for cf in parse_context_files(msg.content)
                )
        for msg in filtered:
            log.debug("filtered message: %r", msg)
        payload = json.dumps(
            [msg.to_dict() for msg in filtered], separators=(",", ":"), ensure_ascii=False
        )
        return PROMPT_PREFIX + payload

    def response_n_choices(self, choices: list[str], stopped: list[bool]) -> dict[str, Any]:
        """Wrap complete answers as assistant messages, unchanged."""
        if len(stopped) < len(choices):
            raise ScratchpadError("each choice needs a stopped flag")
        return {
            "choices": [
                {
                    "index": index,
                    "message": {"role": "assistant", "content": text},
                    "finish_reason": "stop" if was_stopped else "length",
                }
                for index, (text, was_stopped) in enumerate(zip(choices, stopped))
            ]
        }

    def response_streaming(
        self, delta: str, stop_toks: bool, stop_length: bool
    ) -> tuple[dict[str, Any], bool]:
        """Forward a delta unchanged, with a finish reason once generation ends."""
        finished = stop_toks or stop_length
        finish_reason = ("stop" if stop_toks else "length") if finished else None
        answer = {
            "choices": [
                {
                    "index": 0,
                    "delta": {"role": "assistant", "content": delta},
                    "finish_reason": finish_reason,
                }
            ]
        }
        return answer, finished