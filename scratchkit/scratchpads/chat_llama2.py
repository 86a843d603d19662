"""Chat prompt in the ``[INST]`` instruction format."""

from __future__ import annotations

import logging
from typing import Any

from scratchkit.scratchpads.deltadelta import DeltaDeltaChatStreamer
from scratchkit.scratchpads.history import (
    ChatPost,
    SamplingParameters,
    TokenizerView,
    limit_messages_history,
    parse_context_files,
)
from scratchkit.vecdb import VecdbSearch, embed_vecdb_results

log = logging.getLogger(__name__)


def _patch_str(patch: dict[str, Any], key: str, default: str) -> str:
    value = patch.get(key)
    return value if isinstance(value, str) else default


class ChatLlama2:
    """Renders a chat with ``<s>[INST] ... [/INST]`` turns; only the assistant answers."""

    def __init__(self, tokenizer: Any, post: ChatPost, vecdb_search: VecdbSearch | None) -> None:
        self.t = TokenizerView(tokenizer)
        self.dd = DeltaDeltaChatStreamer()
        self.post = post
        self.keyword_s = "<s>"
        self.keyword_slash_s = "</s>"
        self.default_system_message = ""
        self.vecdb_search = vecdb_search

    def apply_model_adaptation_patch(self, patch: dict[str, Any]) -> None:
        """Configure sequence markers and stop phrases for a particular model."""
        self.keyword_s = _patch_str(patch, "s", "<s>")
        self.keyword_slash_s = _patch_str(patch, "slash_s", "</s>")
        self.default_system_message = _patch_str(patch, "default_system_message", "")
        self.t.eot = self.keyword_s
        log.info("llama2 chat model adaptation patch applied %r", self.keyword_s)
        self.t.assert_one_token(self.t.eot)
        self.dd.stop_list[:] = [self.t.eot, self.keyword_slash_s]

    async def prompt(self, context_size: int, sampling_parameters: SamplingParameters) -> str:
        """Build the prompt text and set the stop phrases on ``sampling_parameters``."""
        if self.vecdb_search is not None:
            await embed_vecdb_results(self.vecdb_search, self.post, 3)
        limited = limit_messages_history(
            self.t, self.post, context_size, self.default_system_message
        )
        sampling_parameters.stop = list(self.dd.stop_list)

        parts = [self.keyword_s, "[INST] "]
        do_strip = False
        for msg in limited:
            if msg.role == "system" and not do_strip:
                parts.append(f"<<SYS>>\n{self.default_system_message}\n<</SYS>>\n")
            elif msg.role == "context_file":
                parts.extend(
                    f"{cf.file_name}\n```\n{cf.file_content}```\n\n"
                    for cf in parse_context_files(msg.content)
                )
            elif msg.role == "user":
                user_input = msg.content.strip() if do_strip else msg.content
                parts.append(f"{user_input} [/INST]")
                do_strip = True
            elif msg.role == "assistant":
                parts.append(
                    f"{msg.content.strip()} {self.keyword_slash_s}{self.keyword_s}[INST]"
                )
        self.dd.role = "assistant"
        prompt = "".join(parts)
        log.info("llama2 chat prompt\n%s", prompt)
        log.info(
            "llama2 chat re-encode whole prompt again gives %d tokens",
            self.t.count_tokens(prompt),
        )
        return prompt

    def response_n_choices(self, choices: list[str], stopped: list[bool]) -> dict[str, Any]:
        return self.dd.response_n_choices(choices, stopped)

    def response_streaming(
        self, delta: str, stop_toks: bool, stop_length: bool
    ) -> tuple[dict[str, Any], bool]:
        return self.dd.response_streaming(delta, stop_toks)