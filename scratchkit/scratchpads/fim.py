"""Fill-in-the-middle code completion over a single file."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from itertools import zip_longest
from typing import Any

from scratchkit.scratchpads.history import (
    SamplingParameters,
    ScratchpadError,
    TokenizerView,
)
from scratchkit.telemetry.snippets_collection import (
    CompletionCacheEntry,
    SaveSnippet,
    snippet_register_from_data4cache,
)
from scratchkit.telemetry.structs import CompletionInputs, Storage

log = logging.getLogger(__name__)

_ORDERS = ("PSM", "SPM")


@dataclass
class CodeCompletionPost:
    """A code completion request: sources, cursor and sampling settings."""

    inputs: CompletionInputs
    parameters: SamplingParameters = field(default_factory=SamplingParameters)
    model: str = ""


def cut_result(text: str, eot_token: str, multiline: bool) -> tuple[str, bool]:
    """Cut a completion at end-of-text or a blank line (any newline if single-line)."""
    stops = [eot_token, "\n\n", "\r\n\r\n"]
    if not multiline:
        stops.append("\n")
    positions = [pos for stop in stops if (pos := text.find(stop)) >= 0]
    if not positions:
        return text.replace("\r", ""), False
    return text[: min(positions)].replace("\r", ""), True


def _patch_str(patch: dict[str, Any], key: str, default: str) -> str:
    value = patch.get(key)
    return value if isinstance(value, str) else default


def _text_lines(text: str) -> list[str]:
    """Split into lines with their terminators; a trailing break opens an empty last line."""
    lines = text.splitlines(keepends=True)
    if not lines or lines[-1].splitlines()[0] != lines[-1]:
        lines.append("")
    return lines


class SingleFileFIM:
    """Builds prefix/suffix/middle prompts from the file the cursor is in."""

    def __init__(
        self, tokenizer: Any, post: CodeCompletionPost, order: str, tele_storage: Storage
    ) -> None:
        self.t = TokenizerView(tokenizer)
        self.post = post
        self.order = order
        self.fim_prefix = ""
        self.fim_suffix = ""
        self.fim_middle = ""
        self.data4cache = CompletionCacheEntry()
        self.data4snippet = SaveSnippet(tele_storage, post)

    def _cleanup_prompt(self, text: str) -> str:
        for marker in (self.fim_prefix, self.fim_middle, self.fim_suffix, self.t.eos, self.t.eot):
            text = text.replace(marker, "")
        return text

    def apply_model_adaptation_patch(self, patch: dict[str, Any]) -> None:
        """Configure the special tokens; each must encode to exactly one token."""
        self.fim_prefix = _patch_str(patch, "fim_prefix", "<fim_prefix>")
        self.fim_suffix = _patch_str(patch, "fim_suffix", "<fim_suffix>")
        self.fim_middle = _patch_str(patch, "fim_middle", "<fim_middle>")
        self.t.eot = _patch_str(patch, "eot", "<|endoftext|>")
        self.t.eos = _patch_str(patch, "eos", "")
        for token in (self.fim_prefix, self.fim_suffix, self.fim_middle, self.t.eot):
            self.t.assert_one_token(token)
        if self.t.eos:
            self.t.assert_one_token(self.t.eos)

    async def prompt(self, context_size: int, sampling_parameters: SamplingParameters) -> str:
        """Build the prompt and set the stop phrases on ``sampling_parameters``."""
        inputs = self.post.inputs
        limit = context_size - self.post.parameters.max_new_tokens
        stop_list = [self.t.eot, "\n\n"]
        if not inputs.multiline:
            stop_list.append("\n")
        sampling_parameters.stop = stop_list

        source = inputs.sources.get(inputs.cursor.file)
        if source is None:
            raise ScratchpadError("Cursor is in file not found in sources")
        lines = _text_lines(self._cleanup_prompt(source))

        line_no = inputs.cursor.line
        col = inputs.cursor.character
        if not 0 <= line_no < len(lines):
            raise ScratchpadError(f"cursor line {line_no} is outside the file")
        cursor_line = lines[line_no]
        if not 0 <= col <= len(cursor_line):
            raise ScratchpadError(f"cursor character {col} is outside line {line_no}")
        cursor_line1 = cursor_line[:col]
        cursor_line2 = cursor_line[col:] if inputs.multiline else ""

        before: list[str] = []
        after_parts: list[str] = []
        tokens_used = self.t.count_tokens(cursor_line1 + cursor_line2)
        pairs = zip_longest(reversed(lines[:line_no]), lines[line_no + 1:])
        for before_line, after_line in pairs:
            if before_line is not None:
                tokens = self.t.count_tokens(before_line)
                if tokens_used + tokens > limit:
                    break
                tokens_used += tokens
                before.append(before_line)
            if after_line is not None:
                tokens = self.t.count_tokens(after_line)
                if tokens_used + tokens > limit:
                    break
                tokens_used += tokens
                after_parts.append(after_line)
        log.info("single file FIM prompt %d tokens used < limit %d", tokens_used, limit)

        prefix_text = "".join(reversed(before)) + cursor_line1
        suffix_text = cursor_line2 + "".join(after_parts)
        if self.order == "PSM":
            return (
                f"{self.t.eos}{self.fim_prefix}{prefix_text}"
                f"{self.fim_suffix}{suffix_text}{self.fim_middle}"
            )
        if self.order == "SPM":
            return (
                f"{self.t.eos}{self.fim_suffix}{suffix_text}"
                f"{self.fim_prefix}{prefix_text}{self.fim_middle}"
            )
        raise ScratchpadError(f'order "{self.order}" not recognized')

    def response_n_choices(self, choices: list[str], stopped: list[bool]) -> dict[str, Any]:
        """Build a non-streaming answer and register the first choice for telemetry."""
        multiline = self.post.inputs.multiline
        json_choices = []
        for index, (text, was_stopped) in enumerate(zip(choices, stopped)):
            completion, finished = cut_result(text, self.t.eot, multiline)
            finished = finished or was_stopped
            if finished:
                completion = completion.rstrip()
            finish_reason = "stop" if finished else "length"
            if index == 0:
                self.data4cache.completion0_text = completion
                self.data4cache.completion0_finish_reason = finish_reason
            json_choices.append(
                {"index": index, "code_completion": completion, "finish_reason": finish_reason}
            )
        snippet_register_from_data4cache(self.data4snippet, self.data4cache)
        return {
            "choices": json_choices,
            "snippet_telemetry_id": self.data4cache.completion0_snippet_telemetry_id,
            "model": self.post.model,
        }

    def response_streaming(
        self, delta: str, stop_toks: bool, stop_length: bool
    ) -> tuple[dict[str, Any], bool]:
        """Feed one streamed delta; returns the answer chunk and whether it is the last."""
        if delta or stop_toks:
            text, finished = cut_result(delta, self.t.eot, self.post.inputs.multiline)
            finished = finished or stop_toks
            if finished:
                # trimming is only consistent on the final chunk
                text = text.rstrip()
                self.data4cache.completion0_finish_reason = "stop"
            self.data4cache.completion0_text += text
            choice = {
                "index": 0,
                "code_completion": text,
                "finish_reason": "stop" if finished else None,
            }
        else:
            if not stop_length:
                raise ScratchpadError("empty delta without a stop reason")
            choice = {"index": 0, "code_completion": "", "finish_reason": "length"}
            self.data4cache.completion0_finish_reason = "length"
            finished = True
        snippet_register_from_data4cache(self.data4snippet, self.data4cache)
        answer = {
            "choices": [choice],
            "snippet_telemetry_id": self.data4cache.completion0_snippet_telemetry_id,
        }
        return answer, finished