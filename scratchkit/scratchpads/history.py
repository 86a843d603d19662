"""Chat request types and trimming of chat history to fit a budget."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


class ScratchpadError(Exception):
    """A scratchpad cannot build a prompt or answer."""


@dataclass
class ChatMessage:
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ContextFile:
    file_name: str
    file_content: str


@dataclass
class SamplingParameters:
    max_new_tokens: int = 50
    temperature: float | None = None
    stop: list[str] | None = None


@dataclass
class ChatPost:
    messages: list[ChatMessage]
    parameters: SamplingParameters = field(default_factory=SamplingParameters)
    model: str = ""


@dataclass
class TokenizerView:
    """A tokenizer together with the end-of-text and end-of-sequence markers.

    ``tokenizer`` must have an ``encode(text)`` method returning token ids,
    either as a sequence or as an object with an ``ids`` attribute.
    """

    tokenizer: Any
    eot: str = ""
    eos: str = ""

    def count_tokens(self, text: str) -> int:
        try:
            encoded = self.tokenizer.encode(text)
        except Exception as exc:
            raise ScratchpadError(f"tokenizer failed: {exc}") from exc
        return len(getattr(encoded, "ids", encoded))

    def assert_one_token(self, text: str) -> None:
        if self.count_tokens(text) != 1:
            raise ScratchpadError(f"{text!r} is not one token")


def parse_context_files(content: str) -> list[ContextFile]:
    """Parse the JSON list carried by a ``context_file`` message."""
    try:
        items = json.loads(content)
        return [ContextFile(item["file_name"], item["file_content"]) for item in items]
    except (ValueError, TypeError, KeyError) as exc:
        raise ScratchpadError(f"cannot parse context files: {exc}") from exc


def _select(
    messages: list[ChatMessage],
    take: list[bool],
    need_default: bool,
    default_system_message: str,
) -> list[ChatMessage]:
    out = [msg for msg, keep in zip(messages, take) if keep]
    if need_default:
        out.insert(0, ChatMessage("system", default_system_message))
    return out


def limit_messages_history(
    t: TokenizerView,
    post: ChatPost,
    context_size: int,
    default_system_message: str,
) -> list[ChatMessage]:
    """Keep the leading system message and as many recent messages as fit in tokens."""
    messages = post.messages
    tokens_limit = context_size - post.parameters.max_new_tokens
    tokens_used = 0
    # 3 extra tokens per message for the role marker
    counts = [3 + t.count_tokens(msg.content) for msg in messages]
    take = [False] * len(messages)
    have_system = bool(messages) and messages[0].role == "system"
    if have_system:
        take[0] = True
        tokens_used += counts[0]
    need_default = not have_system and bool(default_system_message)
    if need_default:
        tokens_used += t.count_tokens(default_system_message)
    for i in reversed(range(len(messages))):
        if take[i]:
            continue
        tcnt = 3 + counts[i]
        if tokens_used + tcnt >= tokens_limit:
            break
        take[i] = True
        tokens_used += tcnt
    return _select(messages, take, need_default, default_system_message)


def limit_messages_history_in_bytes(
    post: ChatPost,
    bytes_limit: int,
    default_system_message: str,
) -> list[ChatMessage]:
    """Keep the leading system message and recent messages within a byte budget.

    The budget starts out charged with the size of every message.
    """
    messages = post.messages
    sizes = [len(msg.content.encode("utf-8")) for msg in messages]
    bytes_used = sum(sizes)
    take = [False] * len(messages)
    have_system = bool(messages) and messages[0].role == "system"
    if have_system:
        take[0] = True
    need_default = not have_system and bool(default_system_message)
    if need_default:
        bytes_used += len(default_system_message.encode("utf-8"))
    for i in reversed(range(len(messages))):
        if take[i]:
            continue
        if bytes_used + sizes[i] >= bytes_limit:
            break
        take[i] = True
        bytes_used += sizes[i]
    return _select(messages, take, need_default, default_system_message)