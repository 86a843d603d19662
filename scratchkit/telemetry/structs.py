"""Records kept in memory by the telemetry subsystem."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any

from scratchkit.telemetry.utils import extract_extension_or_filename


def _now() -> int:
    return int(time.time())


@dataclass
class CursorPosition:
    """Cursor location inside a file."""

    file: str
    line: int
    character: int

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.file, "line": self.line, "character": self.character}


@dataclass
class CompletionInputs:
    """Sources and cursor a completion was requested for."""

    sources: dict[str, str]
    cursor: CursorPosition
    multiline: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "sources": dict(self.sources),
            "cursor": self.cursor.to_dict(),
            "multiline": self.multiline,
        }


@dataclass
class TelemetryNetwork:
    """One network interaction outcome."""

    url: str
    scope: str
    success: bool
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "scope": self.scope,
            "success": self.success,
            "error_message": self.error_message,
        }


@dataclass
class SnippetTracker:
    """A completion shown to the user, followed until it is finished."""

    snippet_telemetry_id: int
    model: str
    inputs: CompletionInputs
    grey_text: str
    corrected_by_user: str = ""
    remaining_percentage: float = -1.0
    created_ts: int = 0
    accepted_ts: int = 0
    finished_ts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "snippet_telemetry_id": self.snippet_telemetry_id,
            "model": self.model,
            "inputs": self.inputs.to_dict(),
            "grey_text": self.grey_text,
            "corrected_by_user": self.corrected_by_user,
            "remaining_percentage": self.remaining_percentage,
            "created_ts": self.created_ts,
            "accepted_ts": self.accepted_ts,
            "finished_ts": self.finished_ts,
        }


@dataclass
class TeleRobotHumanAccum:
    """Per-file counts of characters written by the model and by the user."""

    uri: str
    model: str
    baseline_text: str
    robot_characters_acc_baseline: int
    used_snip_ids: list[int]
    file_extension: str = field(init=False)
    baseline_updated_ts: int = 0
    robot_characters: int = 0
    human_characters: int = 0

    def __post_init__(self) -> None:
        self.file_extension = extract_extension_or_filename(self.uri)


@dataclass
class TeleCompletionAccum:
    """Per-snippet measurements of how much of a completion survives over time."""

    uri: str
    model: str
    init_file_text: str
    init_grey_text: str
    created_ts: int
    file_extension: str = field(init=False)
    multiline: bool = field(init=False)
    after_30s_remaining: float = -1.0
    after_90s_remaining: float = -1.0
    after_180s_remaining: float = -1.0
    after_360s_remaining: float = -1.0
    finished_ts: int = 0

    def __post_init__(self) -> None:
        self.file_extension = extract_extension_or_filename(self.uri)
        self.multiline = "\n" in self.init_grey_text


@dataclass
class Storage:
    """All telemetry collected since the last flush."""

    last_flushed_ts: int = field(default_factory=_now)
    tele_net: list[TelemetryNetwork] = field(default_factory=list)
    tele_robot_human: list[TeleRobotHumanAccum] = field(default_factory=list)
    tele_snippets: list[SnippetTracker] = field(default_factory=list)
    tele_snippet_next_id: int = 100
    snippet_data_accumulators: list[TeleCompletionAccum] = field(default_factory=list)
    lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )