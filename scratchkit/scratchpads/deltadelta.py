"""Chat streaming that holds back one token so two-token stop phrases can be cut."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def cut_result(text: str, stop_list: list[str]) -> tuple[str, bool]:
    """Cut ``text`` at the earliest stop phrase; return (text, whether it was cut)."""
    positions = [pos for stop in stop_list if (pos := text.find(stop)) >= 0]
    if not positions:
        return text.replace("\r", ""), False
    return text[: min(positions)].replace("\r", ""), True


def _choice(role: str, content: str, finish_reason: str | None) -> dict[str, Any]:
    return {
        "index": 0,
        "delta": {"role": role, "content": content},
        "finish_reason": finish_reason,
    }


@dataclass
class DeltaDeltaChatStreamer:
    """Delays streamed output by one delta so a stop phrase is never half sent."""

    delta1: str = ""
    delta2: str = ""
    finished: bool = False
    stop_list: list[str] = field(default_factory=list)
    role: str = ""

    def response_n_choices(self, choices: list[str], stopped: list[bool]) -> dict[str, Any]:
        """Build a non-streaming answer from complete choices."""
        if self.finished:
            raise RuntimeError("already finished")
        json_choices = []
        for index, (text, was_stopped) in enumerate(zip(choices, stopped)):
            content, finished = cut_result(text, self.stop_list)
            json_choices.append(
                {
                    "index": index,
                    "message": {"role": self.role, "content": content},
                    "finish_reason": "stop" if finished or was_stopped else "length",
                }
            )
        return {"choices": json_choices}

    def response_streaming(self, delta: str, stopped: bool) -> tuple[dict[str, Any], bool]:
        """Feed one delta; an empty delta flushes what is held back."""
        self.delta2 = self.delta1
        self.delta1 = delta
        if delta:
            if self.finished:
                raise RuntimeError("already finished")
            text, finished = cut_result(self.delta2 + self.delta1, self.stop_list)
            finished = finished or stopped
            if finished:
                choice = _choice(self.role, text, "stop")
            else:
                choice = _choice(self.role, self.delta2, None)
        else:
            text, finished = cut_result(self.delta2, self.stop_list)
            if finished:
                choice = _choice(self.role, text, "stop")
            else:
                choice = _choice(self.role, self.delta2, "length")
        self.finished = finished
        return {"choices": [choice]}, finished