"""Diff helpers and file utilities shared by the telemetry code."""

from __future__ import annotations

import json
import logging
import re
from difflib import SequenceMatcher
from pathlib import Path
from typing import Any, Iterator, Sequence

log = logging.getLogger(__name__)

_EQUAL = "equal"
_DELETE = "delete"
_INSERT = "insert"

_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+")
_SPACE_ONLY_RE = re.compile(r"\s*")


def _split_lines(text: str) -> list[str]:
    """Split text into lines, keeping the newline on each line."""
    return _LINE_RE.findall(text)


def _plain_lines(text: str) -> list[str]:
    """Split text into lines without terminators, dropping a trailing empty line."""
    if not text:
        return []
    lines = text.split("\n")
    if text.endswith("\n"):
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def _changes(a: Sequence[str], b: Sequence[str]) -> Iterator[tuple[str, str]]:
    """Yield (tag, item) pairs describing how to turn ``a`` into ``b``."""
    matcher = SequenceMatcher(None, a, b, autojunk=False)
    for op, i1, i2, j1, j2 in matcher.get_opcodes():
        if op == "equal":
            for item in a[i1:i2]:
                yield _EQUAL, item
            continue
        for item in a[i1:i2]:
            yield _DELETE, item
        for item in b[j1:j2]:
            yield _INSERT, item


def _byte_len(text: str) -> int:
    return len(text.encode("utf-8"))


def telemetry_storage_dirs(cache_dir: Path | str) -> tuple[Path, Path]:
    """Create and return the (compressed, sent) telemetry directories."""
    base = Path(cache_dir) / "telemetry"
    compressed = base / "compressed"
    sent = base / "sent"
    for directory in (compressed, sent):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError:
            pass
    return compressed, sent


def get_add_del_from_texts(text_a: str, text_b: str) -> tuple[str, str]:
    """Return the lines added going from ``text_a`` to ``text_b``.

    Carriage returns are removed. The added text is returned in both
    positions of the pair.
    """
    added = "".join(
        value for tag, value in _changes(_split_lines(text_a), _split_lines(text_b))
        if tag == _INSERT
    )
    added = added.replace("\r", "")
    return added, added


def file_save(path: Path | str, data: Any) -> None:
    """Write ``data`` as pretty-printed JSON to ``path``."""
    text = json.dumps(data, indent=2, sort_keys=True, ensure_ascii=False)
    Path(path).write_text(text, encoding="utf-8")


def cleanup_old_files(directory: Path | str, how_much_to_keep: int) -> None:
    """Remove old JSON files, keeping the newest ``how_much_to_keep - 1``."""
    leave_alone = how_much_to_keep
    for path in sorted_json_files(directory):
        leave_alone -= 1
        if leave_alone > 0:
            continue
        log.info("removing old telemetry file: %s", path)
        try:
            path.unlink()
        except OSError as exc:
            log.error("error removing old telemetry file: %s", exc)


def sorted_json_files(directory: Path | str) -> list[Path]:
    """Return the ``.json`` files in ``directory``, most recent names first."""
    directory = Path(directory)
    try:
        entries = list(directory.iterdir())
    except OSError:
        return []
    files = [p for p in entries if p.is_file() and str(p).endswith(".json")]
    return sorted(files, reverse=True)


def read_file(path: Path | str) -> str:
    """Read a whole text file."""
    return Path(path).read_text(encoding="utf-8")


def extract_extension_or_filename(uri: str) -> str:
    """Return the extension of the last path part, or the part itself."""
    last_part = uri.split("/")[-1]
    dot = last_part.rfind(".")
    return last_part[dot:] if dot >= 0 else last_part


def if_head_tail_equal_return_added_text(
    text_a: str, text_b: str, orig_grey_text: str
) -> tuple[bool, str]:
    """Decide whether the edit from ``text_a`` to ``text_b`` is still the completion.

    Returns ``(valid, added_text)`` where ``added_text`` is the completion as
    corrected by the user; ``(False, "")`` when the edit no longer looks like one.
    """
    allow_add_spaces_once = True
    is_multiline = "\n" in orig_grey_text
    adding_one_block = False
    added_one_block = False
    added_text = ""
    kill_slash_n = False
    deletion_once = ""

    for tag, value in _changes(_split_lines(text_a), _split_lines(text_b)):
        whitespace_only = _SPACE_ONLY_RE.fullmatch(value) is not None
        if tag == _DELETE:
            if adding_one_block:
                added_one_block = True
            if not whitespace_only:
                if deletion_once:
                    return False, ""
                deletion_once = value[:-1] if value.endswith("\n") else value
            if value.endswith("\n"):
                kill_slash_n = True
        elif tag == _INSERT:
            if not allow_add_spaces_once:
                return False, ""
            if whitespace_only:
                allow_add_spaces_once = False
            if added_one_block:
                return False, ""
            if deletion_once and not value.startswith(deletion_once):
                return False, ""
            if adding_one_block and not is_multiline and not whitespace_only:
                return False, ""
            added_text += value[len(deletion_once):]
            adding_one_block = True
        elif adding_one_block:
            added_one_block = True

    if kill_slash_n and added_text.endswith("\n"):
        added_text = added_text[:-1]
    return True, added_text.replace("\r", "")


def unchanged_percentage(text_a: str, text_b: str) -> float:
    """Share of bytes the two texts have in common, relative to the longer one."""
    common = sum(_byte_len(ch) for tag, ch in _changes(text_a, text_b) if tag == _EQUAL)
    largest = max(_byte_len(text_a), _byte_len(text_b))
    if largest == 0:
        return float("nan")
    return common / largest


def _common_characters(a: str, b: str) -> int:
    return sum(1 for tag, _ in _changes(a, b) if tag == _EQUAL)


def unchanged_percentage_approx(text_a: str, text_b: str, grey_text_a: str) -> float:
    """Estimate how much of ``grey_text_a`` survives in the lines added to the file."""
    added, _ = get_add_del_from_texts(text_a, text_b)
    if not added:
        return 0.0

    added_lines = _plain_lines(added)
    taken: set[int] = set()
    common = 0
    for line in _plain_lines(grey_text_a):
        best_val = 0
        best_idx: int | None = None
        for idx, added_line in enumerate(added_lines):
            if idx in taken:
                continue
            value = _common_characters(added_line, line)
            if value > best_val:
                best_val = value
                best_idx = idx
        if best_idx is None:
            continue
        taken.add(best_idx)
        common += best_val

    denominator = _byte_len(grey_text_a.replace("\n", "").replace("\r", ""))
    if denominator == 0:
        return float("nan")
    return common / denominator