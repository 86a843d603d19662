from dataclasses import dataclass

import pytest

from scratchkit.telemetry.snippets_collection import (
    CompletionCacheEntry,
    SaveSnippet,
    snippet_accepted,
    snippet_register,
    snippet_register_from_data4cache,
    sources_changed,
)
from scratchkit.telemetry.structs import (
    CompletionInputs,
    CursorPosition,
    SnippetTracker,
    Storage,
)

URI = "file:///proj/a.py"
ORIG = "def f():\n"
GREY = "    return 1\n"


@dataclass
class _Post:
    model: str
    inputs: CompletionInputs


def _inputs():
    return CompletionInputs(
        sources={"a.py": ORIG},
        cursor=CursorPosition(file="a.py", line=1, character=0),
        multiline=True,
    )


@pytest.fixture
def storage():
    return Storage()


@pytest.fixture
def tracked(storage):
    snip = SnippetTracker(
        snippet_telemetry_id=100,
        model="m",
        inputs=_inputs(),
        grey_text=GREY,
        created_ts=1,
        accepted_ts=2,
    )
    storage.tele_snippets.append(snip)
    return snip


def test_register_assigns_increasing_ids(storage):
    save = SaveSnippet(storage, _Post("m", _inputs()))
    first = snippet_register(save, "a")
    second = snippet_register(save, "b")
    assert first == 100
    assert second == first + 1
    assert [s.grey_text for s in storage.tele_snippets] == ["a", "b"]
    assert storage.tele_snippets[0].remaining_percentage == -1.0
    assert storage.tele_snippets[0].model == "m"


def test_save_snippet_keeps_a_copy(storage):
    post = _Post("m", _inputs())
    save = SaveSnippet(storage, post)
    post.inputs.sources["a.py"] = "changed"
    snippet_register(save, "x")
    assert storage.tele_snippets[0].inputs.sources["a.py"] == ORIG


def test_register_from_data4cache(storage):
    save = SaveSnippet(storage, _Post("m", _inputs()))
    pending = CompletionCacheEntry(completion0_text="x")
    snippet_register_from_data4cache(save, pending)
    assert pending.completion0_snippet_telemetry_id is None
    assert storage.tele_snippets == []
    done = CompletionCacheEntry(completion0_text="x", completion0_finish_reason="stop")
    snippet_register_from_data4cache(save, done)
    assert done.completion0_snippet_telemetry_id == 100
    assert storage.tele_snippets[0].grey_text == "x"


def test_snippet_accepted(storage):
    save = SaveSnippet(storage, _Post("m", _inputs()))
    sid = snippet_register(save, "x")
    assert snippet_accepted(storage, sid) is True
    assert storage.tele_snippets[0].accepted_ts > 0
    assert snippet_accepted(storage, sid + 1) is False


def test_valid_edit_updates_correction(storage, tracked):
    sources_changed(storage, URI, ORIG + GREY)
    assert tracked.corrected_by_user == GREY
    assert tracked.remaining_percentage == 1.0
    assert tracked.finished_ts == 0


def test_invalid_edit_finishes_measured_snippet(storage, tracked):
    sources_changed(storage, URI, ORIG + GREY)
    sources_changed(storage, URI, "x = 2\n")
    assert tracked.finished_ts > 0
    assert len(storage.tele_robot_human) == 1
    assert storage.tele_robot_human[0].robot_characters_acc_baseline == 7
    assert storage.tele_robot_human[0].used_snip_ids == [100]
    assert len(storage.snippet_data_accumulators) == 1
    assert storage.snippet_data_accumulators[0].init_grey_text == GREY


def test_invalid_edit_without_measure_unaccepts(storage, tracked):
    sources_changed(storage, URI, "x = 2\n")
    assert tracked.accepted_ts == 0
    assert tracked.finished_ts == 0
    assert storage.tele_robot_human == []
    assert storage.snippet_data_accumulators == []


def test_unaccepted_or_other_file_ignored(storage, tracked):
    sources_changed(storage, "file:///proj/b.py", ORIG + GREY)
    assert tracked.remaining_percentage == -1.0
    tracked.accepted_ts = 0
    sources_changed(storage, URI, ORIG + GREY)
    assert tracked.corrected_by_user == ""