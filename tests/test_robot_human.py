import json

from scratchkit.telemetry.robot_human import (
    TeleRobotHuman,
    compress_robot_human,
    increase_counters_from_finished_snippet,
    tele_robot_human_compress_to_file,
)
from scratchkit.telemetry.structs import (
    CompletionInputs,
    CursorPosition,
    SnippetTracker,
    Storage,
    TeleRobotHumanAccum,
)

URI = "file:///proj/a.py"


def _snip(sid, grey, pct=1.0, sources=None):
    inputs = CompletionInputs(
        sources={"a.py": "a\n"} if sources is None else sources,
        cursor=CursorPosition(file="a.py", line=0, character=0),
        multiline=False,
    )
    return SnippetTracker(
        snippet_telemetry_id=sid,
        model="m",
        inputs=inputs,
        grey_text=grey,
        remaining_percentage=pct,
    )


def test_first_snippet_creates_record():
    recs = []
    increase_counters_from_finished_snippet(recs, URI, "a\nxy\n", _snip(1, " x y\n"), now=100)
    assert len(recs) == 1
    assert recs[0].robot_characters_acc_baseline == len("xy")
    assert recs[0].used_snip_ids == [1]
    assert recs[0].baseline_text == "a\n"
    assert recs[0].file_extension == ".py"


def test_partial_remaining_is_truncated():
    recs = []
    increase_counters_from_finished_snippet(recs, URI, "", _snip(1, "abcd", pct=0.5), now=100)
    assert recs[0].robot_characters_acc_baseline == 2


def test_missing_source_file_creates_nothing():
    recs = []
    increase_counters_from_finished_snippet(recs, URI, "", _snip(1, "x", sources={}), now=100)
    assert recs == []


def test_same_snippet_counted_once():
    recs = []
    snip = _snip(1, "xy")
    increase_counters_from_finished_snippet(recs, URI, "a\nxy\n", snip, now=100)
    increase_counters_from_finished_snippet(recs, URI, "a\nxy\n", snip, now=200)
    assert recs[0].used_snip_ids == [1]
    assert recs[0].robot_characters_acc_baseline == len("xy")
    assert recs[0].robot_characters == 0


def test_baseline_flush_moves_counts():
    recs = []
    increase_counters_from_finished_snippet(recs, URI, "a\nxy\n", _snip(1, "xy"), now=100)
    text = "a\nxyzz\nq\n"
    increase_counters_from_finished_snippet(recs, URI, text, _snip(2, "zz"), now=1000)
    rec = recs[0]
    assert rec.robot_characters == 4
    assert rec.robot_characters + rec.human_characters == len("xyzzq")
    assert rec.robot_characters_acc_baseline == 0
    assert rec.baseline_text == text
    assert rec.baseline_updated_ts == 1000
    assert rec.used_snip_ids == [1, 2]


def test_no_flush_within_interval():
    recs = []
    increase_counters_from_finished_snippet(recs, URI, "a\nxy\n", _snip(1, "xy"), now=100)
    recs[0].baseline_updated_ts = 995
    increase_counters_from_finished_snippet(recs, URI, "a\nxyzz\n", _snip(2, "zz"), now=1000)
    assert recs[0].robot_characters == 0
    assert recs[0].robot_characters_acc_baseline == len("xyzz")
    assert recs[0].baseline_text == "a\n"


def test_compress_groups_by_extension_and_model():
    a = TeleRobotHumanAccum("x/a.py", "m", "", 0, [1, 2])
    b = TeleRobotHumanAccum("x/b.py", "m", "", 0, [3])
    c = TeleRobotHumanAccum("x/c.rs", "m", "", 0, [4])
    a.human_characters, a.robot_characters = 3, 5
    b.human_characters, b.robot_characters = 7, 11
    result = {(r.file_extension, r.model): r for r in compress_robot_human([a, b, c])}
    assert set(result) == {(".py", "m"), (".rs", "m")}
    py = result[(".py", "m")]
    assert py.human_characters == a.human_characters + b.human_characters
    assert py.robot_characters == a.robot_characters + b.robot_characters
    assert py.completions_cnt == len(a.used_snip_ids) + len(b.used_snip_ids)
    assert result[(".rs", "m")].to_dict() == TeleRobotHuman(".rs", "m", 0, 0, 1).to_dict()


def test_compress_to_file(tmp_path):
    storage = Storage()
    storage.tele_robot_human.append(TeleRobotHumanAccum("x/a.py", "m", "", 0, [1]))
    path = tele_robot_human_compress_to_file(storage, tmp_path, "ide-1")
    assert path.name.endswith("-rh.json")
    data = json.loads(path.read_text())
    assert data["teletype"] == "robot_human"
    assert data["records"] == [TeleRobotHuman(".py", "m", 0, 0, 1).to_dict()]
    assert storage.tele_robot_human == []