from pathlib import Path

import orjson

from stepvote_v1.ledger.ledger import Ledger


def _step(index: int, pre: list, post: list) -> dict:
    return {"step_index": index, "pre_state": pre, "post_state": post, "move": [1, 0, 2]}


def _closed_run(path: Path) -> Ledger:
    ledger = Ledger(path)
    ledger.emit("RUN_START", {"initial_state": [[1], [], []]})
    ledger.emit("STEP_ACCEPTED", _step(0, [[1], [], []], [[], [], [1]]))
    ledger.emit("RUN_COMPLETED", {"steps": 1})
    return ledger


def test_reopened_ledger_continues_the_chain(tmp_path: Path) -> None:
    path = tmp_path / "ledger.jsonl"
    Ledger(path).emit("RUN_START", {"initial_state": [[1], [], []]})
    Ledger(path).emit("STEP_ACCEPTED", _step(0, [[1], [], []], [[], [], [1]]))
    Ledger(path).emit("RUN_COMPLETED", {"steps": 1})
    assert Ledger.verify(path) == (True, "ok")
    assert Ledger.summarize(path) == {"RUN_START": 1, "STEP_ACCEPTED": 1, "RUN_COMPLETED": 1}


def test_dropped_event_breaks_the_sequence(tmp_path: Path) -> None:
    path = tmp_path / "ledger.jsonl"
    ledger = Ledger(path)
    for index in range(3):
        ledger.emit("RUN_STATE", {"step_index": index})
    lines = path.read_bytes().splitlines()
    path.write_bytes(lines[0] + b"\n" + lines[2] + b"\n")
    ok, message = Ledger.verify_chain(path)
    assert not ok
    assert message == "sequence gap at 1"


def test_truncated_run_fails_verification(tmp_path: Path) -> None:
    path = tmp_path / "ledger.jsonl"
    _closed_run(path)
    assert Ledger.verify(path) == (True, "ok")
    lines = path.read_bytes().splitlines()
    path.write_bytes(b"\n".join(lines[:-1]) + b"\n")
    assert Ledger.verify_chain(path) == (True, "ok")
    assert Ledger.verify(path) == (False, "unterminated run started at 0")


def test_second_run_after_unclosed_run_fails(tmp_path: Path) -> None:
    path = tmp_path / "ledger.jsonl"
    ledger = Ledger(path)
    ledger.emit("RUN_START", {"initial_state": [[1], [], []]})
    ledger.emit("RUN_START", {"initial_state": [[1], [], []]})
    ledger.emit("RUN_ABORTED", {"reason": "INCONCLUSIVE"})
    assert Ledger.verify(path) == (False, "unterminated run started at 0")


def test_partially_written_tail_is_reported_not_raised(tmp_path: Path) -> None:
    path = tmp_path / "ledger.jsonl"
    _closed_run(path)
    with path.open("ab") as handle:
        handle.write(b'{"seq": 3, "ts": 12')
    assert Ledger.verify_chain(path) == (False, "corrupt line at 3")
    assert Ledger.verify_steps(path) == (False, "corrupt line at 3")
    assert Ledger.verify(path) == (False, "corrupt line at 3")
    assert Ledger.summarize(path)["CORRUPT"] == 1


def test_reopening_after_corrupt_tail_resumes_from_intact_events(tmp_path: Path) -> None:
    path = tmp_path / "ledger.jsonl"
    first = _closed_run(path)
    with path.open("ab") as handle:
        handle.write(b"garbage\n")
    resumed = Ledger(path)
    assert resumed._seq == 3
    assert resumed._last_hash == first._last_hash


def test_step_gap_and_discontinuity(tmp_path: Path) -> None:
    gap = tmp_path / "gap.jsonl"
    ledger = Ledger(gap)
    ledger.emit("RUN_START", {"initial_state": [[2, 1], [], []]})
    ledger.emit("STEP_ACCEPTED", _step(1, [[2, 1], [], []], [[2], [1], []]))
    assert Ledger.verify_chain(gap) == (True, "ok")
    assert Ledger.verify(gap) == (False, "step gap at 1")

    jump = tmp_path / "jump.jsonl"
    ledger = Ledger(jump)
    ledger.emit("RUN_START", {"initial_state": [[2, 1], [], []]})
    ledger.emit("STEP_ACCEPTED", _step(0, [[2], [1], []], [[], [1], [2]]))
    assert Ledger.verify(jump) == (False, "state discontinuity at 1")


def test_edited_payload_fails_hash(tmp_path: Path) -> None:
    path = tmp_path / "ledger.jsonl"
    ledger = Ledger(path)
    ledger.emit("RUN_START", {"initial_state": [[1], [], []]})
    entry = orjson.loads(path.read_bytes())
    entry["payload"]["initial_state"] = [[], [], [1]]
    path.write_bytes(orjson.dumps(entry) + b"\n")
    assert Ledger.verify_chain(path) == (False, "hash mismatch at 0")
