from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

import orjson
import structlog

from ..utils import append_jsonl, now_ts_ns, stable_hash, to_jsonable

logger = structlog.get_logger(__name__)

HASHED_FIELDS = ("seq", "ts", "type", "payload", "prev_hash")
TERMINAL_EVENTS = frozenset({"RUN_COMPLETED", "RUN_ABORTED"})


def _event_hash(entry: Dict[str, Any]) -> str:
    return stable_hash({key: entry.get(key) for key in HASHED_FIELDS})


def _scan(path: Path) -> Iterator[Tuple[int, Optional[Dict[str, Any]]]]:
    """Yield ``(index, entry)`` per line; ``entry`` is None when the line does not decode."""
    if not path.exists():
        return
    lines = [line for line in path.read_bytes().splitlines() if line.strip()]
    for idx, line in enumerate(lines):
        try:
            entry = orjson.loads(line)
        except orjson.JSONDecodeError:
            yield idx, None
            continue
        yield idx, entry if isinstance(entry, dict) else None


class Ledger:
    """Append-only, hash-chained JSONL log of run events.

    Satisfies the orchestrator's metrics sink protocol. Every event carries
    a sequence number and the hash of its predecessor, so a reordered or
    edited log fails verification, and every run must end in a terminal
    event, so a log cut short mid-run fails too. Reopening an existing file
    continues its chain from the last intact event.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._last_hash = ""
        self._seq = 0
        intact: List[Dict[str, Any]] = []
        for _, entry in _scan(self.path):
            if entry is None:
                logger.warning("ledger_corrupt_tail", path=str(self.path), intact=len(intact))
                break
            intact.append(entry)
        if intact:
            self._last_hash = intact[-1].get("hash", "")
            self._seq = len(intact)

    def emit(self, event_type: str, payload: Dict[str, Any]) -> str:
        event: Dict[str, Any] = {
            "seq": self._seq,
            "ts": now_ts_ns(),
            "type": event_type,
            "payload": to_jsonable(payload),
            "prev_hash": self._last_hash,
        }
        event["hash"] = _event_hash(event)
        append_jsonl(self.path, event)
        self._last_hash = event["hash"]
        self._seq += 1
        return event["hash"]

    @staticmethod
    def verify_chain(path: Path) -> Tuple[bool, str]:
        prev_hash = ""
        for idx, entry in _scan(path):
            if entry is None:
                return False, f"corrupt line at {idx}"
            if entry.get("seq") != idx:
                return False, f"sequence gap at {idx}"
            if entry.get("prev_hash") != prev_hash:
                return False, f"prev_hash mismatch at {idx}"
            if _event_hash(entry) != entry.get("hash"):
                return False, f"hash mismatch at {idx}"
            prev_hash = entry["hash"]
        return True, "ok"

    @staticmethod
    def verify_steps(path: Path) -> Tuple[bool, str]:
        """Check step contiguity, state continuity and that every run was closed."""
        expected_index = 0
        last_post_state: Any = None
        open_run: Optional[int] = None
        for idx, entry in _scan(path):
            if entry is None:
                return False, f"corrupt line at {idx}"
            event_type = entry.get("type")
            payload = entry.get("payload", {})
            if event_type == "RUN_START":
                if open_run is not None:
                    return False, f"unterminated run started at {open_run}"
                open_run = idx
                expected_index = 0
                last_post_state = payload.get("initial_state")
                continue
            if event_type in TERMINAL_EVENTS:
                open_run = None
                continue
            if event_type != "STEP_ACCEPTED":
                continue
            if payload.get("step_index") != expected_index:
                return False, f"step gap at {idx}"
            if last_post_state is not None and payload.get("pre_state") != last_post_state:
                return False, f"state discontinuity at {idx}"
            last_post_state = payload.get("post_state")
            expected_index += 1
        if open_run is not None:
            return False, f"unterminated run started at {open_run}"
        return True, "ok"

    @classmethod
    def verify(cls, path: Path) -> Tuple[bool, str]:
        ok, message = cls.verify_chain(path)
        if ok:
            ok, message = cls.verify_steps(path)
        if not ok:
            logger.warning("ledger_verify_failed", path=str(path), reason=message)
        return ok, message

    @staticmethod
    def summarize(path: Path) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for _, entry in _scan(path):
            event_type = "CORRUPT" if entry is None else str(entry.get("type", ""))
            counts[event_type] = counts.get(event_type, 0) + 1
        return counts
