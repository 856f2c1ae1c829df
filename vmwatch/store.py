from __future__ import annotations
import json
import sqlite3
import time
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, List, Optional, Tuple

from .config import ensure_dirs
from .models import (BaselineEstablished, ContainmentResult, DataQualityIssue, Event,
                     RoundCompleted, RoundFailed, Verdict)

SCHEMA = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS runs (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  vm_name TEXT NOT NULL,
  address TEXT NOT NULL,
  script TEXT NOT NULL,
  started INTEGER NOT NULL,
  finished INTEGER,
  outcome TEXT
);

CREATE TABLE IF NOT EXISTS timeline (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  run_id INTEGER NOT NULL REFERENCES runs(id),
  ts INTEGER NOT NULL,
  round_no INTEGER NOT NULL,
  kind TEXT NOT NULL,
  summary TEXT NOT NULL,
  details TEXT
);

CREATE INDEX IF NOT EXISTS idx_timeline_run ON timeline(run_id, id);
"""


def _details(obj: Any) -> str:
    payload = asdict(obj) if is_dataclass(obj) else obj
    return json.dumps(payload, default=str, sort_keys=True)


class Journal:
    """
    sqlite record of monitoring runs. Write-only from the monitor's point of
    view: nothing here is ever read back to seed a run.
    """

    def __init__(self, db_path: str):
        if db_path != ":memory:":
            ensure_dirs(Path(db_path).parent)
        self.db_path = db_path
        self.run_id: Optional[int] = None
        self._round = 0
        self._conn = sqlite3.connect(self.db_path)
        self._conn.execute("PRAGMA foreign_keys=ON;")
        self._conn.executescript(SCHEMA)
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def now_ts(self) -> int:
        return int(time.time())

    # ── runs ──────────────────────────────────
    def start_run(self, vm_name: str, address: str, script: str) -> int:
        cur = self._conn.execute(
            "INSERT INTO runs(vm_name,address,script,started) VALUES(?,?,?,?)",
            (vm_name, address, script, self.now_ts()),
        )
        self._conn.commit()
        self.run_id = cur.lastrowid
        return self.run_id

    def finish_run(self, outcome: str) -> None:
        self._conn.execute(
            "UPDATE runs SET finished=?, outcome=? WHERE id=?",
            (self.now_ts(), outcome, self._current()),
        )
        self._conn.commit()

    def list_runs(self, limit: int = 50) -> List[Tuple[Any, ...]]:
        cur = self._conn.execute(
            "SELECT id, vm_name, address, script, started, finished, outcome "
            "FROM runs ORDER BY id DESC LIMIT ?",
            (limit,),
        )
        return cur.fetchall()

    # ── timeline ──────────────────────────────
    def add_timeline(self, round_no: int, kind: str, summary: str, details: str = "") -> None:
        self._conn.execute(
            "INSERT INTO timeline(run_id,ts,round_no,kind,summary,details) VALUES(?,?,?,?,?,?)",
            (self._current(), self.now_ts(), round_no, kind, summary, details),
        )
        self._conn.commit()

    def list_timeline(self, run_id: Optional[int] = None) -> List[Tuple[Any, ...]]:
        cur = self._conn.execute(
            "SELECT round_no, kind, summary, details FROM timeline WHERE run_id=? ORDER BY id",
            (run_id if run_id is not None else self._current(),),
        )
        return cur.fetchall()

    def __call__(self, event: Event) -> None:
        self.record(event)

    def record(self, event: Event) -> None:
        self._round = getattr(event, "round_no", self._round)
        if isinstance(event, BaselineEstablished):
            self.add_timeline(0, "baseline", "baseline established", _details(event))
        elif isinstance(event, RoundCompleted):
            flagged = ",".join(event.flagged) or "-"
            self.add_timeline(event.round_no, "round", f"spikes={flagged} critical={event.critical}",
                              _details(event))
        elif isinstance(event, RoundFailed):
            self.add_timeline(event.round_no, "failure",
                              f"sampling failed ({event.consecutive_failures} consecutive)", event.error)
        elif isinstance(event, DataQualityIssue):
            self.add_timeline(event.round_no, "data_quality", f"{event.family}: {event.summary}")
        elif isinstance(event, Verdict):
            self.add_timeline(event.round_no, "verdict", event.outcome.value, _details(event))
            self.finish_run(event.outcome.value)
        elif isinstance(event, ContainmentResult):
            summary = "VM stopped" if event.stopped else f"stop failed: {event.error}"
            self.add_timeline(self._round, "containment", summary)

    def _current(self) -> int:
        if self.run_id is None:
            raise RuntimeError("no run started in this journal")
        return self.run_id
