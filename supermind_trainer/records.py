"""History, running statistics, leaderboard and saved settings.

``TrainerRecords`` is the only code that knows the storage keys.  It sits on
top of any ``KeyValueStore``.  Reads are forgiving: a failed or corrupt read
is logged and the default is returned.  ``save_result`` raises
``PersistenceError`` so callers decide how to contain the failure; the other
writers do the same.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from .clock import utc_now_iso
from .persistence import KeyValueStore, PersistenceError
from .results import RunningStats, TestResult, result_to_dict, update_running_stats
from .settings import SessionSettings

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 50
LEADERBOARD_LIMIT = 20

KEY_SETTINGS = "multiplication_trainer_settings"
KEY_STATS = "multiplication_trainer_stats"
KEY_HISTORY = "multiplication_trainer_history"
KEY_LEADERBOARD = "multiplication_trainer_leaderboard"
ALL_KEYS = (KEY_SETTINGS, KEY_STATS, KEY_HISTORY, KEY_LEADERBOARD)


@dataclass(frozen=True, slots=True)
class LeaderboardEntry:
    entry_id: int
    name: str
    score: int
    time_s: float
    date: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.entry_id, "name": self.name, "score": self.score, "time": self.time_s, "date": self.date}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LeaderboardEntry":
        return cls(
            entry_id=int(data.get("id", 0)),
            name=str(data.get("name", "")),
            score=int(data["score"]),
            time_s=float(data["time"]),
            date=str(data.get("date", "")),
        )


def sort_leaderboard(entries: list[LeaderboardEntry]) -> list[LeaderboardEntry]:
    return sorted(entries, key=lambda e: (-e.score, e.time_s))


class TrainerRecords:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    @property
    def store(self) -> KeyValueStore:
        return self._store

    # -- Results ------------------------------------------------------------
    def save_result(self, result: TestResult) -> dict[str, Any]:
        """Prepend the result to history and fold it into running stats."""

        entry = {"id": _entry_id(), **result_to_dict(result)}
        history = self.history()
        history.insert(0, entry)
        del history[HISTORY_LIMIT:]
        self._write(KEY_HISTORY, history)
        self._write(KEY_STATS, update_running_stats(self.stats(), result).to_dict())
        logger.info(
            "saved %s result: %d/%d (%d%%)",
            result.test_mode.value,
            result.correct_count,
            result.total_questions,
            result.score_percentage,
        )
        return entry

    def history(self) -> list[dict[str, Any]]:
        raw = self._read(KEY_HISTORY, [])
        if not isinstance(raw, list):
            return []
        return [item for item in raw if isinstance(item, dict)]

    def stats(self) -> RunningStats:
        return RunningStats.from_dict(self._read(KEY_STATS, None))

    # -- Leaderboard --------------------------------------------------------
    def add_to_leaderboard(self, name: str, score: int, time_s: float) -> LeaderboardEntry:
        entry = LeaderboardEntry(
            entry_id=_entry_id(),
            name=str(name).strip() or "Player",
            score=int(score),
            time_s=float(time_s),
            date=utc_now_iso(),
        )
        board = sort_leaderboard([*self.leaderboard(), entry])[:LEADERBOARD_LIMIT]
        self._write(KEY_LEADERBOARD, [e.to_dict() for e in board])
        return entry

    def leaderboard(self) -> list[LeaderboardEntry]:
        raw = self._read(KEY_LEADERBOARD, [])
        if not isinstance(raw, list):
            return []
        entries: list[LeaderboardEntry] = []
        for item in raw:
            try:
                entries.append(LeaderboardEntry.from_dict(item))
            except (KeyError, TypeError, ValueError, AttributeError):
                logger.warning("skipping malformed leaderboard entry: %r", item)
        return sort_leaderboard(entries)

    # -- Settings -----------------------------------------------------------
    def load_settings(self) -> SessionSettings:
        return SessionSettings.from_dict(self._read(KEY_SETTINGS, None))

    def save_settings(self, settings: SessionSettings) -> None:
        self._write(KEY_SETTINGS, settings.validate().to_dict())

    # -- Maintenance --------------------------------------------------------
    def clear_all(self) -> None:
        for key in ALL_KEYS:
            try:
                self._store.remove(key)
            except PersistenceError:
                logger.exception("failed to clear %s", key)

    def export_data(self) -> str:
        data = {
            "settings": self.load_settings().to_dict(),
            "stats": self.stats().to_dict(),
            "history": self.history(),
            "leaderboard": [e.to_dict() for e in self.leaderboard()],
            "exportDate": utc_now_iso(),
        }
        return json.dumps(data, indent=2, ensure_ascii=False)

    def import_data(self, text: str) -> bool:
        try:
            data = json.loads(text)
        except ValueError:
            logger.error("data import failed: not valid JSON")
            return False
        if not isinstance(data, dict):
            logger.error("data import failed: expected an object")
            return False
        try:
            if isinstance(data.get("settings"), dict):
                self._write(KEY_SETTINGS, SessionSettings.from_dict(data["settings"]).to_dict())
            if isinstance(data.get("stats"), dict):
                self._write(KEY_STATS, RunningStats.from_dict(data["stats"]).to_dict())
            if isinstance(data.get("history"), list):
                self._write(KEY_HISTORY, data["history"][:HISTORY_LIMIT])
            if isinstance(data.get("leaderboard"), list):
                self._write(KEY_LEADERBOARD, data["leaderboard"][:LEADERBOARD_LIMIT])
        except PersistenceError:
            logger.exception("data import failed while writing")
            return False
        return True

    def _read(self, key: str, default: Any) -> Any:
        try:
            return self._store.load(key, default)
        except Exception:
            logger.exception("failed to load %s", key)
            return default

    def _write(self, key: str, value: Any) -> None:
        try:
            self._store.save(key, value)
        except PersistenceError:
            raise
        except Exception as exc:
            raise PersistenceError(f"failed to save {key}") from exc


def _entry_id() -> int:
    return int(time.time() * 1000)
