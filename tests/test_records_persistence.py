from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

import pytest

from supermind_trainer.drill_core import Difficulty
from supermind_trainer.persistence import (
    DB_PATH_ENV,
    SCHEMA_VERSION,
    MemoryStore,
    PersistenceError,
    SqliteStore,
    default_db_path,
    open_db,
)
from supermind_trainer.question_generator import QuestionGenerator
from supermind_trainer.records import (
    HISTORY_LIMIT,
    KEY_HISTORY,
    LEADERBOARD_LIMIT,
    TrainerRecords,
)
from supermind_trainer.results import AnswerRecord, TestResult, compute_result
from supermind_trainer.settings import SessionSettings


def _result(correct: int, total: int = 4, seconds: float = 20.0) -> TestResult:
    qs = QuestionGenerator(seed=correct * 31 + total).generate_questions(total)
    answers = [
        AnswerRecord(i, q.id, q.correct_answer if i < correct else None, i < correct, 1.0)
        for i, q in enumerate(qs)
    ]
    return compute_result(
        qs, answers, started_at_s=0.0, ended_at_s=seconds, settings=SessionSettings(), track_skips=False
    )


class FailingStore(MemoryStore):
    def save(self, key: str, value: Any) -> None:
        raise PersistenceError(f"disk full while writing {key}")


def test_open_db_sets_schema_version(tmp_path: Path) -> None:
    conn = open_db(tmp_path / "nested" / "trainer.sqlite3")
    try:
        ver = conn.execute("PRAGMA user_version;").fetchone()[0]
        assert ver == SCHEMA_VERSION
        tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert "kv" in tables
    finally:
        conn.close()


def test_sqlite_store_round_trip_survives_reopen(tmp_path: Path) -> None:
    path = tmp_path / "trainer.sqlite3"
    store = SqliteStore(path)
    store.save("a", {"x": [1, 2, 3], "y": None})
    store.save("a", {"x": [4]})
    store.save("b", "text")
    store.close()

    store = SqliteStore(path)
    try:
        assert store.load("a") == {"x": [4]}
        assert store.load("b") == "text"
        assert store.load("missing", 5) == 5
        assert store.keys() == ["a", "b"]
        store.remove("a")
        assert store.load("a") is None
    finally:
        store.close()


def test_sqlite_store_corrupt_value_returns_default(tmp_path: Path) -> None:
    path = tmp_path / "trainer.sqlite3"
    store = SqliteStore(path)
    store.close()

    conn = sqlite3.connect(str(path))
    with conn:
        conn.execute("INSERT INTO kv(key, value, updated_at_utc) VALUES ('bad', '{not json', 'now')")
    conn.close()

    store = SqliteStore(path)
    try:
        assert store.load("bad", []) == []
    finally:
        store.close()


def test_closed_store_raises_persistence_error(tmp_path: Path) -> None:
    store = SqliteStore(tmp_path / "t.sqlite3")
    store.close()
    with pytest.raises(PersistenceError):
        store.save("k", 1)


def test_unserialisable_value_raises_persistence_error() -> None:
    store = SqliteStore(":memory:")
    try:
        with pytest.raises(PersistenceError):
            store.save("k", object())
    finally:
        store.close()


def test_default_db_path_honours_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv(DB_PATH_ENV, str(tmp_path / "custom.sqlite3"))
    assert default_db_path() == tmp_path / "custom.sqlite3"
    monkeypatch.delenv(DB_PATH_ENV)
    assert default_db_path().name == ".supermind_trainer.sqlite3"


def test_memory_store_copies_values() -> None:
    store = MemoryStore()
    value = {"list": [1]}
    store.save("k", value)
    value["list"].append(2)
    loaded = store.load("k")
    assert loaded == {"list": [1]}
    loaded["list"].append(3)
    assert store.load("k") == {"list": [1]}


def test_history_is_newest_first_and_capped() -> None:
    records = TrainerRecords(MemoryStore())
    for i in range(HISTORY_LIMIT + 5):
        records.save_result(_result(correct=i % 5, total=4))

    history = records.history()
    assert len(history) == HISTORY_LIMIT
    assert history[0]["scorePercentage"] == _result(correct=(HISTORY_LIMIT + 4) % 5).score_percentage
    assert records.stats().total_tests == HISTORY_LIMIT + 5


def test_stats_accumulate_across_sessions() -> None:
    records = TrainerRecords(MemoryStore())
    records.save_result(_result(correct=4, seconds=10.0))
    records.save_result(_result(correct=2, seconds=30.0))

    stats = records.stats()
    assert stats.total_tests == 2
    assert stats.total_questions == 8
    assert stats.correct_answers == 6
    assert stats.best_score == 100
    assert stats.average_score == 75
    assert stats.total_time_s == 40.0


def test_leaderboard_sorted_by_score_then_time_and_capped() -> None:
    records = TrainerRecords(MemoryStore())
    records.add_to_leaderboard("slow", 90, 50.0)
    records.add_to_leaderboard("fast", 90, 20.0)
    records.add_to_leaderboard("best", 100, 99.0)
    for i in range(LEADERBOARD_LIMIT):
        records.add_to_leaderboard(f"p{i}", 10, float(i))

    board = records.leaderboard()
    assert len(board) == LEADERBOARD_LIMIT
    assert [e.name for e in board[:3]] == ["best", "fast", "slow"]
    assert board[-1].score == 10
    assert all(
        (a.score, -a.time_s) >= (b.score, -b.time_s) for a, b in zip(board, board[1:])
    )


def test_leaderboard_blank_name_defaults_to_player() -> None:
    records = TrainerRecords(MemoryStore())
    entry = records.add_to_leaderboard("   ", 50, 10.0)
    assert entry.name == "Player"


def test_settings_persist_and_invalid_settings_are_refused() -> None:
    records = TrainerRecords(MemoryStore())
    assert records.load_settings() == SessionSettings()

    wanted = SessionSettings(question_count=30, difficulty=Difficulty.HARD)
    records.save_settings(wanted)
    assert records.load_settings() == wanted

    with pytest.raises(ValueError):
        records.save_settings(SessionSettings(question_count=0))


def test_failed_write_raises_but_reads_still_work() -> None:
    records = TrainerRecords(FailingStore())
    with pytest.raises(PersistenceError):
        records.save_result(_result(correct=1))
    assert records.history() == []
    assert records.stats().total_tests == 0


def test_unreadable_store_reads_defaults_and_still_saves() -> None:
    class UnreadableStore(MemoryStore):
        def load(self, key: str, default: Any = None) -> Any:
            raise OSError("disk gone")

    records = TrainerRecords(UnreadableStore())
    assert records.history() == []
    assert records.leaderboard() == []
    assert records.load_settings() == SessionSettings()
    records.save_result(_result(correct=2))
    assert KEY_HISTORY in records.store.keys()


def test_malformed_stored_history_reads_as_empty() -> None:
    store = MemoryStore()
    store.save(KEY_HISTORY, {"not": "a list"})
    assert TrainerRecords(store).history() == []


def test_export_import_and_clear(tmp_path: Path) -> None:
    store = SqliteStore(tmp_path / "records.sqlite3")
    try:
        records = TrainerRecords(store)
        records.save_result(_result(correct=3))
        records.add_to_leaderboard("Ada", 75, 12.0)
        dumped = records.export_data()
        assert set(json.loads(dumped)) >= {"settings", "stats", "history", "leaderboard", "exportDate"}

        records.clear_all()
        assert records.history() == []
        assert records.leaderboard() == []
        assert store.keys() == []

        assert records.import_data(dumped) is True
        assert len(records.history()) == 1
        assert records.leaderboard()[0].name == "Ada"
        assert records.stats().total_tests == 1

        assert records.import_data("{broken") is False
        assert records.import_data("[]") is False
    finally:
        store.close()
