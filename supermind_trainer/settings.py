from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any

from .drill_core import Difficulty, TestMode, TimerMode
from .question_generator import MultiplicationRule

MIN_QUESTION_COUNT = 1
MAX_QUESTION_COUNT = 50
MIN_TIMER_DURATION_S = 5
MAX_TIMER_DURATION_S = 300

QUESTION_COUNT_CHOICES = (5, 10, 15, 20, 30, 50)
TIMER_DURATION_CHOICES = (5, 10, 15, 30, 60, 120, 300)


class SettingsError(ValueError):
    """Raised when session settings fail validation."""

    def __init__(self, errors: list[str]) -> None:
        super().__init__("; ".join(errors))
        self.errors = list(errors)


@dataclass(frozen=True, slots=True)
class SessionSettings:
    """Configuration for one drill session.

    Defaults give a ten-question untimed practice run at medium difficulty
    with a randomly chosen multiplication rule per question.
    """

    question_count: int = 10
    timer_mode: TimerMode = TimerMode.OFF
    timer_duration_s: int = 30
    test_mode: TestMode = TestMode.PRACTICE
    difficulty: Difficulty = Difficulty.MEDIUM
    rule: MultiplicationRule | None = None
    allow_skip: bool = True
    auto_advance: bool = True
    player_name: str = "Player"

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if isinstance(self.question_count, bool) or not isinstance(self.question_count, int):
            errors.append("question_count must be an integer")
        elif not MIN_QUESTION_COUNT <= self.question_count <= MAX_QUESTION_COUNT:
            errors.append(f"question_count must be in [{MIN_QUESTION_COUNT}, {MAX_QUESTION_COUNT}]")
        if not isinstance(self.timer_mode, TimerMode):
            errors.append("timer_mode must be a TimerMode")
        if isinstance(self.timer_duration_s, bool) or not isinstance(self.timer_duration_s, int):
            errors.append("timer_duration_s must be an integer")
        elif not MIN_TIMER_DURATION_S <= self.timer_duration_s <= MAX_TIMER_DURATION_S:
            errors.append(f"timer_duration_s must be in [{MIN_TIMER_DURATION_S}, {MAX_TIMER_DURATION_S}]")
        if not isinstance(self.test_mode, TestMode):
            errors.append("test_mode must be a TestMode")
        if not isinstance(self.difficulty, Difficulty):
            errors.append("difficulty must be a Difficulty")
        if self.rule is not None and not isinstance(self.rule, MultiplicationRule):
            errors.append("rule must be a MultiplicationRule or None")
        return errors

    def validate(self) -> "SessionSettings":
        errors = self.validation_errors()
        if errors:
            raise SettingsError(errors)
        return self

    def with_changes(self, **changes: Any) -> "SessionSettings":
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionCount": self.question_count,
            "timerMode": self.timer_mode.value,
            "timerDuration": self.timer_duration_s,
            "testMode": self.test_mode.value,
            "difficulty": self.difficulty.value,
            "multiplicationRule": "random" if self.rule is None else self.rule.value,
            "allowSkip": self.allow_skip,
            "autoAdvance": self.auto_advance,
            "playerName": self.player_name,
        }

    @classmethod
    def from_dict(cls, data: object) -> "SessionSettings":
        """Lenient load for persisted settings: bad fields fall back to defaults."""

        defaults = cls()
        if not isinstance(data, dict):
            return defaults

        question_count = data.get("questionCount")
        if not _int_in(question_count, MIN_QUESTION_COUNT, MAX_QUESTION_COUNT):
            question_count = defaults.question_count
        timer_duration = data.get("timerDuration")
        if not _int_in(timer_duration, MIN_TIMER_DURATION_S, MAX_TIMER_DURATION_S):
            timer_duration = defaults.timer_duration_s

        player_name = str(data.get("playerName", "")).strip() or defaults.player_name

        return cls(
            question_count=int(question_count),
            timer_mode=_enum_or(TimerMode, data.get("timerMode"), defaults.timer_mode),
            timer_duration_s=int(timer_duration),
            test_mode=_enum_or(TestMode, data.get("testMode"), defaults.test_mode),
            difficulty=_difficulty_or(data.get("difficulty"), defaults.difficulty),
            rule=_rule_or(data.get("multiplicationRule"), defaults.rule),
            allow_skip=_bool_or(data.get("allowSkip"), defaults.allow_skip),
            auto_advance=_bool_or(data.get("autoAdvance"), defaults.auto_advance),
            player_name=player_name,
        )


def _int_in(value: object, lo: int, hi: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and lo <= value <= hi


def _bool_or(value: object, fallback: bool) -> bool:
    return value if isinstance(value, bool) else fallback


def _enum_or(enum_cls: type, value: object, fallback: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return fallback


def _difficulty_or(value: object, fallback: Difficulty) -> Difficulty:
    if value is None:
        return fallback
    try:
        return Difficulty.parse(value)
    except ValueError:
        return fallback


def _rule_or(value: object, fallback: MultiplicationRule | None) -> MultiplicationRule | None:
    try:
        return MultiplicationRule.parse(value)
    except ValueError:
        return fallback


def cycle_choice(choices: tuple[int, ...], current: int, delta: int) -> int:
    """Step through a tuple of preset values, snapping unknown values to the nearest."""

    if current in choices:
        idx = choices.index(current)
    else:
        idx = min(range(len(choices)), key=lambda i: abs(choices[i] - current))
    return choices[(idx + delta) % len(choices)]
