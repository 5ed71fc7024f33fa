from __future__ import annotations

import math
import random
from enum import Enum
from typing import MutableSequence, Sequence, TypeVar

T = TypeVar("T")


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXTREME = "extreme"

    @classmethod
    def parse(cls, value: object) -> "Difficulty":
        """Accept enum members, names and the legacy "normal" alias."""

        if isinstance(value, Difficulty):
            return value
        key = str(value or "medium").strip().lower()
        if key == "normal":
            key = "medium"
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown difficulty: {value!r}") from None


class TimerMode(str, Enum):
    OFF = "off"
    PER_QUESTION = "per-question"
    TOTAL_TIME = "total-time"


class TestMode(str, Enum):
    PRACTICE = "practice"
    EXAM = "exam"


class SeededRng:
    """Random source for question generation.

    Wraps ``random.Random`` so that the whole generator stream can be
    reproduced from one seed. ``seed=None`` draws from OS entropy.
    """

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    def randint(self, a: int, b: int) -> int:
        """Inclusive bounded integer."""
        if b < a:
            a, b = b, a
        return self._rng.randint(a, b)

    def choice(self, seq: Sequence[T]) -> T:
        return seq[self.randint(0, len(seq) - 1)]

    def random(self) -> float:
        return self._rng.random()

    def getrandbits(self, k: int) -> int:
        return self._rng.getrandbits(k)

    def shuffle(self, items: MutableSequence[T]) -> None:
        """In-place Fisher-Yates shuffle."""
        for i in range(len(items) - 1, 0, -1):
            j = self.randint(0, i)
            items[i], items[j] = items[j], items[i]


def round_half_up(x: float) -> int:
    # Percentages and averages round .5 upwards, never to even.
    return int(math.floor(x + 0.5))


def percentage(part: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(part / total * 100.0)


def format_mmss(seconds: float) -> str:
    total = max(0, int(seconds))
    return f"{total // 60:02d}:{total % 60:02d}"
