"""Multiplication question and distractor generation.

A ``QuestionGenerator`` draws two factors, computes the product and builds
four multiple-choice options: the correct answer plus three distractors made
by a difficulty-ordered list of strategies (off-by-one, swapped digits,
perturbed factors, arithmetic offsets, random-close values).  Options are
shuffled into display positions 1..4.

The generator keeps a bounded history of what it produced.  The history is
used to avoid repeating an unordered factor pair and to report statistics;
``clear_history`` resets it.  All randomness flows through one ``SeededRng``
so a seeded generator produces a reproducible stream.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections import Counter, deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from .drill_core import Difficulty, SeededRng

logger = logging.getLogger(__name__)

OPTION_COUNT = 4
DISTRACTOR_COUNT = OPTION_COUNT - 1
DEFAULT_MAX_ATTEMPTS = 50
DEFAULT_HISTORY_LIMIT = 500

# Range used when rules are disabled and no explicit range is given.
DEFAULT_FACTOR_A_RANGE = (0, 10)
DEFAULT_FACTOR_B_RANGE = (0, 99)

_FACTOR_RANGES: dict[Difficulty, tuple[int, int]] = {
    Difficulty.EASY: (10, 20),
    Difficulty.MEDIUM: (10, 50),
    Difficulty.HARD: (10, 100),
    Difficulty.EXTREME: (50, 99),
}

_TIME_LIMITS_S: dict[Difficulty, int] = {
    Difficulty.EASY: 60,
    Difficulty.MEDIUM: 45,
    Difficulty.HARD: 30,
    Difficulty.EXTREME: 25,
}

# Spread multiplier for random-close distractors: offset in [-s, s] with
# s = max(10, int(answer * k)).
_RANDOM_CLOSE_K: dict[Difficulty, float] = {
    Difficulty.EASY: 0.5,
    Difficulty.MEDIUM: 0.8,
    Difficulty.HARD: 1.5,
    Difficulty.EXTREME: 2.0,
}
_RANDOM_CLOSE_MIN_SPREAD = 10


class MultiplicationRule(str, Enum):
    TIMES_ELEVEN = "times-eleven"
    DIGIT_ONE = "digit-one-in-tens-or-ones-place"
    FULLY_RANDOM = "fully-random-in-range"

    @classmethod
    def parse(cls, value: object) -> "MultiplicationRule | None":
        """``None``/"random" mean pick per question; legacy ids 1, 2, 4 are accepted."""

        if value is None or isinstance(value, MultiplicationRule):
            return value
        key = str(value).strip().lower()
        if key in ("", "random"):
            return None
        legacy = {"1": cls.TIMES_ELEVEN, "2": cls.DIGIT_ONE, "4": cls.FULLY_RANDOM}
        if key in legacy:
            return legacy[key]
        try:
            return cls(key)
        except ValueError:
            raise ValueError(f"unknown multiplication rule: {value!r}") from None


class DistractorStrategy(str, Enum):
    OFF_BY_ONE = "off_by_one"
    SWAP_DIGITS = "swap_digits"
    FACTOR_VARIATION = "factor_variation"
    SIMPLE_MATH = "simple_math"
    COMPLEX_MATH = "complex_math"
    RANDOM_CLOSE = "random_close"


_STRATEGIES: dict[Difficulty, tuple[DistractorStrategy, ...]] = {
    Difficulty.EASY: (
        DistractorStrategy.OFF_BY_ONE,
        DistractorStrategy.SWAP_DIGITS,
        DistractorStrategy.SIMPLE_MATH,
    ),
    Difficulty.MEDIUM: (
        DistractorStrategy.OFF_BY_ONE,
        DistractorStrategy.SWAP_DIGITS,
        DistractorStrategy.FACTOR_VARIATION,
        DistractorStrategy.SIMPLE_MATH,
    ),
    Difficulty.HARD: (
        DistractorStrategy.OFF_BY_ONE,
        DistractorStrategy.SWAP_DIGITS,
        DistractorStrategy.FACTOR_VARIATION,
        DistractorStrategy.COMPLEX_MATH,
        DistractorStrategy.RANDOM_CLOSE,
    ),
    Difficulty.EXTREME: (
        DistractorStrategy.SWAP_DIGITS,
        DistractorStrategy.FACTOR_VARIATION,
        DistractorStrategy.COMPLEX_MATH,
        DistractorStrategy.RANDOM_CLOSE,
    ),
}


def range_for_difficulty(difficulty: Difficulty | str) -> tuple[int, int]:
    return _FACTOR_RANGES[Difficulty.parse(difficulty)]


def strategies_for_difficulty(difficulty: Difficulty | str) -> tuple[DistractorStrategy, ...]:
    return _STRATEGIES[Difficulty.parse(difficulty)]


def time_limit_for(difficulty: Difficulty | str) -> int:
    return _TIME_LIMITS_S[Difficulty.parse(difficulty)]


def has_digit_one_in_tens_or_ones(n: int) -> bool:
    n = abs(n)
    return n % 10 == 1 or (n // 10) % 10 == 1


@dataclass(frozen=True, slots=True)
class Option:
    value: int
    position: int  # 1..4, display order
    is_correct: bool

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "position": self.position, "isCorrect": self.is_correct}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Option":
        return cls(
            value=_as_int(data["value"]),
            position=_as_int(data["position"]),
            is_correct=bool(data["isCorrect"]),
        )


@dataclass(slots=True)
class Question:
    """A generated multiplication problem with its answer options.

    Everything up to ``time_limit_s`` is fixed at generation time.  The three
    trailing fields are written by the session that presents the question.
    """

    id: str
    factor_a: int
    factor_b: int
    correct_answer: int
    options: tuple[Option, ...]
    difficulty: Difficulty
    created_at: float
    time_limit_s: int

    user_answer: int | None = None
    is_correct: bool | None = None
    time_spent_s: float | None = None

    @property
    def prompt(self) -> str:
        return f"{self.factor_a} × {self.factor_b} = ?"

    @property
    def option_values(self) -> tuple[int, ...]:
        return tuple(o.value for o in self.options)

    @property
    def correct_index(self) -> int:
        for i, option in enumerate(self.options):
            if option.is_correct:
                return i
        raise ValueError(f"question {self.id} has no correct option")

    def option_at(self, index: int) -> Option:
        if not 0 <= index < len(self.options):
            raise IndexError(f"option index out of range: {index}")
        return self.options[index]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "factorA": self.factor_a,
            "factorB": self.factor_b,
            "correctAnswer": self.correct_answer,
            "options": [o.to_dict() for o in self.options],
            "difficulty": self.difficulty.value,
            "timestamp": self.created_at,
            "timeLimit": self.time_limit_s,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Question":
        raw_options = data["options"]
        if not isinstance(raw_options, list):
            raise TypeError("options must be a list")
        return cls(
            id=str(data["id"]),
            factor_a=_as_int(data["factorA"]),
            factor_b=_as_int(data["factorB"]),
            correct_answer=_as_int(data["correctAnswer"]),
            options=tuple(Option.from_dict(o) for o in raw_options),
            difficulty=Difficulty.parse(data.get("difficulty", "medium")),
            created_at=float(data.get("timestamp", 0.0)),
            time_limit_s=_as_int(data.get("timeLimit", time_limit_for(Difficulty.MEDIUM))),
        )


@dataclass(frozen=True, slots=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class GeneratorStatistics:
    total_questions: int
    difficulties: dict[str, int]
    factor_a_range: tuple[int, int]
    factor_b_range: tuple[int, int]
    average_time_limit_s: float


def _as_int(value: object) -> int:
    # bool is an int subclass; reject it along with floats like 3.5.
    if isinstance(value, bool):
        raise TypeError("expected an integer, got bool")
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise TypeError(f"expected an integer, got {value!r}")


class QuestionGenerator:
    def __init__(
        self,
        *,
        seed: int | None = None,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        if history_limit <= 0:
            raise ValueError("history_limit must be > 0")
        self._rng = SeededRng(seed)
        self._history: deque[Question] = deque(maxlen=history_limit)
        self._wall_clock = wall_clock

    @property
    def history(self) -> tuple[Question, ...]:
        return tuple(self._history)

    def clear_history(self) -> None:
        self._history.clear()

    # -- Questions ----------------------------------------------------------
    def generate_question(
        self,
        *,
        factor_a: int | None = None,
        factor_b: int | None = None,
        factor_a_range: tuple[int, int] | None = None,
        factor_b_range: tuple[int, int] | None = None,
        difficulty: Difficulty | str = Difficulty.MEDIUM,
        rule: MultiplicationRule | str | None = None,
        use_rules: bool = True,
        avoid_duplicates: bool = True,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> Question:
        diff = Difficulty.parse(difficulty)
        rule = MultiplicationRule.parse(rule)
        for name, value in (("factor_a", factor_a), ("factor_b", factor_b)):
            if value is not None and value < 0:
                raise ValueError(f"{name} must be >= 0")

        attempts = 0
        while True:
            a, b = self._pick_factors(
                factor_a=factor_a,
                factor_b=factor_b,
                factor_a_range=factor_a_range,
                factor_b_range=factor_b_range,
                difficulty=diff,
                rule=rule,
                use_rules=use_rules,
            )
            attempts += 1
            fixed = factor_a is not None and factor_b is not None
            if fixed or not avoid_duplicates or not self.is_duplicate(a, b):
                break
            if attempts >= max(1, max_attempts):
                logger.debug("duplicate avoidance exhausted after %d attempts; accepting %d x %d", attempts, a, b)
                break

        question = self._build_question(a, b, diff)
        self._history.append(question)
        return question

    def generate_questions(self, count: int, **options: Any) -> list[Question]:
        if count < 0:
            raise ValueError("count must be >= 0")
        return [self.generate_question(**options) for _ in range(count)]

    def is_duplicate(self, factor_a: int, factor_b: int) -> bool:
        pair = (min(factor_a, factor_b), max(factor_a, factor_b))
        return any((min(q.factor_a, q.factor_b), max(q.factor_a, q.factor_b)) == pair for q in self._history)

    def _pick_factors(
        self,
        *,
        factor_a: int | None,
        factor_b: int | None,
        factor_a_range: tuple[int, int] | None,
        factor_b_range: tuple[int, int] | None,
        difficulty: Difficulty,
        rule: MultiplicationRule | None,
        use_rules: bool,
    ) -> tuple[int, int]:
        if factor_a is not None or factor_b is not None:
            lo, hi = range_for_difficulty(difficulty)
            a = factor_a if factor_a is not None else self._rng.randint(lo, hi)
            b = factor_b if factor_b is not None else self._rng.randint(lo, hi)
            return a, b

        if factor_a_range is not None or factor_b_range is not None or not use_rules:
            a_lo, a_hi = factor_a_range or DEFAULT_FACTOR_A_RANGE
            b_lo, b_hi = factor_b_range or DEFAULT_FACTOR_B_RANGE
            if min(a_lo, a_hi, b_lo, b_hi) < 0:
                raise ValueError("factor ranges must be non-negative")
            return self._rng.randint(a_lo, a_hi), self._rng.randint(b_lo, b_hi)

        return self.factors_by_rule(rule, difficulty)

    def factors_by_rule(self, rule: MultiplicationRule | None, difficulty: Difficulty) -> tuple[int, int]:
        lo, hi = range_for_difficulty(difficulty)
        if difficulty is Difficulty.EXTREME:
            rule = MultiplicationRule.FULLY_RANDOM
        elif rule is None:
            rule = self._rng.choice(list(MultiplicationRule))

        if rule is MultiplicationRule.TIMES_ELEVEN:
            return self._rng.randint(lo, hi), 11
        if rule is MultiplicationRule.DIGIT_ONE:
            return self._digit_one_pair(lo, hi)
        return self._rng.randint(lo, hi), self._rng.randint(lo, hi)

    def _digit_one_pair(self, lo: int, hi: int) -> tuple[int, int]:
        a = self._rng.randint(lo, hi)
        b = self._rng.randint(lo, hi)
        if has_digit_one_in_tens_or_ones(a) or has_digit_one_in_tens_or_ones(b):
            return a, b
        candidates = [n for n in range(lo, hi + 1) if has_digit_one_in_tens_or_ones(n)]
        if not candidates:
            return a, b
        forced = self._rng.choice(candidates)
        if self._rng.random() < 0.5:
            return forced, b
        return a, forced

    def _build_question(self, a: int, b: int, difficulty: Difficulty) -> Question:
        correct = a * b
        values = [correct, *self.generate_distractors(correct, a, b, difficulty)]
        self._rng.shuffle(values)
        options = tuple(
            Option(value=v, position=i + 1, is_correct=(v == correct)) for i, v in enumerate(values)
        )
        return Question(
            id=self._new_id(),
            factor_a=a,
            factor_b=b,
            correct_answer=correct,
            options=options,
            difficulty=difficulty,
            created_at=float(self._wall_clock()),
            time_limit_s=time_limit_for(difficulty),
        )

    def _new_id(self) -> str:
        return f"q_{uuid.UUID(int=self._rng.getrandbits(128), version=4).hex[:16]}"

    # -- Distractors --------------------------------------------------------
    def generate_distractors(
        self,
        correct_answer: int,
        factor_a: int,
        factor_b: int,
        difficulty: Difficulty | str = Difficulty.MEDIUM,
    ) -> list[int]:
        """Return exactly three distinct, non-negative wrong answers."""

        diff = Difficulty.parse(difficulty)
        distractors: list[int] = []

        def accept(candidate: int | None) -> None:
            if candidate is None or candidate < 0 or candidate == correct_answer:
                return
            if candidate not in distractors:
                distractors.append(candidate)

        for strategy in strategies_for_difficulty(diff):
            if len(distractors) >= DISTRACTOR_COUNT:
                break
            accept(self.apply_strategy(strategy, correct_answer, factor_a, factor_b, diff))

        while len(distractors) < DISTRACTOR_COUNT:
            accept(self.random_close(correct_answer, diff))

        return distractors

    def apply_strategy(
        self,
        strategy: DistractorStrategy,
        correct_answer: int,
        factor_a: int,
        factor_b: int,
        difficulty: Difficulty,
    ) -> int | None:
        if strategy is DistractorStrategy.OFF_BY_ONE:
            return self.off_by_one(correct_answer)
        if strategy is DistractorStrategy.SWAP_DIGITS:
            return self.swap_digits(correct_answer, difficulty)
        if strategy is DistractorStrategy.FACTOR_VARIATION:
            return self.factor_variation(factor_a, factor_b)
        if strategy is DistractorStrategy.SIMPLE_MATH:
            return self._pick_non_negative(
                [correct_answer + 10, correct_answer - 10, correct_answer + 5, correct_answer - 5]
            )
        if strategy is DistractorStrategy.COMPLEX_MATH:
            return self._pick_non_negative(
                [
                    correct_answer + factor_a,
                    correct_answer - factor_a,
                    correct_answer + factor_b,
                    correct_answer - factor_b,
                    int(correct_answer * 1.1),
                    int(correct_answer * 0.9),
                ]
            )
        return self.random_close(correct_answer, difficulty)

    def off_by_one(self, correct_answer: int) -> int:
        return correct_answer + self._rng.choice((1, -1))

    def swap_digits(self, correct_answer: int, difficulty: Difficulty = Difficulty.MEDIUM) -> int:
        """Swap two adjacent digits; short or unswappable values fall back to random-close."""

        digits = str(abs(correct_answer))
        eligible = [
            i
            for i in range(len(digits) - 1)
            if digits[i] != digits[i + 1] and not (i == 0 and digits[i + 1] == "0")
        ]
        if not eligible:
            return self.random_close(correct_answer, difficulty)
        i = self._rng.choice(eligible)
        swapped = digits[:i] + digits[i + 1] + digits[i] + digits[i + 2 :]
        return int(swapped)

    def factor_variation(self, factor_a: int, factor_b: int) -> int | None:
        return self._pick_non_negative(
            [
                (factor_a + 1) * factor_b,
                (factor_a - 1) * factor_b,
                factor_a * (factor_b + 1),
                factor_a * (factor_b - 1),
            ]
        )

    def random_close(self, correct_answer: int, difficulty: Difficulty = Difficulty.MEDIUM) -> int:
        spread = max(_RANDOM_CLOSE_MIN_SPREAD, int(correct_answer * _RANDOM_CLOSE_K[difficulty]))
        return max(0, correct_answer + self._rng.randint(-spread, spread))

    def _pick_non_negative(self, values: list[int]) -> int | None:
        usable = [v for v in values if v >= 0]
        if not usable:
            return None
        return self._rng.choice(usable)

    # -- Validation / interchange -------------------------------------------
    def validate_question(self, question: Question) -> ValidationResult:
        return validate_question(question)

    def export_questions(self, questions: Iterable[Question]) -> str:
        return export_questions(questions)

    def import_questions(self, text: str) -> list[Question]:
        return import_questions(text)

    def statistics(self) -> GeneratorStatistics:
        history = list(self._history)
        total = len(history)
        if total == 0:
            return GeneratorStatistics(0, {}, (0, 0), (0, 0), 0.0)
        counts = Counter(q.difficulty.value for q in history)
        a_values = [q.factor_a for q in history]
        b_values = [q.factor_b for q in history]
        return GeneratorStatistics(
            total_questions=total,
            difficulties=dict(counts),
            factor_a_range=(min(a_values), max(a_values)),
            factor_b_range=(min(b_values), max(b_values)),
            average_time_limit_s=sum(q.time_limit_s for q in history) / total,
        )


def validate_question(question: Question) -> ValidationResult:
    errors: list[str] = []

    if not question.id:
        errors.append("Missing question ID")
    if question.factor_a < 0:
        errors.append("Invalid factor A")
    if question.factor_b < 0:
        errors.append("Invalid factor B")
    if question.correct_answer < 0:
        errors.append("Invalid correct answer")
    elif question.correct_answer != question.factor_a * question.factor_b:
        errors.append("Correct answer does not equal factor A x factor B")
    if len(question.options) != OPTION_COUNT:
        errors.append(f"Invalid options array: expected {OPTION_COUNT}, got {len(question.options)}")

    correct_options = [o for o in question.options if o.is_correct]
    if len(correct_options) != 1:
        errors.append("Must have exactly one correct option")
    elif correct_options[0].value != question.correct_answer:
        errors.append("Correct option value does not match correct answer")

    values = question.option_values
    if any(v < 0 for v in values):
        errors.append("Option values must be non-negative")
    if len(set(values)) != len(values):
        errors.append("Option values must be distinct")

    return ValidationResult(is_valid=not errors, errors=tuple(errors))


def export_questions(questions: Iterable[Question]) -> str:
    return json.dumps([q.to_dict() for q in questions], indent=2, ensure_ascii=False)


def import_questions(text: str) -> list[Question]:
    """Parse exported questions.

    Malformed input of any kind yields an empty list.  Entries that parse but
    break the question invariants are dropped.
    """

    try:
        payload = json.loads(text)
        if not isinstance(payload, list):
            raise TypeError("expected a JSON array of questions")
        parsed = [Question.from_dict(item) for item in payload]
    except (ValueError, TypeError, KeyError) as exc:
        logger.error("question import failed: %s", exc)
        return []

    accepted: list[Question] = []
    for index, question in enumerate(parsed):
        result = validate_question(question)
        if not result.is_valid:
            logger.warning("dropping imported question %d: %s", index, "; ".join(result.errors))
            continue
        accepted.append(question)
    return accepted
