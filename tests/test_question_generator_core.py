from __future__ import annotations

import json

import pytest

from supermind_trainer.drill_core import Difficulty
from supermind_trainer.question_generator import (
    MultiplicationRule,
    Option,
    Question,
    QuestionGenerator,
    export_questions,
    has_digit_one_in_tens_or_ones,
    import_questions,
    range_for_difficulty,
    time_limit_for,
    validate_question,
)


def _assert_well_formed(q: Question) -> None:
    assert q.correct_answer == q.factor_a * q.factor_b
    assert len(q.options) == 4
    assert sum(1 for o in q.options if o.is_correct) == 1
    assert q.options[q.correct_index].value == q.correct_answer
    values = q.option_values
    assert len(set(values)) == 4
    assert all(v >= 0 for v in values)
    assert [o.position for o in q.options] == [1, 2, 3, 4]
    assert validate_question(q).is_valid


def test_generator_determinism_same_seed_same_sequence() -> None:
    gen1 = QuestionGenerator(seed=123, wall_clock=lambda: 0.0)
    gen2 = QuestionGenerator(seed=123, wall_clock=lambda: 0.0)

    seq1 = gen1.generate_questions(25, difficulty=Difficulty.HARD)
    seq2 = gen2.generate_questions(25, difficulty=Difficulty.HARD)

    assert [(q.id, q.factor_a, q.factor_b, q.option_values) for q in seq1] == [
        (q.id, q.factor_a, q.factor_b, q.option_values) for q in seq2
    ]


@pytest.mark.parametrize("difficulty", list(Difficulty))
def test_generated_questions_hold_invariants_for_every_difficulty(difficulty: Difficulty) -> None:
    gen = QuestionGenerator(seed=7)
    for q in gen.generate_questions(60, difficulty=difficulty):
        _assert_well_formed(q)
        assert q.difficulty is difficulty
        assert q.time_limit_s == time_limit_for(difficulty)


def test_extreme_uses_fully_random_factors_in_range() -> None:
    gen = QuestionGenerator(seed=3)
    lo, hi = range_for_difficulty(Difficulty.EXTREME)
    for q in gen.generate_questions(40, difficulty=Difficulty.EXTREME, rule=MultiplicationRule.TIMES_ELEVEN):
        assert lo <= q.factor_a <= hi
        assert lo <= q.factor_b <= hi


def test_times_eleven_rule_fixes_second_factor() -> None:
    gen = QuestionGenerator(seed=11)
    lo, hi = range_for_difficulty(Difficulty.MEDIUM)
    for q in gen.generate_questions(20, difficulty=Difficulty.MEDIUM, rule=MultiplicationRule.TIMES_ELEVEN):
        assert q.factor_b == 11
        assert lo <= q.factor_a <= hi


def test_digit_one_rule_puts_a_one_in_either_factor() -> None:
    gen = QuestionGenerator(seed=5)
    for q in gen.generate_questions(30, difficulty=Difficulty.HARD, rule="digit-one-in-tens-or-ones-place"):
        assert has_digit_one_in_tens_or_ones(q.factor_a) or has_digit_one_in_tens_or_ones(q.factor_b)


def test_has_digit_one_checks_only_tens_and_ones() -> None:
    assert has_digit_one_in_tens_or_ones(21)
    assert has_digit_one_in_tens_or_ones(13)
    assert has_digit_one_in_tens_or_ones(112)
    assert not has_digit_one_in_tens_or_ones(100)
    assert not has_digit_one_in_tens_or_ones(42)


def test_explicit_factors_and_ranges() -> None:
    gen = QuestionGenerator(seed=1)

    q = gen.generate_question(factor_a=7, factor_b=8)
    assert (q.factor_a, q.factor_b, q.correct_answer) == (7, 8, 56)
    _assert_well_formed(q)

    for _ in range(20):
        q = gen.generate_question(factor_a_range=(2, 3), factor_b_range=(40, 45), avoid_duplicates=False)
        assert 2 <= q.factor_a <= 3
        assert 40 <= q.factor_b <= 45

    for _ in range(20):
        q = gen.generate_question(use_rules=False, avoid_duplicates=False)
        assert 0 <= q.factor_a <= 10
        assert 0 <= q.factor_b <= 99
        _assert_well_formed(q)


def test_zero_product_still_gets_distinct_positive_distractors() -> None:
    gen = QuestionGenerator(seed=2)
    q = gen.generate_question(factor_a=0, factor_b=37)
    assert q.correct_answer == 0
    _assert_well_formed(q)


def test_negative_factor_is_rejected() -> None:
    gen = QuestionGenerator(seed=2)
    with pytest.raises(ValueError):
        gen.generate_question(factor_a=-1, factor_b=3)


def test_unknown_difficulty_and_rule_are_rejected() -> None:
    gen = QuestionGenerator(seed=2)
    with pytest.raises(ValueError):
        gen.generate_question(difficulty="impossible")
    with pytest.raises(ValueError):
        gen.generate_question(rule="times-twelve")


def test_duplicate_avoidance_within_history() -> None:
    gen = QuestionGenerator(seed=9)
    qs = gen.generate_questions(10, difficulty=Difficulty.MEDIUM)
    pairs = {(min(q.factor_a, q.factor_b), max(q.factor_a, q.factor_b)) for q in qs}
    assert len(pairs) == 10
    assert gen.is_duplicate(qs[0].factor_b, qs[0].factor_a)


def test_duplicate_avoidance_gives_up_after_max_attempts() -> None:
    gen = QuestionGenerator(seed=9)
    first = gen.generate_question(factor_a_range=(3, 3), factor_b_range=(4, 4))
    second = gen.generate_question(factor_a_range=(3, 3), factor_b_range=(4, 4), max_attempts=5)
    assert (first.factor_a, first.factor_b) == (second.factor_a, second.factor_b) == (3, 4)
    assert len(gen.history) == 2


def test_history_is_bounded_and_clearable() -> None:
    gen = QuestionGenerator(seed=4, history_limit=5)
    gen.generate_questions(8, avoid_duplicates=False)
    assert len(gen.history) == 5

    gen.clear_history()
    assert gen.history == ()
    assert gen.statistics().total_questions == 0


def test_distractors_for_known_product() -> None:
    gen = QuestionGenerator(seed=21)
    distractors = gen.generate_distractors(24, 6, 4, "normal")

    assert len(distractors) == 3
    assert 24 not in distractors
    assert len(set(distractors)) == 3
    # off-by-one, swapped digits and a factor variation, in that order
    assert distractors[0] in (23, 25)
    assert distractors[1] == 42
    assert distractors[2] in (30, 18, 28, 20)


def test_swap_digits() -> None:
    gen = QuestionGenerator(seed=8)
    for _ in range(20):
        assert gen.swap_digits(123) in (213, 132)
    # No leading zeros and no no-op swaps.
    for _ in range(20):
        assert gen.swap_digits(105) == 150
    for _ in range(20):
        assert gen.swap_digits(110) == 101


def test_swap_digits_falls_back_for_single_digit() -> None:
    gen = QuestionGenerator(seed=8)
    for _ in range(20):
        value = gen.swap_digits(7, Difficulty.EASY)
        assert 0 <= value <= 17


def test_random_close_stays_within_spread() -> None:
    gen = QuestionGenerator(seed=8)
    for _ in range(200):
        v = gen.random_close(100, Difficulty.MEDIUM)
        assert 20 <= v <= 180


def test_validate_question_reports_errors() -> None:
    bad = Question(
        id="",
        factor_a=3,
        factor_b=4,
        correct_answer=13,
        options=(
            Option(13, 1, True),
            Option(13, 2, False),
            Option(-1, 3, False),
        ),
        difficulty=Difficulty.EASY,
        created_at=0.0,
        time_limit_s=60,
    )
    result = validate_question(bad)
    assert result.is_valid is False
    assert "Missing question ID" in result.errors
    assert any("does not equal" in e for e in result.errors)
    assert any("expected 4" in e for e in result.errors)
    assert "Option values must be non-negative" in result.errors
    assert "Option values must be distinct" in result.errors


def test_export_import_preserves_questions() -> None:
    gen = QuestionGenerator(seed=17)
    qs = gen.generate_questions(5, difficulty=Difficulty.EASY)

    text = export_questions(qs)
    assert isinstance(json.loads(text), list)

    back = import_questions(text)
    assert [q.to_dict() for q in back] == [q.to_dict() for q in qs]


@pytest.mark.parametrize("text", ["not json", "{}", "42", '[{"id": "x"}]', "[1, 2]"])
def test_import_of_malformed_input_returns_empty(text: str) -> None:
    assert import_questions(text) == []


def test_import_drops_invalid_entries() -> None:
    gen = QuestionGenerator(seed=17)
    good, tampered = gen.generate_questions(2)
    payload = [good.to_dict(), tampered.to_dict()]
    payload[1]["correctAnswer"] = payload[1]["correctAnswer"] + 1

    back = gen.import_questions(json.dumps(payload))
    assert [q.id for q in back] == [good.id]


def test_statistics_summarise_history() -> None:
    gen = QuestionGenerator(seed=33)
    gen.generate_questions(3, difficulty=Difficulty.EASY)
    gen.generate_questions(2, difficulty=Difficulty.HARD)

    stats = gen.statistics()
    assert stats.total_questions == 5
    assert stats.difficulties == {"easy": 3, "hard": 2}
    assert stats.average_time_limit_s == pytest.approx((3 * 60 + 2 * 30) / 5)
    lo_a, hi_a = stats.factor_a_range
    assert 10 <= lo_a <= hi_a <= 100


def test_option_at_rejects_out_of_range_index() -> None:
    q = QuestionGenerator(seed=1).generate_question()
    with pytest.raises(IndexError):
        q.option_at(4)
