"""Pygame screens for drills, settings and statistics.

``DrillScreen`` is the ``SessionView`` for a running session.  It turns key
presses into session intents and draws whatever the session last pushed to
it plus a per-frame snapshot.  No scoring or timing happens here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from functools import partial

import pygame

from .app import ACTIVE_BG, ACTIVE_TEXT, TEXT_MAIN, TEXT_MUTED, App, draw_frame, fit_label
from .drill_core import Difficulty, TestMode, TimerMode, format_mmss
from .exam_session import NavigableExamSession
from .persistence import PersistenceError
from .question_generator import MultiplicationRule, Question
from .records import TrainerRecords
from .results import TestResult
from .session import LinearSession, SessionState
from .settings import (
    QUESTION_COUNT_CHOICES,
    TIMER_DURATION_CHOICES,
    SessionSettings,
    SettingsError,
    cycle_choice,
)

logger = logging.getLogger(__name__)

DrillSession = LinearSession | NavigableExamSession

GOOD = (120, 220, 140)
BAD = (240, 120, 120)
WARN = (250, 210, 110)

_CHOICE_KEYS = {
    pygame.K_1: 0,
    pygame.K_2: 1,
    pygame.K_3: 2,
    pygame.K_4: 3,
    pygame.K_KP1: 0,
    pygame.K_KP2: 1,
    pygame.K_KP3: 2,
    pygame.K_KP4: 3,
}

_RULE_LABELS = {
    None: "Random rule per question",
    MultiplicationRule.TIMES_ELEVEN: "Times eleven",
    MultiplicationRule.DIGIT_ONE: "Digit one in tens/ones",
    MultiplicationRule.FULLY_RANDOM: "Fully random in range",
}


class DrillScreen:
    def __init__(
        self,
        app: App,
        *,
        session: DrillSession,
        settings: SessionSettings,
        records: TrainerRecords | None = None,
    ) -> None:
        self._app = app
        self._session = session
        self._records = records
        self._player_name = settings.player_name

        self._title_font = pygame.font.Font(None, 36)
        self._prompt_font = pygame.font.Font(None, 96)
        self._option_font = pygame.font.Font(None, 40)
        self._small_font = pygame.font.Font(None, 26)
        self._hint_font = pygame.font.Font(None, 22)

        self._question: Question | None = None
        self._number = 0
        self._total = 0
        self._progress_index = 0
        self._remaining_s: int | None = None
        self._result: TestResult | None = None
        self._bindings: dict[int, Callable[[], object]] = {}
        self._status = ""
        self._on_leaderboard = False

        session.set_view(self)
        session.start(settings)

    @property
    def session(self) -> DrillSession:
        return self._session

    @property
    def result(self) -> TestResult | None:
        return self._result

    # -- SessionView --------------------------------------------------------
    def update_question(self, question: Question, number: int, total: int) -> None:
        self._question = question
        self._number = number
        self._total = total
        self._status = ""
        self._bindings = self._build_bindings()

    def update_progress(self, index: int, total: int) -> None:
        self._progress_index = index
        self._total = total

    def update_timer(self, remaining_s: int) -> None:
        self._remaining_s = remaining_s

    def update_results(self, result: TestResult) -> None:
        self._result = result
        self._bindings = {}

    # -- Input --------------------------------------------------------------
    def _build_bindings(self) -> dict[int, Callable[[], object]]:
        session = self._session
        bindings: dict[int, Callable[[], object]] = {key: partial(session.select, i) for key, i in _CHOICE_KEYS.items()}
        for key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_RIGHT):
            bindings[key] = session.advance
        if isinstance(session, NavigableExamSession):
            bindings[pygame.K_LEFT] = session.previous
        if session.settings.test_mode is TestMode.EXAM:
            bindings[pygame.K_s] = session.skip
        bindings[pygame.K_e] = session.end
        return bindings

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return

        if self._result is not None:
            if event.key == pygame.K_l:
                self._add_to_leaderboard()
            elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE, pygame.K_RETURN, pygame.K_KP_ENTER):
                self._app.pop()
            return

        if self._session.state is not SessionState.RUNNING:
            if event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
                self._session.cleanup()
                self._app.pop()
            return

        action = self._bindings.get(event.key)
        if action is not None:
            action()

    def _add_to_leaderboard(self) -> None:
        if self._records is None or self._result is None or self._on_leaderboard:
            return
        try:
            self._records.add_to_leaderboard(
                self._player_name,
                self._result.score_percentage,
                self._result.total_time_s,
            )
        except PersistenceError:
            logger.exception("failed to add leaderboard entry")
            self._status = "Could not save to leaderboard."
            return
        self._on_leaderboard = True
        self._status = f"Added {self._player_name} to the leaderboard."

    # -- Rendering ----------------------------------------------------------
    def render(self, surface: pygame.Surface) -> None:
        self._session.update()
        if self._result is not None:
            self._render_results(surface, self._result)
        else:
            self._render_question(surface)

    def _render_question(self, surface: pygame.Surface) -> None:
        snap = self._session.snapshot()
        mode = "EXAM" if snap.test_mode is TestMode.EXAM else "PRACTICE"
        footer_parts = ["1-4: Choose", "Enter/Right: Next"]
        if snap.can_go_back or isinstance(self._session, NavigableExamSession):
            footer_parts.append("Left: Previous")
        if snap.test_mode is TestMode.EXAM:
            footer_parts.append("S: Skip")
        footer_parts.append("E: End")

        area = draw_frame(
            surface,
            title=f"Question {self._number}/{self._total}",
            tag=mode,
            footer="  |  ".join(footer_parts),
            title_font=self._title_font,
            hint_font=self._hint_font,
        )

        if snap.timer_mode is not TimerMode.OFF and snap.time_remaining_s is not None:
            color = BAD if snap.time_remaining_s <= 5 else TEXT_MAIN
            label = "Total" if snap.timer_mode is TimerMode.TOTAL_TIME else "Time"
            timer = self._small_font.render(f"{label} {format_mmss(snap.time_remaining_s)}", True, color)
            surface.blit(timer, timer.get_rect(topright=(area.right, area.y)))

        progress = self._small_font.render(f"Answered {snap.answered}/{snap.total}", True, TEXT_MUTED)
        surface.blit(progress, (area.x, area.y))

        question = self._question
        if question is None:
            return

        prompt = self._prompt_font.render(question.prompt, True, TEXT_MAIN)
        surface.blit(prompt, prompt.get_rect(center=(area.centerx, area.y + area.h // 4)))

        row_w = min(520, area.w - 40)
        row_h = 44
        y = area.y + area.h // 2 - 10
        for i, option in enumerate(question.options):
            row = pygame.Rect(area.centerx - row_w // 2, y, row_w, row_h)
            selected = snap.selected_index == i
            fill = ACTIVE_BG if selected else (9, 20, 106)
            outline = (62, 84, 152)
            if snap.feedback is not None:
                if option.value == snap.feedback.correct_answer:
                    outline = GOOD
                elif selected:
                    outline = BAD
            pygame.draw.rect(surface, fill, row)
            pygame.draw.rect(surface, outline, row, 2)
            text = self._option_font.render(f"{i + 1})  {option.value}", True, ACTIVE_TEXT if selected else TEXT_MAIN)
            surface.blit(text, (row.x + 14, row.y + (row.h - text.get_height()) // 2))
            y += row_h + 8

        status = self._status
        color = TEXT_MUTED
        if snap.feedback is not None:
            status = "Correct!" if snap.feedback.is_correct else f"Incorrect {snap.feedback.explanation}"
            color = GOOD if snap.feedback.is_correct else BAD
        elif snap.locked:
            status = "Time's up. This question is locked."
            color = WARN
        if status:
            line = self._small_font.render(fit_label(self._small_font, status, area.w), True, color)
            surface.blit(line, line.get_rect(midbottom=(area.centerx, area.bottom)))

    def _render_results(self, surface: pygame.Surface, result: TestResult) -> None:
        footer = "Enter/Esc: Back to menu"
        if self._records is not None and not self._on_leaderboard:
            footer = "L: Add to leaderboard  |  " + footer
        area = draw_frame(
            surface,
            title="Results",
            tag=result.test_mode.value.upper(),
            footer=footer,
            title_font=self._title_font,
            hint_font=self._hint_font,
        )

        score = self._prompt_font.render(f"{result.score_percentage}%", True, TEXT_MAIN)
        surface.blit(score, score.get_rect(midtop=(area.centerx, area.y)))

        lines = [
            f"Correct: {result.correct_count}/{result.total_questions}",
            f"Incorrect: {result.incorrect_count}",
        ]
        if result.test_mode is TestMode.EXAM:
            lines.append(f"Skipped: {result.skipped_count}")
        lines += [
            f"Total time: {format_mmss(result.total_time_s)}",
            f"Average response: {result.average_response_time_s:.1f}s",
            f"Difficulty: {result.difficulty.value}",
        ]
        y = area.y + score.get_height() + 16
        for text in lines:
            surf = self._small_font.render(text, True, TEXT_MAIN)
            surface.blit(surf, surf.get_rect(midtop=(area.centerx, y)))
            y += surf.get_height() + 6

        if self._status:
            surf = self._small_font.render(self._status, True, GOOD if self._on_leaderboard else BAD)
            surface.blit(surf, surf.get_rect(midbottom=(area.centerx, area.bottom)))


class SettingsScreen:
    """Edit and save the persisted session settings.

    Up/Down pick a row, Left/Right change it, Enter saves, Esc discards.
    """

    _ROWS = ("Questions", "Timer", "Timer duration", "Difficulty", "Rule", "Allow skip", "Auto advance")

    def __init__(self, app: App, *, records: TrainerRecords) -> None:
        self._app = app
        self._records = records
        self._settings = records.load_settings()
        self._selected = 0
        self._status = ""
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 30)
        self._hint_font = pygame.font.Font(None, 22)

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_UP, pygame.K_w):
            self._selected = (self._selected - 1) % len(self._ROWS)
        elif event.key in (pygame.K_DOWN, pygame.K_s):
            self._selected = (self._selected + 1) % len(self._ROWS)
        elif event.key in (pygame.K_LEFT, pygame.K_a):
            self._change(-1)
        elif event.key in (pygame.K_RIGHT, pygame.K_d, pygame.K_SPACE):
            self._change(1)
        elif event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            self._save()
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()

    def _change(self, delta: int) -> None:
        s = self._settings
        row = self._ROWS[self._selected]
        if row == "Questions":
            s = s.with_changes(question_count=cycle_choice(QUESTION_COUNT_CHOICES, s.question_count, delta))
        elif row == "Timer":
            s = s.with_changes(timer_mode=_cycle_enum(list(TimerMode), s.timer_mode, delta))
        elif row == "Timer duration":
            s = s.with_changes(timer_duration_s=cycle_choice(TIMER_DURATION_CHOICES, s.timer_duration_s, delta))
        elif row == "Difficulty":
            s = s.with_changes(difficulty=_cycle_enum(list(Difficulty), s.difficulty, delta))
        elif row == "Rule":
            s = s.with_changes(rule=_cycle_enum([None, *MultiplicationRule], s.rule, delta))
        elif row == "Allow skip":
            s = s.with_changes(allow_skip=not s.allow_skip)
        elif row == "Auto advance":
            s = s.with_changes(auto_advance=not s.auto_advance)
        self._settings = s
        self._status = ""

    def _save(self) -> None:
        try:
            self._records.save_settings(self._settings)
        except SettingsError as exc:
            self._status = f"Invalid settings: {exc}"
            return
        except PersistenceError:
            logger.exception("failed to save settings")
            self._status = "Could not save settings."
            return
        self._app.pop()

    def _value_label(self, row: str) -> str:
        s = self._settings
        if row == "Questions":
            return str(s.question_count)
        if row == "Timer":
            return {TimerMode.OFF: "Off", TimerMode.PER_QUESTION: "Per question", TimerMode.TOTAL_TIME: "Total time"}[
                s.timer_mode
            ]
        if row == "Timer duration":
            return f"{s.timer_duration_s}s"
        if row == "Difficulty":
            return s.difficulty.value.capitalize()
        if row == "Rule":
            return _RULE_LABELS[s.rule]
        if row == "Allow skip":
            return "Yes" if s.allow_skip else "No"
        return "Yes" if s.auto_advance else "No"

    def render(self, surface: pygame.Surface) -> None:
        area = draw_frame(
            surface,
            title="Settings",
            tag="SETUP",
            footer="Up/Down: Row  |  Left/Right: Change  |  Enter: Save  |  Esc: Cancel",
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        row_h = 40
        y = area.y + 8
        for i, row_name in enumerate(self._ROWS):
            row = pygame.Rect(area.x + 12, y, area.w - 24, row_h)
            selected = i == self._selected
            pygame.draw.rect(surface, ACTIVE_BG if selected else (9, 20, 106), row)
            color = ACTIVE_TEXT if selected else TEXT_MAIN
            name = self._item_font.render(row_name, True, color)
            value = self._item_font.render(self._value_label(row_name), True, color)
            surface.blit(name, (row.x + 10, row.y + (row.h - name.get_height()) // 2))
            surface.blit(value, value.get_rect(midright=(row.right - 10, row.centery)))
            y += row_h + 6

        if self._status:
            line = self._hint_font.render(fit_label(self._hint_font, self._status, area.w), True, BAD)
            surface.blit(line, line.get_rect(midbottom=(area.centerx, area.bottom)))


class StatsScreen:
    """Lifetime statistics, recent results and the leaderboard."""

    def __init__(self, app: App, *, records: TrainerRecords, rows: int = 5) -> None:
        self._app = app
        self._records = records
        self._rows = rows
        self._title_font = pygame.font.Font(None, 42)
        self._text_font = pygame.font.Font(None, 26)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN and event.key in (
            pygame.K_ESCAPE,
            pygame.K_BACKSPACE,
            pygame.K_RETURN,
            pygame.K_KP_ENTER,
        ):
            self._app.pop()

    def lines(self) -> tuple[list[str], list[str], list[str]]:
        stats = self._records.stats()
        overview = [
            f"Sessions: {stats.total_tests}",
            f"Questions: {stats.total_questions}",
            f"Correct: {stats.correct_answers}",
            f"Best score: {stats.best_score}%",
            f"Average score: {stats.average_score}%",
            f"Total time: {format_mmss(stats.total_time_s)}",
        ]
        recent = [
            f"{h.get('type', '?')}: {h.get('scorePercentage', 0)}% ({h.get('difficulty', '?')})"
            for h in self._records.history()[: self._rows]
        ]
        board = [
            f"{i + 1}. {e.name}  {e.score}%  {format_mmss(e.time_s)}"
            for i, e in enumerate(self._records.leaderboard()[: self._rows])
        ]
        return overview, recent, board

    def render(self, surface: pygame.Surface) -> None:
        area = draw_frame(
            surface,
            title="Statistics",
            tag="STATS",
            footer="Esc/Enter: Back",
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        overview, recent, board = self.lines()
        col_w = area.w // 3
        columns = (
            ("Overview", overview),
            ("Recent", recent or ["No sessions yet."]),
            ("Leaderboard", board or ["No entries yet."]),
        )
        for c, (heading, items) in enumerate(columns):
            x = area.x + c * col_w + 8
            y = area.y
            head = self._text_font.render(heading, True, TEXT_MUTED)
            surface.blit(head, (x, y))
            y += head.get_height() + 10
            for text in items:
                surf = self._text_font.render(fit_label(self._text_font, text, col_w - 16), True, TEXT_MAIN)
                surface.blit(surf, (x, y))
                y += surf.get_height() + 6


def _cycle_enum(options: list, current: object, delta: int):
    idx = options.index(current) if current in options else 0
    return options[(idx + delta) % len(options)]
