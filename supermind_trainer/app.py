"""Pygame shell for the SuperMind multiplication trainer.

The main menu offers practice, a linear exam, a free-navigation exam,
settings and statistics.  Deterministic generation, timing, scoring and
storage live in the core modules; this layer owns the window, the screen
stack and the frame loop.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import pygame

from .clock import RealClock
from .drill_core import TestMode
from .exam_session import NavigableExamSession
from .persistence import SqliteStore, default_db_path
from .question_generator import QuestionGenerator
from .records import TrainerRecords
from .session import LinearSession

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60

BG = (3, 9, 78)
PANEL_BG = (8, 18, 104)
HEADER_BG = (18, 30, 118)
BORDER = (226, 236, 255)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACTIVE_BG = (244, 248, 255)
ACTIVE_TEXT = (14, 26, 74)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


@dataclass(frozen=True, slots=True)
class MenuItem:
    label: str
    action: Callable[[], None]


_MENU_KEYS: dict[int, str] = {
    pygame.K_UP: "up",
    pygame.K_w: "up",
    pygame.K_DOWN: "down",
    pygame.K_s: "down",
    pygame.K_RETURN: "select",
    pygame.K_KP_ENTER: "select",
    pygame.K_SPACE: "select",
    pygame.K_ESCAPE: "back",
    pygame.K_BACKSPACE: "back",
}
_MENU_HAT: dict[int, str] = {1: "up", -1: "down"}
_MENU_BUTTONS: dict[int, str] = {0: "select", 1: "back"}


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    @property
    def top(self) -> Screen | None:
        return self._screens[-1] if self._screens else None

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        if len(self._screens) > 1:
            self._screens.pop()

    def quit(self) -> None:
        self._running = False

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
        elif self.top is not None:
            self.top.handle_event(event)

    def render(self) -> None:
        if self.top is not None:
            self.top.render(self._surface)


def fit_label(font: pygame.font.Font, label: str, max_width: int) -> str:
    if max_width <= 0:
        return ""
    if font.size(label)[0] <= max_width:
        return label
    clipped = label
    while clipped and font.size(f"{clipped}...")[0] > max_width:
        clipped = clipped[:-1]
    return f"{clipped}..." if clipped else "..."


def draw_frame(
    surface: pygame.Surface,
    *,
    title: str,
    tag: str,
    footer: str,
    title_font: pygame.font.Font,
    hint_font: pygame.font.Font,
) -> pygame.Rect:
    """Draw the shared window chrome and return the content area."""

    w, h = surface.get_size()
    surface.fill(BG)

    margin = max(10, min(26, w // 34))
    frame = pygame.Rect(margin, margin, max(260, w - margin * 2), max(220, h - margin * 2))
    pygame.draw.rect(surface, PANEL_BG, frame)
    pygame.draw.rect(surface, BORDER, frame, 2)

    header_h = max(34, min(52, h // 8))
    header = pygame.Rect(frame.x + 2, frame.y + 2, frame.w - 4, header_h)
    pygame.draw.rect(surface, HEADER_BG, header)
    pygame.draw.line(surface, BORDER, (header.x, header.bottom), (header.right, header.bottom), 1)

    tag_surf = hint_font.render(tag, True, TEXT_MUTED)
    surface.blit(tag_surf, (header.x + 12, header.y + (header.h - tag_surf.get_height()) // 2))
    title_surf = title_font.render(fit_label(title_font, title, header.w - 200), True, TEXT_MAIN)
    surface.blit(title_surf, title_surf.get_rect(center=(frame.centerx, header.centery)))

    foot = hint_font.render(fit_label(hint_font, footer, frame.w - 20), True, TEXT_MUTED)
    surface.blit(foot, foot.get_rect(midbottom=(frame.centerx, frame.bottom - 10)))

    top = header.bottom + max(16, h // 30)
    bottom = frame.bottom - max(44, h // 12)
    return pygame.Rect(frame.x + max(14, w // 44), top, frame.w - max(28, w // 22), max(120, bottom - top))


class MenuScreen:
    def __init__(self, app: App, title: str, items: list[MenuItem], *, is_root: bool = False) -> None:
        self._app = app
        self._title = title
        self._items = items
        self._selected = 0
        self._is_root = is_root
        self._title_font = pygame.font.Font(None, 42)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.KEYDOWN:
            intent = _MENU_KEYS.get(event.key)
        elif event.type == pygame.JOYHATMOTION:
            intent = _MENU_HAT.get(event.value[1])
        elif event.type == pygame.JOYBUTTONDOWN:
            intent = _MENU_BUTTONS.get(event.button)
        else:
            return

        if intent in ("up", "down") and self._items:
            step = -1 if intent == "up" else 1
            self._selected = (self._selected + step) % len(self._items)
        elif intent == "select" and self._items:
            self._items[self._selected].action()
        elif intent == "back":
            if self._is_root:
                self._app.quit()
            else:
                self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        list_rect = draw_frame(
            surface,
            title=self._title,
            tag="MENU",
            footer="Enter/Space: Select  |  Esc/Backspace: Back  |  D-pad + Button0/1",
            title_font=self._title_font,
            hint_font=self._hint_font,
        )
        pygame.draw.rect(surface, (6, 13, 92), list_rect)
        pygame.draw.rect(surface, (78, 102, 170), list_rect, 1)

        item_count = max(1, len(self._items))
        gap = max(4, min(10, list_rect.h // max(10, item_count * 3)))
        row_h = max(30, min(44, (list_rect.h - gap * (item_count + 1)) // item_count))
        total_h = row_h * item_count + gap * (item_count - 1)
        y = list_rect.y + max(8, (list_rect.h - total_h) // 2)

        for idx, item in enumerate(self._items):
            row = pygame.Rect(list_rect.x + 12, y, list_rect.w - 24, row_h)
            selected = idx == self._selected
            pygame.draw.rect(surface, ACTIVE_BG if selected else (9, 20, 106), row)
            pygame.draw.rect(surface, (120, 142, 196) if selected else (62, 84, 152), row, 2 if selected else 1)
            label = fit_label(self._item_font, item.label, row.w - 20)
            text = self._item_font.render(label, True, ACTIVE_TEXT if selected else TEXT_MAIN)
            surface.blit(text, (row.x + 10, row.y + (row.h - text.get_height()) // 2))
            y += row_h + gap


def _init_joysticks() -> None:
    try:
        count = pygame.joystick.get_count()
    except pygame.error:
        return

    for i in range(count):
        try:
            pygame.joystick.Joystick(i).init()
        except pygame.error:
            logger.debug("joystick %d failed to initialise", i)


def _new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def run(
    *,
    max_frames: int | None = None,
    event_injector: Callable[[int], None] | None = None,
    db_path: Path | str | None = None,
) -> int:
    # drill_ui imports App and the helpers above from this module.
    from .drill_ui import DrillScreen, SettingsScreen, StatsScreen

    pygame.init()
    _init_joysticks()

    pygame.display.set_caption("SuperMind Multiplication Trainer")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)

    font = pygame.font.Font(None, 36)
    clock = pygame.time.Clock()

    store = SqliteStore(db_path if db_path is not None else default_db_path())
    records = TrainerRecords(store)
    real_clock = RealClock()
    app = App(surface=surface, font=font)
    logger.info("trainer started; records at %s", store.path)

    def open_drill(session_cls: type[LinearSession] | type[NavigableExamSession], test_mode: TestMode) -> None:
        settings = records.load_settings().with_changes(test_mode=test_mode)
        session = session_cls(QuestionGenerator(seed=_new_seed()), clock=real_clock, records=records)
        app.push(DrillScreen(app, session=session, settings=settings, records=records))

    main_items = [
        MenuItem("Practice", lambda: open_drill(LinearSession, TestMode.PRACTICE)),
        MenuItem("Exam", lambda: open_drill(LinearSession, TestMode.EXAM)),
        MenuItem("Exam (free navigation)", lambda: open_drill(NavigableExamSession, TestMode.EXAM)),
        MenuItem("Settings", lambda: app.push(SettingsScreen(app, records=records))),
        MenuItem("Statistics", lambda: app.push(StatsScreen(app, records=records))),
        MenuItem("Quit", app.quit),
    ]

    app.push(MenuScreen(app, "Main Menu", main_items, is_root=True))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            clock.tick(TARGET_FPS)
    finally:
        store.close()
        pygame.quit()

    return 0
