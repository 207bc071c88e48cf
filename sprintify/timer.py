"""Stopwatch for task time tracking and a pomodoro cycle."""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable


class TimeTracker:
    """Accumulates running time across pause/resume.

    ``clock`` returns seconds; the default is monotonic so wall-clock changes
    do not count.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._accumulated = 0.0
        self._started_at = None

    @property
    def is_running(self) -> bool:
        return self._started_at is not None

    @property
    def elapsed(self) -> int:
        total = self._accumulated
        if self._started_at is not None:
            total += self.clock() - self._started_at
        return int(total)

    @property
    def minutes(self) -> int:
        return self.elapsed // 60

    def start(self):
        if self._started_at is None:
            self._started_at = self.clock()

    resume = start

    def pause(self):
        if self._started_at is not None:
            self._accumulated += self.clock() - self._started_at
            self._started_at = None

    def stop(self) -> int:
        """Pause and return the whole minutes tracked, for ``actualTime``."""
        self.pause()
        return self.minutes

    def reset(self):
        self._accumulated = 0.0
        self._started_at = None

    def add_time(self, seconds: float):
        if seconds < 0:
            raise ValueError("Cannot add negative time")
        self._accumulated += seconds


@dataclass(frozen=True)
class PomodoroSettings:
    work_minutes: int = 25
    short_break_minutes: int = 5
    long_break_minutes: int = 15
    sessions_until_long_break: int = 4


POMODORO_SETTINGS = PomodoroSettings()

WORK = "work"
SHORT_BREAK = "short_break"
LONG_BREAK = "long_break"


class PomodoroCycle:
    def __init__(self, settings: PomodoroSettings = POMODORO_SETTINGS):
        self.settings = settings
        self.phase = WORK
        self.completed_sessions = 0

    @property
    def phase_seconds(self) -> int:
        minutes = {
            WORK: self.settings.work_minutes,
            SHORT_BREAK: self.settings.short_break_minutes,
            LONG_BREAK: self.settings.long_break_minutes,
        }[self.phase]
        return minutes * 60

    def next_phase(self) -> str:
        if self.phase == WORK:
            self.completed_sessions += 1
            if self.completed_sessions % self.settings.sessions_until_long_break == 0:
                self.phase = LONG_BREAK
            else:
                self.phase = SHORT_BREAK
        else:
            self.phase = WORK
        return self.phase
