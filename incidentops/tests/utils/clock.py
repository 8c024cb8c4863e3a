from __future__ import annotations

from datetime import datetime, timedelta, timezone


class Clock:
    """Injectable time source; each read advances by `step` so timestamps stay ordered."""

    def __init__(
        self,
        start: datetime | None = None,
        *,
        step: timedelta = timedelta(milliseconds=1),
    ) -> None:
        self._current = start or datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
        self._step = step

    def now(self) -> datetime:
        value = self._current
        self._current = value + self._step
        return value

    def advance(self, delta: timedelta) -> None:
        self._current = self._current + delta
