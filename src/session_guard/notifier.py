# src/session_guard/notifier.py
"""
User-facing notifications.

The session layer tells the user about failures it cannot hide (timeouts,
server errors, an expired session) and about connectivity changes. During
a failure storm many calls fail the same way at once; identical messages
inside the de-duplication window are shown only once.
"""

import logging
from abc import ABC, abstractmethod
from typing import Dict, Optional

from rich.console import Console
from rich.markup import escape as rich_escape

from .clock import Clock, LoopClock

lib_logger = logging.getLogger("session_guard")

LEVEL_STYLES = {
    "success": ("green", "✓"),
    "error": ("bold red", "✗"),
    "warning": ("yellow", "!"),
    "info": ("cyan", "i"),
}


class Notifier(ABC):
    """Delivers one-shot messages to the user. Subclasses implement _show()."""

    def __init__(self, clock: Optional[Clock] = None, dedupe_seconds: float = 5.0):
        self._clock = clock or LoopClock()
        self._dedupe_seconds = dedupe_seconds
        self._last_shown: Dict[tuple, float] = {}

    def success(self, message: str) -> bool:
        return self._notify("success", message)

    def error(self, message: str) -> bool:
        return self._notify("error", message)

    def warning(self, message: str) -> bool:
        return self._notify("warning", message)

    def info(self, message: str) -> bool:
        return self._notify("info", message)

    def _notify(self, level: str, message: str) -> bool:
        """Show the message unless it was shown within the window. Returns True if shown."""
        now = self._clock.time()
        key = (level, message)
        last = self._last_shown.get(key)
        if last is not None and now - last < self._dedupe_seconds:
            lib_logger.debug(f"Suppressed repeated notification: {message}")
            return False
        self._last_shown[key] = now
        self._show(level, message)
        return True

    @abstractmethod
    def _show(self, level: str, message: str) -> None:
        pass


class ConsoleNotifier(Notifier):
    """Renders notifications to the terminal through rich."""

    def __init__(
        self,
        console: Optional[Console] = None,
        clock: Optional[Clock] = None,
        dedupe_seconds: float = 5.0,
    ):
        super().__init__(clock=clock, dedupe_seconds=dedupe_seconds)
        self.console = console or Console(stderr=True)

    def _show(self, level: str, message: str) -> None:
        style, icon = LEVEL_STYLES.get(level, ("white", "-"))
        self.console.print(f"[{style}]{icon} {rich_escape(message)}[/{style}]")
