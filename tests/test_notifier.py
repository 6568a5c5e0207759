"""User notifications and their de-duplication window."""

from io import StringIO

import pytest
from rich.console import Console

from session_guard import ConsoleNotifier
from tests.fixtures.session_doubles import RecordingNotifier


@pytest.mark.asyncio
async def test_identical_messages_inside_window_are_shown_once(clock):
    notifier = RecordingNotifier(clock=clock, dedupe_seconds=5)

    assert notifier.error("Server error. Please try again later.") is True
    assert notifier.error("Server error. Please try again later.") is False
    assert notifier.warning("Server error. Please try again later.") is True

    await clock.advance(5)
    assert notifier.error("Server error. Please try again later.") is True
    assert len(notifier.messages("error")) == 2


def test_console_notifier_renders_through_rich(clock):
    buffer = StringIO()
    notifier = ConsoleNotifier(console=Console(file=buffer, width=120), clock=clock)

    notifier.success("Session extended successfully")
    notifier.error("Request [queue] cleared")

    output = buffer.getvalue()
    assert "✓ Session extended successfully" in output
    # Markup-like text is printed literally
    assert "Request [queue] cleared" in output
