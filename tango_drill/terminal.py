"""Terminal input and display helpers for timed sessions.

Timed sessions cannot block on ``input()``: the countdown has to keep
running while the learner thinks. ``StdinLines`` feeds typed lines into
the event loop instead, so a line is just another event next to timer
ticks.
"""

from __future__ import annotations

import asyncio
import sys
from types import TracebackType

from backend.drill.session import ItemView, SessionSummary, SessionView
from backend.drill.types import Outcome, Resolution


class StdinLines:
    """Async line reader over stdin (Unix event loops only)."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._loop: asyncio.AbstractEventLoop | None = None

    def __enter__(self) -> StdinLines:
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(sys.stdin.fileno(), self._on_readable)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if self._loop is not None:
            self._loop.remove_reader(sys.stdin.fileno())

    def _on_readable(self) -> None:
        line = sys.stdin.readline()
        if not line:
            # EOF
            if self._loop is not None:
                self._loop.remove_reader(sys.stdin.fileno())
            self._queue.put_nowait(None)
            return
        self._queue.put_nowait(line.rstrip("\n"))

    async def get(self) -> str | None:
        """Next line, or None once stdin is closed."""
        return await self._queue.get()


def render_question(view: SessionView) -> str:
    item = view.current_item
    if item is None:
        return ""
    lines = [f"  [{item.index + 1}/{view.total_items}]  {item.prompt}"]
    for number, option in enumerate(item.options, 1):
        lines.append(f"    {number}. {option}")
    if view.time_remaining is not None:
        lines.append(f"  {view.time_remaining}s to answer (number or text, q to stop)")
    return "\n".join(lines)


def render_card(view: SessionView) -> str:
    item = view.current_item
    if item is None:
        return ""
    header = f"  Card {item.index + 1}/{view.total_items}"
    if item.study_count:
        header += f"  (studied {item.study_count}x)"
    face = item.answer if item.flipped else item.prompt
    label = "Japanese" if item.flipped else "English"
    return f"{header}\n    {label}: {face}"


def render_feedback(item: ItemView) -> str:
    outcome = item.outcome
    if outcome is None:
        return ""
    if outcome.is_correct:
        return "  Correct!"
    if outcome.resolution is Resolution.TIMED_OUT:
        return f"  Time's up! The answer was {outcome.correct_answer}"
    return f"  Wrong. The answer was {outcome.correct_answer}"


def _outcome_line(outcome: Outcome, missed_label: str) -> str:
    mark = "✓" if outcome.is_correct else "✗"
    line = f"  {mark} {outcome.prompt:<20} {outcome.correct_answer}"
    if not outcome.is_correct and outcome.resolution is Resolution.ANSWERED:
        line += f"  (you: {outcome.user_response})"
    elif not outcome.is_correct:
        line += f"  ({missed_label})"
    return line


def render_summary(summary: SessionSummary, missed_label: str = "time's up") -> str:
    lines = [
        "",
        "  Session Complete!",
        f"  Correct: {summary.correct_count}/{summary.total_items}  Accuracy: {summary.accuracy_percent}%",
        "",
    ]
    lines.extend(_outcome_line(o, missed_label) for o in summary.outcomes)
    lines.append("")
    return "\n".join(lines)
