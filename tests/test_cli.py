"""Tests for CLI commands and the word loader (non-interactive paths)."""

import argparse

import pytest
from sqlalchemy import select

from backend.drill.session import SessionPhase, SessionSummary, SessionView
from backend.drill.types import Level, Outcome, Resolution, SessionMode
from backend.models.word import CatalogWord
from scripts.load_words import level_counts, load_words, normalize_entry
from tango_drill.__main__ import _parse_level, cmd_add, cmd_words, ensure_db, ensure_user
from tango_drill.terminal import render_card, render_question, render_summary


@pytest.mark.asyncio
async def test_ensure_db() -> None:
    """Database tables can be created."""
    await ensure_db()


@pytest.mark.asyncio
async def test_ensure_user() -> None:
    """Default user is created on first call."""
    await ensure_db()
    user_id = await ensure_user()
    assert user_id >= 1

    # Second call returns same ID
    user_id2 = await ensure_user()
    assert user_id2 == user_id


@pytest.mark.asyncio
async def test_add_and_count_words(capsys: pytest.CaptureFixture[str]) -> None:
    args = argparse.Namespace(english="  Umbrella ", japanese=" 傘 ", level=Level.L2)
    await cmd_add(args)
    assert "Added umbrella = 傘 (L2)" in capsys.readouterr().out

    await cmd_add(args)
    assert "already exists" in capsys.readouterr().out

    await cmd_words(argparse.Namespace())
    assert "L2:" in capsys.readouterr().out


def test_parse_level_argument() -> None:
    assert _parse_level("中3") is Level.L3
    assert _parse_level("all") is None
    with pytest.raises(argparse.ArgumentTypeError):
        _parse_level("hard")


# --- Word loader ---


class TestNormalizeEntry:
    def test_trims_and_lowercases(self) -> None:
        assert normalize_entry({"english": " Apple ", "japanese": " りんご ", "level": "中1"}) == (
            "apple",
            "りんご",
            Level.L1,
        )

    def test_blank_field_is_skipped(self) -> None:
        assert normalize_entry({"english": "apple", "japanese": "", "level": "L1"}) is None
        assert normalize_entry({"english": "apple", "japanese": "りんご"}) is None

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError):
            normalize_entry({"english": "apple", "japanese": "りんご", "level": "中4"})

    def test_any_level_is_not_a_catalog_level(self) -> None:
        with pytest.raises(ValueError):
            normalize_entry({"english": "apple", "japanese": "りんご", "level": "all"})


class TestLoadWords:
    @pytest.mark.asyncio
    async def test_create_update_skip(self, seeded_factory) -> None:
        entries = [
            {"english": "Apple", "japanese": "りんご", "level": "中1"},  # unchanged
            {"english": "book", "japanese": "書籍", "level": "中1"},  # updated
            {"english": "Tree", "japanese": "木", "level": "中2"},  # new
            {"english": "tree", "japanese": "木", "level": "中2"},  # duplicate in file
            {"english": "", "japanese": "空", "level": "中1"},  # blank
            {"english": "cloud", "japanese": "雲", "level": "中9"},  # bad level
        ]
        report = await load_words(entries, seeded_factory)
        assert (report.created, report.updated, report.skipped, report.errors) == (1, 1, 3, 1)

        async with seeded_factory() as db:
            book = (await db.execute(select(CatalogWord).where(CatalogWord.english == "book"))).scalar_one()
            assert book.japanese == "書籍"

        counts = await level_counts(seeded_factory)
        assert counts == {"L1": 4, "L2": 3, "L3": 1}


# --- Terminal rendering ---


class TestRendering:
    def setup_method(self) -> None:
        self.outcomes = (
            Outcome(1, "apple", "りんご", "りんご", True, 2, Resolution.ANSWERED),
            Outcome(2, "book", "猫", "本", False, 4, Resolution.ANSWERED),
            Outcome(3, "cat", None, "猫", False, 10, Resolution.TIMED_OUT),
        )

    def test_summary_lists_every_outcome(self) -> None:
        summary = SessionSummary(total_items=3, correct_count=1, accuracy_percent=33, outcomes=self.outcomes)
        text = render_summary(summary)
        assert "Correct: 1/3  Accuracy: 33%" in text
        assert "(you: 猫)" in text
        assert "(time's up)" in text

    def test_flashcard_summary_label(self) -> None:
        summary = SessionSummary(total_items=1, correct_count=0, accuracy_percent=0, outcomes=self.outcomes[2:])
        assert "(not marked)" in render_summary(summary, missed_label="not marked")

    def test_finished_view_renders_no_item(self) -> None:
        summary = SessionSummary(total_items=3, correct_count=1, accuracy_percent=33, outcomes=self.outcomes)
        view = SessionView(
            phase=SessionPhase.FINISHED,
            mode=SessionMode.QUIZ,
            total_items=3,
            current_index=None,
            current_item=None,
            time_remaining=None,
            time_up=False,
            result_log=self.outcomes,
            summary=summary,
        )
        assert render_question(view) == ""
        assert render_card(view) == ""
