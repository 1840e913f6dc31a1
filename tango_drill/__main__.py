"""CLI interface for Tango Drill.

Usage:
    python -m tango_drill quiz --level 1 --count 10     Timed multiple-choice quiz
    python -m tango_drill flash --count 30              Timed flashcards
    python -m tango_drill stats                         Show your statistics
    python -m tango_drill add "apple" "りんご" -l 1      Add a word to the catalog
    python -m tango_drill words                         Count catalog words per level
"""

import argparse
import asyncio
import logging

from sqlalchemy import and_, func, select
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from backend.config import settings
from backend.database import async_session, init_models
from backend.drill.errors import EmptyPoolError, PoolUnavailableError
from backend.drill.pool import SqlWordPool
from backend.drill.progress import LocalFlashProgress, ProgressRecorder, SqlProgressSink
from backend.drill.session import Direction, ItemPhase, SessionController, SessionPhase, SessionView
from backend.drill.types import FLASH_SIZES, QUIZ_SIZES, Level, SessionMode, SessionSpec, accuracy_percent
from backend.models.user import User
from backend.models.user_word import UserWord
from backend.models.word import CatalogWord
from tango_drill.terminal import (
    StdinLines,
    render_card,
    render_feedback,
    render_question,
    render_summary,
)

logger = logging.getLogger(__name__)


async def ensure_db() -> None:
    """Create tables if they don't exist."""
    await init_models()


async def ensure_user() -> int:
    """Ensure there's a default user and return the ID."""
    async with async_session() as db:
        result = await db.execute(select(User).order_by(User.id).limit(1))
        user = result.scalar_one_or_none()
        if user:
            return user.id

        user = User(name="Learner")
        db.add(user)
        await db.commit()
        await db.refresh(user)
        return user.id


@retry(
    retry=retry_if_exception_type(PoolUnavailableError),
    stop=stop_after_attempt(settings.pool_fetch_attempts),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
)
async def start_with_retry(controller: SessionController) -> SessionView:
    """Start the session, retrying while the word pool is unreachable."""
    return await controller.start()


def _parse_level(raw: str) -> Level | None:
    try:
        return Level.parse(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"unknown level: {raw}") from exc


async def _build_controller(args: argparse.Namespace, changed: asyncio.Event) -> SessionController:
    await ensure_db()
    user_id = None if args.guest else await ensure_user()
    recorder = ProgressRecorder(SqlProgressSink(async_session), user_id=user_id)
    return SessionController(
        SqlWordPool(async_session),
        recorder,
        LocalFlashProgress(settings.flash_progress_path),
        unit_seconds=settings.timer_unit_seconds,
        on_change=lambda _view: changed.set(),
    )


async def _drive(controller: SessionController, changed: asyncio.Event, handle_line, render) -> None:
    """Interleave typed lines and controller changes until the session ends."""
    with StdinLines() as lines:
        get_line = asyncio.ensure_future(lines.get())
        try:
            while controller.phase is SessionPhase.ACTIVE:
                render(controller.view())
                changed.clear()
                wait_change = asyncio.ensure_future(changed.wait())
                done, _ = await asyncio.wait({get_line, wait_change}, return_when=asyncio.FIRST_COMPLETED)
                wait_change.cancel()
                if get_line in done:
                    line = get_line.result()
                    if line is None:
                        controller.finish()
                        break
                    handle_line(line.strip())
                    get_line = asyncio.ensure_future(lines.get())
        finally:
            get_line.cancel()


async def cmd_quiz(args: argparse.Namespace) -> None:
    """Run a timed multiple-choice quiz."""
    changed = asyncio.Event()
    controller = await _build_controller(args, changed)
    controller.configure(SessionSpec(mode=SessionMode.QUIZ, level=args.level, requested_size=args.count))

    try:
        view = await start_with_retry(controller)
    except EmptyPoolError:
        print("\n  No words found for that level. Import some with scripts.load_words.\n")
        return
    except PoolUnavailableError:
        print("\n  Could not load words. Please try again later.\n")
        return

    print(f"\n  Quiz: {view.total_items} questions, {settings.quiz_item_units}s each\n")
    shown: dict[str, int | None] = {"question": None, "feedback": None, "time_up": None}

    def render(view: SessionView) -> None:
        item = view.current_item
        if item is None:
            return
        if item.phase is ItemPhase.RESOLVED and shown["feedback"] != item.index:
            shown["feedback"] = item.index
            print(render_feedback(item) + "\n")
        elif item.phase is ItemPhase.PRESENTED and shown["question"] != item.index:
            shown["question"] = item.index
            print(render_question(view))
        elif view.time_up and shown["time_up"] != item.index:
            shown["time_up"] = item.index
            print("  Time's up!")

    def handle_line(line: str) -> None:
        index = shown["question"]
        if index is None:
            return
        if line.lower() == "q":
            print("\n  Session ended early.")
            controller.finish()
            return
        item = controller.view().current_item
        response = line
        if item is not None and line.isdigit() and 1 <= int(line) <= len(item.options):
            response = item.options[int(line) - 1]
        # Tagged with the question on screen; a late line is dropped by the controller
        controller.resolve(index, response)

    await _drive(controller, changed, handle_line, render)
    await controller.drain()
    if controller.summary is not None:
        print(render_summary(controller.summary))


async def cmd_flash(args: argparse.Namespace) -> None:
    """Run timed flashcards."""
    changed = asyncio.Event()
    controller = await _build_controller(args, changed)
    controller.configure(SessionSpec(mode=SessionMode.FLASHCARD, level=args.level, requested_size=args.count))

    try:
        view = await start_with_retry(controller)
    except EmptyPoolError:
        print("\n  No words found for that level. Import some with scripts.load_words.\n")
        return
    except PoolUnavailableError:
        print("\n  Could not load words. Please try again later.\n")
        return

    print(f"\n  Flashcards: {view.total_items} cards, {settings.flash_item_units}s each")
    print("  Enter/f=flip  l=learned  n=next  p=prev  q=finish\n")
    shown: dict[str, object] = {"card": None}

    def render(view: SessionView) -> None:
        item = view.current_item
        if item is None:
            return
        key = (item.index, item.flipped)
        if shown["card"] != key:
            shown["card"] = key
            print(render_card(view))

    def handle_line(line: str) -> None:
        index = controller.view().current_index
        if index is None:
            return
        command = line.lower()
        if command in ("", "f"):
            controller.flip(index)
        elif command == "l":
            controller.mark_learned(index)
        elif command == "n":
            controller.advance_manually()
        elif command == "p":
            controller.navigate(Direction.PREV)
        elif command == "q":
            controller.finish()

    await _drive(controller, changed, handle_line, render)
    await controller.drain()
    if controller.summary is not None:
        print(render_summary(controller.summary, missed_label="not marked"))


async def cmd_stats(args: argparse.Namespace) -> None:
    """Show study statistics."""
    await ensure_db()
    user_id = await ensure_user()

    async with async_session() as db:
        stmt = (
            select(
                CatalogWord.level,
                func.count(UserWord.id),
                func.coalesce(func.sum(UserWord.correct_count), 0),
                func.coalesce(func.sum(UserWord.mistake_count), 0),
            )
            .join(CatalogWord, UserWord.word_id == CatalogWord.id)
            .where(UserWord.user_id == user_id)
            .group_by(CatalogWord.level)
            .order_by(CatalogWord.level)
        )
        rows = (await db.execute(stmt)).all()

        mastered = (
            await db.execute(
                select(func.count(UserWord.id)).where(
                    and_(UserWord.user_id == user_id, UserWord.status == "mastered")
                )
            )
        ).scalar() or 0

    words = sum(r[1] for r in rows)
    correct = sum(r[2] for r in rows)
    mistakes = sum(r[3] for r in rows)

    print("\n  Tango Drill Statistics")
    print(f"  {'Words studied:':<20} {words}")
    print(f"  {'Mastered:':<20} {mastered}")
    print(f"  {'Correct answers:':<20} {correct}")
    print(f"  {'Mistakes:':<20} {mistakes}")
    print(f"  {'Accuracy:':<20} {accuracy_percent(correct, correct + mistakes)}%")
    for level, count, level_correct, level_mistakes in rows:
        level_accuracy = accuracy_percent(level_correct, level_correct + level_mistakes)
        print(f"    {level}: {count} words, {level_accuracy}% accuracy")
    print()


async def cmd_add(args: argparse.Namespace) -> None:
    """Add a word to the catalog."""
    await ensure_db()
    english = args.english.strip().lower()

    async with async_session() as db:
        existing = (
            await db.execute(select(CatalogWord).where(CatalogWord.english == english))
        ).scalar_one_or_none()

        if existing:
            print(f"  '{english}' already exists (id={existing.id}).")
            return

        word = CatalogWord(english=english, japanese=args.japanese.strip(), level=args.level.value)
        db.add(word)
        await db.commit()
        print(f"  Added {english} = {word.japanese} ({word.level})")


async def cmd_words(args: argparse.Namespace) -> None:
    """Show how many catalog words exist per level."""
    await ensure_db()

    async with async_session() as db:
        stmt = (
            select(CatalogWord.level, func.count(CatalogWord.id))
            .group_by(CatalogWord.level)
            .order_by(CatalogWord.level)
        )
        rows = (await db.execute(stmt)).all()

    if not rows:
        print("  The catalog is empty.")
        return
    for level, count in rows:
        print(f"  {level}: {count} words")
    print(f"  total: {sum(count for _, count in rows)} words")


def main() -> None:
    """Entry point for the Tango Drill CLI application."""
    parser = argparse.ArgumentParser(
        prog="tango_drill",
        description="Timed English-Japanese vocabulary drills",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # quiz
    quiz_parser = subparsers.add_parser("quiz", help="Timed multiple-choice quiz")
    quiz_parser.add_argument("-l", "--level", type=_parse_level, default=None, help="1, 2, 3 or all")
    quiz_parser.add_argument(
        "-n", "--count", type=int, choices=QUIZ_SIZES, default=QUIZ_SIZES[0], help="Number of questions"
    )
    quiz_parser.add_argument("--guest", action="store_true", help="Don't save progress")

    # flash
    flash_parser = subparsers.add_parser("flash", help="Timed flashcards")
    flash_parser.add_argument("-l", "--level", type=_parse_level, default=None, help="1, 2, 3 or all")
    flash_parser.add_argument(
        "-n", "--count", type=int, choices=FLASH_SIZES, default=FLASH_SIZES[0], help="Number of cards"
    )
    flash_parser.add_argument("--guest", action="store_true", help="Don't save progress")

    # stats
    subparsers.add_parser("stats", help="Show your statistics")

    # add
    add_parser = subparsers.add_parser("add", help="Add a word to the catalog")
    add_parser.add_argument("english", help="English word")
    add_parser.add_argument("japanese", help="Japanese translation")
    add_parser.add_argument("-l", "--level", type=_parse_level, required=True, help="1, 2 or 3")

    # words
    subparsers.add_parser("words", help="Count catalog words per level")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG)

    if not args.command:
        parser.print_help()
        return

    if args.command == "add" and args.level is None:
        parser.error("add needs a concrete level")

    cmd_map = {
        "quiz": cmd_quiz,
        "flash": cmd_flash,
        "stats": cmd_stats,
        "add": cmd_add,
        "words": cmd_words,
    }

    asyncio.run(cmd_map[args.command](args))


if __name__ == "__main__":
    main()
