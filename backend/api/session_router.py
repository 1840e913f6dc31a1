"""API routes for timed study sessions."""

import contextlib
import dataclasses
import logging
import uuid
from collections.abc import Iterator

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.api.schemas import (
    AnswerRequest,
    ItemRequest,
    NavigateRequest,
    SessionViewResponse,
    StartSessionRequest,
)
from backend.config import settings
from backend.database import get_session_factory
from backend.drill.errors import EmptyPoolError, InvalidTransitionError, PoolUnavailableError
from backend.drill.pool import SqlWordPool
from backend.drill.progress import LocalFlashProgress, ProgressRecorder, SqlProgressSink
from backend.drill.session import SessionController, SessionView
from backend.drill.types import SessionSpec

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/session", tags=["session"])

# In-memory registries; sessions and their timers live in this process
_active_sessions: dict[str, SessionController] = {}
_flash_caches: dict[int, LocalFlashProgress] = {}


def get_clock_unit() -> float | None:
    """Seconds per timer unit. Overridden with None in tests to step time by hand."""
    return settings.timer_unit_seconds


def _flash_cache(user_id: int | None) -> LocalFlashProgress:
    if user_id is None:
        return LocalFlashProgress()
    return _flash_caches.setdefault(user_id, LocalFlashProgress())


def _get_controller(session_id: str) -> SessionController:
    controller = _active_sessions.get(session_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return controller


def _respond(session_id: str, view: SessionView) -> SessionViewResponse:
    return SessionViewResponse.model_validate({"session_id": session_id, **dataclasses.asdict(view)})


@contextlib.contextmanager
def _drill_errors() -> Iterator[None]:
    try:
        yield
    except EmptyPoolError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except PoolUnavailableError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except InvalidTransitionError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


@router.post("/start", response_model=SessionViewResponse)
async def session_start(
    request: StartSessionRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    unit_seconds: float | None = Depends(get_clock_unit),
) -> SessionViewResponse:
    """Configure and start a new session."""
    controller = SessionController(
        SqlWordPool(session_factory),
        ProgressRecorder(SqlProgressSink(session_factory), user_id=request.user_id),
        _flash_cache(request.user_id),
        unit_seconds=unit_seconds,
    )
    with _drill_errors():
        controller.configure(SessionSpec(mode=request.mode, level=request.level, requested_size=request.size))
        view = await controller.start()

    session_id = str(uuid.uuid4())
    _active_sessions[session_id] = controller
    logger.info("Session %s started for user %s", session_id, request.user_id or "guest")
    return _respond(session_id, view)


@router.get("/{session_id}", response_model=SessionViewResponse)
async def session_view(session_id: str) -> SessionViewResponse:
    """Get the current state of a session."""
    return _respond(session_id, _get_controller(session_id).view())


@router.post("/{session_id}/answer", response_model=SessionViewResponse)
async def session_answer(session_id: str, request: AnswerRequest) -> SessionViewResponse:
    """Answer the current quiz question."""
    controller = _get_controller(session_id)
    with _drill_errors():
        view = controller.resolve(request.item_index, request.response)
    return _respond(session_id, view)


@router.post("/{session_id}/flip", response_model=SessionViewResponse)
async def session_flip(session_id: str, request: ItemRequest) -> SessionViewResponse:
    """Flip the current flashcard."""
    controller = _get_controller(session_id)
    with _drill_errors():
        view = controller.flip(request.item_index)
    return _respond(session_id, view)


@router.post("/{session_id}/learned", response_model=SessionViewResponse)
async def session_learned(session_id: str, request: ItemRequest) -> SessionViewResponse:
    """Mark the current flashcard as learned."""
    controller = _get_controller(session_id)
    with _drill_errors():
        view = controller.mark_learned(request.item_index)
    return _respond(session_id, view)


@router.post("/{session_id}/advance", response_model=SessionViewResponse)
async def session_advance(session_id: str) -> SessionViewResponse:
    """Skip to the next item."""
    controller = _get_controller(session_id)
    return _respond(session_id, controller.advance_manually())


@router.post("/{session_id}/navigate", response_model=SessionViewResponse)
async def session_navigate(session_id: str, request: NavigateRequest) -> SessionViewResponse:
    """Move between flashcards."""
    controller = _get_controller(session_id)
    with _drill_errors():
        view = controller.navigate(request.direction)
    return _respond(session_id, view)


@router.post("/{session_id}/finish", response_model=SessionViewResponse)
async def session_finish(session_id: str) -> SessionViewResponse:
    """End the session and return its summary."""
    controller = _get_controller(session_id)
    with _drill_errors():
        view = controller.finish()
    return _respond(session_id, view)


@router.delete("/{session_id}")
async def session_abandon(session_id: str) -> dict:
    """Abandon a session and forget it."""
    controller = _active_sessions.pop(session_id, None)
    if controller is None:
        raise HTTPException(status_code=404, detail="Session not found")
    view = controller.abandon()
    return {"status": view.phase.value, "answered": len(view.result_log)}
