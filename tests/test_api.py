"""Tests for the HTTP surface: sessions, catalog browsing and stats."""

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import delete

from backend.api import session_router
from backend.api.session_router import get_clock_unit
from backend.database import get_session, get_session_factory
from backend.main import app
from backend.models.word import CatalogWord


@pytest_asyncio.fixture
async def client(seeded_factory) -> AsyncGenerator[AsyncClient, None]:
    async def override_session():
        async with seeded_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_session_factory] = lambda: seeded_factory
    # Step time by hand; no background timers during requests
    app.dependency_overrides[get_clock_unit] = lambda: None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    session_router._active_sessions.clear()
    session_router._flash_caches.clear()


async def start(client: AsyncClient, **body) -> dict:
    response = await client.post("/api/session/start", json=body)
    assert response.status_code == 200, response.text
    return response.json()


def correct_option(data: dict) -> str:
    controller = session_router._active_sessions[data["session_id"]]
    word_id = data["current_item"]["word_id"]
    return next(w.japanese for w in controller.snapshot.words if w.id == word_id)


# --- Sessions ---


class TestSessionApi:
    @pytest.mark.asyncio
    async def test_start_quiz(self, client: AsyncClient) -> None:
        data = await start(client, mode="quiz", level="中1", size=10)
        assert data["phase"] == "active"
        assert data["mode"] == "quiz"
        assert data["total_items"] == 4
        assert data["current_index"] == 0
        item = data["current_item"]
        assert len(item["options"]) == 4
        assert item["answer"] is None
        assert data["time_remaining"] == 10

    @pytest.mark.asyncio
    async def test_answer_and_persist(self, client: AsyncClient) -> None:
        data = await start(client, mode="quiz", level="L2", size=10, user_id=1)
        answer = correct_option(data)

        response = await client.post(
            f"/api/session/{data['session_id']}/answer",
            json={"item_index": 0, "response": answer},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["result_log"][0]["is_correct"] is True
        assert body["current_item"]["answer"] == answer

        await session_router._active_sessions[data["session_id"]].drain()
        stats = (await client.get("/api/stats/1")).json()
        assert stats["total_words"] == 1
        assert stats["total_correct"] == 1
        assert stats["accuracy_percent"] == 100
        assert stats["levels"]["L2"]["words"] == 1
        assert stats["recent"][0]["status"] == "mastered"

    @pytest.mark.asyncio
    async def test_stale_answer_is_ignored(self, client: AsyncClient) -> None:
        data = await start(client, mode="quiz", level="L1", size=10)
        sid = data["session_id"]
        await client.post(f"/api/session/{sid}/answer", json={"item_index": 0, "response": "x"})
        await client.post(f"/api/session/{sid}/advance")

        response = await client.post(f"/api/session/{sid}/answer", json={"item_index": 0, "response": "y"})
        body = response.json()
        assert body["current_index"] == 1
        assert len(body["result_log"]) == 1
        assert body["result_log"][0]["user_response"] == "x"

    @pytest.mark.asyncio
    async def test_finish_returns_summary(self, client: AsyncClient) -> None:
        data = await start(client, mode="quiz", level="L2", size=10)
        sid = data["session_id"]
        await client.post(f"/api/session/{sid}/answer", json={"item_index": 0, "response": correct_option(data)})

        body = (await client.post(f"/api/session/{sid}/finish")).json()
        assert body["phase"] == "finished"
        assert body["summary"]["total_items"] == 2
        assert body["summary"]["correct_count"] == 1
        assert body["summary"]["accuracy_percent"] == 50
        assert body["summary"]["outcomes"][1]["resolution"] == "timed_out"

    @pytest.mark.asyncio
    async def test_flashcard_flow(self, client: AsyncClient) -> None:
        data = await start(client, mode="flashcard", level="L1", size=10, user_id=1)
        sid = data["session_id"]
        assert data["current_item"]["options"] == []
        assert data["time_remaining"] == 5

        flipped = (await client.post(f"/api/session/{sid}/flip", json={"item_index": 0})).json()
        assert flipped["current_item"]["flipped"] is True
        assert flipped["current_item"]["answer"] is not None

        learned = (await client.post(f"/api/session/{sid}/learned", json={"item_index": 0})).json()
        assert learned["current_index"] == 1
        assert learned["result_log"][0]["resolution"] == "marked"

        back = (await client.post(f"/api/session/{sid}/navigate", json={"direction": "prev"})).json()
        assert back["current_index"] == 0
        assert back["current_item"]["learned"] is True
        assert back["current_item"]["study_count"] == 1

    @pytest.mark.asyncio
    async def test_wrong_mode_action_conflicts(self, client: AsyncClient) -> None:
        data = await start(client, mode="quiz", level="L1")
        response = await client.post(f"/api/session/{data['session_id']}/flip", json={"item_index": 0})
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_empty_level(self, client: AsyncClient, seeded_factory) -> None:
        async with seeded_factory() as db:
            await db.execute(delete(CatalogWord).where(CatalogWord.level == "L3"))
            await db.commit()
        response = await client.post("/api/session/start", json={"mode": "quiz", "level": "L3"})
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_bad_level(self, client: AsyncClient) -> None:
        response = await client.post("/api/session/start", json={"mode": "quiz", "level": "L9"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_size(self, client: AsyncClient) -> None:
        response = await client.post("/api/session/start", json={"mode": "quiz", "size": 0})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_session(self, client: AsyncClient) -> None:
        response = await client.get("/api/session/nope")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_abandon(self, client: AsyncClient) -> None:
        data = await start(client, mode="quiz", level="L1")
        sid = data["session_id"]
        response = await client.delete(f"/api/session/{sid}")
        assert response.json() == {"status": "abandoned", "answered": 0}
        assert (await client.get(f"/api/session/{sid}")).status_code == 404


# --- Catalog ---


class TestWordsApi:
    @pytest.mark.asyncio
    async def test_list_filters_and_paginates(self, client: AsyncClient) -> None:
        response = await client.get("/api/words", params={"level": "L1", "limit": 3})
        body = response.json()
        assert [w["english"] for w in body["words"]] == ["apple", "book", "cat"]
        assert body["pagination"] == {"page": 1, "limit": 3, "total": 4, "total_pages": 2}

    @pytest.mark.asyncio
    async def test_search_matches_either_language(self, client: AsyncClient) -> None:
        body = (await client.get("/api/words", params={"search": "図書"})).json()
        assert [w["english"] for w in body["words"]] == ["library"]

        body = (await client.get("/api/words", params={"search": "MOUNT"})).json()
        assert [w["english"] for w in body["words"]] == ["mountain"]

    @pytest.mark.asyncio
    async def test_sort_descending(self, client: AsyncClient) -> None:
        body = (await client.get("/api/words", params={"sort": "english", "order": "desc", "limit": 1})).json()
        assert body["words"][0]["english"] == "river"

    @pytest.mark.asyncio
    async def test_random_words(self, client: AsyncClient) -> None:
        body = (await client.get("/api/words/random", params={"level": "中2", "count": 5})).json()
        assert body["total"] == 2
        assert {w["english"] for w in body["words"]} == {"river", "mountain"}

    @pytest.mark.asyncio
    async def test_unknown_level(self, client: AsyncClient) -> None:
        response = await client.get("/api/words", params={"level": "advanced"})
        assert response.status_code == 422


# --- Stats ---


class TestStatsApi:
    @pytest.mark.asyncio
    async def test_no_history(self, client: AsyncClient) -> None:
        body = (await client.get("/api/stats/1")).json()
        assert body["total_words"] == 0
        assert body["accuracy_percent"] == 0
        assert body["levels"] == {}
        assert body["recent"] == []
