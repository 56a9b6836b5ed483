import httpx
import pytest
from fastapi.testclient import TestClient

from main import create_app
from utils.settings import Settings

from .conftest import make_backend, sse

RECORDS = (
    {"type": "start", "thread_uid": "t1"},
    {"type": "content", "content": "今日のおすすめは"},
    {"type": "content", "content": "天ぷらです"},
    {"type": "done", "message_uid": "m1"},
)


def backend_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/api/public-chat/sushi-ya/stream":
        return httpx.Response(200, content=sse(*RECORDS))
    if request.url.path == "/api/public-chat/messages/m1/feedback":
        return httpx.Response(200, json={"ok": True})
    return httpx.Response(404)


@pytest.fixture
def client(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_DIR", str(tmp_path))
    monkeypatch.delenv("PRECOMPUTED_ANSWERS_PATH", raising=False)
    app = create_app()
    with TestClient(app) as test_client:
        app.state.backend = make_backend(backend_handler)
        app.state.settings = Settings(typing_delay_ms=0)
        yield test_client


def receive_until(ws, event_type):
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["type"] == event_type:
            return frames


def test_health(client):
    body = client.get("/health").json()
    assert body["ok"] is True
    assert body["db_initialized"] is True


def test_conversation_over_websocket(client):
    with client.websocket_connect("/ws/chat/sushi-ya?tab_id=tab-1") as ws:
        ws.send_json({"type": "session.restore", "store_name": "寿司屋"})
        restored = ws.receive_json()
        assert restored["type"] == "session.restored"
        assert restored["exchanges"] == []

        ws.send_json({"type": "chat.submit", "text": "おすすめは？", "language": "ja"})
        frames = receive_until(ws, "typing.complete")
        types = [frame["type"] for frame in frames]
        assert types[0] == "exchange.appended"
        assert "stream.delta" in types
        assert "thread.adopted" in types
        updated = [frame for frame in frames if frame["type"] == "exchange.updated"][-1]
        assert updated["exchange"]["output"]["intro"] == "今日のおすすめは天ぷらです"
        exchange_id = updated["exchange"]["id"]

        ws.send_json({"type": "chat.feedback", "exchange_id": exchange_id, "rating": "good"})
        recorded = receive_until(ws, "feedback.recorded")[-1]
        assert recorded == {"type": "feedback.recorded", "exchange_id": exchange_id, "feedback": "positive"}

        ws.send_json({"type": "no.such.event", "request_id": 7})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["request_id"] == 7

    # A reload of the same tab restores the answered exchange.
    with client.websocket_connect("/ws/chat/sushi-ya?tab_id=tab-1") as ws:
        ws.send_json({"type": "session.restore"})
        restored = ws.receive_json()
        assert restored["thread_uid"] == "t1"
        assert [exchange["typing_complete"] for exchange in restored["exchanges"]] == [True]
        assert restored["exchanges"][0]["feedback"] == "positive"

    # Another tab starts empty.
    with client.websocket_connect("/ws/chat/sushi-ya?tab_id=tab-2") as ws:
        ws.send_json({"type": "session.restore"})
        assert ws.receive_json()["exchanges"] == []

    threads = client.get("/api/chat/sushi-ya/threads").json()["threads"]
    assert [thread["thread_uid"] for thread in threads] == ["t1"]
    stores = client.get("/api/chat/visited").json()["stores"]
    assert [(store["slug"], store["name"], store["thread_count"]) for store in stores] == [("sushi-ya", "寿司屋", 1)]
    assert client.post("/api/chat/feedback/replay").json() == {"delivered": 0, "pending": 0}


def test_missing_tab_id_is_rejected(client):
    with client.websocket_connect("/ws/chat/default") as ws:
        frame = ws.receive_json()
        assert frame["type"] == "error"
