import json

import httpx
import pytest

from models.chat_requests import FeedbackRequest
from models.exchange_models import Exchange, ExchangeInput, Feedback, TextAnswer
from services.chat.feedback_reporter import FEEDBACK_QUEUE_KEY, FeedbackQueue, FeedbackReporter
from services.chat.session_store import SessionStore
from services.chat.view_events import FEEDBACK_RECORDED

from .conftest import EventRecorder, MemoryStorage, make_backend


class FeedbackEndpoint:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.url.path, json.loads(request.content)))
        return httpx.Response(self.status, json={"ok": self.status < 400})


async def answered_store(server_message_id="m1"):
    store = SessionStore(MemoryStorage(), scope="sushi-ya")
    await store.append(Exchange(id="1", input=ExchangeInput(text="おすすめは？"), language="ja"))
    await store.set_output("1", TextAnswer(intro="天ぷらです"), server_message_id=server_message_id, typing_complete=True)
    return store


def reporter_for(store, endpoint, local_storage):
    backend = make_backend(endpoint)
    recorder = EventRecorder()
    reporter = FeedbackReporter(store, backend, FeedbackQueue(local_storage, backend), recorder)
    return reporter, recorder


@pytest.mark.asyncio
async def test_rating_is_recorded_and_sent():
    store = await answered_store()
    endpoint = FeedbackEndpoint()
    local = MemoryStorage()
    reporter, recorder = reporter_for(store, endpoint, local)

    exchange = await reporter.report("1", positive=True)

    assert exchange.feedback is Feedback.POSITIVE
    assert recorder.of(FEEDBACK_RECORDED) == [{"exchange_id": "1", "feedback": "positive"}]
    assert endpoint.calls == [("/api/public-chat/messages/m1/feedback", {"rating": "good"})]
    assert await local.get(FEEDBACK_QUEUE_KEY) is None


@pytest.mark.asyncio
async def test_failed_delivery_is_queued_and_replayed():
    store = await answered_store()
    endpoint = FeedbackEndpoint(status=503)
    local = MemoryStorage()
    reporter, _ = reporter_for(store, endpoint, local)

    exchange = await reporter.report("1", positive=False)

    assert exchange.feedback is Feedback.NEGATIVE
    queued = await reporter.queue.pending()
    assert len(queued) == 1
    assert queued[0]["message_uid"] == "m1"
    assert queued[0]["rating"] == "bad"
    assert queued[0]["output"]["intro"] == "天ぷらです"

    endpoint.status = 200
    assert await reporter.queue.replay() == 1
    assert await reporter.queue.pending() == []
    assert endpoint.calls[-1] == ("/api/public-chat/messages/m1/feedback", {"rating": "bad"})


@pytest.mark.asyncio
async def test_rating_without_message_id_stays_local():
    store = await answered_store(server_message_id=None)
    endpoint = FeedbackEndpoint()
    local = MemoryStorage()
    reporter, _ = reporter_for(store, endpoint, local)

    await reporter.report("1", positive=True)
    assert await reporter.queue.replay() == 0

    assert endpoint.calls == []
    assert len(await reporter.queue.pending()) == 1


@pytest.mark.asyncio
async def test_unanswered_or_unknown_exchanges_cannot_be_rated():
    store = SessionStore(MemoryStorage())
    await store.append(Exchange(id="1", input=ExchangeInput(text="?"), language="ja"))
    reporter, recorder = reporter_for(store, FeedbackEndpoint(), MemoryStorage())

    assert await reporter.report("1", positive=True) is None
    assert await reporter.report("missing", positive=True) is None
    assert recorder.events == []


@pytest.mark.asyncio
async def test_engine_rejects_rating_unanswered_exchange(engine_factory):
    engine = engine_factory(lambda request: httpx.Response(404))
    with pytest.raises(ValueError):
        await engine.rate(FeedbackRequest(exchange_id="nope", rating="good"))


@pytest.mark.asyncio
async def test_answers_still_typing_cannot_be_rated():
    store = SessionStore(MemoryStorage())
    await store.append(Exchange(id="1", input=ExchangeInput(text="?"), language="ja"))
    await store.set_output("1", TextAnswer(intro="天ぷらです"), server_message_id="m1")
    endpoint = FeedbackEndpoint()
    reporter, recorder = reporter_for(store, endpoint, MemoryStorage())

    assert await reporter.report("1", positive=True) is None
    assert store.get("1").feedback is Feedback.NONE
    assert endpoint.calls == []
    assert recorder.events == []

    await store.patch("1", typing_complete=True)
    assert (await reporter.report("1", positive=True)).feedback is Feedback.POSITIVE


@pytest.mark.asyncio
async def test_engine_rejects_rating_while_typing(engine_factory):
    engine = engine_factory(lambda request: httpx.Response(404))
    await engine.store.append(Exchange(id="1", input=ExchangeInput(text="?"), language="ja"))
    await engine.store.set_output("1", TextAnswer(intro="天ぷらです"))

    with pytest.raises(ValueError):
        await engine.rate(FeedbackRequest(exchange_id="1", rating="bad"))
