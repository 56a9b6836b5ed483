import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from controllers.chat_controller import ChatEngine
from services.backend.api_client import BackendClient
from services.chat.answer_cache import AnswerCache
from utils.settings import Settings

BASE_URL = "http://backend.test/api"


class MemoryStorage:
    """Dict-backed key-value storage; values go through JSON like the real store."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}

    async def get(self, key: str) -> Optional[Any]:
        raw = self.data.get(key)
        return None if raw is None else json.loads(raw)

    async def put(self, key: str, value: Any) -> None:
        self.data[key] = json.dumps(value, ensure_ascii=False)

    async def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FailingStorage:
    async def get(self, key: str) -> Optional[Any]:
        raise OSError("storage unavailable")

    async def put(self, key: str, value: Any) -> None:
        raise OSError("storage unavailable")

    async def delete(self, key: str) -> None:
        raise OSError("storage unavailable")


class EventRecorder:
    def __init__(self) -> None:
        self.events: List[tuple] = []

    async def __call__(self, event: str, payload: Dict[str, Any]) -> None:
        self.events.append((event, payload))

    def of(self, event: str) -> List[Dict[str, Any]]:
        return [payload for name, payload in self.events if name == event]

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


class SleepRecorder:
    """Stand-in for asyncio.sleep that records delays but yields immediately."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.calls.append(delay)
        await asyncio.sleep(0)


class FakeOCR:
    def __init__(self, text: str = "") -> None:
        self.text = text
        self.calls = 0

    async def extract(self, image_bytes: bytes, language: str) -> str:
        self.calls += 1
        return self.text


def sse(*records: Dict[str, Any]) -> bytes:
    return "".join(f"data: {json.dumps(record, ensure_ascii=False)}\n\n" for record in records).encode("utf-8")


def make_backend(handler: Callable[[httpx.Request], Any]) -> BackendClient:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return BackendClient(client)


async def until(condition: Callable[[], bool], spins: int = 5000) -> None:
    """Yield to the loop until `condition()` holds; fail if it never does."""
    for _ in range(spins):
        if condition():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


@pytest.fixture
def tab_storage():
    return MemoryStorage()


@pytest.fixture
def local_storage():
    return MemoryStorage()


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def engine_factory(tab_storage, local_storage, recorder, sleeper):
    def build(handler, *, scope: Optional[str] = "sushi-ya", answer_cache: Optional[AnswerCache] = None, ocr=None, **settings):
        return ChatEngine(
            tab_storage=tab_storage,
            local_storage=local_storage,
            backend=make_backend(handler),
            emit=recorder,
            scope=scope,
            settings=Settings(**settings),
            answer_cache=answer_cache,
            ocr=ocr or FakeOCR(),
            sleep=sleeper,
        )

    return build
