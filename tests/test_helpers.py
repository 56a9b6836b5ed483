import base64
import io
import json

import pytest
from PIL import Image

from models.exchange_models import CachedAnswer, Exchange, ExchangeInput, ExchangeOutput, VisionAnswer
from models.vision_models import VisionItem
from services.backend.api_client import chat_payload, parse_chat_reply, parse_vision_items
from services.chat.answer_cache import AnswerCache, CachedReply
from services.chat.thread_history import MAX_CONVERSATION_LOG, ThreadEntry, ThreadHistory
from services.menu_ocr import tesseract_language
from services.thumbnail_generator import ThumbnailGenerator
from utils.media_validation import decode_base64_image, validate_image_type
from utils.settings import load_settings

from .conftest import MemoryStorage


class TestBackendPayloads:
    def test_chat_payload_marks_store_scoped_requests(self):
        assert chat_payload("hi", None, None, "en") == {"message": "hi", "in_store": False, "thread_uid": None, "language": "en"}
        assert chat_payload("hi", "sushi-ya", "t1", "ja")["in_store"] is True

    def test_parse_chat_reply_variants(self):
        assert parse_chat_reply({"response": "a", "message_uid": "m", "thread_uid": "t"}).message_uid == "m"
        assert parse_chat_reply({"result": {"content": "b"}}).text == "b"
        assert parse_chat_reply({"response": "", "message": "c"}).text == "c"
        with pytest.raises(ValueError):
            parse_chat_reply({"response": ""})
        with pytest.raises(ValueError):
            parse_chat_reply(["not", "an", "object"])

    def test_parse_vision_items_variants(self):
        item = {"name_jp": "天ぷら", "allergens": None}
        assert len(parse_vision_items([item])) == 1
        assert parse_vision_items({"items": [item]})[0].allergens == []
        assert parse_vision_items({"result": {"items": [item, item]}})[1].name_jp == "天ぷら"
        with pytest.raises(ValueError):
            parse_vision_items({"error": "nope"})


class TestModels:
    def test_exchange_round_trips_through_storage_form(self):
        exchange = Exchange(
            id="1",
            input=ExchangeInput(text="", attachment_label="photo", image_preview_ref="data:image/jpeg;base64,xx"),
            language="ja",
            output=VisionAnswer(title="t", intro="i", items=[VisionItem(name_jp="寿司", price=1200)]),
            server_message_id="m1",
        )
        restored = Exchange.from_dict(json.loads(json.dumps(exchange.to_dict())))

        assert restored.vision_items[0].display_price() == "1200円"
        assert restored.input.image_preview_ref is None
        assert restored.server_message_id == "m1"

    def test_vision_answers_refuse_body_lines(self):
        with pytest.raises(ValueError):
            VisionAnswer(body_lines=["x"])

    def test_output_kinds(self):
        assert isinstance(ExchangeOutput.from_dict({"kind": "cached", "intro": "x"}), CachedAnswer)
        with pytest.raises(ValueError):
            ExchangeOutput.from_dict({"kind": "audio"})

    def test_display_name(self):
        assert VisionItem(name_jp="寿司", name_en="Sushi").display_name() == "寿司 (Sushi)"


class TestThreadHistory:
    @pytest.mark.asyncio
    async def test_threads_update_in_place_or_insert_first(self):
        history = ThreadHistory(MemoryStorage())
        await history.save_thread("s", ThreadEntry("t1", "first", "", "2026-01-01"))
        await history.save_thread("s", ThreadEntry("t2", "second", "", "2026-01-02"))
        await history.save_thread("s", ThreadEntry("t1", "first again", "", "2026-01-03"))

        threads = await history.list_threads("s")
        assert [(entry.thread_uid, entry.title) for entry in threads] == [("t2", "second"), ("t1", "first again")]

    @pytest.mark.asyncio
    async def test_visits_and_thread_counts(self):
        history = ThreadHistory(MemoryStorage())
        await history.increment_thread_count("sushi-ya")
        await history.record_visit("sushi-ya", "寿司屋")
        await history.record_visit("sushi-ya")
        await history.increment_thread_count("sushi-ya")

        visited = await history.list_visited()
        assert [(store.slug, store.name, store.thread_count) for store in visited] == [("sushi-ya", "寿司屋", 1)]

    @pytest.mark.asyncio
    async def test_conversation_log_is_bounded(self):
        storage = MemoryStorage()
        history = ThreadHistory(storage)
        exchange = Exchange(id="1", input=ExchangeInput(text="q"), language="ja", output=CachedAnswer(intro="a"))
        await storage.put("conversation_log", [{"n": index} for index in range(MAX_CONVERSATION_LOG)])

        await history.log_conversation(exchange)

        log = await storage.get("conversation_log")
        assert len(log) == MAX_CONVERSATION_LOG
        assert log[-1]["output"]["intro"] == "a"


class TestAnswerCache:
    def test_scope_specific_answers_win(self):
        cache = AnswerCache()
        cache.add("おすすめは？", CachedReply("global"))
        cache.add("おすすめは？", CachedReply("sushi"), scope="sushi-ya")

        assert cache.lookup("おすすめは？", "sushi-ya").text == "sushi"
        assert cache.lookup("おすすめは？", "ramen-ya").text == "global"
        assert cache.lookup("other", "sushi-ya") is None

    @pytest.mark.asyncio
    async def test_load_from_file(self, tmp_path):
        path = tmp_path / "answers.json"
        path.write_text(
            json.dumps(
                [
                    {"text": "営業時間は？", "answer": "11時からです", "message_uid": "m1"},
                    {"text": "missing answer"},
                    {"text": "辛い？", "answer": "少し辛いです", "scope": "ramen-ya"},
                ],
                ensure_ascii=False,
            ),
            encoding="utf-8",
        )
        cache = await AnswerCache.load(str(path))

        assert len(cache) == 2
        assert cache.lookup("営業時間は？").message_uid == "m1"
        assert cache.lookup("辛い？", "ramen-ya").text == "少し辛いです"

    @pytest.mark.asyncio
    async def test_missing_file_gives_empty_cache(self, tmp_path):
        assert len(await AnswerCache.load(str(tmp_path / "nope.json"))) == 0
        assert len(await AnswerCache.load(None)) == 0


class TestImages:
    def test_image_type_validation(self):
        assert validate_image_type("menu.jpg", None) == "image/jpeg"
        assert validate_image_type(None, "image/JPG") == "image/jpeg"
        assert validate_image_type("menu.heic", None) == "image/heic"
        with pytest.raises(ValueError):
            validate_image_type("menu.pdf", None)
        with pytest.raises(ValueError):
            validate_image_type("menu.jpg", "application/pdf")

    def test_base64_and_data_urls(self):
        assert decode_base64_image("data:image/png;base64," + base64.b64encode(b"abc").decode()) == b"abc"
        with pytest.raises(ValueError):
            decode_base64_image("")
        with pytest.raises(ValueError):
            decode_base64_image("***")

    def test_preview_fits_bounds(self):
        buffer = io.BytesIO()
        Image.new("RGBA", (1200, 600), (10, 20, 30, 128)).save(buffer, format="PNG")

        preview = ThumbnailGenerator(max_size=(320, 320)).create_preview(buffer.getvalue())

        with Image.open(io.BytesIO(preview)) as image:
            assert image.format == "JPEG"
            assert image.size == (320, 160)

    def test_preview_rejects_non_images(self):
        with pytest.raises(ValueError):
            ThumbnailGenerator().create_preview(b"not an image")

    def test_tesseract_language_mapping(self):
        assert tesseract_language("ja") == "jpn"
        assert tesseract_language("ko-KR") == "kor"
        assert tesseract_language("zh-TW") == "chi_tra"
        assert tesseract_language("en") == "eng"
        assert tesseract_language("fr") == "eng"


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("BACKEND_BASE_URL", "https://api.example.test/api/")
    monkeypatch.setenv("CHAT_READ_TIMEOUT_S", "none")
    monkeypatch.setenv("TYPING_CHUNK_SIZE", "0")
    monkeypatch.setenv("VISION_DISPLAY_MODE", "Markdown")

    settings = load_settings()

    assert settings.backend_base_url == "https://api.example.test/api"
    assert settings.read_timeout_s is None
    assert settings.typing_chunk_size == 1
    assert settings.typing_delay_s == 0.025
    assert settings.vision_display_mode == "markdown"
