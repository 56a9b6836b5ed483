import pytest

from services.chat.scroll_follow import ScrollFollowController
from services.chat.view_events import SCROLL_RETURN_AVAILABLE, SCROLL_TO_BOTTOM

from .conftest import EventRecorder


@pytest.fixture
def recorder():
    return EventRecorder()


@pytest.fixture
def scroll(recorder):
    return ScrollFollowController(recorder, threshold_px=50)


@pytest.mark.asyncio
async def test_follows_every_mutation_while_active(scroll, recorder):
    scroll.activity_started("fetch:1")

    assert scroll.on_manual_scroll(0, 2000, 500) is False
    await scroll.on_content_mutation()
    await scroll.on_content_mutation()

    assert recorder.names() == [SCROLL_TO_BOTTOM, SCROLL_TO_BOTTOM]
    assert scroll.state.user_has_scrolled_away is False


@pytest.mark.asyncio
async def test_scrolled_away_viewer_gets_return_affordance_once(scroll, recorder):
    scroll.activity_started("typing:1")
    scroll.activity_finished("typing:1")

    assert scroll.on_manual_scroll(0, 2000, 500) is True
    await scroll.on_content_mutation()
    await scroll.on_content_mutation()

    assert recorder.names() == [SCROLL_RETURN_AVAILABLE]
    assert scroll.state.show_return_to_bottom is True

    await scroll.return_to_bottom()
    assert recorder.events[-1] == (SCROLL_TO_BOTTOM, {"smooth": True, "force": True})
    assert scroll.state.user_has_scrolled_away is False
    assert scroll.state.show_return_to_bottom is False


@pytest.mark.asyncio
async def test_within_threshold_counts_as_bottom(scroll, recorder):
    # 1460 + 500 = 1960 >= 2000 - 50
    scroll.on_manual_scroll(1460, 2000, 500)
    await scroll.on_content_mutation()
    assert recorder.names() == [SCROLL_TO_BOTTOM]

    scroll.on_manual_scroll(1440, 2000, 500)
    await scroll.on_content_mutation()
    assert recorder.names() == [SCROLL_TO_BOTTOM, SCROLL_RETURN_AVAILABLE]


@pytest.mark.asyncio
async def test_new_message_brings_viewer_back(scroll, recorder):
    scroll.on_manual_scroll(0, 2000, 500)
    scroll.follow_new_message()
    await scroll.on_content_mutation()
    assert recorder.names() == [SCROLL_TO_BOTTOM]


def test_activity_end_does_not_force_a_scroll(scroll, recorder):
    scroll.activity_started("fetch:1")
    scroll.activity_started("typing:1")
    scroll.activity_finished("fetch:1")
    assert scroll.state.is_auto_following is True
    scroll.activity_finished("typing:1")
    assert scroll.state.is_auto_following is False
    assert recorder.events == []
