import logging

import pytest

from chatbridge.chat.renderer import OutboundRenderer


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def renderer(fake_chat, clock) -> OutboundRenderer:
    return OutboundRenderer(fake_chat, "123", thread_id="7", min_interval=1.0, clock=clock)


@pytest.mark.asyncio
async def test_first_token_publishes_immediately(renderer, fake_chat) -> None:
    assert renderer.state == "empty"
    await renderer.on_token("Hello")
    assert renderer.state == "published"
    assert len(fake_chat.sent) == 1
    assert fake_chat.sent[0]["text"] == "Hello"
    assert fake_chat.sent[0]["thread_id"] == "7"


@pytest.mark.asyncio
async def test_edit_throttled_within_interval(renderer, fake_chat, clock) -> None:
    await renderer.on_token("Hello")
    clock.now += 0.5
    await renderer.on_token(" world")
    assert fake_chat.edits == []
    assert renderer.draft.text == "Hello world"


@pytest.mark.asyncio
async def test_edit_after_interval_sends_full_draft(renderer, fake_chat, clock) -> None:
    await renderer.on_token("Hello")
    clock.now += 0.5
    await renderer.on_token(" world")
    clock.now += 0.6
    await renderer.on_token("!")
    message_id = fake_chat.sent[0]["id"]
    assert fake_chat.edits == [("123", message_id, "Hello world\\!")]


@pytest.mark.asyncio
async def test_forced_flush_ignores_interval(renderer, fake_chat, clock) -> None:
    await renderer.on_token("Hello")
    await renderer.on_token(" world")
    assert fake_chat.edits == []
    await renderer.finalize()
    assert len(fake_chat.edits) == 1
    assert len(fake_chat.sent) == 1


@pytest.mark.asyncio
async def test_forced_flush_before_publish_sends_once(fake_chat, clock) -> None:
    renderer = OutboundRenderer(fake_chat, "1", clock=clock)
    renderer.draft.text = "queued"
    await renderer.flush(force=True)
    assert len(fake_chat.sent) == 1
    assert fake_chat.edits == []


@pytest.mark.asyncio
async def test_blank_draft_is_noop(renderer, fake_chat) -> None:
    await renderer.on_token("   \n")
    await renderer.finalize()
    assert fake_chat.sent == []
    assert fake_chat.edits == []
    assert renderer.state == "drafting"


@pytest.mark.asyncio
async def test_text_is_escaped(renderer, fake_chat) -> None:
    await renderer.on_token("Done. See `x.y`")
    assert fake_chat.sent[0]["text"] == "Done\\. See `x.y`"


@pytest.mark.asyncio
async def test_send_failure_absorbed_and_retried(renderer, fake_chat) -> None:
    fake_chat.fail_sends = True
    await renderer.on_token("Hello")
    assert renderer.draft.message_id is None
    fake_chat.fail_sends = False
    await renderer.on_token(" again")
    assert len(fake_chat.sent) == 1
    assert fake_chat.sent[0]["text"] == "Hello again"


@pytest.mark.asyncio
async def test_edit_failure_keeps_message_id(renderer, fake_chat, clock) -> None:
    await renderer.on_token("Hello")
    message_id = renderer.draft.message_id
    fake_chat.fail_edits = True
    clock.now += 2
    await renderer.on_token(" world")
    assert renderer.draft.message_id == message_id
    fake_chat.fail_edits = False
    await renderer.finalize()
    assert fake_chat.edits == [("123", message_id, "Hello world")]
    assert len(fake_chat.sent) == 1


@pytest.mark.asyncio
async def test_start_new_message_finalizes_and_resets(renderer, fake_chat) -> None:
    await renderer.on_token("First")
    await renderer.on_token(" answer")
    await renderer.start_new_message()
    assert renderer.state == "empty"
    assert fake_chat.edits[-1][2] == "First answer"

    await renderer.on_token("Second")
    assert [m["text"] for m in fake_chat.sent] == ["First", "Second"]
    assert renderer.messages_published == 2


@pytest.mark.asyncio
async def test_failed_final_edit_logged_as_error(renderer, fake_chat, clock, caplog) -> None:
    await renderer.on_token("Hello")
    clock.now += 0.5
    await renderer.on_token(" world")
    fake_chat.fail_edits = True

    with caplog.at_level(logging.WARNING, logger="chatbridge.chat.renderer"):
        clock.now += 1.0
        await renderer.on_token("!")
        await renderer.finalize()

    levels = [r.levelno for r in caplog.records]
    assert levels == [logging.WARNING, logging.ERROR]
    assert "13 chars" in caplog.records[-1].getMessage()
