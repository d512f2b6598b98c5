import sys
from pathlib import Path
from typing import Any, Dict, List, Tuple

import pytest


_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from chatbridge.errors import TransportError  # noqa: E402


class FakeChat:
    """Records chat operations; set fail_sends / fail_edits to simulate Telegram errors."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.edits: List[Tuple[str, int, str]] = []
        self.typing: List[str] = []
        self.topics: List[Dict[str, Any]] = []
        self.fail_sends = False
        self.fail_edits = False
        self._next_id = 100

    async def send_message(self, chat_id, text, thread_id=None, markdown=True) -> int:
        if self.fail_sends:
            raise TransportError("send failed")
        self._next_id += 1
        self.sent.append(
            {"chat_id": chat_id, "text": text, "thread_id": thread_id, "markdown": markdown, "id": self._next_id}
        )
        return self._next_id

    async def edit_message(self, chat_id, message_id, text, markdown=True) -> None:
        if self.fail_edits:
            raise TransportError("edit failed")
        self.edits.append((chat_id, message_id, text))

    async def send_typing(self, chat_id, thread_id=None) -> None:
        self.typing.append(chat_id)

    async def edit_forum_topic(self, chat_id, thread_id, name=None, icon_custom_emoji_id=None) -> None:
        self.topics.append(
            {"chat_id": chat_id, "thread_id": thread_id, "name": name, "icon": icon_custom_emoji_id}
        )


@pytest.fixture
def fake_chat() -> FakeChat:
    return FakeChat()
