import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..errors import TransportError
from .client import ChatClient
from .markup import sanitize_markdown

logger = logging.getLogger(__name__)

DEFAULT_FLUSH_INTERVAL_SECONDS = 1.0


@dataclass
class DraftState:
    """Text of the assistant message being rendered and where it was published."""

    text: str = ""
    last_flush_at: float = 0.0
    message_id: Optional[int] = None
    last_rendered: Optional[str] = None


class OutboundRenderer:
    """Turns a token stream into one chat message that is sent once and then edited.

    The first non-blank draft is published immediately. After that the message
    is edited with the full draft at most once per ``min_interval`` seconds,
    plus a final forced edit when the turn ends. Send/edit failures are logged
    and never raised, so a flaky chat API cannot abort the agent turn.
    """

    def __init__(
        self,
        chat: ChatClient,
        chat_id: str,
        thread_id: str | None = None,
        min_interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._chat = chat
        self._chat_id = chat_id
        self._thread_id = thread_id
        self._min_interval = min_interval
        self._clock = clock
        self._draft = DraftState()
        self._lock = asyncio.Lock()
        self.messages_published = 0

    @property
    def draft(self) -> DraftState:
        return self._draft

    @property
    def state(self) -> str:
        if self._draft.message_id is not None:
            return "published"
        if self._draft.text:
            return "drafting"
        return "empty"

    async def on_token(self, text: str) -> None:
        """Append a token to the draft and flush if the policy allows."""
        self._draft.text += text
        await self.flush()

    async def flush(self, force: bool = False) -> bool:
        """Publish or edit the draft. Returns True if a send/edit succeeded."""
        async with self._lock:
            draft = self._draft
            if not draft.text.strip():
                return False

            published = draft.message_id is not None
            if not force and published:
                if self._clock() - draft.last_flush_at < self._min_interval:
                    return False

            rendered = sanitize_markdown(draft.text.strip())
            if not force and rendered == draft.last_rendered:
                return False

            draft.last_flush_at = self._clock()
            try:
                if draft.message_id is None:
                    draft.message_id = await self._chat.send_message(
                        self._chat_id, rendered, thread_id=self._thread_id
                    )
                    self.messages_published += 1
                else:
                    await self._chat.edit_message(self._chat_id, draft.message_id, rendered)
            except TransportError as e:
                # A failed forced flush leaves the visible message behind the draft.
                logger.log(
                    logging.ERROR if force else logging.WARNING,
                    "Flush to chat %s failed (message_id=%s, %d chars): %s",
                    self._chat_id,
                    draft.message_id,
                    len(rendered),
                    e,
                )
                return False

            draft.last_rendered = rendered
            return True

    async def start_new_message(self) -> None:
        """Finish the current message and start the next token in a new one."""
        await self.flush(force=True)
        self._draft = DraftState()

    async def finalize(self) -> None:
        """Force the last flush of the turn."""
        await self.flush(force=True)
