import logging
from typing import Protocol

from telegram import Bot
from telegram.constants import ChatAction, ParseMode
from telegram.error import TelegramError

from ..errors import TransportError
from ..settings import Settings

logger = logging.getLogger(__name__)


def _thread(thread_id: str | None) -> int | None:
    return int(thread_id) if thread_id else None


class ChatClient(Protocol):
    """Chat platform operations the bridge consumes."""

    async def send_message(
        self,
        chat_id: str,
        text: str,
        thread_id: str | None = None,
        markdown: bool = True,
    ) -> int: ...

    async def edit_message(
        self,
        chat_id: str,
        message_id: int,
        text: str,
        markdown: bool = True,
    ) -> None: ...

    async def send_typing(self, chat_id: str, thread_id: str | None = None) -> None: ...

    async def edit_forum_topic(
        self,
        chat_id: str,
        thread_id: str,
        name: str | None = None,
        icon_custom_emoji_id: str | None = None,
    ) -> None: ...


class TelegramChatClient:
    """ChatClient backed by python-telegram-bot. Telegram failures become TransportError."""

    def __init__(self, bot: Bot) -> None:
        self._bot = bot

    async def send_message(
        self,
        chat_id: str,
        text: str,
        thread_id: str | None = None,
        markdown: bool = True,
    ) -> int:
        try:
            message = await self._bot.send_message(
                chat_id=chat_id,
                text=text,
                message_thread_id=_thread(thread_id),
                parse_mode=ParseMode.MARKDOWN_V2 if markdown else None,
            )
        except TelegramError as e:
            raise TransportError(f"Telegram sendMessage failed: {e}") from e
        return message.message_id

    async def edit_message(
        self,
        chat_id: str,
        message_id: int,
        text: str,
        markdown: bool = True,
    ) -> None:
        try:
            await self._bot.edit_message_text(
                text=text,
                chat_id=chat_id,
                message_id=message_id,
                parse_mode=ParseMode.MARKDOWN_V2 if markdown else None,
            )
        except TelegramError as e:
            raise TransportError(f"Telegram editMessageText failed: {e}") from e

    async def send_typing(self, chat_id: str, thread_id: str | None = None) -> None:
        try:
            await self._bot.send_chat_action(
                chat_id=chat_id,
                action=ChatAction.TYPING,
                message_thread_id=_thread(thread_id),
            )
        except TelegramError as e:
            raise TransportError(f"Telegram sendChatAction failed: {e}") from e

    async def edit_forum_topic(
        self,
        chat_id: str,
        thread_id: str,
        name: str | None = None,
        icon_custom_emoji_id: str | None = None,
    ) -> None:
        try:
            await self._bot.edit_forum_topic(
                chat_id=chat_id,
                message_thread_id=int(thread_id),
                name=name,
                icon_custom_emoji_id=icon_custom_emoji_id,
            )
        except TelegramError as e:
            raise TransportError(f"Telegram editForumTopic failed: {e}") from e


def build_bot(settings: Settings) -> Bot:
    """Create the Telegram Bot, honouring a custom Bot API server if configured."""
    if settings.telegram_api_base_url:
        api_root = settings.telegram_api_base_url.rstrip("/")
        return Bot(
            token=settings.telegram_bot_token,
            base_url=f"{api_root}/bot",
            base_file_url=f"{api_root}/file/bot",
        )
    return Bot(token=settings.telegram_bot_token)
