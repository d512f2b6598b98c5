import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator

from .agent.exchange import ExchangeEngine
from .agent.tools import TelegramToolHandler, get_client_tool_schemas
from .chat.client import ChatClient
from .chat.renderer import DEFAULT_FLUSH_INTERVAL_SECONDS, OutboundRenderer
from .errors import DEFAULT_USER_MESSAGE, BridgeError, TransportError
from .models import IncomingMessage
from .services.session_store import SessionStore

logger = logging.getLogger(__name__)

RESET_COMMANDS = ("/start", "/restart")
FORGET_COMMAND = "/forget"

RESTARTED_TEXT = "Agent restarted! Ready for a fresh conversation."
RESTART_FAILED_TEXT = "Sorry, something went wrong while restarting the agent."
FORGOTTEN_TEXT = "Agent removed. Send a message to start over."
APOLOGY_TEXT = DEFAULT_USER_MESSAGE


def parse_command(text: str) -> str | None:
    """Return the bot command at the start of text (``/cmd@bot args`` -> ``/cmd``)."""
    text = text.strip()
    if not text.startswith("/"):
        return None
    return text.split(maxsplit=1)[0].split("@", 1)[0].lower()


def apology_for(error: Exception) -> str:
    """Text shown to the user after a failure."""
    if isinstance(error, BridgeError):
        return error.user_message
    return APOLOGY_TEXT


class ChatBridge:
    """Handles one inbound chat message end to end."""

    def __init__(
        self,
        sessions: SessionStore,
        engine: ExchangeEngine,
        chat: ChatClient,
        turn_timeout: float = 900.0,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        typing_interval: float = 4.0,
    ) -> None:
        self._sessions = sessions
        self._engine = engine
        self._chat = chat
        self._turn_timeout = turn_timeout
        self._flush_interval = flush_interval
        self._typing_interval = typing_interval

    async def handle_message(self, message: IncomingMessage) -> None:
        """Route a command or run an agent turn. Never raises."""
        command = parse_command(message.text)
        if command in RESET_COMMANDS:
            await self._restart(message)
        elif command == FORGET_COMMAND:
            await self._forget(message)
        else:
            await self._run_turn(message)

    async def _reply(self, message: IncomingMessage, text: str) -> None:
        try:
            await self._chat.send_message(
                message.chat_id, text, thread_id=message.thread_id, markdown=False
            )
        except TransportError as e:
            logger.error("Failed to send reply to chat %s: %s", message.chat_id, e)

    async def _restart(self, message: IncomingMessage) -> None:
        try:
            await self._sessions.create_fresh_agent(message.chat_id, message.thread_id)
        except Exception as e:
            logger.exception("Error creating fresh agent for chat %s: %s", message.chat_id, e)
            await self._reply(message, RESTART_FAILED_TEXT)
            return
        await self._reply(message, RESTARTED_TEXT)

    async def _forget(self, message: IncomingMessage) -> None:
        try:
            await self._sessions.delete(message.chat_id, message.thread_id)
        except Exception as e:
            logger.exception("Error deleting agent binding for chat %s: %s", message.chat_id, e)
            await self._reply(message, apology_for(e))
            return
        await self._reply(message, FORGOTTEN_TEXT)

    async def _send_typing(self, message: IncomingMessage) -> None:
        try:
            await self._chat.send_typing(message.chat_id, message.thread_id)
        except TransportError as e:
            logger.debug("Typing indicator failed for chat %s: %s", message.chat_id, e)

    @asynccontextmanager
    async def _typing(self, message: IncomingMessage) -> AsyncIterator[None]:
        # Telegram clears the indicator after ~5s, so it is re-sent until the turn ends.
        async def keep_typing() -> None:
            while True:
                await asyncio.sleep(self._typing_interval)
                await self._send_typing(message)

        await self._send_typing(message)
        task = asyncio.create_task(keep_typing())
        try:
            yield
        finally:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task

    async def _run_turn(self, message: IncomingMessage) -> None:
        logger.info("Turn start chat_id=%s thread_id=%s", message.chat_id, message.thread_id)
        renderer = OutboundRenderer(
            self._chat,
            message.chat_id,
            thread_id=message.thread_id,
            min_interval=self._flush_interval,
        )
        tools = TelegramToolHandler(self._chat, message.chat_id, message.thread_id)

        async def on_message_start(message_id: str) -> None:
            await renderer.start_new_message()

        try:
            async with self._typing(message):
                agent_id, created = await self._sessions.resolve_agent(
                    message.chat_id, message.thread_id
                )
                if created:
                    logger.info("Chat %s is now served by agent %s", message.chat_id, agent_id)
                stats = await asyncio.wait_for(
                    self._engine.exchange(
                        agent_id,
                        message.text,
                        renderer.on_token,
                        tool_catalog=get_client_tool_schemas(),
                        on_tool_call=tools,
                        on_message_start=on_message_start,
                    ),
                    timeout=self._turn_timeout,
                )
        except Exception as e:
            logger.exception("Agent turn failed for chat %s: %s", message.chat_id, e)
            await renderer.finalize()
            await self._reply(message, apology_for(e))
            return

        await renderer.finalize()
        logger.info(
            "Turn done chat_id=%s: %d chat message(s), tools=%s",
            message.chat_id,
            renderer.messages_published,
            stats.tool_names,
        )
