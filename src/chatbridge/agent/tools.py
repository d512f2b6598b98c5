import json
import logging
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, List

from ..chat.client import ChatClient
from ..errors import ToolExecutionError, TransportError
from ..models import ToolCall, ToolReturn

logger = logging.getLogger(__name__)

MAX_TOPIC_TITLE_LENGTH = 128


@lru_cache(maxsize=1)
def _client_tool_schemas() -> tuple:
    return (
        {
            "name": "set_topic_title",
            "description": (
                "Rename the current Telegram forum topic, optionally changing its icon. "
                "Only works inside a forum topic."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "title": {
                        "type": "string",
                        "description": "New topic title, 1-128 characters",
                    },
                    "icon_custom_emoji_id": {
                        "type": "string",
                        "description": "Optional custom emoji id to use as the topic icon",
                    },
                },
                "required": ["title"],
            },
        },
    )


def get_client_tool_schemas() -> List[Dict[str, Any]]:
    """Return the client-side tool declarations sent with every agent request.

    Returns:
        List[Dict[str, Any]]: Letta ``client_tools`` entries with name,
            description and JSON-schema parameters.
    """
    return [dict(schema) for schema in _client_tool_schemas()]


class TelegramToolHandler:
    """Executes client-side tools against the chat the turn belongs to.

    Tools are dispatched by name through ``function_map``; a new tool needs a
    schema in ``get_client_tool_schemas`` and an entry in the map.
    """

    def __init__(self, chat: ChatClient, chat_id: str, thread_id: str | None = None) -> None:
        self._chat = chat
        self._chat_id = chat_id
        self._thread_id = thread_id

    @property
    def function_map(self) -> Dict[str, Callable[..., Awaitable[str]]]:
        return {
            "set_topic_title": self.set_topic_title,
        }

    async def __call__(self, call: ToolCall) -> ToolReturn:
        func = self.function_map.get(call.name)
        if func is None:
            raise ToolExecutionError(call.name, "unknown tool")
        try:
            arguments = call.parsed_arguments()
        except ValueError as e:
            raise ToolExecutionError(call.name, f"invalid arguments - {e}") from e

        try:
            result = await func(**arguments)
        except TypeError as e:
            raise ToolExecutionError(call.name, f"invalid arguments - {e}") from e
        except TransportError as e:
            logger.warning("Tool %s failed against Telegram: %s", call.name, e)
            return ToolReturn.error(call.id, str(e))
        logger.info("Client tool %s completed", call.name)
        return ToolReturn.success(call.id, result)

    async def set_topic_title(self, title: str, icon_custom_emoji_id: str | None = None) -> str:
        """Rename the forum topic this conversation lives in."""
        if not self._thread_id:
            raise ToolExecutionError("set_topic_title", "this chat has no forum topic")
        title = title.strip()
        if not title or len(title) > MAX_TOPIC_TITLE_LENGTH:
            raise ToolExecutionError(
                "set_topic_title", f"title must be 1-{MAX_TOPIC_TITLE_LENGTH} characters"
            )
        await self._chat.edit_forum_topic(
            self._chat_id,
            self._thread_id,
            name=title,
            icon_custom_emoji_id=icon_custom_emoji_id or None,
        )
        return json.dumps({"title": title, "updated": True})
