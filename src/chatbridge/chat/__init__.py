"""Chat platform side of the bridge: Telegram client, renderer and MarkdownV2 escaping."""

from .client import ChatClient, TelegramChatClient, build_bot
from .markup import sanitize_markdown
from .renderer import DraftState, OutboundRenderer

__all__ = [
    "ChatClient",
    "DraftState",
    "OutboundRenderer",
    "TelegramChatClient",
    "build_bot",
    "sanitize_markdown",
]
