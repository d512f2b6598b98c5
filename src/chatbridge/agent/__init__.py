"""Agent package for the Letta side of the bridge.

Exposes the streaming exchange engine, its HTTP transport and the client-side
tools the agent may call back into the chat with.
"""

from .exchange import (
    ExchangeEngine,
    ToolCallAccumulator,
    ToolCallTracker,
    TurnStats,
)
from .tools import TelegramToolHandler, get_client_tool_schemas
from .transport import LettaMessageTransport, MessageTransport

__all__ = [
    "ExchangeEngine",
    "LettaMessageTransport",
    "MessageTransport",
    "TelegramToolHandler",
    "ToolCallAccumulator",
    "ToolCallTracker",
    "TurnStats",
    "get_client_tool_schemas",
]
