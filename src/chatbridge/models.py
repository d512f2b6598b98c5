import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Optional


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SessionBinding:
    """Association between one chat thread and the agent serving it."""

    chat_id: str
    agent_id: str
    template_version: str
    thread_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now_iso)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "thread_id": self.thread_id,
            "agent_id": self.agent_id,
            "created_at": self.created_at,
            "template_version": self.template_version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionBinding":
        """Build a binding from stored data. Raises KeyError/TypeError/ValueError if malformed."""
        agent_id = data["agent_id"]
        if not isinstance(agent_id, str) or not agent_id:
            raise ValueError("agent_id must be a non-empty string")
        thread_id = data.get("thread_id")
        return cls(
            chat_id=str(data["chat_id"]),
            thread_id=None if thread_id is None else str(thread_id),
            agent_id=agent_id,
            created_at=str(data.get("created_at", "")),
            template_version=str(data.get("template_version", "")),
        )


@dataclass
class ToolCall:
    """A complete client-side tool invocation requested by the agent."""

    id: str
    name: str
    arguments: str

    def parsed_arguments(self) -> Dict[str, Any]:
        """Decode the JSON argument string. Raises ValueError if it is not a JSON object."""
        parsed = json.loads(self.arguments) if self.arguments else {}
        if not isinstance(parsed, dict):
            raise ValueError("tool arguments must be a JSON object")
        return parsed


@dataclass
class ToolReturn:
    """Result of a client-side tool, sent back to the agent as an approval."""

    status: Literal["success", "error"]
    tool_call_id: str
    tool_return: str

    @classmethod
    def success(cls, tool_call_id: str, tool_return: str) -> "ToolReturn":
        return cls(status="success", tool_call_id=tool_call_id, tool_return=tool_return)

    @classmethod
    def error(cls, tool_call_id: str, tool_return: str) -> "ToolReturn":
        return cls(status="error", tool_call_id=tool_call_id, tool_return=tool_return)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "type": "tool",
            "status": self.status,
            "tool_call_id": self.tool_call_id,
            "tool_return": self.tool_return,
        }


@dataclass
class IncomingMessage:
    """A text message received from the chat platform."""

    chat_id: str
    text: str
    thread_id: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
