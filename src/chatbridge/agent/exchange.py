import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..errors import ToolExecutionError, TransportError
from ..models import ToolCall, ToolReturn
from .transport import MessageTransport

logger = logging.getLogger(__name__)

ASSISTANT_MESSAGE = "assistant_message"
APPROVAL_REQUEST_MESSAGE = "approval_request_message"

NO_HANDLER_MESSAGE = "No tool handler is configured for client-side execution."
INVALID_RESULT_MESSAGE = "Tool execution failed: the tool handler returned no result."

TokenSink = Callable[[str], Awaitable[None]]
ToolHandler = Callable[[ToolCall], Awaitable[ToolReturn]]
MessageStartHook = Callable[[str], Awaitable[None]]


@dataclass
class ToolCallAccumulator:
    """Partial tool call assembled from approval-request deltas."""

    id: str
    name: Optional[str] = None
    arguments: Optional[str] = None

    def merge(self, name: Any, arguments: Any) -> None:
        # Populated fields are only replaced by non-empty values.
        if name:
            self.name = str(name)
        if arguments:
            self.arguments = arguments if isinstance(arguments, str) else json.dumps(arguments)

    @property
    def ready(self) -> bool:
        return bool(self.name) and bool(self.arguments)


@dataclass
class TurnStats:
    """Counters for one completed turn."""

    requests: int = 0
    tool_calls: int = 0
    tool_names: List[str] = field(default_factory=list)


class ToolCallTracker:
    """Merges tool-call deltas and hands out each call id at most once per turn."""

    def __init__(self) -> None:
        self._pending: Dict[str, ToolCallAccumulator] = {}
        self._dispatched: set[str] = set()

    def collect(self, deltas: Sequence[Dict[str, Any]]) -> List[ToolCall]:
        """Merge deltas and return calls that just became complete, in arrival order."""
        ready: List[ToolCall] = []
        for delta in deltas:
            call_id = delta.get("tool_call_id")
            if not call_id or call_id in self._dispatched:
                continue
            acc = self._pending.setdefault(call_id, ToolCallAccumulator(id=call_id))
            acc.merge(delta.get("name"), delta.get("arguments"))
            if acc.ready:
                self._dispatched.add(call_id)
                del self._pending[call_id]
                ready.append(ToolCall(id=call_id, name=acc.name or "", arguments=acc.arguments or ""))
        return ready


def extract_tool_calls(event: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Tool call deltas from an approval request (``tool_call`` and/or ``tool_calls``)."""
    calls: List[Dict[str, Any]] = []
    single = event.get("tool_call")
    if isinstance(single, dict):
        calls.append(single)
    many = event.get("tool_calls")
    if isinstance(many, list):
        calls.extend(c for c in many if isinstance(c, dict))
    elif isinstance(many, dict):
        calls.append(many)
    return calls


def extract_text_fragments(content: Any) -> List[str]:
    """Non-blank text fragments of assistant content (string or list of parts)."""
    if isinstance(content, str):
        parts: List[Any] = [content]
    elif isinstance(content, list):
        parts = content
    else:
        return []

    fragments: List[str] = []
    for part in parts:
        if isinstance(part, dict):
            part = part.get("text")
        if part is None:
            continue
        text = str(part)
        if text.strip():
            fragments.append(text)
    return fragments


async def execute_tool_call(call: ToolCall, handler: Optional[ToolHandler]) -> ToolReturn:
    """Run a tool handler, converting its absence or failure into an error result."""
    if handler is None:
        return ToolReturn.error(call.id, NO_HANDLER_MESSAGE)
    try:
        result = await handler(call)
    except ToolExecutionError as e:
        logger.warning("Client-side tool %s (%s) rejected: %s", call.name, call.id, e)
        return ToolReturn.error(call.id, f"Tool execution failed: {e}")
    except Exception as e:
        logger.exception("Client-side tool %s (%s) failed", call.name, call.id)
        return ToolReturn.error(call.id, f"Tool execution failed: {e}")
    if not isinstance(result, ToolReturn):
        logger.error(
            "Client-side tool %s (%s) returned %s instead of a ToolReturn",
            call.name,
            call.id,
            type(result).__name__,
        )
        return ToolReturn.error(call.id, INVALID_RESULT_MESSAGE)
    return result


class ExchangeEngine:
    """Drives one agent turn: stream the reply, run requested tools, resubmit approvals."""

    def __init__(self, transport: MessageTransport) -> None:
        self._transport = transport

    @staticmethod
    def _request(
        body: Dict[str, Any], tool_catalog: Optional[Sequence[Dict[str, Any]]]
    ) -> Dict[str, Any]:
        payload = {**body, "streaming": True, "stream_tokens": True}
        if tool_catalog:
            payload["client_tools"] = list(tool_catalog)
        return payload

    async def exchange(
        self,
        agent_id: str,
        user_text: str,
        on_token: TokenSink,
        tool_catalog: Optional[Sequence[Dict[str, Any]]] = None,
        on_tool_call: Optional[ToolHandler] = None,
        on_message_start: Optional[MessageStartHook] = None,
    ) -> TurnStats:
        """Send user text to an agent and drive the turn to its final answer.

        Args:
            agent_id: Agent to talk to.
            user_text: The user's message.
            on_token: Awaited once per non-blank text fragment, in stream order.
            tool_catalog: Client-side tool declarations, sent with every request.
            on_tool_call: Executes a complete tool call and returns its result.
            on_message_start: Awaited with the new id whenever the agent starts
                a different assistant message within the turn.

        Returns:
            TurnStats: Number of requests made and tools dispatched.

        Raises:
            TransportError: If a request or its stream fails.
        """
        stats = TurnStats()
        tracker = ToolCallTracker()
        current_message_id: Optional[str] = None
        payload = self._request({"input": user_text}, tool_catalog)

        while True:
            stats.requests += 1
            approvals: List[ToolReturn] = []
            saw_approval_request = False

            async for event in self._transport.stream(agent_id, payload):
                if event.get("error"):
                    raise TransportError(f"Agent stream reported an error: {event['error']}")

                message_type = event.get("message_type")
                if message_type == ASSISTANT_MESSAGE:
                    message_id = event.get("id")
                    if message_id and message_id != current_message_id:
                        if current_message_id is not None and on_message_start is not None:
                            await on_message_start(message_id)
                        current_message_id = message_id
                    for fragment in extract_text_fragments(event.get("content")):
                        await on_token(fragment)

                elif message_type == APPROVAL_REQUEST_MESSAGE:
                    saw_approval_request = True
                    for call in tracker.collect(extract_tool_calls(event)):
                        logger.info("Dispatching client tool %s (%s)", call.name, call.id)
                        approvals.append(await execute_tool_call(call, on_tool_call))
                        stats.tool_calls += 1
                        stats.tool_names.append(call.name)

            if not saw_approval_request:
                break

            if not approvals:
                logger.warning("Approval requested by agent %s but no tool call was complete", agent_id)
            payload = self._request(
                {
                    "messages": [
                        {"type": "approval", "approvals": [a.to_payload() for a in approvals]}
                    ]
                },
                tool_catalog,
            )

        logger.info(
            "Turn finished for agent %s: %d request(s), %d tool call(s)",
            agent_id,
            stats.requests,
            stats.tool_calls,
        )
        return stats
