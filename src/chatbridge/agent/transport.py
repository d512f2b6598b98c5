import json
import logging
from typing import Any, AsyncIterator, Dict, Protocol
from urllib.parse import quote

import httpx

from ..errors import TransportError

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"


class MessageTransport(Protocol):
    """Submits one request to an agent and yields its streamed events."""

    def stream(self, agent_id: str, payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]: ...


class LettaMessageTransport:
    """Streams agent messages from the Letta REST API as server-sent events."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def stream(
        self, agent_id: str, payload: Dict[str, Any]
    ) -> AsyncIterator[Dict[str, Any]]:
        """POST a message request and yield each decoded event in order.

        Args:
            agent_id: Target agent.
            payload: Request body (``input`` or ``messages`` plus streaming flags).

        Yields:
            Dict[str, Any]: One event per ``data:`` line.

        Raises:
            TransportError: On connection failure or a non-2xx response.
        """
        path = f"/v1/agents/{quote(agent_id, safe='')}/messages/stream"
        try:
            async with self._client.stream("POST", path, json=payload) as response:
                if response.is_error:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise TransportError(
                        "Letta message request failed",
                        status=response.status_code,
                        body=body,
                    )

                async for line in response.aiter_lines():
                    line = line.strip()
                    if not line.startswith(SSE_DATA_PREFIX):
                        continue
                    data = line[len(SSE_DATA_PREFIX):].strip()
                    if data == SSE_DONE:
                        break
                    try:
                        event = json.loads(data)
                    except json.JSONDecodeError as e:
                        logger.warning("Skipping undecodable stream event for %s: %s", agent_id, e)
                        continue
                    if isinstance(event, dict):
                        yield event
        except httpx.HTTPError as e:
            raise TransportError(f"Letta message stream failed: {e}") from e
