import json
import logging
from typing import Any, Dict, Mapping
from urllib.parse import quote

import httpx

from ..errors import ConfigurationError, ProvisioningError
from ..settings import Settings

logger = logging.getLogger(__name__)

# Characters encodeURIComponent leaves alone besides the unreserved set.
_SEGMENT_SAFE = "!~*'()"


def build_letta_http_client(settings: Settings) -> httpx.AsyncClient:
    """Construct the shared httpx client for the Letta REST API.

    Args:
        settings: Application settings; the API root, key, project and
            per-request timeout are read from here.

    Returns:
        httpx.AsyncClient: Client with base URL and auth headers applied.

    Raises:
        ConfigurationError: If neither a base URL nor a project is configured.
    """
    headers = {
        "Authorization": f"Bearer {settings.letta_api_key}",
        "Content-Type": "application/json",
    }
    if settings.letta_project:
        headers["X-Project"] = settings.letta_project
    return httpx.AsyncClient(
        base_url=settings.letta_api_root,
        headers=headers,
        timeout=settings.letta_request_timeout_seconds,
    )


def template_agents_path(template_version: str) -> str:
    """Request path for creating agents from a template.

    Versions such as ``project/template:3`` keep their slashes as path
    separators; every segment is encoded on its own.
    """
    segments = [quote(segment, safe=_SEGMENT_SAFE) for segment in template_version.split("/")]
    return f"/v1/templates/{'/'.join(segments)}/agents"


def validate_memory_variables(value: Any) -> Dict[str, str]:
    """Check that memory variables are a flat str -> str mapping."""
    if not isinstance(value, Mapping):
        raise ConfigurationError("Template memory variables must be a JSON object")
    for key, item in value.items():
        if not isinstance(item, str):
            raise ConfigurationError(
                f"Template memory variable '{key}' must be a string"
            )
    return dict(value)


def parse_memory_variables(raw: str | None) -> Dict[str, str] | None:
    """Parse LETTA_TEMPLATE_MEMORY_JSON. Returns None when unset."""
    if not raw or not raw.strip():
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"LETTA_TEMPLATE_MEMORY_JSON is not valid JSON: {e}") from e
    return validate_memory_variables(parsed)


class AgentProvisioningClient:
    """Creates and deletes agents on the Letta platform."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def create_from_template(
        self,
        template_version: str,
        memory_variables: Mapping[str, str] | None = None,
    ) -> str:
        """Create an agent from a template and return its id.

        Args:
            template_version: Template identifier, e.g. ``project/template:latest``.
            memory_variables: Optional flat mapping seeded into the agent's memory.

        Returns:
            str: The new agent id.

        Raises:
            ConfigurationError: If memory_variables is not a str -> str mapping.
            ProvisioningError: On transport failure, non-2xx status, or a
                response without ``agents[0].id``.
        """
        body: Dict[str, Any] = {}
        if memory_variables is not None:
            body["memory_variables"] = validate_memory_variables(memory_variables)

        path = template_agents_path(template_version)
        try:
            response = await self._client.post(path, json=body)
        except httpx.HTTPError as e:
            raise ProvisioningError(f"Letta template request failed: {e}") from e

        if response.is_error:
            raise ProvisioningError(
                "Letta template request failed",
                status=response.status_code,
                body=response.text,
            )

        try:
            agent_id = response.json()["agents"][0]["id"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProvisioningError("provisioning response malformed") from e
        if not agent_id or not isinstance(agent_id, str):
            raise ProvisioningError("provisioning response malformed")

        logger.info("Provisioned agent %s from template %s", agent_id, template_version)
        return agent_id

    async def deprovision(self, agent_id: str) -> None:
        """Delete an agent. Raises ProvisioningError on failure."""
        try:
            response = await self._client.delete(f"/v1/agents/{quote(agent_id, safe=_SEGMENT_SAFE)}")
        except httpx.HTTPError as e:
            raise ProvisioningError(f"Letta delete request failed: {e}") from e

        if response.is_error:
            raise ProvisioningError(
                "Letta delete request failed",
                status=response.status_code,
                body=response.text,
            )
        logger.info("Deprovisioned agent %s", agent_id)
