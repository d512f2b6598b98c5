import asyncio
import json
import logging
import weakref
from typing import Mapping, Tuple

from ..errors import ProvisioningError
from ..models import SessionBinding
from .kv import KeyValueStore
from .provisioning import AgentProvisioningClient

logger = logging.getLogger(__name__)

SESSION_KEY_PREFIX = "chat:"
DEFAULT_THREAD = "default"


class SessionStore:
    """Maps (chat, thread) to the agent serving it, on a key-value store."""

    def __init__(
        self,
        kv: KeyValueStore,
        provisioning: AgentProvisioningClient,
        template_version: str,
        memory_variables: Mapping[str, str] | None = None,
        key_prefix: str = SESSION_KEY_PREFIX,
    ) -> None:
        self._kv = kv
        self._provisioning = provisioning
        self._template_version = template_version
        self._memory_variables = memory_variables
        self._prefix = key_prefix
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def key(self, chat_id: str, thread_id: str | None = None) -> str:
        return f"{self._prefix}{chat_id}:{thread_id or DEFAULT_THREAD}"

    def _lock(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def get(self, chat_id: str, thread_id: str | None = None) -> SessionBinding | None:
        """Load the binding for a chat thread.

        Returns None if the key is missing or its value is malformed. A
        failing backing store raises TransportError instead.
        """
        key = self.key(chat_id, thread_id)
        raw = await self._kv.get(key)
        if raw is None:
            return None
        try:
            return SessionBinding.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.warning("Invalid session binding for %s: %s", key, e)
            return None

    async def put(
        self, chat_id: str, thread_id: str | None, binding: SessionBinding
    ) -> None:
        """Store the binding for a chat thread, replacing any previous one."""
        await self._kv.put(self.key(chat_id, thread_id), json.dumps(binding.to_dict()))

    async def delete(self, chat_id: str, thread_id: str | None = None) -> None:
        """Remove the binding and deprovision its agent.

        Deprovisioning is best effort. Failing to remove the local binding
        raises TransportError.
        """
        async with self._lock(self.key(chat_id, thread_id)):
            await self._delete_unlocked(chat_id, thread_id)

    async def _delete_unlocked(self, chat_id: str, thread_id: str | None) -> None:
        existing = await self.get(chat_id, thread_id)
        if existing is None:
            return
        try:
            await self._provisioning.deprovision(existing.agent_id)
        except ProvisioningError as e:
            logger.warning(
                "Failed to deprovision agent %s for chat %s: %s",
                existing.agent_id,
                chat_id,
                e,
            )
        await self._kv.delete(self.key(chat_id, thread_id))

    async def _provision(self, chat_id: str, thread_id: str | None) -> str:
        agent_id = await self._provisioning.create_from_template(
            self._template_version, self._memory_variables
        )
        binding = SessionBinding(
            chat_id=chat_id,
            thread_id=thread_id,
            agent_id=agent_id,
            template_version=self._template_version,
        )
        await self.put(chat_id, thread_id, binding)
        return agent_id

    async def resolve_agent(
        self, chat_id: str, thread_id: str | None = None
    ) -> Tuple[str, bool]:
        """Return (agent_id, created) for a chat thread, provisioning on first use.

        Args:
            chat_id: Telegram chat id.
            thread_id: Forum topic id, or None for the chat's default thread.

        Returns:
            Tuple[str, bool]: The agent id and whether it was created by this call.

        Raises:
            ProvisioningError: If a new agent had to be created and creation failed.
            TransportError: If the backing store cannot be read or written.
        """
        async with self._lock(self.key(chat_id, thread_id)):
            existing = await self.get(chat_id, thread_id)
            if existing is not None:
                return existing.agent_id, False
            agent_id = await self._provision(chat_id, thread_id)
            logger.info("Bound chat %s thread %s to new agent %s", chat_id, thread_id, agent_id)
            return agent_id, True

    async def create_fresh_agent(self, chat_id: str, thread_id: str | None = None) -> str:
        """Replace the chat thread's agent with a newly provisioned one."""
        async with self._lock(self.key(chat_id, thread_id)):
            await self._delete_unlocked(chat_id, thread_id)
            agent_id = await self._provision(chat_id, thread_id)
            logger.info("Reset chat %s thread %s to agent %s", chat_id, thread_id, agent_id)
            return agent_id
