"""Abstract base classes for generative-AI backends."""

from abc import ABC, abstractmethod
from typing import Sequence

from copilot.errors import StaleChatHandle
from copilot.models import Part, TextPart


# Seeded model turn after the system prompt, so the first real answer stays on task
SYSTEM_ACK = "Understood. I'm ready to assist you in real-time based on the context you provide."

CONNECTION_TEST_PROMPT = "Say Hello in one word"


class ChatHandle(ABC):
    """A backend-held conversation bound to exactly one system prompt.

    Once closed, the handle refuses to send; a profile or context change
    always produces a fresh handle.
    """

    def __init__(self, system_prompt: str):
        self.system_prompt = system_prompt
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, parts: Sequence[Part]) -> str:
        """Send one user turn and return the generated text.

        Raises:
            StaleChatHandle: If the handle was closed.
            BackendError: If the backend call fails.
        """
        if self._closed:
            raise StaleChatHandle()
        return await self._send(list(parts))

    def close(self) -> None:
        self._closed = True

    @abstractmethod
    async def _send(self, parts: list) -> str:
        pass


class BaseBackend(ABC):
    """Abstract base class for all backend implementations."""

    name = "base"

    @abstractmethod
    async def open_chat(self, api_key: str, system_prompt: str) -> ChatHandle:
        """Open a new chat seeded with ``system_prompt``.

        Args:
            api_key: Backend API key
            system_prompt: Profile prompt sent once at session start

        Returns:
            A fresh ChatHandle

        Raises:
            BackendError: If the key is rejected or the backend is unreachable
        """
        pass

    async def test_connection(self, api_key: str) -> str:
        """Run a one-word round trip to check the key and connectivity."""
        handle = await self.open_chat(api_key, "Reply as briefly as possible.")
        try:
            return (await handle.send([TextPart(CONNECTION_TEST_PROMPT)])).strip()
        finally:
            handle.close()
