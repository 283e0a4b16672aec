"""Gemini backend built on the google-generativeai SDK."""

import asyncio
import logging
from typing import Optional

import google.generativeai as genai
from google.api_core import exceptions as google_exceptions

from copilot.backends.base_backend import BaseBackend, ChatHandle, SYSTEM_ACK
from copilot.config import Config
from copilot.errors import BackendError, BackendErrorKind, classify_error_message
from copilot.models import ImagePart, TextPart

logger = logging.getLogger(__name__)


GENERATION_CONFIG = {
    "temperature": 0.7,
    "top_p": 0.95,
    "top_k": 40,
    "max_output_tokens": 1024,
}


def classify_exception(exc: BaseException) -> BackendErrorKind:
    """Map an SDK or transport exception onto a BackendErrorKind."""
    if isinstance(exc, (genai.types.BlockedPromptException, genai.types.StopCandidateException)):
        return BackendErrorKind.BLOCKED
    if isinstance(exc, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
        return BackendErrorKind.INVALID_KEY
    if isinstance(exc, google_exceptions.ResourceExhausted):
        return BackendErrorKind.QUOTA_EXCEEDED
    if isinstance(exc, (
        google_exceptions.ServiceUnavailable,
        google_exceptions.DeadlineExceeded,
        google_exceptions.RetryError,
        ConnectionError,
        TimeoutError,
    )):
        return BackendErrorKind.NETWORK_ERROR
    # InvalidArgument covers "API key not valid" among other things
    return classify_error_message(str(exc))


class GeminiChatHandle(ChatHandle):

    def __init__(self, system_prompt: str, chat):
        super().__init__(system_prompt)
        self._chat = chat

    async def _send(self, parts: list) -> str:
        contents = []
        for part in parts:
            if isinstance(part, TextPart):
                contents.append(part.text)
            elif isinstance(part, ImagePart):
                contents.append({"mime_type": part.mime_type, "data": part.data})

        try:
            response = await self._chat.send_message_async(contents)
            text = response.text
        except Exception as e:
            kind = classify_exception(e)
            logger.warning("Gemini API error (%s): %s", kind.value, e)
            raise BackendError(kind, str(e)) from e

        if not (text or "").strip():
            raise BackendError(BackendErrorKind.UNKNOWN, "empty response")
        return text


class GeminiBackend(BaseBackend):
    """Google Gemini chat sessions via google-generativeai."""

    name = "gemini"

    def __init__(self, model: Optional[str] = None, verify_key: Optional[bool] = None):
        """Initialize Gemini backend.

        Args:
            model: Model name to use (defaults to Config.GEMINI_MODEL)
            verify_key: Check the key against the models endpoint when a chat opens
                (defaults to Config.VERIFY_KEY_ON_START)
        """
        self.model_name = model or Config.GEMINI_MODEL
        self.verify_key = Config.VERIFY_KEY_ON_START if verify_key is None else verify_key

    async def open_chat(self, api_key: str, system_prompt: str) -> ChatHandle:
        if not api_key:
            raise BackendError(BackendErrorKind.INVALID_KEY, "no API key supplied")

        try:
            genai.configure(api_key=api_key)
            if self.verify_key:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, genai.get_model, f"models/{self.model_name}")

            model = genai.GenerativeModel(self.model_name, generation_config=GENERATION_CONFIG)
            chat = model.start_chat(history=[
                {"role": "user", "parts": [system_prompt]},
                {"role": "model", "parts": [SYSTEM_ACK]},
            ])
        except Exception as e:
            kind = classify_exception(e)
            logger.error("Failed to initialize Gemini (%s): %s", kind.value, e)
            raise BackendError(kind, str(e)) from e

        logger.info("Gemini chat opened with model %s", self.model_name)
        return GeminiChatHandle(system_prompt, chat)
