"""Gemini backend over the Developer API REST endpoint (httpx)."""

from __future__ import annotations

import base64
import logging
from typing import Any, Dict, List, Optional

import httpx

from copilot.backends.base_backend import BaseBackend, ChatHandle
from copilot.config import Config
from copilot.errors import BackendError, BackendErrorKind, classify_error_message
from copilot.models import ImagePart

logger = logging.getLogger(__name__)


def _error_kind(exc: Exception) -> BackendErrorKind:
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        body = exc.response.text or ""
        if status in (401, 403) or (status == 400 and ("API_KEY" in body or "API key" in body)):
            return BackendErrorKind.INVALID_KEY
        if status == 429:
            return BackendErrorKind.QUOTA_EXCEEDED
        if status >= 500:
            return BackendErrorKind.NETWORK_ERROR
        return classify_error_message(body)
    if isinstance(exc, httpx.TransportError):
        return BackendErrorKind.NETWORK_ERROR
    return classify_error_message(str(exc))


def _to_rest_part(part) -> Dict[str, Any]:
    if isinstance(part, ImagePart):
        return {"inline_data": {"mime_type": part.mime_type, "data": base64.b64encode(part.data).decode()}}
    return {"text": part.text}


def _extract_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        feedback = data.get("promptFeedback") or {}
        if feedback.get("blockReason"):
            raise BackendError(BackendErrorKind.BLOCKED, str(feedback["blockReason"]))
        raise BackendError(BackendErrorKind.UNKNOWN, "no candidates in response")

    cand0 = candidates[0]
    if cand0.get("finishReason") == "SAFETY":
        raise BackendError(BackendErrorKind.BLOCKED, "candidate stopped by safety filters")
    parts = ((cand0.get("content") or {}).get("parts") or [])
    return "".join([p.get("text", "") for p in parts if isinstance(p, dict)])


class GeminiRestChatHandle(ChatHandle):
    """Keeps the conversation client-side and replays it on each generateContent call."""

    def __init__(self, system_prompt: str, backend: "GeminiRestBackend", api_key: str):
        super().__init__(system_prompt)
        self._backend = backend
        self._api_key = api_key
        self._contents: List[Dict[str, Any]] = []

    async def _send(self, parts: list) -> str:
        user_turn = {"role": "user", "parts": [_to_rest_part(p) for p in parts]}
        body = {
            "system_instruction": {"parts": [{"text": self.system_prompt}]},
            "contents": self._contents + [user_turn],
            "generationConfig": {
                "temperature": 0.7,
                "topP": 0.95,
                "topK": 40,
                "maxOutputTokens": 1024,
            },
        }

        data = await self._backend.post(f"models/{self._backend.model}:generateContent", self._api_key, body)
        text = _extract_text(data)
        if not text.strip():
            raise BackendError(BackendErrorKind.UNKNOWN, "empty response")

        self._contents.append(user_turn)
        self._contents.append({"role": "model", "parts": [{"text": text}]})
        return text


class GeminiRestBackend(BaseBackend):
    """Uses the Gemini Developer API generateContent endpoint directly."""

    name = "gemini-rest"

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        verify_key: Optional[bool] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.model = (model or Config.GEMINI_MODEL).strip()
        self.base_url = (base_url or Config.GEMINI_BASE_URL).rstrip("/")
        self.verify_key = Config.VERIFY_KEY_ON_START if verify_key is None else verify_key
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=Config.GEMINI_TIMEOUT_SECONDS, transport=self._transport)

    async def request(self, method: str, path: str, api_key: str, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}/v1beta/{path}"
        headers = {
            "Content-Type": "application/json",
            "x-goog-api-key": api_key,
        }
        try:
            async with self._client() as client:
                r = await client.request(method, url, json=body, headers=headers)
                r.raise_for_status()
                return r.json()
        except (httpx.HTTPStatusError, httpx.TransportError) as e:
            kind = _error_kind(e)
            logger.warning("Gemini REST error (%s): %s", kind.value, e)
            raise BackendError(kind, str(e)) from e

    async def post(self, path: str, api_key: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self.request("POST", path, api_key, body)

    async def open_chat(self, api_key: str, system_prompt: str) -> ChatHandle:
        if not api_key:
            raise BackendError(BackendErrorKind.INVALID_KEY, "no API key supplied")
        if self.verify_key:
            await self.request("GET", f"models/{self.model}", api_key)
        return GeminiRestChatHandle(system_prompt, self, api_key)
