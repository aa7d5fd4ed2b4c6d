from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import logging
import os
from typing import Any, Dict, List, Optional

import httpx

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")
GEMINI_BASE_URL = os.getenv(
    "GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_TIMEOUT_SECONDS = float(os.getenv("GEMINI_TIMEOUT_SECONDS", "30"))

LOGGER = logging.getLogger("swadesh.gemini")


class GenerationError(Exception):
    """The upstream model did not produce a usable response."""


class UpstreamTimeoutError(GenerationError):
    """The upstream model did not answer before the deadline."""


class TextGenerator(ABC):
    """
    Anything that turns a prompt (plus optional system instruction and
    inline image) into text. Routes only ever talk to this interface.
    """

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        image_base64: Optional[str] = None,
        image_mime_type: str = "image/jpeg",
    ) -> str:
        raise NotImplementedError


def _extract_text(data: Dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text") or "" for part in parts if isinstance(part, dict)).strip()


class GeminiClient(TextGenerator):
    def __init__(
        self,
        api_key: Optional[str] = GEMINI_API_KEY,
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_BASE_URL,
        timeout: float = GEMINI_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/models/{self.model}:generateContent"

    def build_request_body(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        image_base64: Optional[str] = None,
        image_mime_type: str = "image/jpeg",
    ) -> Dict[str, Any]:
        parts: List[Dict[str, Any]] = []
        if image_base64:
            parts.append(
                {"inline_data": {"mime_type": image_mime_type, "data": image_base64}}
            )
        parts.append({"text": prompt})
        body: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
        if system_instruction:
            body["system_instruction"] = {"parts": [{"text": system_instruction}]}
        return body

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self.transport
        ) as client:
            return await client.post(
                self.endpoint,
                json=body,
                headers={
                    "Content-Type": "application/json",
                    "x-goog-api-key": self.api_key or "",
                },
            )

    async def generate(
        self,
        prompt: str,
        system_instruction: Optional[str] = None,
        image_base64: Optional[str] = None,
        image_mime_type: str = "image/jpeg",
    ) -> str:
        if not self.api_key:
            raise GenerationError("Gemini API key is not configured.")
        body = self.build_request_body(
            prompt, system_instruction, image_base64, image_mime_type
        )
        try:
            response = await asyncio.wait_for(self._post(body), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            raise UpstreamTimeoutError(
                f"Gemini did not respond within {self.timeout:g}s."
            ) from exc
        except httpx.HTTPError as exc:
            raise GenerationError(f"Error contacting Gemini: {exc}") from exc

        if response.status_code >= 400:
            raise GenerationError(
                f"Gemini returned {response.status_code}: {response.text[:500]}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise GenerationError(f"Invalid JSON from Gemini: {exc}") from exc
        if not isinstance(data, dict):
            raise GenerationError("Unexpected Gemini response payload.")
        text = _extract_text(data)
        if not text:
            LOGGER.info(
                "Gemini returned no text (finishReason=%s)",
                ((data.get("candidates") or [{}])[0] or {}).get("finishReason"),
            )
        return text
