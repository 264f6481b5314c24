"""
Generation collaborators.

Anything with ``async generate(prompt, model=None) -> GenerationResult`` can
back the ``ai``/``list``/``research``/``extract`` capabilities.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from mdxe.mdxe_errors import GenerationError
from mdxe.mdxe_logging import get_logger

logger = get_logger("http")

DEFAULT_MODEL = "gpt-4o-mini"


@dataclass
class GenerationResult:
    text: str
    object: Any = None
    model: Optional[str] = None
    cached: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"text": self.text, "object": self.object, "model": self.model}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], *, cached: bool = False) -> 'GenerationResult':
        return cls(text=data.get("text", ""), object=data.get("object"),
                   model=data.get("model"), cached=cached)


class Generator(Protocol):
    async def generate(self, prompt: str, model: Optional[str] = None) -> GenerationResult:
        ...


class PlaceholderGenerator:
    """Deterministic offline stand-in used when no endpoint is configured."""

    def __init__(self, model: str = "placeholder"):
        self.model = model
        self.calls = 0

    async def generate(self, prompt: str, model: Optional[str] = None) -> GenerationResult:
        self.calls += 1
        return GenerationResult(text=f"Generated content for: {prompt}", model=model or self.model)


def _extract_text(payload: Any) -> str:
    """Pull assistant text out of a chat-completions payload."""
    if not isinstance(payload, dict):
        raise GenerationError("generation endpoint returned a non-object body")
    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise GenerationError("generation response has no choices")
    first = choices[0] if isinstance(choices[0], dict) else {}
    message = first.get("message") or {}
    text = message.get("content") if isinstance(message, dict) else None
    if text is None:
        text = first.get("text")
    if not isinstance(text, str):
        raise GenerationError("generation response has no text content")
    return text


class HttpGenerator:
    """
    OpenAI-compatible chat-completions client.

    Retries transport errors and 5xx answers with exponential backoff;
    4xx answers fail immediately.
    """

    def __init__(self, base_url: str, *, api_key: Optional[str] = None,
                 model: Optional[str] = None, timeout: float = 60.0,
                 retries: int = 2, backoff: float = 0.2,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def generate(self, prompt: str, model: Optional[str] = None) -> GenerationResult:
        model_id = model or self.model
        body = {"model": model_id, "messages": [{"role": "user", "content": prompt}]}
        url = f"{self.base_url}/chat/completions"

        async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=True,
                                     transport=self._transport) as client:
            last_exc: Optional[Exception] = None
            for attempt in range(self.retries + 1):
                try:
                    resp = await client.post(url, json=body, headers=self._headers())
                except httpx.TransportError as exc:
                    last_exc = exc
                else:
                    if 200 <= resp.status_code < 300:
                        try:
                            payload = resp.json()
                        except ValueError as exc:
                            raise GenerationError(f"generation endpoint returned invalid JSON: {exc}") from exc
                        return GenerationResult(text=_extract_text(payload), model=model_id)
                    preview = (resp.text or "")[:200]
                    last_exc = GenerationError(f"HTTP {resp.status_code} for {url}: {preview}")
                    if resp.status_code < 500:
                        raise last_exc
                if attempt < self.retries:
                    logger.warning("generation attempt %d failed: %s", attempt + 1, last_exc)
                    await asyncio.sleep(self.backoff * (2 ** attempt))
            if isinstance(last_exc, GenerationError):
                raise last_exc
            raise GenerationError(f"generation request to {url} failed: {last_exc}") from last_exc
