"""Chat backend for any OpenAI-compatible chat completions gateway."""
from __future__ import annotations

import time
from typing import Any

from loguru import logger

from kajig.backends.base import ChunkCallback
from kajig.config import settings
from kajig.errors import ParseError, TransportError
from kajig.models.chat import ChatOptions
from kajig.services import logger as log_service


def get_client() -> Any:
    """Create an AsyncOpenAI client pointed at the configured gateway."""
    from openai import AsyncOpenAI

    return AsyncOpenAI(
        api_key=settings.backend_api_key or "not-needed",
        base_url=settings.backend_base_url,
        max_retries=0,
    )


# Singleton
_client = None


def client() -> Any:
    """Get or create the shared gateway client."""
    global _client
    if _client is None:
        _client = get_client()
    return _client


def _delta_text(chunk: Any) -> str:
    choices = getattr(chunk, "choices", None)
    if choices is None:
        raise ParseError("chunk has no choices field")
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return ""
    return getattr(delta, "content", None) or ""


class OpenAICompatibleBackend:
    """Streams a chat completion for one model id behind the shared gateway."""

    def __init__(self, backend_id: str, *, model: str | None = None, api_client: Any | None = None):
        self.id = backend_id
        self.model = model or backend_id
        self._client = api_client

    async def chat(
        self,
        messages: list[dict[str, str]],
        options: ChatOptions,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        import openai

        active_client = self._client or client()
        t0 = time.monotonic()
        parts: list[str] = []
        try:
            stream = await active_client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                stream=True,
            )
            async for chunk in stream:
                try:
                    text = _delta_text(chunk)
                except ParseError:
                    logger.debug(f"Skipping malformed chunk from {self.id}")
                    continue
                if not text:
                    continue
                parts.append(text)
                if on_chunk is not None:
                    on_chunk(text)
        except openai.APIStatusError as exc:
            self._log(t0, "error", str(exc))
            raise TransportError(self.id, f"{self.id} returned HTTP {exc.status_code}: {exc.message}") from exc
        except openai.APIError as exc:
            self._log(t0, "error", str(exc))
            raise TransportError(self.id, f"{self.id} unreachable: {exc}") from exc

        self._log(t0, "success")
        return "".join(parts)

    def _log(self, t0: float, status: str, error: str | None = None) -> None:
        log_service.log_backend_call(
            backend_id=self.id,
            caller="openai_compatible",
            duration_ms=int((time.monotonic() - t0) * 1000),
            status=status,
            error=error,
        )
