from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import httpx
import openai
import pytest

from kajig.backends.openai_compatible import OpenAICompatibleBackend
from kajig.errors import TransportError
from kajig.models.chat import ChatOptions


def _chunk(text):
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=text))])


class _Stream:
    def __init__(self, chunks):
        self._chunks = list(chunks)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._chunks:
            raise StopAsyncIteration
        return self._chunks.pop(0)


def _client(create):
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


@pytest.mark.asyncio
async def test_streams_deltas_to_callback_and_joins_text():
    create = AsyncMock(return_value=_Stream([_chunk("Hel"), _chunk(None), _chunk("lo")]))
    backend = OpenAICompatibleBackend("gw/model-a", api_client=_client(create))
    seen: list[str] = []

    with patch("kajig.services.logger.log_backend_call") as log_call:
        text = await backend.chat(
            [{"role": "user", "content": "hi"}],
            ChatOptions(temperature=0.9, max_tokens=64),
            on_chunk=seen.append,
        )

    assert text == "Hello"
    assert seen == ["Hel", "lo"]
    kwargs = create.await_args.kwargs
    assert kwargs["model"] == "gw/model-a"
    assert kwargs["temperature"] == 0.9
    assert kwargs["max_tokens"] == 64
    assert kwargs["stream"] is True
    assert log_call.call_args.kwargs["status"] == "success"


@pytest.mark.asyncio
async def test_malformed_chunks_are_skipped():
    create = AsyncMock(return_value=_Stream([SimpleNamespace(), _chunk("ok"), SimpleNamespace(choices=[])]))
    backend = OpenAICompatibleBackend("gw/model-a", api_client=_client(create))

    assert await backend.chat([], ChatOptions()) == "ok"


@pytest.mark.asyncio
async def test_connection_error_maps_to_transport_error():
    request = httpx.Request("POST", "http://localhost:8080/v1/chat/completions")
    create = AsyncMock(side_effect=openai.APIConnectionError(request=request))
    backend = OpenAICompatibleBackend("gw/model-a", api_client=_client(create))

    with pytest.raises(TransportError) as excinfo:
        await backend.chat([], ChatOptions())

    assert excinfo.value.backend_id == "gw/model-a"
    assert "unreachable" in str(excinfo.value)


@pytest.mark.asyncio
async def test_http_status_error_maps_to_transport_error():
    request = httpx.Request("POST", "http://localhost:8080/v1/chat/completions")
    response = httpx.Response(503, request=request)
    create = AsyncMock(
        side_effect=openai.APIStatusError("Service Unavailable", response=response, body=None)
    )
    backend = OpenAICompatibleBackend("gw/model-a", api_client=_client(create))

    with pytest.raises(TransportError) as excinfo:
        await backend.chat([], ChatOptions())

    assert "503" in str(excinfo.value)


def test_model_defaults_to_backend_id():
    assert OpenAICompatibleBackend("gw/model-a").model == "gw/model-a"
    assert OpenAICompatibleBackend("alias", model="gw/model-b").model == "gw/model-b"
