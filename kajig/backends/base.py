from __future__ import annotations

from typing import Callable, Protocol, runtime_checkable

from kajig.models.chat import ChatOptions

ChunkCallback = Callable[[str], None]


@runtime_checkable
class ChatBackend(Protocol):
    """One text-generation capability, addressed by id.

    Implementations raise ``TransportError`` for transport failures. A refusal
    is ordinary returned text. ``on_chunk`` receives streamed deltas when the
    backend streams, so a cancelled call can keep what it already produced.
    """

    id: str

    async def chat(
        self,
        messages: list[dict[str, str]],
        options: ChatOptions,
        on_chunk: ChunkCallback | None = None,
    ) -> str: ...
