from __future__ import annotations

from typing import Iterable, Mapping

from kajig.backends.base import ChatBackend
from kajig.models.chat import BackendDescriptor

DEFAULT_DESCRIPTORS: tuple[BackendDescriptor, ...] = (
    BackendDescriptor(
        id="Qwen/Qwen2.5-7B-Instruct",
        name="qwen-2.5",
        relaxed=False,
        default=True,
        description="Default model for findings analysis.",
    ),
    BackendDescriptor(
        id="meta-llama/Llama-3.3-70B-Instruct",
        name="Llama-3.3-70B",
        relaxed=True,
        description="Large general model. Fewer declined answers.",
    ),
    BackendDescriptor(
        id="mistralai/Mixtral-8x7B-Instruct-v0.1",
        name="Mixtral-8x7B",
        relaxed=True,
        description="Mixture of experts. Balanced responses.",
    ),
    BackendDescriptor(
        id="deepseek-ai/DeepSeek-V3",
        name="DeepSeek-V3",
        relaxed=True,
        description="Strong reasoning model.",
    ),
    BackendDescriptor(
        id="Qwen/Qwen2.5-72B-Instruct",
        name="Qwen2.5-72B",
        relaxed=True,
        description="High capability model.",
    ),
)


class BackendRegistry:
    """Static, read-only catalog of backend descriptors and their chat capabilities."""

    def __init__(
        self,
        descriptors: Iterable[BackendDescriptor],
        backends: Mapping[str, ChatBackend],
    ):
        self._descriptors = tuple(descriptors)
        if not self._descriptors:
            raise ValueError("BackendRegistry needs at least one descriptor")
        missing = [d.id for d in self._descriptors if d.id not in backends]
        if missing:
            raise ValueError(f"No backend registered for: {', '.join(missing)}")
        self._backends = dict(backends)

    def get_default(self) -> BackendDescriptor:
        return next((d for d in self._descriptors if d.default), self._descriptors[0])

    def get_all(self) -> list[BackendDescriptor]:
        return list(self._descriptors)

    def get_relaxed(self) -> list[BackendDescriptor]:
        return [d for d in self._descriptors if d.relaxed]

    def get(self, backend_id: str) -> BackendDescriptor:
        for descriptor in self._descriptors:
            if descriptor.id == backend_id:
                return descriptor
        raise KeyError(f"Unknown backend: {backend_id}")

    def backend(self, backend_id: str) -> ChatBackend:
        self.get(backend_id)
        return self._backends[backend_id]

    def pick_fallback(self, current_id: str) -> BackendDescriptor | None:
        """First relaxed backend other than ``current_id``; else the first relaxed one."""
        relaxed = self.get_relaxed()
        if not relaxed:
            return None
        return next((d for d in relaxed if d.id != current_id), relaxed[0])


def build_registry(
    descriptors: Iterable[BackendDescriptor] = DEFAULT_DESCRIPTORS,
) -> BackendRegistry:
    """Wire each descriptor to an OpenAI-compatible backend on the shared gateway."""
    from kajig.backends.openai_compatible import OpenAICompatibleBackend

    descriptors = tuple(descriptors)
    return BackendRegistry(
        descriptors,
        {d.id: OpenAICompatibleBackend(d.id) for d in descriptors},
    )
