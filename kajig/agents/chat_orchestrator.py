"""One conversation with backend selection, refusal detection and failover.

A ``ChatOrchestrator`` is single-owner: it holds the current backend, the
conversation history and the switch log for exactly one conversation.
Overlapping ``chat()`` calls on the same instance are rejected with
``TurnInProgressError``; callers serialize turns.

Each turn ends in one of three terminal states:

* ``delivered``: the primary answered, or the single fallback attempt answered
  after a refusal or transport error.
* ``stopped``: the caller's cancel event fired; partial text is kept.
* ``failed``: the transport error could not be recovered; the assistant turn
  carries a readable ``Error: ...`` string and ``ChatResult.error`` holds the
  exception.
"""
from __future__ import annotations

import asyncio
from typing import Any

from loguru import logger

from kajig.agents.refusal import PhraseRefusalClassifier, RefusalClassifier
from kajig.backends.registry import BackendRegistry
from kajig.config import Settings, settings as default_settings
from kajig.errors import ParseError, TransportError, TurnInProgressError
from kajig.models.chat import (
    BackendDescriptor,
    ChatOptions,
    ChatResult,
    Role,
    SwitchEvent,
    Turn,
    TurnStatus,
)
from kajig.models.memory import MemoryQuery
from kajig.services import logger as log_service
from kajig.services.memory_store import InMemoryStore, MemoryStore
from kajig.services.prompt_store import render_prompt
from kajig.services.reasoner import HeuristicReasoner, Reasoner


REFUSAL_REASON = "Model refused to continue"
EXPLOIT_INTENT_KEYWORDS = ("exploit", "vulnerability", "weakness", "chromeos")


class _TurnStopped(Exception):
    """Internal: the cancel event fired while a backend call was running."""


class ChatOrchestrator:
    def __init__(
        self,
        registry: BackendRegistry,
        *,
        memory: MemoryStore | None = None,
        reasoner: Reasoner | None = None,
        classifier: RefusalClassifier | None = None,
        auto_switch: bool | None = None,
        backend_id: str | None = None,
        config: Settings | None = None,
    ):
        self.registry = registry
        self.config = config or default_settings
        self.memory = memory if memory is not None else InMemoryStore()
        self.reasoner = reasoner if reasoner is not None else HeuristicReasoner()
        self.classifier = classifier or PhraseRefusalClassifier()
        self.auto_switch = self.config.auto_switch if auto_switch is None else auto_switch
        self._current = registry.get(backend_id) if backend_id else registry.get_default()
        self._history: list[Turn] = []
        self._switch_history: list[SwitchEvent] = []
        self._in_flight = False
        self._background: set[asyncio.Task[Any]] = set()

    # --- state views ---

    @property
    def current_backend(self) -> BackendDescriptor:
        return self._current

    @property
    def history(self) -> tuple[Turn, ...]:
        return tuple(self._history)

    @property
    def switch_history(self) -> tuple[SwitchEvent, ...]:
        return tuple(self._switch_history)

    @property
    def busy(self) -> bool:
        return self._in_flight

    def select_backend(self, backend_id: str) -> BackendDescriptor:
        if self._in_flight:
            raise TurnInProgressError("Cannot change backend while a turn is running")
        self._current = self.registry.get(backend_id)
        return self._current

    # --- turn ---

    async def chat(
        self,
        text: str,
        *,
        system_prompt: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ChatResult:
        self._begin_turn()
        try:
            messages = self._build_messages(text, system_prompt)
            result = await self._complete(messages, cancel)
            self._record(text, result)
        finally:
            self._in_flight = False

        if _has_exploit_intent(text):
            self._spawn_reasoning(text, result.content)
        return result

    async def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = None,
        cancel: asyncio.Event | None = None,
    ) -> ChatResult:
        """One-shot turn with refusal detection and failover.

        Only ``system_prompt`` and ``prompt`` are sent: no history replay and no
        memory context. The exchange is audited to memory but not appended to
        the conversation history, so repeated calls with the same prompt send
        the same messages.
        """
        self._begin_turn()
        try:
            messages: list[dict[str, str]] = []
            if system_prompt:
                messages.append({"role": Role.SYSTEM.value, "content": system_prompt})
            messages.append({"role": Role.USER.value, "content": prompt})
            result = await self._complete(messages, cancel)
            self._audit(prompt, result)
        finally:
            self._in_flight = False
        return result

    async def drain_background(self) -> None:
        """Wait for fire-and-forget reasoning tasks started by earlier turns."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # --- internals ---

    def _begin_turn(self) -> None:
        if self._in_flight:
            raise TurnInProgressError("A turn is already running on this conversation")
        self._in_flight = True

    def _build_messages(self, text: str, system_prompt: str | None) -> list[dict[str, str]]:
        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": Role.SYSTEM.value, "content": system_prompt})

        context = self._memory_context(text)
        if context:
            messages.append({"role": Role.SYSTEM.value, "content": context})

        conversational = [t for t in self._history if t.role in (Role.USER, Role.ASSISTANT)]
        window = max(int(self.config.history_window), 0)
        recent = conversational[-window:] if window else []
        messages.extend(turn.as_message() for turn in recent)
        messages.append({"role": Role.USER.value, "content": text})
        return messages

    def _memory_context(self, text: str) -> str:
        limit = int(self.config.memory_context_limit)
        if limit <= 0:
            return ""
        try:
            entries = self.memory.retrieve(MemoryQuery(text=text, limit=limit))
        except Exception as exc:
            logger.warning(f"Memory retrieval failed, continuing without context: {exc}")
            return ""
        if not entries:
            return ""
        lines = "\n".join(f"- {entry.content[:300]}" for entry in entries)
        return render_prompt("chat.memory_context", entries=lines)

    async def _complete(
        self,
        messages: list[dict[str, str]],
        cancel: asyncio.Event | None,
    ) -> ChatResult:
        primary = self._current
        partial: list[str] = []
        options = ChatOptions(
            temperature=self.config.default_temperature,
            max_tokens=self.config.max_tokens,
        )
        try:
            content = await self._call(primary.id, messages, options, partial, cancel)
        except _TurnStopped:
            return ChatResult("".join(partial), primary.id, status=TurnStatus.STOPPED)
        except TransportError as exc:
            if not self.auto_switch:
                return _failed(primary.id, exc)
            return await self._fallback(messages, cancel, reason=str(exc), error=exc)

        if self.auto_switch and self.classifier.is_refusal(content):
            return await self._fallback(messages, cancel, reason=REFUSAL_REASON, refused=content)
        return ChatResult(content, primary.id)

    async def _fallback(
        self,
        messages: list[dict[str, str]],
        cancel: asyncio.Event | None,
        *,
        reason: str,
        error: TransportError | None = None,
        refused: str = "",
    ) -> ChatResult:
        origin = self._current
        target = self.registry.pick_fallback(origin.id)
        if target is None:
            logger.warning(f"No relaxed backend registered; cannot fail over from {origin.id}")
            if error is not None:
                return _failed(origin.id, error)
            return ChatResult(refused, origin.id)

        self._switch_history.append(SwitchEvent(from_id=origin.id, to_id=target.id, reason=reason))
        self._current = target
        log_service.log_switch(origin.id, target.id, reason)

        partial: list[str] = []
        options = ChatOptions(
            temperature=self.config.fallback_temperature,
            max_tokens=self.config.max_tokens,
        )
        try:
            content = await self._call(target.id, messages, options, partial, cancel)
        except _TurnStopped:
            return ChatResult("".join(partial), target.id, status=TurnStatus.STOPPED, switched=True)
        except TransportError as exc:
            result = _failed(target.id, exc)
            result.switched = True
            return result
        return ChatResult(content, target.id, switched=True)

    async def _call(
        self,
        backend_id: str,
        messages: list[dict[str, str]],
        options: ChatOptions,
        buffer: list[str],
        cancel: asyncio.Event | None,
    ) -> str:
        if cancel is not None and cancel.is_set():
            raise _TurnStopped()

        backend = self.registry.backend(backend_id)
        call = asyncio.ensure_future(backend.chat(messages, options, on_chunk=buffer.append))
        stop = asyncio.ensure_future(cancel.wait()) if cancel is not None else None
        waiters = {call} if stop is None else {call, stop}
        timeout = self.config.backend_timeout
        try:
            done, _ = await asyncio.wait(
                waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            if stop is not None:
                stop.cancel()
            if not call.done():
                call.cancel()

        if call in done:
            try:
                return call.result()
            except TransportError:
                raise
            except ParseError as exc:
                logger.warning(f"Unreadable payload from {backend_id}, treating as empty: {exc}")
                return ""
            except Exception as exc:
                raise TransportError(backend_id, f"{backend_id} failed: {exc}") from exc

        try:
            await call
        except asyncio.CancelledError:
            pass
        except Exception as exc:
            logger.debug(f"Cancelled call to {backend_id} ended with {exc}")

        if stop is not None and stop in done:
            raise _TurnStopped()
        raise TransportError(backend_id, f"{backend_id} timed out after {timeout:g}s")

    def _record(self, text: str, result: ChatResult) -> None:
        self._history.append(Turn(role=Role.USER, content=text))
        self._history.append(
            Turn(role=Role.ASSISTANT, content=result.content, backend_id=result.backend_id)
        )
        self._audit(text, result)

    def _audit(self, text: str, result: ChatResult) -> None:
        try:
            self.memory.store(text, {"role": Role.USER.value}, ["chat", "user"])
            self.memory.store(
                result.content,
                {
                    "role": Role.ASSISTANT.value,
                    "backend_id": result.backend_id,
                    "switched": result.switched,
                    "status": result.status.value,
                },
                ["chat", "assistant"],
            )
        except Exception as exc:
            logger.warning(f"Failed to persist chat audit record: {exc}")

    def _spawn_reasoning(self, text: str, answer: str) -> None:
        task = asyncio.create_task(self._reason(text, answer))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _reason(self, text: str, answer: str) -> None:
        try:
            result = await self.reasoner.reason(text, {"context": answer})
            self.memory.store(
                result.conclusion,
                {"type": "reasoning", "confidence": result.confidence, "topic": text[:200]},
                ["reasoning"],
            )
        except Exception as exc:
            logger.warning(f"Background reasoning failed: {exc}")


def _has_exploit_intent(text: str) -> bool:
    lowered = text.lower()
    return any(keyword in lowered for keyword in EXPLOIT_INTENT_KEYWORDS)


def _failed(backend_id: str, exc: TransportError) -> ChatResult:
    return ChatResult(
        content=f"Error: {exc}",
        backend_id=backend_id,
        status=TurnStatus.FAILED,
        error=exc,
    )
