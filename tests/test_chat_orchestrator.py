from __future__ import annotations

import asyncio

import pytest

from kajig.agents.chat_orchestrator import REFUSAL_REASON, ChatOrchestrator
from kajig.errors import TransportError, TurnInProgressError
from kajig.models.chat import Role, TurnStatus
from kajig.models.memory import MemoryQuery
from kajig.services.memory_store import InMemoryStore
from tests.fakes import FakeBackend, make_registry, make_settings, transport_error

REFUSAL = "I'm sorry, but I cannot help with that request."


def _orchestrator(*entries, **kwargs) -> ChatOrchestrator:
    config = kwargs.pop("config", None) or make_settings()
    return ChatOrchestrator(make_registry(*entries), config=config, **kwargs)


class TestRefusalFailover:
    @pytest.mark.asyncio
    async def test_refusal_switches_to_distinct_relaxed_backend(self):
        primary = FakeBackend("primary", REFUSAL)
        relaxed_a = FakeBackend("relaxed-a", "Here is the analysis.")
        relaxed_b = FakeBackend("relaxed-b", "unused")
        orchestrator = _orchestrator(
            (primary, False, True),
            (relaxed_a, True, False),
            (relaxed_b, True, False),
        )

        result = await orchestrator.chat("analyze the session policy")

        assert result.content == "Here is the analysis."
        assert result.backend_id == "relaxed-a"
        assert result.switched is True
        assert result.status is TurnStatus.DELIVERED
        assert len(orchestrator.switch_history) == 1
        event = orchestrator.switch_history[0]
        assert event.from_id == "primary"
        assert event.to_id == "relaxed-a"
        assert event.to_id != event.from_id
        assert event.reason == REFUSAL_REASON
        assert orchestrator.current_backend.id == "relaxed-a"
        assert relaxed_b.calls == []

    @pytest.mark.asyncio
    async def test_fallback_reissues_same_messages_with_higher_temperature(self):
        primary = FakeBackend("primary", REFUSAL)
        relaxed = FakeBackend("relaxed", "fine")
        orchestrator = _orchestrator((primary, False, True), (relaxed, True, False))

        await orchestrator.chat("hello", system_prompt="be brief")

        primary_messages, primary_options = primary.calls[0]
        fallback_messages, fallback_options = relaxed.calls[0]
        assert fallback_messages == primary_messages
        assert fallback_options.temperature > primary_options.temperature

    @pytest.mark.asyncio
    async def test_refusal_with_auto_switch_disabled_returns_refused_text(self):
        primary = FakeBackend("primary", REFUSAL)
        relaxed = FakeBackend("relaxed", "fine")
        orchestrator = _orchestrator(
            (primary, False, True),
            (relaxed, True, False),
            auto_switch=False,
        )

        result = await orchestrator.chat("hello")

        assert result.content == REFUSAL
        assert result.backend_id == "primary"
        assert result.switched is False
        assert orchestrator.switch_history == ()
        assert relaxed.calls == []

    @pytest.mark.asyncio
    async def test_relaxed_current_backend_switches_to_other_relaxed(self):
        r1 = FakeBackend("r1", REFUSAL)
        r2 = FakeBackend("r2", "answer")
        orchestrator = _orchestrator((r1, True, True), (r2, True, False))

        result = await orchestrator.chat("hello")

        assert result.backend_id == "r2"
        assert orchestrator.switch_history[0].to_id == "r2"

    @pytest.mark.asyncio
    async def test_refusal_without_relaxed_backends_returns_original_text(self):
        orchestrator = _orchestrator((FakeBackend("only", REFUSAL), False, True))

        result = await orchestrator.chat("hello")

        assert result.content == REFUSAL
        assert orchestrator.switch_history == ()

    @pytest.mark.asyncio
    async def test_false_positive_phrase_still_triggers_failover(self):
        primary = FakeBackend("primary", "I'm sorry to report the storage policy is missing.")
        relaxed = FakeBackend("relaxed", "Storage policy is missing.")
        orchestrator = _orchestrator((primary, False, True), (relaxed, True, False))

        result = await orchestrator.chat("check storage")

        assert result.backend_id == "relaxed"


class TestTransportFailover:
    @pytest.mark.asyncio
    async def test_transport_error_falls_back_once_and_records_error_reason(self):
        primary = FakeBackend("primary", error=transport_error("primary", "gateway returned 502"))
        relaxed = FakeBackend("relaxed", "recovered")
        orchestrator = _orchestrator((primary, False, True), (relaxed, True, False))

        result = await orchestrator.chat("hello")

        assert result.content == "recovered"
        assert result.status is TurnStatus.DELIVERED
        assert len(orchestrator.switch_history) == 1
        assert orchestrator.switch_history[0].reason == "gateway returned 502"

    @pytest.mark.asyncio
    async def test_fallback_failure_surfaces_terminal_error(self):
        primary = FakeBackend("primary", error=transport_error("primary"))
        relaxed = FakeBackend("relaxed", error=transport_error("relaxed", "also down"))
        spare = FakeBackend("spare", "never reached")
        orchestrator = _orchestrator(
            (primary, False, True),
            (relaxed, True, False),
            (spare, True, False),
        )

        result = await orchestrator.chat("hello")

        assert result.status is TurnStatus.FAILED
        assert result.content.startswith("Error: ")
        assert result.ok is False
        assert "also down" in result.content
        assert spare.calls == []
        with pytest.raises(TransportError):
            result.raise_for_status()
        assert orchestrator.history[-1].content == result.content

    @pytest.mark.asyncio
    async def test_auto_switch_disabled_propagates_without_fallback(self):
        primary = FakeBackend("primary", error=transport_error("primary", "refused connection"))
        relaxed = FakeBackend("relaxed", "unused")
        orchestrator = _orchestrator(
            (primary, False, True),
            (relaxed, True, False),
            auto_switch=False,
        )

        result = await orchestrator.chat("hello")

        assert result.status is TurnStatus.FAILED
        assert result.error is not None
        assert relaxed.calls == []
        assert orchestrator.switch_history == ()

    @pytest.mark.asyncio
    async def test_unexpected_backend_exception_is_treated_as_transport_error(self):
        primary = FakeBackend("primary", error=RuntimeError("socket closed"))
        relaxed = FakeBackend("relaxed", "recovered")
        orchestrator = _orchestrator((primary, False, True), (relaxed, True, False))

        result = await orchestrator.chat("hello")

        assert result.content == "recovered"
        assert "socket closed" in orchestrator.switch_history[0].reason

    @pytest.mark.asyncio
    async def test_timeout_consumes_the_single_fallback(self):
        primary = FakeBackend("primary", hang=True)
        relaxed = FakeBackend("relaxed", "fast answer")
        orchestrator = _orchestrator(
            (primary, False, True),
            (relaxed, True, False),
            config=make_settings(backend_timeout_seconds=0.05),
        )

        result = await orchestrator.chat("hello")

        assert result.content == "fast answer"
        assert "timed out" in orchestrator.switch_history[0].reason


class TestConversationState:
    @pytest.mark.asyncio
    async def test_history_records_user_and_assistant_turns(self):
        orchestrator = _orchestrator((FakeBackend("primary", "pong"), False, True))

        await orchestrator.chat("ping")

        roles = [turn.role for turn in orchestrator.history]
        assert roles == [Role.USER, Role.ASSISTANT]
        assert orchestrator.history[1].backend_id == "primary"

    @pytest.mark.asyncio
    async def test_only_last_ten_history_entries_are_replayed(self):
        backend = FakeBackend("primary", "ok")
        orchestrator = _orchestrator(
            (backend, False, True),
            config=make_settings(memory_context_limit=0),
        )

        for index in range(8):
            await orchestrator.chat(f"message {index}")

        messages, _ = backend.calls[-1]
        replayed = messages[:-1]
        assert len(replayed) == 10
        assert replayed[0]["content"] == "message 2"
        assert messages[-1] == {"role": "user", "content": "message 7"}

    @pytest.mark.asyncio
    async def test_memory_context_is_injected_as_system_message(self):
        memory = InMemoryStore()
        memory.store("Storage encryption policy was disabled on the lab device", tags=["note"])
        backend = FakeBackend("primary", "ok")
        orchestrator = _orchestrator((backend, False, True), memory=memory)

        await orchestrator.chat("what about storage encryption?", system_prompt="sys")

        messages, _ = backend.calls[0]
        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[1]["role"] == "system"
        assert "Storage encryption policy" in messages[1]["content"]

    @pytest.mark.asyncio
    async def test_audit_record_is_persisted(self):
        memory = InMemoryStore()
        orchestrator = _orchestrator(
            (FakeBackend("primary", REFUSAL), False, True),
            (FakeBackend("relaxed", "answer text"), True, False),
            memory=memory,
        )

        await orchestrator.chat("hello")

        entries = memory.retrieve(MemoryQuery(tags=["assistant"]))
        assert len(entries) == 1
        assert entries[0].metadata["backend_id"] == "relaxed"
        assert entries[0].metadata["switched"] is True

    @pytest.mark.asyncio
    async def test_exploit_intent_runs_background_reasoning(self):
        memory = InMemoryStore()
        orchestrator = _orchestrator((FakeBackend("primary", "answer"), False, True), memory=memory)

        await orchestrator.chat("Is there a vulnerability in the session handling?")
        await orchestrator.drain_background()

        conclusions = memory.retrieve(MemoryQuery(tags=["reasoning"]))
        assert len(conclusions) == 1
        assert conclusions[0].metadata["type"] == "reasoning"

    @pytest.mark.asyncio
    async def test_reasoning_failure_does_not_affect_turn(self):
        class BrokenReasoner:
            async def reason(self, topic, context):
                raise RuntimeError("reasoner offline")

        orchestrator = _orchestrator(
            (FakeBackend("primary", "answer"), False, True),
            reasoner=BrokenReasoner(),
        )

        result = await orchestrator.chat("exploit chain review")
        await orchestrator.drain_background()

        assert result.content == "answer"

    @pytest.mark.asyncio
    async def test_overlapping_turns_are_rejected(self):
        backend = FakeBackend("primary", hang=True)
        orchestrator = _orchestrator((backend, False, True))
        cancel = asyncio.Event()

        first = asyncio.create_task(orchestrator.chat("first", cancel=cancel))
        await asyncio.sleep(0.01)
        with pytest.raises(TurnInProgressError):
            await orchestrator.chat("second")

        cancel.set()
        result = await first
        assert result.status is TurnStatus.STOPPED
        assert orchestrator.busy is False

    def test_select_backend_changes_current(self):
        orchestrator = _orchestrator(
            (FakeBackend("primary"), False, True),
            (FakeBackend("relaxed"), True, False),
        )
        orchestrator.select_backend("relaxed")
        assert orchestrator.current_backend.id == "relaxed"
        with pytest.raises(KeyError):
            orchestrator.select_backend("missing")


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_keeps_partial_text_and_stops(self):
        backend = FakeBackend("primary", chunks=["Partial ", "answer"], hang=True)
        relaxed = FakeBackend("relaxed", "unused")
        orchestrator = _orchestrator((backend, False, True), (relaxed, True, False))
        cancel = asyncio.Event()

        turn = asyncio.create_task(orchestrator.chat("explain", cancel=cancel))
        await asyncio.sleep(0.01)
        cancel.set()
        result = await asyncio.wait_for(turn, timeout=1)

        assert result.status is TurnStatus.STOPPED
        assert result.content == "Partial answer"
        assert relaxed.calls == []
        assert orchestrator.switch_history == ()
        assert orchestrator.history[-1].content == "Partial answer"

    @pytest.mark.asyncio
    async def test_already_cancelled_turn_never_calls_backend(self):
        backend = FakeBackend("primary", "ok")
        orchestrator = _orchestrator((backend, False, True))
        cancel = asyncio.Event()
        cancel.set()

        result = await orchestrator.chat("hello", cancel=cancel)

        assert result.status is TurnStatus.STOPPED
        assert result.content == ""
        assert backend.calls == []


class TestOneShotCompletion:
    @pytest.mark.asyncio
    async def test_complete_sends_only_system_and_prompt(self):
        memory = InMemoryStore()
        memory.store("Storage encryption policy was disabled", tags=["note"])
        backend = FakeBackend("primary", "ok")
        orchestrator = _orchestrator((backend, False, True), memory=memory)
        await orchestrator.chat("earlier storage question")

        result = await orchestrator.complete("rewrite the storage finding", system_prompt="sys")

        messages, _ = backend.calls[-1]
        assert messages == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "rewrite the storage finding"},
        ]
        assert result.content == "ok"
        assert len(orchestrator.history) == 2

    @pytest.mark.asyncio
    async def test_complete_fails_over_and_audits(self):
        memory = InMemoryStore()
        orchestrator = _orchestrator(
            (FakeBackend("primary", REFUSAL), False, True),
            (FakeBackend("relaxed", "answer"), True, False),
            memory=memory,
        )

        result = await orchestrator.complete("hello")

        assert result.backend_id == "relaxed"
        assert result.switched is True
        assert orchestrator.switch_history[0].reason == REFUSAL_REASON
        assert orchestrator.history == ()
        assert len(memory.retrieve(MemoryQuery(tags=["assistant"]))) == 1
