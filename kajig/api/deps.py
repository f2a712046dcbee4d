from __future__ import annotations

import uuid
from collections import OrderedDict

from loguru import logger

from kajig.agents.chat_orchestrator import ChatOrchestrator
from kajig.backends.registry import BackendRegistry, build_registry
from kajig.config import settings
from kajig.services.memory_store import InMemoryStore

_registry: BackendRegistry | None = None
_memory: InMemoryStore | None = None
# Oldest first; trimmed to settings.max_chat_sessions on every create.
_sessions: OrderedDict[str, ChatOrchestrator] = OrderedDict()


def get_registry() -> BackendRegistry:
    global _registry
    if _registry is None:
        _registry = build_registry()
    return _registry


def get_memory() -> InMemoryStore:
    global _memory
    if _memory is None:
        _memory = InMemoryStore()
    return _memory


def create_session(backend_id: str | None = None, auto_switch: bool | None = None) -> tuple[str, ChatOrchestrator]:
    session_id = str(uuid.uuid4())
    orchestrator = ChatOrchestrator(
        get_registry(),
        memory=get_memory(),
        backend_id=backend_id,
        auto_switch=auto_switch,
    )
    _sessions[session_id] = orchestrator
    _evict_idle_sessions(keep=session_id)
    return session_id, orchestrator


def get_session(session_id: str) -> ChatOrchestrator | None:
    orchestrator = _sessions.get(session_id)
    if orchestrator is not None:
        _sessions.move_to_end(session_id)
    return orchestrator


def delete_session(session_id: str) -> bool:
    return _sessions.pop(session_id, None) is not None


def _evict_idle_sessions(keep: str) -> None:
    limit = max(settings.max_chat_sessions, 1)
    # Sessions with a turn in flight are never evicted.
    idle = [sid for sid, orch in _sessions.items() if sid != keep and not orch.busy]
    for session_id in idle:
        if len(_sessions) <= limit:
            break
        del _sessions[session_id]
        logger.info(f"Evicted least recently used chat session {session_id}")


def reset_state() -> None:
    global _registry, _memory
    _registry = None
    _memory = None
    _sessions.clear()
