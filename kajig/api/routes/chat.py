from __future__ import annotations

from fastapi import APIRouter, HTTPException

from kajig.agents.chat_orchestrator import ChatOrchestrator
from kajig.api import deps
from kajig.errors import TurnInProgressError
from kajig.models.schemas import (
    ChatMessageRequest,
    ChatReplyResponse,
    ChatSessionDetailResponse,
    ChatSessionRequest,
    ChatSessionResponse,
    SwitchEventResponse,
    TurnResponse,
)
from kajig.services.prompt_store import render_prompt

router = APIRouter(prefix="/api/chat/sessions", tags=["chat"])


def _require_session(session_id: str) -> ChatOrchestrator:
    orchestrator = deps.get_session(session_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return orchestrator


@router.post("", response_model=ChatSessionResponse)
async def create_chat_session(request: ChatSessionRequest):
    """Start a conversation, optionally pinned to a backend."""
    try:
        session_id, orchestrator = deps.create_session(
            backend_id=request.backend_id,
            auto_switch=request.auto_switch,
        )
    except KeyError as exc:
        raise HTTPException(status_code=400, detail=str(exc.args[0])) from exc
    return ChatSessionResponse(
        id=session_id,
        current_backend=orchestrator.current_backend.id,
        auto_switch=orchestrator.auto_switch,
    )


@router.get("/{session_id}", response_model=ChatSessionDetailResponse)
async def get_chat_session(session_id: str):
    orchestrator = _require_session(session_id)
    return ChatSessionDetailResponse(
        id=session_id,
        current_backend=orchestrator.current_backend.id,
        auto_switch=orchestrator.auto_switch,
        history=[
            TurnResponse(
                role=turn.role.value,
                content=turn.content,
                backend_id=turn.backend_id,
                timestamp=turn.timestamp,
            )
            for turn in orchestrator.history
        ],
        switch_history=[
            SwitchEventResponse(
                from_id=event.from_id,
                to_id=event.to_id,
                reason=event.reason,
                timestamp=event.timestamp,
            )
            for event in orchestrator.switch_history
        ],
    )


@router.post("/{session_id}/messages", response_model=ChatReplyResponse)
async def send_chat_message(session_id: str, request: ChatMessageRequest):
    """Run one conversational turn. Failed turns are returned, not raised."""
    orchestrator = _require_session(session_id)
    try:
        result = await orchestrator.chat(
            request.content,
            system_prompt=request.system_prompt or render_prompt("chat.system_prompt"),
        )
    except TurnInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return ChatReplyResponse(
        content=result.content,
        backend_id=result.backend_id,
        status=result.status.value,
        switched=result.switched,
    )


@router.delete("/{session_id}", status_code=204)
async def delete_chat_session(session_id: str):
    if not deps.delete_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found")
