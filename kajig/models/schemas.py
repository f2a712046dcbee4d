from __future__ import annotations

from pydantic import BaseModel, Field


# --- Requests ---


class ChatMessageRequest(BaseModel):
    content: str
    system_prompt: str | None = None


class ChatSessionRequest(BaseModel):
    backend_id: str | None = None
    auto_switch: bool | None = None


class ScanRequest(BaseModel):
    target: str | None = None
    system_dump: str | None = None
    max_cycles: int | None = Field(default=None, ge=1, le=20)


# --- Responses ---


class BackendInfo(BaseModel):
    id: str
    name: str
    relaxed: bool
    default: bool
    description: str


class BackendsResponse(BaseModel):
    backends: list[BackendInfo]


class TurnResponse(BaseModel):
    role: str
    content: str
    backend_id: str | None
    timestamp: str


class SwitchEventResponse(BaseModel):
    from_id: str
    to_id: str
    reason: str
    timestamp: str


class ChatSessionResponse(BaseModel):
    id: str
    current_backend: str
    auto_switch: bool


class ChatSessionDetailResponse(ChatSessionResponse):
    history: list[TurnResponse]
    switch_history: list[SwitchEventResponse]


class ChatReplyResponse(BaseModel):
    content: str
    backend_id: str
    status: str
    switched: bool
