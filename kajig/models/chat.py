from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum

from kajig.errors import TransportError


def _utcnow() -> str:
    return datetime.now(UTC).isoformat()


class Role(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class TurnStatus(StrEnum):
    DELIVERED = "delivered"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BackendDescriptor:
    id: str
    name: str
    relaxed: bool = False
    default: bool = False
    description: str = ""


@dataclass(frozen=True, slots=True)
class ChatOptions:
    temperature: float = 0.7
    max_tokens: int = 2048


@dataclass(frozen=True, slots=True)
class SwitchEvent:
    from_id: str
    to_id: str
    reason: str
    timestamp: str = field(default_factory=_utcnow)


@dataclass(frozen=True, slots=True)
class Turn:
    role: Role
    content: str
    backend_id: str | None = None
    timestamp: str = field(default_factory=_utcnow)

    def as_message(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(slots=True)
class ChatResult:
    content: str
    backend_id: str
    status: TurnStatus = TurnStatus.DELIVERED
    switched: bool = False
    error: TransportError | None = None

    @property
    def ok(self) -> bool:
        return self.status is TurnStatus.DELIVERED

    def raise_for_status(self) -> "ChatResult":
        if self.error is not None:
            raise self.error
        return self
