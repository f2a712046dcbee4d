from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class MemoryEntry:
    id: str
    content: str
    timestamp: str
    importance: float
    metadata: dict[str, Any] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)


@dataclass(slots=True)
class MemoryQuery:
    text: str = ""
    tags: list[str] = field(default_factory=list)
    min_importance: float | None = None
    limit: int | None = None


@dataclass(slots=True)
class ReasoningStep:
    step: int
    action: str
    reasoning: str
    confidence: float
    evidence: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ReasoningResult:
    conclusion: str
    steps: list[ReasoningStep] = field(default_factory=list)
    confidence: float = 0.0


@dataclass(slots=True)
class VerificationOutcome:
    success: bool
    instructions: str | None = None
