from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class Invasiveness(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EXTREME = "extreme"


@dataclass(frozen=True, slots=True)
class Verification:
    success: bool
    instructions: str | None = None


@dataclass(frozen=True, slots=True)
class Finding:
    """A heuristic weakness record. Never mutated; refinement derives new ones."""

    name: str
    category: str
    severity: Severity
    confidence: float
    vector: str
    evidence: tuple[str, ...] = ()
    invasiveness: Invasiveness = Invasiveness.LOW
    cycle: int = 1
    payload: str | None = None
    verification: Verification | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        if self.cycle < 1:
            raise ValueError(f"cycle must be >= 1, got {self.cycle}")
        # Accept plain strings/lists from catalogs and parsers.
        object.__setattr__(self, "severity", Severity(self.severity))
        object.__setattr__(self, "invasiveness", Invasiveness(self.invasiveness))
        object.__setattr__(self, "evidence", tuple(self.evidence))

    @property
    def key(self) -> tuple[str, str]:
        return (self.name, self.category)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "vector": self.vector,
            "evidence": list(self.evidence),
            "invasiveness": self.invasiveness.value,
            "cycle": self.cycle,
            "payload": self.payload,
            "verification": (
                {
                    "success": self.verification.success,
                    "instructions": self.verification.instructions,
                }
                if self.verification
                else None
            ),
        }


@dataclass(slots=True)
class EvolutionReport:
    findings: list[Finding] = field(default_factory=list)
    cycles_run: int = 0
    derived_per_cycle: dict[int, int] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        by_severity = {severity.value: 0 for severity in Severity}
        for finding in self.findings:
            by_severity[finding.severity.value] += 1
        return {
            "total": len(self.findings),
            "cycles_run": self.cycles_run,
            "derived_per_cycle": dict(self.derived_per_cycle),
            "by_severity": by_severity,
        }
