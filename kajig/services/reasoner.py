from __future__ import annotations

import re
from typing import Any, Protocol

from kajig.models.memory import ReasoningResult, ReasoningStep


class Reasoner(Protocol):
    async def reason(self, topic: str, context: dict[str, Any]) -> ReasoningResult: ...


_PREREQUISITES = {
    "developer": "Developer mode reachable from the lock screen",
    "session": "Valid user session on the device",
    "storage": "Local file system access",
    "update": "Control over the update channel",
    "network": "Network position between device and server",
    "recovery": "Physical access for recovery boot",
}


class HeuristicReasoner:
    """Keyword-driven narrative: prerequisites, surface, impact."""

    async def reason(self, topic: str, context: dict[str, Any]) -> ReasoningResult:
        lowered = topic.lower()
        steps = [
            ReasoningStep(
                step=1,
                action="Classify topic",
                reasoning=f"Examining '{topic[:120]}' for a concrete weakness class",
                confidence=0.7,
                evidence=[topic[:120]],
            )
        ]

        prerequisites = [text for key, text in _PREREQUISITES.items() if key in lowered]
        steps.append(
            ReasoningStep(
                step=2,
                action="Check prerequisites",
                reasoning=(
                    f"Prerequisites: {', '.join(prerequisites)}"
                    if prerequisites
                    else "No known prerequisite matched"
                ),
                confidence=0.6 if prerequisites else 0.3,
                evidence=prerequisites,
            )
        )

        related = str(context.get("context", ""))
        overlap = sorted(
            set(re.findall(r"[a-z]{5,}", lowered)) & set(re.findall(r"[a-z]{5,}", related.lower()))
        )
        surface_confidence = min(0.4 + 0.05 * len(overlap), 0.9)
        steps.append(
            ReasoningStep(
                step=3,
                action="Correlate with answer",
                reasoning=f"{len(overlap)} shared terms between question and answer",
                confidence=surface_confidence,
                evidence=overlap[:10],
            )
        )

        confidence = round(sum(step.confidence for step in steps) / len(steps), 4)
        if confidence >= 0.6:
            verdict = "likely worth manual verification"
        elif confidence >= 0.45:
            verdict = "plausible but weakly supported"
        else:
            verdict = "insufficient support"
        return ReasoningResult(
            conclusion=f"{topic[:80]}: {verdict} (confidence {confidence:.2f})",
            steps=steps,
            confidence=confidence,
        )
