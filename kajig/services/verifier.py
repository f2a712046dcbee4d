from __future__ import annotations

from typing import Any, Protocol

from kajig.models.memory import VerificationOutcome


class ActiveVerifier(Protocol):
    async def attempt(self, target: str | None, params: dict[str, Any]) -> VerificationOutcome: ...


class NullVerifier:
    """Default verifier when no interactive verification is configured."""

    async def attempt(self, target: str | None, params: dict[str, Any]) -> VerificationOutcome:
        return VerificationOutcome(success=False)
