"""Append/query memory used for chat context and audit records."""
from __future__ import annotations

import itertools
import time
from datetime import UTC, datetime
from typing import Any, Protocol

from kajig.config import settings
from kajig.models.memory import MemoryEntry, MemoryQuery

_KEYWORDS = ("exploit", "vulnerability", "bypass", "critical", "high")
_SEVERITY_BOOST = {"critical": 0.3, "high": 0.2, "medium": 0.1, "low": 0.05}


class MemoryStore(Protocol):
    def store(
        self,
        content: str,
        metadata: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> str: ...

    def retrieve(self, query: MemoryQuery) -> list[MemoryEntry]: ...


def score_importance(content: str, metadata: dict[str, Any] | None = None) -> float:
    """Base 0.5, +0.1 per keyword, +severity boost, +recency (fresh entries get 0.2)."""
    lowered = content.lower()
    score = 0.5 + 0.1 * sum(1 for keyword in _KEYWORDS if keyword in lowered)
    severity = str((metadata or {}).get("severity", "")).lower()
    score += _SEVERITY_BOOST.get(severity, 0.0)
    score += 0.2
    return min(1.0, round(score, 4))


class InMemoryStore:
    """Process-local store with importance ranking and bounded capacity."""

    def __init__(self, capacity: int | None = None):
        self.capacity = max(int(capacity or settings.memory_capacity), 1)
        self._entries: dict[str, MemoryEntry] = {}
        self._counter = itertools.count(1)

    def __len__(self) -> int:
        return len(self._entries)

    def store(
        self,
        content: str,
        metadata: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> str:
        entry_id = f"mem_{int(time.time() * 1000)}_{next(self._counter)}"
        self._entries[entry_id] = MemoryEntry(
            id=entry_id,
            content=content,
            timestamp=datetime.now(UTC).isoformat(),
            importance=score_importance(content, metadata),
            metadata=dict(metadata or {}),
            tags=list(tags or []),
        )
        if len(self._entries) > self.capacity:
            self._evict_least_important()
        return entry_id

    def retrieve(self, query: MemoryQuery) -> list[MemoryEntry]:
        results = list(self._entries.values())
        if query.tags:
            wanted = set(query.tags)
            results = [entry for entry in results if wanted.intersection(entry.tags)]
        if query.min_importance is not None:
            results = [entry for entry in results if entry.importance >= query.min_importance]

        text = query.text.strip().lower()
        if text:
            terms = [term for term in text.split() if len(term) > 2] or [text]

            def relevance(entry: MemoryEntry) -> int:
                content = entry.content.lower()
                tags = [tag.lower() for tag in entry.tags]
                if text in content:
                    return len(terms) + 2
                hits = sum(1 for term in terms if term in content)
                if hits:
                    return hits
                return 1 if any(term in tag for term in terms for tag in tags) else 0

            scored = [(relevance(entry), entry) for entry in results]
            scored = [item for item in scored if item[0] > 0]
            scored.sort(key=lambda item: (item[0], item[1].importance), reverse=True)
            results = [entry for _, entry in scored]
        else:
            results.sort(key=lambda entry: entry.importance, reverse=True)

        if query.limit:
            results = results[: query.limit]
        return results

    def stats(self) -> dict[str, Any]:
        by_tag: dict[str, int] = {}
        by_severity: dict[str, int] = {}
        for entry in self._entries.values():
            for tag in entry.tags:
                by_tag[tag] = by_tag.get(tag, 0) + 1
            severity = str(entry.metadata.get("severity", "unknown"))
            by_severity[severity] = by_severity.get(severity, 0) + 1
        return {"total": len(self._entries), "by_tag": by_tag, "by_severity": by_severity}

    def _evict_least_important(self) -> None:
        ranked = sorted(self._entries.values(), key=lambda entry: entry.importance)
        for entry in ranked[: max(len(ranked) // 10, 1)]:
            del self._entries[entry.id]
