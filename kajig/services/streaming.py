from __future__ import annotations

from typing import Any

from kajig.models.events import EventType, SSEEvent
from kajig.models.findings import EvolutionReport


def scan_started(**kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.SCAN_STARTED, data=kwargs)


def cycle_progress(cycle: int, message: str) -> SSEEvent:
    return SSEEvent(event=EventType.CYCLE_PROGRESS, data={"cycle": cycle, "message": message})


def scan_complete(report: EvolutionReport) -> SSEEvent:
    return SSEEvent(
        event=EventType.SCAN_COMPLETE,
        data={
            "summary": report.summary(),
            "findings": [finding.to_dict() for finding in report.findings],
        },
    )


def error(message: str, **kwargs: Any) -> SSEEvent:
    return SSEEvent(event=EventType.ERROR, data={"message": message, **kwargs})
