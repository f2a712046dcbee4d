from __future__ import annotations

import asyncio
import json as _json

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from kajig.agents.chat_orchestrator import ChatOrchestrator
from kajig.agents.evolution import EvolutionController
from kajig.api.deps import get_memory, get_registry
from kajig.models.events import SSEEvent
from kajig.models.schemas import ScanRequest
from kajig.services import logger as log_service
from kajig.services import streaming

router = APIRouter(prefix="/api/scans", tags=["scans"])


@router.post("/stream")
async def stream_scan(request: ScanRequest):
    """SSE endpoint that streams evolution progress and the final ranked findings."""

    async def event_generator():
        queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue()

        def on_progress(cycle: int, message: str) -> None:
            queue.put_nowait(streaming.cycle_progress(cycle, message))

        async def run_scan() -> None:
            memory = get_memory()
            controller = EvolutionController(
                ChatOrchestrator(get_registry(), memory=memory),
                memory=memory,
            )
            try:
                report = await controller.run(
                    request.target,
                    request.system_dump,
                    max_cycles=request.max_cycles,
                    on_progress=on_progress,
                )
                queue.put_nowait(streaming.scan_complete(report))
            except Exception as exc:
                log_service.log_event(
                    event_type="scan_error",
                    message="Scan stream failed unexpectedly.",
                    error=str(exc),
                )
                queue.put_nowait(streaming.error("Scan stream failed unexpectedly."))
            finally:
                queue.put_nowait(None)

        started = streaming.scan_started(target=request.target, max_cycles=request.max_cycles)
        yield {"event": started.event.value, "data": _json.dumps(started.data)}

        task = asyncio.create_task(run_scan())
        try:
            while (event := await queue.get()) is not None:
                yield {"event": event.event.value, "data": _json.dumps(event.data)}
        finally:
            if not task.done():
                task.cancel()

    return EventSourceResponse(event_generator())
