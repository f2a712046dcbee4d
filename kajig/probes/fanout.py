from __future__ import annotations

import asyncio
import inspect
from typing import Iterable

from loguru import logger

from kajig.errors import ProbeError
from kajig.models.findings import Finding
from kajig.probes.catalog import Probe, default_probes
from kajig.services import logger as log_service


class ProbeFanout:
    """Run every registered probe concurrently and keep whatever succeeded."""

    def __init__(self, probes: Iterable[Probe] | None = None):
        self.probes = list(probes) if probes is not None else default_probes()

    async def collect(self, target: str | None = None) -> list[Finding]:
        raw_results = await asyncio.gather(
            *(self._run_probe(probe, target) for probe in self.probes),
            return_exceptions=True,
        )

        findings: list[Finding] = []
        failed: list[str] = []
        for probe, item in zip(self.probes, raw_results):
            if isinstance(item, BaseException):
                if not isinstance(item, Exception):
                    raise item
                failed.append(probe.id)
                logger.warning(str(item))
                continue
            findings.extend(item)

        log_service.log_event(
            event_type="probe_fanout",
            message=f"{len(findings)} raw findings from {len(self.probes) - len(failed)} probes",
            failed_probes=failed,
        )
        return findings

    async def _run_probe(self, probe: Probe, target: str | None) -> list[Finding]:
        try:
            if inspect.iscoroutinefunction(probe.run):
                result = await probe.run(target)
            else:
                result = await asyncio.to_thread(probe.run, target)
                if inspect.isawaitable(result):
                    result = await result
            return list(result or [])
        except Exception as exc:
            raise ProbeError(probe.id, str(exc)) from exc
