"""Bounded multi-cycle refinement of low-confidence findings.

Cycle 1 collects probe findings (plus an optional analysis of a system dump),
merges them, and optionally runs active verification on strong candidates.
Each later cycle takes the previous cycle's findings below the confidence
threshold and asks the chat orchestrator to refine each one into a derived
finding. The loop stops when a cycle has no candidates or the cycle cap is hit.
"""
from __future__ import annotations

import dataclasses
import re
from typing import Callable

from loguru import logger

from kajig.agents.chat_orchestrator import ChatOrchestrator
from kajig.config import Settings, settings as default_settings
from kajig.models.findings import EvolutionReport, Finding, Severity, Verification
from kajig.probes.fanout import ProbeFanout
from kajig.probes.merger import merge_findings
from kajig.services import logger as log_service
from kajig.services.memory_store import MemoryStore
from kajig.services.prompt_store import render_prompt
from kajig.services.verifier import ActiveVerifier


ProgressCallback = Callable[[int, str], None]

VERIFIABLE_KEYWORDS = ("session", "storage")
DUMP_FINDING_KEYWORDS = (
    "vulnerab",
    "weak",
    "exposure",
    "exposed",
    "misconfig",
    "insecure",
    "outdated",
    "risk",
    "bypass",
)
DUMP_CATEGORY = "ai-analysis"
DUMP_CONFIDENCE = 0.6

_BULLET = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+")
_CYCLE_SUFFIX = re.compile(r"\s+\(cycle \d+\)$")
_SEVERITY_WORD = re.compile(r"\b(critical|high|medium|low)\b")


class EvolutionController:
    def __init__(
        self,
        orchestrator: ChatOrchestrator,
        *,
        fanout: ProbeFanout | None = None,
        verifier: ActiveVerifier | None = None,
        memory: MemoryStore | None = None,
        config: Settings | None = None,
    ):
        self.orchestrator = orchestrator
        self.fanout = fanout or ProbeFanout()
        self.verifier = verifier
        self.memory = memory
        self.config = config or default_settings

    async def run(
        self,
        target: str | None = None,
        system_dump: str | None = None,
        *,
        max_cycles: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> EvolutionReport:
        cap = self.config.evolution_max_cycles if max_cycles is None else max_cycles
        if cap < 1:
            raise ValueError(f"max_cycles must be >= 1, got {cap}")
        report = EvolutionReport()

        self._notify(on_progress, 1, "Running probes")
        cycle_findings = await self._initial_cycle(target, system_dump)
        if self.verifier is not None:
            cycle_findings = await self._verify(cycle_findings, target)
        accumulated = list(cycle_findings)
        report.cycles_run = 1
        report.derived_per_cycle[1] = len(cycle_findings)
        log_service.log_evolution_cycle(1, candidates=0, derived=len(cycle_findings))

        for cycle in range(2, cap + 1):
            candidates = [
                f for f in cycle_findings if f.confidence < self.config.evolution_confidence_threshold
            ]
            if not candidates:
                self._notify(on_progress, cycle, "No findings below threshold; stopping")
                break

            self._notify(on_progress, cycle, f"Refining {len(candidates)} findings")
            derived: list[Finding] = []
            failed = 0
            for parent in candidates:
                try:
                    child = await self._refine(parent, cycle)
                except Exception as exc:
                    failed += 1
                    logger.warning(f"Refining '{parent.name}' in cycle {cycle} failed: {exc}")
                    continue
                derived.append(child)
                self._remember(child)

            report.cycles_run = cycle
            report.derived_per_cycle[cycle] = len(derived)
            log_service.log_evolution_cycle(
                cycle, candidates=len(candidates), derived=len(derived), failed=failed
            )
            accumulated.extend(derived)
            cycle_findings = derived

        report.findings = merge_findings(accumulated)
        self._notify(on_progress, report.cycles_run, f"Done: {len(report.findings)} findings")
        return report

    async def _initial_cycle(self, target: str | None, system_dump: str | None) -> list[Finding]:
        raw = await self.fanout.collect(target)
        if system_dump and system_dump.strip():
            try:
                raw.extend(await self._analyze_dump(system_dump))
            except Exception as exc:
                logger.warning(f"System dump analysis failed: {exc}")
        return merge_findings(dataclasses.replace(f, cycle=1) for f in raw)

    async def _analyze_dump(self, system_dump: str) -> list[Finding]:
        result = await self.orchestrator.complete(
            render_prompt("evolution.dump_analysis", dump=system_dump),
            system_prompt=render_prompt("evolution.system_prompt"),
        )
        result.raise_for_status()
        return parse_findings(result.content, backend_id=result.backend_id)

    async def _verify(self, findings: list[Finding], target: str | None) -> list[Finding]:
        verified: list[Finding] = []
        for finding in findings:
            if not _is_verifiable(finding, self.config.verification_confidence_gate):
                verified.append(finding)
                continue
            try:
                outcome = await self.verifier.attempt(
                    target,
                    {"name": finding.name, "category": finding.category, "vector": finding.vector},
                )
            except Exception as exc:
                logger.warning(f"Active verification of '{finding.name}' failed: {exc}")
                verified.append(finding)
                continue
            if not outcome.success:
                verified.append(finding)
                continue
            verified.append(
                dataclasses.replace(
                    finding,
                    severity=Severity.CRITICAL,
                    confidence=1.0,
                    evidence=finding.evidence + ("verified:active",),
                    verification=Verification(success=True, instructions=outcome.instructions),
                )
            )
        return merge_findings(verified)

    async def _refine(self, parent: Finding, cycle: int) -> Finding:
        evidence = "\n".join(f"- {item}" for item in parent.evidence) or "- none"
        system_prompt = render_prompt("evolution.system_prompt")

        vector_result = await self.orchestrator.complete(
            render_prompt(
                "evolution.intensify_vector",
                name=parent.name,
                category=parent.category,
                severity=parent.severity.value,
                vector=parent.vector,
                evidence=evidence,
            ),
            system_prompt=system_prompt,
        )
        vector_result.raise_for_status()
        vector = vector_result.content.strip() or parent.vector

        payload_result = await self.orchestrator.complete(
            render_prompt(
                "evolution.synthetic_payload",
                name=parent.name,
                category=parent.category,
                vector=vector,
            ),
            system_prompt=system_prompt,
        )
        payload_result.raise_for_status()

        return Finding(
            name=derived_name(parent.name, cycle),
            category=parent.category,
            severity=parent.severity,
            confidence=self._next_confidence(parent.confidence),
            vector=vector,
            evidence=parent.evidence
            + (f"evolved:cycle-{cycle}", f"backend:{payload_result.backend_id}"),
            invasiveness=parent.invasiveness,
            cycle=cycle,
            payload=payload_result.content.strip() or None,
        )

    def _next_confidence(self, confidence: float) -> float:
        raised = confidence + self.config.evolution_confidence_step
        return round(min(raised, self.config.evolution_confidence_ceiling), 4)

    def _remember(self, finding: Finding) -> None:
        if self.memory is None:
            return
        try:
            self.memory.store(
                f"Finding: {finding.name}\nVector: {finding.vector}\nSeverity: {finding.severity.value}",
                {
                    "type": "finding",
                    "category": finding.category,
                    "severity": finding.severity.value,
                    "cycle": finding.cycle,
                },
                ["finding", finding.category, finding.severity.value],
            )
        except Exception as exc:
            logger.warning(f"Failed to persist finding '{finding.name}': {exc}")

    @staticmethod
    def _notify(callback: ProgressCallback | None, cycle: int, message: str) -> None:
        if callback is None:
            return
        try:
            callback(cycle, message)
        except Exception as exc:
            logger.warning(f"Progress callback raised, ignoring: {exc}")


def derived_name(name: str, cycle: int) -> str:
    return f"{_CYCLE_SUFFIX.sub('', name)} (cycle {cycle})"


def parse_findings(text: str, *, backend_id: str | None = None) -> list[Finding]:
    """Read one finding per line from free-form backend text."""
    findings: list[Finding] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        is_bullet = bool(_BULLET.match(stripped))
        lowered = stripped.lower()
        if not is_bullet and not any(keyword in lowered for keyword in DUMP_FINDING_KEYWORDS):
            continue
        body = _BULLET.sub("", stripped).strip().strip("*").strip()
        if len(body) < 6:
            continue
        name = re.split(r"[:.(]|\s-\s", body, maxsplit=1)[0].strip()[:80] or body[:80]
        evidence = ("source:system-dump",)
        if backend_id:
            evidence += (f"backend:{backend_id}",)
        findings.append(
            Finding(
                name=name,
                category=DUMP_CATEGORY,
                severity=_infer_severity(lowered),
                confidence=DUMP_CONFIDENCE,
                vector=body,
                evidence=evidence,
                invasiveness="low",
            )
        )
    return findings


def _infer_severity(lowered: str) -> Severity:
    found = [Severity(word) for word in _SEVERITY_WORD.findall(lowered)]
    return max(found, key=lambda severity: severity.rank, default=Severity.MEDIUM)


def _is_verifiable(finding: Finding, gate: float) -> bool:
    if finding.confidence <= gate:
        return False
    haystack = f"{finding.name} {finding.category}".lower()
    return any(keyword in haystack for keyword in VERIFIABLE_KEYWORDS)
