"""Static probe catalog.

Most probes are pure data: a category plus the findings they always report.
Probes that need to look at the target are plain functions registered next
to them in ``CUSTOM_PROBES``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Union

from kajig.models.findings import Finding

ProbeResult = Union[list[Finding], Awaitable[list[Finding]]]


@dataclass(frozen=True, slots=True)
class ProbeSpec:
    id: str
    category: str
    findings: tuple[dict[str, Any], ...] = field(default_factory=tuple)

    def __call__(self, target: str | None = None) -> list[Finding]:
        return [Finding(category=self.category, **template) for template in self.findings]


@dataclass(frozen=True, slots=True)
class Probe:
    id: str
    run: Callable[[str | None], ProbeResult]


STATIC_PROBES: tuple[ProbeSpec, ...] = (
    ProbeSpec(
        id="developer_mode",
        category="developer-mode",
        findings=(
            {
                "name": "Developer Mode Reachable",
                "severity": "high",
                "confidence": 0.7,
                "vector": "Developer mode can be enabled from the recovery screen without an owner credential",
                "evidence": ("Recovery screen accessible", "No firmware write protect policy"),
                "invasiveness": "high",
            },
        ),
    ),
    ProbeSpec(
        id="session_management",
        category="session",
        findings=(
            {
                "name": "Long-Lived Session Tokens",
                "severity": "medium",
                "confidence": 0.85,
                "vector": "Session tokens outlive the idle lock timeout",
                "evidence": ("Idle lock policy unset", "Token refresh interval above 24h"),
                "invasiveness": "low",
            },
        ),
    ),
    ProbeSpec(
        id="storage",
        category="storage",
        findings=(
            {
                "name": "Unencrypted Removable Storage",
                "severity": "high",
                "confidence": 0.85,
                "vector": "External storage mounts without an encryption requirement",
                "evidence": ("External storage policy allows read-write",),
                "invasiveness": "medium",
            },
        ),
    ),
    ProbeSpec(
        id="update_channel",
        category="update",
        findings=(
            {
                "name": "Update Channel Pinned",
                "severity": "medium",
                "confidence": 0.6,
                "vector": "Target version prefix pins the device to an old milestone",
                "evidence": ("Target version prefix policy set",),
                "invasiveness": "low",
            },
        ),
    ),
    ProbeSpec(
        id="verified_boot",
        category="boot",
        findings=(
            {
                "name": "Verified Boot Downgrade Window",
                "severity": "critical",
                "confidence": 0.5,
                "vector": "Rollback protection index not advanced after the last firmware update",
                "evidence": ("Firmware rollback counter unchanged",),
                "invasiveness": "extreme",
            },
        ),
    ),
    ProbeSpec(
        id="kernel",
        category="kernel",
        findings=(
            {
                "name": "Outdated Kernel Branch",
                "severity": "critical",
                "confidence": 0.85,
                "vector": "Kernel branch is past its security support window",
                "evidence": ("Kernel version detected", "Branch end-of-life date passed"),
                "invasiveness": "extreme",
            },
        ),
    ),
    # Catalog entries with no current findings stay registered so coverage is explicit.
    ProbeSpec(id="firmware", category="firmware"),
    ProbeSpec(id="recovery_mode", category="recovery"),
    ProbeSpec(id="network", category="network"),
)


LOG_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"authentication.*failed", re.IGNORECASE), "Repeated Authentication Failures"),
    (re.compile(r"permission.*denied", re.IGNORECASE), "Permission Denied Events"),
    (re.compile(r"access.*denied", re.IGNORECASE), "Access Denied Events"),
    (re.compile(r"unauthorized", re.IGNORECASE), "Unauthorized Access Attempts"),
    (re.compile(r"security.*violation", re.IGNORECASE), "Security Policy Violations"),
)


def log_pattern_probe(target: str | None = None) -> list[Finding]:
    """Report each security-relevant log pattern present in the target text."""
    if not target:
        return []
    lines = target.splitlines()
    findings: list[Finding] = []
    for pattern, name in LOG_PATTERNS:
        matches = [line.strip() for line in lines if pattern.search(line)]
        if not matches:
            continue
        findings.append(
            Finding(
                name=name,
                category="logging",
                severity="medium",
                confidence=min(0.4 + 0.1 * len(matches), 0.8),
                vector="Security-relevant error pattern present in system logs",
                evidence=tuple(matches[:5]),
                invasiveness="low",
            )
        )
    return findings


def platform_probe(target: str | None = None) -> list[Finding]:
    if not target or "CrOS" not in target:
        return []
    return [
        Finding(
            name="ChromeOS Platform Detected",
            category="platform",
            severity="low",
            confidence=0.95,
            vector="Target identifies itself as ChromeOS; platform-specific checks apply",
            evidence=("User agent contains CrOS",),
            invasiveness="low",
        )
    ]


CUSTOM_PROBES: tuple[Probe, ...] = (
    Probe(id="log_patterns", run=log_pattern_probe),
    Probe(id="platform", run=platform_probe),
)


def default_probes() -> list[Probe]:
    return [Probe(id=spec.id, run=spec) for spec in STATIC_PROBES] + list(CUSTOM_PROBES)
