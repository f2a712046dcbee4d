from __future__ import annotations

from typing import Iterable

from kajig.models.findings import Finding


def dedupe_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Drop later findings whose (name, category) was already seen."""
    seen: set[tuple[str, str]] = set()
    unique: list[Finding] = []
    for finding in findings:
        if finding.key in seen:
            continue
        seen.add(finding.key)
        unique.append(finding)
    return unique


def rank_findings(findings: Iterable[Finding]) -> list[Finding]:
    """Severity rank descending, then confidence descending; input order on ties."""
    return sorted(findings, key=lambda f: (-f.severity.rank, -f.confidence))


def merge_findings(findings: Iterable[Finding]) -> list[Finding]:
    return rank_findings(dedupe_findings(findings))
