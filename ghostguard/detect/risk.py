"""Risk scoring for a finding set."""

from __future__ import annotations

from typing import Iterable

from ghostguard.detect.models import Finding, ScanTotals, Severity

SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}
MAX_RISK_SCORE = 100

_RISK_LEVELS: tuple[tuple[int, str], ...] = (
    (80, "Critical"),
    (60, "High"),
    (40, "Elevated"),
    (20, "Guarded"),
)


def count_by_severity(findings: Iterable[Finding]) -> ScanTotals:
    """Per-severity totals over non-ignored findings. ``files`` is left at 0."""
    counts = {severity: 0 for severity in Severity}
    ignored = 0
    for finding in findings:
        if finding.is_ignored:
            ignored += 1
            continue
        counts[finding.severity] += 1

    return ScanTotals(
        findings=sum(counts.values()),
        low=counts[Severity.LOW],
        medium=counts[Severity.MEDIUM],
        high=counts[Severity.HIGH],
        critical=counts[Severity.CRITICAL],
        ignored=ignored,
    )


def risk_from_totals(totals: ScanTotals) -> int:
    raw = sum(weight * totals.count(severity) for severity, weight in SEVERITY_WEIGHTS.items())
    return min(MAX_RISK_SCORE, raw)


def score(findings: Iterable[Finding]) -> tuple[int, ScanTotals]:
    """Reduce a finding set to a 0-100 risk score and per-severity totals.

    The weighting caps at 100: the score says how bad a scan is, not how
    many findings it has.
    """
    totals = count_by_severity(findings)
    return risk_from_totals(totals), totals


def risk_level(risk_score: float) -> str:
    """Gauge label for a score."""
    for threshold, label in _RISK_LEVELS:
        if risk_score >= threshold:
            return label
    return "Low"
