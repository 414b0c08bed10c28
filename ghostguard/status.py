"""System status derived from scan history.

Nothing here is stored: every value is recomputed from the summaries the
caller passes in, so the displayed status cannot disagree with history.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

from ghostguard.detect.models import ScanSummary
from ghostguard.detect.risk import risk_level

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SystemStatus:
    protected: bool
    label: str
    risk_score: int
    risk_level: str
    last_scan_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "protected": self.protected,
            "label": self.label,
            "riskScore": self.risk_score,
            "riskLevel": self.risk_level,
            "lastScanId": self.last_scan_id,
        }


@dataclass(frozen=True)
class HistoryStats:
    total_scans: int
    total_findings: int
    average_risk: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalScans": self.total_scans,
            "totalFindings": self.total_findings,
            "averageRisk": round(self.average_risk, 1),
        }


def derive_status(latest: ScanSummary | None, risk_threshold: int) -> SystemStatus:
    """Protection status for the most recent scan.

    Protected while the latest risk score stays under ``risk_threshold``.
    """
    if latest is None:
        return SystemStatus(protected=False, label="No scans yet", risk_score=0, risk_level="Low")

    protected = latest.risk_score < risk_threshold
    return SystemStatus(
        protected=protected,
        label="Active" if protected else "At risk",
        risk_score=latest.risk_score,
        risk_level=risk_level(latest.risk_score),
        last_scan_id=latest.id,
    )


def latest_summary(summaries: Sequence[ScanSummary]) -> ScanSummary | None:
    if not summaries:
        return None
    return max(summaries, key=lambda summary: summary.finished_at)


def summarize_history(summaries: Sequence[ScanSummary]) -> HistoryStats:
    if not summaries:
        return HistoryStats(total_scans=0, total_findings=0, average_risk=0.0)
    return HistoryStats(
        total_scans=len(summaries),
        total_findings=sum(summary.totals.findings for summary in summaries),
        average_risk=sum(summary.risk_score for summary in summaries) / len(summaries),
    )


def load_history(report_dir: Path) -> list[ScanSummary]:
    """Summaries of the JSON scan reports saved under ``report_dir``."""
    report_dir = Path(report_dir)
    if not report_dir.is_dir():
        return []

    summaries = []
    for path in sorted(report_dir.glob("*.json")):
        if path.name.endswith(".sarif.json"):
            continue
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            summaries.append(ScanSummary.from_dict(data["summary"]))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.warning(f"Skipping unreadable report {path.name}: {exc}")
    return summaries
