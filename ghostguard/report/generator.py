"""Report generator.

Renders a scan report to a self-contained HTML page with Jinja2, and to
JSON and SARIF for programmatic consumption. The HTML and SARIF outputs
show only the redaction preview of each finding; the JSON report keeps
the verbatim snippet for the dashboard.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from ghostguard.detect.models import SEVERITY_ORDER, Finding, Severity
from ghostguard.pipeline import ScanReport

logger = logging.getLogger(__name__)

SARIF_SCHEMA_URL = (
    "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/main/"
    "sarif-2.1/schema/sarif-schema-2.1.0.json"
)
GHOSTGUARD_INFO_URI = "https://github.com/ghostguard/ghostguard"
GHOSTGUARD_VERSION = "0.1.0"

_TEMPLATE_DIR = Path(__file__).parent / "templates"


def _write(content: str, output_path: Path | None, kind: str) -> None:
    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(content, encoding="utf-8")
        logger.info(f"{kind} report saved to {output_path}")


def default_report_path(report: ScanReport, output_dir: Path, extension: str) -> Path:
    timestamp = report.summary.finished_at.strftime("%Y%m%d_%H%M%S")
    slug = (report.summary.source_name or "scan").replace("/", "_").replace(" ", "_")
    slug = "".join(char for char in slug if char.isalnum() or char in "._-") or "scan"
    return output_dir / f"{slug}_{timestamp}.{extension}"


def generate_html_report(report: ScanReport, output_path: Path | None = None) -> str:
    """Generate an HTML scan report."""
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATE_DIR)),
        autoescape=select_autoescape(["html"]),
    )

    template = env.get_template("report.html")
    findings = sorted(
        report.findings,
        key=lambda f: (f.is_ignored, -SEVERITY_ORDER.index(f.severity), f.file_path, f.line_start),
    )
    html = template.render(
        summary=report.summary,
        risk_level=report.risk_level,
        findings=findings,
        severities=list(reversed(SEVERITY_ORDER)),
        version=GHOSTGUARD_VERSION,
    )

    _write(html, output_path, "HTML")
    return html


def generate_json_report(report: ScanReport, output_path: Path | None = None) -> str:
    """Generate a JSON report for programmatic consumption."""
    json_str = json.dumps(report.to_dict(), indent=2, default=str)
    _write(json_str, output_path, "JSON")
    return json_str


def _severity_to_sarif_level(severity: Severity) -> str:
    """Map GhostGuard severities to SARIF levels."""
    if severity in (Severity.CRITICAL, Severity.HIGH):
        return "error"
    if severity == Severity.MEDIUM:
        return "warning"
    return "note"


def _to_relative_uri(file_path: str) -> str:
    """Ensure SARIF artifact URIs are relative, not absolute."""
    return Path(file_path).as_posix().lstrip("/")


def _sarif_result(finding: Finding) -> dict[str, object]:
    locations = finding.occurrences or []
    return {
        "ruleId": finding.rule_id,
        "level": _severity_to_sarif_level(finding.severity),
        "message": {
            "text": finding.reasoning
            or f"Hardcoded {finding.secret_type.value} detected by rule {finding.rule_id}"
        },
        "locations": [
            {
                "physicalLocation": {
                    "artifactLocation": {"uri": _to_relative_uri(location.file_path)},
                    "region": {
                        "startLine": location.line_start,
                        "endLine": location.line_end,
                    },
                }
            }
            for location in locations
        ],
        "partialFingerprints": {"ghostguard/v1": finding.fingerprint},
        "properties": {
            "secretType": finding.secret_type.value,
            "severity": finding.severity.value,
            "confidence": round(finding.confidence, 4),
            "degraded": finding.degraded,
            "snippetAfter": finding.snippet_after,
        },
        **({"suppressions": [{"kind": "external"}]} if finding.is_ignored else {}),
    }


def generate_sarif_report(report: ScanReport, output_path: Path | None = None) -> str:
    """Generate a SARIF v2.1.0 report."""
    used_rule_ids = {finding.rule_id for finding in report.findings}
    rules = [
        {
            "id": rule.id,
            "name": rule.name,
            "shortDescription": {"text": rule.description or rule.name},
            "defaultConfiguration": {"level": _severity_to_sarif_level(rule.severity)},
            "properties": {"tags": ["security", "secrets"], "secretType": rule.secret_type.value},
        }
        for rule in report.rules
        if rule.id in used_rule_ids
    ]

    sarif_data = {
        "$schema": SARIF_SCHEMA_URL,
        "version": "2.1.0",
        "runs": [
            {
                "tool": {
                    "driver": {
                        "name": "GhostGuard",
                        "version": GHOSTGUARD_VERSION,
                        "informationUri": GHOSTGUARD_INFO_URI,
                        "rules": rules,
                    }
                },
                "results": [_sarif_result(finding) for finding in report.findings],
                "properties": {
                    "scanId": report.summary.id,
                    "riskScore": report.summary.risk_score,
                },
            }
        ],
    }

    sarif_str = json.dumps(sarif_data, indent=2, default=str)
    _write(sarif_str, output_path, "SARIF")
    return sarif_str


REPORT_WRITERS = {
    "json": generate_json_report,
    "sarif": generate_sarif_report,
    "html": generate_html_report,
}

REPORT_EXTENSIONS = {
    "json": "json",
    "sarif": "sarif.json",
    "html": "html",
}
