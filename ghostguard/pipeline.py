"""Main scan orchestrator.

Wires together the stages of a GhostGuard scan:
1. Rules (snapshot + compile)
2. Detect (per-file match and classify, in parallel)
3. Aggregate (fingerprint, dedupe, ignore list)
4. Score (risk + totals, summary)
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Sequence

from ghostguard.analyze.adapter import ClassifierAdapter
from ghostguard.analyze.classifier import Classifier, LLMClassifier, build_classifier
from ghostguard.config import config
from ghostguard.detect.aggregator import aggregate
from ghostguard.detect.lines import LineIndex
from ghostguard.detect.matcher import PatternMatcher
from ghostguard.detect.models import (
    ConfidenceAdjustment,
    Finding,
    RawMatch,
    Rule,
    ScanMode,
    ScanSummary,
    ScanWarning,
    SourceArtifact,
    SourceType,
)
from ghostguard.detect.risk import risk_level, score
from ghostguard.ingest.ignore_list import IgnoreList
from ghostguard.ingest.source import ArtifactSet, artifacts_from_files, collect_artifacts
from ghostguard.rule_config import ScanConfig

logger = logging.getLogger(__name__)

_CONTEXT_RADIUS = 3


class EmptySourceError(Exception):
    """There is nothing to scan."""


class ScanInvariantError(Exception):
    """The scan produced an internally inconsistent result."""


class ScanCancelled(Exception):
    """The scan was cancelled before it completed."""


@dataclass
class ScanReport:
    """Everything a completed scan hands to its sinks."""

    summary: ScanSummary
    findings: list[Finding]
    rules: tuple[Rule, ...] = ()
    skipped_files: dict[str, int] = field(default_factory=dict)

    @property
    def active_findings(self) -> list[Finding]:
        return [finding for finding in self.findings if not finding.is_ignored]

    @property
    def risk_level(self) -> str:
        return risk_level(self.summary.risk_score)

    def finding(self, finding_id: str) -> Finding | None:
        for candidate in self.findings:
            if candidate.id == finding_id:
                return candidate
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "riskLevel": self.risk_level,
            "findings": [finding.to_dict() for finding in self.findings],
        }


@dataclass
class _FileResult:
    matches: list[RawMatch]
    adjustments: list[ConfidenceAdjustment]


def _scan_artifact(
    artifact: SourceArtifact,
    matcher: PatternMatcher,
    adapter: ClassifierAdapter,
    mode: ScanMode,
    cancel_event: threading.Event,
) -> _FileResult | None:
    if cancel_event.is_set():
        return None

    index = LineIndex(artifact.content)
    matches = matcher.match(artifact, index)
    contexts = [
        index.context(match.line_start, match.line_end, _CONTEXT_RADIUS) for match in matches
    ]
    adjustments = adapter.refine_batch(matches, contexts, mode)
    return _FileResult(matches=matches, adjustments=adjustments)


def _detect_all(
    artifacts: Sequence[SourceArtifact],
    matcher: PatternMatcher,
    adapter: ClassifierAdapter,
    mode: ScanMode,
    cancel_event: threading.Event,
    max_workers: int,
) -> list[_FileResult]:
    """Run per-file pipelines; one result slot per artifact, filled in any order."""
    slots: list[_FileResult | None] = [None] * len(artifacts)

    executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="ghostguard-scan")
    try:
        futures: dict[Future[_FileResult | None], int] = {
            executor.submit(_scan_artifact, artifact, matcher, adapter, mode, cancel_event): index
            for index, artifact in enumerate(artifacts)
        }
        pending = set(futures)
        while pending:
            done, pending = wait(pending, timeout=0.5, return_when=FIRST_COMPLETED)
            if cancel_event.is_set():
                break
            for future in done:
                slots[futures[future]] = future.result()
    finally:
        executor.shutdown(wait=True, cancel_futures=True)

    if cancel_event.is_set():
        raise ScanCancelled(
            f"Scan cancelled after {sum(1 for slot in slots if slot is not None)}"
            f"/{len(artifacts)} files"
        )
    return [slot for slot in slots if slot is not None]


def _check_invariants(findings: Sequence[Finding], summary: ScanSummary) -> None:
    fingerprints = [finding.fingerprint for finding in findings]
    if len(fingerprints) != len(set(fingerprints)):
        raise ScanInvariantError("Duplicate fingerprints in aggregated findings")
    if not summary.totals.is_consistent:
        raise ScanInvariantError(
            f"Severity totals do not sum to {summary.totals.findings}: {summary.totals}"
        )


def run_scan(
    artifacts: Sequence[SourceArtifact],
    rules: Iterable[Rule] | None = None,
    *,
    mode: ScanMode | None = None,
    ignored_fingerprints: Iterable[str] = (),
    classifier: Classifier | None = None,
    scan_config: ScanConfig | None = None,
    source_type: SourceType = SourceType.FILES,
    source_name: str = "",
    cancel_event: threading.Event | None = None,
    max_workers: int | None = None,
    scan_id: str | None = None,
) -> ScanReport:
    """Scan a set of artifacts.

    Args:
        artifacts: Files to scan; paths must be unique
        rules: Rule snapshot (default: built from ``scan_config``)
        mode: regex, ai or hybrid (default: ``scan_config.mode``)
        ignored_fingerprints: Findings to keep but mark ignored
        classifier: Classifier for ai/hybrid (default: configured backend)
        scan_config: Scan settings (default: built-in defaults)
        source_type: Files upload or repository snapshot
        source_name: Display name for the source
        cancel_event: Set to cancel; checked per file
        max_workers: Per-file parallelism bound

    Raises:
        EmptySourceError: No artifacts
        ScanCancelled: ``cancel_event`` was set before the scan finished
        ScanInvariantError: Aggregated result is inconsistent
    """

    if not artifacts:
        raise EmptySourceError("No files to scan")
    paths = [artifact.path for artifact in artifacts]
    if len(paths) != len(set(paths)):
        raise ValueError("Artifact paths must be unique within a scan")

    scan_config = scan_config or ScanConfig.default()
    mode = mode or scan_config.mode
    cancel_event = cancel_event or threading.Event()
    scan_id = scan_id or uuid.uuid4().hex[:12]
    started_at = datetime.now(timezone.utc)
    warnings: list[ScanWarning] = []

    logger.info("=" * 60)
    logger.info("STAGE 1: RULES")
    logger.info("=" * 60)
    rule_snapshot = tuple(rules) if rules is not None else scan_config.build_rules()
    matcher = PatternMatcher(rule_snapshot)
    for error in matcher.errors:
        warnings.append(
            ScanWarning(kind="rule_compilation", message=str(error), rule_id=error.rule_id)
        )
    logger.info(
        f"{len(matcher.compiled)} rules active, "
        f"{len(matcher.errors)} failed to compile, mode={mode.value}"
    )

    if mode != ScanMode.REGEX and classifier is None:
        try:
            classifier = build_classifier(config)
        except ValueError as exc:
            logger.warning(f"Classifier backend unavailable: {exc}")

    logger.info("=" * 60)
    logger.info("STAGE 2: DETECT")
    logger.info("=" * 60)
    with ClassifierAdapter(
        classifier,
        timeout=scan_config.classifier_timeout,
        max_concurrent=scan_config.max_concurrent,
    ) as adapter:
        results = _detect_all(
            artifacts,
            matcher,
            adapter,
            mode,
            cancel_event,
            max_workers or config.max_workers,
        )

    if isinstance(classifier, LLMClassifier):
        logger.info(classifier.client.usage.summary())

    raw_matches = [match for result in results for match in result.matches]
    adjustments = [adjustment for result in results for adjustment in result.adjustments]
    logger.info(f"{len(raw_matches)} raw matches across {len(artifacts)} files")

    degraded = sum(1 for adjustment in adjustments if adjustment.degraded)
    if degraded:
        warnings.append(
            ScanWarning(
                kind="classifier_unavailable",
                message=(
                    f"Classifier unavailable for {degraded} of {len(adjustments)} matches; "
                    "regex confidence used"
                ),
            )
        )

    logger.info("=" * 60)
    logger.info("STAGE 3: AGGREGATE")
    logger.info("=" * 60)
    findings = aggregate(
        raw_matches,
        adjustments,
        {artifact.path: artifact for artifact in artifacts},
        scan_id=scan_id,
        ignored_fingerprints=ignored_fingerprints,
        min_confidence=scan_config.min_confidence,
    )

    logger.info("=" * 60)
    logger.info("STAGE 4: SCORE")
    logger.info("=" * 60)
    risk_score, totals = score(findings)
    summary = ScanSummary(
        id=scan_id,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        mode=mode,
        totals=dataclasses.replace(totals, files=len(artifacts)),
        risk_score=risk_score,
        source_type=source_type,
        source_name=source_name,
        warnings=tuple(warnings),
    )
    _check_invariants(findings, summary)

    logger.info(
        f"Scan {scan_id} complete: {summary.totals.findings} findings "
        f"({summary.totals.ignored} ignored), risk {risk_score} ({risk_level(risk_score)}), "
        f"{summary.duration_seconds:.2f}s"
    )
    return ScanReport(summary=summary, findings=findings, rules=rule_snapshot)


def scan_paths(
    paths: Sequence[Path],
    *,
    scan_config: ScanConfig | None = None,
    ignore_list: IgnoreList | None = None,
    mode: ScanMode | None = None,
    classifier: Classifier | None = None,
    cancel_event: threading.Event | None = None,
    base: Path | None = None,
) -> ScanReport:
    """Collect artifacts from disk and scan them.

    A single directory is scanned as a repository snapshot; anything else
    is treated as an uploaded file set with paths relative to ``base``
    (the working directory by default).
    """

    scan_config = scan_config or ScanConfig.default()
    paths = [Path(path) for path in paths]

    if len(paths) == 1 and paths[0].is_dir():
        collected: ArtifactSet = collect_artifacts(paths[0], scan_config)
        source_type = SourceType.REPOSITORY
        source_name = paths[0].resolve().name
    else:
        collected = artifacts_from_files(paths, base=base or Path.cwd(), scan_config=scan_config)
        source_type = SourceType.FILES
        source_name = ", ".join(path.name for path in paths[:3])
        if len(paths) > 3:
            source_name += f" (+{len(paths) - 3} more)"

    report = run_scan(
        collected.artifacts,
        mode=mode,
        ignored_fingerprints=ignore_list.fingerprints if ignore_list else (),
        classifier=classifier,
        scan_config=scan_config,
        source_type=source_type,
        source_name=source_name,
        cancel_event=cancel_event,
    )
    report.skipped_files = dict(collected.skipped)
    return report
