"""Merge matcher and classifier output into deduplicated findings.

Stages:
1. Resolve overlapping byte ranges within a file in favour of the best
   candidate (highest adjusted confidence, then longer span, then rule
   order).
2. Drop candidates under the confidence floor.
3. Group by fingerprint. The highest-confidence member is canonical for
   severity, type and reasoning; every location is kept as an occurrence
   and the first one in (path, line) order is the representative.
4. Mark fingerprints from the ignore list as ignored. They stay in the set.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

from ghostguard.detect.fingerprint import fingerprint
from ghostguard.detect.lines import LineIndex
from ghostguard.detect.models import (
    ConfidenceAdjustment,
    Finding,
    Language,
    Occurrence,
    RawMatch,
    SecretType,
    SourceArtifact,
)
from ghostguard.remediate.references import default_env_var, render_preview

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    match: RawMatch
    adjustment: ConfidenceAdjustment

    @property
    def confidence(self) -> float:
        return self.adjustment.confidence

    @property
    def secret_type(self) -> SecretType:
        return self.adjustment.secret_type_override or self.match.secret_type

    @property
    def rank(self) -> tuple[float, int, int, int]:
        """Sort key, best first."""
        length = self.match.byte_end - self.match.byte_start
        return (-self.confidence, -length, self.match.rule_order, self.match.byte_start)


def collapse_overlaps(candidates: Iterable[Candidate]) -> list[Candidate]:
    """Resolve overlapping byte ranges within a file.

    Candidates are taken best first and one is dropped only when it overlaps
    a range already kept.
    """
    by_file: dict[str, list[Candidate]] = defaultdict(list)
    for candidate in candidates:
        by_file[candidate.match.file_path].append(candidate)

    kept: list[Candidate] = []
    for file_path in sorted(by_file):
        chosen: list[Candidate] = []
        for candidate in sorted(by_file[file_path], key=lambda c: c.rank):
            start, end = candidate.match.byte_start, candidate.match.byte_end
            if any(start < c.match.byte_end and c.match.byte_start < end for c in chosen):
                continue
            chosen.append(candidate)
        kept.extend(sorted(chosen, key=lambda c: (c.match.byte_start, c.match.byte_end)))

    return kept


def _occurrence(candidate: Candidate, language: Language) -> Occurrence:
    match = candidate.match
    return Occurrence(
        file_path=match.file_path,
        line_start=match.line_start,
        line_end=match.line_end,
        byte_start=match.byte_start,
        byte_end=match.byte_end,
        matched_text=match.matched_text,
        language=language,
    )


def aggregate(
    raw_matches: Sequence[RawMatch],
    adjustments: Sequence[ConfidenceAdjustment],
    artifacts: Mapping[str, SourceArtifact],
    *,
    scan_id: str,
    ignored_fingerprints: Iterable[str] = (),
    min_confidence: float = 0.0,
) -> list[Finding]:
    """Build the deduplicated finding set for one scan.

    Args:
        raw_matches: Matches from every file
        adjustments: One adjustment per raw match, same order
        artifacts: Scanned artifacts by path, for snippets
        scan_id: Owning scan
        ignored_fingerprints: Fingerprints the user chose to ignore
        min_confidence: Candidates below this adjusted confidence are dropped

    Returns:
        Findings sorted by (file path, line, fingerprint)
    """

    if len(raw_matches) != len(adjustments):
        raise ValueError(
            f"Got {len(adjustments)} adjustments for {len(raw_matches)} raw matches"
        )

    candidates = collapse_overlaps(
        Candidate(match=match, adjustment=adjustment)
        for match, adjustment in zip(raw_matches, adjustments)
    )
    collapsed = len(raw_matches) - len(candidates)

    confident = [c for c in candidates if c.confidence >= min_confidence]
    dropped = len(candidates) - len(confident)
    if collapsed or dropped:
        logger.info(
            f"Aggregator: {collapsed} overlapping matches collapsed, "
            f"{dropped} below confidence {min_confidence:.2f} dropped"
        )

    groups: dict[str, list[Candidate]] = defaultdict(list)
    for candidate in confident:
        groups[fingerprint(candidate.match.matched_text, candidate.match.rule_id)].append(candidate)

    ignored = set(ignored_fingerprints)
    indexes: dict[str, LineIndex] = {}
    findings: list[Finding] = []

    for fp, members in groups.items():
        canonical = min(
            members,
            key=lambda c: (c.rank[0], c.match.rule_order, c.match.file_path, c.match.byte_start),
        )

        occurrences = sorted(
            {
                _occurrence(member, artifacts[member.match.file_path].language or Language.UNKNOWN)
                for member in members
            },
            key=lambda o: (o.sort_key, o.byte_end),
        )
        representative = occurrences[0]

        if representative.file_path not in indexes:
            indexes[representative.file_path] = LineIndex(
                artifacts[representative.file_path].content
            )
        index = indexes[representative.file_path]

        secret_type = canonical.secret_type
        findings.append(
            Finding(
                scan_id=scan_id,
                file_path=representative.file_path,
                line_start=representative.line_start,
                line_end=representative.line_end,
                secret_type=secret_type,
                severity=canonical.match.severity,
                confidence=canonical.confidence,
                fingerprint=fp,
                snippet_before=index.lines_text(representative.line_start, representative.line_end),
                snippet_after=render_preview(
                    index,
                    representative.byte_start,
                    representative.byte_end,
                    default_env_var(secret_type),
                    representative.language,
                ),
                matched_text=canonical.match.matched_text,
                rule_id=canonical.match.rule_id,
                reasoning=canonical.adjustment.reasoning,
                is_ignored=fp in ignored,
                degraded=canonical.adjustment.degraded,
                occurrences=occurrences,
            )
        )

    findings.sort(key=lambda f: (f.file_path, f.line_start, f.fingerprint))
    logger.info(
        f"Aggregated {len(confident)} candidates into {len(findings)} findings "
        f"({sum(1 for f in findings if f.is_ignored)} ignored)"
    )
    return findings
