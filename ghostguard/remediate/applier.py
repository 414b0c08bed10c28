"""Apply a redaction plan to file contents.

Every file is verified before it is edited: each recorded occurrence must
still hold its matched text at its recorded byte range. A file with any
mismatch is left exactly as it was and its findings are reported as
drifted; the other files are still sanitized.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import threading
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Sequence

from ghostguard.detect.lines import encode_text
from ghostguard.detect.models import Finding, Occurrence, PlanEntry, RedactionPlan, RedactionTarget
from ghostguard.remediate.planner import ValidationError, check_env_vars
from ghostguard.remediate.references import render_reference, substitution_quote

logger = logging.getLogger(__name__)

# single writer per file across every applier in the process
_path_locks: dict[str, threading.Lock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = str(path)
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = _path_locks[key] = threading.Lock()
        return lock


class DriftError(Exception):
    """A finding's recorded text is no longer where the scan saw it."""

    def __init__(self, finding_id: str, file_path: str, reason: str):
        self.finding_id = finding_id
        self.file_path = file_path
        self.reason = reason
        super().__init__(f"{file_path}: finding {finding_id} drifted ({reason})")

    def to_dict(self) -> dict[str, Any]:
        return {"findingId": self.finding_id, "filePath": self.file_path, "reason": self.reason}


class ApplierState(str, Enum):
    CONFIGURING = "configuring"
    APPLYING = "applying"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class RedactionOutcome:
    state: ApplierState
    target: RedactionTarget
    sanitized_files: dict[str, bytes] = field(default_factory=dict)
    env_file_content: str = ""
    secrets: dict[str, str] = field(default_factory=dict)
    drift_errors: list[DriftError] = field(default_factory=list)
    untouched_finding_ids: list[str] = field(default_factory=list)
    redacted_count: int = 0

    @property
    def files_processed(self) -> int:
        return len(self.sanitized_files)

    @property
    def success(self) -> bool:
        return self.state == ApplierState.COMPLETE

    def raise_for_drift(self) -> None:
        if self.drift_errors:
            raise self.drift_errors[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "target": self.target.value,
            "filesProcessed": self.files_processed,
            "redactedCount": self.redacted_count,
            "sanitizedFiles": sorted(self.sanitized_files),
            "driftErrors": [error.to_dict() for error in self.drift_errors],
            "untouchedFindingIds": self.untouched_finding_ids,
        }


@dataclass(frozen=True)
class _Edit:
    entry: PlanEntry
    occurrence: Occurrence


def _escape_env_value(value: str) -> str:
    return value.replace("\r\n", "\\n").replace("\n", "\\n").replace("\r", "\\n")


def render_env_file(entries: Sequence[PlanEntry]) -> str:
    """``NAME=value`` lines, one per entry, in the order given."""
    if not entries:
        return ""
    return "".join(f"{entry.env_var}={_escape_env_value(entry.value)}\n" for entry in entries)


class RedactionApplier:
    """Single-use executor for one redaction plan.

    Configuring -> Applying -> Complete | Failed. The plan is validated on
    the way into Applying; a plan that fails validation leaves the applier
    in Configuring so it can be corrected and retried.
    """

    def __init__(self, plan: RedactionPlan, findings: Sequence[Finding]):
        self.plan = plan
        self.findings = {finding.id: finding for finding in findings}
        self.state = ApplierState.CONFIGURING

    def _begin(self) -> None:
        if self.state != ApplierState.CONFIGURING:
            raise RuntimeError(f"Redaction plan already applied (state: {self.state.value})")

        problems = check_env_vars((entry.finding_id, entry.env_var) for entry in self.plan.entries)
        if not self.plan.entries:
            problems.append("Plan has no entries")
        for entry in self.plan.entries:
            finding = self.findings.get(entry.finding_id)
            if finding is None:
                problems.append(f"Plan references unknown finding {entry.finding_id}")
            elif finding.scan_id != self.plan.scan_id:
                problems.append(
                    f"Finding {entry.finding_id} belongs to scan {finding.scan_id}, "
                    f"not {self.plan.scan_id}"
                )
            elif not finding.occurrences:
                problems.append(f"Finding {entry.finding_id} has no recorded location")
        if problems:
            raise ValidationError(problems)

        self.state = ApplierState.APPLYING
        logger.info(f"Applying redaction plan for scan {self.plan.scan_id}")

    def _edits_by_file(self) -> dict[str, list[_Edit]]:
        edits: dict[str, list[_Edit]] = defaultdict(list)
        for entry in self.plan.entries:
            for occurrence in self.findings[entry.finding_id].occurrences:
                edits[occurrence.file_path].append(_Edit(entry, occurrence))
        return edits

    def _sanitize(
        self,
        file_path: str,
        content: bytes | None,
        edits: list[_Edit],
    ) -> tuple[bytes | None, list[DriftError]]:
        """Return the sanitized content, or None and the drift errors."""
        affected = list(dict.fromkeys(edit.entry.finding_id for edit in edits))
        if content is None:
            return None, [DriftError(fid, file_path, "file not found") for fid in affected]

        drifted: dict[str, str] = {}
        cuts: list[tuple[int, int, bytes, str]] = []
        for edit in edits:
            occurrence = edit.occurrence
            expected = encode_text(occurrence.matched_text)
            if content[occurrence.byte_start : occurrence.byte_end] != expected:
                drifted.setdefault(edit.entry.finding_id, "matched text changed")
                continue
            quote = substitution_quote(
                content, occurrence.byte_start, occurrence.byte_end, occurrence.language
            )
            cuts.append(
                (
                    occurrence.byte_start - len(quote),
                    occurrence.byte_end + len(quote),
                    encode_text(render_reference(edit.entry.env_var, occurrence.language)),
                    edit.entry.finding_id,
                )
            )

        cuts.sort(key=lambda cut: cut[0], reverse=True)
        for later, earlier in zip(cuts, cuts[1:]):
            if earlier[1] > later[0]:
                drifted.setdefault(later[3], "overlaps another redaction")

        if drifted:
            # the whole file is skipped; every finding in it is untouched
            errors = [
                DriftError(fid, file_path, drifted.get(fid, "another finding in this file drifted"))
                for fid in affected
            ]
            return None, errors

        sanitized = content
        for start, end, replacement, _ in cuts:
            sanitized = sanitized[:start] + replacement + sanitized[end:]
        return sanitized, []

    def _finish(
        self,
        sanitized: dict[str, bytes],
        drift_errors: list[DriftError],
        applied: dict[str, int],
    ) -> RedactionOutcome:
        occurrence_counts = {
            entry.finding_id: len(self.findings[entry.finding_id].occurrences)
            for entry in self.plan.entries
        }
        applied_entries = [entry for entry in self.plan.entries if applied.get(entry.finding_id)]
        untouched = [
            entry.finding_id
            for entry in self.plan.entries
            if applied.get(entry.finding_id, 0) < occurrence_counts[entry.finding_id]
        ]

        self.state = ApplierState.COMPLETE if sanitized else ApplierState.FAILED
        outcome = RedactionOutcome(
            state=self.state,
            target=self.plan.target,
            sanitized_files=sanitized,
            env_file_content=render_env_file(applied_entries),
            secrets=(
                {entry.env_var: entry.value for entry in applied_entries}
                if self.plan.target == RedactionTarget.VAULT
                else {}
            ),
            drift_errors=drift_errors,
            untouched_finding_ids=untouched,
            redacted_count=sum(applied.values()),
        )

        if drift_errors:
            logger.warning(
                f"Redaction finished {self.state.value}: {outcome.files_processed} files sanitized, "
                f"{len(drift_errors)} drift errors"
            )
        else:
            logger.info(
                f"Redaction complete: {outcome.redacted_count} secrets replaced "
                f"in {outcome.files_processed} files"
            )
        return outcome

    def apply(self, contents: Mapping[str, bytes]) -> RedactionOutcome:
        """Sanitize in memory.

        Args:
            contents: Current content of every file the plan touches, by path

        Raises:
            ValidationError: plan cannot enter Applying
        """
        self._begin()

        sanitized: dict[str, bytes] = {}
        drift_errors: list[DriftError] = []
        applied: dict[str, int] = defaultdict(int)

        for file_path, edits in sorted(self._edits_by_file().items()):
            result, errors = self._sanitize(file_path, contents.get(file_path), edits)
            if result is None:
                drift_errors.extend(errors)
                continue
            sanitized[file_path] = result
            for edit in edits:
                applied[edit.entry.finding_id] += 1

        return self._finish(sanitized, drift_errors, applied)

    def apply_in_place(self, root: str | Path) -> RedactionOutcome:
        """Sanitize files under ``root`` and rewrite them atomically.

        Each file is read, verified and replaced while holding its lock, so
        no other plan can interleave edits on the same file.
        """
        self._begin()
        root_path = Path(root).resolve()

        sanitized: dict[str, bytes] = {}
        drift_errors: list[DriftError] = []
        applied: dict[str, int] = defaultdict(int)

        for file_path, edits in sorted(self._edits_by_file().items()):
            abs_path = (root_path / file_path).resolve()
            if not abs_path.is_relative_to(root_path):
                drift_errors.extend(
                    DriftError(fid, file_path, "path escapes the redaction root")
                    for fid in dict.fromkeys(edit.entry.finding_id for edit in edits)
                )
                continue

            with _lock_for(abs_path):
                content = abs_path.read_bytes() if abs_path.is_file() else None
                result, errors = self._sanitize(file_path, content, edits)
                if result is None:
                    drift_errors.extend(errors)
                    continue
                _atomic_write(abs_path, result)

            sanitized[file_path] = result
            for edit in edits:
                applied[edit.entry.finding_id] += 1

        return self._finish(sanitized, drift_errors, applied)


def _atomic_write(path: Path, content: bytes) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
