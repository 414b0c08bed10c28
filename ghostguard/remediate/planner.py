"""Build redaction plans from a scan's findings.

A plan names one environment variable per finding. Names the user chose
(explicit overrides, or names already stored on the finding) are
validated strictly; generated defaults are disambiguated and never fail.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping, Sequence

from ghostguard.detect.models import (
    Finding,
    Language,
    PlanEntry,
    RedactionPlan,
    RedactionTarget,
)
from ghostguard.remediate.references import default_env_var, render_reference

logger = logging.getLogger(__name__)

ENV_VAR_RE = re.compile(r"^[A-Z][A-Z0-9_]*$")


class ValidationError(Exception):
    """A plan cannot be built or applied as requested.

    ``problems`` lists every issue found, so a user can fix them in one go.
    """

    def __init__(self, problems: Sequence[str] | str):
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


def is_valid_env_var(name: str | None) -> bool:
    return bool(name) and ENV_VAR_RE.match(name) is not None


def check_env_vars(names: Iterable[tuple[str, str | None]]) -> list[str]:
    """Problems with (finding_id, env_var) pairs: empty, malformed or duplicate names."""
    problems = []
    owners: dict[str, str] = {}
    for finding_id, name in names:
        if not name:
            problems.append(f"Finding {finding_id} has no environment variable name")
            continue
        if not ENV_VAR_RE.match(name):
            problems.append(
                f"Invalid environment variable name '{name}' for finding {finding_id} "
                f"(expected {ENV_VAR_RE.pattern})"
            )
            continue
        if name in owners:
            problems.append(
                f"Environment variable '{name}' is used by findings {owners[name]} and {finding_id}"
            )
            continue
        owners[name] = finding_id
    return problems


def _representative_language(finding: Finding) -> Language:
    if finding.occurrences:
        return finding.occurrences[0].language
    return Language.for_path(finding.file_path)


def _position(finding: Finding) -> tuple[str, int, int, str]:
    byte_start = finding.occurrences[0].byte_start if finding.occurrences else 0
    return (finding.file_path, finding.line_start, byte_start, finding.fingerprint)


def _unique_default(base: str, taken: set[str]) -> str:
    if base not in taken:
        return base
    suffix = 2
    while f"{base}_{suffix}" in taken:
        suffix += 1
    return f"{base}_{suffix}"


def plan(
    findings: Sequence[Finding],
    env_var_overrides: Mapping[str, str] | None = None,
    target: RedactionTarget = RedactionTarget.ENV,
    finding_ids: Iterable[str] | None = None,
) -> RedactionPlan:
    """Assign an environment variable to every finding to redact.

    Args:
        findings: Findings of one completed scan
        env_var_overrides: finding id -> variable name chosen by the user
        target: Where the secret values go
        finding_ids: Restrict the plan to these findings (default: all non-ignored)

    Returns:
        Plan with entries in file-path-then-line order

    Raises:
        ValidationError: mixed scans, unknown or ignored findings, or user
            chosen names that are malformed or collide
    """

    overrides = dict(env_var_overrides or {})
    problems: list[str] = []

    scan_ids = {finding.scan_id for finding in findings}
    if len(scan_ids) > 1:
        raise ValidationError(
            f"Findings belong to {len(scan_ids)} different scans: {', '.join(sorted(scan_ids))}"
        )

    by_id = {finding.id: finding for finding in findings}
    if finding_ids is None:
        selected = [finding for finding in findings if not finding.is_ignored]
    else:
        selected = []
        for finding_id in finding_ids:
            finding = by_id.get(finding_id)
            if finding is None:
                problems.append(f"Unknown finding {finding_id}")
            elif finding.is_ignored:
                problems.append(f"Finding {finding_id} is ignored and cannot be redacted")
            else:
                selected.append(finding)

    selected = sorted(
        {finding.id: finding for finding in selected}.values(),
        key=_position,
    )
    selected_ids = {finding.id for finding in selected}

    for finding_id in overrides:
        if finding_id not in selected_ids:
            problems.append(f"Override for finding {finding_id}, which is not being redacted")

    chosen = [
        (finding.id, overrides[finding.id] if finding.id in overrides else finding.env_var)
        for finding in selected
        if finding.id in overrides or finding.env_var
    ]
    problems.extend(check_env_vars(chosen))
    if problems:
        raise ValidationError(problems)
    if not selected:
        raise ValidationError("No findings to redact")

    names = dict(chosen)
    taken = set(names.values())
    for finding in selected:
        if finding.id in names:
            continue
        name = _unique_default(default_env_var(finding.secret_type), taken)
        names[finding.id] = name
        taken.add(name)

    entries = tuple(
        PlanEntry(
            finding_id=finding.id,
            env_var=names[finding.id],
            replacement=render_reference(names[finding.id], _representative_language(finding)),
            value=finding.matched_text,
        )
        for finding in selected
    )

    logger.info(
        f"Planned {len(entries)} redactions "
        f"({len(chosen)} user-named, {len(entries) - len(chosen)} defaults) "
        f"for scan {selected[0].scan_id}"
    )
    return RedactionPlan(scan_id=selected[0].scan_id, entries=entries, target=target)
