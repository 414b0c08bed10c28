"""Pattern matching over a single artifact.

Runs every compiled rule over the raw bytes of a file and reports each
non-overlapping occurrence with its byte range and line span. Matches from
different rules on the same bytes are all kept; resolving them is the
aggregator's job.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Iterable, Sequence

from ghostguard.detect.lines import LineIndex, decode
from ghostguard.detect.models import RawMatch, Rule, SourceArtifact
from ghostguard.detect.rules import CompiledRule, compile_rules

logger = logging.getLogger(__name__)


def shannon_entropy(data: str) -> float:
    """Calculate Shannon entropy of a string. Higher = more random = more likely a secret."""

    if not data:
        return 0.0
    freq: dict[str, int] = {}
    for char in data:
        freq[char] = freq.get(char, 0) + 1
    length = len(data)
    return -sum((count / length) * math.log2(count / length) for count in freq.values())


def _secret_span(found: re.Match[bytes]) -> tuple[int, int]:
    """Span of the first participating capture group, else the whole match."""
    for index in range(1, found.re.groups + 1):
        start, end = found.span(index)
        if start != -1:
            return start, end
    return found.span(0)


def match(
    artifact: SourceArtifact,
    rules: Sequence[CompiledRule],
    line_index: LineIndex | None = None,
) -> list[RawMatch]:
    """Run compiled rules over one artifact.

    Args:
        artifact: File to scan
        rules: Compiled, enabled rules in catalog order
        line_index: Precomputed index for ``artifact.content`` (built if omitted)

    Returns:
        Raw matches ordered by rule order, then byte offset
    """

    index = line_index or LineIndex(artifact.content)
    matches: list[RawMatch] = []

    for compiled in rules:
        rule = compiled.rule
        for found in compiled.regex.finditer(artifact.content):
            byte_start, byte_end = _secret_span(found)
            if byte_end <= byte_start:
                continue

            value = decode(artifact.content[byte_start:byte_end])
            if rule.min_entropy > 0 and shannon_entropy(value) < rule.min_entropy:
                continue

            line_start, line_end = index.span(byte_start, byte_end)
            matches.append(
                RawMatch(
                    rule_id=rule.id,
                    secret_type=rule.secret_type,
                    severity=rule.severity,
                    matched_text=value,
                    byte_start=byte_start,
                    byte_end=byte_end,
                    line_start=line_start,
                    line_end=line_end,
                    file_path=artifact.path,
                    rule_order=compiled.order,
                    prefix_anchored=rule.prefix_anchored,
                )
            )

    if matches:
        logger.debug(f"{artifact.path}: {len(matches)} raw matches")
    return matches


class PatternMatcher:
    """Compiled rule snapshot for one scan."""

    def __init__(self, rules: Iterable[Rule]):
        self.rules: tuple[Rule, ...] = tuple(rules)
        self.compiled, self.errors = compile_rules(self.rules)

    def match(
        self,
        artifact: SourceArtifact,
        line_index: LineIndex | None = None,
    ) -> list[RawMatch]:
        return match(artifact, self.compiled, line_index)
