"""Data models for the GhostGuard engine.

All inter-stage communication uses these models. Findings, scan summaries
and redaction plans serialize with the camelCase keys the dashboard
consumes, so the presentation layer sees the same shapes it always has.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any


# Enums

class SecretType(str, Enum):
    API_KEY = "APIKey"
    PASSWORD = "Password"
    EMAIL = "Email"
    TOKEN = "Token"
    PRIVATE_KEY = "PrivateKey"
    CERTIFICATE = "Certificate"
    PII = "PII"
    URL = "URL"
    CUSTOM = "Custom"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ScanMode(str, Enum):
    REGEX = "regex"
    AI = "ai"
    HYBRID = "hybrid"


class SourceType(str, Enum):
    FILES = "files"
    REPOSITORY = "repository"


class RedactionTarget(str, Enum):
    ENV = "env"
    VAULT = "vault"


class Language(str, Enum):
    PYTHON = "python"
    JAVASCRIPT = "javascript"
    TYPESCRIPT = "typescript"
    GO = "go"
    RUST = "rust"
    JAVA = "java"
    RUBY = "ruby"
    PHP = "php"
    CSHARP = "csharp"
    SHELL = "shell"
    JSON = "json"
    YAML = "yaml"
    XML = "xml"
    DOTENV = "dotenv"
    INI = "ini"
    UNKNOWN = "unknown"

    @classmethod
    def for_path(cls, path: str) -> Language:
        """Language hint derived from a file name or extension."""
        name = PurePosixPath(path).name.lower()
        if name == ".env" or name.startswith(".env."):
            return cls.DOTENV
        return _EXTENSION_LANGUAGES.get(PurePosixPath(name).suffix, cls.UNKNOWN)


_EXTENSION_LANGUAGES: dict[str, Language] = {
    ".py": Language.PYTHON,
    ".js": Language.JAVASCRIPT,
    ".jsx": Language.JAVASCRIPT,
    ".mjs": Language.JAVASCRIPT,
    ".cjs": Language.JAVASCRIPT,
    ".ts": Language.TYPESCRIPT,
    ".tsx": Language.TYPESCRIPT,
    ".go": Language.GO,
    ".rs": Language.RUST,
    ".java": Language.JAVA,
    ".kt": Language.JAVA,
    ".rb": Language.RUBY,
    ".php": Language.PHP,
    ".cs": Language.CSHARP,
    ".sh": Language.SHELL,
    ".bash": Language.SHELL,
    ".zsh": Language.SHELL,
    ".json": Language.JSON,
    ".yaml": Language.YAML,
    ".yml": Language.YAML,
    ".xml": Language.XML,
    ".env": Language.DOTENV,
    ".ini": Language.INI,
    ".cfg": Language.INI,
    ".conf": Language.INI,
    ".toml": Language.INI,
    ".properties": Language.INI,
}

SEVERITY_ORDER: tuple[Severity, ...] = (
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
)


# Inputs

@dataclass(frozen=True)
class SourceArtifact:
    """One scanned unit. Content is the raw byte sequence of the file."""

    path: str
    content: bytes
    language: Language | None = None

    def __post_init__(self) -> None:
        if self.language is None:
            object.__setattr__(self, "language", Language.for_path(self.path))


@dataclass(frozen=True)
class Rule:
    """A detection pattern.

    When ``pattern`` has a capture group, the first participating group is
    the secret value; otherwise the whole match is.
    """

    id: str
    name: str
    pattern: str
    secret_type: SecretType
    severity: Severity
    enabled: bool = True
    description: str = ""
    min_entropy: float = 0.0
    prefix_anchored: bool = False
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "pattern": self.pattern,
            "secretType": self.secret_type.value,
            "severity": self.severity.value,
            "enabled": self.enabled,
            "description": self.description,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


# Detection stage

@dataclass(frozen=True)
class RawMatch:
    """Output of the PatternMatcher. One rule hit at one byte range."""

    rule_id: str
    secret_type: SecretType
    severity: Severity
    matched_text: str
    byte_start: int
    byte_end: int
    line_start: int
    line_end: int
    file_path: str
    rule_order: int = 0
    prefix_anchored: bool = False


@dataclass(frozen=True)
class ConfidenceAdjustment:
    """Output of the ClassifierAdapter for a single RawMatch."""

    confidence: float
    secret_type_override: SecretType | None = None
    reasoning: str | None = None
    degraded: bool = False


@dataclass(frozen=True)
class Occurrence:
    """One location of a logical secret."""

    file_path: str
    line_start: int
    line_end: int
    byte_start: int
    byte_end: int
    matched_text: str
    language: Language = Language.UNKNOWN

    @property
    def sort_key(self) -> tuple[str, int, int]:
        return (self.file_path, self.line_start, self.byte_start)

    def to_dict(self) -> dict[str, Any]:
        return {
            "filePath": self.file_path,
            "lineStart": self.line_start,
            "lineEnd": self.line_end,
            "byteStart": self.byte_start,
            "byteEnd": self.byte_end,
        }


@dataclass
class Finding:
    """A deduplicated secret. Only ``is_ignored`` and ``env_var`` are user-mutable."""

    scan_id: str
    file_path: str
    line_start: int
    line_end: int
    secret_type: SecretType
    severity: Severity
    confidence: float
    fingerprint: str
    snippet_before: str
    snippet_after: str
    matched_text: str
    rule_id: str
    reasoning: str | None = None
    is_ignored: bool = False
    env_var: str | None = None
    degraded: bool = False
    occurrences: list[Occurrence] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def to_dict(self) -> dict[str, Any]:
        # matched_text is not serialized; snippetBefore is the only verbatim copy
        return {
            "id": self.id,
            "filePath": self.file_path,
            "lineStart": self.line_start,
            "lineEnd": self.line_end,
            "secretType": self.secret_type.value,
            "fingerprint": self.fingerprint,
            "severity": self.severity.value,
            "confidence": round(self.confidence, 4),
            "snippetBefore": self.snippet_before,
            "snippetAfter": self.snippet_after,
            "reasoning": self.reasoning,
            "isIgnored": self.is_ignored,
            "envVar": self.env_var,
            "ruleId": self.rule_id,
            "degraded": self.degraded,
            "occurrences": [occurrence.to_dict() for occurrence in self.occurrences],
        }


# Scan output

@dataclass(frozen=True)
class ScanTotals:
    files: int = 0
    findings: int = 0
    low: int = 0
    medium: int = 0
    high: int = 0
    critical: int = 0
    ignored: int = 0

    def count(self, severity: Severity) -> int:
        return getattr(self, severity.value)

    @property
    def is_consistent(self) -> bool:
        return self.low + self.medium + self.high + self.critical == self.findings

    def to_dict(self) -> dict[str, Any]:
        return {
            "files": self.files,
            "findings": self.findings,
            "low": self.low,
            "medium": self.medium,
            "high": self.high,
            "critical": self.critical,
            "ignored": self.ignored,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanTotals:
        keys = ("files", "findings", "low", "medium", "high", "critical", "ignored")
        return cls(**{key: int(data.get(key, 0)) for key in keys})


@dataclass(frozen=True)
class ScanWarning:
    """A non-fatal problem attached to a completed scan."""

    kind: str
    message: str
    rule_id: str | None = None
    file_path: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "ruleId": self.rule_id,
            "filePath": self.file_path,
        }


@dataclass(frozen=True)
class ScanSummary:
    """Aggregate result of one scan. Built once, when the scan completes."""

    id: str
    started_at: datetime
    finished_at: datetime
    mode: ScanMode
    totals: ScanTotals
    risk_score: int
    source_type: SourceType
    source_name: str
    warnings: tuple[ScanWarning, ...] = ()

    @property
    def duration_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
            "mode": self.mode.value,
            "totals": self.totals.to_dict(),
            "riskScore": self.risk_score,
            "sourceType": self.source_type.value,
            "sourceName": self.source_name,
            "warnings": [warning.to_dict() for warning in self.warnings],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanSummary:
        """Rebuild a summary from ``to_dict`` output, e.g. a saved JSON report."""
        return cls(
            id=data["id"],
            started_at=datetime.fromisoformat(data["startedAt"]),
            finished_at=datetime.fromisoformat(data["finishedAt"]),
            mode=ScanMode(data["mode"]),
            totals=ScanTotals.from_dict(data.get("totals") or {}),
            risk_score=int(data["riskScore"]),
            source_type=SourceType(data["sourceType"]),
            source_name=data.get("sourceName", ""),
            warnings=tuple(
                ScanWarning(
                    kind=warning["kind"],
                    message=warning["message"],
                    rule_id=warning.get("ruleId"),
                    file_path=warning.get("filePath"),
                )
                for warning in data.get("warnings", [])
            ),
        )


# Redaction

@dataclass(frozen=True)
class PlanEntry:
    finding_id: str
    env_var: str
    replacement: str
    value: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "findingId": self.finding_id,
            "envVar": self.env_var,
            "replacement": self.replacement,
        }


@dataclass(frozen=True)
class RedactionPlan:
    """User-approved mapping from findings to environment variables."""

    scan_id: str
    entries: tuple[PlanEntry, ...]
    target: RedactionTarget = RedactionTarget.ENV

    @property
    def finding_ids(self) -> list[str]:
        return [entry.finding_id for entry in self.entries]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scanId": self.scan_id,
            "findings": [entry.to_dict() for entry in self.entries],
            "target": self.target.value,
        }
