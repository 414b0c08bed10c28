"""YAML-based scan configuration and rule store."""

from __future__ import annotations

import dataclasses
import fnmatch
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

import yaml

from ghostguard.detect.models import Rule, ScanMode, SecretType, Severity
from ghostguard.detect.rules import BUILTIN_RULES

logger = logging.getLogger(__name__)

_DEFAULT_USER_CONFIG = ".ghostguard.yml"


def _to_bool(value: object, default: bool = True) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    return default


def _to_float(
    value: object,
    *,
    default: float,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return default

    if minimum is not None:
        parsed = max(minimum, parsed)
    if maximum is not None:
        parsed = min(maximum, parsed)
    return parsed


def _to_int(
    value: object,
    *,
    default: int,
    minimum: int | None = None,
    maximum: int | None = None,
) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default

    if minimum is not None:
        parsed = max(minimum, parsed)
    if maximum is not None:
        parsed = min(maximum, parsed)
    return parsed


def _to_enum(enum_cls, value: object, default):
    if value is None:
        return default
    text = str(value).strip().lower()
    for member in enum_cls:
        if text in (member.value.lower(), member.name.lower()):
            return member
    logger.warning(f"Invalid {enum_cls.__name__} value {value!r}; using {default.value!r}")
    return default


def _normalize_path(path: str) -> str:
    normalized = Path(path).as_posix()
    while normalized.startswith("./"):
        normalized = normalized[2:]
    if normalized.startswith("/"):
        normalized = normalized[1:]
    return normalized


def _parse_created_at(value: object) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.warning(f"Invalid created_at {value!r}; ignoring")
    return None


def _parse_custom_rule(raw: object, index: int) -> Rule | None:
    """One entry of the ``rules`` list, or None when it is unusable."""
    if not isinstance(raw, dict):
        logger.warning(f"Custom rule #{index + 1} must be a mapping; skipping")
        return None

    rule_id = str(raw.get("id") or "").strip()
    pattern = raw.get("pattern")
    if not rule_id or not isinstance(pattern, str) or not pattern:
        logger.warning(f"Custom rule #{index + 1} needs an id and a pattern; skipping")
        return None

    return Rule(
        id=rule_id,
        name=str(raw.get("name") or rule_id),
        pattern=pattern,
        secret_type=_to_enum(SecretType, raw.get("secret_type"), SecretType.CUSTOM),
        severity=_to_enum(Severity, raw.get("severity"), Severity.MEDIUM),
        enabled=_to_bool(raw.get("enabled", True), default=True),
        description=str(raw.get("description") or ""),
        min_entropy=_to_float(raw.get("min_entropy", 0.0), default=0.0, minimum=0.0),
        prefix_anchored=_to_bool(raw.get("prefix_anchored", False), default=False),
        created_at=_parse_created_at(raw.get("created_at")),
    )


@dataclass
class ScanConfig:
    mode: ScanMode = ScanMode.REGEX
    min_confidence: float = 0.3
    risk_threshold: int = 70
    disabled_rules: list[str] = field(default_factory=list)
    custom_rules: list[Rule] = field(default_factory=list)
    exclude_paths: list[str] = field(default_factory=list)
    exclude_patterns: list[str] = field(default_factory=list)
    max_concurrent: int = 4
    classifier_timeout: float | None = None

    @classmethod
    def _load_yaml_file(cls, path: Path) -> dict[str, Any] | None:
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as exc:
            logger.warning(f"Could not read config file {path}: {exc}")
            return None
        except yaml.YAMLError as exc:
            logger.warning(f"Malformed YAML config in {path}: {exc}")
            return None

        if raw is None:
            return {}

        if not isinstance(raw, dict):
            logger.warning(f"Config file {path} must contain a YAML mapping; using defaults")
            return None

        return raw

    @classmethod
    def _from_data(cls, data: dict[str, Any], base: ScanConfig) -> ScanConfig:
        mode = _to_enum(ScanMode, data.get("mode"), base.mode)

        min_confidence = _to_float(
            data.get("min_confidence", base.min_confidence),
            default=base.min_confidence,
            minimum=0.0,
            maximum=1.0,
        )
        risk_threshold = _to_int(
            data.get("risk_threshold", base.risk_threshold),
            default=base.risk_threshold,
            minimum=0,
            maximum=100,
        )

        disabled_rules = list(base.disabled_rules)
        raw_disabled = data.get("disabled_rules")
        if isinstance(raw_disabled, list):
            disabled_rules = [str(item).strip() for item in raw_disabled if str(item).strip()]

        custom_rules = list(base.custom_rules)
        raw_rules = data.get("rules")
        if isinstance(raw_rules, list):
            parsed = (_parse_custom_rule(item, index) for index, item in enumerate(raw_rules))
            custom_rules = [rule for rule in parsed if rule is not None]
        elif raw_rules is not None:
            logger.warning("'rules' must be a list of rule mappings; ignoring")

        exclude_paths = list(base.exclude_paths)
        exclude_patterns = list(base.exclude_patterns)
        raw_exclude = data.get("exclude")
        if isinstance(raw_exclude, dict):
            raw_paths = raw_exclude.get("paths")
            if isinstance(raw_paths, list):
                exclude_paths = [str(item) for item in raw_paths if str(item).strip()]

            raw_patterns = raw_exclude.get("patterns")
            if isinstance(raw_patterns, list):
                exclude_patterns = [
                    str(item) for item in raw_patterns if str(item).strip()
                ]

        classifier = data.get("classifier")
        max_concurrent = base.max_concurrent
        classifier_timeout = base.classifier_timeout
        if isinstance(classifier, dict):
            max_concurrent = _to_int(
                classifier.get("max_concurrent", base.max_concurrent),
                default=base.max_concurrent,
                minimum=1,
                maximum=32,
            )
            if classifier.get("timeout") is not None:
                classifier_timeout = _to_float(
                    classifier.get("timeout"),
                    default=classifier_timeout or 10.0,
                    minimum=0.1,
                )

        return cls(
            mode=mode,
            min_confidence=min_confidence,
            risk_threshold=risk_threshold,
            disabled_rules=disabled_rules,
            custom_rules=custom_rules,
            exclude_paths=exclude_paths,
            exclude_patterns=exclude_patterns,
            max_concurrent=max_concurrent,
            classifier_timeout=classifier_timeout,
        )

    @classmethod
    def default(cls) -> ScanConfig:
        """Return default configuration."""
        return cls(
            exclude_paths=[
                "node_modules/",
                ".git/",
                "vendor/",
                "dist/",
                "build/",
            ],
            exclude_patterns=[
                "*.min.js",
                "*.bundle.js",
                "*.lock",
                "package-lock.json",
            ],
        )

    @classmethod
    def load(cls, config_path: Path | None = None) -> ScanConfig:
        """Load config from file, falling back to defaults."""
        defaults = cls.default()
        path = Path(config_path) if config_path is not None else Path.cwd() / _DEFAULT_USER_CONFIG

        if not path.exists():
            if config_path is not None:
                logger.warning(f"Scan config not found at {config_path}; using defaults")
            else:
                logger.info(f"No {_DEFAULT_USER_CONFIG} found; using built-in defaults")
            return defaults

        data = cls._load_yaml_file(path)
        if data is None:
            logger.warning(f"Failed to load scan config from {path}; using defaults")
            return defaults

        logger.info(f"Loaded scan config from {path}")
        return cls._from_data(data, defaults)

    def build_rules(self) -> tuple[Rule, ...]:
        """Rule snapshot for one scan: built-ins then custom rules.

        A custom rule with a built-in's id replaces it in place, and a
        repeated custom id keeps its last definition. Rules named in
        ``disabled_rules`` are kept but marked disabled.
        """
        custom_by_id: dict[str, Rule] = {}
        for rule in self.custom_rules:
            if rule.id in custom_by_id:
                logger.warning(f"Custom rule {rule.id!r} is defined more than once; using the last one")
            custom_by_id[rule.id] = rule
        builtin_ids = {rule.id for rule in BUILTIN_RULES}

        rules = [custom_by_id.get(rule.id, rule) for rule in BUILTIN_RULES]
        rules.extend(rule for rule in custom_by_id.values() if rule.id not in builtin_ids)

        known_ids = {rule.id for rule in rules}
        for rule_id in self.disabled_rules:
            if rule_id not in known_ids:
                logger.warning(f"disabled_rules names unknown rule {rule_id!r}")

        disabled = set(self.disabled_rules)
        return tuple(
            dataclasses.replace(rule, enabled=False) if rule.id in disabled else rule
            for rule in rules
        )

    def is_path_excluded(self, file_path: str) -> bool:
        """Check if a file path should be excluded."""
        normalized_path = _normalize_path(file_path)
        file_name = Path(normalized_path).name

        for excluded in self.exclude_paths:
            normalized_excluded = _normalize_path(excluded).rstrip("/")
            if not normalized_excluded:
                continue

            if (
                normalized_path == normalized_excluded
                or normalized_path.startswith(f"{normalized_excluded}/")
            ):
                return True

        for pattern in self.exclude_patterns:
            if fnmatch.fnmatch(normalized_path, pattern):
                return True
            if fnmatch.fnmatch(file_name, pattern):
                return True

        return False
