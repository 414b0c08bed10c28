"""Built-in detection rules and rule compilation.

Rules are plain data; compilation happens once per scan and a malformed
pattern only takes its own rule out of the scan.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Iterable

from ghostguard.detect.models import Rule, SecretType, Severity

logger = logging.getLogger(__name__)


class RuleCompilationError(Exception):
    """Raised when a single rule's pattern cannot be compiled."""

    def __init__(self, rule_id: str, message: str):
        super().__init__(f"Rule {rule_id!r} failed to compile: {message}")
        self.rule_id = rule_id


@dataclass(frozen=True)
class CompiledRule:
    rule: Rule
    regex: re.Pattern[bytes]
    order: int


BUILTIN_RULES: tuple[Rule, ...] = (
    Rule(
        id="aws-access-key-id",
        name="AWS Access Keys",
        pattern=r"(?<![A-Z0-9])(?:AKIA|ABIA|ACCA|ASIA)[0-9A-Z]{16}(?![A-Z0-9])",
        secret_type=SecretType.API_KEY,
        severity=Severity.CRITICAL,
        description="Detects AWS access key IDs",
        prefix_anchored=True,
    ),
    Rule(
        id="aws-secret-access-key",
        name="AWS Secret Access Key",
        pattern=(
            r"(?i)aws[_\-\.]?secret[_\-\.]?access[_\-\.]?key\s*[=:]\s*"
            r"['\"]?([A-Za-z0-9/+=]{40})(?![A-Za-z0-9/+=])"
        ),
        secret_type=SecretType.API_KEY,
        severity=Severity.CRITICAL,
        description="AWS secret access key assigned to a named variable",
        min_entropy=3.5,
    ),
    Rule(
        id="github-token",
        name="GitHub Tokens",
        pattern=r"(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9_]{36,}",
        secret_type=SecretType.TOKEN,
        severity=Severity.HIGH,
        description="GitHub personal access tokens",
        prefix_anchored=True,
    ),
    Rule(
        id="stripe-api-key",
        name="Stripe API Key",
        pattern=r"(?:sk|pk|rk)_(?:live|test)_[A-Za-z0-9]{20,}",
        secret_type=SecretType.API_KEY,
        severity=Severity.CRITICAL,
        description="Stripe secret, publishable and restricted keys",
        prefix_anchored=True,
    ),
    Rule(
        id="sk-secret-key",
        name="Secret Key (sk- prefix)",
        pattern=r"(?<![A-Za-z0-9_\-])sk-(?:proj-|ant-)?[A-Za-z0-9_\-]{16,}",
        secret_type=SecretType.API_KEY,
        severity=Severity.CRITICAL,
        description="Provider secret keys using the sk- prefix",
        prefix_anchored=True,
    ),
    Rule(
        id="slack-token",
        name="Slack Token",
        pattern=r"xox[baprs]-[0-9]{10,}-[A-Za-z0-9\-]+",
        secret_type=SecretType.TOKEN,
        severity=Severity.HIGH,
        description="Slack bot, user and app tokens",
        prefix_anchored=True,
    ),
    Rule(
        id="json-web-token",
        name="JSON Web Token",
        pattern=r"eyJ[A-Za-z0-9_\-]{10,}\.eyJ[A-Za-z0-9_\-]{10,}\.[A-Za-z0-9_\-]+",
        secret_type=SecretType.TOKEN,
        severity=Severity.HIGH,
        description="Signed JWTs embedded in source",
        prefix_anchored=True,
    ),
    Rule(
        id="private-key",
        name="Private Key",
        pattern=(
            r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----"
            r"[\s\S]*?"
            r"-----END (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----"
        ),
        secret_type=SecretType.PRIVATE_KEY,
        severity=Severity.CRITICAL,
        description="PEM encoded private key blocks",
        prefix_anchored=True,
    ),
    Rule(
        id="certificate",
        name="Certificate",
        pattern=r"-----BEGIN CERTIFICATE-----[\s\S]*?-----END CERTIFICATE-----",
        secret_type=SecretType.CERTIFICATE,
        severity=Severity.MEDIUM,
        description="PEM encoded certificates",
        prefix_anchored=True,
    ),
    Rule(
        id="hardcoded-password",
        name="Hardcoded Password",
        pattern=r"(?i)(?:password|passwd|pwd)[A-Za-z0-9_]*['\"]?\s*[=:]\s*['\"](?!\$\{)([^'\"\s]{6,})['\"]",
        secret_type=SecretType.PASSWORD,
        severity=Severity.HIGH,
        description="Password literals assigned to password-like names",
        min_entropy=2.0,
    ),
    Rule(
        id="generic-secret-assignment",
        name="Generic Secret Assignment",
        pattern=(
            r"(?i)(?:api[_\-]?key|secret|token|credential|auth)[A-Za-z0-9_]*['\"]?\s*[=:]\s*"
            r"['\"]([A-Za-z0-9+/=_\-\.]{16,})['\"]"
        ),
        secret_type=SecretType.TOKEN,
        severity=Severity.MEDIUM,
        description="High-entropy literals assigned to key, token or secret names",
        min_entropy=3.0,
    ),
    Rule(
        id="credentials-in-url",
        name="Credentials in URL",
        pattern=r"(?i)\b[a-z][a-z0-9+.\-]*://[^\s:/@'\"]+:[^\s@'\"/]+@[^\s'\"]+",
        secret_type=SecretType.URL,
        severity=Severity.HIGH,
        description="Connection strings carrying a username and password",
    ),
    Rule(
        id="email-address",
        name="Email Address",
        pattern=r"(?<![A-Za-z0-9._%+\-])[A-Za-z0-9._%+\-]+@[A-Za-z0-9\-]+(?:\.[A-Za-z0-9\-]+)*\.[A-Za-z]{2,}",
        secret_type=SecretType.EMAIL,
        severity=Severity.LOW,
        description="Email addresses in source code",
    ),
    Rule(
        id="us-ssn",
        name="US Social Security Number",
        pattern=r"(?<!\d)(?!000|666|9\d\d)\d{3}-(?!00)\d{2}-(?!0000)\d{4}(?!\d)",
        secret_type=SecretType.PII,
        severity=Severity.MEDIUM,
        description="US social security numbers",
    ),
)


def compile_rule(rule: Rule, order: int = 0) -> CompiledRule:
    """Compile one rule to a bytes regex.

    Raises:
        RuleCompilationError: If the pattern is not a valid regular expression.
    """
    try:
        regex = re.compile(rule.pattern.encode("utf-8"))
    except re.error as exc:
        raise RuleCompilationError(rule.id, str(exc)) from exc
    return CompiledRule(rule=rule, regex=regex, order=order)


def compile_rules(
    rules: Iterable[Rule],
) -> tuple[list[CompiledRule], list[RuleCompilationError]]:
    """Compile every enabled rule, isolating failures per rule."""
    compiled: list[CompiledRule] = []
    errors: list[RuleCompilationError] = []

    for order, rule in enumerate(rules):
        if not rule.enabled:
            continue
        try:
            compiled.append(compile_rule(rule, order))
        except RuleCompilationError as exc:
            logger.warning(str(exc))
            errors.append(exc)

    logger.debug(f"Compiled {len(compiled)} rules ({len(errors)} failed)")
    return compiled, errors
