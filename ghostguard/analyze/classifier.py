"""Secret classifiers.

A classifier judges one candidate secret given its surrounding lines and
answers with a confidence, an optional corrected type and a short reason.
It is a single-method capability so the scan engine can run against a
local heuristic, a hosted LLM or any HTTP inference service.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol, Sequence

import httpx

from ghostguard.analyze.llm_client import LLMClient
from ghostguard.config import Config, config
from ghostguard.detect.matcher import shannon_entropy
from ghostguard.detect.models import SecretType

logger = logging.getLogger(__name__)


class ClassifierUnavailable(Exception):
    """The classifier could not produce an answer for a match."""


@dataclass(frozen=True)
class ClassifierResult:
    confidence: float
    secret_type: SecretType | None = None
    reasoning: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")


class Classifier(Protocol):
    def classify(
        self,
        text: str,
        context_lines: Sequence[str],
        timeout: float,
    ) -> ClassifierResult:
        ...


def _parse_secret_type(value: Any) -> SecretType | None:
    if not value:
        return None
    for secret_type in SecretType:
        if str(value).lower() in (secret_type.value.lower(), secret_type.name.lower()):
            return secret_type
    return None


def _result_from_json(data: dict[str, Any] | None, source: str) -> ClassifierResult:
    if not data:
        raise ClassifierUnavailable(f"{source} returned no JSON verdict")
    try:
        confidence = float(data["confidence"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ClassifierUnavailable(f"{source} verdict has no usable confidence") from exc

    return ClassifierResult(
        confidence=max(0.0, min(1.0, confidence)),
        secret_type=_parse_secret_type(data.get("secretType") or data.get("secret_type")),
        reasoning=data.get("reasoning"),
    )


# Heuristic classifier

_PLACEHOLDER_INDICATORS = re.compile(
    r"(?i)("
    r"placeholder|changeme|your[_\-]?|insert[_\-]?|replace[_\-]?"
    r"|xxx+|dummy|fake|sample|example|redacted|todo|fixme"
    r"|process\.env|os\.environ|os\.getenv|ENV\[|getenv"
    r"|<[A-Z_]+>|\{\{.*\}\}|\$\{.*\}"
    r")"
)

_TEST_CODE_INDICATORS = re.compile(
    r"(?i)(def test_|@pytest|unittest|describe\(|\bit\(|assert|mock|fixture|__tests__)"
)

_SECRET_KEYWORDS = re.compile(
    r"(?i)(secret|passw(or)?d|pwd|token|api[_\-]?key|private|credential|auth|bearer)"
)


class HeuristicClassifier:
    """Local scoring from placeholder, test-code, entropy and keyword signals."""

    def classify(
        self,
        text: str,
        context_lines: Sequence[str],
        timeout: float,
    ) -> ClassifierResult:
        value = text.strip().strip("\"'`")
        context = "\n".join(context_lines)

        if _PLACEHOLDER_INDICATORS.search(value):
            return ClassifierResult(0.1, reasoning="Value looks like a placeholder or env reference")
        if len(set(value)) <= 2 or len(value) < 8:
            return ClassifierResult(0.15, reasoning="Value is too short or repetitive to be a secret")

        confidence = 0.5
        reasons = []

        entropy = shannon_entropy(value)
        if entropy >= 4.0:
            confidence += 0.3
            reasons.append(f"high entropy ({entropy:.2f})")
        elif entropy >= 3.0:
            confidence += 0.15
            reasons.append(f"moderate entropy ({entropy:.2f})")
        else:
            confidence -= 0.1
            reasons.append(f"low entropy ({entropy:.2f})")

        if _SECRET_KEYWORDS.search(context):
            confidence += 0.1
            reasons.append("secret-like name nearby")
        if _TEST_CODE_INDICATORS.search(context):
            confidence -= 0.25
            reasons.append("appears in test code")

        confidence = max(0.0, min(1.0, confidence))
        return ClassifierResult(
            confidence=round(confidence, 4),
            reasoning="Heuristic: " + ", ".join(reasons),
        )


# LLM classifier

CLASSIFIER_SYSTEM_PROMPT = """\
You review candidate hardcoded secrets found in source code.
Decide whether the candidate is a real credential or personal data that
must not be committed, or a false positive such as a placeholder, an
example value, a hash, or a reference to configuration.

Always respond with valid JSON matching the requested schema."""


def _build_classifier_prompt(text: str, context_lines: Sequence[str]) -> str:
    context = "\n".join(context_lines)
    types = ", ".join(secret_type.value for secret_type in SecretType)
    return f"""\
## Candidate
{text}

## Surrounding code
```
{context}
```

Respond ONLY with a JSON object:
{{
    "confidence": 0.0 to 1.0 (probability this is a real secret),
    "secretType": one of {types}, or null to keep the detector's type,
    "reasoning": "One sentence"
}}"""


class LLMClassifier:
    """Classifier backed by an LLM chat completion."""

    def __init__(self, client: LLMClient):
        self.client = client

    def classify(
        self,
        text: str,
        context_lines: Sequence[str],
        timeout: float,
    ) -> ClassifierResult:
        response = self.client.complete_json(
            system_prompt=CLASSIFIER_SYSTEM_PROMPT,
            user_prompt=_build_classifier_prompt(text, context_lines),
            timeout=timeout,
        )
        if not response.success:
            raise ClassifierUnavailable(response.error or "LLM call failed")
        return _result_from_json(response.json_data, "LLM")


# HTTP classifier

class HttpClassifier:
    """Classifier behind a JSON inference endpoint.

    POSTs ``{"text": ..., "contextLines": [...]}`` and expects
    ``{"confidence": ..., "secretType": ..., "reasoning": ...}`` back.
    """

    def __init__(self, url: str, transport: httpx.BaseTransport | None = None):
        self.url = url
        self._client = httpx.Client(transport=transport)

    def classify(
        self,
        text: str,
        context_lines: Sequence[str],
        timeout: float,
    ) -> ClassifierResult:
        try:
            response = self._client.post(
                self.url,
                json={"text": text, "contextLines": list(context_lines)},
                timeout=timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ClassifierUnavailable(f"Classifier endpoint failed: {exc}") from exc
        return _result_from_json(data if isinstance(data, dict) else None, "Classifier endpoint")

    def close(self) -> None:
        self._client.close()


def build_classifier(cfg: Config = config) -> Classifier:
    """Instantiate the backend named by ``cfg.classifier_backend``."""
    backend = cfg.classifier_backend
    if backend == "llm":
        return LLMClassifier(LLMClient(api_key=cfg.anthropic_api_key, model=cfg.llm_model))
    if backend == "http":
        if not cfg.classifier_url:
            raise ValueError("GHOSTGUARD_CLASSIFIER_URL is required for the http classifier")
        return HttpClassifier(cfg.classifier_url)
    if backend != "heuristic":
        logger.warning(f"Unknown classifier backend '{backend}', using heuristic")
    return HeuristicClassifier()
