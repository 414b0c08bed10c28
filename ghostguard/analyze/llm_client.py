"""Anthropic Messages API client.

Provides the classifier backend with:
- Automatic retry with exponential backoff
- Structured JSON response parsing
- Token usage tracking
- A per-call timeout
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any

import httpx

from ghostguard.config import config

logger = logging.getLogger(__name__)

# API constants
ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


@dataclass
class LLMResponse:
    """Parsed response from the LLM."""

    content: str
    json_data: dict[str, Any] | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""
    latency_ms: float = 0.0
    success: bool = True
    error: str | None = None


@dataclass
class TokenUsageTracker:
    """Tracks cumulative token usage across calls."""

    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_calls: int = 0
    failed_calls: int = 0

    def record(self, response: LLMResponse) -> None:
        self.total_calls += 1
        if response.success:
            self.total_input_tokens += response.input_tokens
            self.total_output_tokens += response.output_tokens
        else:
            self.failed_calls += 1

    @property
    def total_tokens(self) -> int:
        return self.total_input_tokens + self.total_output_tokens

    def summary(self) -> str:
        return (
            f"LLM usage: {self.total_calls} calls "
            f"({self.failed_calls} failed), "
            f"{self.total_tokens:,} tokens"
        )


def extract_json(text: str) -> dict[str, Any] | None:
    """Pull a JSON object out of model output.

    Accepts a bare object, a fenced ```json block, or the outermost
    brace-delimited span of surrounding prose.
    """

    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except json.JSONDecodeError:
        pass

    json_block = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
    if json_block:
        try:
            return json.loads(json_block.group(1))
        except json.JSONDecodeError:
            pass

    first_brace = text.find("{")
    last_brace = text.rfind("}")
    if first_brace != -1 and last_brace > first_brace:
        try:
            return json.loads(text[first_brace : last_brace + 1])
        except json.JSONDecodeError:
            pass

    logger.warning("Failed to extract JSON from LLM response")
    return None


class LLMClient:
    """Thin Messages API client used by the LLM classifier."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        max_retries: int = 3,
        base_timeout: float | None = None,
        backoff_base: float = 1.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = api_key or config.anthropic_api_key
        self.model = model or config.llm_model
        self.max_retries = max_retries
        self.base_timeout = base_timeout or config.classifier_timeout
        self.backoff_base = backoff_base
        self.usage = TokenUsageTracker()

        if not self.api_key:
            raise ValueError(
                "Anthropic API key not set. "
                "Set ANTHROPIC_API_KEY in .env or pass api_key parameter."
            )

        self._client = httpx.Client(
            timeout=httpx.Timeout(self.base_timeout, connect=min(self.base_timeout, 10.0)),
            headers={
                "x-api-key": self.api_key,
                "anthropic-version": ANTHROPIC_API_VERSION,
                "content-type": "application/json",
            },
            transport=transport,
        )

    def _make_request(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        timeout: float | None,
    ) -> dict[str, Any]:
        payload = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": 0.0,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        response = self._client.post(
            ANTHROPIC_API_URL,
            json=payload,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
        )
        response.raise_for_status()
        return response.json()

    def _parse_response(self, raw: dict[str, Any], start_time: float) -> LLMResponse:
        content = "\n".join(
            block["text"]
            for block in raw.get("content", [])
            if block.get("type") == "text"
        )
        usage = raw.get("usage", {})

        return LLMResponse(
            content=content,
            json_data=extract_json(content) if content else None,
            input_tokens=usage.get("input_tokens", 0),
            output_tokens=usage.get("output_tokens", 0),
            model=raw.get("model", self.model),
            latency_ms=(time.time() - start_time) * 1000,
            success=True,
        )

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        timeout: float | None = None,
    ) -> LLMResponse:
        """Make a JSON-producing call with retry logic.

        Never raises for HTTP failures; the returned response has
        ``success=False`` and an ``error`` message instead.
        """

        last_error = None
        max_tokens = max_tokens or config.llm_max_tokens

        for attempt in range(self.max_retries):
            try:
                start_time = time.time()
                raw = self._make_request(system_prompt, user_prompt, max_tokens, timeout)
                response = self._parse_response(raw, start_time)
                self.usage.record(response)

                logger.debug(
                    f"LLM call: {response.input_tokens}in + "
                    f"{response.output_tokens}out tokens, "
                    f"{response.latency_ms:.0f}ms"
                )
                return response

            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                last_error = f"HTTP {status}"

                if status == 429:
                    wait = min(2**attempt * 5, 60) * self.backoff_base
                    logger.warning(
                        f"Rate limited (429). Waiting {wait:.1f}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(wait)
                    continue
                if status == 529 or status >= 500:
                    wait = 2**attempt * 2 * self.backoff_base
                    logger.warning(
                        f"Server error ({status}). Retrying in {wait:.1f}s "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    time.sleep(wait)
                    continue

                logger.error(f"API error ({status}): {e}")
                break

            except httpx.TimeoutException:
                last_error = "Request timed out"
                wait = 2**attempt * self.backoff_base
                logger.warning(
                    f"Timeout. Retrying in {wait:.1f}s "
                    f"(attempt {attempt + 1}/{self.max_retries})"
                )
                time.sleep(wait)
                continue

            except (httpx.HTTPError, ValueError) as e:
                last_error = str(e)
                logger.error(f"Unexpected error: {e}")
                break

        error_response = LLMResponse(
            content="",
            success=False,
            error=f"Failed after {self.max_retries} attempts: {last_error}",
        )
        self.usage.record(error_response)
        return error_response

    def close(self) -> None:
        """Close the HTTP client."""

        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
