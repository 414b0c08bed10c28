"""Confidence refinement for raw matches.

In regex mode the confidence comes from the rule alone. In ai and hybrid
modes a classifier is consulted for every match; when it cannot answer,
the match keeps its regex confidence and is flagged as degraded instead
of failing the scan.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Sequence

from ghostguard.analyze.classifier import Classifier, ClassifierResult, ClassifierUnavailable
from ghostguard.config import config
from ghostguard.detect.models import ConfidenceAdjustment, RawMatch, ScanMode

logger = logging.getLogger(__name__)

REGEX_BASELINE = 0.6
PREFIX_ANCHOR_BONUS = 0.2

UNAVAILABLE_PREFIX = "Classifier unavailable"


def regex_confidence(match: RawMatch) -> float:
    """Rule-only confidence: provider-prefixed formats score higher."""
    if match.prefix_anchored:
        return REGEX_BASELINE + PREFIX_ANCHOR_BONUS
    return REGEX_BASELINE


def _degraded(match: RawMatch, reason: str) -> ConfidenceAdjustment:
    return ConfidenceAdjustment(
        confidence=regex_confidence(match),
        reasoning=f"{UNAVAILABLE_PREFIX}: {reason}",
        degraded=True,
    )


def combine(match: RawMatch, result: ClassifierResult, mode: ScanMode) -> ConfidenceAdjustment:
    if mode == ScanMode.AI:
        confidence = result.confidence
    else:
        confidence = (regex_confidence(match) + result.confidence) / 2
    return ConfidenceAdjustment(
        confidence=round(confidence, 4),
        secret_type_override=result.secret_type,
        reasoning=result.reasoning,
    )


class ClassifierAdapter:
    """Turns raw matches into confidence adjustments for one scan mode.

    Classifier calls for a batch run on a bounded pool shared by every
    caller of this adapter, so the number of in-flight classifier requests
    never exceeds ``max_concurrent`` however many files are being scanned.
    """

    def __init__(
        self,
        classifier: Classifier | None = None,
        timeout: float | None = None,
        batch_timeout: float | None = None,
        max_concurrent: int = 4,
    ):
        self.classifier = classifier
        self.timeout = timeout if timeout is not None else config.classifier_timeout
        self.batch_timeout = (
            batch_timeout if batch_timeout is not None else config.classifier_batch_timeout
        )
        self.max_concurrent = max(1, max_concurrent)
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_concurrent,
                    thread_name_prefix="ghostguard-classifier",
                )
            return self._executor

    def _classify(self, match: RawMatch, context: Sequence[str]) -> ClassifierResult:
        if self.classifier is None:
            raise ClassifierUnavailable("no classifier configured")
        return self.classifier.classify(match.matched_text, context, self.timeout)

    def _adjust(
        self,
        match: RawMatch,
        context: Sequence[str],
        mode: ScanMode,
    ) -> ConfidenceAdjustment:
        try:
            result = self._classify(match, context)
        except ClassifierUnavailable as exc:
            logger.debug(f"{match.file_path}:{match.line_start} classifier unavailable: {exc}")
            return _degraded(match, str(exc))
        except Exception as exc:
            logger.warning(
                f"{match.file_path}:{match.line_start} classifier error: "
                f"{type(exc).__name__}: {exc}"
            )
            return _degraded(match, f"{type(exc).__name__}: {exc}")
        return combine(match, result, mode)

    def refine(
        self,
        match: RawMatch,
        context: Sequence[str],
        mode: ScanMode,
    ) -> ConfidenceAdjustment:
        """Confidence for a single match."""
        if mode == ScanMode.REGEX:
            return ConfidenceAdjustment(confidence=regex_confidence(match))
        return self._adjust(match, context, mode)

    def refine_batch(
        self,
        matches: Sequence[RawMatch],
        contexts: Sequence[Sequence[str]],
        mode: ScanMode,
    ) -> list[ConfidenceAdjustment]:
        """Confidence for every match, in input order.

        Waits at most ``batch_timeout`` seconds for the classifier; matches
        still pending after that are degraded.
        """

        if len(matches) != len(contexts):
            raise ValueError(f"Got {len(contexts)} contexts for {len(matches)} matches")
        if mode == ScanMode.REGEX or not matches:
            return [ConfidenceAdjustment(confidence=regex_confidence(m)) for m in matches]

        pool = self._pool()
        futures: list[Future[ConfidenceAdjustment]] = [
            pool.submit(self._adjust, match, context, mode)
            for match, context in zip(matches, contexts)
        ]
        _, pending = wait(futures, timeout=self.batch_timeout)

        adjustments = []
        for match, future in zip(matches, futures):
            if future in pending:
                future.cancel()
                adjustments.append(
                    _degraded(match, f"batch timed out after {self.batch_timeout:g}s")
                )
            else:
                adjustments.append(future.result())

        if pending:
            logger.warning(
                f"Classifier batch timed out: {len(pending)}/{len(futures)} matches degraded"
            )
        return adjustments

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()
