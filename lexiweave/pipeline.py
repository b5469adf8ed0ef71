"""High-level orchestration of segmentation, model requests and alignment."""

from __future__ import annotations

import hashlib
import json
import logging
import pathlib
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .alignment import align_replacements
from .documents import detect_handler
from .errors import (
    LexiweaveError,
    OverwriteRefusedError,
    TranslationProviderError,
)
from .policy import ErrorPolicy
from .providers import ReplacementProvider
from .ratelimit import RateLimiterRegistry
from .segmenter import ContentSegmenter
from .structures import (
    ProviderAttempt,
    ProviderReply,
    Replacement,
    Segment,
    SegmenterConfig,
    SegmentResult,
)

logger = logging.getLogger(__name__)


class ProcessingState:
    """Caller-owned memory of processed fingerprints and cached results."""

    def __init__(self) -> None:
        self.processed_fingerprints: set[str] = set()
        self._cache: Dict[str, Tuple[Replacement, ...]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def cache_key(text: str, target_language: str, replacement_rate: Optional[float]) -> str:
        payload = json.dumps(
            {
                "text": text,
                "targetLanguage": target_language,
                "replacementRate": replacement_rate,
            },
            ensure_ascii=False,
            sort_keys=True,
        )
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()

    def is_processed(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self.processed_fingerprints

    def mark_processed(self, fingerprint: str) -> None:
        with self._lock:
            self.processed_fingerprints.add(fingerprint)

    def cached(self, key: str) -> Optional[Tuple[Replacement, ...]]:
        with self._lock:
            return self._cache.get(key)

    def store(self, key: str, replacements: Sequence[Replacement]) -> None:
        with self._lock:
            self._cache[key] = tuple(replacements)

    def reset(self) -> None:
        with self._lock:
            self.processed_fingerprints.clear()
            self._cache.clear()


@dataclass
class OverlaySummary:
    """Report returned after processing a document."""

    input_path: pathlib.Path
    document_type: str
    total_paragraphs: int
    total_segments: int
    processed_segments: int
    skipped_segments: int
    failed_segments: int
    total_replacements: int
    provider_name: str
    model: str | None
    target_language: str
    source_language: str | None
    replacement_rate: float | None
    elapsed_seconds: float
    results: List[SegmentResult] = field(default_factory=list)
    error_messages: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "input": str(self.input_path),
            "documentType": self.document_type,
            "provider": self.provider_name,
            "model": self.model,
            "targetLanguage": self.target_language,
            "sourceLanguage": self.source_language,
            "replacementRate": self.replacement_rate,
            "paragraphs": self.total_paragraphs,
            "segments": [result.to_dict() for result in self.results],
            "errors": list(self.error_messages),
            "elapsedSeconds": round(self.elapsed_seconds, 3),
        }


class OverlayRunner:
    """Coordinates segmentation, throttled model requests and alignment."""

    def __init__(
        self,
        *,
        provider: ReplacementProvider,
        target_language: str,
        source_language: str | None = None,
        replacement_rate: float | None = 0.3,
        segmenter_config: SegmenterConfig | None = None,
        model: str | None = None,
        provider_name: str | None = None,
        requests_per_second: float = 0,
        max_workers: int = 4,
        interactive: bool = False,
        state: ProcessingState | None = None,
        limiters: RateLimiterRegistry | None = None,
        error_policy: ErrorPolicy | None = None,
        max_retries: int = 3,
        retry_backoff: Sequence[float] = (1, 4, 9),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if replacement_rate is not None and not 0 < replacement_rate <= 1:
            raise LexiweaveError(
                f"Replacement rate must be within (0, 1], got {replacement_rate}."
            )
        self.provider = provider
        self.provider_name = provider_name or type(provider).__name__
        self.target_language = target_language
        self.source_language = source_language
        self.replacement_rate = replacement_rate
        self.model = model
        self.requests_per_second = requests_per_second
        self.max_workers = max(1, max_workers)
        self.segmenter = ContentSegmenter(segmenter_config)
        self.state = state or ProcessingState()
        self.limiters = limiters or RateLimiterRegistry()
        self.error_policy = error_policy or ErrorPolicy(interactive=interactive)
        self.max_retries = max_retries
        self.retry_backoff = list(retry_backoff) or [0]
        self._sleep = sleep

    def run(self, input_path: pathlib.Path) -> OverlaySummary:
        start_time = time.time()

        document_type, handler = detect_handler(input_path)
        paragraphs = handler.paragraphs()
        segments = self.segmenter.segment_content(paragraphs)
        logger.info(
            "Prepared %d paragraphs and %d segments from %s.",
            len(paragraphs),
            len(segments),
            input_path,
        )

        results = self.process_segments(segments)

        return OverlaySummary(
            input_path=input_path,
            document_type=document_type,
            total_paragraphs=len(paragraphs),
            total_segments=len(segments),
            processed_segments=sum(
                1 for result in results if not result.skipped and result.error is None
            ),
            skipped_segments=sum(1 for result in results if result.skipped),
            failed_segments=sum(1 for result in results if result.error is not None),
            total_replacements=sum(len(result.replacements) for result in results),
            provider_name=self.provider_name,
            model=self.model,
            target_language=self.target_language,
            source_language=self.source_language,
            replacement_rate=self.replacement_rate,
            elapsed_seconds=time.time() - start_time,
            results=results,
            error_messages=[record.message for record in self.error_policy.records],
        )

    def process_root(self, root: Any) -> List[SegmentResult]:
        """Segment ``root`` and resolve replacements for every segment."""

        return self.process_segments(self.segmenter.segment_content(root))

    def process_segments(self, segments: Sequence[Segment]) -> List[SegmentResult]:
        """Process segments concurrently, returning results in input order."""

        if not segments:
            return []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = [executor.submit(self._process_segment, segment) for segment in segments]
            try:
                return [future.result() for future in futures]
            except BaseException:
                for future in futures:
                    future.cancel()
                raise

    def _process_segment(self, segment: Segment) -> SegmentResult:
        if self.state.is_processed(segment.fingerprint):
            logger.debug("Skipping already processed segment %s.", segment.segment_id)
            return SegmentResult(segment=segment, skipped=True)

        # Offsets are only valid for the exact text they were aligned against.
        key = self.state.cache_key(
            segment.text_content, self.target_language, self.replacement_rate
        )
        cached = self.state.cached(key)
        if cached is not None:
            self.state.mark_processed(segment.fingerprint)
            return SegmentResult(segment=segment, replacements=list(cached), cached=True)

        reply, attempts, error = self._request_candidates(segment)
        if reply is None:
            return SegmentResult(segment=segment, error=error, attempts=attempts)

        candidates = reply.candidates
        candidate_count = len(candidates) if isinstance(candidates, list) else 0
        replacements = align_replacements(
            segment.text_content, candidates, self.replacement_rate
        )
        self.state.store(key, replacements)
        self.state.mark_processed(segment.fingerprint)
        self.error_policy.record_success()
        logger.info(
            "Segment %s: %d candidates, %d replacements.",
            segment.segment_id,
            candidate_count,
            len(replacements),
        )
        return SegmentResult(
            segment=segment,
            replacements=replacements,
            candidate_count=candidate_count,
            provider_config=reply.config_name,
            attempts=attempts,
        )

    def _request_candidates(
        self, segment: Segment
    ) -> Tuple[Optional[ProviderReply], List[ProviderAttempt], Optional[str]]:
        """Ask the provider, retrying with back-off, then defer to the error policy.

        Errors a provider marks as not retryable skip the back-off retries.
        """

        limiter = self.limiters.get_limiter(
            self.provider.endpoint, self.requests_per_second
        )
        attempts: List[ProviderAttempt] = []
        retries = 0
        while True:
            try:
                reply = limiter.submit(
                    self.provider.request,
                    segment.text_content,
                    target_language=self.target_language,
                    source_language=self.source_language,
                    replacement_rate=self.replacement_rate,
                    model=self.model,
                )
            except TranslationProviderError as exc:
                attempts.extend(exc.attempts)
                retries += 1
                if exc.retryable is not False and retries <= self.max_retries:
                    wait_time = self.retry_backoff[
                        min(retries - 1, len(self.retry_backoff) - 1)
                    ]
                    logger.warning(
                        "Could not process segment %s (attempt %d of %d: %s). "
                        "Retrying automatically...",
                        segment.segment_id,
                        retries,
                        self.max_retries,
                        exc,
                    )
                    self._sleep(wait_time)
                    continue

                action = self.error_policy.handle_error(
                    exc.category,
                    f"Segment {segment.segment_id} ({segment.anchor.location}) "
                    f"failed after {retries} attempt(s). {exc}",
                    segment_id=segment.segment_id,
                )
                if action == "retry":
                    retries = 0
                    continue
                return None, attempts, str(exc)

            attempts.extend(reply.attempts)
            return reply, attempts, None


def validate_paths(
    input_path: pathlib.Path,
    report_path: pathlib.Path | None,
    force_overwrite: bool,
) -> None:
    """Validate input/report path combinations and overwrite policy."""

    if not input_path.exists():
        raise FileNotFoundError(
            "Input file not found. Please provide a readable .docx, .pptx, .txt or .md file."
        )
    if not input_path.is_file():
        raise LexiweaveError("Input path must be a file.")

    if report_path is None:
        return

    if input_path.resolve() == report_path.resolve():
        raise OverwriteRefusedError(
            "The report path matches the input document. Refusing to overwrite the source file."
        )

    if report_path.exists() and not force_overwrite:
        raise OverwriteRefusedError(
            "The report file already exists. Choose another path or pass --force."
        )


def write_report(summary: OverlaySummary, destination: pathlib.Path) -> None:
    """Persist the per-segment replacement report as JSON."""

    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_text(
        json.dumps(summary.to_dict(), ensure_ascii=False, indent=2) + "\n",
        encoding="utf-8",
    )
