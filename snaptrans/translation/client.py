"""TranslationClient: rate-limited, prioritized, retrying access to the provider.

Queued requests are served by one drain task, one item at a time; it is
the only code that mutates the priority queue, so no locks are needed.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence

from ..errors import (
    ConfigurationError,
    SnapTransError,
    TranslationError,
    TranslationRequestError,
    TranslationUnknownError,
    error_for_status,
)
from ..models import ApiResponse, PerformanceMetrics, TranslationRequest, TranslationResult
from .languages import FORMALITY_VALUES, build_translate_params
from .offline import OFFLINE_BASE_URL, offline_transport
from .queue import QueueItem, TranslationQueue
from .rate_limit import SlidingWindowRateLimiter
from .retry import RetryPolicy, with_retry
from .transport import HttpTransport, HttpxTransport

logger = logging.getLogger(__name__)

PROVIDER_CONFIDENCE = 0.95


def parse_translation_response(
    data: Any,
    request: TranslationRequest,
    processing_time_ms: float,
    provider: str = "deepl",
) -> TranslationResult:
    """Build a TranslationResult from ``{"translations": [{detected_source_language, text}]}``.

    The provider reports no confidence, so a fixed value is used.
    """
    translations = data.get("translations") if isinstance(data, dict) else None
    if not translations:
        raise TranslationUnknownError("No translations returned from translation provider")
    first = translations[0]
    detected = first.get("detected_source_language") or request.source_lang
    return TranslationResult(
        original_text=request.text,
        translated_text=str(first.get("text", "")),
        source_lang=str(detected).lower(),
        target_lang=request.target_lang,
        confidence=PROVIDER_CONFIDENCE,
        processing_time_ms=processing_time_ms,
        provider=provider,
    )


class TranslationClient:
    """Client for a DeepL-style REST translator.

    Doxygen:
    - @param transport: HTTP transport used for every provider call.
    - @param rate_limiter: Sliding-window budget shared by all calls.
    - @param retry_policy: Backoff settings for retryable failures.
    - @param formality: Optional provider formality flag.
    - @param preserve_formatting: Ask the provider to keep formatting.
    - @param batch_size: Group size for ``translate_batch``.
    - @param batch_pause: Seconds to pause between batch groups.
    - @param drain_pause: Seconds the drain task yields between queued items.
    """

    def __init__(
        self,
        transport: HttpTransport,
        *,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        retry_policy: Optional[RetryPolicy] = None,
        formality: Optional[str] = None,
        preserve_formatting: bool = False,
        batch_size: int = 5,
        batch_pause: float = 0.1,
        drain_pause: float = 0.05,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
        provider: str = "deepl",
    ) -> None:
        if formality and formality not in FORMALITY_VALUES:
            raise ConfigurationError(f"Unsupported formality: {formality!r}", config_key="translator.formality")
        if batch_size <= 0:
            raise ConfigurationError("batch_size must be positive", config_key="translator.batch_size")
        self.transport = transport
        self.rate_limiter = rate_limiter or SlidingWindowRateLimiter()
        self.retry_policy = retry_policy or RetryPolicy()
        self.formality = formality
        self.preserve_formatting = preserve_formatting
        self.batch_size = int(batch_size)
        self.batch_pause = float(batch_pause)
        self.drain_pause = float(drain_pause)
        self.provider = provider
        self._sleep = sleep
        self._rng = rng

        self._queue = TranslationQueue()
        self._inbox: Deque[QueueItem] = deque()
        self._drain_task: Optional[asyncio.Task] = None
        self._in_flight: Optional[QueueItem] = None
        self._ids = itertools.count(1)
        self._closed = False

        self.request_count = 0
        self.character_count = 0

    async def __aenter__(self) -> "TranslationClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    async def _attempt(self, request: TranslationRequest) -> ApiResponse[TranslationResult]:
        start = time.perf_counter()
        if not request.text or not request.text.strip():
            return ApiResponse.fail(TranslationRequestError("Text to translate must not be empty"))
        await self.rate_limiter.acquire()
        try:
            params = build_translate_params(request, self.formality, self.preserve_formatting)
            response = await self.transport.request("POST", "/v2/translate", data=params)
            if not response.ok:
                raise error_for_status(response.status_code, response.text)
            result = parse_translation_response(
                response.json(), request, (time.perf_counter() - start) * 1000.0, self.provider
            )
        except TranslationError as exc:
            return ApiResponse.fail(exc, metrics=self._metrics(start, request))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            return ApiResponse.fail(
                TranslationUnknownError(f"Translation failed: {exc}"), metrics=self._metrics(start, request)
            )
        except Exception as exc:
            # Unclassified failures (e.g. from a custom transport) are retryable.
            logger.exception("Unexpected error during translation attempt")
            return ApiResponse.fail(
                TranslationUnknownError(f"Translation failed: {exc!r}"), metrics=self._metrics(start, request)
            )
        self.request_count += 1
        self.character_count += len(request.text)
        return ApiResponse.ok(result, metrics=self._metrics(start, request))

    @staticmethod
    def _metrics(start: float, request: TranslationRequest) -> PerformanceMetrics:
        elapsed = (time.perf_counter() - start) * 1000.0
        return PerformanceMetrics(translation_time_ms=elapsed, total_time_ms=elapsed, text_length=len(request.text))

    # ------------------------------------------------------------------
    # Direct calls
    # ------------------------------------------------------------------

    async def translate_text(self, request: TranslationRequest) -> ApiResponse[TranslationResult]:
        """Translate now, retrying retryable failures. Never raises for provider errors."""
        response = await with_retry(lambda: self._attempt(request), self.retry_policy, sleep=self._sleep, rng=self._rng)
        if not response.success:
            logger.warning(
                "Translation failed after %d retries: %s", response.retry_count, response.error
            )
        return response

    async def translate_batch(self, requests: Sequence[TranslationRequest]) -> List[ApiResponse[TranslationResult]]:
        """Translate in concurrent groups of ``batch_size``; each outcome is independent."""
        results: List[ApiResponse[TranslationResult]] = []
        requests = list(requests)
        for offset in range(0, len(requests), self.batch_size):
            group = requests[offset:offset + self.batch_size]
            outcomes = await asyncio.gather(*(self.translate_text(r) for r in group), return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    error = outcome if isinstance(outcome, SnapTransError) else TranslationUnknownError(str(outcome))
                    outcome = ApiResponse.fail(error)
                results.append(outcome)
            if offset + self.batch_size < len(requests):
                await self._sleep(self.batch_pause)
        return results

    # ------------------------------------------------------------------
    # Queued calls
    # ------------------------------------------------------------------

    def enqueue(self, request: TranslationRequest) -> "asyncio.Future[TranslationResult]":
        """Schedule ``request`` on the priority queue; the future resolves exactly once."""
        if self._closed:
            raise TranslationError("Translation client is closed")
        loop = asyncio.get_running_loop()
        item = QueueItem(
            id=f"tr-{next(self._ids)}",
            request=request,
            priority=request.priority,
            future=loop.create_future(),
        )
        self._inbox.append(item)
        self._ensure_drain()
        return item.future

    async def queue_translation(self, request: TranslationRequest) -> TranslationResult:
        """Queue ``request`` and wait for it. Raises the classified TranslationError on failure."""
        return await self.enqueue(request)

    def _ensure_drain(self) -> None:
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    def _absorb_inbox(self) -> None:
        while self._inbox:
            self._queue.push(self._inbox.popleft())

    async def _drain(self) -> None:
        try:
            while True:
                self._absorb_inbox()
                item = self._queue.pop()
                if item is None:
                    return
                if item.future.done():
                    continue
                # Stays referenced through any retry backoff so close() can reject it.
                self._in_flight = item
                try:
                    response = await self._attempt(item.request)
                    await self._settle(item, response)
                except Exception as exc:
                    logger.exception("Queued translation %s could not be settled", item.id)
                    if not item.future.done():
                        item.future.set_exception(TranslationUnknownError(f"Translation failed: {exc!r}"))
                finally:
                    self._in_flight = None
                if len(self._queue) or self._inbox:
                    await self._sleep(self.drain_pause)
        finally:
            self._drain_task = None

    async def _settle(self, item: QueueItem, response: ApiResponse[TranslationResult]) -> None:
        if item.future.done():
            return
        if response.success:
            item.future.set_result(response.data)
            return
        error = response.error
        if error is not None and error.retryable and item.retry_count < self.retry_policy.max_retries:
            delay = self.retry_policy.delay_for(item.retry_count, self._rng)
            item.retry_count += 1
            logger.info(
                "Retrying queued %s after %s (attempt %d/%d) in %.2fs",
                item.id,
                error.error_code,
                item.retry_count,
                self.retry_policy.max_retries,
                delay,
            )
            await self._sleep(delay)
            self._queue.push(item)
            return
        logger.warning("Queued translation %s failed: %s", item.id, error)
        item.future.set_exception(error or TranslationUnknownError("Translation failed"))

    # ------------------------------------------------------------------
    # Provider metadata
    # ------------------------------------------------------------------

    async def _get(self, path: str) -> Any:
        await self.rate_limiter.acquire()
        response = await self.transport.request("GET", path)
        if not response.ok:
            raise error_for_status(response.status_code, response.text)
        return response.json()

    async def get_usage(self) -> ApiResponse[Dict[str, int]]:
        try:
            data = await self._get("/v2/usage")
            usage = {"character_count": int(data["character_count"]), "character_limit": int(data["character_limit"])}
        except TranslationError as exc:
            return ApiResponse.fail(exc)
        except (KeyError, TypeError, ValueError) as exc:
            return ApiResponse.fail(TranslationUnknownError(f"Malformed usage response: {exc}"))
        return ApiResponse.ok(usage)

    async def get_supported_languages(self) -> ApiResponse[List[Dict[str, Any]]]:
        try:
            data = await self._get("/v2/languages")
            items = data.get("languages") if isinstance(data, dict) else data
            languages = [
                {
                    "language": str(item["language"]),
                    "name": str(item.get("name", item["language"])),
                    "supports_formality": bool(item.get("supports_formality", False)),
                }
                for item in items
            ]
        except TranslationError as exc:
            return ApiResponse.fail(exc)
        except (KeyError, TypeError, AttributeError) as exc:
            return ApiResponse.fail(TranslationUnknownError(f"Malformed languages response: {exc}"))
        return ApiResponse.ok(languages)

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "request_count": self.request_count,
            "character_count": self.character_count,
            "queue_length": len(self._queue) + len(self._inbox),
            "rate_limit": self.rate_limiter.status(),
        }

    def reset(self) -> None:
        self.request_count = 0
        self.character_count = 0
        self.rate_limiter.reset()

    async def close(self) -> None:
        """Stop the drain task, reject everything still queued and close the transport."""
        if self._closed:
            return
        self._closed = True
        in_flight = self._in_flight
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        pending = list(self._inbox) + self._queue.drain()
        self._inbox.clear()
        if in_flight is not None:
            pending.append(in_flight)
        self._in_flight = None
        for item in pending:
            if not item.future.done():
                item.future.set_exception(TranslationError("Translation client closed"))
        await self.transport.aclose()


def build_translation_client(settings, transport=None) -> TranslationClient:
    """Create a client from ``Settings``; without an API key the offline provider is used.

    Doxygen:
    - @param settings: Loaded ``snaptrans.config.Settings``.
    - @param transport: Optional httpx transport override (tests).
    """
    tr = settings.translator
    if transport is None and not tr.api_key:
        logger.warning("No translation API key configured; using the offline provider")
        http = HttpxTransport(OFFLINE_BASE_URL, timeout=tr.request_timeout, transport=offline_transport())
        provider = "offline"
    else:
        http = HttpxTransport(tr.resolved_base_url(), tr.api_key, timeout=tr.request_timeout, transport=transport)
        provider = "deepl"
    return TranslationClient(
        http,
        rate_limiter=SlidingWindowRateLimiter(tr.max_requests, tr.window_seconds),
        retry_policy=RetryPolicy.from_settings(settings.retry),
        formality=tr.formality,
        preserve_formatting=tr.preserve_formatting,
        batch_size=tr.batch_size,
        batch_pause=tr.batch_pause,
        drain_pause=tr.drain_pause,
        provider=provider,
    )
