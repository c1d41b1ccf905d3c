"""OCRExecutionUnit: asynchronous manager of the isolated OCR execution context.

Requests are serialized through one asyncio lock because the engine is
not reentrant. Responses are read on a helper thread and handed back to
the event loop, so a hung engine only ever costs the caller its timeout.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import statistics
import threading
import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from ..errors import ImageDecodeError, OCREngineError, OCRError, OCRTimeoutError
from ..image.preprocess import decode_image, encode_png
from ..image.synthetic import WARMUP_SIZES, warmup_images
from ..models import ApiResponse, ImageInput, OCRConfig, OCRResult, PerformanceMetrics, UnitState
from . import protocol
from .engine import TesseractEngine
from .protocol import Envelope
from .worker import EngineFactory, make_worker

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0
DEFAULT_ENGINE_OVERHEAD_BYTES = 50 * 1024 * 1024

LanguageSpec = Union[str, Iterable[str]]


def _language_string(languages: LanguageSpec) -> str:
    return OCRConfig(language_set=languages).languages


def _log_stop_failure(future: "asyncio.Future[None]") -> None:
    if not future.cancelled() and future.exception() is not None:
        logger.warning("Stopping OCR execution context failed: %s", future.exception())


class OCRExecutionUnit:
    """Owns one OCR engine behind a message-passing execution context.

    Doxygen:
    - @param engine_factory: Zero-argument callable building an ``OCREngine``; must be
      picklable when ``execution`` is ``"process"``.
    - @param execution: ``"process"`` (killable on hang) or ``"thread"``.
    - @param request_timeout: Seconds to wait for any single reply.
    - @param engine_overhead_bytes: Fixed engine footprint used by ``estimate_memory_usage``.
    """

    def __init__(
        self,
        engine_factory: EngineFactory = TesseractEngine,
        *,
        execution: str = "process",
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        engine_overhead_bytes: int = DEFAULT_ENGINE_OVERHEAD_BYTES,
        warmup_sizes: Sequence = WARMUP_SIZES,
        poppler_path: Optional[str] = None,
        poll_interval: float = 0.05,
    ) -> None:
        if request_timeout <= 0:
            raise ValueError("request_timeout must be positive")
        self._engine_factory = engine_factory
        self.execution = execution
        self.request_timeout = float(request_timeout)
        self.engine_overhead_bytes = int(engine_overhead_bytes)
        self.warmup_sizes = tuple(warmup_sizes)
        self.poppler_path = poppler_path
        self._poll_interval = poll_interval

        self.state = UnitState.UNINITIALIZED
        self.current_languages: Optional[str] = None
        self._worker = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._generation = 0
        self._pending: Dict[str, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._lock: Optional[asyncio.Lock] = None
        self._terminated = False

    async def __aenter__(self) -> "OCRExecutionUnit":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.terminate()

    # ------------------------------------------------------------------
    # Execution context lifecycle
    # ------------------------------------------------------------------

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def _spawn(self) -> None:
        self._generation += 1
        generation = self._generation
        loop = asyncio.get_running_loop()
        worker = make_worker(self.execution, self._engine_factory)
        worker.start()
        self._worker, self._loop = worker, loop
        reader = threading.Thread(
            target=self._read_loop,
            args=(worker, generation, loop),
            name="snaptrans-ocr-reader",
            daemon=True,
        )
        reader.start()
        logger.info("OCR execution context started (%s, generation %d)", self.execution, generation)

    def _teardown(self):
        """Detach the current worker; its reader stops at the next poll."""
        worker, self._worker = self._worker, None
        self._generation += 1
        return worker

    def _stop_in_background(self, worker) -> None:
        """Stop a detached worker on the default executor; a process stop may join for seconds."""
        future = asyncio.get_running_loop().run_in_executor(None, worker.stop, 0.0)
        future.add_done_callback(_log_stop_failure)

    def _restart(self, reason: str) -> None:
        self._fail_pending(OCREngineError(reason))
        self.current_languages = None
        worker = self._teardown()
        if worker is not None:
            self._stop_in_background(worker)
        if not self._terminated:
            self._spawn()

    def _ensure_worker(self) -> None:
        if self._terminated:
            raise OCREngineError("OCR execution unit has been terminated")
        loop = asyncio.get_running_loop()
        if self._worker is None:
            self._spawn()
        elif self._loop is not loop or not self._worker.is_alive():
            self._restart("OCR execution context is not available")

    def _read_loop(self, worker, generation: int, loop: asyncio.AbstractEventLoop) -> None:
        while generation == self._generation:
            try:
                msg = worker.poll(self._poll_interval)
            except (OSError, ValueError, EOFError) as exc:
                self._post(loop, self._on_transport_error, generation, f"OCR channel failed: {exc}")
                return
            if msg is not None:
                self._post(loop, self._dispatch, generation, msg)
            elif not worker.is_alive():
                self._post(loop, self._on_transport_error, generation, "OCR execution context exited unexpectedly")
                return

    @staticmethod
    def _post(loop: asyncio.AbstractEventLoop, callback, *args) -> None:
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Loop already closed; nobody is left waiting for the reply.
            logger.debug("Dropping OCR event after event loop shutdown")

    def _dispatch(self, generation: int, msg: Envelope) -> None:
        if generation != self._generation:
            return
        future = self._pending.pop(msg.id, None)
        if future is None or future.done():
            logger.debug("Dropping stale OCR reply %s", msg.id)
            return
        future.set_result(msg)

    def _on_transport_error(self, generation: int, reason: str) -> None:
        if generation != self._generation or self._terminated:
            return
        logger.error("OCR execution context failed: %s", reason)
        self.state = UnitState.ERROR
        self._restart(reason)

    def _mark_failed(self) -> None:
        self.current_languages = None
        self.state = UnitState.TERMINATED if self._terminated else UnitState.ERROR

    def _fail_pending(self, exc: Exception) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(exc)

    async def _request(self, msg_type: str, payload: Dict[str, Any], timeout: Optional[float] = None) -> Envelope:
        self._ensure_worker()
        timeout = self.request_timeout if timeout is None else timeout
        msg_id = f"{msg_type.lower()}-{next(self._ids)}"
        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = future
        try:
            self._worker.send(Envelope(id=msg_id, type=msg_type, payload=payload))
        except (OSError, ValueError) as exc:
            self._pending.pop(msg_id, None)
            raise OCREngineError(f"Could not reach OCR execution context: {exc}")

        try:
            reply = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self._pending.pop(msg_id, None)
            logger.warning("OCR request %s timed out after %.1fs; resetting execution context", msg_id, timeout)
            self.state = UnitState.ERROR
            self._restart(f"OCR request {msg_id} timed out")
            raise OCRTimeoutError(f"OCR request timed out after {timeout:.1f}s", details={"request_id": msg_id})

        if reply.type == protocol.ERROR:
            raise OCREngineError(
                reply.payload.get("message") or "OCR engine error",
                details={"request_id": msg_id, "code": reply.payload.get("code")},
            )
        return reply

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def initialize(self, config: OCRConfig) -> None:
        """Load the engine for ``config.language_set``; a no-op when already loaded."""
        async with self._get_lock():
            await self._initialize_locked(config.languages)

    async def _initialize_locked(self, languages: str) -> None:
        if (
            self.state == UnitState.READY
            and self.current_languages == languages
            and self._worker is not None
            and self._worker.is_alive()
        ):
            return
        previous = self.current_languages
        self.state = UnitState.INITIALIZING
        try:
            reply = await self._request(protocol.INITIALIZE, {"languages": languages})
        except OCRError:
            self._mark_failed()
            raise
        self.current_languages = reply.payload.get("languages") or languages
        self.state = UnitState.READY
        if previous and previous != languages:
            logger.info("OCR engine re-initialized: %s -> %s", previous, languages)
        else:
            logger.info("OCR engine initialized with languages %s", languages)

    def _rasterize(self, image: ImageInput) -> bytes:
        return encode_png(decode_image(image, poppler_path=self.poppler_path))

    async def _engine_bytes(self, image: ImageInput) -> bytes:
        if image.format == "pdf":
            return await asyncio.get_running_loop().run_in_executor(None, self._rasterize, image)
        return image.raw_bytes()

    async def process_image(self, image: ImageInput, config: OCRConfig) -> ApiResponse[OCRResult]:
        """Recognize ``image`` with ``config``; failures come back as a failed response."""
        async with self._get_lock():
            start = time.perf_counter()
            try:
                data = await self._engine_bytes(image)
                await self._initialize_locked(config.languages)
                self.state = UnitState.RECOGNIZING
                reply = await self._request(
                    protocol.PROCESS_IMAGE,
                    {
                        "image": data,
                        "format": image.format,
                        "languages": config.languages,
                        "page_seg_mode": config.page_seg_mode,
                        "engine_mode": config.engine_mode,
                    },
                )
            except (OCRError, ImageDecodeError) as exc:
                elapsed = (time.perf_counter() - start) * 1000.0
                if isinstance(exc, OCRError):
                    self._mark_failed()
                elif self.state == UnitState.RECOGNIZING:
                    self.state = UnitState.READY
                logger.warning("OCR failed after %.0fms: %s", elapsed, exc)
                return ApiResponse.fail(exc, metrics=PerformanceMetrics(ocr_time_ms=elapsed, image_size=image.size_bytes))

            self.state = UnitState.READY
            elapsed = (time.perf_counter() - start) * 1000.0
            text = reply.payload.get("text") or ""
            result = OCRResult(
                text=text,
                confidence=float(reply.payload.get("confidence") or 0.0),
                language=reply.payload.get("language") or config.languages,
                processing_time_ms=elapsed,
            )
            return ApiResponse.ok(
                result,
                metrics=PerformanceMetrics(ocr_time_ms=elapsed, image_size=image.size_bytes, text_length=len(text)),
            )

    async def warm_up(self, languages: Optional[Sequence[LanguageSpec]] = None) -> Dict[str, Any]:
        """Initialize each language set and run synthetic recognitions of growing size.

        Runs under the request lock, so no real recognition interleaves.
        Raises OCRError when no language set could be warmed.
        """
        if languages is None:
            languages = [self.current_languages or "eng"]
        elif isinstance(languages, str):
            languages = [languages]
        language_sets: List[str] = []
        for spec in languages:
            code = _language_string(spec)
            if code not in language_sets:
                language_sets.append(code)

        async with self._get_lock():
            start = time.perf_counter()
            self.state = UnitState.INITIALIZING
            images = warmup_images(self.warmup_sizes)
            try:
                reply = await self._request(
                    protocol.WARMUP,
                    {"language_sets": language_sets, "images": images},
                    timeout=self.request_timeout * len(language_sets),
                )
            except OCRError:
                self._mark_failed()
                raise

            warmed = list(reply.payload.get("warmed", []))
            failed = dict(reply.payload.get("failed", {}))
            self.current_languages = reply.payload.get("languages")
            self.state = UnitState.READY if self.current_languages else UnitState.UNINITIALIZED
            elapsed = (time.perf_counter() - start) * 1000.0

        if not warmed:
            raise OCREngineError(f"Warm-up failed for all languages: {failed}", details={"failed": failed})
        logger.info("OCR warm-up finished in %.0fms for %s", elapsed, ", ".join(warmed))
        return {"warmed": warmed, "failed": failed, "time_ms": elapsed}

    def get_status(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "is_initialized": self.state in (UnitState.READY, UnitState.RECOGNIZING)
            and self.current_languages is not None,
            "is_initializing": self.state == UnitState.INITIALIZING,
            "current_languages": self.current_languages,
            "worker_available": self._worker is not None and self._worker.is_alive(),
            "pending_operations": len(self._pending),
            "execution": self.execution,
        }

    def estimate_memory_usage(self, image: ImageInput) -> int:
        """RGBA bitmap footprint plus the fixed engine overhead, in bytes. Telemetry only."""
        return int(image.width) * int(image.height) * 4 + self.engine_overhead_bytes

    async def run_performance_test(self, image: ImageInput, config: OCRConfig, iterations: int = 5) -> Dict[str, Any]:
        times: List[float] = []
        successes = 0
        for _ in range(max(1, int(iterations))):
            start = time.perf_counter()
            response = await self.process_image(image, config)
            times.append((time.perf_counter() - start) * 1000.0)
            if response.success:
                successes += 1
        return {
            "iterations": len(times),
            "average_time_ms": statistics.fmean(times),
            "min_time_ms": min(times),
            "max_time_ms": max(times),
            "success_rate": successes / len(times),
        }

    async def terminate(self) -> None:
        """Release the engine and stop the execution context. Further calls fail."""
        if self._terminated:
            return
        self._terminated = True
        self._fail_pending(OCREngineError("OCR execution unit terminated"))
        worker = self._teardown()
        self.state = UnitState.TERMINATED
        self.current_languages = None
        if worker is not None:
            await asyncio.get_running_loop().run_in_executor(None, worker.stop, 1.0)
        logger.info("OCR execution unit terminated")
