"""Isolated execution context that owns the OCR engine.

The context runs ``serve`` on its own thread or process and talks to the
caller exclusively through two queues of ``Envelope`` messages. A crash or
hang inside the engine therefore never blocks the caller's event loop.
"""

from __future__ import annotations

import logging
import multiprocessing as mp
import queue
import threading
import time
from typing import Any, Callable, Dict, Optional

from ..errors import ErrorCodes
from . import protocol
from .engine import OCREngine
from .protocol import Envelope, error_envelope

logger = logging.getLogger(__name__)

EngineFactory = Callable[[], OCREngine]


class _EngineSlot:
    """At most one engine per distinct language set; switching is a full reload."""

    def __init__(self, engine_factory: EngineFactory) -> None:
        self._factory = engine_factory
        self.engine: Optional[OCREngine] = None
        self.languages: Optional[str] = None

    def ensure(self, languages: str) -> bool:
        """Load an engine for ``languages``; return True when a (re)load happened."""
        if self.engine is not None and self.languages == languages:
            return False
        self.discard()
        engine = self._factory()
        engine.load(languages)
        self.engine, self.languages = engine, languages
        return True

    def discard(self) -> None:
        engine, self.engine, self.languages = self.engine, None, None
        if engine is None:
            return
        try:
            engine.unload()
        except Exception as exc:
            logger.warning("OCR engine unload failed: %s", exc)


def _handle(slot: _EngineSlot, msg: Envelope) -> Envelope:
    payload: Dict[str, Any] = msg.payload or {}

    if msg.type == protocol.INITIALIZE:
        reloaded = slot.ensure(payload["languages"])
        return Envelope(msg.id, protocol.INITIALIZED, {"languages": slot.languages, "reloaded": reloaded})

    if msg.type == protocol.WARMUP:
        warmed, failed = [], {}
        psm = int(payload.get("page_seg_mode", 6))
        oem = int(payload.get("engine_mode", 3))
        # Sequential per language set; the queue guarantees no real request interleaves.
        for languages in payload.get("language_sets", []):
            try:
                slot.ensure(languages)
                for image in payload.get("images", []):
                    slot.engine.recognize(image, psm, oem)
                warmed.append(languages)
            except Exception as exc:
                logger.warning("Warm-up failed for %s: %s", languages, exc)
                failed[languages] = str(exc)
                slot.discard()
        return Envelope(
            msg.id, protocol.WARMED_UP, {"warmed": warmed, "failed": failed, "languages": slot.languages}
        )

    if msg.type == protocol.PROCESS_IMAGE:
        slot.ensure(payload["languages"])
        start = time.perf_counter()
        text, confidence = slot.engine.recognize(
            payload["image"], int(payload.get("page_seg_mode", 6)), int(payload.get("engine_mode", 3))
        )
        return Envelope(
            msg.id,
            protocol.RESULT,
            {
                "text": text,
                "confidence": float(confidence),
                "language": slot.languages,
                "processing_time_ms": (time.perf_counter() - start) * 1000.0,
            },
        )

    return error_envelope(msg.id, ErrorCodes.OCR_ENGINE_ERROR, f"Unknown message type: {msg.type}")


def serve(engine_factory: EngineFactory, requests: Any, responses: Any) -> None:
    """Message loop of the execution context. Returns on TERMINATE."""
    slot = _EngineSlot(engine_factory)
    while True:
        msg = requests.get()
        if msg is None or msg.type == protocol.TERMINATE:
            slot.discard()
            return
        try:
            reply = _handle(slot, msg)
        except Exception as exc:
            # The engine may be in an unknown state; the next request reloads it.
            logger.error("OCR request %s (%s) failed: %s", msg.id, msg.type, exc)
            slot.discard()
            reply = error_envelope(msg.id, ErrorCodes.OCR_ENGINE_ERROR, str(exc))
        responses.put(reply)


class ThreadWorker:
    """Execution context on a daemon thread. A wedged thread is abandoned, not killed."""

    kind = "thread"

    def __init__(self, engine_factory: EngineFactory) -> None:
        self._requests: "queue.Queue[Envelope]" = queue.Queue()
        self._responses: "queue.Queue[Envelope]" = queue.Queue()
        self._thread = threading.Thread(
            target=serve,
            args=(engine_factory, self._requests, self._responses),
            name="snaptrans-ocr-worker",
            daemon=True,
        )

    def start(self) -> None:
        self._thread.start()

    def send(self, envelope: Envelope) -> None:
        self._requests.put(envelope)

    def poll(self, timeout: float) -> Optional[Envelope]:
        try:
            return self._responses.get(timeout=timeout)
        except queue.Empty:
            return None

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def stop(self, grace: float = 0.0) -> None:
        if self._thread.is_alive():
            self._requests.put(Envelope(id="", type=protocol.TERMINATE))
            if grace > 0:
                self._thread.join(grace)


class ProcessWorker:
    """Execution context in a separate OS process; can be killed when wedged.

    The engine factory must be picklable (a module-level class or function).
    """

    kind = "process"

    def __init__(self, engine_factory: EngineFactory, start_method: str = "spawn") -> None:
        ctx = mp.get_context(start_method)
        self._requests = ctx.Queue()
        self._responses = ctx.Queue()
        self._process = ctx.Process(
            target=serve,
            args=(engine_factory, self._requests, self._responses),
            name="snaptrans-ocr-worker",
            daemon=True,
        )

    def start(self) -> None:
        self._process.start()
        logger.info("OCR worker process started (PID: %s)", self._process.pid)

    def send(self, envelope: Envelope) -> None:
        self._requests.put(envelope)

    def poll(self, timeout: float) -> Optional[Envelope]:
        try:
            return self._responses.get(timeout=timeout)
        except queue.Empty:
            return None

    def is_alive(self) -> bool:
        return self._process.is_alive()

    def stop(self, grace: float = 1.0) -> None:
        if self._process.is_alive():
            try:
                self._requests.put(Envelope(id="", type=protocol.TERMINATE))
            except (OSError, ValueError) as exc:
                logger.debug("Could not send TERMINATE to OCR worker: %s", exc)
            self._process.join(grace)
        if self._process.is_alive():
            logger.warning("OCR worker process %s did not exit; terminating", self._process.pid)
            self._process.terminate()
            self._process.join(max(grace, 1.0))
        for q in (self._requests, self._responses):
            q.close()
            q.cancel_join_thread()


def make_worker(kind: str, engine_factory: EngineFactory):
    if kind == "thread":
        return ThreadWorker(engine_factory)
    if kind == "process":
        return ProcessWorker(engine_factory)
    raise ValueError(f"Unknown execution context: {kind!r}")
