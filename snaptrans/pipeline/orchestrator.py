"""PipelineOrchestrator: image -> preprocess -> OCR -> normalize -> translate.

``run`` never raises for stage failures: the outcome, including partial
results and all stage timings, is returned as a ``PipelineRun``. Only an
invalid configuration raises.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional

from ..errors import ConfigurationError, OCREmptyTextError, SnapTransError, TranslationError
from ..image.preprocess import ImagePreprocessor
from ..models import ImageInput, OCRConfig, PipelineRun, Priority, TranslationRequest
from ..ocr.normalizer import OCRResultNormalizer
from ..ocr.unit import OCRExecutionUnit
from ..translation.client import TranslationClient, build_translation_client
from .benchmark import BenchmarkReport, run_benchmark
from .metrics import MemoryTracker, process_rss

logger = logging.getLogger(__name__)

RunSink = Callable[[PipelineRun], Any]


def _ms_since(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0


class PipelineOrchestrator:
    """Sequences the pipeline stages and measures them.

    Doxygen:
    - @param ocr_unit: OCR execution unit (owns the engine).
    - @param translation_client: Client used through its priority queue.
    - @param preprocessor: Image preprocessor; a default one is created when omitted.
    - @param normalizer: OCR text normalizer; a default one is created when omitted.
    - @param default_ocr_config: Used when ``run`` gets no config.
    - @param default_target_lang: Used when ``run`` gets no target language.
    - @param memory_reader: Callable returning current memory in bytes.
    - @param sink: Optional callable receiving every finished PipelineRun.
    """

    def __init__(
        self,
        ocr_unit: OCRExecutionUnit,
        translation_client: TranslationClient,
        preprocessor: Optional[ImagePreprocessor] = None,
        normalizer: Optional[OCRResultNormalizer] = None,
        default_ocr_config: Optional[OCRConfig] = None,
        default_target_lang: str = "ja",
        memory_reader: Callable[[], int] = process_rss,
        sink: Optional[RunSink] = None,
    ) -> None:
        self.ocr_unit = ocr_unit
        self.translation_client = translation_client
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.normalizer = normalizer or OCRResultNormalizer()
        self.default_ocr_config = default_ocr_config or OCRConfig()
        self.default_target_lang = default_target_lang
        self._memory_reader = memory_reader
        self.sink = sink

    async def run(
        self,
        image: ImageInput,
        target_lang: Optional[str] = None,
        ocr_config: Optional[OCRConfig] = None,
    ) -> PipelineRun:
        """Process one image end to end.

        Doxygen:
        - @param image: Encoded input image.
        - @param target_lang: ISO code of the translation target.
        - @param ocr_config: Recognition settings for this run.
        - @return: PipelineRun with results, per-stage timings and memory samples.
        - @throws ConfigurationError: On invalid arguments only.
        """
        if not isinstance(image, ImageInput):
            raise ConfigurationError("run() expects an ImageInput", config_key="image")
        target_lang = target_lang or self.default_target_lang
        if not target_lang:
            raise ConfigurationError("A target language is required", config_key="target_lang")
        config = ocr_config or self.default_ocr_config

        tracker = MemoryTracker(self._memory_reader)
        tracker.start()
        result = PipelineRun(image=image)
        start = time.perf_counter()
        try:
            await self._run_stages(result, image, target_lang, config, tracker)
        except ConfigurationError:
            raise
        except Exception as exc:
            logger.exception("Pipeline run failed unexpectedly")
            result.error = exc if isinstance(exc, SnapTransError) else SnapTransError(f"Pipeline failed: {exc}")

        result.total_time_ms = _ms_since(start)
        result.memory = tracker.finish()
        result.success = result.error is None and result.translation_result is not None
        logger.info(
            "Pipeline %s in %.0fms (preprocess %.0fms, OCR %.0fms, translation %.0fms)",
            "succeeded" if result.success else "failed",
            result.total_time_ms,
            result.preprocess_time_ms,
            result.ocr_time_ms,
            result.translation_time_ms,
        )
        self._emit(result)
        return result

    async def _run_stages(
        self,
        result: PipelineRun,
        image: ImageInput,
        target_lang: str,
        config: OCRConfig,
        tracker: MemoryTracker,
    ) -> None:
        ocr_input = image
        if config.preprocessing_enabled:
            stage = time.perf_counter()
            ocr_input = await asyncio.get_running_loop().run_in_executor(None, self.preprocessor.process, image)
            result.preprocess_time_ms = _ms_since(stage)
            tracker.checkpoint()

        stage = time.perf_counter()
        response = await self.ocr_unit.process_image(ocr_input, config)
        result.ocr_time_ms = _ms_since(stage)
        tracker.checkpoint()
        if not response.success:
            result.error = response.error
            return

        ocr_result = self.normalizer.normalize(response.data)
        result.ocr_result = ocr_result
        if not ocr_result.text.strip():
            result.error = OCREmptyTextError()
            return
        if ocr_result.confidence < config.confidence_threshold:
            logger.warning(
                "OCR confidence %.2f is below threshold %.2f", ocr_result.confidence, config.confidence_threshold
            )

        request = TranslationRequest(
            text=ocr_result.text,
            target_lang=target_lang,
            source_lang="auto",
            priority=Priority.HIGH,
        )
        stage = time.perf_counter()
        try:
            result.translation_result = await self.translation_client.queue_translation(request)
        except TranslationError as exc:
            result.error = exc
        finally:
            result.translation_time_ms = _ms_since(stage)
            tracker.checkpoint()

    def _emit(self, result: PipelineRun) -> None:
        if self.sink is None:
            return
        try:
            self.sink(result)
        except Exception as exc:
            logger.warning("Pipeline run sink failed: %s", exc)

    async def benchmark(
        self,
        iterations: int = 5,
        target_lang: Optional[str] = None,
        ocr_config: Optional[OCRConfig] = None,
        image: Optional[ImageInput] = None,
        target_ms: float = 5000.0,
        min_success_rate: float = 0.8,
        pause: float = 0.5,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> BenchmarkReport:
        """Run ``iterations`` pipeline runs on the standardized image and report pass/fail."""
        return await run_benchmark(
            self.run,
            iterations=iterations,
            target_lang=target_lang or self.default_target_lang,
            ocr_config=ocr_config or self.default_ocr_config,
            image=image,
            target_ms=target_ms,
            min_success_rate=min_success_rate,
            pause=pause,
            sleep=sleep,
        )

    async def close(self) -> None:
        await self.translation_client.close()
        await self.ocr_unit.terminate()

    async def __aenter__(self) -> "PipelineOrchestrator":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def build_orchestrator(
    settings,
    engine_factory: Optional[Callable[[], Any]] = None,
    translation_transport=None,
    poppler_path: Optional[str] = None,
    sink: Optional[RunSink] = None,
) -> PipelineOrchestrator:
    """Wire all components from ``Settings``.

    Doxygen:
    - @param settings: Loaded ``snaptrans.config.Settings``.
    - @param engine_factory: OCR engine factory; Tesseract by default.
    - @param translation_transport: Optional httpx transport for the translator.
    - @param poppler_path: Poppler directory for PDF input.
    - @param sink: Optional PipelineRun consumer.
    """
    ocr = settings.ocr
    unit_kwargs = {}
    if engine_factory is not None:
        unit_kwargs["engine_factory"] = engine_factory
    unit = OCRExecutionUnit(
        execution=ocr.execution,
        request_timeout=ocr.request_timeout,
        engine_overhead_bytes=int(ocr.engine_overhead_mb) * 1024 * 1024,
        poppler_path=poppler_path,
        **unit_kwargs,
    )
    return PipelineOrchestrator(
        ocr_unit=unit,
        translation_client=build_translation_client(settings, transport=translation_transport),
        preprocessor=ImagePreprocessor(settings.preprocess.max_width, settings.preprocess.max_height, poppler_path),
        default_ocr_config=ocr.to_ocr_config(),
        default_target_lang=settings.default_target_lang,
        sink=sink,
    )
