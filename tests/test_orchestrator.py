import asyncio
import threading

import httpx
import psutil
import pytest

from conftest import FakeOCR, FakeSleep
from snaptrans.config import Settings
from snaptrans.errors import ConfigurationError, ErrorCodes
from snaptrans.image.preprocess import ImagePreprocessor
from snaptrans.image.synthetic import render_text_image
from snaptrans.models import MemorySample, OCRConfig, PipelineRun
from snaptrans.pipeline import MemoryTracker, PipelineOrchestrator, build_orchestrator, summarize
from snaptrans.translation.client import TranslationClient
from snaptrans.translation.offline import OFFLINE_BASE_URL, offline_transport
from snaptrans.translation.transport import HttpxTransport


def _pipeline(make_unit, fake_ocr, handler=None, **kwargs):
    transport = offline_transport() if handler is None else httpx.MockTransport(handler)
    client = TranslationClient(
        HttpxTransport(OFFLINE_BASE_URL, transport=transport),
        drain_pause=0.0,
        sleep=FakeSleep(),
        provider="offline",
    )
    return PipelineOrchestrator(make_unit(fake_ocr), client, **kwargs)


def test_image_to_japanese_end_to_end(fake_ocr, make_unit, test_image):
    async def scenario():
        async with _pipeline(make_unit, fake_ocr) as pipeline:
            return await pipeline.run(test_image, "ja")

    run = asyncio.run(scenario())
    assert run.success, run.error
    assert run.error is None
    assert run.ocr_result.text == "TEST"
    assert 0.0 < run.ocr_result.confidence <= 1.0
    assert run.translation_result.translated_text == "テスト"
    assert run.translation_result.target_lang == "ja"
    assert run.total_time_ms < 5000
    assert run.preprocess_time_ms > 0
    assert run.ocr_time_ms > 0
    assert run.translation_time_ms > 0
    assert run.total_time_ms >= run.ocr_time_ms
    assert run.to_dict()["translation_result"]["translated_text"] == "テスト"


def test_memory_is_sampled_across_stages(fake_ocr, make_unit, test_image):
    readings = iter([100, 500, 300, 200, 250])

    async def scenario():
        async with _pipeline(make_unit, fake_ocr, memory_reader=lambda: next(readings)) as pipeline:
            return await pipeline.run(test_image, "ja")

    run = asyncio.run(scenario())
    assert run.memory == MemorySample(start=100, peak=500, end=250)
    assert run.memory.increase == 150


def test_empty_text_fails_without_translation(make_unit, test_image):
    requests = []

    def handler(request):
        requests.append(request)
        return httpx.Response(500)

    async def scenario():
        async with _pipeline(make_unit, FakeOCR(text="  \n "), handler) as pipeline:
            return await pipeline.run(test_image, "ja")

    run = asyncio.run(scenario())
    assert not run.success
    assert run.error.error_code == ErrorCodes.OCR_EMPTY_TEXT
    assert run.ocr_result is not None
    assert run.translation_result is None
    assert run.retry_with_preprocessing is True
    assert run.user_message == "No text was found in the image."
    assert requests == []


def test_ocr_failure_is_reported(fake_ocr, make_unit, test_image):
    fake_ocr.actions = ["error"]

    async def scenario():
        async with _pipeline(make_unit, fake_ocr) as pipeline:
            return await pipeline.run(test_image, "ja", OCRConfig(preprocessing_enabled=False))

    run = asyncio.run(scenario())
    assert not run.success
    assert run.error.error_code == ErrorCodes.OCR_ENGINE_ERROR
    assert run.ocr_result is None
    assert run.preprocess_time_ms == 0.0
    assert run.translation_time_ms == 0.0


def test_translation_failure_keeps_ocr_result(fake_ocr, make_unit, test_image):
    def handler(request):
        return httpx.Response(403, text="forbidden")

    async def scenario():
        async with _pipeline(make_unit, fake_ocr, handler) as pipeline:
            return await pipeline.run(test_image, "ja")

    run = asyncio.run(scenario())
    assert not run.success
    assert run.error.error_code == ErrorCodes.FORBIDDEN
    assert run.ocr_result.text == "TEST"
    assert run.translation_result is None
    assert run.retry_with_preprocessing is False


def test_low_confidence_only_warns(make_unit, test_image, caplog):
    fake = FakeOCR(text="TEST", confidence=0.3)

    async def scenario():
        async with _pipeline(make_unit, fake) as pipeline:
            return await pipeline.run(test_image, "ja", OCRConfig(confidence_threshold=0.9))

    with caplog.at_level("WARNING"):
        run = asyncio.run(scenario())
    assert run.success
    assert "below threshold" in caplog.text


def test_invalid_arguments_raise(fake_ocr, make_unit, test_image):
    async def scenario():
        async with _pipeline(make_unit, fake_ocr) as pipeline:
            with pytest.raises(ConfigurationError):
                await pipeline.run(b"not an ImageInput", "ja")
            pipeline.default_target_lang = ""
            with pytest.raises(ConfigurationError):
                await pipeline.run(test_image, None)

    asyncio.run(scenario())


def test_sink_receives_runs_and_sink_errors_are_contained(fake_ocr, make_unit, test_image, caplog):
    seen = []

    def broken(run):
        raise RuntimeError("disk full")

    async def scenario():
        async with _pipeline(make_unit, fake_ocr, sink=seen.append) as pipeline:
            await pipeline.run(test_image, "ja")
            pipeline.sink = broken
            return await pipeline.run(test_image, "ja")

    with caplog.at_level("WARNING"):
        run = asyncio.run(scenario())
    assert len(seen) == 1 and seen[0].success
    assert run.success
    assert "disk full" in caplog.text


def test_benchmark_on_small_image(fake_ocr, make_unit, test_image):
    sleep = FakeSleep()

    async def scenario():
        async with _pipeline(make_unit, fake_ocr) as pipeline:
            return await pipeline.benchmark(iterations=3, image=test_image, pause=0.5, sleep=sleep)

    report = asyncio.run(scenario())
    assert report.passed
    assert report.iterations == 3
    assert report.success_rate == 1.0
    assert report.message.startswith("Benchmark PASSED")
    assert report.min_ms <= report.median_ms <= report.max_ms
    assert sleep.calls == [0.5, 0.5]
    assert set(report.memory) == {"average_peak", "max_peak", "average_increase"}
    assert "runs" not in report.to_dict()


def _run(total, success):
    return PipelineRun(image=render_text_image("x", 10, 10), total_time_ms=total, success=success)


def test_summarize_verdicts():
    passing = summarize([_run(100, True), _run(300, True)], target_ms=5000, min_success_rate=0.8)
    assert passing.passed
    assert passing.average_ms == 200
    assert passing.median_ms == 200

    slow = summarize([_run(6000, True)], target_ms=5000, min_success_rate=0.8)
    assert not slow.passed
    assert slow.message.startswith("Benchmark FAILED")

    flaky = summarize([_run(100, True), _run(9000, False)], target_ms=5000, min_success_rate=0.8)
    assert flaky.average_ms == 100
    assert flaky.success_rate == 0.5
    assert not flaky.passed


def test_summarize_falls_back_to_all_runs_when_none_succeeded():
    report = summarize([_run(100, False), _run(300, False)], target_ms=5000, min_success_rate=0.0)
    assert report.average_ms == 200
    assert report.success_rate == 0.0
    assert not report.passed


def test_memory_tracker_tolerates_reader_failures():
    values = [1000, None, 3000]

    def reader():
        value = values.pop(0)
        if value is None:
            raise psutil.AccessDenied()
        return value

    tracker = MemoryTracker(reader)
    tracker.start()
    assert tracker.checkpoint() == 1000
    sample = tracker.finish()
    assert sample == MemorySample(start=1000, peak=3000, end=3000)


def test_build_orchestrator_wires_settings():
    settings = Settings()
    settings.ocr.execution = "thread"
    settings.default_target_lang = "de"
    settings.preprocess.max_width = 800
    pipeline = build_orchestrator(settings, engine_factory=FakeOCR())
    assert pipeline.default_target_lang == "de"
    assert pipeline.default_ocr_config.language_set == ("eng", "jpn")
    assert pipeline.preprocessor.max_width == 800
    assert pipeline.ocr_unit.execution == "thread"
    assert pipeline.translation_client.provider == "offline"
    asyncio.run(pipeline.close())


class _ThreadRecordingPreprocessor(ImagePreprocessor):
    def __init__(self):
        super().__init__()
        self.threads = []

    def process(self, image):
        self.threads.append(threading.current_thread())
        return super().process(image)


def test_preprocessing_runs_off_the_event_loop_thread(fake_ocr, make_unit, test_image):
    preprocessor = _ThreadRecordingPreprocessor()

    async def scenario():
        async with _pipeline(make_unit, fake_ocr, preprocessor=preprocessor) as pipeline:
            return await pipeline.run(test_image, "ja")

    run = asyncio.run(scenario())
    assert run.success, run.error
    assert len(preprocessor.threads) == 1
    assert preprocessor.threads[0] is not threading.main_thread()
