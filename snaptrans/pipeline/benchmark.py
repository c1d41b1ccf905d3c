"""Repeatable end-to-end benchmark against a standardized test image."""

from __future__ import annotations

import asyncio
import logging
import statistics
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..image.synthetic import generate_benchmark_image
from ..models import ImageInput, OCRConfig, PipelineRun
from .metrics import to_mb

logger = logging.getLogger(__name__)


@dataclass
class BenchmarkReport:
    iterations: int
    passed: bool
    message: str
    average_ms: float
    median_ms: float
    min_ms: float
    max_ms: float
    success_rate: float
    target_ms: float
    min_success_rate: float
    memory: Dict[str, float] = field(default_factory=dict)
    runs: List[PipelineRun] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "iterations": self.iterations,
            "passed": self.passed,
            "message": self.message,
            "average_ms": self.average_ms,
            "median_ms": self.median_ms,
            "min_ms": self.min_ms,
            "max_ms": self.max_ms,
            "success_rate": self.success_rate,
            "target_ms": self.target_ms,
            "min_success_rate": self.min_success_rate,
            "memory": dict(self.memory),
        }


def summarize(runs: List[PipelineRun], target_ms: float, min_success_rate: float) -> BenchmarkReport:
    """Compute latency statistics and the verdict.

    Latency uses successful runs only, falling back to all runs when none succeeded.
    Memory figures are reported in MB.
    """
    iterations = len(runs)
    successes = [r for r in runs if r.success]
    timed = successes or runs
    times = [r.total_time_ms for r in timed] or [0.0]
    success_rate = round(len(successes) / iterations, 3) if iterations else 0.0

    average = round(statistics.fmean(times), 2)
    median = round(statistics.median(times), 2)
    peaks = [r.memory.peak for r in runs] or [0]
    increases = [r.memory.increase for r in runs] or [0]
    memory = {
        "average_peak": to_mb(statistics.fmean(peaks)),
        "max_peak": to_mb(max(peaks)),
        "average_increase": to_mb(statistics.fmean(increases)),
    }

    passed = bool(successes) and average <= target_ms and success_rate >= min_success_rate
    if passed:
        message = (
            f"Benchmark PASSED ({average:.0f}ms average, {success_rate * 100:.1f}% success rate)"
        )
    else:
        message = (
            f"Benchmark FAILED ({average:.0f}ms average, target: <={target_ms:.0f}ms, "
            f"{success_rate * 100:.1f}% success rate)"
        )
    return BenchmarkReport(
        iterations=iterations,
        passed=passed,
        message=message,
        average_ms=average,
        median_ms=median,
        min_ms=round(min(times), 2),
        max_ms=round(max(times), 2),
        success_rate=success_rate,
        target_ms=target_ms,
        min_success_rate=min_success_rate,
        memory=memory,
        runs=list(runs),
    )


async def run_benchmark(
    run: Callable[[ImageInput, str, OCRConfig], Awaitable[PipelineRun]],
    *,
    iterations: int = 5,
    target_lang: str = "ja",
    ocr_config: Optional[OCRConfig] = None,
    image: Optional[ImageInput] = None,
    target_ms: float = 5000.0,
    min_success_rate: float = 0.8,
    pause: float = 0.5,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> BenchmarkReport:
    """Run the pipeline ``iterations`` times on the benchmark image and summarize.

    Doxygen:
    - @param run: Pipeline entry point, usually ``PipelineOrchestrator.run``.
    - @param iterations: Number of runs.
    - @param image: Optional test image; defaults to the generated 2000x1200 page.
    - @param pause: Seconds to wait between iterations.
    - @return: BenchmarkReport with statistics and the pass/fail verdict.
    """
    if iterations <= 0:
        raise ValueError("iterations must be positive")
    image = image or generate_benchmark_image()
    config = ocr_config or OCRConfig()
    runs: List[PipelineRun] = []
    for i in range(iterations):
        result = await run(image, target_lang, config)
        runs.append(result)
        if result.success:
            logger.info("Benchmark iteration %d/%d succeeded in %.0fms", i + 1, iterations, result.total_time_ms)
        else:
            logger.info("Benchmark iteration %d/%d failed: %s", i + 1, iterations, result.error)
        if i < iterations - 1 and pause > 0:
            await sleep(pause)

    report = summarize(runs, target_ms, min_success_rate)
    logger.info(report.message)
    logger.info(
        "Memory usage - average peak: %.2fMB, max peak: %.2fMB",
        report.memory["average_peak"],
        report.memory["max_peak"],
    )
    return report
