"""
Entry point and facade for the image → OCR → translation pipeline.

Packages:
- snaptrans.image: Image preprocessing and synthetic test images
- snaptrans.ocr: OCR execution unit, Tesseract engine, text normalization
- snaptrans.translation: Rate-limited translation client and transports
- snaptrans.pipeline: Orchestration (`PipelineOrchestrator`) and benchmark
"""

from __future__ import annotations

import asyncio
import json
import logging
from functools import partial
from typing import Any, Dict, Optional

import pytesseract

from snaptrans.config import SETTINGS_PATH, Settings, configure_dependencies, load_settings
from snaptrans.image import image_input_from_file
from snaptrans.models import OCRConfig, PipelineRun
from snaptrans.ocr.engine import TesseractEngine
from snaptrans.pipeline import BenchmarkReport, PipelineOrchestrator, build_orchestrator

logger = logging.getLogger("snaptrans.cli")

__all__ = [
    "create_pipeline",
    "translate_image",
    "benchmark",
    "warm_up",
]


def create_pipeline(settings: Optional[Settings] = None, settings_path: str = SETTINGS_PATH) -> PipelineOrchestrator:
    """Build a ready-to-use orchestrator from the config files.

    Doxygen:
    - @param settings: Preloaded settings; read from ``settings_path`` when omitted.
    - @param settings_path: Path to settings.json.
    - @return: PipelineOrchestrator backed by Tesseract.
    """
    settings = settings or load_settings(settings_path)
    poppler_path = configure_dependencies()
    # The worker may be a fresh process: hand it the configured tesseract binary explicitly.
    engine_factory = partial(TesseractEngine, tesseract_cmd=pytesseract.pytesseract.tesseract_cmd)
    return build_orchestrator(settings, engine_factory=engine_factory, poppler_path=poppler_path)


async def translate_image(
    image_path: str,
    target_lang: Optional[str] = None,
    languages: Optional[str] = None,
    preprocessing: Optional[bool] = None,
    settings: Optional[Settings] = None,
) -> PipelineRun:
    """Run the full pipeline on one file and return the PipelineRun."""
    async with create_pipeline(settings) as pipeline:
        config: OCRConfig = pipeline.default_ocr_config
        if languages:
            config = config.with_languages(languages)
        if preprocessing is not None:
            config = config.with_preprocessing(preprocessing)
        return await pipeline.run(image_input_from_file(image_path), target_lang, config)


async def benchmark(iterations: Optional[int] = None, settings: Optional[Settings] = None) -> BenchmarkReport:
    settings = settings or load_settings()
    bench = settings.benchmark
    async with create_pipeline(settings) as pipeline:
        await pipeline.ocr_unit.warm_up([pipeline.default_ocr_config.languages])
        return await pipeline.benchmark(
            iterations=iterations or bench.iterations,
            target_ms=bench.target_ms,
            min_success_rate=bench.min_success_rate,
            pause=bench.pause,
        )


async def warm_up(languages: Optional[str] = None, settings: Optional[Settings] = None) -> Dict[str, Any]:
    async with create_pipeline(settings) as pipeline:
        sets = [languages] if languages else [pipeline.default_ocr_config.languages]
        return await pipeline.ocr_unit.warm_up(sets)


def _cli() -> None:
    """CLI for one-off translation, warm-up and benchmarking.

    --image / -i: Path to input image (png|jpg|pdf)
    --target / -t: Target language ISO code (default: from settings)
    --lang: Tesseract languages, e.g. eng+jpn (default: from settings)
    --no-preprocess: Skip Otsu binarization
    --benchmark N: Run N benchmark iterations on the standard test image
    --warmup: Warm up the OCR engine and report timings
    --config: Path to settings.json
    --json: Print the full result as JSON
    --verbose / -v: Debug logging
    """
    import argparse

    parser = argparse.ArgumentParser(description="Extract text from an image and translate it.")
    parser.add_argument("--image", "-i", type=str, help="Path to input image to translate")
    parser.add_argument("--target", "-t", type=str, default=None, help="Target language ISO code, e.g. ja, en, de")
    parser.add_argument("--lang", type=str, default=None, help="Tesseract languages, e.g. eng+jpn")
    parser.add_argument("--no-preprocess", action="store_true", help="Disable image preprocessing")
    parser.add_argument("--benchmark", type=int, metavar="N", help="Run N benchmark iterations")
    parser.add_argument("--warmup", action="store_true", help="Warm up the OCR engine")
    parser.add_argument("--config", type=str, default=SETTINGS_PATH, help="Path to settings.json")
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = load_settings(args.config)

    if args.benchmark is not None:
        report = asyncio.run(benchmark(args.benchmark, settings))
        if args.json:
            print(json.dumps(report.to_dict(), ensure_ascii=False, indent=2))
        else:
            print(report.message)
            print(f"Median: {report.median_ms:.0f}ms, min: {report.min_ms:.0f}ms, max: {report.max_ms:.0f}ms")
        raise SystemExit(0 if report.passed else 1)

    if args.warmup:
        result = asyncio.run(warm_up(args.lang, settings))
        print(f"Warmed up: {', '.join(result['warmed'])} in {result['time_ms']:.0f}ms")
        for lang, reason in result["failed"].items():
            print(f"Failed: {lang}: {reason}")
        return

    if not args.image:
        print("Please provide --image path, --warmup or --benchmark N.")
        print("Examples:\n  python main.py --image path/to/image.png --target ja\n  python main.py --benchmark 5")
        raise SystemExit(2)

    run = asyncio.run(
        translate_image(
            args.image,
            target_lang=args.target,
            languages=args.lang,
            preprocessing=False if args.no_preprocess else None,
            settings=settings,
        )
    )
    if args.json:
        print(json.dumps(run.to_dict(), ensure_ascii=False, indent=2))
        return
    if run.ocr_result is not None:
        print(f"Text ({run.ocr_result.confidence:.2f}):\n{run.ocr_result.text}")
    if run.success:
        print(f"Translation:\n{run.translation_result.translated_text}")
        print(f"Total time: {run.total_time_ms:.0f}ms")
        return
    print(run.user_message)
    if run.retry_with_preprocessing:
        print("Tip: try again with preprocessing toggled (--no-preprocess).")
    raise SystemExit(1)


if __name__ == "__main__":
    _cli()
