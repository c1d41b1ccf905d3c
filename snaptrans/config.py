"""Settings loading from the JSON files under ``config/``.

- ``config/settings.json``: pipeline, OCR, translator, retry and benchmark settings.
- ``config/dependencies.json``: optional paths to the Tesseract and Poppler binaries.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, fields
from typing import Any, Dict, Optional, Tuple

import pytesseract

from .errors import ConfigurationError
from .models import OCRConfig

logger = logging.getLogger(__name__)

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))
CONFIG_DIR = os.path.join(PROJECT_ROOT, "config")
SETTINGS_PATH = os.path.join(CONFIG_DIR, "settings.json")
DEPENDENCIES_PATH = os.path.join(CONFIG_DIR, "dependencies.json")

API_KEY_ENV = "SNAPTRANS_API_KEY"
FREE_API_URL = "https://api-free.deepl.com"
PRO_API_URL = "https://api.deepl.com"

EXECUTION_MODES = ("process", "thread")


@dataclass
class PreprocessSettings:
    max_width: int = 2000
    max_height: int = 2000


@dataclass
class OCRSettings:
    languages: Tuple[str, ...] = ("eng", "jpn")
    page_seg_mode: int = 6
    engine_mode: int = 3
    preprocessing_enabled: bool = True
    confidence_threshold: float = 0.6
    request_timeout: float = 30.0
    execution: str = "process"
    engine_overhead_mb: int = 50

    def to_ocr_config(self) -> OCRConfig:
        return OCRConfig(
            language_set=tuple(self.languages),
            page_seg_mode=self.page_seg_mode,
            engine_mode=self.engine_mode,
            preprocessing_enabled=self.preprocessing_enabled,
            confidence_threshold=self.confidence_threshold,
        )


@dataclass
class TranslatorSettings:
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_requests: int = 500
    window_seconds: float = 60.0
    request_timeout: float = 10.0
    formality: Optional[str] = None
    preserve_formatting: bool = False
    batch_size: int = 5
    batch_pause: float = 0.1
    drain_pause: float = 0.05

    def resolved_base_url(self) -> str:
        return resolve_base_url(self.api_key, self.base_url)


@dataclass
class RetrySettings:
    max_retries: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    jitter: float = 0.2


@dataclass
class BenchmarkSettings:
    iterations: int = 5
    target_ms: float = 5000.0
    min_success_rate: float = 0.8
    pause: float = 0.5


@dataclass
class Settings:
    preprocess: PreprocessSettings = field(default_factory=PreprocessSettings)
    ocr: OCRSettings = field(default_factory=OCRSettings)
    translator: TranslatorSettings = field(default_factory=TranslatorSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    benchmark: BenchmarkSettings = field(default_factory=BenchmarkSettings)
    default_target_lang: str = "ja"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        settings = cls(
            preprocess=_section(PreprocessSettings, data.get("preprocess")),
            ocr=_section(OCRSettings, data.get("ocr")),
            translator=_section(TranslatorSettings, data.get("translator")),
            retry=_section(RetrySettings, data.get("retry")),
            benchmark=_section(BenchmarkSettings, data.get("benchmark")),
            default_target_lang=str(data.get("default_target_lang") or "ja"),
        )
        if isinstance(settings.ocr.languages, str):
            settings.ocr.languages = tuple(settings.ocr.languages.split("+"))
        else:
            settings.ocr.languages = tuple(settings.ocr.languages)
        settings.validate()
        return settings

    def validate(self) -> None:
        """Raise ConfigurationError on values no component can work with."""
        if self.preprocess.max_width <= 0 or self.preprocess.max_height <= 0:
            raise ConfigurationError("preprocess max_width/max_height must be positive", config_key="preprocess")
        if self.ocr.execution not in EXECUTION_MODES:
            raise ConfigurationError(
                f"ocr.execution must be one of {EXECUTION_MODES}, got {self.ocr.execution!r}",
                config_key="ocr.execution",
            )
        if self.ocr.request_timeout <= 0:
            raise ConfigurationError("ocr.request_timeout must be positive", config_key="ocr.request_timeout")
        # Validates languages, modes and threshold.
        self.ocr.to_ocr_config()
        if self.translator.max_requests <= 0 or self.translator.window_seconds <= 0:
            raise ConfigurationError("translator rate limit must be positive", config_key="translator")
        if self.translator.batch_size <= 0:
            raise ConfigurationError("translator.batch_size must be positive", config_key="translator.batch_size")
        if self.retry.max_retries < 0 or self.retry.base_delay < 0 or self.retry.max_delay < 0:
            raise ConfigurationError("retry values must not be negative", config_key="retry")
        if not 0.0 <= self.retry.jitter < 1.0:
            raise ConfigurationError("retry.jitter must be within [0, 1)", config_key="retry.jitter")
        if not 0.0 <= self.benchmark.min_success_rate <= 1.0:
            raise ConfigurationError(
                "benchmark.min_success_rate must be within [0, 1]", config_key="benchmark.min_success_rate"
            )
        if self.benchmark.iterations <= 0:
            raise ConfigurationError("benchmark.iterations must be positive", config_key="benchmark.iterations")


def _section(cls, raw: Optional[Dict[str, Any]]):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Section for {cls.__name__} must be an object")
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in raw.items() if k in known})


def _load_json(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a JSON object: {path}")
    return data


def load_settings(path: str = SETTINGS_PATH) -> Settings:
    """Load settings from JSON, falling back to defaults when the file is absent.

    The API key from the ``SNAPTRANS_API_KEY`` environment variable overrides the file.
    """
    if os.path.exists(path):
        try:
            data = _load_json(path)
        except json.JSONDecodeError as exc:
            raise ConfigurationError(f"Invalid JSON in {path}: {exc}")
        settings = Settings.from_dict(data)
    else:
        logger.debug("Settings file not found at %s; using defaults", path)
        settings = Settings()

    env_key = os.environ.get(API_KEY_ENV)
    if env_key:
        settings.translator.api_key = env_key
    return settings


def resolve_base_url(api_key: Optional[str], base_url: Optional[str] = None) -> str:
    """Pick the provider endpoint: explicit URL, else free tier for ``:fx`` keys, else pro."""
    if base_url:
        return base_url.rstrip("/")
    if api_key and api_key.endswith(":fx"):
        return FREE_API_URL
    return PRO_API_URL


def _resolve_path(base: str, relative: str) -> str:
    return os.path.abspath(os.path.join(base, relative))


def configure_dependencies(path: str = DEPENDENCIES_PATH) -> Optional[str]:
    """Configure external binaries (Tesseract, Poppler) from config/dependencies.json.

    Returns the Poppler directory when one is configured and exists.
    """
    poppler_abs: Optional[str] = None

    if not os.path.exists(path):
        logger.debug("dependencies.json not found at %s", path)
        return poppler_abs

    try:
        deps = _load_json(path)
    except (OSError, json.JSONDecodeError, ConfigurationError) as exc:
        logger.warning("Could not load dependencies from %s: %s", path, exc)
        return poppler_abs

    tess_rel = deps.get("tesseract_path")
    if tess_rel:
        tess_abs = _resolve_path(PROJECT_ROOT, tess_rel)
        if os.path.exists(tess_abs):
            pytesseract.pytesseract.tesseract_cmd = tess_abs
        else:
            logger.warning("Tesseract path from config does not exist: %s", tess_abs)

    poppler_rel = deps.get("poppler_path")
    if poppler_rel:
        candidate = _resolve_path(PROJECT_ROOT, poppler_rel)
        if os.path.isdir(candidate):
            poppler_abs = candidate
        else:
            logger.warning("Poppler path from config does not exist or is not a directory: %s", candidate)

    return poppler_abs
