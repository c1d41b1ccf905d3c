"""Value objects exchanged between pipeline stages."""

from __future__ import annotations

import base64
import binascii
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Any, Dict, Generic, Iterable, Optional, Tuple, TypeVar, Union

from .errors import ConfigurationError, SnapTransError

T = TypeVar("T")

IMAGE_FORMATS = ("png", "jpg", "pdf")


class Priority(IntEnum):
    """Translation priority; lower value is served first."""

    HIGH = 0
    NORMAL = 1
    LOW = 2

    @classmethod
    def coerce(cls, value: Union["Priority", str, int]) -> "Priority":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                raise ConfigurationError(f"Unknown priority: {value!r}", config_key="priority")
        return cls(value)


class UnitState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    RECOGNIZING = "recognizing"
    ERROR = "error"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class ImageInput:
    """Encoded image as handed over by the UI layer.

    ``data`` is raw bytes or a base64 string (optionally a ``data:`` URL).
    """

    data: Union[bytes, str]
    format: str
    width: int
    height: int
    size_bytes: int

    def __post_init__(self) -> None:
        fmt = str(self.format).lower()
        if fmt == "jpeg":
            fmt = "jpg"
        if fmt not in IMAGE_FORMATS:
            raise ConfigurationError(f"Unsupported image format: {self.format!r}", config_key="format")
        object.__setattr__(self, "format", fmt)

    def raw_bytes(self) -> bytes:
        if isinstance(self.data, (bytes, bytearray, memoryview)):
            return bytes(self.data)
        text = self.data
        if text.startswith("data:"):
            text = text.split(",", 1)[1] if "," in text else ""
        try:
            return base64.b64decode(text, validate=False)
        except (binascii.Error, ValueError):
            return b""


def _ordered_languages(value: Union[str, Iterable[str]]) -> Tuple[str, ...]:
    items = value.split("+") if isinstance(value, str) else list(value)
    seen = []
    for item in items:
        code = str(item).strip().lower()
        if code and code not in seen:
            seen.append(code)
    return tuple(seen)


@dataclass(frozen=True)
class OCRConfig:
    """Recognition settings. Changing ``language_set`` forces engine re-initialization."""

    language_set: Tuple[str, ...] = ("eng",)
    page_seg_mode: int = 6
    engine_mode: int = 3
    preprocessing_enabled: bool = True
    confidence_threshold: float = 0.6

    def __post_init__(self) -> None:
        languages = _ordered_languages(self.language_set)
        if not languages:
            raise ConfigurationError("OCRConfig needs at least one language", config_key="language_set")
        object.__setattr__(self, "language_set", languages)
        if not 0 <= int(self.page_seg_mode) <= 13:
            raise ConfigurationError(f"page_seg_mode out of range: {self.page_seg_mode}", config_key="page_seg_mode")
        if not 0 <= int(self.engine_mode) <= 3:
            raise ConfigurationError(f"engine_mode out of range: {self.engine_mode}", config_key="engine_mode")
        if not 0.0 <= float(self.confidence_threshold) <= 1.0:
            raise ConfigurationError(
                f"confidence_threshold must be within [0, 1]: {self.confidence_threshold}",
                config_key="confidence_threshold",
            )

    @property
    def languages(self) -> str:
        """Tesseract-style language string, e.g. ``eng+jpn``."""
        return "+".join(self.language_set)

    def with_languages(self, languages: Union[str, Iterable[str]]) -> "OCRConfig":
        return replace(self, language_set=_ordered_languages(languages))

    def with_preprocessing(self, enabled: bool) -> "OCRConfig":
        return replace(self, preprocessing_enabled=bool(enabled))


@dataclass
class OCRResult:
    text: str
    confidence: float
    language: str
    processing_time_ms: float
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass(frozen=True)
class TranslationRequest:
    text: str
    target_lang: str
    source_lang: str = "auto"
    priority: Priority = Priority.NORMAL

    def __post_init__(self) -> None:
        if not self.target_lang:
            raise ConfigurationError("TranslationRequest needs a target language", config_key="target_lang")
        object.__setattr__(self, "priority", Priority.coerce(self.priority))
        object.__setattr__(self, "source_lang", self.source_lang or "auto")


@dataclass
class TranslationResult:
    original_text: str
    translated_text: str
    source_lang: str
    target_lang: str
    confidence: float
    processing_time_ms: float
    provider: str
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass
class PerformanceMetrics:
    ocr_time_ms: float = 0.0
    translation_time_ms: float = 0.0
    total_time_ms: float = 0.0
    memory_bytes: int = 0
    image_size: int = 0
    text_length: int = 0


@dataclass
class ApiResponse(Generic[T]):
    """Outcome of one service call: either ``data`` or a classified ``error``."""

    success: bool
    data: Optional[T] = None
    error: Optional[SnapTransError] = None
    metrics: Optional[PerformanceMetrics] = None
    retry_count: int = 0

    @classmethod
    def ok(cls, data: T, metrics: Optional[PerformanceMetrics] = None) -> "ApiResponse[T]":
        return cls(success=True, data=data, metrics=metrics)

    @classmethod
    def fail(cls, error: SnapTransError, metrics: Optional[PerformanceMetrics] = None) -> "ApiResponse[T]":
        return cls(success=False, error=error, metrics=metrics)


@dataclass
class MemorySample:
    start: int = 0
    peak: int = 0
    end: int = 0

    @property
    def increase(self) -> int:
        return self.end - self.start


@dataclass
class PipelineRun:
    """One image → OCR → translation invocation, successful or not."""

    image: ImageInput
    ocr_result: Optional[OCRResult] = None
    translation_result: Optional[TranslationResult] = None
    total_time_ms: float = 0.0
    preprocess_time_ms: float = 0.0
    ocr_time_ms: float = 0.0
    translation_time_ms: float = 0.0
    memory: MemorySample = field(default_factory=MemorySample)
    success: bool = False
    error: Optional[SnapTransError] = None

    @property
    def user_message(self) -> Optional[str]:
        return self.error.user_message if self.error is not None else None

    @property
    def retry_with_preprocessing(self) -> bool:
        """True when the failure was in OCR and a retry with preprocessing toggled may help."""
        return bool(getattr(self.error, "suggest_toggle_preprocessing", False))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "image": {
                "format": self.image.format,
                "width": self.image.width,
                "height": self.image.height,
                "size_bytes": self.image.size_bytes,
            },
            "ocr_result": self.ocr_result.to_dict() if self.ocr_result else None,
            "translation_result": self.translation_result.to_dict() if self.translation_result else None,
            "total_time_ms": self.total_time_ms,
            "preprocess_time_ms": self.preprocess_time_ms,
            "ocr_time_ms": self.ocr_time_ms,
            "translation_time_ms": self.translation_time_ms,
            "memory": asdict(self.memory),
            "success": self.success,
            "error": self.error.to_dict() if self.error else None,
        }
