"""snaptrans: image-to-translation pipeline.

Subpackages:
- snaptrans.image: preprocessing (Otsu binarization) and synthetic test images
- snaptrans.ocr: isolated OCR execution unit and text normalization
- snaptrans.translation: rate-limited, prioritized translation client
- snaptrans.pipeline: orchestration and benchmarking
"""

from .config import Settings, configure_dependencies, load_settings
from .errors import ErrorCodes, SnapTransError
from .models import (
    ApiResponse,
    ImageInput,
    OCRConfig,
    OCRResult,
    PipelineRun,
    Priority,
    TranslationRequest,
    TranslationResult,
)

__version__ = "0.1.0"

__all__ = [
    "Settings",
    "configure_dependencies",
    "load_settings",
    "ErrorCodes",
    "SnapTransError",
    "ApiResponse",
    "ImageInput",
    "OCRConfig",
    "OCRResult",
    "PipelineRun",
    "Priority",
    "TranslationRequest",
    "TranslationResult",
]
