"""OCR package.

This package wraps the Tesseract engine behind an isolated execution
context, exposes the asynchronous ``OCRExecutionUnit`` manager and the
text normalization stages applied to raw engine output.
"""

from .engine import (
    OCREngine,
    TesseractEngine,
    build_dataframe_from_tesseract,
    assemble_text,
    mean_confidence,
)
from .normalizer import (
    CorrectionRule,
    DEFAULT_RULES,
    OCRResultNormalizer,
    ScoringWeights,
    apply_corrections,
    clean_whitespace,
    collapse_runs,
    normalize_special_characters,
    normalize_unicode,
    rescore_confidence,
    strip_noise,
)
from .unit import OCRExecutionUnit

__all__ = [
    "OCREngine",
    "TesseractEngine",
    "build_dataframe_from_tesseract",
    "assemble_text",
    "mean_confidence",
    "CorrectionRule",
    "DEFAULT_RULES",
    "OCRResultNormalizer",
    "ScoringWeights",
    "apply_corrections",
    "clean_whitespace",
    "collapse_runs",
    "normalize_special_characters",
    "normalize_unicode",
    "rescore_confidence",
    "strip_noise",
    "OCRExecutionUnit",
]
