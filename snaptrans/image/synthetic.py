"""Synthetic text images for engine warm-up and benchmarking.

Uses PIL to lay out and render text, then converts to numpy arrays and
PNG-encoded ImageInput objects.
"""

from __future__ import annotations

import os
from typing import List, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image, ImageDraw, ImageFont

from ..models import ImageInput
from .preprocess import image_input_from_array

_ROOT_DIR = os.path.dirname(os.path.dirname(os.path.dirname(__file__)))
_CONFIG_FONTS_DIR = os.path.join(_ROOT_DIR, "config", "fonts")

CANDIDATE_FONTS = [
    "DejaVuSans.ttf",
    "arial.ttf",
    "segoeui.ttf",
    "verdana.ttf",
    "NotoSansCJK-Regular.ttc",
    "msgothic.ttc",
]

WARMUP_SIZES: Tuple[Tuple[int, int], ...] = ((120, 40), (400, 120), (800, 240))
WARMUP_TEXT = "Warm up 123"

BENCHMARK_SIZE = (2000, 1200)
BENCHMARK_LINES = [
    "End-to-End Pipeline Test",
    "This is a comprehensive OCR and translation test.",
    "Image resolution: 2000x1200 pixels",
    "Target processing time: < 5 seconds",
    "Testing various text patterns and complexity.",
    "Mixed content with numbers: 12345, 67890",
    "Special characters: @#$%^&*()_+-=[]{}|;:,.<>?",
    "English text for language detection.",
    "Additional content to increase processing complexity.",
    "Final line of test content for evaluation.",
]


def _font_dirs() -> List[str]:
    dirs = [p for p in os.environ.get("FONT_PATH", "").split(os.pathsep) if p.strip()]
    windir = os.environ.get("WINDIR") or os.environ.get("SystemRoot")
    if windir:
        dirs.append(os.path.join(windir, "Fonts"))
    dirs.extend([
        "/usr/share/fonts/truetype/dejavu",
        "/usr/share/fonts/TTF",
        "/Library/Fonts",
        _CONFIG_FONTS_DIR,
    ])
    return dirs


def _find_font_path(name: str) -> str | None:
    if os.path.isabs(name) and os.path.exists(name):
        return name
    target = name.lower()
    for d in _font_dirs():
        if not os.path.isdir(d):
            continue
        for fname in os.listdir(d):
            if fname.lower() == target:
                return os.path.join(d, fname)
    return None


def load_font(size: int) -> ImageFont.ImageFont:
    """Load the first available candidate font, falling back to Pillow's bundled font."""
    for name in CANDIDATE_FONTS:
        path = _find_font_path(name)
        if not path:
            continue
        try:
            return ImageFont.truetype(path, size)
        except OSError:
            continue
    return ImageFont.load_default(size=size)


def _measure(draw: ImageDraw.ImageDraw, text: str, font: ImageFont.ImageFont) -> Tuple[int, int]:
    bbox = draw.textbbox((0, 0), text, font=font)
    return bbox[2] - bbox[0], bbox[3] - bbox[1]


def _max_fitting_font_size(draw: ImageDraw.ImageDraw, text: str, inner_w: int, inner_h: int, low: int, high: int) -> int:
    lo, hi = low, high
    while lo < hi:
        mid = (lo + hi + 1) // 2
        tw, th = _measure(draw, text, load_font(mid))
        if tw <= inner_w and th <= inner_h:
            lo = mid
        else:
            hi = mid - 1
    return lo


def render_text_array(text: str, width: int, height: int) -> np.ndarray:
    """Render black single-line text centered on a white BGR canvas, as large as fits."""
    img = Image.new("RGB", (int(width), int(height)), (255, 255, 255))
    draw = ImageDraw.Draw(img)
    padding = max(1, int(0.08 * min(width, height)))
    inner_w = max(1, width - 2 * padding)
    inner_h = max(1, height - 2 * padding)
    size = _max_fitting_font_size(draw, text, inner_w, inner_h, low=6, high=max(8, int(0.9 * height)))
    font = load_font(size)
    bbox = draw.textbbox((0, 0), text, font=font)
    tw, th = bbox[2] - bbox[0], bbox[3] - bbox[1]
    x = (width - tw) // 2 - bbox[0]
    y = (height - th) // 2 - bbox[1]
    draw.text((x, y), text, font=font, fill=(0, 0, 0))
    return cv2.cvtColor(np.array(img), cv2.COLOR_RGB2BGR)


def render_text_image(text: str, width: int, height: int) -> ImageInput:
    return image_input_from_array(render_text_array(text, width, height))


def warmup_images(sizes: Sequence[Tuple[int, int]] = WARMUP_SIZES, text: str = WARMUP_TEXT) -> List[bytes]:
    """PNG payloads of increasing size used to materialize engine caches."""
    ordered = sorted(sizes, key=lambda s: s[0] * s[1])
    return [bytes(render_text_image(text, w, h).data) for w, h in ordered]


def generate_benchmark_image() -> ImageInput:
    """Standardized 2000×1200 benchmark page with mixed-density text."""
    width, height = BENCHMARK_SIZE
    img = Image.new("RGB", (width, height), (255, 255, 255))
    draw = ImageDraw.Draw(img)

    font = load_font(28)
    for index, line in enumerate(BENCHMARK_LINES):
        draw.text((40, 80 + index * 50 - 28), line, font=font, fill=(0, 0, 0))

    small = load_font(18)
    for i in range(15):
        line = f"Line {i + 1}: Additional test content with complexity variation and text density."
        draw.text((40, 600 + i * 25 - 18), line, font=small, fill=(0, 0, 0))

    mixed = load_font(24)
    draw.text((40, 1100 - 24), "Mixed Language Test - 日本語テキスト", font=mixed, fill=(0, 0, 0))
    draw.text((40, 1140 - 24), "Pipeline benchmark page", font=mixed, fill=(0, 0, 0))

    return image_input_from_array(cv2.cvtColor(np.array(img), cv2.COLOR_RGB2BGR))
