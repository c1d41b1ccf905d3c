"""Image preprocessing for OCR: downscale, grayscale, Otsu binarization.

The transform is deterministic for identical input bytes. Any decode
failure leaves the original image untouched.
"""

from __future__ import annotations

import io
import logging
import os
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from ..errors import ImageDecodeError
from ..models import ImageInput

logger = logging.getLogger(__name__)

DEFAULT_MAX_WIDTH = 2000
DEFAULT_MAX_HEIGHT = 2000

# Luminance weights in BGR channel order (OpenCV layout).
_BGR_LUMA = np.array([0.114, 0.587, 0.299], dtype=np.float64)


def decode_image(image: ImageInput, poppler_path: Optional[str] = None) -> np.ndarray:
    """Decode an ImageInput into a BGR (or grayscale) uint8 array.

    PDF input is rasterized from its first page.

    Doxygen:
    - @param image: Encoded input image.
    - @param poppler_path: Optional Poppler binary directory for PDF input.
    - @return: Decoded image array.
    - @throws ImageDecodeError: If the bytes cannot be decoded.
    """
    raw = image.raw_bytes()
    if not raw:
        raise ImageDecodeError("Image contains no data")

    if image.format == "pdf":
        try:
            from pdf2image import convert_from_bytes
            from pdf2image.exceptions import PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError
        except ImportError as exc:
            raise ImageDecodeError(f"pdf2image is required to read PDF input: {exc}")
        try:
            pages = convert_from_bytes(raw, dpi=200, first_page=1, last_page=1, poppler_path=poppler_path)
        except (PDFInfoNotInstalledError, PDFPageCountError, PDFSyntaxError, OSError) as exc:
            raise ImageDecodeError(f"Failed to rasterize PDF: {exc}")
        if not pages:
            raise ImageDecodeError("PDF has no pages")
        rgb = np.asarray(pages[0].convert("RGB"))
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR)

    buf = np.frombuffer(raw, dtype=np.uint8)
    img = cv2.imdecode(buf, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ImageDecodeError(f"Failed to decode {image.format} image ({len(raw)} bytes)")
    if img.dtype != np.uint8:
        img = cv2.convertScaleAbs(img, alpha=255.0 / max(1.0, float(img.max())))
    return img


def target_dimensions(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    """Return (width, height) scaled to fit the bounds, preserving aspect ratio.

    Images are only ever scaled down.
    """
    if width <= 0 or height <= 0:
        return width, height
    scale = min(1.0, max_width / float(width), max_height / float(height))
    if scale >= 1.0:
        return width, height
    return max(1, int(round(width * scale))), max(1, int(round(height * scale)))


def to_grayscale(img: np.ndarray) -> np.ndarray:
    """Convert a BGR/BGRA image to gray using 0.299R + 0.587G + 0.114B."""
    if img.ndim == 2:
        return img
    if img.shape[2] == 4:
        img = img[:, :, :3]
    gray = img.astype(np.float64) @ _BGR_LUMA
    return np.clip(np.rint(gray), 0, 255).astype(np.uint8)


def gray_histogram(gray: np.ndarray) -> np.ndarray:
    return np.bincount(gray.ravel(), minlength=256)[:256]


def otsu_threshold(hist: np.ndarray) -> int:
    """Select the threshold maximizing between-class variance wB·wF·(mB−mF)².

    Class B holds gray values ``<= t``. When several thresholds share the
    maximum, the middle of that plateau is returned.

    Doxygen:
    - @param hist: 256-bin histogram of gray values.
    - @return: Threshold in [0, 255].
    """
    hist = np.asarray(hist, dtype=np.float64)
    total = hist.sum()
    if total <= 0:
        return 0
    levels = np.arange(hist.size, dtype=np.float64)

    w_b = np.cumsum(hist)
    w_f = total - w_b
    sum_b = np.cumsum(hist * levels)
    sum_all = sum_b[-1]

    valid = (w_b > 0) & (w_f > 0)
    if not valid.any():
        # Single gray level: nothing to separate.
        return int(np.argmax(hist))

    variance = np.full(hist.size, -1.0)
    m_b = sum_b[valid] / w_b[valid]
    m_f = (sum_all - sum_b[valid]) / w_f[valid]
    variance[valid] = w_b[valid] * w_f[valid] * (m_b - m_f) ** 2

    best = variance.max()
    candidates = np.flatnonzero(variance >= best - best * 1e-12)
    return int((candidates[0] + candidates[-1]) // 2)


def binarize(gray: np.ndarray, threshold: int) -> np.ndarray:
    """Map gray values ``<= threshold`` to black and the rest to white."""
    return np.where(gray > threshold, 255, 0).astype(np.uint8)


def encode_png(img: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", img)
    if not ok:
        raise ImageDecodeError("Failed to encode image as PNG")
    return buf.tobytes()


def image_input_from_array(img: np.ndarray) -> ImageInput:
    """Wrap a uint8 array as a lossless PNG ImageInput."""
    data = encode_png(img)
    height, width = img.shape[:2]
    return ImageInput(data=data, format="png", width=int(width), height=int(height), size_bytes=len(data))


class ImagePreprocessor:
    """Resize → grayscale → Otsu binarization, returning a PNG ImageInput."""

    def __init__(
        self,
        max_width: int = DEFAULT_MAX_WIDTH,
        max_height: int = DEFAULT_MAX_HEIGHT,
        poppler_path: Optional[str] = None,
    ) -> None:
        self.max_width = int(max_width)
        self.max_height = int(max_height)
        self.poppler_path = poppler_path

    def process(self, image: ImageInput) -> ImageInput:
        try:
            img = decode_image(image, poppler_path=self.poppler_path)
        except ImageDecodeError as exc:
            logger.warning("Image preprocessing skipped, using original image: %s", exc)
            return image

        height, width = img.shape[:2]
        new_w, new_h = target_dimensions(width, height, self.max_width, self.max_height)
        if (new_w, new_h) != (width, height):
            img = cv2.resize(img, (new_w, new_h), interpolation=cv2.INTER_AREA)

        gray = to_grayscale(img)
        threshold = otsu_threshold(gray_histogram(gray))
        binary = binarize(gray, threshold)
        logger.debug("Preprocessed %dx%d -> %dx%d, otsu threshold %d", width, height, new_w, new_h, threshold)

        try:
            return image_input_from_array(binary)
        except ImageDecodeError as exc:
            logger.warning("Image preprocessing skipped, using original image: %s", exc)
            return image


def image_input_from_file(path: str) -> ImageInput:
    """Read an image (or PDF) from disk into an ImageInput.

    Doxygen:
    - @param path: Path to a png/jpg/jpeg/pdf file.
    - @return: ImageInput with raw bytes; PDF dimensions are reported as 0.
    - @throws ImageDecodeError: If the file is not a readable image.
    """
    ext = os.path.splitext(path)[1].lower().lstrip(".")
    with open(path, "rb") as f:
        data = f.read()
    if ext == "pdf":
        return ImageInput(data=data, format="pdf", width=0, height=0, size_bytes=len(data))
    try:
        with Image.open(io.BytesIO(data)) as img:
            width, height = img.size
    except (OSError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"Cannot read image {path}: {exc}")
    return ImageInput(data=data, format=ext or "png", width=width, height=height, size_bytes=len(data))
