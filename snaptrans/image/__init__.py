"""Image preprocessing for OCR and synthetic test images."""

from .preprocess import (
    ImagePreprocessor,
    decode_image,
    target_dimensions,
    to_grayscale,
    gray_histogram,
    otsu_threshold,
    binarize,
    encode_png,
    image_input_from_array,
    image_input_from_file,
)
from .synthetic import (
    render_text_image,
    warmup_images,
    generate_benchmark_image,
)

__all__ = [
    "ImagePreprocessor",
    "decode_image",
    "target_dimensions",
    "to_grayscale",
    "gray_histogram",
    "otsu_threshold",
    "binarize",
    "encode_png",
    "image_input_from_array",
    "image_input_from_file",
    "render_text_image",
    "warmup_images",
    "generate_benchmark_image",
]
