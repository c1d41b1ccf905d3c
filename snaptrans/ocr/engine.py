"""OCR engine adapters built on top of pytesseract, OpenCV and pandas.

An engine is owned by exactly one execution context (see ``worker.py``)
and is never shared: Tesseract calls are not reentrant.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

import cv2
import numpy as np
import pandas as pd
import pytesseract

from ..errors import OCREngineError

logger = logging.getLogger(__name__)


def build_dataframe_from_tesseract(data: Dict[str, Any]) -> pd.DataFrame:
    """Create and clean a DataFrame from pytesseract.image_to_data output.

    Doxygen:
    - @param data: Dict returned by `pytesseract.image_to_data(..., output_type=Output.DICT)`.
    - @return: Filtered DataFrame keeping only words with positive confidence.
    """
    df = pd.DataFrame(data)
    if df.empty:
        return df
    df["conf"] = pd.to_numeric(df["conf"], errors="coerce").fillna(-1)
    df = df[df["conf"] > 0].copy()
    df["text"] = df["text"].fillna("").astype(str).str.strip()
    df = df[df["text"] != ""]
    return df


def assemble_text(df: pd.DataFrame) -> str:
    """Rebuild reading-order text: words → lines → paragraphs.

    Lines of one paragraph are joined with newlines; paragraphs are
    separated by a blank line.
    """
    if df.empty:
        return ""
    group_cols = [c for c in ("block_num", "par_num", "line_num") if c in df.columns]
    if not group_cols:
        return " ".join(df["text"].tolist())
    order_col = "word_num" if "word_num" in df.columns else ("left" if "left" in df.columns else None)

    paragraphs: List[List[str]] = []
    last_par: Optional[Tuple[Any, ...]] = None
    for key, g in df.groupby(group_cols, sort=True):
        key = key if isinstance(key, tuple) else (key,)
        g_sorted = g.sort_values(order_col) if order_col else g
        line = " ".join(g_sorted["text"].tolist())
        par_key = key[:-1] if len(key) > 1 else key
        if par_key != last_par:
            paragraphs.append([])
            last_par = par_key
        paragraphs[-1].append(line)
    return "\n\n".join("\n".join(lines) for lines in paragraphs)


def mean_confidence(df: pd.DataFrame) -> float:
    """Average word confidence mapped from Tesseract's 0..100 scale to [0, 1]."""
    if df.empty:
        return 0.0
    return float(np.clip(df["conf"].mean() / 100.0, 0.0, 1.0))


class OCREngine:
    """Interface driven by the execution context.

    ``load`` is called with a ``+``-joined language string; switching
    languages always goes through ``unload`` and a fresh instance.
    """

    def load(self, languages: str) -> None:
        raise NotImplementedError

    def recognize(self, image: bytes, page_seg_mode: int, engine_mode: int) -> Tuple[str, float]:
        """Return (text, confidence in [0, 1]) for a PNG/JPEG payload."""
        raise NotImplementedError

    def unload(self) -> None:
        pass


class TesseractEngine(OCREngine):
    """Tesseract via pytesseract.

    Doxygen:
    - @param tesseract_cmd: Optional explicit path to the tesseract binary.
    - @param timeout: Per-call timeout passed to pytesseract (seconds, 0 = none).
    """

    def __init__(self, tesseract_cmd: Optional[str] = None, timeout: float = 0) -> None:
        self.tesseract_cmd = tesseract_cmd
        self.timeout = timeout
        self._languages: Optional[str] = None

    def load(self, languages: str) -> None:
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
        try:
            version = pytesseract.get_tesseract_version()
            available = set(pytesseract.get_languages(config=""))
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError, OSError) as exc:
            raise OCREngineError(f"Tesseract is not available: {exc}")

        requested = [code for code in languages.split("+") if code]
        missing = [code for code in requested if available and code not in available]
        if missing:
            raise OCREngineError(f"Tesseract language data not installed: {', '.join(missing)}")
        self._languages = languages
        logger.info("Tesseract %s loaded with languages %s", version, languages)

    def recognize(self, image: bytes, page_seg_mode: int, engine_mode: int) -> Tuple[str, float]:
        if self._languages is None:
            raise OCREngineError("Tesseract engine used before load()")
        img = cv2.imdecode(np.frombuffer(image, dtype=np.uint8), cv2.IMREAD_COLOR)
        if img is None:
            raise OCREngineError("OCR input could not be decoded")
        rgb = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        try:
            data = pytesseract.image_to_data(
                rgb,
                lang=self._languages,
                config=f"--psm {int(page_seg_mode)} --oem {int(engine_mode)}",
                output_type=pytesseract.Output.DICT,
                timeout=self.timeout,
            )
        except (pytesseract.TesseractError, RuntimeError) as exc:
            raise OCREngineError(f"Tesseract recognition failed: {exc}")
        df = build_dataframe_from_tesseract(data)
        return assemble_text(df), mean_confidence(df)

    def unload(self) -> None:
        self._languages = None
