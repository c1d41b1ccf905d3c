from __future__ import annotations

from typing import Iterable, List, Tuple

from langdetect import DetectorFactory, LangDetectException, detect_langs

DetectorFactory.seed = 0


_LANG_CODE_TO_ENGLISH = {
    "en": "English",
    "ja": "Japanese",
    "zh": "Chinese",
    "ko": "Korean",
    "ru": "Russian",
    "uk": "Ukrainian",
    "de": "German",
    "fr": "French",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "nl": "Dutch",
    "pl": "Polish",
}


def _normalize_texts(texts: Iterable[str]) -> str:
    chunks: List[str] = []
    total_len = 0
    for t in texts:
        if not t:
            continue
        s = str(t).strip()
        if not s:
            continue
        chunks.append(s)
        total_len += len(s)
        if total_len >= 4000:
            break
    return "\n".join(chunks)


def detect_source_language(texts: Iterable[str]) -> Tuple[str | None, float | None]:
    """Best ISO 639-1 guess for the texts and its probability; (None, None) when unknown."""
    sample = _normalize_texts(texts)
    if not sample:
        return None, None
    try:
        candidates = detect_langs(sample)
    except LangDetectException:
        return None, None
    if not candidates:
        return None, None
    best = max(candidates, key=lambda c: c.prob)
    # zh-cn / zh-tw collapse to the provider's single "zh".
    return best.lang.split("-")[0], float(best.prob)


def language_name(code: str | None) -> str | None:
    if not code:
        return None
    return _LANG_CODE_TO_ENGLISH.get(code.lower().split("-")[0])


__all__ = [
    "detect_source_language",
    "language_name",
]
