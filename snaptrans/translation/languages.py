"""Language-code mapping and request-parameter construction for the provider.

Both are deterministic pure functions so they can be checked without a network.
"""

from __future__ import annotations

from typing import Dict, Optional

from ..models import TranslationRequest

AUTO = "auto"

# ISO 639-1 (lowercase) -> provider code. Anything else is upper-cased as is.
PROVIDER_LANGUAGE_CODES: Dict[str, str] = {
    "en": "EN",
    "ja": "JA",
    "zh": "ZH",
    "es": "ES",
    "fr": "FR",
    "de": "DE",
    "it": "IT",
    "pt": "PT",
    "ru": "RU",
    "ko": "KO",
    "nl": "NL",
    "pl": "PL",
    "sv": "SV",
    "da": "DA",
    "no": "NB",
    "fi": "FI",
    "cs": "CS",
    "bg": "BG",
    "et": "ET",
    "hu": "HU",
    "lv": "LV",
    "lt": "LT",
    "ro": "RO",
    "sk": "SK",
    "sl": "SL",
    "el": "EL",
}

FORMALITY_VALUES = ("default", "more", "less", "prefer_more", "prefer_less")


def to_provider_language(code: str) -> str:
    """Map an ISO code (any case) to the provider's upper-case code."""
    code = str(code).strip()
    return PROVIDER_LANGUAGE_CODES.get(code.lower(), code.upper())


def build_translate_params(
    request: TranslationRequest,
    formality: Optional[str] = None,
    preserve_formatting: bool = False,
) -> Dict[str, str]:
    """Form fields for ``POST /v2/translate``.

    Doxygen:
    - @param request: Request to encode; ``source_lang == "auto"`` omits the field.
    - @param formality: Optional provider formality setting.
    - @param preserve_formatting: Sends ``preserve_formatting=1`` when true.
    - @return: Ordered dict of form fields.
    """
    params: Dict[str, str] = {
        "text": request.text,
        "target_lang": to_provider_language(request.target_lang),
    }
    if request.source_lang and request.source_lang.lower() != AUTO:
        params["source_lang"] = to_provider_language(request.source_lang)
    if formality:
        params["formality"] = formality
    if preserve_formatting:
        params["preserve_formatting"] = "1"
    return params
