"""Offline stand-in for the translation provider.

A handler for ``httpx.MockTransport`` that answers the same wire contract
as the real service. Used when no API key is configured and for offline
benchmarks.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Dict, List
from urllib.parse import parse_qs

import httpx

from .language_detector import detect_source_language, language_name
from .languages import PROVIDER_LANGUAGE_CODES, to_provider_language

logger = logging.getLogger(__name__)

OFFLINE_BASE_URL = "https://offline.invalid"
CHARACTER_LIMIT = 500_000

PHRASES: Dict[str, Dict[str, str]] = {
    "JA": {
        "test": "テスト",
        "hello": "こんにちは",
        "hello world": "ハローワールド",
        "thank you": "ありがとうございます",
        "good morning": "おはようございます",
    },
    "EN": {
        "テスト": "Test",
        "こんにちは": "Hello",
        "ありがとうございます": "Thank you",
    },
    "DE": {"test": "Test", "hello": "Hallo", "thank you": "Danke"},
    "FR": {"test": "Test", "hello": "Bonjour", "thank you": "Merci"},
}

FORMALITY_TARGETS = {"DE", "FR", "IT", "ES", "NL", "PL", "PT", "JA", "RU"}


def _json(status: int, payload) -> httpx.Response:
    return httpx.Response(
        status,
        content=json.dumps(payload, ensure_ascii=False).encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )


class OfflineProvider:
    """Callable ``httpx.MockTransport`` handler with a small phrase table."""

    def __init__(self, character_limit: int = CHARACTER_LIMIT) -> None:
        self.character_limit = character_limit
        self.character_count = 0
        self._lock = threading.Lock()

    def translate(self, text: str, target: str) -> str:
        phrase = PHRASES.get(target, {}).get(text.strip().lower())
        if phrase is None:
            phrase = PHRASES.get(target, {}).get(text.strip())
        return phrase if phrase is not None else f"[{target}] {text}"

    def _translate_response(self, request: httpx.Request) -> httpx.Response:
        form = parse_qs(request.content.decode("utf-8"), keep_blank_values=True)
        texts: List[str] = form.get("text", [])
        target = (form.get("target_lang") or [""])[0]
        if not texts or not target:
            return _json(400, {"message": "Parameter 'text' and 'target_lang' are required"})
        target = to_provider_language(target)
        size = sum(len(t) for t in texts)
        with self._lock:
            if self.character_count + size > self.character_limit:
                return _json(456, {"message": "Quota exceeded"})
            self.character_count += size

        source = (form.get("source_lang") or [""])[0]
        translations = []
        for text in texts:
            detected = source
            if not detected:
                code, _ = detect_source_language([text])
                detected = to_provider_language(code) if code else "EN"
            translations.append({"detected_source_language": detected, "text": self.translate(text, target)})
        return _json(200, {"translations": translations})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/v2/translate" and request.method == "POST":
            return self._translate_response(request)
        if path == "/v2/usage" and request.method == "GET":
            return _json(200, {"character_count": self.character_count, "character_limit": self.character_limit})
        if path == "/v2/languages" and request.method == "GET":
            languages = [
                {
                    "language": code,
                    "name": language_name(iso) or code,
                    "supports_formality": code in FORMALITY_TARGETS,
                }
                for iso, code in PROVIDER_LANGUAGE_CODES.items()
            ]
            return _json(200, {"languages": languages})
        return _json(404, {"message": f"Unknown endpoint {request.method} {path}"})


def offline_transport(provider: OfflineProvider | None = None) -> httpx.MockTransport:
    return httpx.MockTransport(provider or OfflineProvider())
