"""Translation package.

Provides the rate-limited, prioritized ``TranslationClient`` for a
DeepL-style REST provider, its pluggable HTTP transport and an offline
stand-in provider.
"""

from .client import (
    PROVIDER_CONFIDENCE,
    TranslationClient,
    build_translation_client,
    parse_translation_response,
)
from .languages import build_translate_params, to_provider_language
from .offline import OfflineProvider, offline_transport
from .queue import QueueItem, TranslationQueue
from .rate_limit import SlidingWindowRateLimiter
from .retry import RetryPolicy, with_retry
from .transport import HttpResponse, HttpTransport, HttpxTransport

__all__ = [
    "PROVIDER_CONFIDENCE",
    "TranslationClient",
    "build_translation_client",
    "parse_translation_response",
    "build_translate_params",
    "to_provider_language",
    "OfflineProvider",
    "offline_transport",
    "QueueItem",
    "TranslationQueue",
    "SlidingWindowRateLimiter",
    "RetryPolicy",
    "with_retry",
    "HttpResponse",
    "HttpTransport",
    "HttpxTransport",
]
