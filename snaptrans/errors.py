"""Error taxonomy for the image-to-translation pipeline.

Every error carries a stable ``error_code`` and a ``retryable`` flag.
Retry decisions read the flag; they never switch on the subclass.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCodes:
    """Stable error code strings shared by all stages."""

    CONFIG_ERROR = "CONFIG_ERROR"
    IMAGE_DECODE_ERROR = "IMAGE_DECODE_ERROR"

    OCR_TIMEOUT = "OCR_TIMEOUT"
    OCR_ENGINE_ERROR = "OCR_ENGINE_ERROR"
    OCR_EMPTY_TEXT = "OCR_EMPTY_TEXT"

    BAD_REQUEST = "BAD_REQUEST"  # 400
    FORBIDDEN = "FORBIDDEN"  # 403
    NOT_FOUND = "NOT_FOUND"  # 404
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"  # 413
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"  # 429
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"  # 456
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"  # 503
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

    PIPELINE_ERROR = "PIPELINE_ERROR"


STATUS_MESSAGES: Dict[int, str] = {
    400: "Bad request. Please check your request parameters.",
    403: "Forbidden. Invalid API key or insufficient permissions.",
    404: "Resource not found.",
    413: "Request entity too large. Text is too long.",
    429: "Too many requests. Rate limit exceeded.",
    456: "Quota exceeded. You have reached your usage limit.",
    503: "Service unavailable. Please try again later.",
}

USER_MESSAGES: Dict[str, str] = {
    ErrorCodes.CONFIG_ERROR: "The settings are invalid. Please review them.",
    ErrorCodes.IMAGE_DECODE_ERROR: "The image could not be read.",
    ErrorCodes.OCR_TIMEOUT: "Reading the text took too long. Please try again.",
    ErrorCodes.OCR_ENGINE_ERROR: "Text recognition failed. Please try again.",
    ErrorCodes.OCR_EMPTY_TEXT: "No text was found in the image.",
    ErrorCodes.BAD_REQUEST: "The translation request was not accepted.",
    ErrorCodes.FORBIDDEN: "The translation key was rejected. Check your API key.",
    ErrorCodes.NOT_FOUND: "The translation service could not be found.",
    ErrorCodes.REQUEST_TOO_LARGE: "The text is too long to translate at once.",
    ErrorCodes.RATE_LIMIT_EXCEEDED: "Too many translations right now. Try again shortly.",
    ErrorCodes.QUOTA_EXCEEDED: "Usage limit reached for the translation service.",
    ErrorCodes.SERVICE_UNAVAILABLE: "The translation service is busy. Try again shortly.",
    ErrorCodes.NETWORK_ERROR: "Could not reach the translation service. Check your connection.",
    ErrorCodes.UNKNOWN_ERROR: "Translation failed unexpectedly. Please try again.",
    ErrorCodes.PIPELINE_ERROR: "Something went wrong while processing the image.",
}


class SnapTransError(Exception):
    """Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        error_code: Stable code for programmatic handling
        context: Stage that raised the error
        retryable: Whether repeating the same call may succeed
        details: Optional extra data (status code, response body, ...)
    """

    context = "pipeline"
    default_code = ErrorCodes.PIPELINE_ERROR
    default_retryable = False

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.default_code
        self.retryable = self.default_retryable if retryable is None else bool(retryable)
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    @property
    def user_message(self) -> str:
        return USER_MESSAGES.get(self.error_code, USER_MESSAGES[ErrorCodes.PIPELINE_ERROR])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.error_code,
            "message": self.message,
            "context": self.context,
            "retryable": self.retryable,
            "details": dict(self.details),
        }


class ConfigurationError(SnapTransError):
    """Invalid configuration; raised synchronously, never captured."""

    context = "config"
    default_code = ErrorCodes.CONFIG_ERROR

    def __init__(self, message: str, config_key: Optional[str] = None):
        super().__init__(message)
        self.config_key = config_key


class ImageDecodeError(SnapTransError):
    """The input image bytes could not be decoded. Non-fatal for the pipeline."""

    context = "image"
    default_code = ErrorCodes.IMAGE_DECODE_ERROR


class OCRError(SnapTransError):
    """Base class for OCR stage failures."""

    context = "ocr"
    default_code = ErrorCodes.OCR_ENGINE_ERROR
    suggest_toggle_preprocessing = True


class OCRTimeoutError(OCRError):
    default_code = ErrorCodes.OCR_TIMEOUT


class OCREngineError(OCRError):
    default_code = ErrorCodes.OCR_ENGINE_ERROR


class OCREmptyTextError(OCRError):
    default_code = ErrorCodes.OCR_EMPTY_TEXT

    def __init__(self, message: str = "No text extracted from image"):
        super().__init__(message)


class TranslationError(SnapTransError):
    """Base class for translation failures.

    Attributes:
        status_code: HTTP status returned by the provider, if any
    """

    context = "translation"
    default_code = ErrorCodes.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, error_code=error_code, retryable=retryable, details=details)
        self.status_code = status_code
        if status_code is not None:
            self.details.setdefault("status_code", status_code)


class TranslationRequestError(TranslationError):
    default_code = ErrorCodes.BAD_REQUEST


class TranslationAuthError(TranslationError):
    default_code = ErrorCodes.FORBIDDEN


class TranslationRateLimitError(TranslationError):
    default_code = ErrorCodes.RATE_LIMIT_EXCEEDED
    default_retryable = True


class TranslationQuotaError(TranslationError):
    default_code = ErrorCodes.QUOTA_EXCEEDED


class TranslationServiceUnavailable(TranslationError):
    default_code = ErrorCodes.SERVICE_UNAVAILABLE
    default_retryable = True


class TranslationNetworkError(TranslationError):
    default_code = ErrorCodes.NETWORK_ERROR
    default_retryable = True


class TranslationUnknownError(TranslationError):
    default_code = ErrorCodes.UNKNOWN_ERROR
    default_retryable = True


_STATUS_ERRORS = {
    400: (TranslationRequestError, ErrorCodes.BAD_REQUEST),
    403: (TranslationAuthError, ErrorCodes.FORBIDDEN),
    404: (TranslationRequestError, ErrorCodes.NOT_FOUND),
    413: (TranslationRequestError, ErrorCodes.REQUEST_TOO_LARGE),
    429: (TranslationRateLimitError, ErrorCodes.RATE_LIMIT_EXCEEDED),
    456: (TranslationQuotaError, ErrorCodes.QUOTA_EXCEEDED),
    503: (TranslationServiceUnavailable, ErrorCodes.SERVICE_UNAVAILABLE),
}


def error_code_for_status(status: int) -> str:
    """Map an HTTP status to its error code; unmapped statuses are UNKNOWN_ERROR."""
    entry = _STATUS_ERRORS.get(status)
    return entry[1] if entry else ErrorCodes.UNKNOWN_ERROR


def message_for_status(status: int) -> str:
    return STATUS_MESSAGES.get(status, f"HTTP {status} error")


def error_for_status(status: int, body: str = "") -> TranslationError:
    """Build the classified error for a non-success provider response."""
    cls, code = _STATUS_ERRORS.get(status, (TranslationUnknownError, ErrorCodes.UNKNOWN_ERROR))
    details = {"response": body[:500]} if body else None
    return cls(message_for_status(status), error_code=code, status_code=status, details=details)
