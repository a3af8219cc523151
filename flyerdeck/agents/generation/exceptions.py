"""
Exception hierarchy for the generation pipeline.

Stage-local failures (fetch, crop, regeneration, routing) are raised inside
their owning operation and converted to values there; only request-level
errors (authentication, input validation) reach the transport.
"""

from enum import Enum
from typing import Optional, Dict, Any


class GenerationError(Exception):
    """Base exception for all generation errors"""

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.cause = cause
        self.context = context or {}

    def __str__(self):
        parts = [super().__str__()]
        if self.cause:
            parts.append(f" (caused by: {type(self.cause).__name__}: {str(self.cause)})")
        if self.context:
            parts.append(f" Context: {self.context}")
        return "".join(parts)


# === Media exceptions ===

class MediaProcessingError(GenerationError):
    """Media processing failed"""
    pass


class ImageFetchError(MediaProcessingError):
    """Source image could not be downloaded or decoded"""
    pass


OVERSIZED_IMAGE_REASON = "too many pixels"


class ImageFormatError(MediaProcessingError):
    """Unsupported image format for the downstream model"""

    def __init__(self, mime_type: str, reason: Optional[str] = None, **kwargs):
        message = f"Unsupported image type: {mime_type}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, **kwargs)
        self.mime_type = mime_type
        self.reason = reason


class CropError(MediaProcessingError):
    """Unreadable image metadata or degenerate crop geometry"""
    pass


# === Regeneration exceptions ===

class ErrorCategory(Enum):
    """User-facing categories for image model failures."""
    SAFETY = "safety"
    COPYRIGHT = "copyright"
    CONTENT_BLOCKED = "content_blocked"
    QUOTA = "quota"
    RATE_LIMIT = "rate_limit"
    GENERIC = "generic"


class RegenerationError(GenerationError):
    """Image model returned no usable image"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.GENERIC, **kwargs):
        super().__init__(message, **kwargs)
        self.category = category


# === Routing exceptions ===

class RoutingError(GenerationError):
    """Geospatial lookup failed"""
    pass


class GeocodingError(RoutingError):
    """Address could not be resolved to coordinates"""
    pass


class RouteNodeAbsentError(RoutingError):
    """No transit node near the resolved address"""
    pass


class HubRouteError(RoutingError):
    """Routing to a single hub failed"""

    def __init__(self, hub_name: str, message: str, **kwargs):
        super().__init__(message, **kwargs)
        self.hub_name = hub_name
        self.context.update({'hub': hub_name})


# === Request exceptions ===

class RequestError(GenerationError):
    """Fatal for the request before streaming starts"""
    pass


class InputValidationError(RequestError):
    """Malformed generation request"""
    pass


# === Provider error messages ===

# Ordered: the first rule whose substring occurs in the message wins
_PROVIDER_ERROR_RULES = (
    (("SAFETY",), ErrorCategory.SAFETY),
    (("RECITATION",), ErrorCategory.COPYRIGHT),
    (("BLOCKED",), ErrorCategory.CONTENT_BLOCKED),
    (("quota", "QUOTA"), ErrorCategory.QUOTA),
    (("rate", "RATE"), ErrorCategory.RATE_LIMIT),
)

CATEGORY_MESSAGES = {
    ErrorCategory.SAFETY: "安全性ポリシーにより画像を生成できませんでした。",
    ErrorCategory.COPYRIGHT: "著作権の問題により画像を生成できませんでした。",
    ErrorCategory.CONTENT_BLOCKED: "コンテンツがブロックされました。",
    ErrorCategory.QUOTA: "APIの利用制限に達しました。",
    ErrorCategory.RATE_LIMIT: "リクエストが多すぎます。",
}

UNKNOWN_ERROR_MESSAGE = "画像生成に失敗しました。"


def _raw_message(error: BaseException) -> str:
    if error.args and isinstance(error.args[0], str):
        return error.args[0]
    return str(error)


def categorize_provider_error(error: Any) -> ErrorCategory:
    """Classify a provider failure.

    A category already set on a RegenerationError wins; otherwise the
    substrings in the message decide.
    """
    if not isinstance(error, BaseException):
        return ErrorCategory.GENERIC
    if isinstance(error, RegenerationError) and error.category is not ErrorCategory.GENERIC:
        return error.category
    message = _raw_message(error)
    for patterns, category in _PROVIDER_ERROR_RULES:
        if any(pattern in message for pattern in patterns):
            return category
    return ErrorCategory.GENERIC


def user_message_for(error: Any) -> str:
    """Map a provider failure to a message that can be shown to the agent.

    Unmatched exceptions keep their own message; anything that is not an
    exception gets the generic failure text.
    """
    if not isinstance(error, BaseException):
        return UNKNOWN_ERROR_MESSAGE
    category = categorize_provider_error(error)
    if category is ErrorCategory.GENERIC:
        return _raw_message(error) or UNKNOWN_ERROR_MESSAGE
    return CATEGORY_MESSAGES[category]
