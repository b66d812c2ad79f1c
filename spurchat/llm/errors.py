"""Map model-provider failures to user-facing error categories."""

from __future__ import annotations

import logging
from enum import StrEnum

import anthropic

logger = logging.getLogger(__name__)


class ModelErrorCategory(StrEnum):
    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


USER_MESSAGES: dict[ModelErrorCategory, str] = {
    ModelErrorCategory.RATE_LIMITED: "Rate limit exceeded. Please wait and try again.",
    ModelErrorCategory.UNAUTHORIZED: "Invalid API key. Please check your configuration.",
    ModelErrorCategory.TIMEOUT: "Request timed out. Please try again.",
    ModelErrorCategory.UNKNOWN: "Failed to generate response. Please try again.",
}


def classify_model_error(exc: BaseException) -> ModelErrorCategory:
    """Bucket an exception raised while calling the model."""
    if isinstance(exc, anthropic.RateLimitError):
        return ModelErrorCategory.RATE_LIMITED
    if isinstance(exc, anthropic.AuthenticationError):
        return ModelErrorCategory.UNAUTHORIZED
    # APITimeoutError subclasses APIConnectionError
    if isinstance(exc, (TimeoutError, anthropic.APIConnectionError)):
        return ModelErrorCategory.TIMEOUT

    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return ModelErrorCategory.RATE_LIMITED
    if status == 401:
        return ModelErrorCategory.UNAUTHORIZED
    return ModelErrorCategory.UNKNOWN


def user_message_for(exc: BaseException) -> str:
    """Log the failure and return the fixed message shown to the user."""
    category = classify_model_error(exc)
    logger.error(
        "Model API error (%s): %s status=%s",
        category.value,
        type(exc).__name__,
        getattr(exc, "status_code", None),
    )
    return USER_MESSAGES[category]
