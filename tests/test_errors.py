"""Tests for model error classification."""

import anthropic
import httpx
import pytest

from spurchat.llm.errors import (
    USER_MESSAGES,
    ModelErrorCategory,
    classify_model_error,
    user_message_for,
)


class _HttpError(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def _status_error(cls, status: int):
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    response = httpx.Response(status, request=request)
    return cls("error", response=response, body=None)


def test_rate_limit() -> None:
    exc = _status_error(anthropic.RateLimitError, 429)
    assert classify_model_error(exc) is ModelErrorCategory.RATE_LIMITED


def test_authentication() -> None:
    exc = _status_error(anthropic.AuthenticationError, 401)
    assert classify_model_error(exc) is ModelErrorCategory.UNAUTHORIZED


def test_timeout() -> None:
    assert classify_model_error(TimeoutError()) is ModelErrorCategory.TIMEOUT


def test_connection_error_is_timeout() -> None:
    request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
    exc = anthropic.APITimeoutError(request=request)
    assert classify_model_error(exc) is ModelErrorCategory.TIMEOUT


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (429, ModelErrorCategory.RATE_LIMITED),
        (401, ModelErrorCategory.UNAUTHORIZED),
        (500, ModelErrorCategory.UNKNOWN),
    ],
)
def test_status_code_fallback(status: int, expected: ModelErrorCategory) -> None:
    assert classify_model_error(_HttpError(status)) is expected


def test_unknown() -> None:
    assert classify_model_error(ValueError("boom")) is ModelErrorCategory.UNKNOWN


def test_user_message_is_fixed_text() -> None:
    exc = _status_error(anthropic.RateLimitError, 429)
    assert user_message_for(exc) == "Rate limit exceeded. Please wait and try again."
    assert user_message_for(RuntimeError("secret detail")) == USER_MESSAGES[
        ModelErrorCategory.UNKNOWN
    ]
