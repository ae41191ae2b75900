"""Failure classification for provider calls.

Providers rarely expose structured error codes uniformly, so classification
reads the HTTP status (when there is one) and the human-readable message.
All patterns live here; nothing else in the package inspects message text.
"""

import re
from dataclasses import dataclass
from typing import Any, Union

_INVALID_KEY_MARKERS = ("invalid api key", "api key not valid", "api_key_invalid")
_RATE_LIMIT_MARKERS = ("429", "quota", "resource_exhausted")
_UNAVAILABLE_MARKERS = ("503", "unavailable")

# "Please retry in 58.75s." and the JSON detail form "retryDelay": "58s"
_RETRY_IN = re.compile(r"retry in\s+([0-9]+(?:\.[0-9]+)?)\s*s", re.IGNORECASE)
_RETRY_DELAY = re.compile(r"retrydelay['\"]?\s*:\s*['\"]?([0-9]+(?:\.[0-9]+)?)s", re.IGNORECASE)


@dataclass(frozen=True)
class InvalidKey:
    kind = "invalid_key"


@dataclass(frozen=True)
class RateLimited:
    retry_after_seconds: Union[float, None] = None
    kind = "rate_limited"


@dataclass(frozen=True)
class ProviderUnavailable:
    kind = "provider_unavailable"


@dataclass(frozen=True)
class Fatal:
    cause: Any = None
    kind = "fatal"


ClassifiedError = Union[InvalidKey, RateLimited, ProviderUnavailable, Fatal]


def has_invalid_key_marker(message: str) -> bool:
    text = (message or "").lower()
    return any(m in text for m in _INVALID_KEY_MARKERS)


def extract_retry_after(message: str) -> Union[float, None]:
    """Return the provider-suggested wait in seconds, if the message quotes one."""
    if not message:
        return None
    for pattern in (_RETRY_IN, _RETRY_DELAY):
        match = pattern.search(message)
        if match:
            return float(match.group(1))
    return None


def classify(status: Union[int, None], message: str, cause: Any = None) -> ClassifiedError:
    """Assign a failure to exactly one kind.

    Rules, first match wins:
      1. invalid-key marker in the message -> InvalidKey
      2. status 429 or a quota marker -> RateLimited (with retry hint if quoted)
      3. status >= 500 or an unavailability marker -> ProviderUnavailable
      4. anything else -> Fatal(cause)
    """
    text = (message or "").lower()
    if has_invalid_key_marker(text):
        return InvalidKey()
    if status == 429 or any(m in text for m in _RATE_LIMIT_MARKERS):  # noqa: PLR2004
        return RateLimited(extract_retry_after(message))
    if (status is not None and status >= 500) or any(  # noqa: PLR2004
        m in text for m in _UNAVAILABLE_MARKERS
    ):
        return ProviderUnavailable()
    return Fatal(cause)


def _status_of(exc: BaseException) -> Union[int, None]:
    for attr in ("status", "status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None) or getattr(response, "status", None)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return None


def classify_exception(exc: BaseException) -> ClassifiedError:
    """Classify an arbitrary exception raised by a provider call."""
    message = getattr(exc, "message", None)
    if not isinstance(message, str):
        message = str(exc)
    return classify(_status_of(exc), message, cause=exc)
