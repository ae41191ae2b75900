from .adapters import (
    MISTRAL_CHAT_URL,
    AiohttpProvider,
    HttpxProvider,
    ProviderCallError,
    RequestsProvider,
    gemini_url,
)
from .backoff import BackoffPolicy
from .classifier import (
    ClassifiedError,
    Fatal,
    InvalidKey,
    ProviderUnavailable,
    RateLimited,
    classify,
    classify_exception,
)
from .dispatcher import AsyncDispatcher, Dispatcher, adispatch, dispatch
from .env import load_keys_from_env
from .errors import (
    Cancelled,
    DispatchError,
    ErrorKind,
    InvalidCredentials,
    MissingCredentials,
    ProviderUnavailableError,
    QuotaExceeded,
)
from .pool import KeyPool, parse_keys
from .state import RequestAttempt
from .types import GEMINI_AUTH, MISTRAL_AUTH, AuthConfig, RetryConfig

__all__ = [
    "KeyPool",
    "parse_keys",
    "RequestAttempt",
    "AuthConfig",
    "RetryConfig",
    "GEMINI_AUTH",
    "MISTRAL_AUTH",
    "ClassifiedError",
    "InvalidKey",
    "RateLimited",
    "ProviderUnavailable",
    "Fatal",
    "classify",
    "classify_exception",
    "BackoffPolicy",
    "Dispatcher",
    "AsyncDispatcher",
    "dispatch",
    "adispatch",
    "DispatchError",
    "ErrorKind",
    "MissingCredentials",
    "InvalidCredentials",
    "QuotaExceeded",
    "ProviderUnavailableError",
    "Cancelled",
    "ProviderCallError",
    "RequestsProvider",
    "HttpxProvider",
    "AiohttpProvider",
    "gemini_url",
    "MISTRAL_CHAT_URL",
    "load_keys_from_env",
]
