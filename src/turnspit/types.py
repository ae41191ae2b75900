from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"
    in_: Literal["header", "query"] = "header"
    query_param: str = "key"


# Gemini takes the raw key in x-goog-api-key; Mistral uses a bearer token.
GEMINI_AUTH = AuthConfig(header="x-goog-api-key", scheme="")
MISTRAL_AUTH = AuthConfig()


@dataclass(frozen=True)
class RetryConfig:
    # backoff-consuming retries per logical call (key rotations are free)
    max_retries: int = 3

    # exponential fallback: 2**attempt * base_delay_ms
    base_delay_ms: float = 3000.0

    # added on top of a provider "retry in Ns" hint; quoted windows run short
    hint_buffer_ms: float = 2000.0

    # uniform jitter in [0, jitter_ms)
    jitter_ms: float = 2000.0
