import asyncio
import contextlib
import email.utils as eut
import json
import logging
import math
import time
from typing import Any, Union

from .classifier import extract_retry_after, has_invalid_key_marker
from .state import mask_key
from .types import GEMINI_AUTH, MISTRAL_AUTH, AuthConfig

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
MISTRAL_CHAT_URL = "https://api.mistral.ai/v1/chat/completions"

DEFAULT_TIMEOUT = 120.0

_logger = logging.getLogger("turnspit")


def gemini_url(model: str, action: str = "generateContent") -> str:
    return f"{GEMINI_BASE_URL}/models/{model}:{action}"


class ProviderCallError(Exception):
    """A failed provider call: optional HTTP status plus the provider's message."""

    def __init__(self, status: Union[int, None], message: str, body: Any = None):
        self.status = status
        self.message = message
        self.body = body
        super().__init__(message if status is None else f"[{status}] {message}")


def error_from_body(status: Union[int, None], text: str) -> ProviderCallError:
    """Build a ProviderCallError from a provider's error body.

    Understands the Google style ``{"error": {"code", "status", "message",
    "details": [{"reason": ...}]}}`` and flat ``{"message": ...}`` bodies;
    anything else is kept as (truncated) text.
    """
    try:
        body = json.loads(text) if text else None
    except ValueError:
        body = None
    if isinstance(body, list) and body:
        body = body[0]
    err = body.get("error", body) if isinstance(body, dict) else None
    if not isinstance(err, dict):
        return ProviderCallError(status, (text or "").strip()[:500] or f"HTTP {status}", body)

    parts: list[str] = []
    if isinstance(err.get("status"), str):
        parts.append(f"{err['status']}:")
    message = err.get("message") or err.get("detail") or err.get("type")
    if message:
        parts.append(str(message))
    for detail in err.get("details") or ():
        reason = detail.get("reason") if isinstance(detail, dict) else None
        if reason:
            parts.append(f"({reason})")
    return ProviderCallError(status, " ".join(parts) or f"HTTP {status}", body)


def parse_retry_after(headers, now: Union[float, None] = None) -> Union[float, None]:
    """Seconds from a Retry-After header (delta-seconds or HTTP-date), or None."""
    ra = None
    for k, v in (headers or {}).items():
        if k.lower() == "retry-after":
            ra = v
            break
    if ra is None:
        return None
    try:
        return max(0.0, float(ra))
    except ValueError:
        # HTTP-date per RFC7231
        try:
            ts = eut.parsedate_to_datetime(ra)
        except (TypeError, ValueError):
            return None
        now = time.time() if now is None else now
        # round up so short delays don't truncate to zero
        return max(0.0, float(math.ceil(ts.timestamp() - now)))


def error_from_response(status: int, text: str, headers=None) -> ProviderCallError:
    """error_from_body, plus what the status line and headers say.

    The classifier only reads status and message, so a Retry-After header is
    appended in the same "retry in Ns" form providers use in their bodies, and
    a 401/403 whose body doesn't say so (Mistral answers plain "Unauthorized")
    is tagged as an invalid key.
    """
    err = error_from_body(status, text)
    if status in (401, 403) and not has_invalid_key_marker(err.message):
        err.message = f"{err.message} (invalid API key)"
    retry_after = parse_retry_after(headers)
    if retry_after and extract_retry_after(err.message) is None:
        err.message = f"{err.message} (retry in {retry_after:g}s)"
    err.args = (f"[{status}] {err.message}",)
    return err


def _unavailable(exc: BaseException) -> ProviderCallError:
    # transport failures are retried like a provider outage
    return ProviderCallError(None, f"UNAVAILABLE: {type(exc).__name__}: {exc}")


def _inject_key(auth: AuthConfig, key: str, headers: dict, params: dict) -> None:
    if auth.in_ == "query":
        params[auth.query_param] = key
    else:
        headers[auth.header] = f"{auth.scheme} {key}".strip()


class _ProviderBase:
    def __init__(
        self,
        url: str,
        auth_config: Union[AuthConfig, None] = None,
        timeout: float = DEFAULT_TIMEOUT,
        **kwargs,
    ):
        """Initialize a provider call.

        Args:
            url (str): endpoint the payload is POSTed to as JSON
            auth_config (AuthConfig | None): key placement; defaults to a bearer header
            timeout (float): per-request timeout in seconds
            kwargs:
            - auth_header: str
            - auth_scheme: str
            - auth_in: str
            - auth_query_param: str
            - headers: dict of extra headers sent with every call
        """
        self.url = url
        self.timeout = timeout
        if auth_config is not None:
            self.auth_config = auth_config
        else:
            self.auth_config = AuthConfig(
                header=kwargs.get("auth_header", "Authorization"),
                scheme=kwargs.get("auth_scheme", "Bearer"),
                in_=kwargs.get("auth_in", "header"),
                query_param=kwargs.get("auth_query_param", "key"),
            )
        self.extra_headers = dict(kwargs.get("headers") or {})

    def _prepare(self, key: str) -> tuple[dict, dict]:
        headers = {"Content-Type": "application/json", **self.extra_headers}
        params: dict = {}
        _inject_key(self.auth_config, key, headers, params)
        return headers, params

    @classmethod
    def gemini(cls, model: str, **kwargs):
        return cls(gemini_url(model), auth_config=GEMINI_AUTH, **kwargs)

    @classmethod
    def mistral(cls, **kwargs):
        return cls(MISTRAL_CHAT_URL, auth_config=MISTRAL_AUTH, **kwargs)


# ---------- requests (sync) ----------


class RequestsProvider(_ProviderBase):
    """Provider call over a requests.Session, for use with Dispatcher."""

    def __init__(
        self, url: str, auth_config: Union[AuthConfig, None] = None, session=None, **kwargs
    ):
        super().__init__(url, auth_config, **kwargs)
        self.session = session

    def _session(self):
        if self.session is None:
            import requests  # noqa: PLC0415

            self.session = requests.Session()
        return self.session

    def close(self):
        if self.session is not None:
            with contextlib.suppress(Exception):
                self.session.close()

    def __call__(self, key: str, payload: Any):
        import requests  # noqa: PLC0415

        headers, params = self._prepare(key)
        try:
            resp = self._session().post(
                self.url, json=payload, headers=headers, params=params, timeout=self.timeout
            )
        except requests.RequestException as e:
            _logger.warning(f"request error url={self.url} key={mask_key(key)}: {e}")
            raise _unavailable(e) from e
        if resp.status_code >= 400:  # noqa: PLR2004
            raise error_from_response(resp.status_code, resp.text, resp.headers)
        return resp.json()


# ---------- httpx (async) ----------


class HttpxProvider(_ProviderBase):
    """Provider call over an httpx.AsyncClient, for use with AsyncDispatcher."""

    def __init__(
        self, url: str, auth_config: Union[AuthConfig, None] = None, client=None, **kwargs
    ):
        super().__init__(url, auth_config, **kwargs)
        self.client = client
        self._own_client = client is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()
        return False

    async def aclose(self):
        if self._own_client and self.client is not None:
            with contextlib.suppress(Exception):
                await self.client.aclose()
            self.client = None

    async def __call__(self, key: str, payload: Any):
        import httpx  # noqa: PLC0415

        if self.client is None:
            self.client = httpx.AsyncClient(timeout=self.timeout)
        headers, params = self._prepare(key)
        try:
            resp = await self.client.post(self.url, json=payload, headers=headers, params=params)
        except (httpx.TransportError, httpx.TimeoutException) as e:
            _logger.warning(f"request error url={self.url} key={mask_key(key)}: {e}")
            raise _unavailable(e) from e
        if resp.status_code >= 400:  # noqa: PLR2004
            raise error_from_response(resp.status_code, resp.text, resp.headers)
        return resp.json()


# ---------- aiohttp (async) ----------


class AiohttpProvider(_ProviderBase):
    """Provider call over an aiohttp.ClientSession, for use with AsyncDispatcher."""

    def __init__(
        self, url: str, auth_config: Union[AuthConfig, None] = None, session=None, **kwargs
    ):
        super().__init__(url, auth_config, **kwargs)
        self.session = session
        self._own_session = session is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
        return False

    async def close(self):
        if self._own_session and self.session is not None:
            await self.session.close()
            self.session = None

    async def __call__(self, key: str, payload: Any):
        import aiohttp  # noqa: PLC0415

        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        headers, params = self._prepare(key)
        try:
            async with self.session.request(
                "POST", self.url, json=payload, headers=headers, params=params
            ) as resp:
                text = await resp.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _logger.warning(f"request error url={self.url} key={mask_key(key)}: {e}")
            raise _unavailable(e) from e
        if resp.status >= 400:  # noqa: PLR2004
            raise error_from_response(resp.status, text, resp.headers)
        return json.loads(text)
