import asyncio
import contextlib
import dataclasses
import inspect
import logging
import random
import threading
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any, Union

from .backoff import BackoffPolicy
from .classifier import (
    ClassifiedError,
    Fatal,
    InvalidKey,
    ProviderUnavailable,
    RateLimited,
    classify_exception,
)
from .errors import (
    Cancelled,
    InvalidCredentials,
    MissingCredentials,
    ProviderUnavailableError,
    QuotaExceeded,
)
from .pool import KeyPool
from .state import RequestAttempt, mask_key
from .types import RetryConfig

Keys = Union[KeyPool, str, Iterable[str], None]

_EXTRA_KWARGS = frozenset({"base_delay_ms", "hint_buffer_ms", "jitter_ms", "backoff"})


@dataclass
class _Step:
    pool: KeyPool
    retries_left: int
    attempt_index: int
    delay_ms: float = 0.0


# ---------- Shared decision logic (waiting handled by subclasses) ----------


class _DispatcherBase:
    def __init__(
        self,
        provider_call: Callable,
        max_retries: Union[int, None] = None,
        retry_config: Union[RetryConfig, None] = None,
        rng: Union[random.Random, None] = None,
        log_level: Union[int, None] = None,
        on_invalid_key: Union[Callable[[str], Any], None] = None,
        **kwargs,
    ):
        """Initialize a dispatcher.

        Args:
            provider_call (Callable): ``(key, payload) -> response``; raises on failure
            max_retries (int | None): backoff-consuming retries per call (default 3)
            retry_config (RetryConfig | None): backoff timings; max_retries wins over its field
            rng (random.Random | None): random source for key selection and jitter
            log_level (int | None): level for the "turnspit" logger
            on_invalid_key (Callable | None): called with each key classified invalid
            kwargs:
            - base_delay_ms: float
            - hint_buffer_ms: float
            - jitter_ms: float
            - backoff: BackoffPolicy object

        Raises:
            ValueError: if max_retries is negative
            TypeError: on an unknown keyword argument
        """
        unknown = sorted(set(kwargs) - _EXTRA_KWARGS)
        if unknown:
            raise TypeError(f"unexpected keyword argument(s): {', '.join(unknown)}")
        rconf = retry_config or RetryConfig()
        overrides = {
            k: kwargs[k] for k in ("base_delay_ms", "hint_buffer_ms", "jitter_ms") if k in kwargs
        }
        if max_retries is not None:
            overrides["max_retries"] = max_retries
        if overrides:
            rconf = dataclasses.replace(rconf, **overrides)
        if rconf.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.retry_config = rconf
        self.provider_call = provider_call
        self.on_invalid_key = on_invalid_key
        self._rng = rng or random.Random()
        self.backoff: BackoffPolicy = kwargs.get("backoff") or BackoffPolicy(rconf, self._rng)
        self._logger = logging.getLogger("turnspit")
        if log_level is not None:
            with contextlib.suppress(Exception):
                self._logger.setLevel(log_level)

    @property
    def max_retries(self) -> int:
        return self.retry_config.max_retries

    def _select(self, pool: KeyPool, attempt_index: int, retries_left: int, attempts: list):
        if not pool:
            raise MissingCredentials(attempts=attempts)
        attempt = RequestAttempt(pool.select_random(self._rng), attempt_index, retries_left)
        attempts.append(attempt)
        self._logger.debug(
            f"attempt={attempt_index} key={attempt.masked_key} pool={len(pool)} "
            f"retries_left={retries_left}"
        )
        return attempt

    def _next_step(
        self,
        classified: ClassifiedError,
        pool: KeyPool,
        attempt: RequestAttempt,
        attempts: list,
        error: BaseException,
    ) -> _Step:
        """Return the loop state for the next try, or raise the terminal error."""
        key = attempt.selected_key
        idx = attempt.attempt_index
        retries_left = attempt.remaining_retries

        if isinstance(classified, InvalidKey):
            if self.on_invalid_key is not None:
                self.on_invalid_key(key)
            if len(pool) > 1:
                self._logger.info(f"invalid key={mask_key(key)}; dropping it for this call")
                return _Step(pool.exclude(key), retries_left, idx)
            raise InvalidCredentials(attempts=attempts) from error

        if isinstance(classified, RateLimited) and len(pool) > 1:
            self._logger.info(f"rate limited key={mask_key(key)}; rotating")
            return _Step(pool.exclude(key), retries_left, idx + 1)

        if isinstance(classified, (RateLimited, ProviderUnavailable)):
            if retries_left <= 0:
                if isinstance(classified, RateLimited):
                    raise QuotaExceeded(attempts=attempts) from error
                raise ProviderUnavailableError(attempts=attempts) from error
            delay = self.backoff.compute_delay(classified, idx)
            attempt.delay_ms = delay
            self._logger.info(
                f"{classified.kind} on key={mask_key(key)}; retrying in ~{delay / 1000:.2f}s "
                f"({retries_left} retries left)"
            )
            return _Step(pool, retries_left - 1, idx + 1, delay)

        # Fatal never gets here; execute() re-raises it first
        raise AssertionError(f"unhandled classification: {classified!r}")


# ---------- Sync dispatcher ----------


class Dispatcher(_DispatcherBase):
    """Send one payload through a key pool, rotating keys and backing off as needed.

    Usage:
        dispatcher = Dispatcher(RequestsProvider.gemini("gemini-2.5-flash"))
        response = dispatcher.execute(raw_key_string, payload)

    ``cancel`` is a threading.Event; it is checked before every key selection
    and interrupts a pending backoff wait. A blocking provider call that is
    already in flight runs to completion.
    """

    def __init__(
        self, provider_call: Callable, *args, sleep: Union[Callable, None] = None, **kwargs
    ):
        super().__init__(provider_call, *args, **kwargs)
        # None means "wait on the cancel event, or time.sleep without one"
        self._sleep = sleep

    def execute(self, keys: Keys, payload: Any, cancel: Union[threading.Event, None] = None):
        pool = KeyPool.coerce(keys)
        retries_left = self.max_retries
        attempt_index = 1
        attempts: list[RequestAttempt] = []
        while True:
            if cancel is not None and cancel.is_set():
                raise Cancelled(attempts=attempts)
            attempt = self._select(pool, attempt_index, retries_left, attempts)
            try:
                response = self.provider_call(attempt.selected_key, payload)
            except Exception as exc:
                classified = classify_exception(exc)
                attempt.outcome = classified.kind
                if isinstance(classified, Fatal):
                    self._logger.debug(f"fatal error on key={attempt.masked_key}: {exc}")
                    raise
                step = self._next_step(classified, pool, attempt, attempts, exc)
            else:
                attempt.outcome = "ok"
                return response
            if step.delay_ms > 0:
                self._wait(step.delay_ms, cancel, attempts)
            pool, retries_left, attempt_index = step.pool, step.retries_left, step.attempt_index

    def _wait(self, delay_ms: float, cancel: Union[threading.Event, None], attempts: list):
        seconds = delay_ms / 1000.0
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel is not None:
            if cancel.wait(seconds):
                raise Cancelled(attempts=attempts)
        else:
            time.sleep(seconds)


# ---------- Async dispatcher ----------


class AsyncDispatcher(_DispatcherBase):
    """asyncio flavour of Dispatcher.

    ``provider_call`` may be a coroutine function or a plain callable returning
    an awaitable. ``cancel`` is an asyncio.Event; setting it aborts the
    in-flight provider call or pending backoff immediately and the call ends
    with Cancelled. Cancelling the surrounding task raises CancelledError as usual.
    """

    def __init__(
        self, provider_call: Callable, *args, sleep: Union[Callable, None] = None, **kwargs
    ):
        super().__init__(provider_call, *args, **kwargs)
        self._sleep = sleep or asyncio.sleep

    async def execute(self, keys: Keys, payload: Any, cancel: Union[asyncio.Event, None] = None):
        pool = KeyPool.coerce(keys)
        retries_left = self.max_retries
        attempt_index = 1
        attempts: list[RequestAttempt] = []
        while True:
            if cancel is not None and cancel.is_set():
                raise Cancelled(attempts=attempts)
            attempt = self._select(pool, attempt_index, retries_left, attempts)
            try:
                result = self.provider_call(attempt.selected_key, payload)
                if inspect.isawaitable(result):
                    result = await self._until_cancelled(result, cancel, attempts)
            except Cancelled:
                raise
            except Exception as exc:
                classified = classify_exception(exc)
                attempt.outcome = classified.kind
                if isinstance(classified, Fatal):
                    self._logger.debug(f"fatal error on key={attempt.masked_key}: {exc}")
                    raise
                step = self._next_step(classified, pool, attempt, attempts, exc)
            else:
                attempt.outcome = "ok"
                return result
            if step.delay_ms > 0:
                await self._until_cancelled(self._sleep(step.delay_ms / 1000.0), cancel, attempts)
            pool, retries_left, attempt_index = step.pool, step.retries_left, step.attempt_index

    async def execute_many(
        self,
        keys: Keys,
        payloads: Iterable[Any],
        concurrency: int = 2,
        item_delay: float = 0.0,
        cancel: Union[asyncio.Event, None] = None,
    ) -> list:
        """Dispatch a batch with at most ``concurrency`` calls in flight.

        Every item gets its own pool parsed from ``keys``, so an exclusion in
        one item's retry chain never affects a sibling. Item ``i`` starts no
        earlier than ``i * item_delay`` seconds after the batch. The result
        list is aligned with ``payloads``; failed items hold their exception.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        gate = asyncio.Semaphore(concurrency)

        async def _one(index: int, payload: Any):
            if item_delay > 0 and index:
                await self._until_cancelled(self._sleep(index * item_delay), cancel, [])
            async with gate:
                return await self.execute(keys, payload, cancel=cancel)

        return await asyncio.gather(
            *(_one(i, p) for i, p in enumerate(payloads)), return_exceptions=True
        )

    async def _until_cancelled(self, aw, cancel: Union[asyncio.Event, None], attempts: list):
        """Await ``aw`` unless ``cancel`` fires first, in which case raise Cancelled."""
        if cancel is None:
            return await aw
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            waiter.cancel()
            await asyncio.gather(task, waiter, return_exceptions=True)
            raise
        waiter.cancel()
        if task.done():
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        self._logger.info("cancelled by caller")
        raise Cancelled(attempts=attempts)


# ---------- Shorthands ----------


def dispatch(keys: Keys, payload: Any, provider_call: Callable, cancel=None, **kwargs):
    """One-off synchronous dispatch; kwargs go to Dispatcher."""
    return Dispatcher(provider_call, **kwargs).execute(keys, payload, cancel=cancel)


async def adispatch(keys: Keys, payload: Any, provider_call: Callable, cancel=None, **kwargs):
    """One-off asyncio dispatch; kwargs go to AsyncDispatcher."""
    return await AsyncDispatcher(provider_call, **kwargs).execute(keys, payload, cancel=cancel)
