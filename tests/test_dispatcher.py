import random
import threading

import pytest

from turnspit import (
    Cancelled,
    Dispatcher,
    ErrorKind,
    InvalidCredentials,
    MissingCredentials,
    ProviderCallError,
    ProviderUnavailableError,
    QuotaExceeded,
    dispatch,
)

INVALID = ProviderCallError(400, "API key not valid. Please pass a valid API key.")


class FakeProvider:
    """Scripted provider: maps key -> exception to raise (or None for success)."""

    def __init__(self, failures=None, default=None):
        self.failures = failures or {}
        self.default = default
        self.calls: list[str] = []

    def __call__(self, key, payload):
        self.calls.append(key)
        err = self.failures.get(key, self.default)
        if err is not None:
            raise err
        return {"key": key, "payload": payload}


class FakeSleep:
    def __init__(self):
        self.waits: list[float] = []

    def __call__(self, seconds):
        self.waits.append(seconds)


@pytest.mark.parametrize("raw", ["", "   \n, ,", None])
def test_empty_pool_never_calls_provider(raw):
    provider = FakeProvider()
    with pytest.raises(MissingCredentials) as ei:
        dispatch(raw, {"p": 1}, provider)
    assert provider.calls == []
    assert ei.value.kind is ErrorKind.MISSING_CREDENTIALS


def test_single_invalid_key():
    provider = FakeProvider(default=INVALID)
    with pytest.raises(InvalidCredentials) as ei:
        dispatch("only-key", {}, provider)
    assert provider.calls == ["only-key"]
    assert "API Key" in ei.value.message
    assert ei.value.__cause__ is INVALID


def test_invalid_key_rotation_without_backoff():
    provider = FakeProvider({"A": INVALID})
    sleep = FakeSleep()
    d = Dispatcher(provider, sleep=sleep, rng=random.Random(0))
    assert d.execute("A\nB", "img") == {"key": "B", "payload": "img"}
    assert len(provider.calls) <= 2  # noqa: PLR2004
    assert sleep.waits == []


def test_invalid_key_hook_sees_bad_key():
    seen = []
    provider = FakeProvider({"A": INVALID})
    d = Dispatcher(provider, sleep=FakeSleep(), on_invalid_key=seen.append)
    for _ in range(5):
        d.execute("A,B", None)
    assert set(seen) <= {"A"}


@pytest.mark.parametrize("max_retries", [0, 1, 3])
def test_quota_rotation_then_exhaustion(max_retries):
    provider = FakeProvider(default=ProviderCallError(429, "Too Many Requests"))
    sleep = FakeSleep()
    d = Dispatcher(provider, max_retries=max_retries, sleep=sleep, rng=random.Random(3))
    with pytest.raises(QuotaExceeded) as ei:
        d.execute(["A", "B"], {})
    assert len(provider.calls) == 2 + max_retries
    first, second = provider.calls[0], provider.calls[1]
    assert first != second
    # after the rotation only the second key is ever used
    assert set(provider.calls[1:]) == {second}
    assert len(sleep.waits) == max_retries
    # rotation bumps the attempt index: backoff starts at 2**2 * 3s
    if max_retries:
        assert 12.0 <= sleep.waits[0] < 14.0  # noqa: PLR2004
    assert sleep.waits == sorted(sleep.waits)
    assert len(ei.value.attempts) == 2 + max_retries


def test_quota_hint_is_honored():
    provider = FakeProvider(default=ProviderCallError(429, "quota. Please retry in 1.5s."))
    sleep = FakeSleep()
    d = Dispatcher(provider, max_retries=1, sleep=sleep)
    with pytest.raises(QuotaExceeded):
        d.execute("solo", {})
    assert len(sleep.waits) == 1
    assert 3.5 <= sleep.waits[0] < 5.5  # noqa: PLR2004


def test_rate_limit_recovers_after_backoff():
    outcomes = [ProviderCallError(429, "slow down"), None]

    def provider(key, payload):
        err = outcomes.pop(0)
        if err:
            raise err
        return "ok"

    sleep = FakeSleep()
    assert dispatch("solo", {}, provider, sleep=sleep) == "ok"
    assert len(sleep.waits) == 1
    assert 6.0 <= sleep.waits[0] < 8.0  # noqa: PLR2004


def test_provider_unavailable_retries_same_pool_then_surfaces():
    err = ProviderCallError(503, "UNAVAILABLE: The model is overloaded.")
    provider = FakeProvider(default=err)
    sleep = FakeSleep()
    d = Dispatcher(provider, max_retries=2, sleep=sleep)
    with pytest.raises(ProviderUnavailableError) as ei:
        d.execute("A,B,C", {})
    # no key rotation for outages: retries only
    assert len(provider.calls) == 3  # noqa: PLR2004
    assert len(sleep.waits) == 2  # noqa: PLR2004
    assert ei.value.__cause__ is err


@pytest.mark.parametrize("raw", ["A", "A,B,C"])
def test_fatal_short_circuits(raw):
    err = ValueError("unexpected response shape")
    provider = FakeProvider(default=err)
    sleep = FakeSleep()
    with pytest.raises(ValueError) as ei:
        dispatch(raw, {}, provider, sleep=sleep)
    assert ei.value is err
    assert len(provider.calls) == 1
    assert sleep.waits == []


def test_cancel_before_start():
    provider = FakeProvider()
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(Cancelled):
        dispatch("A", {}, provider, cancel=cancel)
    assert provider.calls == []


def test_cancel_during_backoff():
    provider = FakeProvider(default=ProviderCallError(503, "Service Unavailable"))
    cancel = threading.Event()

    def sleep(seconds):
        cancel.set()

    with pytest.raises(Cancelled) as ei:
        dispatch("A", {}, provider, cancel=cancel, sleep=sleep)
    assert len(provider.calls) == 1
    assert ei.value.kind is ErrorKind.CANCELLED


def test_cancel_event_interrupts_real_wait():
    provider = FakeProvider(default=ProviderCallError(503, "Service Unavailable"))
    cancel = threading.Event()
    timer = threading.Timer(0.05, cancel.set)
    timer.start()
    try:
        with pytest.raises(Cancelled):
            # first backoff is >= 6s; the event cuts it short
            dispatch("A", {}, provider, cancel=cancel)
    finally:
        timer.cancel()
    assert len(provider.calls) == 1


def test_negative_retries_rejected():
    with pytest.raises(ValueError):
        Dispatcher(FakeProvider(), max_retries=-1)


def test_unknown_keyword_rejected():
    with pytest.raises(TypeError):
        Dispatcher(FakeProvider(), max_retry=5)


def test_next_step_refuses_fatal():
    from turnspit import Fatal, KeyPool, RequestAttempt  # noqa: PLC0415

    d = Dispatcher(FakeProvider())
    err = ValueError("x")
    with pytest.raises(AssertionError):
        d._next_step(Fatal(err), KeyPool(["A"]), RequestAttempt("A"), [], err)
