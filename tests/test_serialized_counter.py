"""Unit tests for the serialized fixed-window counter."""

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import Mock

import pytest

from authgate.adapters.rate_limit.base import ScopeConfig
from authgate.adapters.rate_limit.serialized_counter import SerializedFixedWindowCounter
from authgate.core.errors import BackendUnavailableError

LOGIN = ScopeConfig("login", window_ms=15 * 60 * 1000, max_requests=10, strong_consistency=True)


@pytest.fixture
def clock() -> Mock:
    return Mock(return_value=1000.0)


@pytest.fixture
def counter(clock: Mock):
    backend = SerializedFixedWindowCounter(workers=2, clock=clock, reply_timeout_s=2.0)
    yield backend
    backend.close()


def test_first_request_opens_window(counter: SerializedFixedWindowCounter) -> None:
    result = counter.check(LOGIN, "1.2.3.4")

    assert result.allowed is True
    assert result.remaining == 9
    assert result.limit == 10
    assert result.backend == "serialized_counter"


def test_rejects_after_max_with_time_left_in_window(counter, clock: Mock) -> None:
    for _ in range(10):
        assert counter.check(LOGIN, "k").allowed is True

    clock.return_value = 1000.0 + 60
    blocked = counter.check(LOGIN, "k")

    assert blocked.allowed is False
    assert blocked.remaining == 0
    assert blocked.retry_after_ms == 15 * 60 * 1000 - 60_000


def test_window_resets_after_it_elapses(counter, clock: Mock) -> None:
    for _ in range(10):
        counter.check(LOGIN, "k")
    assert counter.check(LOGIN, "k").allowed is False

    clock.return_value = 1000.0 + 15 * 60
    result = counter.check(LOGIN, "k")

    assert result.allowed is True
    assert result.remaining == 9


def test_keys_are_independent(counter) -> None:
    for _ in range(10):
        counter.check(LOGIN, "a")

    assert counter.check(LOGIN, "a").allowed is False
    assert counter.check(LOGIN, "b").allowed is True


def test_concurrent_requests_never_exceed_max(counter) -> None:
    barrier = threading.Barrier(25)

    def hit(_: int) -> bool:
        barrier.wait()
        return counter.check(LOGIN, "burst").allowed

    with ThreadPoolExecutor(max_workers=25) as pool:
        outcomes = list(pool.map(hit, range(25)))

    assert outcomes.count(True) == 10
    assert outcomes.count(False) == 15


def test_elapsed_windows_are_pruned(clock: Mock) -> None:
    counter = SerializedFixedWindowCounter(workers=1, clock=clock, prune_every=2)
    short = ScopeConfig("short", window_ms=1000, max_requests=1)
    try:
        counter.check(short, "a")
        clock.return_value = 1005.0
        counter.check(short, "b")

        owner = counter._owners[0]
        assert set(owner._state_by_key) == {short.storage_key("b")}
    finally:
        counter.close()


def test_closed_counter_raises_backend_unavailable(clock: Mock) -> None:
    counter = SerializedFixedWindowCounter(workers=1, clock=clock)
    counter.close()

    with pytest.raises(BackendUnavailableError) as exc:
        counter.check(LOGIN, "k")

    assert exc.value.code == "rate_limit_counter_closed"


def test_reply_timeout_raises_backend_unavailable() -> None:
    release = threading.Event()

    def stalled_clock() -> float:
        release.wait(timeout=5)
        return 1000.0

    counter = SerializedFixedWindowCounter(workers=1, clock=stalled_clock, reply_timeout_s=0.05)
    try:
        with pytest.raises(BackendUnavailableError) as exc:
            counter.check(LOGIN, "k")
        assert exc.value.code == "rate_limit_counter_timeout"
    finally:
        release.set()
        counter.close()


def test_worker_error_raises_backend_unavailable() -> None:
    clock = Mock(side_effect=RuntimeError("clock broke"))
    counter = SerializedFixedWindowCounter(workers=1, clock=clock)
    try:
        with pytest.raises(BackendUnavailableError) as exc:
            counter.check(LOGIN, "k")
        assert exc.value.code == "rate_limit_counter_failed"
    finally:
        counter.close()


@pytest.mark.parametrize(
    "kwargs",
    [
        {"workers": 0},
        {"reply_timeout_s": 0},
        {"prune_every": 0},
    ],
)
def test_invalid_constructor_args(kwargs: dict) -> None:
    with pytest.raises(ValueError):
        SerializedFixedWindowCounter(**kwargs)


def test_empty_client_key_is_rejected(counter) -> None:
    with pytest.raises(ValueError):
        counter.check(LOGIN, "")
