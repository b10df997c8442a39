import string
import threading
import time

import pytest

from pbench.util import RetryError, generate_rand_val, retry, schedule, vmax


def test_vmax_picks_largest():
    assert vmax(3, 9, 2) == 9
    assert vmax(-4) == -4


def test_vmax_needs_values():
    with pytest.raises(ValueError):
        vmax()


def test_retry_returns_after_failures():
    calls = []

    def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise OSError("boom")
        return "done"

    assert retry(flaky, 5, 0) == "done"
    assert len(calls) == 3


def test_retry_gives_up():
    calls = []

    def always_fails():
        calls.append(1)
        raise OSError("boom")

    with pytest.raises(RetryError) as info:
        retry(always_fails, 2, 0)
    assert len(calls) == 2
    assert "after 2 attempts" in str(info.value)
    assert isinstance(info.value.__cause__, OSError)


def test_retry_tries_once_with_no_attempts():
    calls = []

    def fails():
        calls.append(1)
        raise ValueError("x")

    with pytest.raises(RetryError):
        retry(fails, 0, 0)
    assert len(calls) == 1


def test_schedule_runs_until_stopped():
    count = 0
    lock = threading.Lock()

    def tick():
        nonlocal count
        with lock:
            count += 1

    stop = schedule(tick, 0.01)
    assert not stop.is_set()
    time.sleep(0.1)
    stop.set()
    time.sleep(0.05)
    with lock:
        seen = count
    time.sleep(0.05)
    with lock:
        assert count == seen
    assert seen >= 2


def test_generate_rand_val():
    value = generate_rand_val(32)
    assert len(value) == 32
    assert all(chr(b) in string.ascii_letters for b in value)
    assert generate_rand_val(0) == b""