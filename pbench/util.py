"""Small helpers: maximum of many values, retries, periodic calls, random values."""

from __future__ import annotations

import logging
import random
import string
import threading
import time
from typing import Callable, TypeVar

_log = logging.getLogger(__name__)

T = TypeVar("T")

_LETTERS = string.ascii_lowercase + string.ascii_uppercase


class RetryError(Exception):
    """Raised when every attempt made by :func:`retry` failed."""


def vmax(*args: int) -> int:
    """Return the largest of the given values."""
    if not args:
        raise ValueError("vmax() needs at least one value")
    return max(args)


def retry(func: Callable[[], T], attempts: int, sleep: float) -> T:
    """Call ``func`` until it stops raising, waiting longer after each failure.

    The wait after the i-th failure is ``sleep * i`` seconds. At least one
    attempt is always made.
    """
    attempt = 0
    while True:
        try:
            return func()
        except Exception as exc:  # noqa: BLE001 - any failure is retried
            _log.info("Retry attempt %d failed with err: %s", attempt, exc)
            if attempt >= attempts - 1:
                raise RetryError(f"after {attempts} attempts, last error: {exc}") from exc
        attempt += 1
        time.sleep(sleep * attempt)


def schedule(func: Callable[[], object], delay: float) -> threading.Event:
    """Call ``func`` now and then every ``delay`` seconds until the event is set."""
    stop = threading.Event()

    def run() -> None:
        while True:
            func()
            if stop.wait(delay):
                return

    threading.Thread(target=run, daemon=True).start()
    return stop


def generate_rand_val(n: int) -> bytes:
    """Return ``n`` random ASCII letters."""
    return "".join(random.choice(_LETTERS) for _ in range(n)).encode("ascii")