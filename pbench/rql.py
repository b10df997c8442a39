"""Values, structs and sets written into retroscope log lines."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable, Iterator

_log = logging.getLogger(__name__)


def quote(value: str) -> str:
    return f'"{value}"'


def format_int(value: int) -> str:
    return f"{int(value):d}"


def format_float(value: float) -> str:
    return f"{value:f}"


@dataclass
class RetroVar:
    """A rendered value, optionally with a name."""

    name: str | None
    value: str

    def render(self) -> str:
        if self.name is None:
            return self.value
        return f"{self.name}:{self.value}"


class RqlStruct:
    """An ordered group of named values, rendered as ``name:[a:1,b:2]``."""

    def __init__(self, name: str | None = None) -> None:
        self.name = name
        self._vars: list[RetroVar] = []
        self._lock = threading.Lock()

    def _add(self, var: RetroVar) -> "RqlStruct":
        with self._lock:
            self._vars.append(var)
        return self

    def add_var_str(self, name: str, value: str) -> "RqlStruct":
        return self._add(RetroVar(name, quote(value)))

    def add_var_int(self, name: str, value: int) -> "RqlStruct":
        return self._add(RetroVar(name, format_int(value)))

    def add_var_float(self, name: str, value: float) -> "RqlStruct":
        return self._add(RetroVar(name, format_float(value)))

    def render(self) -> str:
        with self._lock:
            body = ",".join(var.render() for var in self._vars)
        prefix = f"{self.name}:" if self.name is not None else ""
        return f"{prefix}[{body}]"


class RqlSet:
    """A set of rendered values that is either added to or removed from."""

    def __init__(self, name: str, is_add: bool) -> None:
        self.name = name
        self.is_add = is_add
        self._values: dict[str, None] = {}

    def add(self, value: str) -> None:
        self._values[value] = None

    def remove(self, value: str) -> None:
        self._values.pop(value, None)

    def add_all(self, values: Iterable[str]) -> None:
        for value in values:
            self.add(value)

    def remove_all(self, values: Iterable[str]) -> None:
        for value in values:
            self.remove(value)

    def render(self, erase: bool) -> str:
        """Render as ``name:...{a,b}`` or ``name:--{a,b}``; optionally empty the set."""
        marker = "..." if self.is_add else "--"
        text = f"{self.name}:{marker}{{{','.join(self._values)}}}"
        if erase:
            self._values = {}
        return text

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._values))

    def __contains__(self, value: object) -> bool:
        return value in self._values


class TimerRqlSet:
    """A set whose values expire a fixed time after they were added."""

    def __init__(self, name: str, expire_time: int) -> None:
        self.name = name
        self.expire_time = expire_time
        self._buckets: list[tuple[int, list[str]]] = []
        self._lock = threading.Lock()

    def add(self, value: str, ts: int) -> None:
        with self._lock:
            if not self._buckets or self._buckets[-1][0] != ts:
                self._buckets.append((ts, []))
            _log.debug("Adding Items to bucket %d", ts)
            self._buckets[-1][1].append(value)

    def expire_items(self, ts: int) -> RqlSet:
        """Drop the buckets that have expired by ``ts`` and return their values as a removal."""
        with self._lock:
            removed = RqlSet(self.name, False)
            last_expired = -1
            for index, (bucket_ts, values) in enumerate(self._buckets):
                if bucket_ts + self.expire_time <= ts:
                    _log.debug("Expiring Items in bucket %d at time %d", bucket_ts, ts)
                    removed.add_all(values)
                    last_expired = index
            if last_expired >= 0:
                del self._buckets[: last_expired + 1]
            return removed

    def snapshot(self) -> RqlSet:
        with self._lock:
            current = RqlSet(self.name, True)
            for _, values in self._buckets:
                current.add_all(values)
            return current