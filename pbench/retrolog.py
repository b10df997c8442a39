"""An append-only log of state changes stamped with hybrid logical clock times."""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .rql import RetroVar, RqlSet, RqlStruct, TimerRqlSet, format_float, format_int, quote

_log = logging.getLogger(__name__)

_MARKER_VAR = "retrolog_py"


@dataclass(frozen=True, order=True)
class HybridTimestamp:
    """A physical time in milliseconds and a logical counter."""

    physical_time: int
    logical: int = 0

    def to_int(self) -> int:
        """Pack into one integer: physical time in the high bits, 16-bit counter below."""
        return (self.physical_time << 16) | (self.logical & 0xFFFF)


class _HybridClock:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = HybridTimestamp(0, 0)

    def now(self) -> HybridTimestamp:
        physical = time.time_ns() // 1_000_000
        with self._lock:
            if physical > self._last.physical_time:
                ts = HybridTimestamp(physical, 0)
            else:
                ts = HybridTimestamp(self._last.physical_time, self._last.logical + 1)
            self._last = ts
        return ts


class RetroLog:
    """Writes one line per transaction, plus periodic snapshot lines."""

    def __init__(
        self,
        name: str,
        node_id: int,
        log_dir: str | os.PathLike[str],
        block_size: int,
        take_snapshots: bool,
        clock: Callable[[], HybridTimestamp] | None = None,
    ) -> None:
        self.name = name
        self.node_id = str(node_id)
        self.path = Path(log_dir) / f"retro_{os.getpid()}.log"
        self._file = open(self.path, "a", encoding="utf-8")
        self.block_size = block_size
        self.take_snapshots = take_snapshots
        self._clock = clock if clock is not None else _HybridClock().now

        self._ts: HybridTimestamp | None = None
        self._temp_vars: list[RetroVar] = []
        self._temp_add_sets: dict[str, RqlSet] = {}
        self._temp_remove_sets: dict[str, RqlSet] = {}
        self._snap_vars: dict[str, RetroVar] = {_MARKER_VAR: RetroVar(_MARKER_VAR, "1")}
        self._snap_sets: dict[str, RqlSet] = {}
        self._expire_sets: dict[str, TimerRqlSet] = {}
        self._last_block_time = 0

        self._lock = threading.RLock()
        self._tx_lock = threading.Lock()

    # transactions

    def start_tx(self) -> "RetroLog":
        self._tx_lock.acquire()
        ts = self._clock()
        self._ts = ts
        if self.take_snapshots:
            block_time = ts.physical_time // self.block_size * self.block_size
            if self._last_block_time < block_time:
                self._last_block_time = block_time
                self.write_snap(block_time)
        return self

    def commit(self) -> None:
        with self._lock:
            if self._ts is None:
                raise RuntimeError("Cannot commit RetroLog. Transaction was not started")
            try:
                parts = [var.render() for var in self._temp_vars]
                self._temp_vars.clear()
                parts += _drain(self._temp_add_sets.values())
                parts += _drain(self._temp_remove_sets.values())
                now = self._ts.physical_time
                parts += _drain(es.expire_items(now) for es in self._expire_sets.values())
                self._write_line(self._header(self._ts, snapshot=False), parts)
            finally:
                self._ts = None
                self._tx_lock.release()

    def write_snap(self, block_time: int) -> None:
        with self._lock:
            parts = [var.render() for var in self._snap_vars.values()]
            parts += _drain(self._snap_sets.values())
            parts += [
                snap.render(erase=False)
                for snap in (es.snapshot() for es in self._expire_sets.values())
                if len(snap)
            ]
            self._write_line(self._header(HybridTimestamp(block_time, 0), snapshot=True), parts)

    # variables

    def _append_var(self, name: str, value: str) -> "RetroLog":
        with self._lock:
            self._temp_vars.append(RetroVar(name, value))
        return self

    def append_var_str(self, name: str, value: str) -> "RetroLog":
        return self._append_var(name, quote(value))

    def append_var_int(self, name: str, value: int) -> "RetroLog":
        return self._append_var(name, format_int(value))

    def append_var_float(self, name: str, value: float) -> "RetroLog":
        return self._append_var(name, format_float(value))

    # sets

    def create_timer_set(self, name: str, expire_time: int) -> None:
        with self._lock:
            self._expire_sets[name] = TimerRqlSet(name, expire_time)

    def _append_set(self, name: str, value: str) -> "RetroLog":
        with self._lock:
            expiring = self._expire_sets.get(name)
            if expiring is not None:
                if self._ts is None:
                    raise RuntimeError("Cannot add to a timer set outside a transaction")
                expiring.add(value, self._ts.physical_time)
            self._temp_add_sets.setdefault(name, RqlSet(name, True)).add(value)
        return self

    def append_set_str(self, name: str, value: str) -> "RetroLog":
        return self._append_set(name, quote(value))

    def append_set_int(self, name: str, value: int) -> "RetroLog":
        return self._append_set(name, format_int(value))

    def append_set_float(self, name: str, value: float) -> "RetroLog":
        return self._append_set(name, format_float(value))

    def append_set_struct(self, name: str, value: RqlStruct) -> "RetroLog":
        return self._append_set(name, value.render())

    def _remove_set(self, name: str, value: str) -> "RetroLog":
        with self._lock:
            self._snap_sets.setdefault(name, RqlSet(name, True)).remove(value)
            self._temp_remove_sets.setdefault(name, RqlSet(name, False)).add(value)
        return self

    def remove_set_str(self, name: str, value: str) -> "RetroLog":
        return self._remove_set(name, quote(value))

    def remove_set_int(self, name: str, value: int) -> "RetroLog":
        return self._remove_set(name, format_int(value))

    def remove_set_float(self, name: str, value: float) -> "RetroLog":
        return self._remove_set(name, format_float(value))

    def remove_set_struct(self, name: str, value: RqlStruct) -> "RetroLog":
        return self._remove_set(name, value.render())

    # output

    def _header(self, ts: HybridTimestamp, snapshot: bool) -> str:
        tag = "<snapt" if snapshot else "<t"
        return f"{tag}{ts.physical_time},{ts.to_int()},{self.node_id}>:"

    def _write_line(self, header: str, parts: list[str]) -> None:
        self._file.write(header + ",".join(parts) + "\n")
        self._file.flush()

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "RetroLog":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


def _drain(sets) -> list[str]:
    """Render and empty every non-empty set."""
    return [s.render(erase=True) for s in sets if len(s)]