"""Acknowledgement bookkeeping and the quorum rules checked against it."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Iterable, Mapping


@dataclass(frozen=True, order=True)
class NodeID:
    """Identifier of a node, written as ``zone.node``."""

    zone: int
    node: int

    @classmethod
    def parse(cls, text: str) -> "NodeID":
        zone, sep, node = text.strip().partition(".")
        if not sep:
            raise ValueError(f"node id {text!r} is not of the form zone.node")
        try:
            return cls(int(zone), int(node))
        except ValueError:
            raise ValueError(f"node id {text!r} is not of the form zone.node") from None

    def __str__(self) -> str:
        return f"{self.zone}.{self.node}"


@dataclass(frozen=True)
class QuorumConfig:
    """Cluster shape used by the quorum rules."""

    n: int
    z: int
    npz: Mapping[int, int] = field(default_factory=dict)

    @classmethod
    def from_ids(cls, ids: Iterable[NodeID | str]) -> "QuorumConfig":
        nodes = {NodeID.parse(i) if isinstance(i, str) else i for i in ids}
        per_zone = Counter(node.zone for node in nodes)
        return cls(n=len(nodes), z=len(per_zone), npz=dict(per_zone))


class Quorum:
    """Records acknowledgements and checks which kinds of quorum they satisfy."""

    def __init__(self, config: QuorumConfig) -> None:
        self.config = config
        self._size = 0
        self._acks: set[NodeID] = set()
        self._zones: Counter[int] = Counter()
        self._nacks: set[NodeID] = set()

    def ack(self, node_id: NodeID) -> None:
        if node_id not in self._acks:
            self._acks.add(node_id)
            self._size += 1
            self._zones[node_id.zone] += 1

    def nack(self, node_id: NodeID) -> None:
        self._nacks.add(node_id)

    def add(self) -> None:
        """Count one more acknowledgement without recording who sent it."""
        self._size += 1

    def size(self) -> int:
        return self._size

    def reset(self) -> None:
        self._size = 0
        self._acks = set()
        self._zones = Counter()
        self._nacks = set()

    def all(self) -> bool:
        return self._size == self.config.n

    def majority(self) -> bool:
        return self._size > self.config.n // 2

    def fast_quorum(self) -> bool:
        return self._size >= self.config.n * 3 // 4

    def all_zones(self) -> bool:
        return len(self._zones) == self.config.z

    def _zones_with_majority(self) -> int:
        return sum(
            1 for zone, count in self._zones.items() if count > self.config.npz.get(zone, 0) // 2
        )

    def zone_majority(self) -> bool:
        return self._zones_with_majority() > 0

    def grid_row(self) -> bool:
        return self.all_zones()

    def grid_column(self) -> bool:
        return any(count == self.config.npz.get(zone, 0) for zone, count in self._zones.items())

    def fgrid_q1(self, fz: int) -> bool:
        return self._zones_with_majority() >= self.config.z - fz

    def fgrid_q2(self, fz: int) -> bool:
        return self._zones_with_majority() >= fz + 1

    def __str__(self) -> str:
        acks = ", ".join(str(node) for node in sorted(self._acks))
        return f"Quorum {{acked_size={self._size}, acks=[{acks}]}}"