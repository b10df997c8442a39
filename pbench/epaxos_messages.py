"""Instances and messages of Egalitarian Paxos."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Callable, Mapping

from .node import Ballot, Command, Reply, Request
from .quorum import NodeID, Quorum


class Status(enum.IntEnum):
    NONE = 0
    PREACCEPTED = 1
    ACCEPTED = 2
    COMMITTED = 3
    EXECUTED = 4


@dataclass
class Instance:
    """One command slot of one replica, with the leader's bookkeeping."""

    cmd: Command = field(default_factory=Command)
    ballot: Ballot = field(default_factory=Ballot)
    status: Status = Status.NONE
    seq: int = 0
    dep: dict[NodeID, int] = field(default_factory=dict)
    request: Request | None = None
    reply: Callable[[Reply], object] | None = None
    quorum: Quorum | None = None
    changed: bool = False

    def merge(self, seq: int, dep: Mapping[NodeID, int]) -> None:
        """Raise seq and dependencies to the given ones, noting any change."""
        if seq > self.seq:
            self.seq = seq
            self.changed = True
        for node_id, slot in dep.items():
            if slot > self.dep.get(node_id, 0):
                self.dep[node_id] = slot
                self.changed = True

    def copy_dep(self) -> dict[NodeID, int]:
        return dict(self.dep)


@dataclass(frozen=True)
class PreAccept:
    ballot: Ballot
    replica: NodeID
    slot: int
    command: Command
    seq: int
    dep: Mapping[NodeID, int] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"PreAccept {{bal={self.ballot} id={self.replica} s={self.slot} "
            f"cmd={self.command} seq={self.seq} dep={dict(self.dep)}}}"
        )


@dataclass(frozen=True)
class PreAcceptReply:
    ballot: Ballot
    replica: NodeID
    slot: int
    seq: int
    dep: Mapping[NodeID, int] = field(default_factory=dict)
    committed: Mapping[NodeID, int] = field(default_factory=dict)

    def __str__(self) -> str:
        return (
            f"PreAcceptReply {{bal={self.ballot} id={self.replica} s={self.slot} "
            f"seq={self.seq} dep={dict(self.dep)} c={dict(self.committed)}}}"
        )


@dataclass(frozen=True)
class Accept:
    ballot: Ballot
    replica: NodeID
    slot: int
    seq: int
    dep: Mapping[NodeID, int] = field(default_factory=dict)


@dataclass(frozen=True)
class AcceptReply:
    ballot: Ballot
    replica: NodeID
    slot: int


@dataclass(frozen=True)
class Commit:
    ballot: Ballot
    replica: NodeID
    slot: int
    command: Command
    seq: int
    dep: Mapping[NodeID, int] = field(default_factory=dict)