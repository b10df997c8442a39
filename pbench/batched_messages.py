"""Messages exchanged by replicas that agree on batches of commands per slot."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from .node import Ballot, Command
from .quorum import NodeID


def _commands_text(commands: tuple[Command, ...]) -> str:
    return "[" + " ".join(str(c) for c in commands) + "]"


@dataclass(frozen=True)
class P1a:
    """Prepare."""

    ballot: Ballot

    def __str__(self) -> str:
        return f"P1a {{b={self.ballot}}}"


@dataclass(frozen=True)
class CommandBallot:
    """A batch of commands together with the ballot it was accepted in."""

    commands: tuple[Command, ...]
    ballot: Ballot

    def __post_init__(self) -> None:
        object.__setattr__(self, "commands", tuple(self.commands))

    def __str__(self) -> str:
        return f"cmd={_commands_text(self.commands)} b={self.ballot}"


@dataclass(frozen=True)
class P1b:
    """Promise, carrying the sender's uncommitted log entries."""

    ballot: Ballot
    id: NodeID
    log: Mapping[int, CommandBallot] = field(default_factory=dict)

    def __str__(self) -> str:
        entries = ", ".join(f"{slot}: {cb}" for slot, cb in sorted(self.log.items()))
        return f"P1b {{b={self.ballot} id={self.id} log={{{entries}}}}}"


@dataclass(frozen=True)
class P3:
    """Commit of one or more slots."""

    ballot: Ballot = field(default_factory=Ballot)
    slots: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "slots", tuple(self.slots))

    def __str__(self) -> str:
        slots = " ".join(str(s) for s in self.slots)
        return f"P3 {{b={self.ballot} s=[{slots}]}}"


@dataclass(frozen=True)
class P2a:
    """Accept of a batch, optionally carrying a piggybacked commit."""

    ballot: Ballot
    slot: int
    commands: tuple[Command, ...] = ()
    p3msg: P3 = field(default_factory=P3)

    def __post_init__(self) -> None:
        object.__setattr__(self, "commands", tuple(self.commands))

    def __str__(self) -> str:
        return (
            f"P2a {{b={self.ballot} s={self.slot} cmd={_commands_text(self.commands)}, "
            f"P3={{{self.p3msg}}}}}"
        )


@dataclass(frozen=True)
class P2b:
    """Accepted."""

    ballot: Ballot
    id: NodeID
    slot: int

    def __str__(self) -> str:
        return f"P2b {{b={self.ballot} id={self.id} s={self.slot}}}"


@dataclass(frozen=True)
class P3RecoverRequest:
    """Ask the leader for the content of a committed slot."""

    ballot: Ballot
    slot: int
    node_id: NodeID

    def __str__(self) -> str:
        return (
            f"P3RecoverRequest {{b={self.ballot} slots={self.slot}, "
            f"nodeToRecover={self.node_id}}}"
        )


@dataclass(frozen=True)
class P3RecoverReply:
    """The content of a committed slot."""

    ballot: Ballot
    slot: int
    commands: tuple[Command, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "commands", tuple(self.commands))

    def __str__(self) -> str:
        return (
            f"P3RecoverReply {{b={self.ballot} slots={self.slot}, "
            f"cmd={_commands_text(self.commands)}}}"
        )