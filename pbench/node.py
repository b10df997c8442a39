"""Ballots, commands, client requests and the node that carries messages between replicas."""

from __future__ import annotations

import dataclasses
import enum
import random
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from .quorum import NodeID

_NO_NODE = NodeID(0, 0)

Transport = Callable[[NodeID, Any], object]
Handler = Callable[[Any], object]


@dataclass(frozen=True, order=True)
class Ballot:
    """A ballot number: a round counter and the node that started the round."""

    n: int = 0
    node_id: NodeID = _NO_NODE

    @property
    def id(self) -> NodeID:
        return self.node_id

    def next(self, node_id: NodeID) -> "Ballot":
        """Return the next ballot, owned by ``node_id``."""
        return Ballot(self.n + 1, node_id)

    def __bool__(self) -> bool:
        return self.n != 0 or self.node_id != _NO_NODE

    def __str__(self) -> str:
        return f"{self.n}.{self.node_id}"


class CommandType(enum.Enum):
    READ = "read"
    WRITE = "write"


@dataclass(frozen=True)
class Command:
    """An operation on one key of the replicated store."""

    key: int = 0
    value: bytes = b""
    type: CommandType = CommandType.WRITE
    client_id: str = ""
    command_id: int = 0

    @property
    def is_read(self) -> bool:
        return self.type is CommandType.READ

    def is_empty(self) -> bool:
        return self.key == 0 and not self.value


@dataclass(frozen=True)
class Request:
    """A client request for one command."""

    command: Command
    timestamp: int = 0
    node_id: NodeID | None = None


@dataclass
class Reply:
    """The answer sent back to a client."""

    command: Command
    value: bytes | None = None
    properties: dict[str, str] = field(default_factory=dict)
    timestamp: int = 0


class Node:
    """A replica's endpoint: message dispatch, sending and the local key-value store."""

    def __init__(self, node_id: NodeID, peers: Iterable[NodeID], transport: Transport) -> None:
        self.id = node_id
        self.peers = tuple(sorted(set(peers) | {node_id}))
        self._transport = transport
        self._handlers: dict[type, Handler] = {}
        self._store: dict[int, bytes] = {}
        self._store_lock = threading.Lock()

    def register(self, msg_type: type, handler: Handler) -> None:
        self._handlers[msg_type] = handler

    def handle_msg(self, msg: Any) -> None:
        for cls in type(msg).__mro__:
            handler = self._handlers.get(cls)
            if handler is not None:
                handler(msg)
                return
        raise TypeError(f"no handler registered for {type(msg).__name__}")

    def send(self, to: NodeID, msg: Any) -> None:
        self._transport(to, msg)

    def _others(self) -> list[NodeID]:
        return [peer for peer in self.peers if peer != self.id]

    def broadcast(self, msg: Any) -> None:
        for peer in self._others():
            self.send(peer, msg)

    def multicast_quorum(self, size: int, msg: Any) -> None:
        """Send ``msg`` to ``size`` peers chosen at random, never to this node."""
        others = self._others()
        for peer in random.sample(others, min(size, len(others))):
            self.send(peer, msg)

    def forward(self, to: NodeID, request: Request) -> None:
        self.send(to, dataclasses.replace(request, node_id=self.id))

    def retry(self, request: Request) -> None:
        self.handle_msg(request)

    def execute(self, command: Command) -> bytes | None:
        """Apply a command to the store and return the value held before it."""
        with self._store_lock:
            previous = self._store.get(command.key)
            if not command.is_read:
                self._store[command.key] = command.value
            return previous