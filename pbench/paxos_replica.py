"""A Paxos replica: message wiring, client handling, local reads and a periodic ticker."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Iterable

from .node import Command, Node, Reply, Request
from .paxos import (
    PROPERTY_EXECUTE,
    PROPERTY_HEADER_BALLOT,
    PROPERTY_HEADER_SLOT,
    PROPERTY_IN_PROGRESS,
    Paxos,
    ReplyFunc,
    current_time_ms,
)
from .paxos_messages import P1a, P1b, P2a, P2b, P3, P3RecoverReply, P3RecoverRequest
from .quorum import NodeID, QuorumConfig

_log = logging.getLogger(__name__)

TICK_SECONDS = 0.01


class PaxosReplica:
    """One replica of a Paxos group."""

    def __init__(
        self,
        node_id: NodeID,
        peers: Iterable[NodeID],
        transport: Callable[[NodeID, Any], object],
        read_mode: str = "",
        ephemeral_leader: bool = False,
    ) -> None:
        self.node = Node(node_id, peers, transport)
        self.paxos = Paxos(self.node, QuorumConfig.from_ids(self.node.peers))
        self.read_mode = read_mode
        self.ephemeral_leader = ephemeral_leader
        self.cleanup_multiplier = 3
        self.ticks = 0
        self._stop: threading.Event | None = None
        self._thread: threading.Thread | None = None

        self.node.register(Request, lambda request: self.handle_client_request(request, None))
        self.node.register(P1a, self.paxos.handle_p1a)
        self.node.register(P1b, self.paxos.handle_p1b)
        self.node.register(P2a, self.paxos.handle_p2a)
        self.node.register(P2b, self.paxos.handle_p2b)
        self.node.register(P3, self.paxos.handle_p3)
        self.node.register(P3RecoverRequest, self.paxos.handle_p3_recover_request)
        self.node.register(P3RecoverReply, self.paxos.handle_p3_recover_reply)

    @property
    def id(self) -> NodeID:
        return self.node.id

    def tick(self, now_ms: int) -> None:
        """One timer step: periodic log cleanup and commit sync on the leader."""
        self.ticks += 1
        if self.ticks % self.cleanup_multiplier == 0:
            self.paxos.cleanup_log()
        if self.paxos.is_leader():
            self.paxos.p3_sync(now_ms)

    def handle_client_request(self, request: Request, reply: ReplyFunc | None) -> None:
        _log.debug("Replica %s received %s", self.id, request)
        if request.command.is_read and self.read_mode:
            value, in_progress = self.read_in_progress(request)
            answer = Reply(
                command=request.command,
                value=value,
                properties={
                    PROPERTY_HEADER_SLOT: str(self.paxos.slot),
                    PROPERTY_HEADER_BALLOT: str(self.paxos.ballot),
                    PROPERTY_EXECUTE: str(self.paxos.next_execute - 1),
                    PROPERTY_IN_PROGRESS: "true" if in_progress else "false",
                },
                timestamp=int(time.time()),
            )
            if reply is not None:
                reply(answer)
            return

        if not self.ephemeral_leader or self.paxos.is_leader() or not self.paxos.ballot:
            self.paxos.handle_request(request, reply)
        else:
            self.node.forward(self.paxos.leader(), request)

    def read_in_progress(self, request: Request) -> tuple[bytes | None, bool]:
        """Return the newest unexecuted value for the key, or the stored one."""
        key = request.command.key
        for slot in range(self.paxos.slot, self.paxos.next_execute - 1, -1):
            entry = self.paxos.log.get(slot)
            if entry is not None and entry.command is not None and entry.command.key == key:
                return entry.command.value, True
        return self.node.execute(request.command), False

    def start_ticker(self) -> None:
        if self._thread is not None:
            return
        stop = threading.Event()

        def run() -> None:
            while not stop.wait(TICK_SECONDS):
                self.tick(current_time_ms())

        self._stop = stop
        self._thread = threading.Thread(target=run, daemon=True)
        self._thread.start()

    def stop_ticker(self) -> None:
        if self._thread is None or self._stop is None:
            return
        self._stop.set()
        self._thread.join()
        self._thread = None
        self._stop = None


def read_command(key: int) -> Command:
    """A read of ``key``."""
    from .node import CommandType

    return Command(key=key, type=CommandType.READ)