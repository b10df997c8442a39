"""A batched Paxos replica: gathers client requests and proposes them as one batch per tick."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Iterable

from .batched_messages import P1a, P1b, P2a, P2b, P3, P3RecoverReply, P3RecoverRequest
from .batched_paxos import BatchedPaxos, PendingBatch, ReplyFunc
from .node import Node, Request
from .paxos import current_time_ms
from .quorum import NodeID, QuorumConfig

_log = logging.getLogger(__name__)

TICK_SECONDS = 0.01


class BatchedReplica:
    """One replica of a batched Paxos group."""

    def __init__(
        self,
        node_id: NodeID,
        peers: Iterable[NodeID],
        transport: Callable[[NodeID, Any], object],
        ephemeral_leader: bool = False,
    ) -> None:
        self.node = Node(node_id, peers, transport)
        self.paxos = BatchedPaxos(self.node, QuorumConfig.from_ids(self.node.peers))
        self.ephemeral_leader = ephemeral_leader
        self.cleanup_multiplier = 3
        self.ticks = 0
        self.pending_requests = PendingBatch()
        self._batch_lock = threading.Lock()
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
        """One timer step: periodic log cleanup and, on the leader, proposing the batch."""
        self.ticks += 1
        if self.ticks % self.cleanup_multiplier == 0:
            self.paxos.cleanup_log()

        if self.paxos.is_leader():
            with self._batch_lock:
                batch, self.pending_requests = self.pending_requests, PendingBatch()
            self.paxos.p2a(batch)
            self.paxos.p3_sync(now_ms)

    def handle_client_request(self, request: Request, reply: ReplyFunc | None) -> None:
        _log.debug("Replica %s received %s", self.id, request)
        if self.ephemeral_leader or self.paxos.is_leader() or not self.paxos.ballot:
            self.handle_request(request, reply)
        else:
            self.node.forward(self.paxos.leader(), request)

    def handle_request(self, request: Request, reply: ReplyFunc | None) -> None:
        """Add the request to the pending batch and start phase 1 if no leadership is held."""
        with self._batch_lock:
            self.pending_requests.add(request, reply)
        if not self.paxos.active and self.paxos.ballot.id != self.id:
            self.paxos.p1a()

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