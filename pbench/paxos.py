"""Multi-Paxos with piggybacked commits, slot recovery and log cleanup."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable

from .node import Ballot, Command, Node, Reply, Request
from .paxos_messages import (
    P1a,
    P1b,
    P2a,
    P2b,
    P3,
    CommandBallot,
    P3RecoverReply,
    P3RecoverRequest,
)
from .quorum import NodeID, Quorum, QuorumConfig

_log = logging.getLogger(__name__)

PROPERTY_HEADER_SLOT = "Slot"
PROPERTY_HEADER_BALLOT = "Ballot"
PROPERTY_EXECUTE = "Execute"
PROPERTY_IN_PROGRESS = "Inprogress"

# Slots a committed-but-unknown entry may lag behind before recovery is requested.
RECOVERY_LAG = 10
# Milliseconds without a piggybacked commit before commits are sent on their own.
P3_SYNC_INTERVAL_MS = 10

ReplyFunc = Callable[[Reply], object]


def current_time_ms() -> int:
    return time.time_ns() // 1_000_000


@dataclass
class _Entry:
    ballot: Ballot
    command: Command | None = None
    commit: bool = False
    request: Request | None = None
    quorum: Quorum | None = None
    timestamp: float = 0.0
    reply: ReplyFunc | None = None


class Paxos:
    """The Paxos state of one replica, driven by the handlers below."""

    def __init__(
        self,
        node: Node,
        config: QuorumConfig,
        reply_when_commit: bool = False,
        thrifty: bool = False,
    ) -> None:
        self.node = node
        self.config = config
        self.reply_when_commit = reply_when_commit
        self.thrifty = thrifty

        self.log: dict[int, _Entry] = {}
        self.next_execute = 0
        self.active = False
        self.ballot = Ballot()
        self.slot = -1

        self.p3_pending_ballot = Ballot()
        self.p3_pending_slots: list[int] = []
        self.last_p3_time = 0
        self.last_cleanup_marker = 0
        self.execute_by_node: dict[NodeID, int] = {}

        self.quorum = Quorum(config)
        self.pending_requests: list[tuple[Request, ReplyFunc | None]] = []

        self.q1: Callable[[Quorum], bool] = Quorum.majority
        self.q2: Callable[[Quorum], bool] = Quorum.majority

        self._lock = threading.RLock()

    @property
    def id(self) -> NodeID:
        return self.node.id

    def is_leader(self) -> bool:
        return self.active or self.ballot.id == self.id

    def leader(self) -> NodeID:
        return self.ballot.id

    # commits and log maintenance

    def _take_p3(self) -> P3:
        msg = P3(self.p3_pending_ballot, tuple(self.p3_pending_slots))
        self.p3_pending_slots = []
        return msg

    def p3_sync(self, now_ms: int) -> None:
        """Send pending commits if none were piggybacked recently."""
        with self._lock:
            if (
                now_ms - P3_SYNC_INTERVAL_MS > self.last_p3_time
                and self.last_p3_time > 0
                and self.p3_pending_ballot
            ):
                self.node.broadcast(self._take_p3())
                self.last_p3_time = now_ms

    def update_last_execute_by_node(self, node_id: NodeID, last_execute: int) -> None:
        with self._lock:
            self.execute_by_node[node_id] = last_execute

    def safe_log_cleanup_marker(self) -> int:
        with self._lock:
            return min([self.next_execute, *self.execute_by_node.values()])

    def cleanup_log(self) -> None:
        with self._lock:
            marker = self.safe_log_cleanup_marker()
            for slot in range(self.last_cleanup_marker, marker):
                self.log.pop(slot, None)
            self.last_cleanup_marker = marker

    # proposing

    def handle_request(self, request: Request, reply: ReplyFunc | None) -> None:
        with self._lock:
            if not self.active:
                self.pending_requests.append((request, reply))
                if self.ballot.id != self.id:
                    self.p1a()
            else:
                self.p2a(request, reply)

    def p1a(self) -> None:
        with self._lock:
            if self.active:
                return
            self.ballot = self.ballot.next(self.id)
            self.quorum.reset()
            self.quorum.ack(self.id)
            self.node.broadcast(P1a(self.ballot))

    def p2a(self, request: Request, reply: ReplyFunc | None) -> None:
        with self._lock:
            self.slot += 1
            entry = _Entry(
                ballot=self.ballot,
                command=request.command,
                request=request,
                quorum=Quorum(self.config),
                timestamp=time.time(),
                reply=reply,
            )
            entry.quorum.ack(self.id)
            self.log[self.slot] = entry

            p3msg = P3()
            if self.p3_pending_ballot:
                p3msg = self._take_p3()
                self.last_p3_time = current_time_ms()
            msg = P2a(self.ballot, self.slot, request.command, p3msg)

            if self.thrifty:
                self.node.multicast_quorum(self.config.n // 2 + 1, msg)
            else:
                self.node.broadcast(msg)

    def _forward_pending(self) -> None:
        for request, _ in self.pending_requests:
            self.node.forward(self.ballot.id, request)
        self.pending_requests = []

    # phase 1

    def handle_p1a(self, m: P1a) -> None:
        _log.debug("Replica %s ===[%s]===>>> Replica %s", m.ballot.id, m, self.id)
        with self._lock:
            if m.ballot > self.ballot:
                self.ballot = m.ballot
                self.active = False
                self._forward_pending()

            uncommitted = {
                slot: CommandBallot(entry.command, entry.ballot)
                for slot in range(self.next_execute, self.slot + 1)
                if (entry := self.log.get(slot)) is not None and not entry.commit
            }
            self.node.send(m.ballot.id, P1b(self.ballot, self.id, uncommitted))

    def _update(self, entries: dict[int, CommandBallot]) -> None:
        for slot, cb in entries.items():
            self.slot = max(self.slot, slot)
            entry = self.log.get(slot)
            if entry is not None:
                if not entry.commit and cb.ballot > entry.ballot:
                    entry.ballot = cb.ballot
                    entry.command = cb.command
            else:
                self.log[slot] = _Entry(ballot=cb.ballot, command=cb.command)

    def handle_p1b(self, m: P1b) -> None:
        with self._lock:
            if m.ballot < self.ballot or self.active:
                return
            _log.debug("Replica %s ===[%s]===>>> Replica %s", m.id, m, self.id)

            self._update(dict(m.log))

            if m.ballot > self.ballot:
                self.ballot = m.ballot
                self.active = False
                self._forward_pending()

            if m.ballot.id == self.id and m.ballot == self.ballot:
                self.quorum.ack(m.id)
                if self.q1(self.quorum):
                    self.active = True
                    self.p3_pending_ballot = self.ballot
                    for slot in range(self.next_execute, self.slot + 1):
                        entry = self.log.get(slot)
                        if entry is None or entry.commit:
                            continue
                        entry.ballot = self.ballot
                        entry.quorum = Quorum(self.config)
                        entry.quorum.ack(self.id)
                        self.node.broadcast(P2a(self.ballot, slot, entry.command))
                    pending, self.pending_requests = self.pending_requests, []
                    for request, reply in pending:
                        self.p2a(request, reply)

    # phase 2

    def handle_p2a(self, m: P2a) -> None:
        _log.debug("Replica %s ===[%s]===>>> Replica %s", m.ballot.id, m, self.id)
        with self._lock:
            if m.ballot >= self.ballot:
                self.ballot = m.ballot
                self.active = False
                self.slot = max(self.slot, m.slot)
                entry = self.log.get(m.slot)
                if entry is not None:
                    if not entry.commit and m.ballot > entry.ballot:
                        if entry.command != m.command and entry.request is not None:
                            self.node.forward(m.ballot.id, entry.request)
                            _log.debug(
                                "Received different command (%s!=%s) for slot %d",
                                m.command,
                                entry.command,
                                m.slot,
                            )
                            entry.request = None
                        entry.command = m.command
                        entry.ballot = m.ballot
                    elif entry.commit and not entry.ballot:
                        # the commit arrived before the accept
                        entry.command = m.command
                        entry.ballot = m.ballot
                else:
                    self.log[m.slot] = _Entry(ballot=m.ballot, command=m.command)

            self.node.send(m.ballot.id, P2b(self.ballot, self.id, m.slot))

            if m.p3msg.slots:
                self.handle_p3(m.p3msg)

    def handle_p2b(self, m: P2b) -> None:
        with self._lock:
            entry = self.log.get(m.slot)
            if entry is None or m.ballot < entry.ballot or entry.commit:
                return

            if m.ballot > self.ballot:
                self.ballot = m.ballot
                self.active = False
                self.node.broadcast(P3(self.p3_pending_ballot, tuple(self.p3_pending_slots)))
                self.last_p3_time = current_time_ms()
                self.p3_pending_slots = []
                self.p3_pending_ballot = Ballot()

            if m.ballot.id == self.id and m.ballot == entry.ballot:
                if entry.quorum is None:
                    entry.quorum = Quorum(self.config)
                    entry.quorum.ack(self.id)
                entry.quorum.ack(m.id)
                if self.q2(entry.quorum):
                    entry.commit = True
                    _log.debug("Adding slot %d to P3Pending (%s)", m.slot, self.p3_pending_slots)
                    self.p3_pending_slots.append(m.slot)

                    if self.reply_when_commit and entry.reply is not None:
                        request = entry.request
                        entry.reply(Reply(command=request.command, timestamp=request.timestamp))
                    else:
                        self._exec()

    # phase 3 and recovery

    def handle_p3(self, m: P3) -> None:
        _log.debug("Replica %s HandleP3 {%s} from %s", self.id, m, m.ballot.id)
        with self._lock:
            for slot in m.slots:
                self.slot = max(self.slot, slot)
                entry = self.log.get(slot)
                if entry is not None:
                    if entry.ballot == m.ballot:
                        entry.commit = True
                    elif entry.request is not None:
                        self.node.forward(m.ballot.id, entry.request)
                        entry.request = None
                        _log.debug(
                            "Replica %s needs to recover slot %d on ballot %s",
                            self.id,
                            slot,
                            m.ballot,
                        )
                        self._send_recover_request(m.ballot, slot)
                else:
                    # committed, but the accept has not arrived yet
                    entry = _Entry(ballot=Ballot(), commit=True)
                    self.log[slot] = entry

                if (
                    self.reply_when_commit
                    and entry.request is not None
                    and entry.reply is not None
                ):
                    entry.reply(
                        Reply(command=entry.request.command, timestamp=entry.request.timestamp)
                    )
            self._exec()

    def _send_recover_request(self, ballot: Ballot, slot: int) -> None:
        self.node.send(ballot.id, P3RecoverRequest(ballot, slot, self.id))

    def handle_p3_recover_request(self, m: P3RecoverRequest) -> None:
        _log.debug("Replica %s ===[%s]===>>> Replica %s", m.ballot.id, m, self.id)
        with self._lock:
            entry = self.log.get(m.slot)
            if entry is not None and entry.commit:
                self.node.send(m.node_id, P3RecoverReply(entry.ballot, m.slot, entry.command))
            self._exec()

    def handle_p3_recover_reply(self, m: P3RecoverReply) -> None:
        _log.debug("Replica %s ===[%s]===>>> Replica %s", m.ballot.id, m, self.id)
        with self._lock:
            self.slot = max(self.slot, m.slot)
            entry = self.log.get(m.slot)
            if entry is not None:
                entry.command = m.command
                entry.ballot = m.ballot
                entry.commit = True
            self._exec()

    def _exec(self) -> None:
        with self._lock:
            while True:
                entry = self.log.get(self.next_execute)
                if (
                    entry is not None
                    and self.next_execute + RECOVERY_LAG < self.slot
                    and entry.commit
                    and not entry.ballot
                ):
                    _log.debug(
                        "Replica %s tries to recover slot %d on ballot %s",
                        self.id,
                        self.next_execute,
                        self.ballot,
                    )
                    self._send_recover_request(self.ballot, self.next_execute)

                if entry is None or not entry.commit or not entry.ballot:
                    break

                _log.debug(
                    "Replica %s execute [s=%d, cmd=%s]", self.id, self.next_execute, entry.command
                )
                value = self.node.execute(entry.command)
                if entry.request is not None and entry.reply is not None:
                    entry.reply(
                        Reply(
                            command=entry.command,
                            value=value,
                            properties={
                                PROPERTY_HEADER_SLOT: str(self.next_execute),
                                PROPERTY_HEADER_BALLOT: str(entry.ballot),
                                PROPERTY_EXECUTE: str(self.next_execute),
                            },
                        )
                    )
                    entry.request = None
                self.next_execute += 1