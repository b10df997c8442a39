"""An Egalitarian Paxos replica: leaderless commit with sequence numbers and dependencies."""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable

from .epaxos_messages import (
    Accept,
    AcceptReply,
    Commit,
    Instance,
    PreAccept,
    PreAcceptReply,
    Status,
)
from .node import Ballot, Command, Node, Reply, Request
from .quorum import NodeID, Quorum, QuorumConfig

_log = logging.getLogger(__name__)

ReplyFunc = Callable[[Reply], object]


class EPaxosReplica:
    """One replica of an EPaxos group."""

    def __init__(
        self,
        node_id: NodeID,
        peers: Iterable[NodeID],
        transport: Callable[[NodeID, Any], object],
        reply_when_commit: bool = False,
    ) -> None:
        self.node = Node(node_id, peers, transport)
        self.config = QuorumConfig.from_ids(self.node.peers)
        self.reply_when_commit = reply_when_commit

        self.log: dict[NodeID, dict[int, Instance]] = {}
        self.slot: dict[NodeID, int] = {}
        self.committed: dict[NodeID, int] = {}
        self.executed: dict[NodeID, int] = {}
        self.conflicts: dict[NodeID, dict[int, int]] = {}
        self.max_seq_per_key: dict[int, int] = {}
        for peer in self.node.peers:
            self.log[peer] = {}
            self.slot[peer] = -1
            self.committed[peer] = -1
            self.executed[peer] = -1
            self.conflicts[peer] = {}

        self.fast_path_count = 0
        self.slow_path_count = 0

        self.node.register(Request, lambda request: self.handle_request(request, None))
        self.node.register(PreAccept, self.handle_pre_accept)
        self.node.register(PreAcceptReply, self.handle_pre_accept_reply)
        self.node.register(Accept, self.handle_accept)
        self.node.register(AcceptReply, self.handle_accept_reply)
        self.node.register(Commit, self.handle_commit)

    @property
    def id(self) -> NodeID:
        return self.node.id

    # client requests

    def handle_client_request(self, request: Request, reply: ReplyFunc | None) -> None:
        _log.debug("Replica %s received %s", self.id, request)
        self.handle_request(request, reply)

    def handle_request(self, request: Request, reply: ReplyFunc | None) -> None:
        own = self.id
        ballot = Ballot(0, own)
        self.slot[own] += 1
        slot = self.slot[own]
        seq, dep = self.attributes(request.command)

        inst = Instance(
            cmd=request.command,
            ballot=ballot,
            status=Status.PREACCEPTED,
            seq=seq,
            dep=dep,
            request=request,
            reply=reply,
            quorum=Quorum(self.config),
        )
        inst.quorum.ack(own)
        self.log[own][slot] = inst

        self._update(request.command, own, slot, seq)
        self.node.broadcast(PreAccept(ballot, own, slot, request.command, seq, inst.copy_dep()))

    def attributes(self, command: Command) -> tuple[int, dict[NodeID, int]]:
        """Sequence number and dependencies of a command from the known conflicts."""
        seq = 0
        dep: dict[NodeID, int] = {}
        for node_id, keys in self.conflicts.items():
            slot = keys.get(command.key)
            if slot is not None and slot > dep.get(node_id, 0):
                dep[node_id] = slot
                conflicting = self.log[node_id][slot]
                if seq <= conflicting.seq:
                    seq = conflicting.seq + 1
        max_seq = self.max_seq_per_key.get(command.key)
        if max_seq is not None and seq <= max_seq:
            seq = max_seq + 1
        return seq, dep

    def _update(self, command: Command, node_id: NodeID, slot: int, seq: int) -> None:
        key = command.key
        keys = self.conflicts[node_id]
        if key not in keys or keys[key] < slot:
            keys[key] = slot
        if key not in self.max_seq_per_key or self.max_seq_per_key[key] < seq:
            self.max_seq_per_key[key] = seq

    def _update_commit(self, node_id: NodeID) -> None:
        instances = self.log[node_id]
        while True:
            nxt = instances.get(self.committed[node_id] + 1)
            if nxt is None or nxt.status not in (Status.COMMITTED, Status.EXECUTED):
                break
            self.committed[node_id] += 1
        self.execute_committed()

    def _instance(self, node_id: NodeID, slot: int) -> Instance:
        return self.log[node_id].setdefault(slot, Instance())

    # handlers

    def handle_pre_accept(self, m: PreAccept) -> None:
        _log.debug("Replica %s receives PreAccept %s", self.id, m)
        inst = self._instance(m.replica, m.slot)

        if inst.status in (Status.COMMITTED, Status.ACCEPTED):
            if inst.cmd.is_empty():
                inst.cmd = m.command
                self._update(m.command, m.replica, m.slot, m.seq)
            return

        if m.slot > self.slot[m.replica]:
            self.slot[m.replica] = m.slot

        seq, dep = self.attributes(m.command)
        if m.ballot >= inst.ballot:
            inst.ballot = m.ballot
            inst.cmd = m.command
            inst.status = Status.PREACCEPTED
            inst.seq = seq
            inst.dep = dep

        self._update(m.command, m.replica, m.slot, seq)
        self.node.send(
            m.replica,
            PreAcceptReply(
                ballot=inst.ballot,
                replica=self.id,
                slot=m.slot,
                seq=seq,
                dep=inst.copy_dep(),
                committed=dict(self.committed),
            ),
        )

    def _commit_message(self, inst: Instance, slot: int) -> Commit:
        return Commit(inst.ballot, self.id, slot, inst.cmd, inst.seq, inst.copy_dep())

    def _reply_on_commit(self, inst: Instance) -> None:
        if self.reply_when_commit and inst.reply is not None:
            inst.reply(Reply(command=inst.cmd))

    def handle_pre_accept_reply(self, m: PreAcceptReply) -> None:
        _log.debug("Replica %s receives PreAcceptReply %s", self.id, m)
        inst = self.log[self.id].get(m.slot)
        if inst is None or inst.status is not Status.PREACCEPTED:
            return
        if m.ballot > inst.ballot:
            return

        inst.quorum.ack(m.replica)
        inst.merge(m.seq, m.dep)

        all_committed = True
        for node_id, slot in m.committed.items():
            if slot > self.committed.get(node_id, 0):
                self.committed[node_id] = slot
            known = self.committed.get(node_id, 0)
            if known >= 0 and known < inst.dep.get(node_id, 0):
                all_committed = False

        if not inst.quorum.fast_quorum():
            return

        if not inst.changed and all_committed:
            self.fast_path_count += 1
            _log.debug("Replica %s number of fast instance: %d", self.id, self.fast_path_count)
            inst.status = Status.COMMITTED
            self._update_commit(self.id)
            self.node.broadcast(self._commit_message(inst, m.slot))
            self._reply_on_commit(inst)
        else:
            self.slow_path_count += 1
            _log.debug("Replica %s number of slow instance: %d", self.id, self.slow_path_count)
            inst.status = Status.ACCEPTED
            inst.quorum.reset()
            inst.quorum.ack(self.id)
            self.node.broadcast(Accept(inst.ballot, self.id, m.slot, inst.seq, inst.copy_dep()))

    def handle_accept(self, m: Accept) -> None:
        _log.debug("Replica %s receives Accept %s", self.id, m)
        inst = self._instance(m.replica, m.slot)
        if inst.status in (Status.COMMITTED, Status.EXECUTED):
            return

        if m.slot > self.slot[m.replica]:
            self.slot[m.replica] = m.slot

        if m.ballot >= inst.ballot:
            inst.status = Status.ACCEPTED
            inst.ballot = m.ballot
            inst.seq = m.seq
            inst.dep = dict(m.dep)

        self.node.send(m.replica, AcceptReply(inst.ballot, self.id, m.slot))

    def handle_accept_reply(self, m: AcceptReply) -> None:
        _log.debug("Replica %s receives AcceptReply %s", self.id, m)
        inst = self.log[self.id].get(m.slot)
        if inst is None or inst.status is not Status.ACCEPTED:
            return
        if inst.ballot < m.ballot:
            inst.ballot = m.ballot
            return

        inst.quorum.ack(m.replica)
        if inst.quorum.majority():
            inst.status = Status.COMMITTED
            self._update_commit(self.id)
            self._reply_on_commit(inst)
            self.node.broadcast(self._commit_message(inst, m.slot))

    def handle_commit(self, m: Commit) -> None:
        _log.debug("Replica %s receives Commit %s", self.id, m)
        if m.slot > self.slot[m.replica]:
            self.slot[m.replica] = m.slot

        inst = self._instance(m.replica, m.slot)
        if m.ballot >= inst.ballot:
            inst.ballot = m.ballot
            inst.cmd = m.command
            inst.status = Status.COMMITTED
            inst.seq = m.seq
            inst.dep = dict(m.dep)
            self._update(m.command, m.replica, m.slot, m.seq)

        if inst.request is not None:
            # another command took this slot; propose ours again
            request, inst.request = inst.request, None
            self.node.retry(request)
        self._update_commit(m.replica)

    def execute_committed(self) -> None:
        """Execute committed instances of every replica in slot order."""
        for node_id, instances in self.log.items():
            for slot in range(self.executed[node_id] + 1, self.slot[node_id] + 1):
                inst = instances.get(slot)
                if inst is None:
                    continue
                if inst.status is Status.EXECUTED:
                    if slot == self.executed[node_id] + 1:
                        self.executed[node_id] = slot
                    continue
                if inst.status is not Status.COMMITTED:
                    break
                value = self.node.execute(inst.cmd)
                if inst.request is not None and inst.reply is not None:
                    inst.reply(Reply(command=inst.cmd, value=value))
                if slot == self.executed[node_id] + 1:
                    self.executed[node_id] = slot