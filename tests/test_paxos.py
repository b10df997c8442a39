import dataclasses
from collections import deque

from pbench.node import Ballot, Command, CommandType, Node, Request
from pbench.paxos import (
    PROPERTY_EXECUTE,
    PROPERTY_HEADER_BALLOT,
    PROPERTY_HEADER_SLOT,
    Paxos,
)
from pbench.paxos_messages import (
    P1a,
    P1b,
    P2a,
    P2b,
    P3,
    CommandBallot,
    P3RecoverReply,
    P3RecoverRequest,
)
from pbench.quorum import NodeID, QuorumConfig

A, B, C = NodeID(1, 1), NodeID(1, 2), NodeID(1, 3)


class Cluster:
    def __init__(self, count=3, **kwargs):
        self.ids = [NodeID(1, i) for i in range(1, count + 1)]
        config = QuorumConfig.from_ids(self.ids)
        self.queue = deque()
        self.nodes = {}
        self.paxos = {}
        for node_id in self.ids:
            node = Node(node_id, self.ids, lambda to, msg: self.queue.append((to, msg)))
            px = Paxos(node, config, **kwargs)
            node.register(P1a, px.handle_p1a)
            node.register(P1b, px.handle_p1b)
            node.register(P2a, px.handle_p2a)
            node.register(P2b, px.handle_p2b)
            node.register(P3, px.handle_p3)
            node.register(P3RecoverRequest, px.handle_p3_recover_request)
            node.register(P3RecoverReply, px.handle_p3_recover_reply)
            node.register(Request, lambda req, px=px: px.handle_request(req, None))
            self.nodes[node_id] = node
            self.paxos[node_id] = px

    def pump(self):
        while self.queue:
            to, msg = self.queue.popleft()
            self.nodes[to].handle_msg(msg)


def single(node_id=A, ids=(A, B, C), **kwargs):
    sent = []
    node = Node(node_id, ids, lambda to, msg: sent.append((to, msg)))
    return Paxos(node, QuorumConfig.from_ids(ids), **kwargs), node, sent


def read(node, key):
    return node.execute(Command(key=key, type=CommandType.READ))


def test_request_elects_leader_and_commits():
    c = Cluster()
    replies = []
    req = Request(Command(key=1, value=b"x"))
    c.paxos[A].handle_request(req, replies.append)
    c.pump()
    assert len(replies) == 1
    reply = replies[0]
    assert reply.command == req.command
    assert reply.value is None
    assert reply.properties[PROPERTY_HEADER_SLOT] == "0"
    assert reply.properties[PROPERTY_EXECUTE] == "0"
    assert reply.properties[PROPERTY_HEADER_BALLOT] == str(Ballot(1, A))
    assert c.paxos[A].is_leader()
    assert c.paxos[A].leader() == A
    assert c.paxos[B].leader() == A
    assert not c.paxos[B].is_leader()


def test_p3_sync_lets_followers_execute():
    c = Cluster()
    c.paxos[A].handle_request(Request(Command(key=1, value=b"x")), None)
    c.pump()
    leader = c.paxos[A]
    leader.p3_sync(leader.last_p3_time + 5)
    assert not c.queue
    leader.p3_sync(leader.last_p3_time + 11)
    c.pump()
    for node_id in (B, C):
        assert c.paxos[node_id].next_execute == 1
        assert read(c.nodes[node_id], 1) == b"x"


def test_commit_piggybacks_on_next_accept():
    c = Cluster()
    c.paxos[A].handle_request(Request(Command(key=1, value=b"x")), None)
    c.pump()
    c.paxos[A].handle_request(Request(Command(key=2, value=b"y")), None)
    c.pump()
    assert c.paxos[A].next_execute == 2
    assert c.paxos[B].next_execute == 1
    assert read(c.nodes[B], 1) == b"x"
    assert read(c.nodes[B], 2) is None


def test_reply_when_commit_replies_before_execution():
    c = Cluster(reply_when_commit=True)
    replies = []
    req = Request(Command(key=4, value=b"z"), timestamp=42)
    c.paxos[A].handle_request(req, replies.append)
    c.pump()
    assert len(replies) == 1
    assert replies[0].timestamp == 42
    assert replies[0].properties == {}
    assert c.paxos[A].log[0].commit
    assert c.paxos[A].next_execute == 0


def test_p1a_is_noop_when_active():
    c = Cluster()
    c.paxos[A].handle_request(Request(Command(key=1, value=b"x")), None)
    c.pump()
    c.paxos[A].p1a()
    assert c.paxos[A].ballot == Ballot(1, A)
    assert not c.queue


def test_higher_p1a_forwards_pending_requests():
    px, _, sent = single()
    req = Request(Command(key=1, value=b"x"))
    px.handle_request(req, None)
    sent.clear()
    px.handle_p1a(P1a(Ballot(5, B)))
    assert sent[0] == (B, dataclasses.replace(req, node_id=A))
    assert sent[-1] == (B, P1b(Ballot(5, B), A, {}))
    assert px.pending_requests == []
    assert px.leader() == B


def test_p1a_reports_uncommitted_entries():
    px, _, sent = single()
    cmd = Command(key=3, value=b"c")
    px.handle_p2a(P2a(Ballot(1, B), 0, cmd))
    sent.clear()
    px.handle_p1a(P1a(Ballot(2, C)))
    assert sent == [(C, P1b(Ballot(2, C), A, {0: CommandBallot(cmd, Ballot(1, B))}))]


def test_p1b_with_log_reproposes_then_proposes_pending():
    px, _, sent = single()
    old = Command(key=9, value=b"old")
    req = Request(Command(key=1, value=b"new"))
    px.handle_request(req, None)
    sent.clear()
    px.handle_p1b(P1b(Ballot(1, A), B, {3: CommandBallot(old, Ballot(0, C))}))
    assert px.active
    accepts = [msg for _, msg in sent if isinstance(msg, P2a)]
    assert [(m.slot, m.command) for m in accepts[::2]] == [(3, old), (4, req.command)]
    assert px.slot == 4
    assert px.log[3].ballot == Ballot(1, A)


def test_old_p1b_ignored():
    px, _, _ = single()
    px.handle_p1a(P1a(Ballot(4, B)))
    px.handle_p1b(P1b(Ballot(2, A), C, {7: CommandBallot(Command(key=1), Ballot(2, A))}))
    assert 7 not in px.log
    assert px.slot == -1


def test_thrifty_sends_to_majority_only():
    ids = tuple(NodeID(1, i) for i in range(1, 6))
    px, _, sent = single(ids[0], ids, thrifty=True)
    px.active = True
    px.p2a(Request(Command(key=1, value=b"x")), None)
    assert len(sent) == 3
    assert all(isinstance(msg, P2a) for _, msg in sent)


def test_commit_before_accept_then_execute():
    px, node, _ = single()
    cmd = Command(key=6, value=b"six")
    px.handle_p3(P3(Ballot(1, B), (0,)))
    assert px.log[0].commit
    assert not px.log[0].ballot
    assert px.next_execute == 0
    px.handle_p2a(P2a(Ballot(1, B), 0, cmd))
    assert px.log[0].command == cmd
    px.handle_p3(P3(Ballot(1, B), (0,)))
    assert px.next_execute == 1
    assert read(node, 6) == b"six"


def test_lagging_unknown_slot_is_recovered():
    px, node, sent = single()
    cmd = Command(key=8, value=b"eight")
    px.handle_p2a(P2a(Ballot(1, B), 5, Command(key=5, value=b"five")))
    sent.clear()
    px.handle_p3(P3(Ballot(1, B), (0, 11)))
    assert (B, P3RecoverRequest(Ballot(1, B), 0, A)) in sent
    px.handle_p3_recover_reply(P3RecoverReply(Ballot(1, B), 0, cmd))
    assert px.next_execute == 1
    assert read(node, 8) == b"eight"


def test_recover_request_answered_for_committed_slot():
    c = Cluster()
    cmd = Command(key=1, value=b"x")
    c.paxos[A].handle_request(Request(cmd), None)
    c.pump()
    c.paxos[A].handle_p3_recover_request(P3RecoverRequest(Ballot(1, A), 0, B))
    assert list(c.queue) == [(B, P3RecoverReply(Ballot(1, A), 0, cmd))]
    c.queue.clear()
    c.paxos[A].handle_p3_recover_request(P3RecoverRequest(Ballot(1, A), 7, B))
    assert not c.queue


def test_higher_p2b_makes_leader_step_down():
    c = Cluster()
    c.paxos[A].handle_request(Request(Command(key=1, value=b"x")), None)
    c.pump()
    c.paxos[A].handle_request(Request(Command(key=2, value=b"y")), None)
    c.queue.clear()
    c.paxos[A].handle_p2b(P2b(Ballot(3, B), B, 1))
    leader = c.paxos[A]
    assert not leader.active
    assert leader.leader() == B
    assert not leader.is_leader()
    assert not leader.p3_pending_ballot
    commits = [(to, msg) for to, msg in c.queue if isinstance(msg, P3)]
    assert sorted(to for to, _ in commits) == [B, C]
    assert all(msg.ballot == Ballot(1, A) for _, msg in commits)


def test_cleanup_log_uses_slowest_node():
    c = Cluster()
    for key in (1, 2):
        c.paxos[A].handle_request(Request(Command(key=key, value=b"v")), None)
        c.pump()
    leader = c.paxos[A]
    assert leader.next_execute == 2
    leader.update_last_execute_by_node(B, 1)
    leader.update_last_execute_by_node(C, 2)
    assert leader.safe_log_cleanup_marker() == 1
    leader.cleanup_log()
    assert 0 not in leader.log
    assert 1 in leader.log
    assert leader.last_cleanup_marker == 1


def test_safe_marker_defaults_to_next_execute():
    px, _, _ = single()
    assert px.safe_log_cleanup_marker() == px.next_execute
    px.update_last_execute_by_node(B, -1)
    assert px.safe_log_cleanup_marker() == -1