import dataclasses

import pytest

from pbench.batched_messages import (
    P1a,
    P1b,
    P2a,
    P2b,
    P3,
    CommandBallot,
    P3RecoverReply,
    P3RecoverRequest,
)
from pbench.node import Ballot, Command
from pbench.quorum import NodeID

A = NodeID(1, 1)
BALLOT = Ballot(1, A)
C1 = Command(key=1, value=b"a")
C2 = Command(key=2, value=b"b")


def test_p1a_str():
    assert str(P1a(BALLOT)) == "P1a {b=1.1.1}"


def test_default_p3_is_empty():
    msg = P3()
    assert msg.slots == ()
    assert not msg.ballot


def test_p3_slots_become_tuple():
    msg = P3(BALLOT, [3, 4])
    assert msg.slots == (3, 4)
    assert str(BALLOT) in str(msg)


def test_p2a_commands_are_a_tuple_and_p3_defaults_empty():
    msg = P2a(BALLOT, 0, [C1, C2])
    assert msg.commands == (C1, C2)
    assert msg.p3msg == P3()
    assert msg.p3msg.slots == ()


def test_command_ballot_keeps_commands_in_order():
    cb = CommandBallot([C2, C1], BALLOT)
    assert cb.commands == (C2, C1)
    assert cb.ballot == BALLOT


def test_p1b_log_round_trip():
    cb = CommandBallot((C1,), BALLOT)
    msg = P1b(BALLOT, A, {5: cb})
    assert msg.log[5] == cb
    assert "5: " in str(msg)


def test_p2b_str_names_sender_and_slot():
    text = str(P2b(BALLOT, A, 7))
    assert str(A) in text
    assert "s=7" in text


def test_recover_messages_hold_their_fields():
    req = P3RecoverRequest(BALLOT, 2, A)
    rep = P3RecoverReply(BALLOT, 2, [C1])
    assert req.node_id == A
    assert rep.commands == (C1,)
    assert rep.slot == req.slot


def test_messages_are_immutable():
    msg = P2b(BALLOT, A, 1)
    with pytest.raises(dataclasses.FrozenInstanceError):
        msg.slot = 2
    assert msg.slot == 1