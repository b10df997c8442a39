import pytest

from pbench.quorum import NodeID, Quorum, QuorumConfig

IDS = ["1.1", "1.2", "1.3", "2.1", "2.2"]


@pytest.fixture
def config():
    return QuorumConfig.from_ids(IDS)


def ids(*texts):
    return [NodeID.parse(t) for t in texts]


def test_parse_round_trip():
    node = NodeID.parse("2.7")
    assert (node.zone, node.node) == (2, 7)
    assert str(node) == "2.7"


@pytest.mark.parametrize("text", ["17", "a.b", "1.", ""])
def test_parse_rejects_bad_ids(text):
    with pytest.raises(ValueError):
        NodeID.parse(text)


def test_config_from_ids(config):
    assert config.n == len(IDS)
    assert config.z == 2
    assert config.npz == {1: 3, 2: 2}


def test_duplicate_ack_counts_once(config):
    q = Quorum(config)
    node = NodeID.parse("1.1")
    q.ack(node)
    q.ack(node)
    assert q.size() == 1


def test_majority_and_all(config):
    q = Quorum(config)
    for node in ids("1.1", "1.2"):
        q.ack(node)
    assert not q.majority()
    q.ack(NodeID.parse("2.1"))
    assert q.majority()
    assert not q.all()
    for node in ids("1.3", "2.2"):
        q.ack(node)
    assert q.all()


def test_fast_quorum_grows_with_acks(config):
    q = Quorum(config)
    q.ack(NodeID.parse("1.1"))
    assert not q.fast_quorum()
    for node in ids("1.2", "1.3", "2.1", "2.2"):
        q.ack(node)
    assert q.fast_quorum()


def test_nack_and_add(config):
    q = Quorum(config)
    q.nack(NodeID.parse("1.1"))
    assert q.size() == 0
    q.add()
    q.add()
    assert q.size() == 2


def test_reset(config):
    q = Quorum(config)
    for node in ids(*IDS):
        q.ack(node)
    q.reset()
    assert q.size() == 0
    assert not q.all_zones()
    assert not q.zone_majority()


def test_zone_rules(config):
    q = Quorum(config)
    q.ack(NodeID.parse("1.1"))
    assert not q.all_zones()
    assert not q.zone_majority()
    q.ack(NodeID.parse("2.1"))
    assert q.all_zones()
    assert q.grid_row()
    assert not q.grid_column()
    q.ack(NodeID.parse("2.2"))
    assert q.zone_majority()
    assert q.grid_column()


def test_flexible_grid(config):
    q = Quorum(config)
    for node in ids("1.1", "1.2"):
        q.ack(node)
    assert q.fgrid_q1(1)
    assert not q.fgrid_q1(0)
    assert q.fgrid_q2(0)
    assert not q.fgrid_q2(1)
    for node in ids("2.1", "2.2"):
        q.ack(node)
    assert q.fgrid_q1(0)
    assert q.fgrid_q2(1)


def test_str_mentions_acks(config):
    q = Quorum(config)
    q.ack(NodeID.parse("2.1"))
    text = str(q)
    assert "acked_size=1" in text
    assert "2.1" in text