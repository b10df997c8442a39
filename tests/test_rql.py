import pytest

from pbench.rql import RetroVar, RqlSet, RqlStruct, TimerRqlSet


def test_retro_var_render():
    assert RetroVar("x", "1").render() == "x:1"
    assert RetroVar(None, "1").render() == "1"


def test_struct_without_name():
    s = RqlStruct(None).add_var_int("testvar", 1).add_var_str("teststr", "teststrval")
    assert s.render() == '[testvar:1,teststr:"teststrval"]'


def test_struct_with_name_and_float():
    s = RqlStruct("pt").add_var_float("x", 1.5)
    assert s.render() == "pt:[x:1.500000]"


def test_empty_struct():
    assert RqlStruct("e").render() == "e:[]"


def test_add_set_render_and_erase():
    s = RqlSet("nums", True)
    s.add_all(["1", "2", "1"])
    assert len(s) == 2
    assert s.render(erase=False) == "nums:...{1,2}"
    assert s.render(erase=True) == "nums:...{1,2}"
    assert len(s) == 0
    assert s.render(erase=False) == "nums:...{}"


def test_remove_set_render():
    s = RqlSet("nums", False)
    s.add("7")
    assert s.render(erase=False) == "nums:--{7}"


def test_set_remove_values():
    s = RqlSet("n", True)
    s.add_all(["a", "b", "c"])
    s.remove("b")
    s.remove("missing")
    assert list(s) == ["a", "c"]
    s.remove_all(["a", "c"])
    assert len(s) == 0


def test_timer_set_expires_old_buckets():
    t = TimerRqlSet("ts", 3)
    t.add("123", 1000)
    t.add("124", 1000)
    t.add("125", 1002)
    removed = t.expire_items(1003)
    assert not removed.is_add
    assert list(removed) == ["123", "124"]
    assert list(t.snapshot()) == ["125"]


def test_timer_set_nothing_expired():
    t = TimerRqlSet("ts", 10)
    t.add("1", 5)
    assert len(t.expire_items(14)) == 0
    assert list(t.snapshot()) == ["1"]


@pytest.mark.parametrize("now", [1005, 2000])
def test_timer_set_snapshot_empty_after_full_expiry(now):
    t = TimerRqlSet("ts", 5)
    t.add("a", 1000)
    assert list(t.expire_items(now)) == ["a"]
    snap = t.snapshot()
    assert snap.is_add
    assert len(snap) == 0