"""
Tied (proxy) containers: extraction on encode, re-attachment on decode.
"""
import pytest

from explicit_metadata import (
    MappingHandler,
    ProxyDict,
    ProxyError,
    ProxyList,
    Ref,
    ScalarHandler,
    SequenceHandler,
    StreamHandler,
    decode,
    encode,
    gensym,
    register_type,
    tie,
    tied,
    untie,
)
from explicit_metadata.encoder import EncodeError
from explicit_metadata.registry import qualified_name
from explicit_metadata.tie import original_value, suspended


@register_type
class CountingHandler(MappingHandler):
    teardowns = 0

    def untie(self):
        CountingHandler.teardowns += 1


def _tied_dict(handler_cls=MappingHandler):
    d = ProxyDict(original=1)
    handler = tie(d, handler_cls, {"live": 2})
    return d, handler


# ----------------------------------------------------------------------
def test_proxy_dict_reads_and_writes_go_to_handler():
    d, h = _tied_dict()
    assert d["live"] == 2
    assert "original" not in d
    d["x"] = 3
    assert h.data == {"live": 2, "x": 3}
    assert dict(d.items()) == {"live": 2, "x": 3}

    assert untie(d) is h
    assert tied(d) is None
    assert dict(d) == {"original": 1}


def test_proxy_list_delegates():
    lst = ProxyList([0])
    h = tie(lst, SequenceHandler, ["a"])
    lst.append("b")
    assert h.items == ["a", "b"]
    assert list(lst) == ["a", "b"] and len(lst) == 2
    untie(lst)
    assert lst == [0]


def test_tie_requires_tieable():
    with pytest.raises(ProxyError, match="Cannot tie a list"):
        tie([], SequenceHandler)


def test_original_value_bypasses_attached_handler():
    d, _ = _tied_dict()
    assert original_value(d) == {"original": 1}
    assert type(original_value(d)) is dict

    lst = ProxyList(["stored"])
    tie(lst, SequenceHandler, ["live"])
    assert original_value(lst) == ["stored"]


def test_original_value_unsupported_kind():
    with pytest.raises(ProxyError, match="Cannot retrieve the original value"):
        original_value(object())


# ----------------------------------------------------------------------
def test_encode_tied_dict():
    d, h = _tied_dict()
    tree = encode(d)
    assert tree["__reftype"] == "HASH"
    assert tree["__refaddr"] == id(d)
    assert tree["__tied"] == {"original": 1}

    handler = tree["__value"]
    assert handler["__reftype"] == "HASH"
    assert handler["__blessed"] == qualified_name(MappingHandler)
    assert handler["__value"]["data"]["__value"] == {"live": 2}

    # the very same handler object is back in place
    assert tied(d) is h


def test_decode_tied_dict():
    d, _ = _tied_dict()
    out = decode(encode(d))
    assert isinstance(out, ProxyDict)
    assert isinstance(tied(out), MappingHandler)
    assert out["live"] == 2
    untie(out)
    assert dict(out) == {"original": 1}


def test_tied_list_roundtrip():
    lst = ProxyList(["stored"])
    tie(lst, SequenceHandler, ["live", 1])
    tree = encode(lst)
    assert tree["__reftype"] == "ARRAY"
    assert tree["__tied"] == ["stored"]

    out = decode(tree)
    assert list(out) == ["live", 1]
    assert isinstance(tied(out), SequenceHandler)


def test_tied_scalar_roundtrip():
    r = Ref("plain")
    tie(r, ScalarHandler, "live")
    assert r.value == "live"

    tree = encode(r)
    assert tree["__reftype"] == "SCALAR"
    assert tree["__tied"] == "plain"

    out = decode(tree)
    assert out.value == "live"
    untie(out)
    assert out.value == "plain"


def test_tied_handle_roundtrip():
    h = gensym()
    tie(h, StreamHandler)
    h.write("hello ")
    h.write("world")

    tree = encode(h)
    assert tree["__reftype"] == "GLOB"
    assert tree["__tied"]["PACKAGE"] == "Symbol"

    out = decode(tree)
    assert isinstance(tied(out), StreamHandler)
    assert out.name == h.name
    assert out.read() == "hello world"


def test_handler_pointing_back_at_its_container():
    d, h = _tied_dict()
    h.data["self"] = d
    tree = encode(d)
    assert tree["__value"]["__value"]["data"]["__value"]["self"]["__value"] == "$VAR"

    out = decode(tree)
    assert tied(out).data["self"] is out


def test_shared_value_in_proxy_storage():
    shared = [1, 2]
    d = ProxyDict(stored=shared)
    tie(d, MappingHandler, {"live": 2})
    tree = encode({"a": d, "b": shared})
    assert tree["__value"]["b"]["__value"] == "untied(%{$VAR->{a}})->{stored}"

    out = decode(tree)
    assert out["a"]["live"] == 2
    assert out["b"] == [1, 2]
    assert original_value(out["a"])["stored"] is out["b"]
    untie(out["a"])
    assert out["a"]["stored"] is out["b"]


def test_shared_value_in_proxy_list_storage():
    shared = {"k": 1}
    lst = ProxyList([shared])
    tie(lst, SequenceHandler, ["live"])
    tree = encode([lst, shared])
    assert tree["__value"][1]["__value"] == "untied(@{$VAR->[0]})->[0]"

    out = decode(tree)
    untie(out[0])
    assert out[0][0] is out[1]


# ----------------------------------------------------------------------
def test_encode_does_not_run_teardown_hook():
    d, _ = _tied_dict(CountingHandler)
    before = CountingHandler.teardowns
    encode(d)
    assert CountingHandler.teardowns == before
    untie(d)
    assert CountingHandler.teardowns == before + 1


def test_suspended_reattaches_on_error():
    d, h = _tied_dict()
    with pytest.raises(RuntimeError, match="boom"):
        with suspended(d) as (handler, original):
            assert tied(d) is None
            assert handler is h
            assert original == {"original": 1}
            raise RuntimeError("boom")
    assert tied(d) is h


def test_failed_encode_leaves_proxy_tied():
    d, h = _tied_dict()
    h.data["bad"] = {1, 2}
    with pytest.raises(EncodeError):
        encode(d)
    assert tied(d) is h
