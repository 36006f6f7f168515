"""
Decoder input validation: malformed envelopes are fatal and never repaired.
"""
import pytest

from explicit_metadata import Handle, decode, encode, Ref
from explicit_metadata.decoder import DecodeError, validate


def _ref_env():
    return encode(Ref())


@pytest.mark.parametrize(
    "bad, message",
    [
        ({}, "expected key __value"),
        ({"__value": 1}, "expected key __reftype"),
        ({"__reftype": "SCALAR", "__value": 1}, "expected key __refaddr"),
        ({"__reftype": "", "__refaddr": 1, "__blessed": "X", "__value": 1}, "without __reftype"),
        ({"__reftype": "REGEXP", "__refaddr": 1, "__value": {}}, "REGEXP but __value is a HASH"),
        ({"__reftype": "REGEXP", "__refaddr": 1, "__value": ["only-one"]}, "REGEXP but __value is a ARRAY"),
        ({"__reftype": "ARRAY", "__refaddr": 1, "__value": {}}, "ARRAY but __value is a HASH"),
        ({"__reftype": "HASH", "__refaddr": 1, "__value": []}, "HASH but __value is a ARRAY"),
        ({"__reftype": "SCALAR", "__refaddr": 1, "__value": [1]}, "SCALAR but"),
        ({"__reftype": "REF", "__refaddr": 1, "__value": 5}, "REF but"),
        ({"__reftype": "CODE", "__refaddr": 1, "__value": ""}, "CODE but"),
        ({"__reftype": "GLOB", "__value": {"NAME": "x"}}, "GLOB but"),
        ({"__reftype": "VSTRING", "__value": ["1"]}, "VSTRING but"),
        ({"__reftype": "BOGUS", "__refaddr": 1, "__value": 1}, "BOGUS but"),
        ({"__reftype": "ARRAY", "__refaddr": 1, "__recursive": 1, "__value": []}, "ARRAY but"),
        ([1, 2], "expected envelope"),
        ({"__reftype": [], "__refaddr": 1, "__value": 1}, "__reftype must be a string but is a ARRAY"),
        ({"__reftype": {}, "__refaddr": 1, "__value": 1}, "__reftype must be a string but is a HASH"),
        ({"__reftype": 7, "__value": 1}, "__reftype must be a string"),
        ({"__reftype": "HASH", "__refaddr": 1, "__blessed": ["X"], "__value": {}}, "__blessed must be a string"),
        ({"__reftype": "GLOB", "__value": {"SCALAR": 1, "NAME": ["x"], "PACKAGE": "main"}},
         "handle NAME must be a string"),
        ({"__reftype": "GLOB", "__value": {"SCALAR": 1, "NAME": "x", "PACKAGE": {}}},
         "handle PACKAGE must be a string"),
        ({"__reftype": "GLOB", "__value": {"SCALAR": 1, "NAME": "GEN1", "PACKAGE": "Symbol", "IO": "3"}},
         "handle IO must be a descriptor number"),
        ({"__reftype": "GLOB", "__value": {"SCALAR": 1, "NAME": "GEN1", "PACKAGE": "Symbol", "IO": 3,
                                           "IOmode": [">"]}},
         "handle IOmode must be a string"),
    ],
)
def test_malformed_envelopes_rejected(bad, message):
    with pytest.raises(DecodeError, match="Invalid decode data") as exc:
        decode(bad)
    assert message in str(exc.value)


def test_empty_and_misshapen_envelopes():
    with pytest.raises(DecodeError):
        decode({})
    with pytest.raises(DecodeError):
        decode({"__reftype": "REGEXP", "__value": {}, "__refaddr": 1})


def test_nested_error_aborts_whole_decode():
    tree = {"__reftype": "ARRAY", "__refaddr": 1, "__value": [1, {"__reftype": "HASH"}]}
    with pytest.raises(DecodeError, match="expected key __value"):
        decode(tree)


def test_identity_optional_kinds():
    validate({"__reftype": "VSTRING", "__value": [1, 2]})
    glob = {"__reftype": "GLOB", "__value": {"SCALAR": _ref_env(), "NAME": "GEN3", "PACKAGE": "Symbol"}}
    validate(glob)
    assert isinstance(decode(glob), Handle)


def test_back_reference_at_root_rejected():
    with pytest.raises(DecodeError, match="no enclosing container"):
        decode({"__reftype": "HASH", "__refaddr": 1, "__recursive": 1, "__value": "$VAR"})


def test_bad_path_expression_rejected():
    tree = {
        "__reftype": "ARRAY",
        "__refaddr": 1,
        "__value": [{"__reftype": "ARRAY", "__refaddr": 1, "__recursive": 1, "__value": "$NOPE"}],
    }
    with pytest.raises(DecodeError, match="bad path expression"):
        decode(tree)


def test_unresolvable_path_rejected():
    tree = {
        "__reftype": "ARRAY",
        "__refaddr": 1,
        "__value": [{"__reftype": "ARRAY", "__refaddr": 1, "__recursive": 1, "__value": "$VAR->[7]"}],
    }
    with pytest.raises(DecodeError, match="cannot resolve back-reference"):
        decode(tree)


def test_tied_storage_shape_checked():
    handler = {"__reftype": "HASH", "__refaddr": 2, "__value": {}}
    tree = {"__reftype": "HASH", "__refaddr": 1, "__tied": [1], "__value": handler}
    with pytest.raises(DecodeError, match="__tied of a tied HASH is a ARRAY"):
        decode(tree)


def test_tied_handle_names_checked():
    handler = {"__reftype": "HASH", "__refaddr": 2, "__value": {}}
    tree = {"__reftype": "GLOB", "__refaddr": 1, "__tied": {"NAME": 5}, "__value": handler}
    with pytest.raises(DecodeError, match="handle NAME must be a string"):
        decode(tree)


def test_unknown_handle_slot_rejected():
    glob = {"__reftype": "GLOB", "__value": {"SCALAR": _ref_env(), "FORMAT": 1, "NAME": "GEN1", "PACKAGE": "Symbol"}}
    with pytest.raises(DecodeError, match="unknown handle slot FORMAT"):
        decode(glob)
