"""explicit_metadata - snapshot Python value graphs into JSON-safe envelopes and back."""

__version__ = "0.1.0"

from .models import Ref, VString
from .encoder import Encoder, EncodeError
from .decoder import Decoder, DecodeError, unavailable_callable
from .handles import Handle, HandleReopenWarning, gensym, symbol
from .registry import TypeRegistry, register_type, DEFAULT_REGISTRY
from .tie import (
    ProxyError,
    ProxyDict,
    ProxyList,
    SequenceHandler,
    MappingHandler,
    ScalarHandler,
    StreamHandler,
    tie,
    tied,
    untie,
)
from . import json_util


def encode(value):
    """Envelope tree for *value*; plain scalars are returned unchanged."""
    return Encoder().encode(value)


def decode(envelope):
    """Value graph rebuilt from an envelope tree produced by ``encode``."""
    return Decoder().decode(envelope)


def dumps(value) -> str:
    """``encode`` followed by JSON serialisation."""
    return json_util.dumps(encode(value))


def loads(text):
    """JSON parsing followed by ``decode``."""
    return decode(json_util.loads(text))


__all__ = [
    "encode",
    "decode",
    "dumps",
    "loads",
    "Encoder",
    "Decoder",
    "EncodeError",
    "DecodeError",
    "unavailable_callable",
    "Ref",
    "VString",
    "Handle",
    "HandleReopenWarning",
    "gensym",
    "symbol",
    "TypeRegistry",
    "register_type",
    "DEFAULT_REGISTRY",
    "ProxyError",
    "ProxyList",
    "ProxyDict",
    "SequenceHandler",
    "MappingHandler",
    "ScalarHandler",
    "StreamHandler",
    "tie",
    "tied",
    "untie",
]
