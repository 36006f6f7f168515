"""Value graph → envelope tree.

Every non-scalar value becomes a ``{"__reftype", "__refaddr", "__value"}``
mapping (plus ``__blessed`` for tagged values, ``__tied`` for proxies and
``__recursive`` for repeat visits).  The result holds only dicts, lists,
strings, numbers and None, so any JSON codec can carry it.
"""
from __future__ import annotations

import functools
import inspect
import io
import logging
import re
import types
from typing import Any, Dict, Optional, Tuple

from . import paths
from .config import ENGINE_CONFIG
from .handles import ANON_IO_NAME, ANON_PACKAGE, Handle, describe_stream
from .models import (
    ARRAY, CODE, DATA_SLOTS, GLOB, HASH, REF, REGEXP, SCALAR, VSTRING,
    KEY_BLESSED, KEY_RECURSIVE, KEY_REFADDR, KEY_REFTYPE, KEY_TIED, KEY_VALUE,
    SLOT_CODE, SLOT_NAME, SLOT_PACKAGE, SLOT_SCALAR,
    Ref, VString, is_scalar,
)
from .registry import DEFAULT_REGISTRY, TypeRegistry
from .tie import suspended, tied

LOGGER = logging.getLogger("explicit_metadata.encoder")
LOGGER.addHandler(logging.NullHandler())

# flag letter <-> re flag; "u" (re.UNICODE) is implied for str patterns
REGEXP_FLAGS = (
    ("m", re.MULTILINE),
    ("s", re.DOTALL),
    ("i", re.IGNORECASE),
    ("x", re.VERBOSE),
    ("a", re.ASCII),
    ("L", re.LOCALE),
)

_CALLABLE_TYPES = (
    types.FunctionType,
    types.BuiltinFunctionType,
    types.MethodType,
    types.BuiltinMethodType,
    functools.partial,
    type,
)

# id(value) -> (path, value); the value is held so its id cannot be reused
Seen = Dict[int, Tuple[str, Any]]


class EncodeError(RuntimeError):
    """Raised when a value graph contains something that cannot be encoded."""
    pass


def regexp_modifiers(flags: int) -> str:
    return "".join(letter for letter, bit in REGEXP_FLAGS if flags & bit)


def classify(value: Any) -> str:
    """Container kind of a non-scalar *value*."""
    if isinstance(value, Ref):
        if tied(value) is not None:
            return SCALAR
        inner = value._value
        if isinstance(inner, VString):
            return VSTRING
        return SCALAR if is_scalar(inner) else REF
    if isinstance(value, list):
        return ARRAY
    if isinstance(value, dict):
        return HASH
    if isinstance(value, (Handle, io.IOBase)):
        return GLOB
    if isinstance(value, re.Pattern):
        return REGEXP
    if isinstance(value, _CALLABLE_TYPES) or inspect.isroutine(value):
        return CODE
    if hasattr(value, "__dict__"):
        return HASH
    raise EncodeError(f"cannot encode value of type {type(value).__name__}")


class Encoder:
    def __init__(self, registry: Optional[TypeRegistry] = None,
                 max_depth: Optional[int] = None):
        self.registry = registry or DEFAULT_REGISTRY
        self.max_depth = max_depth if max_depth is not None else ENGINE_CONFIG["max_depth"]

    def encode(self, value: Any) -> Any:
        """Return the envelope tree for *value* (scalars come back unchanged)."""
        seen: Seen = {}
        return self._encode(value, paths.ROOT, seen, 0)

    # ------------------------------------------------------------------
    def _encode(self, value: Any, path: str, seen: Seen, depth: int) -> Any:
        if isinstance(value, VString):
            # by value: no identity of its own
            return {KEY_REFTYPE: VSTRING, KEY_VALUE: list(value)}
        if is_scalar(value):
            return value
        if depth > self.max_depth:
            raise EncodeError(f"value nested deeper than {self.max_depth} levels at {path}")

        kind = classify(value)
        addr = id(value)
        tag = self._tag(value, kind)

        if addr in seen:
            LOGGER.debug("repeat visit of %s at %s (first seen at %s)", kind, path, seen[addr][0])
            rv = {KEY_REFTYPE: kind, KEY_REFADDR: addr, KEY_RECURSIVE: 1, KEY_VALUE: seen[addr][0]}
            if tag:
                rv[KEY_BLESSED] = tag
            return rv
        seen[addr] = (path, value)

        if tied(value) is not None:
            rv = self._encode_tied(value, kind, path, seen, depth)
        else:
            rv = {KEY_VALUE: self._payload(value, kind, path, seen, depth)}
        rv[KEY_REFTYPE] = kind
        rv[KEY_REFADDR] = addr
        if tag:
            rv[KEY_BLESSED] = tag
        return rv

    def _tag(self, value: Any, kind: str) -> Optional[str]:
        if kind in (CODE, REGEXP) or isinstance(value, io.IOBase):
            return None
        return self.registry.tag_for(value)

    def _encode_tied(self, value, kind, path, seen, depth) -> Dict[str, Any]:
        with suspended(value) as (handler, original):
            orig = self._encode(original, paths.untied_path(path, kind), seen, depth + 1)
            live = self._encode(handler, paths.tied_path(path, kind), seen, depth + 1)
        if not isinstance(value, Ref) and isinstance(orig, dict):
            # only the storage itself; the kind is the proxy's own
            orig = orig[KEY_VALUE]
        return {KEY_TIED: orig, KEY_VALUE: live}

    def _payload(self, value, kind, path, seen, depth) -> Any:
        if kind == HASH:
            return self._hash_payload(value, path, seen, depth)
        if kind == ARRAY:
            return [
                self._encode(item, paths.index_path(path, i), seen, depth + 1)
                for i, item in enumerate(list.__iter__(value))
            ]
        if kind == GLOB:
            return self._glob_payload(value, path, seen, depth)
        if kind == REGEXP:
            if not isinstance(value.pattern, str):
                raise EncodeError("cannot encode a bytes pattern")
            return [value.pattern, regexp_modifiers(value.flags)]
        if kind == CODE:
            return f"CODE(0x{id(value):x})"
        if kind == VSTRING:
            return list(value.value)
        # SCALAR / REF
        return self._encode(value.value, paths.deref_path(path), seen, depth + 1)

    def _hash_payload(self, value, path, seen, depth) -> Dict[str, Any]:
        mapping = value if isinstance(value, dict) else vars(value)
        keys = list(dict.keys(mapping))
        for k in keys:
            if not isinstance(k, str):
                raise EncodeError(f"mapping key {k!r} at {path} is not a string")
        return {
            k: self._encode(dict.__getitem__(mapping, k), paths.key_path(path, k), seen, depth + 1)
            for k in sorted(keys)
        }

    def _glob_payload(self, value, path, seen, depth) -> Dict[str, Any]:
        if isinstance(value, io.IOBase):
            value = Handle(ANON_IO_NAME, ANON_PACKAGE, io=value)
        out: Dict[str, Any] = {}
        for slot in DATA_SLOTS:
            item = getattr(value, slot.lower())
            if item is None and slot == SLOT_SCALAR:
                # every handle carries a scalar slot
                item = Ref()
            if item is not None:
                out[slot] = self._encode(item, paths.glob_path(path, slot), seen, depth + 1)
        out[SLOT_NAME] = value.name
        out[SLOT_PACKAGE] = value.package
        if value.code is not None:
            out[SLOT_CODE] = self._encode(value.code, paths.glob_path(path, SLOT_CODE), seen, depth + 1)
        if value.io is not None:
            out.update(describe_stream(value.io))
        return out
