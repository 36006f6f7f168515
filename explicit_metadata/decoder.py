"""Envelope tree → value graph.

* Validates every envelope before touching it and raises **DecodeError**
  on the first problem; nothing is guessed or repaired.
* Back-references (``__recursive``) are not rebuilt in place.  Each one
  queues a fixup that resolves its path against the finished root and
  writes the result into the slot it came from.  The queue runs once, in
  order, after the whole tree exists.
* Callables never survive: they come back as ``unavailable_callable``.
"""
from __future__ import annotations

import logging
import re
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from . import handles, paths
from .config import ENGINE_CONFIG
from .handles import Handle
from .models import (
    ARRAY, CODE, GLOB, HASH, IDENTITY_OPTIONAL, REF, REGEXP, SCALAR, VSTRING,
    KEY_BLESSED, KEY_RECURSIVE, KEY_REFADDR, KEY_REFTYPE, KEY_TIED, KEY_VALUE,
    SLOT_CODE, SLOT_IO, SLOT_IOMODE, SLOT_IOSEEK, SLOT_NAME, SLOT_PACKAGE,
    DATA_SLOTS, Ref, VString, is_scalar,
)
from .registry import DEFAULT_REGISTRY, TypeRegistry
from .tie import ProxyDict, ProxyList, Tieable, retie

LOGGER = logging.getLogger("explicit_metadata.decoder")
LOGGER.addHandler(logging.NullHandler())

_FLAG_BITS = {
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "i": re.IGNORECASE,
    "x": re.VERBOSE,
    "a": re.ASCII,
    "L": re.LOCALE,
    "u": 0,
}

Fixup = Callable[[Any], None]


class DecodeError(RuntimeError):
    """Raised when an envelope tree cannot be decoded."""
    pass


def unavailable_callable(*args, **kwargs):
    """Stands in for every decoded callable; the original code is not kept."""
    return "Put in place by explicit_metadata when it could not find the original callable"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _shape(value: Any) -> str:
    if isinstance(value, dict):
        return "HASH"
    if isinstance(value, list):
        return "ARRAY"
    return f"non-reference {type(value).__name__}"


def _compatible(node: Dict[str, Any], kind: str, value: Any) -> bool:
    if node.get(KEY_RECURSIVE):
        return isinstance(value, str)
    if KEY_TIED in node:
        return isinstance(value, dict) and KEY_REFTYPE in value
    if kind == SCALAR:
        return not isinstance(value, (dict, list))
    if kind == ARRAY:
        return isinstance(value, list)
    if kind == HASH:
        return isinstance(value, dict)
    if kind == GLOB:
        return isinstance(value, dict) and "SCALAR" in value
    if kind == CODE:
        return isinstance(value, str) and bool(value)
    if kind == REF:
        return isinstance(value, dict) and KEY_REFTYPE in value
    if kind == REGEXP:
        return (isinstance(value, list) and len(value) == 2
                and all(isinstance(p, str) for p in value))
    if kind == VSTRING:
        return (isinstance(value, list)
                and all(isinstance(p, int) and not isinstance(p, bool) for p in value))
    return False


def validate(node: Any) -> None:
    """Raise DecodeError unless *node* is a well-formed envelope."""
    if not isinstance(node, dict):
        raise DecodeError(f"Invalid decode data: expected envelope mapping but got {_shape(node)}")
    for key in (KEY_VALUE, KEY_REFTYPE):
        if key not in node:
            raise DecodeError(f"Invalid decode data: expected key {key}")

    kind, value, tag = node[KEY_REFTYPE], node[KEY_VALUE], node.get(KEY_BLESSED)
    if not isinstance(kind, str):
        raise DecodeError(f"Invalid decode data: {KEY_REFTYPE} must be a string but is a {_shape(kind)}")
    if tag is not None and not isinstance(tag, str):
        raise DecodeError(f"Invalid decode data: {KEY_BLESSED} must be a string but is a {_shape(tag)}")
    if kind not in IDENTITY_OPTIONAL and KEY_REFADDR not in node:
        raise DecodeError(f"Invalid decode data: expected key {KEY_REFADDR}")
    if tag and not kind:
        raise DecodeError(f"Invalid decode data: cannot have {KEY_BLESSED} without {KEY_REFTYPE}")
    if not _compatible(node, kind, value):
        raise DecodeError(
            f"Invalid decode data: {KEY_REFTYPE} is {kind} but {KEY_VALUE} is a {_shape(value)}"
        )
    if kind == GLOB and not node.get(KEY_RECURSIVE) and KEY_TIED not in node:
        _check_handle_slots(value)


def _check_handle_slots(slots: Dict[str, Any]) -> None:
    for slot in (SLOT_NAME, SLOT_PACKAGE, SLOT_IOMODE):
        item = slots.get(slot)
        if item is not None and not isinstance(item, str):
            raise DecodeError(f"Invalid decode data: handle {slot} must be a string but is a {_shape(item)}")
    fd = slots.get(SLOT_IO)
    if fd is not None and (isinstance(fd, bool) or not isinstance(fd, int)):
        raise DecodeError(f"Invalid decode data: handle {SLOT_IO} must be a descriptor number but is a {_shape(fd)}")


# ---------------------------------------------------------------------------
class Decoder:
    def __init__(self, registry: Optional[TypeRegistry] = None,
                 max_depth: Optional[int] = None):
        self.registry = registry or DEFAULT_REGISTRY
        self.max_depth = max_depth if max_depth is not None else ENGINE_CONFIG["max_depth"]

    def decode(self, envelope: Any) -> Any:
        """Rebuild the value graph described by *envelope*."""
        queue: List[Fixup] = []
        rv = self._decode(envelope, queue, None, 0)
        for fixup in queue:
            fixup(rv)
        return rv

    # ------------------------------------------------------------------
    def _decode(self, node: Any, queue: List[Fixup], fill: Optional[Callable[[Any], Any]],
                depth: int) -> Any:
        if is_scalar(node):
            return node
        validate(node)
        if depth > self.max_depth:
            raise DecodeError(f"envelope nested deeper than {self.max_depth} levels")

        kind, value = node[KEY_REFTYPE], node[KEY_VALUE]
        tag = node.get(KEY_BLESSED)

        if node.get(KEY_RECURSIVE):
            self._defer(value, queue, fill)
            return None
        if KEY_TIED in node:
            return self._decode_tied(node, kind, tag, queue, depth)

        if kind == ARRAY:
            rv = self._container(ARRAY, tag, list)
            self._fill_array(rv, value, queue, depth)
        elif kind == HASH:
            rv = self._container(HASH, tag, dict)
            self._fill_hash(rv, value, queue, depth)
        elif kind in (SCALAR, REF):
            rv = self._container(kind, tag, Ref)
            rv.value = self._decode(value, queue, partial(setattr, rv, "value"), depth + 1)
        elif kind == GLOB:
            rv = self._decode_glob(value, tag, queue, depth)
        elif kind == CODE:
            rv = unavailable_callable
        elif kind == REGEXP:
            rv = self._compile(*value)
        elif kind == VSTRING:
            vstr = VString(*value)
            if KEY_REFADDR in node:
                rv = self._container(VSTRING, tag, Ref)
                rv.value = vstr
            else:
                rv = vstr
        else:  # pragma: no cover - validate() rejects unknown kinds
            raise DecodeError(f"Invalid decode data: unknown {KEY_REFTYPE} {kind}")
        return rv

    def _defer(self, path: str, queue: List[Fixup], fill) -> None:
        if fill is None:
            raise DecodeError("Invalid decode data: back-reference with no enclosing container")
        try:
            steps = paths.parse(path)
        except paths.PathError as exc:
            raise DecodeError(f"Invalid decode data: bad path expression {path!r}: {exc}") from exc

        def fixup(root):
            try:
                target = paths.resolve(root, steps)
            except paths.PathError as exc:
                raise DecodeError(f"cannot resolve back-reference {path!r}: {exc}") from exc
            fill(target)

        queue.append(fixup)

    def _container(self, kind: str, tag: Optional[str], default: Callable[[], Any]) -> Any:
        if tag:
            try:
                rv = self.registry.new(tag, kind)
            except TypeError as exc:
                raise DecodeError(str(exc)) from exc
            if rv is not None:
                return rv
        return default()

    def _fill_array(self, rv: list, items: List[Any], queue, depth) -> None:
        for i, item in enumerate(items):
            list.append(rv, self._decode(item, queue, partial(list.__setitem__, rv, i), depth + 1))

    def _fill_hash(self, rv: Any, entries: Dict[str, Any], queue, depth) -> None:
        target = rv if isinstance(rv, dict) else vars(rv)
        for key in sorted(entries):
            dict.__setitem__(
                target, key,
                self._decode(entries[key], queue, partial(dict.__setitem__, target, key), depth + 1),
            )

    # ------------------------------------------------------------------
    def _decode_tied(self, node, kind, tag, queue, depth) -> Any:
        defaults = {ARRAY: ProxyList, HASH: ProxyDict, SCALAR: Ref, REF: Ref, GLOB: handles.gensym}
        if kind not in defaults:
            raise DecodeError(f"Cannot recreate a tied {kind}")
        rv = self._container(kind, tag, defaults[kind])
        if not isinstance(rv, Tieable):
            raise DecodeError(f"Cannot recreate a tied {type(rv).__name__}")

        # original storage first, while nothing intercepts the writes
        original = node[KEY_TIED]
        storage = {ARRAY: list, HASH: dict, GLOB: dict}.get(kind)
        if storage is not None and not isinstance(original, storage):
            raise DecodeError(
                f"Invalid decode data: {KEY_TIED} of a tied {kind} is a {_shape(original)}"
            )
        if kind == ARRAY:
            self._fill_array(rv, original, queue, depth)
        elif kind == HASH:
            self._fill_hash(rv, original, queue, depth)
        elif kind == GLOB:
            _check_handle_slots(original)
            rv.name, rv.package = original.get(SLOT_NAME), original.get(SLOT_PACKAGE)
            self._fill_glob(rv, original, queue, depth)
        else:
            rv._value = self._decode(original, queue, partial(setattr, rv, "_value"), depth + 1)

        handler_node = node[KEY_VALUE]
        handler = self._decode(handler_node, queue, partial(retie, rv), depth + 1)
        if not handler_node.get(KEY_RECURSIVE):
            retie(rv, handler)
        return rv

    def _decode_glob(self, value: Dict[str, Any], tag, queue, depth) -> Handle:
        package, name = value.get(SLOT_PACKAGE), value.get(SLOT_NAME)
        if tag:
            rv = self._container(GLOB, tag, handles.gensym)
            rv.name, rv.package = name, package
        else:
            rv = handles.create_handle(package, name)
        self._fill_glob(rv, value, queue, depth)
        return rv

    def _fill_glob(self, rv: Handle, value: Dict[str, Any], queue, depth) -> None:
        is_real = handles.is_real_name(value.get(SLOT_PACKAGE), value.get(SLOT_NAME))
        for slot, item in value.items():
            if slot in (SLOT_NAME, SLOT_PACKAGE, SLOT_IOMODE, SLOT_IOSEEK):
                continue
            if slot == SLOT_IO:
                if item is not None:
                    rv.io = handles.recreate_stream(item, value.get(SLOT_IOMODE))
            elif slot == SLOT_CODE:
                if not is_real or rv.code is None:
                    rv.code = unavailable_callable
            elif slot in DATA_SLOTS:
                attr = slot.lower()
                setattr(rv, attr, self._decode(item, queue, partial(setattr, rv, attr), depth + 1))
            else:
                raise DecodeError(f"Invalid decode data: unknown handle slot {slot}")

    def _compile(self, pattern: str, modifiers: str) -> "re.Pattern":
        flags = 0
        for letter in modifiers:
            if letter not in _FLAG_BITS:
                raise DecodeError(f"cannot recompile /{pattern}/{modifiers}: unknown modifier {letter!r}")
            flags |= _FLAG_BITS[letter]
        try:
            return re.compile(pattern, flags)
        except (re.error, ValueError) as exc:
            raise DecodeError(f"cannot recompile /{pattern}/{modifiers}: {exc}") from exc
