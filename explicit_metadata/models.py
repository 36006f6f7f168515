from __future__ import annotations

from typing import Any

from .tie import Tieable

# ===== envelope keys (wire contract) =====
KEY_REFTYPE   = "__reftype"
KEY_REFADDR   = "__refaddr"
KEY_BLESSED   = "__blessed"
KEY_VALUE     = "__value"
KEY_TIED      = "__tied"
KEY_RECURSIVE = "__recursive"

# ===== container kinds =====
SCALAR  = "SCALAR"
ARRAY   = "ARRAY"
HASH    = "HASH"
REF     = "REF"
GLOB    = "GLOB"
REGEXP  = "REGEXP"
CODE    = "CODE"
VSTRING = "VSTRING"

KINDS = frozenset({SCALAR, ARRAY, HASH, REF, GLOB, REGEXP, CODE, VSTRING})

# kinds whose envelope may legitimately lack __refaddr
IDENTITY_OPTIONAL = frozenset({GLOB, VSTRING})

# ===== handle payload slots =====
SLOT_NAME    = "NAME"
SLOT_PACKAGE = "PACKAGE"
SLOT_SCALAR  = "SCALAR"
SLOT_ARRAY   = "ARRAY"
SLOT_HASH    = "HASH"
SLOT_CODE    = "CODE"
SLOT_IO      = "IO"
SLOT_IOMODE  = "IOmode"
SLOT_IOSEEK  = "IOseek"

DATA_SLOTS = (SLOT_HASH, SLOT_ARRAY, SLOT_SCALAR)

SCALAR_TYPES = (type(None), bool, int, float, str)


def is_scalar(value: Any) -> bool:
    return isinstance(value, SCALAR_TYPES)


class Ref(Tieable):
    """One-slot mutable box: a reference to a scalar or to another reference.

    When tied, reads and writes of ``value`` go to the handler's
    ``fetch()`` / ``store()``.
    """

    _value: Any = None

    def __init__(self, value: Any = None):
        self._value = value

    @property
    def value(self) -> Any:
        h = self._handler
        if h is None:
            return self._value
        return h.fetch()

    @value.setter
    def value(self, new: Any) -> None:
        h = self._handler
        if h is None:
            self._value = new
        else:
            h.store(new)

    def __eq__(self, other):
        if self is other:
            return True
        if not isinstance(other, Ref):
            return NotImplemented
        return self.value == other.value

    __hash__ = None

    def __repr__(self):
        return f"{type(self).__name__}({self.value!r})"


class VString(tuple):
    """Version-string literal made of integer components, e.g. ``v1.2.3.4``.

    Accepts either the components or a single dotted string with optional
    leading ``v``.
    """

    def __new__(cls, *parts):
        if len(parts) == 1 and isinstance(parts[0], str):
            text = parts[0][1:] if parts[0].startswith("v") else parts[0]
            parts = tuple(text.split("."))
        return super().__new__(cls, (int(p) for p in parts))

    def __str__(self):
        return ".".join(str(p) for p in self)

    def __repr__(self):
        return f"VString('v{self}')"
