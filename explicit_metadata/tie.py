"""Tie-style interception for containers.

A *tied* container forwards its reads and writes to a separate handler
object while keeping its own (now hidden) storage.  The encoder needs to see
both halves, so this module provides:

* ``tie`` / ``untie`` / ``tied`` – attach, detach and inspect a handler
* ``suspended`` – detach a handler for the duration of a ``with`` block and
  always put the very same handler back afterwards
* ``ProxyList`` / ``ProxyDict`` – ``list`` / ``dict`` that honour a handler
* stock handlers backed by plain Python containers
"""
from __future__ import annotations

import logging
from collections.abc import ItemsView, KeysView, ValuesView
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, Tuple

LOGGER = logging.getLogger("explicit_metadata.tie")
LOGGER.addHandler(logging.NullHandler())


class ProxyError(RuntimeError):
    """Raised when a tie operation is attempted on an unsupported kind."""
    pass


# ---------------------------------------------------------------------------
class Tieable:
    """Mixin for containers whose operations may be delegated to a handler."""

    _handler: Any = None

    def __new__(cls, *args, **kwargs):
        obj = super().__new__(cls)
        obj._handler = None
        return obj

    def tied(self):
        return self._handler


def tie(container: Any, factory: Callable[..., Any], *args, **kwargs) -> Any:
    """Attach ``factory(*args, **kwargs)`` as the handler of *container*."""
    if not isinstance(container, Tieable):
        raise ProxyError(f"Cannot tie a {type(container).__name__}")
    handler = factory(*args, **kwargs)
    container._handler = handler
    return handler


def untie(container: Any, teardown: bool = True) -> Any:
    """Detach and return the handler of *container*.

    The handler's ``untie()`` hook runs unless *teardown* is false.
    """
    handler = tied(container)
    if handler is None:
        return None
    if teardown:
        hook = getattr(handler, "untie", None)
        if callable(hook):
            hook()
    container._handler = None
    return handler


def tied(container: Any) -> Any:
    if isinstance(container, Tieable):
        return container._handler
    return None


def retie(container: Any, handler: Any) -> Any:
    """Put an existing handler object back onto *container*."""
    if not isinstance(container, Tieable):
        raise ProxyError(f"Cannot recreate a tied {type(handler).__name__}")
    return tie(container, lambda: handler)


@contextmanager
def suspended(container: Any) -> Iterator[Tuple[Any, Any]]:
    """Yield ``(handler, original)`` with interception switched off.

    *original* is what the container holds underneath its handler: a shallow
    plain ``list`` / ``dict`` copy for sequences and mappings, the stored value for a ``Ref`` and a
    slot-sharing copy for a ``Handle``.  The handler is reattached even when
    the body raises.
    """
    handler = untie(container, teardown=False)
    LOGGER.debug("suspended %s handler %r", type(container).__name__, handler)
    try:
        yield handler, original_value(container)
    finally:
        retie(container, handler)


def original_value(container: Any) -> Any:
    """Return the plain storage of *container*, bypassing any handler."""
    if isinstance(container, ProxyList):
        return list.copy(container)
    if isinstance(container, ProxyDict):
        # dict.copy() on a subclass goes through the overridden keys()/__getitem__
        return {k: dict.__getitem__(container, k) for k in dict.keys(container)}
    # late imports: models/handles build on this module
    from .models import Ref
    from .handles import Handle

    if isinstance(container, Ref):
        return container._value
    if isinstance(container, Handle):
        return container.copy()
    raise ProxyError(
        f"Cannot retrieve the original value of a tied {type(container).__name__}"
    )


# ---------------------------------------------------------------------------
# Proxy containers
# ---------------------------------------------------------------------------
class ProxyList(Tieable, list):
    """``list`` whose element access goes through a handler when tied."""

    def __getitem__(self, index):
        h = self._handler
        if h is None:
            return list.__getitem__(self, index)
        return h[index]

    def __setitem__(self, index, value):
        h = self._handler
        if h is None:
            return list.__setitem__(self, index, value)
        h[index] = value

    def __delitem__(self, index):
        h = self._handler
        if h is None:
            return list.__delitem__(self, index)
        del h[index]

    def __len__(self):
        h = self._handler
        if h is None:
            return list.__len__(self)
        return len(h)

    def __iter__(self):
        if self._handler is None:
            return list.__iter__(self)
        return (self[i] for i in range(len(self)))

    def __contains__(self, item):
        return any(x is item or x == item for x in iter(self))

    def append(self, value):
        self.insert(len(self), value)

    def insert(self, index, value):
        h = self._handler
        if h is None:
            return list.insert(self, index, value)
        h.insert(index, value)

    def extend(self, values):
        for v in values:
            self.append(v)

    def __eq__(self, other):
        if self._handler is None:
            return list.__eq__(self, other)
        return list(iter(self)) == other

    __hash__ = None

    def __repr__(self):
        if self._handler is None:
            return list.__repr__(self)
        return f"{type(self).__name__}({list(iter(self))!r})"


class ProxyDict(Tieable, dict):
    """``dict`` whose item access goes through a handler when tied."""

    def __getitem__(self, key):
        h = self._handler
        if h is None:
            return dict.__getitem__(self, key)
        return h[key]

    def __setitem__(self, key, value):
        h = self._handler
        if h is None:
            return dict.__setitem__(self, key, value)
        h[key] = value

    def __delitem__(self, key):
        h = self._handler
        if h is None:
            return dict.__delitem__(self, key)
        del h[key]

    def __contains__(self, key):
        h = self._handler
        if h is None:
            return dict.__contains__(self, key)
        return key in h

    def __iter__(self):
        h = self._handler
        if h is None:
            return dict.__iter__(self)
        return iter(h)

    def __len__(self):
        h = self._handler
        if h is None:
            return dict.__len__(self)
        return len(h)

    def get(self, key, default=None):
        return self[key] if key in self else default

    def keys(self):
        if self._handler is None:
            return dict.keys(self)
        return KeysView(self)

    def items(self):
        if self._handler is None:
            return dict.items(self)
        return ItemsView(self)

    def values(self):
        if self._handler is None:
            return dict.values(self)
        return ValuesView(self)

    def __eq__(self, other):
        if self._handler is None:
            return dict.__eq__(self, other)
        return dict(self.items()) == other

    __hash__ = None

    def __repr__(self):
        if self._handler is None:
            return dict.__repr__(self)
        return f"{type(self).__name__}({dict(self.items())!r})"


# ---------------------------------------------------------------------------
# Stock handlers
# ---------------------------------------------------------------------------
class SequenceHandler:
    """Handler for ``ProxyList`` keeping its elements in ``self.items``."""

    def __init__(self, items=None):
        self.items = list(items or [])

    def __getitem__(self, index):
        return self.items[index]

    def __setitem__(self, index, value):
        self.items[index] = value

    def __delitem__(self, index):
        del self.items[index]

    def __len__(self):
        return len(self.items)

    def insert(self, index, value):
        self.items.insert(index, value)

    def untie(self):
        pass


class MappingHandler:
    """Handler for ``ProxyDict`` keeping its entries in ``self.data``."""

    def __init__(self, data=None):
        self.data = dict(data or {})

    def __getitem__(self, key):
        return self.data[key]

    def __setitem__(self, key, value):
        self.data[key] = value

    def __delitem__(self, key):
        del self.data[key]

    def __contains__(self, key):
        return key in self.data

    def __iter__(self):
        return iter(self.data)

    def __len__(self):
        return len(self.data)

    def untie(self):
        pass


class ScalarHandler:
    """Handler for a tied ``Ref``."""

    def __init__(self, value=None):
        self.value = value

    def fetch(self):
        return self.value

    def store(self, value):
        self.value = value

    def untie(self):
        pass


class StreamHandler:
    """Handler for a tied ``Handle``; collects written text in ``self.chunks``."""

    def __init__(self):
        self.chunks = []

    def write(self, data):
        self.chunks.append(data)
        return len(data)

    def read(self, size: Optional[int] = -1):
        text = "".join(self.chunks)
        if size is None or size < 0:
            self.chunks = []
            return text
        self.chunks = [text[size:]] if text[size:] else []
        return text[:size]

    def close(self):
        pass

    def untie(self):
        pass
