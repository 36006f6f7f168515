"""Handle objects: named symbol entries with data slots and an open stream.

A ``Handle`` bundles the ``scalar`` / ``array`` / ``hash`` / ``code``
slots of a named symbol together with an optional ``io`` stream.  Named
handles live in a process-wide symbol table (``symbol()``); anonymous ones
come from ``gensym()`` and sit in the ``Symbol`` package under generated
``GEN<n>`` names.  Decoding an anonymous handle gives a new, unregistered
handle carrying the recorded name (``GEN<n>``, or ``__ANONIO__`` for a bare
stream).

The "real name" test and the descriptor-reopen logic are best-effort
heuristics, not guarantees: a handle whose name merely looks generated is
treated as anonymous, a descriptor that has been closed or reused since
encoding cannot be told apart from the original stream, and a descriptor
whose mode was not recorded is reopened in the mode it appears to allow.
"""
from __future__ import annotations

import itertools
import logging
import os
import re
import warnings
from typing import Any, Dict, Optional

from . import fmode
from .config import ENGINE_CONFIG
from .models import Ref, SLOT_IO, SLOT_IOMODE, SLOT_IOSEEK
from .tie import Tieable

LOGGER = logging.getLogger("explicit_metadata.handles")
LOGGER.addHandler(logging.NullHandler())

ANON_PACKAGE = ENGINE_CONFIG["anon_package"]
ANON_IO_NAME = ENGINE_CONFIG["anon_io_name"]

_GENERATED_NAME = re.compile(r"^GEN\d+")
_gensym_ctr = itertools.count()


class HandleReopenWarning(RuntimeWarning):
    """A stream could not be reopened from its recorded descriptor."""
    pass


class Handle(Tieable):
    """Symbol entry; stream methods go to a tie handler when one is attached."""

    name: Optional[str] = None
    package: Optional[str] = None
    scalar: Any = None
    array: Any = None
    hash: Any = None
    code: Any = None
    io: Any = None

    def __init__(self, name: Optional[str] = None, package: Optional[str] = None, *,
                 scalar=None, array=None, hash=None, code=None, io=None):
        if name is None:
            name, package = f"GEN{next(_gensym_ctr)}", ANON_PACKAGE
        self.name = name
        self.package = package or "main"
        self.scalar = scalar if scalar is not None else Ref()
        self.array = array
        self.hash = hash
        self.code = code
        self.io = io

    @property
    def qualified_name(self) -> str:
        return f"{self.package}::{self.name}"

    def copy(self) -> "Handle":
        """New untied handle sharing every slot with this one."""
        dup = Handle.__new__(Handle)
        for attr in ("name", "package", "scalar", "array", "hash", "code", "io"):
            setattr(dup, attr, getattr(self, attr))
        return dup

    # -- stream API ---------------------------------------------------------
    def _target(self):
        if self._handler is not None:
            return self._handler
        if self.io is None:
            raise ValueError(f"handle {self.qualified_name} has no open stream")
        return self.io

    def write(self, data):
        return self._target().write(data)

    def read(self, size: int = -1):
        return self._target().read(size)

    def readline(self):
        return self._target().readline()

    def close(self):
        return self._target().close()

    def fileno(self):
        if self.io is None:
            raise ValueError(f"handle {self.qualified_name} has no open stream")
        return self.io.fileno()

    def __repr__(self):
        return f"<Handle *{self.qualified_name}>"


# ---------------------------------------------------------------------------
# Symbol table
# ---------------------------------------------------------------------------
_SYMBOLS: Dict[str, Handle] = {}


def symbol(package: str, name: str) -> Handle:
    """Return the named handle, creating and registering it on first use."""
    key = f"{package}::{name}"
    h = _SYMBOLS.get(key)
    if h is None:
        h = _SYMBOLS[key] = Handle(name, package)
    return h


def gensym() -> Handle:
    return Handle()


def is_real_name(package: Optional[str], name: Optional[str]) -> bool:
    """True unless the name looks anonymous (generated, or in ``Symbol``)."""
    if not (isinstance(package, str) and isinstance(name, str)):
        return False
    return bool(
        package and name
        and package != ANON_PACKAGE
        and not _GENERATED_NAME.match(name)
        and re.match(r"\w", name)
    )


def create_handle(package: Optional[str], name: Optional[str]) -> Handle:
    """Shared symbol entry for a real name, else a new unregistered handle.

    The unregistered handle keeps the recorded name when there is one.
    """
    if is_real_name(package, name):
        return symbol(package, name)
    if name:
        return Handle(name, package or ANON_PACKAGE)
    return gensym()


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------
def describe_stream(stream: Any) -> Dict[str, Any]:
    """IO / IOmode / IOseek slots for *stream*.

    ``IO`` is None when the stream has no descriptor; ``IOmode`` is only
    present when mode detection is available.
    """
    fd = fmode.fileno_of(stream)
    info: Dict[str, Any] = {SLOT_IO: fd}
    if fd is None:
        return info
    if fmode.HAS_FMODE:
        info[SLOT_IOMODE] = fmode.open_mode(stream)
    try:
        info[SLOT_IOSEEK] = os.lseek(fd, 0, os.SEEK_CUR)
    except OSError:
        info[SLOT_IOSEEK] = None
    return info


def guess_mode(fd: int) -> str:
    """Mode letters for an open descriptor whose mode was not recorded.

    Asks ``fcntl`` when available; otherwise a zero-length write tells a
    writable descriptor from a read-only one.
    """
    found = fmode.open_mode(fd) if fmode.HAS_FMODE else None
    if found:
        return found
    try:
        os.write(fd, b"")
    except OSError:
        return fmode.MODE_READ
    return fmode.MODE_WRITE


def recreate_stream(fd: int, mode: Optional[str] = None):
    """Open a stream on descriptor *fd* without taking ownership of it.

    A missing or unknown *mode* is guessed from the descriptor.  Returns
    None (after a ``HandleReopenWarning``) when the descriptor cannot be
    opened.
    """
    if mode not in fmode.PY_MODES:
        guessed = guess_mode(fd)
        LOGGER.debug("fd=%s recorded mode %r, reopening as %r", fd, mode, guessed)
        mode = guessed

    try:
        return open(fd, fmode.PY_MODES[mode], closefd=False)
    except (OSError, ValueError) as exc:
        warnings.warn(
            f"Couldn't open filehandle for descriptor {fd} with mode {mode}: {exc}",
            HandleReopenWarning,
            stacklevel=2,
        )
    return None
