"""Open-mode detection for stream handles.

Answers "is this a stream with a descriptor, and is it read-only,
write-only, append or read-write".  Relies on ``fcntl``; where that module
does not exist ``HAS_FMODE`` is false and callers omit the mode.
"""
from __future__ import annotations

import os
from typing import Any, Optional

try:
    import fcntl  # type: ignore
    HAS_FMODE = True
except ModuleNotFoundError:  # pragma: no cover - non-POSIX
    fcntl = None
    HAS_FMODE = False

MODE_READ         = "<"
MODE_WRITE        = ">"
MODE_APPEND       = ">>"
MODE_READ_WRITE   = "+<"
MODE_READ_APPEND  = "+>>"

# recorded mode -> mode argument for open(fd, ...)
PY_MODES = {
    MODE_READ: "r",
    MODE_WRITE: "w",
    MODE_APPEND: "a",
    MODE_READ_WRITE: "r+",
    MODE_READ_APPEND: "a+",
}


def fileno_of(stream: Any) -> Optional[int]:
    """Descriptor number of *stream*, or None when it has none."""
    try:
        fd = stream.fileno()
    except (AttributeError, OSError, ValueError):
        # io.UnsupportedOperation is both OSError and ValueError
        return None
    return fd if isinstance(fd, int) else None


def is_fh(stream: Any) -> bool:
    return fileno_of(stream) is not None


def open_mode(stream: Any) -> Optional[str]:
    """Mode letters for *stream* (or a bare descriptor number)."""
    fd = stream if isinstance(stream, int) else fileno_of(stream)
    if fd is None or not HAS_FMODE:
        return None
    try:
        flags = fcntl.fcntl(fd, fcntl.F_GETFL)
    except OSError:
        return None

    access = flags & (os.O_RDONLY | os.O_WRONLY | os.O_RDWR)
    append = bool(flags & os.O_APPEND)
    if access == os.O_RDONLY:
        return MODE_READ
    if access == os.O_WRONLY:
        return MODE_APPEND if append else MODE_WRITE
    return MODE_READ_APPEND if append else MODE_READ_WRITE
