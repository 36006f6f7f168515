"""Path expressions locating a value relative to the encoded root.

The encoder records, for every reference it visits, a string such as
``${$VAR->[0]->{name}}`` saying how to reach it from the root.  A repeat
visit is written out as that string instead of being encoded again, and the
decoder resolves it against the rebuilt root.

Grammar (``P`` is any path)::

    $VAR                 root
    P->[3]               sequence index
    P->{name}            mapping key; 'quoted' unless a plain identifier
    ${P}                 dereference a Ref
    *{P}  *{P}{SLOT}     a handle / one of its slots
    tied(@{P})           handler of a tied container (sigil @ % $ *)
    untied(@{P})         storage underneath a tied container

Strings are parsed, never evaluated.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Tuple, Union

from .config import ENGINE_CONFIG
from .handles import Handle
from .models import ARRAY, GLOB, HASH, REF, SCALAR, Ref
from .tie import ProxyError, original_value, tied

ROOT = ENGINE_CONFIG["root_marker"]

OP_INDEX  = "INDEX"
OP_KEY    = "KEY"
OP_DEREF  = "DEREF"
OP_GLOB   = "GLOB"
OP_SLOT   = "SLOT"
OP_TIED   = "TIED"
OP_UNTIED = "UNTIED"

_SIGILS = {ARRAY: "@", HASH: "%", SCALAR: "$", REF: "$", GLOB: "*"}
_BARE_KEY = re.compile(r"^[A-Za-z_]\w*\Z")
_SLOT = re.compile(r"\{([A-Z]+)\}")
_INDEX = re.compile(r"\[(\d+)\]")


class PathError(ValueError):
    """Raised for a path expression that cannot be parsed or resolved."""
    pass


@dataclass(frozen=True)
class Step:
    op: str
    arg: Union[int, str, None] = None


# ---------------------------------------------------------------------------
# builders
# ---------------------------------------------------------------------------
def index_path(path: str, index: int) -> str:
    return f"{path}->[{index}]"


def key_path(path: str, key: str) -> str:
    if _BARE_KEY.match(key):
        return f"{path}->{{{key}}}"
    quoted = key.replace("\\", "\\\\").replace("'", "\\'")
    return f"{path}->{{'{quoted}'}}"


def deref_path(path: str) -> str:
    return f"${{{path}}}"


def glob_path(path: str, slot: str = None) -> str:
    if slot is None:
        return f"*{{{path}}}"
    return f"*{{{path}}}{{{slot}}}"


def tied_path(path: str, kind: str) -> str:
    return f"tied({_SIGILS[kind]}{{{path}}})"


def untied_path(path: str, kind: str) -> str:
    return f"untied({_SIGILS[kind]}{{{path}}})"


# ---------------------------------------------------------------------------
# parser
# ---------------------------------------------------------------------------
def parse(text: str) -> List[Step]:
    if not isinstance(text, str):
        raise PathError(f"path expression must be a string, got {type(text).__name__}")
    steps, pos = _parse_expr(text, 0)
    if pos != len(text):
        raise PathError(f"unexpected {text[pos:]!r} at offset {pos} in {text!r}")
    return steps


def _expect(text: str, pos: int, token: str) -> int:
    if not text.startswith(token, pos):
        raise PathError(f"expected {token!r} at offset {pos} in {text!r}")
    return pos + len(token)


def _parse_expr(text: str, pos: int) -> Tuple[List[Step], int]:
    if text.startswith(ROOT, pos):
        steps: List[Step] = []
        pos += len(ROOT)
    elif text.startswith("${", pos):
        inner, pos = _parse_expr(text, pos + 2)
        pos = _expect(text, pos, "}")
        steps = inner + [Step(OP_DEREF)]
    elif text.startswith("*{", pos):
        inner, pos = _parse_expr(text, pos + 2)
        pos = _expect(text, pos, "}")
        steps = inner + [Step(OP_GLOB)]
        m = _SLOT.match(text, pos)
        if m:
            steps.append(Step(OP_SLOT, m.group(1)))
            pos = m.end()
    elif text.startswith("tied(", pos) or text.startswith("untied(", pos):
        op = OP_TIED if text.startswith("tied(", pos) else OP_UNTIED
        pos += 5 if op == OP_TIED else 7
        if pos >= len(text) or text[pos] not in "@%$*":
            raise PathError(f"expected sigil at offset {pos} in {text!r}")
        pos = _expect(text, pos + 1, "{")
        inner, pos = _parse_expr(text, pos)
        pos = _expect(text, pos, "})")
        steps = inner + [Step(op)]
    else:
        raise PathError(f"cannot parse path at offset {pos} in {text!r}")

    while text.startswith("->", pos):
        pos += 2
        if text.startswith("[", pos):
            m = _INDEX.match(text, pos)
            if not m:
                raise PathError(f"bad index at offset {pos} in {text!r}")
            steps.append(Step(OP_INDEX, int(m.group(1))))
            pos = m.end()
        elif text.startswith("{", pos):
            key, pos = _parse_key(text, pos + 1)
            steps.append(Step(OP_KEY, key))
        else:
            raise PathError(f"expected [ or {{ at offset {pos} in {text!r}")
    return steps, pos


def _parse_key(text: str, pos: int) -> Tuple[str, int]:
    if text.startswith("'", pos):
        out = []
        pos += 1
        while pos < len(text):
            ch = text[pos]
            if ch == "\\" and pos + 1 < len(text):
                out.append(text[pos + 1])
                pos += 2
            elif ch == "'":
                return "".join(out), _expect(text, pos + 1, "}")
            else:
                out.append(ch)
                pos += 1
        raise PathError(f"unterminated quoted key in {text!r}")
    # bare key: everything up to the closing brace
    end = text.find("}", pos)
    if end < 0:
        raise PathError(f"unterminated key in {text!r}")
    return text[pos:end], end + 1


# ---------------------------------------------------------------------------
# resolver
# ---------------------------------------------------------------------------
def resolve(root: Any, path: Union[str, List[Step]]) -> Any:
    """Walk *path* from *root* and return the value found there."""
    steps = parse(path) if isinstance(path, str) else path
    cur = root
    for step in steps:
        try:
            if step.op == OP_INDEX:
                cur = list.__getitem__(cur, step.arg) if isinstance(cur, list) else cur[step.arg]
            elif step.op == OP_KEY:
                if isinstance(cur, dict):
                    cur = cur[step.arg]
                else:
                    cur = vars(cur)[step.arg]
            elif step.op == OP_DEREF:
                if not isinstance(cur, Ref):
                    raise PathError(f"cannot dereference a {type(cur).__name__}")
                cur = cur.value
            elif step.op == OP_GLOB:
                if not isinstance(cur, Handle):
                    raise PathError(f"{type(cur).__name__} is not a handle")
            elif step.op == OP_SLOT:
                cur = getattr(cur, step.arg.lower())
            elif step.op == OP_TIED:
                handler = tied(cur)
                if handler is None:
                    raise PathError(f"{type(cur).__name__} is not tied")
                cur = handler
            elif step.op == OP_UNTIED:
                cur = original_value(cur)
        except (KeyError, IndexError, TypeError, AttributeError, ProxyError) as exc:
            raise PathError(f"cannot resolve {step.op} {step.arg!r}: {exc}") from exc
    return cur
