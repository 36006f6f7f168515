"""Type-tag registry.

Maps tag names to classes so the decoder can rebuild tagged values without
importing anything by name.  A tag is either given at registration time or
defaults to ``"<module>.<qualname>"``.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type

from .handles import Handle
from .models import ARRAY, GLOB, HASH, REF, SCALAR, VSTRING, Ref
from .tie import (
    MappingHandler,
    ProxyDict,
    ProxyList,
    ScalarHandler,
    SequenceHandler,
    StreamHandler,
)

LOGGER = logging.getLogger("explicit_metadata.registry")
LOGGER.addHandler(logging.NullHandler())

# types the engine describes through __reftype alone
UNTAGGED_TYPES = frozenset({list, dict, Ref, Handle, ProxyList, ProxyDict})

# kind -> base class a tagged class must derive from (HASH also takes plain objects)
_KIND_BASES = {
    ARRAY: list,
    SCALAR: Ref,
    REF: Ref,
    VSTRING: Ref,
    GLOB: Handle,
}


def qualified_name(cls: type) -> str:
    return f"{cls.__module__}.{cls.__qualname__}"


class TypeRegistry:
    def __init__(self):
        self._by_tag: Dict[str, type] = {}
        self._by_type: Dict[type, str] = {}

    def register(self, cls: Type[Any], tag: Optional[str] = None) -> Type[Any]:
        tag = tag or qualified_name(cls)
        self._by_tag[tag] = cls
        self._by_type[cls] = tag
        return cls

    def tag_for(self, value: Any) -> Optional[str]:
        cls = type(value)
        if cls in UNTAGGED_TYPES:
            return None
        return self._by_type.get(cls) or qualified_name(cls)

    def lookup(self, tag: str) -> Optional[type]:
        return self._by_tag.get(tag)

    def new(self, tag: str, kind: str) -> Any:
        """Blank instance for *tag*, or None when the tag is unknown.

        Raises TypeError when the registered class cannot hold *kind*.
        """
        cls = self.lookup(tag)
        if cls is None:
            LOGGER.warning("no class registered for type tag %r; leaving it untagged", tag)
            return None
        base = _KIND_BASES.get(kind)
        if kind == HASH:
            if issubclass(cls, (list, Ref, Handle)):
                raise TypeError(f"type tag {tag} ({cls.__name__}) cannot hold a {kind}")
        elif base is None or not issubclass(cls, base):
            raise TypeError(f"type tag {tag} ({cls.__name__}) cannot hold a {kind}")
        return cls.__new__(cls)

    def __contains__(self, tag: str) -> bool:
        return tag in self._by_tag


DEFAULT_REGISTRY = TypeRegistry()
for _cls in (SequenceHandler, MappingHandler, ScalarHandler, StreamHandler):
    DEFAULT_REGISTRY.register(_cls)


def register_type(cls: Optional[type] = None, *, tag: Optional[str] = None,
                  registry: Optional[TypeRegistry] = None):
    """Register *cls* with the default (or given) registry.

    Works bare (``@register_type``) or with arguments
    (``@register_type(tag="My::Class")``).
    """
    reg = registry or DEFAULT_REGISTRY

    def deco(c):
        return reg.register(c, tag)

    if cls is None:
        return deco
    return deco(cls)
