"""Compiled layout nodes.

Offsets are absolute within the record for occurrence 0 of every enclosing
OCCURS group; accessors add `index * element_length` for each array they
descend through.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from cobrec.copybook.fields import FieldType
from cobrec.copybook.parser import FILLER


@dataclass(frozen=True)
class Scalar:
    name: str
    offset: int
    field_type: FieldType
    redefines: str | None = None
    value: str | None = None  # raw VALUE literal
    default: bytes | None = field(default=None, repr=False)  # encoded VALUE

    @property
    def length(self) -> int:
        return self.field_type.length


@dataclass(frozen=True)
class Group:
    name: str
    offset: int
    length: int
    children: tuple[Scalar | Group | Array, ...] = ()
    redefines: str | None = None
    value: str | None = None
    default: bytes | None = field(default=None, repr=False)
    lookup: Mapping[str, Scalar | Group | Array] = field(
        init=False, repr=False, compare=False
    )

    def __post_init__(self) -> None:
        # direct children first, then names visible through plain subgroups
        lookup: dict[str, Scalar | Group | Array] = {}
        for child in self.children:
            if child.name != FILLER:
                lookup.setdefault(child.name, child)
        for child in self.children:
            if isinstance(child, Group):
                for name, node in child.lookup.items():
                    lookup.setdefault(name, node)
        object.__setattr__(self, "lookup", MappingProxyType(lookup))

    def field_names(self) -> list[str]:
        """Names of the direct, addressable children in declaration order."""
        return list(dict.fromkeys(c.name for c in self.children if c.name != FILLER))


@dataclass(frozen=True)
class Array:
    name: str
    offset: int
    element_length: int
    count: int
    element: Scalar | Group
    redefines: str | None = None

    @property
    def length(self) -> int:
        return self.element_length * self.count


LayoutNode = Scalar | Group | Array
