"""Accessor tree over a live record buffer.

`Record` exposes a group by field name and `Occurrences` exposes an OCCURS
field by index. Both materialize children lazily and cache them. A cached
scalar value remembers the bytes it was decoded from, so a write through any
accessor sharing the buffer (including REDEFINES aliases) is seen on the next
read, while an unchanged field keeps returning the same object.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from cobrec.copybook.fields import CodecConfig
from cobrec.copybook.nodes import Array, Group, Scalar
from cobrec.copybook.parser import normalize_name
from cobrec.errors import InvalidAssignment, RecordLengthError, UnknownField


@dataclass(frozen=True)
class _Cell:
    raw: bytes
    value: object


def _span(node: Scalar, buffer: bytearray, shift: int) -> tuple[int, int]:
    start = node.offset + shift
    end = start + node.length
    if end > len(buffer):
        raise RecordLengthError(
            f"{node.name} ends at byte {end}, past the {len(buffer)}-byte record"
        )
    return start, end


def _read(
    node: Scalar, buffer: bytearray, shift: int, config: CodecConfig, cell: _Cell | None
) -> _Cell:
    start, end = _span(node, buffer, shift)
    raw = bytes(buffer[start:end])
    if cell is not None and cell.raw == raw:
        return cell
    return _Cell(raw, node.field_type.decode(raw, config))


def _write(
    node: Scalar, buffer: bytearray, shift: int, config: CodecConfig, value: object
) -> None:
    start, end = _span(node, buffer, shift)
    buffer[start:end] = node.field_type.encode(value, config)


def _plain(value: object) -> object:
    if isinstance(value, Record):
        return value.to_dict()
    if isinstance(value, Occurrences):
        return value.to_list()
    return value


class Record:
    """Named access to the fields of a group.

    Names may use dashes or underscores. Fields inside plain (non-repeating)
    subgroups can be reached directly by name, or through the subgroup.

    >>> record = layout.new_record()
    >>> record["STATES"][1]["STATE-NAME"] = "OHIO"
    """

    def __init__(
        self, node: Group, buffer: bytearray, config: CodecConfig, shift: int = 0
    ) -> None:
        self._node = node
        self._buffer = buffer
        self._config = config
        self._shift = shift
        self._values: dict[str, _Cell] = {}
        self._children: dict[str, Record | Occurrences] = {}

    @property
    def name(self) -> str:
        return self._node.name

    @property
    def buffer(self) -> bytearray:
        """The underlying buffer, shared by every accessor of this record."""
        return self._buffer

    def _lookup(self, name: object) -> tuple[str, Scalar | Group | Array]:
        if not isinstance(name, str):
            raise UnknownField(f"{name!r} is not a field name")
        key = normalize_name(name)
        node = self._node.lookup.get(key)
        if node is None:
            raise UnknownField(f"'{name}' is not a field of {self._node.name}")
        return key, node

    def get(self, name: str) -> object:
        """Decoded value of a field, or an accessor for a group/OCCURS field."""
        key, node = self._lookup(name)
        if isinstance(node, Scalar):
            cell = _read(node, self._buffer, self._shift, self._config, self._values.get(key))
            self._values[key] = cell
            return cell.value
        child = self._children.get(key)
        if child is None:
            child = accessor_for(node, self._buffer, self._config, self._shift)
            self._children[key] = child
        return child

    def set(self, name: str, value: object) -> None:
        """Encode `value` into an elementary field."""
        key, node = self._lookup(name)
        if not isinstance(node, Scalar):
            raise InvalidAssignment(
                f"Cannot set {key} to {value!r}: it is a group, set its fields individually"
            )
        _write(node, self._buffer, self._shift, self._config, value)
        self._values.pop(key, None)

    def update(self, values: dict[str, object]) -> None:
        for name, value in values.items():
            self.set(name, value)

    def keys(self) -> list[str]:
        names = self._node.field_names()
        for name in names:
            self.get(name)
        return names

    def values(self) -> list[object]:
        return [self.get(name) for name in self.keys()]

    def items(self) -> list[tuple[str, object]]:
        return [(name, self.get(name)) for name in self.keys()]

    def to_dict(self) -> dict[str, object]:
        return {name: _plain(value) for name, value in self.items()}

    def to_bytes(self) -> bytes:
        start = self._node.offset + self._shift
        return bytes(self._buffer[start : start + self._node.length])

    def to_text(self) -> str:
        return self._config.to_text(self.to_bytes())

    def __getitem__(self, name: str) -> object:
        return self.get(name)

    def __setitem__(self, name: str, value: object) -> None:
        self.set(name, value)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and normalize_name(name) in self._node.lookup

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def __len__(self) -> int:
        return len(self._node.field_names())

    def __bytes__(self) -> bytes:
        return self.to_bytes()

    def __repr__(self) -> str:
        return f"Record({self.to_dict()!r})"


class Occurrences:
    """Indexed access to the occurrences of an OCCURS field."""

    def __init__(
        self, node: Array, buffer: bytearray, config: CodecConfig, shift: int = 0
    ) -> None:
        self._node = node
        self._buffer = buffer
        self._config = config
        self._shift = shift
        self._values: list[_Cell | None] = [None] * node.count
        self._children: list[Record | None] = [None] * node.count

    @property
    def name(self) -> str:
        return self._node.name

    def _index(self, index: object) -> int:
        if not isinstance(index, int) or isinstance(index, bool):
            raise UnknownField(f"{index!r} is not an occurrence index")
        position = index + self._node.count if index < 0 else index
        if not 0 <= position < self._node.count:
            raise UnknownField(
                f"index {index} is out of range for {self._node.name} "
                f"({self._node.count} occurrences)"
            )
        return position

    def _element_shift(self, position: int) -> int:
        return self._shift + position * self._node.element_length

    def get(self, index: int) -> object:
        position = self._index(index)
        element = self._node.element
        if isinstance(element, Scalar):
            cell = _read(
                element, self._buffer, self._element_shift(position), self._config,
                self._values[position],
            )
            self._values[position] = cell
            return cell.value
        child = self._children[position]
        if child is None:
            child = Record(element, self._buffer, self._config, self._element_shift(position))
            self._children[position] = child
        return child

    def set(self, index: int, value: object) -> None:
        position = self._index(index)
        element = self._node.element
        if not isinstance(element, Scalar):
            raise InvalidAssignment(
                f"Cannot set {self._node.name}[{index}] to {value!r}: it is a group field"
            )
        _write(element, self._buffer, self._element_shift(position), self._config, value)
        self._values[position] = None

    def to_list(self) -> list[object]:
        return [_plain(value) for value in self]

    def __getitem__(self, index: int) -> object:
        return self.get(index)

    def __setitem__(self, index: int, value: object) -> None:
        self.set(index, value)

    def __len__(self) -> int:
        return self._node.count

    def __iter__(self) -> Iterator[object]:
        for position in range(self._node.count):
            yield self.get(position)

    def __repr__(self) -> str:
        return f"Occurrences({self.to_list()!r})"


def accessor_for(
    node: Group | Array, buffer: bytearray, config: CodecConfig, shift: int = 0
) -> Record | Occurrences:
    if isinstance(node, Array):
        return Occurrences(node, buffer, config, shift)
    return Record(node, buffer, config, shift)
