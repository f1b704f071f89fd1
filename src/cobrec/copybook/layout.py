"""Copybook compiler: declared variables -> immutable record layout.

The compiler walks declarations in order keeping a stack of open groups, each
with its own running offset. An OCCURS group lays out its children for
occurrence 0; when the group closes, the parent's running offset advances by
`element_length * count`, which carries the size of deeply nested fields up
through every enclosing group.

A REDEFINES item starts at the offset of the sibling it redefines and does not
advance the running offset, so it never adds to its parent's length.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from functools import cached_property

from cobrec.copybook.fields import Alphanumeric, CodecConfig, FieldType, classify_picture
from cobrec.copybook.nodes import Array, Group, LayoutNode, Scalar
from cobrec.copybook.parser import (
    DeclaredVariable,
    normalize_name,
    parse_copybook,
    parse_definitions,
)
from cobrec.copybook.record import Record
from cobrec.errors import (
    CopybookError,
    GrammarError,
    MissingRedefinesTarget,
    RecordLengthError,
    UnknownField,
    UnsupportedFieldType,
)

logger = logging.getLogger(__name__)

ROOT = "<record>"
FIGURATIVE_FILL = {
    "LOW-VALUE": b"\x00",
    "LOW-VALUES": b"\x00",
    "HIGH-VALUE": b"\xff",
    "HIGH-VALUES": b"\xff",
}
_PATH_PART_RE = re.compile(r"^([A-Za-z0-9_-]+)((?:\[-?\d+\])*)$")


def _unquote(literal: str) -> str | None:
    if len(literal) >= 2 and literal[0] == literal[-1] and literal[0] in "'\"":
        quote = literal[0]
        return literal[1:-1].replace(quote * 2, quote)
    return None


def encode_value_literal(
    literal: str, field_type: FieldType, length: int, config: CodecConfig
) -> bytes:
    """Encode a VALUE clause literal into the bytes stored for the field."""
    text = literal.strip()
    upper = text.upper()
    if upper in FIGURATIVE_FILL:
        return FIGURATIVE_FILL[upper] * length
    if upper in {"SPACE", "SPACES"}:
        return config.to_bytes(" ") * length
    if upper.startswith("ALL "):
        pattern = text[4:].strip()
        pattern = _unquote(pattern) or pattern
        raw = config.to_bytes(pattern)
        return (raw * (length // max(len(raw), 1) + 1))[:length]

    value: object
    if upper in {"ZERO", "ZEROS", "ZEROES"}:
        value = "0" * length if isinstance(field_type, Alphanumeric) else 0
    else:
        quoted = _unquote(text)
        value = quoted if quoted is not None else text
    return field_type.encode(value, config)


@dataclass
class _OpenGroup:
    """A group whose subordinate items are still being declared."""

    variable: DeclaredVariable | None
    offset: int
    cursor: int
    children: list[LayoutNode] = field(default_factory=list)

    @property
    def level(self) -> int:
        return self.variable.level if self.variable else 0


@dataclass
class _CompileContext:
    config: CodecConfig
    stack: list[_OpenGroup] = field(default_factory=list)
    last: DeclaredVariable | None = None  # most recent elementary item

    def __post_init__(self) -> None:
        self.stack.append(_OpenGroup(variable=None, offset=0, cursor=0))

    @property
    def current(self) -> _OpenGroup:
        return self.stack[-1]

    def close_until(self, level: int) -> None:
        while len(self.stack) > 1 and self.current.level >= level:
            self.close()

    def close(self) -> None:
        opened = self.stack.pop()
        variable = opened.variable
        if variable is None:
            raise GrammarError("the record root cannot be closed")
        length = opened.cursor - opened.offset
        if not opened.children:
            logger.warning("group %s declares no fields", variable.name)
        default = self.default_for(variable, Alphanumeric(length), length)
        group = Group(
            name=variable.name,
            offset=opened.offset,
            length=length,
            children=tuple(opened.children),
            redefines=variable.redefines,
            value=variable.value,
            default=default,
        )
        node: LayoutNode = group
        if variable.occurs:
            node = Array(
                name=variable.name,
                offset=opened.offset,
                element_length=length,
                count=variable.occurs,
                element=group,
                redefines=variable.redefines,
            )
        self.attach(node, variable)

    def attach(self, node: LayoutNode, variable: DeclaredVariable) -> None:
        if variable.redefines:
            target = self.find_sibling(variable)
            if node.length > target.length:
                logger.warning(
                    "%s redefines %s with a longer layout (%d > %d bytes)",
                    variable.name,
                    target.name,
                    node.length,
                    target.length,
                )
        else:
            self.current.cursor += node.length
        self.current.children.append(node)

    def find_sibling(self, variable: DeclaredVariable) -> LayoutNode:
        for sibling in reversed(self.current.children):
            if sibling.name == variable.redefines:
                return sibling
        raise MissingRedefinesTarget(
            f"{variable.name} redefines {variable.redefines}, which is not an earlier sibling",
            variable.line,
        )

    def start_offset(self, variable: DeclaredVariable) -> int:
        if variable.redefines:
            return self.find_sibling(variable).offset
        return self.current.cursor

    def default_for(
        self, variable: DeclaredVariable, field_type: FieldType, length: int
    ) -> bytes | None:
        if variable.value is None:
            return None
        try:
            return encode_value_literal(variable.value, field_type, length, self.config)
        except CopybookError as exc:
            message = f"VALUE {variable.value} does not fit: {exc}"
            raise GrammarError(message, variable.line) from exc

    def add(self, variable: DeclaredVariable) -> None:
        if self.last is not None and variable.level > self.last.level:
            raise GrammarError(
                f"{self.last.name} has a PICTURE and cannot contain {variable.name}",
                variable.line,
            )
        self.last = None
        self.close_until(variable.level)
        offset = self.start_offset(variable)

        if not variable.picture:
            self.stack.append(_OpenGroup(variable=variable, offset=offset, cursor=offset))
            return

        try:
            field_type = classify_picture(variable.picture)
        except UnsupportedFieldType as exc:
            raise UnsupportedFieldType(str(exc), variable.line) from exc
        default = self.default_for(variable, field_type, field_type.length)
        scalar = Scalar(
            name=variable.name,
            offset=offset,
            field_type=field_type,
            redefines=variable.redefines,
            value=variable.value,
            default=default,
        )
        node: LayoutNode = scalar
        if variable.occurs:
            node = Array(
                name=variable.name,
                offset=offset,
                element_length=scalar.length,
                count=variable.occurs,
                element=scalar,
                redefines=variable.redefines,
            )
        self.attach(node, variable)
        self.last = variable

    def finish(self) -> Group:
        while len(self.stack) > 1:
            self.close()
        root = self.stack[0]
        return Group(name=ROOT, offset=0, length=root.cursor, children=tuple(root.children))


@dataclass(frozen=True)
class LayoutEntry:
    """One row of a layout listing."""

    path: str
    depth: int
    kind: str
    offset: int
    length: int
    picture: str = ""
    occurs: int = 0
    redefines: str | None = None


class Layout:
    """A compiled copybook. Immutable and safe to share between records."""

    def __init__(
        self,
        root: Group,
        variables: list[DeclaredVariable],
        config: CodecConfig | None = None,
    ) -> None:
        self.root = root
        self.variables = tuple(variables)
        self.config = config or CodecConfig()

    def __repr__(self) -> str:
        return f"Layout(length={self.length}, fields={self.root.field_names()})"

    @property
    def length(self) -> int:
        return self.root.length

    @cached_property
    def has_defaults(self) -> bool:
        return any(node.default is not None for node, _shift in self._walk())

    @cached_property
    def default_template(self) -> bytes:
        """Record bytes with every VALUE clause applied at every occurrence."""
        buffer = bytearray(self.length)
        # groups come before their children, so elementary VALUEs win
        for node, shift in self._walk():
            if node.default is not None:
                start = node.offset + shift
                buffer[start : start + len(node.default)] = node.default
        # an oversized REDEFINES may carry a default past the record end
        return bytes(buffer[: self.length])

    def _walk(self) -> Iterator[tuple[Scalar | Group, int]]:
        def visit(node: LayoutNode, shift: int) -> Iterator[tuple[Scalar | Group, int]]:
            if isinstance(node, Array):
                for index in range(node.count):
                    yield from visit(node.element, shift + index * node.element_length)
                return
            yield node, shift
            if isinstance(node, Group):
                for child in node.children:
                    yield from visit(child, shift)

        for child in self.root.children:
            yield from visit(child, 0)

    def new_record(self, data: bytes | bytearray | memoryview | None = None) -> Record:
        """Bind an accessor tree to `data`, or to a fresh buffer of defaults.

        A bytearray is shared with the caller; other buffers are copied.
        """
        if data is None:
            if self.has_defaults:
                buffer = bytearray(self.default_template)
            else:
                buffer = bytearray(self.length)
        else:
            buffer = data if isinstance(data, bytearray) else bytearray(data)
            if len(buffer) < self.length:
                raise RecordLengthError(
                    f"buffer holds {len(buffer)} bytes, record needs {self.length}"
                )
        return Record(self.root, buffer, self.config)

    def find(self, path: str) -> tuple[LayoutNode, int]:
        """Resolve a path such as 'STATES[1].STATE_NAME' to (node, absolute offset)."""
        node: LayoutNode = self.root
        shift = 0
        for part in path.split("."):
            match = _PATH_PART_RE.match(part.strip())
            if not match or not isinstance(node, Group):
                raise UnknownField(f"'{path}' is not a path in this layout")
            child = node.lookup.get(normalize_name(match.group(1)))
            if child is None:
                raise UnknownField(f"'{match.group(1)}' is not a field of {node.name}")
            node = child
            for index in re.findall(r"\[(-?\d+)\]", match.group(2)):
                if not isinstance(node, Array):
                    raise UnknownField(f"'{part}' is not an OCCURS field")
                position = int(index)
                if position < 0:
                    position += node.count
                if not 0 <= position < node.count:
                    raise UnknownField(f"index {index} is out of range for {node.name}")
                shift += position * node.element_length
                node = node.element
        return node, node.offset + shift

    def iter_fields(self) -> Iterator[LayoutEntry]:
        """Flatten the layout for listings, occurrence 0 of every array."""

        def visit(node: LayoutNode, prefix: str, depth: int) -> Iterator[LayoutEntry]:
            path = f"{prefix}{node.name}"
            if isinstance(node, Array):
                element = node.element
                yield LayoutEntry(
                    path=f"{path}[]",
                    depth=depth,
                    kind="array",
                    offset=node.offset,
                    length=node.length,
                    picture=element.field_type.describe() if isinstance(element, Scalar) else "",
                    occurs=node.count,
                    redefines=node.redefines,
                )
                if isinstance(element, Group):
                    for child in element.children:
                        yield from visit(child, f"{path}[].", depth + 1)
            elif isinstance(node, Group):
                yield LayoutEntry(
                    path=path,
                    depth=depth,
                    kind="group",
                    offset=node.offset,
                    length=node.length,
                    redefines=node.redefines,
                )
                for child in node.children:
                    yield from visit(child, f"{path}.", depth + 1)
            else:
                yield LayoutEntry(
                    path=path,
                    depth=depth,
                    kind="field",
                    offset=node.offset,
                    length=node.length,
                    picture=node.field_type.describe(),
                    redefines=node.redefines,
                )

        for child in self.root.children:
            yield from visit(child, "", 0)


def compile_definitions(
    variables: Iterable[DeclaredVariable], config: CodecConfig | None = None
) -> Layout:
    """Compile parsed declarations into a Layout."""
    variables = list(variables)
    context = _CompileContext(config=config or CodecConfig())
    for variable in variables:
        context.add(variable)
    root = context.finish()
    logger.debug("compiled %d declarations into a %d byte record", len(variables), root.length)
    return Layout(root, variables, context.config)


def compile_copybook(
    source: str | Iterable[str], config: CodecConfig | None = None
) -> Layout:
    """Compile copybook text, or statements already split on periods, into a Layout."""
    if isinstance(source, str):
        variables = parse_copybook(source)
    else:
        variables = parse_definitions(source)
    return compile_definitions(variables, config)
