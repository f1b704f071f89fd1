"""Exceptions raised while compiling copybooks and accessing records."""

from __future__ import annotations


class CopybookError(Exception):
    """Base class for every error raised by cobrec."""


class GrammarError(CopybookError, ValueError):
    """A declaration or picture clause could not be parsed."""

    def __init__(self, message: str, line: str | None = None) -> None:
        super().__init__(f"{message}: {line!r}" if line else message)
        self.line = line


class UnsupportedFieldType(GrammarError):
    """A PICTURE format matched none of the known field grammars."""


class MissingRedefinesTarget(GrammarError):
    """REDEFINES names a field that is not an earlier sibling."""


class FieldOverflow(CopybookError, ValueError):
    """An encoded value does not fit the declared storage."""


class InvalidFieldData(CopybookError, ValueError):
    """Bytes or an input value cannot be interpreted for the field type."""


class UnknownField(CopybookError, LookupError):
    """A name or index is not part of the layout."""


class InvalidAssignment(CopybookError, TypeError):
    """A value was assigned to a group or an occurrence group."""


class RecordLengthError(CopybookError, ValueError):
    """A supplied buffer is shorter than the compiled record."""
