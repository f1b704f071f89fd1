"""Copybook grammar parser.

Turns copybook source into a flat, ordered list of DeclaredVariable entries.
Supported clauses:
- level number and name (dashes normalized to underscores)
- REDEFINES <name>
- PIC/PICTURE <format>, with an optional USAGE (COMP, COMP-3, BINARY, ...)
- VALUE <literal>
- OCCURS <n> [TIMES]
Level 88 condition names and level 66 RENAMES entries are skipped.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from cobrec.errors import GrammarError, UnsupportedFieldType

logger = logging.getLogger(__name__)

FILLER = "FILLER"
SKIPPED_LEVELS = {66, 88}

DECLARATION_RE = re.compile(r"^(\d{1,2})\s+([A-Za-z0-9_-]+)(?:\s+(.*))?$")
REDEFINES_RE = re.compile(r"^REDEFINES\s+([A-Za-z0-9_-]+)", re.IGNORECASE)
VALUE_RE = re.compile(
    r"\bVALUES?\s+(?:(?:IS|ARE)\s+)?((?:ALL\s+)?(?:'(?:[^']|'')*'|\"(?:[^\"]|\"\")*\"|[^\s'\"]+))",
    re.IGNORECASE,
)
OCCURS_RE = re.compile(r"\bOCCURS\s+(\d+)(?:\s+TIMES)?\b", re.IGNORECASE)
DEPENDING_RE = re.compile(r"\bDEPENDING\s+ON\b", re.IGNORECASE)
INDEXED_RE = re.compile(
    r"\b(?:INDEXED\s+BY|(?:ASCENDING|DESCENDING)\s+KEY\s+IS)\s+\S+", re.IGNORECASE
)
PIC_RE = re.compile(r"\bPIC(?:TURE)?\s+(?:IS\s+)?(\S+)", re.IGNORECASE)
USAGE_RE = re.compile(
    r"\b(?:USAGE\s+(?:IS\s+)?)?(COMP(?:UTATIONAL)?(?:-[345])?|BINARY|PACKED-DECIMAL)(?=\s|$)",
    re.IGNORECASE,
)
# storage classes that take no PICTURE and have no fixed-point codec
UNPICTURED_USAGE_RE = re.compile(
    r"(?<![\w-])(?:COMP(?:UTATIONAL)?-[12]|POINTER|INDEX)(?![\w-])", re.IGNORECASE
)


@dataclass(frozen=True)
class DeclaredVariable:
    level: int
    name: str
    picture: str | None = None
    occurs: int = 0
    redefines: str | None = None
    value: str | None = None
    parent: str | None = None  # nearest enclosing declaration
    occurs_group: str | None = None  # nearest enclosing OCCURS group
    redefines_group: str | None = None  # nearest enclosing REDEFINES item
    line: str = ""

    @property
    def is_filler(self) -> bool:
        return self.name == FILLER


def normalize_name(name: str) -> str:
    """Dashes and underscores are interchangeable in field names."""
    return name.replace("-", "_")


def _strip_source_line(raw: str) -> str | None:
    """Drop sequence areas and comments; None means the line carries no code."""
    line = raw.rstrip("\r\n")
    if len(line) >= 7 and (line[:6].isdigit() or not line[:6].strip()):
        indicator = line[6]
        if indicator in "*/":
            return None
        # columns 73-80 are the identification area
        line = " " + line[7:72] if line[:6].isdigit() else line[:72]
    if "*>" in line:
        line = line[: line.index("*>")]
    if line.lstrip().startswith("*"):
        return None
    return line


def _collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace to one space, except inside quoted literals."""
    out: list[str] = []
    quote: str | None = None
    for char in text.strip():
        if quote:
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char.isspace():
            if out and out[-1] != " ":
                out.append(" ")
            continue
        out.append(char)
    return "".join(out)


def split_statements(text: str) -> list[str]:
    """Split copybook source on clause-terminating periods.

    A period ends a statement when it is followed by whitespace or the end of
    the text and is outside a quoted literal. Whitespace outside literals is
    collapsed.
    """
    lines = [line for line in map(_strip_source_line, text.splitlines()) if line is not None]
    source = "\n".join(lines)
    statements: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for idx, char in enumerate(source):
        if quote:
            if char == quote:
                quote = None
        elif char in "'\"":
            quote = char
        elif char == "." and (idx + 1 == len(source) or source[idx + 1].isspace()):
            statements.append("".join(current))
            current = []
            continue
        current.append(char)
    statements.append("".join(current))
    return [_collapse_whitespace(s) for s in statements if s.strip()]


def _enclosing(stack: list[tuple[int, str]], level: int) -> str | None:
    while stack and stack[-1][0] >= level:
        stack.pop()
    return stack[-1][1] if stack else None


def parse_declaration(line: str) -> tuple[int, str, dict]:
    """Parse one statement into (level, name, clauses)."""
    text = _collapse_whitespace(line).rstrip(".")
    match = DECLARATION_RE.match(text)
    if not match:
        raise GrammarError("Could not parse level and name", line)
    level = int(match.group(1))
    name = match.group(2)
    rest = match.group(3) or ""
    if name.upper() in {"PIC", "PICTURE", "VALUE", "OCCURS", "REDEFINES"}:
        # unnamed elementary items are implicit fillers
        rest = f"{match.group(2)} {rest}"
        name = FILLER

    clauses: dict = {"redefines": None, "value": None, "occurs": 0, "picture": None}
    redefines = REDEFINES_RE.match(rest)
    if redefines:
        clauses["redefines"] = normalize_name(redefines.group(1))
        rest = rest[redefines.end() :]

    value = VALUE_RE.search(rest)
    if value:
        clauses["value"] = value.group(1)
        rest = rest[: value.start()] + rest[value.end() :]

    if DEPENDING_RE.search(rest):
        raise GrammarError("OCCURS DEPENDING ON is not supported", line)
    occurs = OCCURS_RE.search(rest)
    if occurs:
        clauses["occurs"] = int(occurs.group(1))
        if clauses["occurs"] < 1:
            raise GrammarError("OCCURS count must be positive", line)
        rest = INDEXED_RE.sub("", rest[: occurs.start()] + rest[occurs.end() :])

    picture = PIC_RE.search(rest)
    if picture:
        fmt = picture.group(1).upper()
        rest = rest[: picture.start()] + rest[picture.end() :]
        usage = USAGE_RE.search(rest)
        clauses["picture"] = f"{fmt} {usage.group(1).upper()}" if usage else fmt
    elif UNPICTURED_USAGE_RE.search(rest):
        raise UnsupportedFieldType("Usage without a PICTURE is not supported", line)
    elif USAGE_RE.search(rest):
        raise UnsupportedFieldType("USAGE on a group item is not supported", line)
    if name.upper() == FILLER:
        name = FILLER
    return level, normalize_name(name), clauses


def parse_definitions(lines: Iterable[str]) -> list[DeclaredVariable]:
    """Parse declaration statements (already split on periods) in order."""
    variables: list[DeclaredVariable] = []
    open_items: list[tuple[int, str]] = []
    occurs_groups: list[tuple[int, str]] = []
    redefines_groups: list[tuple[int, str]] = []

    for line in lines:
        if not line.strip():
            continue
        level, name, clauses = parse_declaration(line)
        if level in SKIPPED_LEVELS:
            logger.debug("skipping level %02d entry %s", level, name)
            continue
        if level == 77:
            level = 1
        if not 1 <= level <= 49:
            raise GrammarError(f"Level {level} is outside 01-49", line)

        variable = DeclaredVariable(
            level=level,
            name=name,
            picture=clauses["picture"],
            occurs=clauses["occurs"],
            redefines=clauses["redefines"],
            value=clauses["value"],
            parent=_enclosing(open_items, level),
            occurs_group=_enclosing(occurs_groups, level),
            redefines_group=_enclosing(redefines_groups, level),
            line=line,
        )
        variables.append(variable)

        open_items.append((level, name))
        if variable.redefines:
            redefines_groups.append((level, name))
        if variable.occurs and not variable.picture:
            occurs_groups.append((level, name))
    return variables


def parse_copybook(text: str) -> list[DeclaredVariable]:
    """Split copybook source into statements and parse every declaration."""
    return parse_definitions(split_statements(text))
