"""Field codecs for COBOL PICTURE clauses.

Storage classes:
- alphanumeric (X, A, B) and edited pictures, stored as text
- zoned decimal (USAGE DISPLAY), one digit per byte with an overpunched sign
- packed decimal (COMP-3 / PACKED-DECIMAL), two digits per byte plus a sign nibble
- binary (COMP, COMP-4, COMP-5, BINARY), big-endian two's complement

Text conversion goes through CodecConfig so callers can plug in any codepage.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext

from cobrec.errors import FieldOverflow, InvalidFieldData, UnsupportedFieldType

DEFAULT_CODEPAGE = "cp037"

# Last-digit overpunch characters; index is the digit value.
OVERPUNCH_POSITIVE = "{ABCDEFGHI"
OVERPUNCH_NEGATIVE = "}JKLMNOPQR"
DIGITS = "0123456789"

_USAGE = r"(?:\s+(?:USAGE\s+)?(?:IS\s+)?(?P<usage>[A-Z0-9-]+))?"
_ALPHA_RE = re.compile(r"^(?P<runs>(?:[XAB](?:\(\d+\))?)+)" + _USAGE + r"\.?$")
_NINES = r"(?:9(?:\(\d+\))?)+"
_NUMERIC_RE = re.compile(
    rf"^(?P<sign>S)?(?:(?P<int>{_NINES})(?:V(?P<frac>{_NINES})?)?|V(?P<vfrac>{_NINES}))"
    + _USAGE
    + r"\.?$"
)
_EDITED_RE = re.compile(r"^[+\-XAB0-9Z/,.]+$")
_RUN_RE = re.compile(r"[XAB9](?:\((\d+)\))?")

BINARY_USAGES = frozenset(
    {"COMP", "COMP-4", "COMP-5", "BINARY", "COMPUTATIONAL", "COMPUTATIONAL-4", "COMPUTATIONAL-5"}
)
PACKED_USAGES = frozenset({"COMP-3", "COMPUTATIONAL-3", "PACKED-DECIMAL"})
DISPLAY_USAGES = frozenset({"DISPLAY"})


@dataclass(frozen=True)
class CodecConfig:
    """How text is converted to and from bytes for a compiled layout.

    `decode_text`/`encode_text` override the codec lookup for `encoding`, which
    lets callers supply their own translation tables.
    """

    encoding: str = DEFAULT_CODEPAGE
    trim: bool = True
    decode_text: Callable[[bytes], str] | None = None
    encode_text: Callable[[str], bytes] | None = None

    def to_text(self, data: bytes) -> str:
        if self.decode_text is not None:
            return self.decode_text(bytes(data))
        return bytes(data).decode(self.encoding, errors="replace")

    def to_bytes(self, text: str) -> bytes:
        if self.encode_text is not None:
            return self.encode_text(text)
        try:
            return text.encode(self.encoding)
        except UnicodeEncodeError as exc:
            raise InvalidFieldData(f"{text!r} cannot be encoded as {self.encoding}") from exc


def _run_length(runs: str) -> int:
    """Count the characters described by runs such as 'X(10)', 'XXX' or '99(3)'."""
    return sum(int(count) if count else 1 for count in _RUN_RE.findall(runs))


class FieldType:
    """Common interface of the PICTURE storage classes."""

    def decode(self, data: bytes, config: CodecConfig) -> object:
        raise NotImplementedError

    def encode(self, value: object, config: CodecConfig) -> bytes:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class Alphanumeric(FieldType):
    length: int
    edited: bool = False

    def decode(self, data: bytes, config: CodecConfig) -> str:
        text = config.to_text(data)
        return text.rstrip(" \x00") if config.trim else text

    def encode(self, value: object, config: CodecConfig) -> bytes:
        text = "" if value is None else value if isinstance(value, str) else str(value)
        raw = config.to_bytes(text)
        if len(raw) > self.length:
            raise FieldOverflow(
                f"{text!r} needs {len(raw)} bytes, field holds {self.length}"
            )
        return raw + config.to_bytes(" ") * (self.length - len(raw))

    def describe(self) -> str:
        return f"EDITED({self.length})" if self.edited else f"X({self.length})"


@dataclass(frozen=True)
class _Numeric(FieldType):
    int_digits: int
    frac_digits: int
    signed: bool

    @property
    def digits(self) -> int:
        return self.int_digits + self.frac_digits

    def to_scaled(self, value: object) -> int:
        """Convert a value to the stored integer, i.e. value * 10**frac_digits."""
        if value is None:
            return 0
        if isinstance(value, bool):
            raise InvalidFieldData(f"{value!r} is not a numeric value")
        with localcontext() as ctx:
            ctx.prec = max(28, self.digits + 12)
            if isinstance(value, Decimal):
                number = value
            elif isinstance(value, int):
                number = Decimal(value)
            elif isinstance(value, float):
                number = Decimal(str(value))
            elif isinstance(value, str):
                text = value.strip()
                try:
                    number = Decimal(text) if text else Decimal(0)
                except InvalidOperation as exc:
                    raise InvalidFieldData(f"{value!r} is not a numeric value") from exc
            else:
                raise InvalidFieldData(f"{value!r} is not a numeric value")
            if not number.is_finite():
                raise InvalidFieldData(f"{value!r} is not a finite number")
            scaled = int(number.scaleb(self.frac_digits).quantize(Decimal(1), ROUND_HALF_UP))
        if scaled < 0 and not self.signed:
            raise FieldOverflow(f"{value!r} is negative, field is unsigned")
        if abs(scaled) >= 10**self.digits:
            raise FieldOverflow(
                f"{value!r} does not fit {self.int_digits} integer and "
                f"{self.frac_digits} decimal digits"
            )
        return scaled

    def from_scaled(self, scaled: int) -> int | Decimal:
        if not self.frac_digits:
            return scaled
        with localcontext() as ctx:
            ctx.prec = max(28, self.digits + 12)
            return Decimal(scaled).scaleb(-self.frac_digits)

    def _picture(self) -> str:
        parts = ["S" if self.signed else ""]
        if self.int_digits:
            parts.append(f"9({self.int_digits})")
        if self.frac_digits:
            parts.append(f"V9({self.frac_digits})")
        return "".join(parts)


@dataclass(frozen=True)
class ZonedDecimal(_Numeric):
    @property
    def length(self) -> int:
        return self.digits

    def decode(self, data: bytes, config: CodecConfig) -> int | Decimal:
        text = config.to_text(data)
        last = len(text) - 1
        negative = False
        scaled = 0
        for position, (char, byte) in enumerate(zip(text, data, strict=False)):
            if char in DIGITS:
                digit = DIGITS.index(char)
            elif char in OVERPUNCH_POSITIVE:
                digit = OVERPUNCH_POSITIVE.index(char)
            elif char in OVERPUNCH_NEGATIVE:
                digit = OVERPUNCH_NEGATIVE.index(char)
                negative = True
            elif char in "+-" and position in (0, last):
                negative = char == "-"
                continue
            elif char == " ":
                digit = 0
            else:
                # unknown zone, e.g. low-values; the digit lives in the low nibble
                digit = byte & 0x0F
                if digit > 9:
                    raise InvalidFieldData(f"byte {byte:#04x} is not a zoned decimal digit")
            scaled = scaled * 10 + digit
        return self.from_scaled(-scaled if negative else scaled)

    def encode(self, value: object, config: CodecConfig) -> bytes:
        scaled = self.to_scaled(value)
        text = str(abs(scaled)).rjust(self.digits, "0")
        if self.signed:
            table = OVERPUNCH_NEGATIVE if scaled < 0 else OVERPUNCH_POSITIVE
            text = text[:-1] + table[int(text[-1])]
        return config.to_bytes(text)

    def describe(self) -> str:
        return self._picture()


@dataclass(frozen=True)
class PackedDecimal(_Numeric):
    @property
    def length(self) -> int:
        return self.digits // 2 + 1

    def decode(self, data: bytes, config: CodecConfig) -> int | Decimal:
        scaled = 0
        last = len(data) - 1
        for index, byte in enumerate(data):
            nibbles = (byte >> 4, byte & 0x0F) if index < last else (byte >> 4,)
            for nibble in nibbles:
                if nibble > 9:
                    raise InvalidFieldData(f"byte {byte:#04x} is not packed decimal")
                scaled = scaled * 10 + nibble
        if data and (data[-1] & 0x0F) in (0x0B, 0x0D):
            scaled = -scaled
        return self.from_scaled(scaled)

    def encode(self, value: object, config: CodecConfig) -> bytes:
        scaled = self.to_scaled(value)
        nibbles = [int(ch) for ch in str(abs(scaled)).rjust(self.length * 2 - 1, "0")]
        nibbles.append(0x0D if scaled < 0 else 0x0C)
        return bytes((hi << 4) | lo for hi, lo in zip(nibbles[0::2], nibbles[1::2], strict=True))

    def describe(self) -> str:
        return f"{self._picture()} COMP-3"


@dataclass(frozen=True)
class Binary(_Numeric):
    @property
    def length(self) -> int:
        if self.digits <= 4:
            return 2
        if self.digits <= 9:
            return 4
        if self.digits <= 18:
            return 8
        # wide fields: enough bytes for the largest declared value plus a sign bit
        return ((10**self.digits - 1).bit_length() + 8) // 8

    def decode(self, data: bytes, config: CodecConfig) -> int | Decimal:
        return self.from_scaled(int.from_bytes(data, "big", signed=self.signed))

    def encode(self, value: object, config: CodecConfig) -> bytes:
        return self.to_scaled(value).to_bytes(self.length, "big", signed=self.signed)

    def describe(self) -> str:
        return f"{self._picture()} COMP"


def classify_picture(picture: str) -> FieldType:
    """Map a PICTURE format (with optional usage clause) to its field type.

    >>> classify_picture("S9(5)V99 COMP-3")
    PackedDecimal(int_digits=5, frac_digits=2, signed=True)
    """
    text = " ".join(picture.upper().split())

    match = _ALPHA_RE.match(text)
    if match and match.group("usage") in (None, *DISPLAY_USAGES):
        return Alphanumeric(length=_run_length(match.group("runs")))

    match = _NUMERIC_RE.match(text)
    if match:
        usage = match.group("usage")
        int_digits = _run_length(match.group("int") or "")
        frac_digits = _run_length(match.group("frac") or match.group("vfrac") or "")
        signed = match.group("sign") is not None
        if usage is None or usage in DISPLAY_USAGES:
            return ZonedDecimal(int_digits, frac_digits, signed)
        if usage in PACKED_USAGES:
            return PackedDecimal(int_digits, frac_digits, signed)
        if usage in BINARY_USAGES:
            return Binary(int_digits, frac_digits, signed)
        raise UnsupportedFieldType(f"Unsupported usage {usage}", picture)

    if _EDITED_RE.match(text):
        return Alphanumeric(length=len(text), edited=True)

    raise UnsupportedFieldType("Could not determine the field type", picture)
