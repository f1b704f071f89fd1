import logging

import pytest

from cobrec.copybook.fields import Alphanumeric, CodecConfig, PackedDecimal, ZonedDecimal
from cobrec.copybook.layout import _CompileContext, compile_copybook
from cobrec.copybook.nodes import Array, Group, Scalar
from cobrec.errors import (
    GrammarError,
    MissingRedefinesTarget,
    RecordLengthError,
    UnknownField,
    UnsupportedFieldType,
)

STATES = """
01 TESTING-COPYBOOK.
   03  TEST-NAME                         PIC X(10).
   03  STATES OCCURS 2 TIMES .
       05  STATE-ABBR                    PIC XX.
       05  STATE-NAMES OCCURS 2 TIMES.
           08  STATE-NUM                 PIC 99.
           08  STATE-NAME                PIC X(10).
       05  STATE-RANKING                 PIC 9.
   03  theEnd                            PIC XXX.
"""


def test_offsets_are_cumulative():
    layout = compile_copybook("01 R. 05 A PIC X(3). 05 B PIC 9(2).")
    assert layout.length == 5
    a, a_offset = layout.find("A")
    b, b_offset = layout.find("B")
    assert (a_offset, b_offset) == (0, 3)
    assert isinstance(a, Scalar) and a.field_type == Alphanumeric(3)
    assert b.field_type == ZonedDecimal(2, 0, False)


def test_redefines_does_not_add_length():
    layout = compile_copybook(
        """
        01 REC.
           05 A PIC X(4).
           05 B REDEFINES A PIC 9(4).
           05 C PIC X(2).
        """
    )
    assert layout.length == 6
    assert layout.find("B")[1] == 0
    assert layout.find("C")[1] == 4


def test_group_redefines_overlays_sibling():
    layout = compile_copybook(
        """
        01 REC.
           05 DATE-TEXT PIC X(8).
           05 DATE-PARTS REDEFINES DATE-TEXT.
              10 YYYY PIC 9(4).
              10 MM PIC 99.
              10 DD PIC 99.
           05 AMOUNT PIC S9(5)V99 COMP-3.
        """
    )
    assert layout.length == 12
    parts, offset = layout.find("DATE_PARTS")
    assert isinstance(parts, Group)
    assert (offset, parts.length, parts.redefines) == (0, 8, "DATE_TEXT")
    assert layout.find("DD")[1] == 6
    amount, amount_offset = layout.find("AMOUNT")
    assert amount_offset == 8
    assert amount.field_type == PackedDecimal(5, 2, True)


def test_oversized_redefines_is_logged(caplog):
    with caplog.at_level(logging.WARNING):
        layout = compile_copybook("01 REC. 05 A PIC X(2). 05 B REDEFINES A PIC X(4).")
    assert layout.length == 2
    assert "longer layout" in caplog.text


def test_occurs_group_offsets():
    layout = compile_copybook("01 R. 05 G OCCURS 2 TIMES. 10 X PIC X(2).")
    assert layout.length == 4
    array, _ = layout.find("G")
    assert isinstance(array, Array)
    assert (array.count, array.element_length) == (2, 2)
    assert layout.find("G[1].X")[1] == 2


def test_nested_occurs_propagate_length():
    layout = compile_copybook(STATES)
    assert layout.length == 67
    assert layout.find("STATES[0].STATE_ABBR")[1] == 10
    assert layout.find("STATES[1].STATE_ABBR")[1] == 37
    assert layout.find("STATES[1].STATE_NAMES[1].STATE_NAME")[1] == 53
    assert layout.find("STATES[-1].STATE_RANKING")[1] == 63
    assert layout.find("theEnd")[1] == 64


def test_occurs_on_elementary_item():
    layout = compile_copybook("01 R. 05 CODES PIC X(3) OCCURS 4 TIMES. 05 TAIL PIC X.")
    codes, offset = layout.find("CODES")
    assert isinstance(codes, Array) and isinstance(codes.element, Scalar)
    assert (offset, codes.length) == (0, 12)
    assert layout.find("TAIL")[1] == 12
    assert layout.find("CODES[3]")[1] == 9


def test_find_rejects_bad_paths():
    layout = compile_copybook(STATES)
    with pytest.raises(UnknownField):
        layout.find("NOPE")
    with pytest.raises(UnknownField):
        layout.find("STATES[2].STATE_ABBR")
    with pytest.raises(UnknownField):
        layout.find("TEST_NAME[0]")


def test_iter_fields_lists_every_node():
    layout = compile_copybook(STATES)
    entries = {entry.path: entry for entry in layout.iter_fields()}
    assert entries["TESTING_COPYBOOK"].kind == "group"
    assert entries["TESTING_COPYBOOK"].length == 67
    names = entries["TESTING_COPYBOOK.STATES[].STATE_NAMES[]"]
    assert (names.kind, names.occurs, names.offset, names.length) == ("array", 2, 12, 24)
    num = entries["TESTING_COPYBOOK.STATES[].STATE_NAMES[].STATE_NUM"]
    assert (num.offset, num.length, num.picture, num.depth) == (12, 2, "9(2)", 3)


def test_value_defaults_applied_to_fresh_record():
    layout = compile_copybook(
        """
        01 REC.
           05 A PIC 9(3) VALUE 7.
           05 B PIC X(3) VALUE 'AB'.
           05 C OCCURS 2 TIMES.
              10 D PIC X VALUE 'Z'.
              10 E PIC S9(3) COMP-3 VALUE -5.
           05 H PIC X(2) VALUE HIGH-VALUES.
           05 S PIC X(2) VALUE SPACES.
           05 STARS PIC X(5) VALUE ALL '*-'.
           05 N PIC X(2).
        """
    )
    assert layout.has_defaults
    data = bytes(layout.new_record())
    assert data[:3] == "007".encode("cp037")
    assert data[3:6] == "AB ".encode("cp037")
    assert data[6:9] == "Z".encode("cp037") + b"\x00\x5d"
    assert data[9:12] == data[6:9]
    assert data[12:14] == b"\xff\xff"
    assert data[14:16] == "  ".encode("cp037")
    assert data[16:21] == "*-*-*".encode("cp037")
    assert data[21:23] == b"\x00\x00"


def test_group_value_fills_group():
    layout = compile_copybook("01 REC VALUE SPACES. 05 A PIC X(2). 05 B PIC 9 VALUE 1.")
    assert bytes(layout.new_record()) == "  1".encode("cp037")


def test_layout_without_values_starts_zeroed():
    layout = compile_copybook("01 REC. 05 A PIC X(4).")
    assert not layout.has_defaults
    assert bytes(layout.new_record()) == b"\x00" * 4


def test_value_that_does_not_fit_is_rejected():
    with pytest.raises(GrammarError):
        compile_copybook("01 REC. 05 A PIC X(2) VALUE 'ABC'.")


def test_missing_redefines_target():
    with pytest.raises(MissingRedefinesTarget):
        compile_copybook("01 REC. 05 A PIC X. 05 B REDEFINES NOPE PIC X.")


def test_unsupported_picture_reports_line():
    with pytest.raises(UnsupportedFieldType) as excinfo:
        compile_copybook("01 REC. 05 A PIC G(4).")
    assert excinfo.value.line == "05 A PIC G(4)"


def test_item_under_elementary_field_is_rejected():
    with pytest.raises(GrammarError):
        compile_copybook("01 REC. 05 A PIC X. 10 B PIC X.")


def test_new_record_buffer_handling():
    layout = compile_copybook("01 REC. 05 A PIC X(2).")
    shared = bytearray(b"\xc1\xc2")
    record = layout.new_record(shared)
    record["A"] = "ZZ"
    assert shared == bytearray("ZZ".encode("cp037"))

    original = b"\xc1\xc2"
    copied = layout.new_record(original)
    copied["A"] = "ZZ"
    assert original == b"\xc1\xc2"

    with pytest.raises(RecordLengthError):
        layout.new_record(b"\xc1")


def test_compile_accepts_split_statements():
    layout = compile_copybook(["01 REC", "05 A PIC X(2)", "05 B PIC 9(4) COMP"])
    assert layout.length == 4


def test_longer_redefines_default_stays_inside_record():
    layout = compile_copybook("01 REC. 05 A PIC X(2). 05 B REDEFINES A PIC X(4) VALUE 'WXYZ'.")
    assert layout.default_template == "WX".encode("cp037")
    assert len(layout.new_record().buffer) == 2


def test_group_usage_is_rejected():
    with pytest.raises(UnsupportedFieldType) as excinfo:
        compile_copybook("01 REC. 05 G USAGE COMP. 10 N PIC 9(4).")
    assert excinfo.value.line == "05 G USAGE COMP"


def test_record_root_is_never_closed():
    context = _CompileContext(CodecConfig())
    with pytest.raises(GrammarError):
        context.close()
    assert compile_copybook("01 REC. 05 A PIC X.").length == 1
