from decimal import Decimal

import pytest

from cobrec.copybook.layout import compile_copybook
from cobrec.copybook.record import Occurrences, Record
from cobrec.errors import FieldOverflow, InvalidAssignment, RecordLengthError, UnknownField

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
STATES_DATA = "STATETEST MI01MICHIGAN  02MICH      1OH01OHIO      02          2END".encode("cp037")


def test_read_nested_occurs():
    record = compile_copybook(STATES).new_record(STATES_DATA)
    assert record["TEST_NAME"] == "STATETEST"
    assert record["STATES"][1]["STATE_ABBR"] == "OH"
    names = record["STATES"][0]["STATE_NAMES"]
    assert [f"{n['STATE_NUM']}-{n['STATE_NAME']}" for n in names] == ["1-MICHIGAN", "2-MICH"]
    assert record["STATES"][1]["STATE_NAMES"][1]["STATE_NAME"] == ""
    assert record["theEnd"] == "END"


def test_to_dict_is_nested():
    record = compile_copybook(STATES).new_record(STATES_DATA)
    assert record.to_dict() == {
        "TESTING_COPYBOOK": {
            "TEST_NAME": "STATETEST",
            "STATES": [
                {
                    "STATE_ABBR": "MI",
                    "STATE_NAMES": [
                        {"STATE_NUM": 1, "STATE_NAME": "MICHIGAN"},
                        {"STATE_NUM": 2, "STATE_NAME": "MICH"},
                    ],
                    "STATE_RANKING": 1,
                },
                {
                    "STATE_ABBR": "OH",
                    "STATE_NAMES": [
                        {"STATE_NUM": 1, "STATE_NAME": "OHIO"},
                        {"STATE_NUM": 2, "STATE_NAME": ""},
                    ],
                    "STATE_RANKING": 2,
                },
            ],
            "theEnd": "END",
        }
    }


def test_write_occurs():
    layout = compile_copybook(
        """
        01 TOP-LEVEL.
           03 STATES OCCURS 2 TIMES.
              05 STATE-NUM        PIC X(3).
              05 STATE-NAME       PIC X(10).
              05 NUMERIC-STATE    PIC 9(2).
        """
    )
    writer = layout.new_record()
    writer["STATES"][0]["STATE_NUM"] = "1"
    writer["STATES"][0]["STATE-NAME"] = "MICHIGAN"
    writer["STATES"][0]["NUMERIC_STATE"] = 2
    second = writer["STATES"][1]
    second.update({"STATE_NUM": "2", "STATE_NAME": "OHIO", "NUMERIC_STATE": 3})
    assert writer.to_text() == "1  MICHIGAN  022  OHIO      03"


def test_dash_and_underscore_names_share_cache():
    record = compile_copybook(STATES).new_record(STATES_DATA)
    assert record["TEST-NAME"] is record["TEST_NAME"]
    assert record.get("STATES") is record["STATES"]
    first = record["STATES"][0]
    assert first is record["STATES"][0]
    assert first["STATE-ABBR"] is first["STATE_ABBR"]
    assert isinstance(record["STATES"], Occurrences)
    assert isinstance(first, Record)


def test_writes_are_visible_through_aliases():
    layout = compile_copybook(
        """
        01 REC.
           05 DATE-TEXT PIC X(8).
           05 DATE-PARTS REDEFINES DATE-TEXT.
              10 YYYY PIC 9(4).
              10 MM PIC 99.
              10 DD PIC 99.
        """
    )
    record = layout.new_record()
    record["DATE_TEXT"] = "20240131"
    assert record["MM"] == 1
    assert record["DATE_PARTS"]["YYYY"] == 2024
    record["DD"] = 15
    assert record["DATE_TEXT"] == "20240115"
    record["DATE_PARTS"]["MM"] = 2
    assert record["DATE_TEXT"] == "20240215"
    assert record["MM"] == 2


def test_two_records_on_one_buffer_stay_in_sync():
    layout = compile_copybook("01 REC. 05 A PIC 9(3).")
    buffer = bytearray(3)
    left = layout.new_record(buffer)
    right = layout.new_record(buffer)
    left["A"] = 12
    assert right["A"] == 12
    right["A"] = 99
    assert left["A"] == 99


def test_setting_a_group_is_rejected():
    record = compile_copybook(STATES).new_record(STATES_DATA)
    with pytest.raises(InvalidAssignment):
        record["STATES"] = "x"
    with pytest.raises(InvalidAssignment):
        record["STATES"][0] = "x"
    with pytest.raises(InvalidAssignment):
        record["TESTING_COPYBOOK"] = "x"


def test_unknown_names_and_indexes():
    record = compile_copybook(STATES).new_record(STATES_DATA)
    with pytest.raises(UnknownField):
        record["NOPE"]
    with pytest.raises(UnknownField):
        record["STATES"][2]
    with pytest.raises(UnknownField):
        record["STATES"]["0"]
    assert record["STATES"][-1]["STATE_ABBR"] == "OH"
    assert "STATE-ABBR" not in record
    assert "STATES" in record


def test_failed_set_leaves_buffer_untouched():
    record = compile_copybook(STATES).new_record(STATES_DATA)
    with pytest.raises(FieldOverflow):
        record["TEST_NAME"] = "X" * 11
    assert bytes(record) == STATES_DATA
    assert record["TEST_NAME"] == "STATETEST"


def test_filler_is_not_addressable():
    layout = compile_copybook("01 REC. 05 A PIC X. 05 FILLER PIC X(3). 05 PIC X. 05 B PIC X.")
    record = layout.new_record()
    assert record["REC"].keys() == ["A", "B"]
    assert "FILLER" not in record
    with pytest.raises(UnknownField):
        record["FILLER"]


def test_numeric_values():
    layout = compile_copybook(
        """
        01 ACCOUNT.
           05 BALANCE PIC S9(7)V99 COMP-3.
           05 RATE    PIC V999.
           05 COUNT   PIC S9(4) COMP.
        """
    )
    record = layout.new_record()
    record["BALANCE"] = Decimal("-1234.5")
    record["RATE"] = 0.125
    record["COUNT"] = -7
    assert record["BALANCE"] == Decimal("-1234.50")
    assert record["RATE"] == Decimal("0.125")
    assert record["COUNT"] == -7
    assert bytes(record)[:5] == b"\x00\x01\x23\x45\x0d"


def test_enumeration_and_len():
    record = compile_copybook(STATES).new_record(STATES_DATA)
    group = record["TESTING_COPYBOOK"]
    assert list(group) == ["TEST_NAME", "STATES", "theEnd"]
    assert len(group) == 3
    assert len(group["STATES"]) == 2
    assert group.items()[0] == ("TEST_NAME", "STATETEST")
    assert "STATETEST" in repr(group)
    assert group.to_bytes() == STATES_DATA
    assert group["STATES"][1].to_bytes() == STATES_DATA[37:64]
    assert record.buffer is group.buffer


def test_longer_redefines_cannot_grow_the_buffer():
    layout = compile_copybook("01 REC. 05 A PIC X(2). 05 B REDEFINES A PIC X(4).")
    buffer = bytearray(b"\xc1\xc2")
    record = layout.new_record(buffer)
    with pytest.raises(RecordLengthError):
        record["B"] = "ABCD"
    assert buffer == bytearray(b"\xc1\xc2")
    with pytest.raises(RecordLengthError):
        record["B"]
    assert record["A"] == "AB"


def test_quoted_value_keeps_inner_spaces():
    layout = compile_copybook("01 REC. 05 A PIC X(6) VALUE 'A    B'.")
    assert layout.new_record()["A"] == "A    B"
