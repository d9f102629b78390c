"""Tests for encoding a Gedcom back to the line format."""

import io
import os
import sys

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gedcom_errors import StateError
from gedcom_tree import Gedcom
from gedcom_utils import parse_gedcom_content, parse_gedcom_file, set_header_version
from gedcom_writer import MAX_LINE_V5, utf8_width

DATA_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "data")


def body(data: bytes) -> bytes:
    """Output without the leading header and CHAR lines."""
    assert data.startswith(b"0 HEAD\n1 CHAR UTF-8\n")
    return data[len(b"0 HEAD\n1 CHAR UTF-8\n"):]


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def gedcom():
    """Gedcom holding only a bare header."""
    g = Gedcom()
    g.records.append(g.new_record("HEAD"))
    return g


def add_note(gedcom: Gedcom, value: str):
    note = gedcom.new_record("NOTE", value)
    gedcom.records.append(note)
    return note


# ============================================================================
# Header and Trailer Tests
# ============================================================================

class TestHeaderAndTrailer:
    """The header is required, the charset is forced and TRLR appears once."""

    def test_no_header(self):
        g = Gedcom()
        g.records.append(g.new_record("INDI"))
        with pytest.raises(StateError):
            g.to_bytes()

    def test_empty_gedcom(self):
        with pytest.raises(StateError):
            Gedcom().to_bytes()

    def test_char_added(self, gedcom):
        assert gedcom.to_bytes() == b"0 HEAD\n1 CHAR UTF-8\n0 TRLR\n"
        assert gedcom.header.charset == "UTF-8"

    def test_char_replaced_in_place(self):
        g = parse_gedcom_content(b"0 HEAD\n1 CHAR ANSEL\n1 SOUR x\n0 TRLR\n")
        assert g.to_bytes() == b"0 HEAD\n1 CHAR UTF-8\n1 SOUR x\n0 TRLR\n"

    def test_char_already_utf8_untouched(self):
        data = b"0 HEAD\n1 SOUR x\n1 CHAR UTF-8\n0 TRLR\n"
        assert parse_gedcom_content(data).to_bytes() == data

    def test_trailer_appended(self, gedcom):
        add_note(gedcom, "x")
        assert gedcom.to_bytes().endswith(b"0 NOTE x\n0 TRLR\n")

    def test_trailer_not_duplicated(self, gedcom):
        gedcom.records.append(gedcom.new_record("TRLR"))
        assert gedcom.to_bytes().count(b"TRLR") == 1

    def test_write_to_stream(self, gedcom):
        out = io.BytesIO()
        gedcom.write(out)
        assert out.getvalue() == gedcom.to_bytes()


# ============================================================================
# Value Encoding Tests
# ============================================================================

class TestValues:
    """Tests for CONT/CONC splitting and escaping."""

    def test_cont_per_newline(self, gedcom):
        add_note(gedcom, "a\nb\n\nc")
        assert body(gedcom.to_bytes()) == b"0 NOTE a\n1 CONT b\n1 CONT\n1 CONT c\n0 TRLR\n"

    def test_leading_newline(self, gedcom):
        add_note(gedcom, "\nx")
        assert body(gedcom.to_bytes()) == b"0 NOTE\n1 CONT x\n0 TRLR\n"

    def test_carriage_returns_dropped(self, gedcom):
        add_note(gedcom, "a\r\nb")
        assert body(gedcom.to_bytes()) == b"0 NOTE a\n1 CONT b\n0 TRLR\n"

    def test_empty_value(self, gedcom):
        gedcom.records.append(gedcom.new_record("INDI"))
        assert body(gedcom.to_bytes()) == b"0 INDI\n0 TRLR\n"

    def test_every_at_escaped_before_version_7(self, gedcom):
        add_note(gedcom, "@home\n@work and a@b")
        assert body(gedcom.to_bytes()) == b"0 NOTE @@home\n1 CONT @@work and a@@b\n0 TRLR\n"

    def test_only_leading_at_escaped_in_version_7(self):
        g = parse_gedcom_content(b"0 HEAD\n1 GEDC\n2 VERS 7.0\n0 NOTE @@home\n1 CONT a@b\n0 TRLR\n")
        data = g.to_bytes()
        assert b"0 NOTE @@home\n1 CONT a@b\n" in data
        assert parse_gedcom_content(data).records[1].value == "@home\na@b"

    def test_double_at_round_trip_in_version_5(self):
        g = parse_gedcom_content(b"0 HEAD\n1 GEDC\n2 VERS 5.5.1\n0 NOTE a@@@@b\n0 TRLR\n")
        assert g.records[1].value == "a@@b"
        data = g.to_bytes()
        assert b"0 NOTE a@@@@b\n" in data
        assert parse_gedcom_content(data).records[1].value == "a@@b"

    @pytest.mark.parametrize("value", ["@", "@@", "@@@x", "x@@", "@#DJULIAN@ 1700"])
    def test_at_runs_round_trip(self, gedcom, value):
        add_note(gedcom, value)
        assert parse_gedcom_content(gedcom.to_bytes()).records[1].value == value

    def test_at_run_split_by_wrap(self, gedcom):
        value = "x" * 81 + "@@@" + "y"
        add_note(gedcom, value)
        data = gedcom.to_bytes()
        assert all(len(line) < MAX_LINE_V5 for line in data.split(b"\n"))
        assert parse_gedcom_content(data).records[1].value == value

    def test_nested_levels(self, gedcom):
        indi = gedcom.new_record("INDI")
        indi.set_id("I1")
        gedcom.records.append(indi)
        birt = gedcom.new_record("BIRT")
        indi.records.append(birt)
        birt.records.append(gedcom.new_record("NOTE", "one\ntwo"))
        assert body(gedcom.to_bytes()) == (
            b"0 @I1@ INDI\n1 BIRT\n2 NOTE one\n3 CONT two\n0 TRLR\n"
        )

    def test_wrap_at_90_bytes(self, gedcom):
        add_note(gedcom, "x" * 200)
        lines = body(gedcom.to_bytes()).split(b"\n")
        assert lines[0] == b"0 NOTE " + b"x" * 82
        assert lines[1] == b"1 CONC " + b"x" * 82
        assert lines[2] == b"1 CONC " + b"x" * 36
        assert lines[3] == b"0 TRLR"
        assert all(len(line) < MAX_LINE_V5 for line in lines)

    def test_wrap_keeps_utf8_sequences_whole(self, gedcom):
        value = "é" * 100
        add_note(gedcom, value)
        lines = body(gedcom.to_bytes()).split(b"\n")
        for line in lines:
            line.decode("utf-8")
            assert len(line) < MAX_LINE_V5
        assert parse_gedcom_content(gedcom.to_bytes()).records[1].value == value

    def test_wrapped_at_sign_escaped_on_new_line(self, gedcom):
        add_note(gedcom, "x" * 82 + "@y")
        lines = body(gedcom.to_bytes()).split(b"\n")
        assert lines[1] == b"1 CONC @@y"
        assert parse_gedcom_content(gedcom.to_bytes()).records[1].value == "x" * 82 + "@y"

    def test_no_wrap_in_version_7(self, gedcom):
        set_header_version(gedcom, "7.0")
        add_note(gedcom, "x" * 200)
        assert b"0 NOTE " + b"x" * 200 + b"\n" in gedcom.to_bytes()
        assert b"CONC" not in gedcom.to_bytes()

    def test_utf8_width(self):
        assert [utf8_width(b) for b in (0x61, 0xC3, 0xE2, 0xF0)] == [1, 2, 3, 4]


# ============================================================================
# Reference and Family Tests
# ============================================================================

class TestSkipped:
    """Unresolved references and empty families are not written."""

    def test_unresolved_reference_skipped(self, gedcom):
        indi = gedcom.new_record("INDI")
        gedcom.records.append(indi)
        famc = gedcom.new_record("FAMC")
        famc.set_idref("F404")
        famc.records.append(gedcom.new_record("PEDI", "birth"))
        indi.records.append(famc)
        assert body(gedcom.to_bytes()) == b"0 INDI\n0 TRLR\n"

    def test_resolved_reference_written(self, gedcom):
        indi = gedcom.new_record("INDI")
        indi.set_id("I1")
        gedcom.records.append(indi)
        note = gedcom.new_record("NOTE")
        note.set_idref("I1")
        gedcom.records.append(note)
        assert body(gedcom.to_bytes()) == b"0 @I1@ INDI\n0 NOTE @I1@\n0 TRLR\n"

    def test_empty_family_skipped(self, gedcom):
        family = gedcom.new_record("FAM")
        family.set_id("F1")
        gedcom.records.append(family)
        family.records.append(gedcom.new_record("MARR"))
        husb = gedcom.new_record("HUSB")
        husb.set_idref("I404")
        family.records.append(husb)
        assert body(gedcom.to_bytes()) == b"0 TRLR\n"

    def test_removed_person_drops_links(self):
        g = parse_gedcom_file(os.path.join(DATA_DIR, "sample-family.ged"))
        g.records.remove(g.resolve("I2"))
        data = g.to_bytes()
        assert b"@I2@" not in data
        assert b"0 @F1@ FAM\n1 WIFE @I1@\n1 CHIL @I3@\n" in data


# ============================================================================
# Round Trip Tests
# ============================================================================

class TestRoundTrip:
    """Writing then reading gives back the same tree."""

    @pytest.mark.parametrize("name", ["sample-family.ged", "sample-v7.ged"])
    def test_line_format(self, name):
        g = parse_gedcom_file(os.path.join(DATA_DIR, name))
        data = g.to_bytes()
        again = parse_gedcom_content(data)
        assert again.to_list() == g.to_list()
        assert again.to_bytes() == data

    def test_ansel_input_written_as_utf8(self):
        g = parse_gedcom_content(b"0 HEAD\n1 CHAR ANSEL\n0 NOTE \xa2\n0 TRLR\n")
        assert g.to_bytes() == "0 HEAD\n1 CHAR UTF-8\n0 NOTE Ø\n0 TRLR\n".encode("utf-8")

    def test_v7_escape(self):
        g = parse_gedcom_file(os.path.join(DATA_DIR, "sample-v7.ged"))
        assert b"1 NOTE @@handle\n" in g.to_bytes()
