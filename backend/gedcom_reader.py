"""Decoder for the GEDCOM line format (and the JSON list format).

The line grammar is

    LEVEL SP [ '@' ID '@' SP ] TAG [ SP ( VALUE | '@' IDREF '@' ) ] EOL

Bytes are scanned once, front to back, one line at a time. A record's value
is not decoded to text until the next record starts, because CONT/CONC lines
that follow it extend the same value and the header can switch the charset
or version part way through the file.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO

from gedcom_errors import ConsistencyWarning, StructuralError
from gedcom_json import RecordModel, load_records
from gedcom_records import Record
from gedcom_tree import (
    OPTION_DEFAULT_CHARSET,
    OPTION_NL_AFTER_NOTE,
    OPTION_TOLERATE_WHITESPACE,
    Gedcom,
)

logger = logging.getLogger("gedcomtree.reader")

EOF = -1
CR = 0x0D
LF = 0x0A
SP = 0x20
AT = 0x40
BOM = b"\xef\xbb\xbf"

CS_UTF8 = "UTF-8"
CS_ASCII = "ASCII"
CS_ANSEL = "ANSEL"

_DIGITS = re.compile(rb"[0-9]+")
_XREF = re.compile(rb"[0-9A-Z_]*")
_TAG = re.compile(rb"[A-Z_][0-9A-Z_]*")
_VALUE = re.compile(rb"[\t\x20-\xff]*")
_SPACES = re.compile(rb" *")


def _build_ansel_table() -> tuple[int, ...]:
    """ANSEL (Z39.47) byte -> code point. 0 marks bytes with no mapping."""
    table = list(range(0x80)) + [0] * 0x80
    upper = (
        0x0141, 0x00D8, 0x0110, 0x00DE, 0x00C6, 0x0152, 0x02B9, 0x00B7,  # A1
        0x266D, 0x00AE, 0x00B1, 0x01A0, 0x01AF, 0x02BC, 0x0000, 0x02BB,  # A9
        0x0142, 0x00F8, 0x0111, 0x00FE, 0x00E6, 0x0153, 0x02BA, 0x0131,  # B1
        0x00A3, 0x00F0, 0x0000, 0x01A1, 0x01B0, 0x25A1, 0x25A0, 0x00B0,  # B9
        0x2113, 0x2117, 0x00A9, 0x266F, 0x00BF, 0x00A1, 0x0000, 0x20AC,  # C1
        0x0000, 0x0000, 0x0000, 0x0000, 0x0065, 0x006F, 0x00DF, 0x0000,  # C9
        0x0000, 0x0000, 0x0000, 0x0000, 0x0000, 0x0000, 0x0000, 0x0000,  # D1
        0x0000, 0x0000, 0x0000, 0x0000, 0x0000, 0x0000, 0x0000, 0x0309,  # D9
        0x0300, 0x0301, 0x0302, 0x0303, 0x0304, 0x0306, 0x0307, 0x0308,  # E1
        0x030C, 0x030A, 0xFE20, 0xFE21, 0x0315, 0x030B, 0x0310, 0x0327,  # E9
        0x0328, 0x0323, 0x0324, 0x0325, 0x0333, 0x0332, 0x0326, 0x031C,  # F1
        0x032E, 0xFE22, 0xFE23, 0x0338, 0x0000, 0x0313, 0x0000,          # F9
    )
    table[0xA1:] = upper
    return tuple(table)


ANSEL_TABLE = _build_ansel_table()


@dataclass
class GedcomLine:
    """One physical line, tokenized but with the value still as raw bytes."""
    number: int
    level: int
    tag: str
    id: str | None = None
    idref: str | None = None
    value: bytes | None = None


class DecodeState(Enum):
    """Whether the previous record's value may still grow."""
    AWAIT_RECORD = "await_record"
    AWAIT_CONTINUATION = "await_continuation"


# ============================================================================
# Byte scanner / tokenizer
# ============================================================================

class LineScanner:
    """Forward-only scanner over the input bytes, one byte of lookahead."""

    def __init__(self, data: bytes, pos: int = 0):
        self.data = data
        self.pos = pos
        self.line = 1

    @property
    def c(self) -> int:
        if self.pos < len(self.data):
            return self.data[self.pos]
        return EOF

    def advance(self) -> int:
        self.pos += 1
        return self.c

    def take(self, pattern: re.Pattern) -> bytes:
        m = pattern.match(self.data, self.pos)
        if m is None:
            return b""
        self.pos = m.end()
        return m.group()

    def fail(self, message: str, char: int | None = None) -> None:
        raise StructuralError(message, char, self.line)

    def _skip_blank(self) -> bool:
        """Skip leading spaces and empty lines. True if a line remains."""
        while True:
            self.take(_SPACES)
            c = self.c
            if c == CR:
                if self.advance() == LF:
                    self.advance()
                self.line += 1
            elif c == LF:
                self.advance()
                self.line += 1
            else:
                return c != EOF

    def read_line(self, tolerant: bool) -> GedcomLine | None:
        """Tokenize the next line, or return None at end of input."""
        if tolerant and not self._skip_blank():
            return None
        if self.c == EOF:
            return None
        number = self.line
        level = self._read_level()
        id = self._read_id() if self.c == AT else None
        tag = self._read_tag()
        line = GedcomLine(number=number, level=level, tag=tag, id=id)
        self._read_payload(line)
        self._read_eol()
        return line

    def _read_level(self) -> int:
        digits = self.take(_DIGITS)
        if not digits:
            self.fail("Expected level", self.c)
        if self.c != SP:
            self.fail("Expected space after level", self.c)
        self.advance()
        return int(digits)

    def _read_id(self) -> str:
        self.advance()
        raw = self.take(_XREF)
        if self.c != AT:
            self.fail("Expected '@' after id", self.c)
        if not raw:
            self.fail("Zero length id")
        id = raw.decode("ascii")
        if id == "VOID":
            self.fail("VOID id")
        if self.advance() != SP:
            self.fail("Expected space after id", self.c)
        self.advance()
        return id

    def _read_tag(self) -> str:
        raw = self.take(_TAG)
        if not raw:
            self.fail("Expected tag", self.c)
        if raw == b"_":
            self.fail("Zero length tag")
        c = self.c
        if c == SP:
            self.advance()
        elif c not in (CR, LF, EOF):
            self.fail("Invalid tag character", c)
        return raw.decode("ascii")

    def _read_payload(self, line: GedcomLine) -> None:
        c = self.c
        if c in (CR, LF, EOF):
            return
        if c == AT:
            c = self.advance()
            if c == AT:
                # "@@" is a literal '@'
                self.advance()
                line.value = b"@" + self.take(_VALUE)
            elif c == ord("#"):
                # calendar escape such as "@#DJULIAN@ 1700" is plain text
                line.value = b"@" + self.take(_VALUE)
            else:
                raw = self.take(_XREF)
                if self.c != AT:
                    self.fail("Expected '@' after idref", self.c)
                if not raw:
                    self.fail("Zero length idref")
                self.advance()
                line.idref = raw.decode("ascii")
        elif c == 0x09 or c >= SP:
            line.value = self.take(_VALUE)
        else:
            self.fail("Expected value", c)

    def _read_eol(self) -> None:
        c = self.c
        if c == CR:
            if self.advance() == LF:
                self.advance()
            self.line += 1
        elif c == LF:
            self.advance()
            self.line += 1
        elif c != EOF:
            self.fail("Invalid character in value", c)


# ============================================================================
# Tree builder
# ============================================================================

class GedcomReader:
    """
    Decode a byte stream into a Gedcom.

    Args:
        gedcom: The (already cleared) Gedcom to populate
        source: A binary stream
    """

    def __init__(self, gedcom: Gedcom, source: BinaryIO):
        self.gedcom = gedcom
        self.source = source
        options = gedcom.options
        charset = (options.get(OPTION_DEFAULT_CHARSET) or "").upper()
        self.charset = charset if charset in (CS_ASCII, CS_ANSEL) else CS_UTF8
        self.major_version = 5
        self.tolerate_whitespace = OPTION_TOLERATE_WHITESPACE in options
        self.nl_after_note = OPTION_NL_AFTER_NOTE in options
        self.state = DecodeState.AWAIT_RECORD
        self._insert_newline = False
        self._prev: Record | None = None
        self._pending = bytearray()
        self._pending_lines: list[tuple[int, int]] = []
        self._seen_ids: set[str] = set()

    def run(self) -> None:
        data = self.source.read()
        pos = 0
        if data[:1] == b"\xef":
            if data[:3] != BOM:
                raise StructuralError("Invalid initial bytes, not a BOM or level", data[1] if len(data) > 1 else EOF, 1)
            pos = 3
        if data[pos:pos + 1] == b"[":
            self._read_json(data[pos:])
            return

        scanner = LineScanner(data, pos)
        while True:
            line = scanner.read_line(self.tolerate_whitespace or self.major_version < 7)
            if line is None:
                break
            self._accept(line)
        self._commit()

    def _warn(self, message: str, line: int | None = None) -> None:
        warning = ConsistencyWarning(message, line)
        self.gedcom.warnings.append(warning)
        logger.warning(str(warning))

    # ------------------------------------------------------------------
    # Line handling
    # ------------------------------------------------------------------

    def _accept(self, line: GedcomLine) -> None:
        prev = self._prev
        prev_level = prev.level if prev is not None else -1
        continuation = (
            prev is not None
            and not prev.is_reference
            and line.level == prev_level + 1
            and (line.tag == "CONT" or (line.tag == "CONC" and self.major_version < 7))
        )
        if continuation:
            if line.id is not None:
                self._warn(f"Ignoring id \"{line.id}\" on {line.tag} line", line.number)
            if line.tag == "CONT" or self._insert_newline:
                self._pending.append(LF)
                self._insert_newline = False
            self._pending_lines.append((len(self._pending), line.number))
            if line.value:
                self._pending.extend(line.value)
            elif line.idref:
                self._pending.extend(b"@" + line.idref.encode("ascii") + b"@")
            self.state = DecodeState.AWAIT_CONTINUATION
            return

        self._commit()

        record = self.gedcom.new_record(line.tag)
        record.line = line.number
        if line.id is not None:
            if line.id in self._seen_ids:
                self._warn(f"Duplicate id \"{line.id}\", keeping first", line.number)
            else:
                self._seen_ids.add(line.id)
                record.set_id(line.id)
        if line.idref is not None:
            record.set_idref(line.idref)

        if line.level == 0:
            self.gedcom.records.append(record)
        elif prev is None or line.level > prev_level + 1:
            raise StructuralError(f"Invalid nesting from level {prev_level} to {line.level}", line=line.number)
        else:
            parent = prev
            while parent.level >= line.level:
                parent = parent.owner
            parent.records.append(record)

        self._prev = record
        self._pending = bytearray(line.value or b"")
        self._pending_lines = [(0, line.number)]
        self._insert_newline = False
        self._apply_header_switches(record, line)

    def _apply_header_switches(self, record: Record, line: GedcomLine) -> None:
        owner = record.owner
        if record.tag == "CHAR" and owner is not None and owner.level == 0 and owner.tag == "HEAD":
            value = self._decode(self._pending).upper()
            if value in (CS_UTF8, CS_ASCII, CS_ANSEL):
                if value != self.charset:
                    logger.debug(f"Switching charset from {self.charset} to {value} (line {line.number})")
                self.charset = value
            else:
                self._warn(f"Ignoring unsupported charset \"{value}\"", line.number)
            if self.major_version >= 7 and self.charset != CS_UTF8:
                raise StructuralError(f"Invalid charset in version 7 \"{self.charset}\"", line=line.number)
        elif (
            record.tag == "VERS"
            and owner is not None
            and owner.tag == "GEDC"
            and owner.owner is not None
            and owner.owner.tag == "HEAD"
            and owner.owner.level == 0
        ):
            value = self._decode(self._pending)
            if value.startswith("7."):
                logger.debug(f"Version {value}, reading as version 7 (line {line.number})")
                self.major_version = 7
                if self.charset != CS_UTF8:
                    raise StructuralError(f"Invalid charset in version 7 \"{self.charset}\"", line=line.number)
            elif value.startswith("5."):
                self.major_version = 5
        elif record.tag == "NOTE" and self.nl_after_note:
            self._insert_newline = True

    def _commit(self) -> None:
        """Give the previous record its accumulated value."""
        prev = self._prev
        if prev is not None and not prev.is_reference:
            prev.set_value(self._decode(self._pending))
        self._pending = bytearray()
        self._pending_lines = []
        self.state = DecodeState.AWAIT_RECORD

    # ------------------------------------------------------------------
    # Value decoding
    # ------------------------------------------------------------------

    def _line_at(self, offset: int) -> int | None:
        number = None
        for start, line in self._pending_lines:
            if start > offset:
                break
            number = line
        return number

    def _decode(self, buf: bytearray) -> str:
        raw = bytes(buf)
        if self.charset == CS_UTF8:
            try:
                text = raw.decode("utf-8")
            except UnicodeDecodeError as e:
                self._warn(f"Invalid UTF-8 byte 0x{raw[e.start]:x} replaced", self._line_at(e.start))
                text = raw.decode("utf-8", errors="replace")
        else:
            text = raw.decode("latin-1")
            if self.charset == CS_ANSEL:
                chars = []
                for i, ch in enumerate(text):
                    mapped = ANSEL_TABLE[ord(ch)]
                    if mapped == 0:
                        raise StructuralError("Invalid ANSEL codepoint", ord(ch), self._line_at(i))
                    chars.append(chr(mapped))
                text = "".join(chars)

        for i, ch in enumerate(text):
            c = ord(ch)
            if (
                (c < 0x20 and c not in (0x09, 0x0A))
                or c == 0xFEFF
                or (self.major_version >= 7 and 0x7F <= c <= 0x9F)
            ):
                offset = i if self.charset != CS_UTF8 else len(text[:i].encode("utf-8"))
                raise StructuralError("Banned character in value", c, self._line_at(offset))
        if self.major_version < 7:
            text = text.replace("@@", "@")
        return text

    # ------------------------------------------------------------------
    # JSON list format
    # ------------------------------------------------------------------

    def _read_json(self, data: bytes) -> None:
        models = load_records(data)
        for model in models:
            self.gedcom.records.append(self._record_from_model(model))
        logger.debug(f"Read {len(models)} top-level records from JSON")

    def _record_from_model(self, model: RecordModel) -> Record:
        record = self.gedcom.new_record(model.tag)
        if model.id is not None:
            record.set_id(model.id)
        if model.idref is not None:
            record.set_idref(model.idref)
        elif model.value is not None:
            record.set_value(model.value)
        for child in model.records or ():
            record.records.append(self._record_from_model(child))
        return record
