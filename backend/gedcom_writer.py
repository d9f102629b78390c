"""Encoder for the GEDCOM line format. Output is always UTF-8."""

import logging
import sys
from typing import BinaryIO

from gedcom_errors import StateError
from gedcom_records import Family, Record

logger = logging.getLogger("gedcomtree.writer")

# Version 5 lines are limited to 90 bytes including the line terminator
MAX_LINE_V5 = 90


def utf8_width(lead: int) -> int:
    """Length of the UTF-8 sequence starting with this byte."""
    if lead < 0xC0:
        return 1
    if lead < 0xE0:
        return 2
    if lead < 0xF0:
        return 3
    return 4


class GedcomWriter:
    """Render a Gedcom as UTF-8 lines, wrapping values with CONT/CONC."""

    def __init__(self, gedcom):
        self.gedcom = gedcom
        self.lines = 0
        self.escape_all = True

    def _normalize_header(self):
        header = self.gedcom.header
        if header is None:
            raise StateError("No header")
        char = header.get_record("CHAR")
        if char is None:
            header.records.append(self.gedcom.new_record("CHAR", "UTF-8"))
        elif char.value != "UTF-8":
            header.records[header.records.index(char)] = self.gedcom.new_record("CHAR", "UTF-8")
        return header

    def write(self, out: BinaryIO) -> None:
        header = self._normalize_header()
        major = header.major_version
        max_length = MAX_LINE_V5 if major <= 5 else sys.maxsize
        # before version 7 every "@@" in a value reads back as "@"
        self.escape_all = major <= 5
        records = self.gedcom.records
        skipped = 0
        for i, r in enumerate(records):
            if i + 1 == len(records) and r.tag == "TRLR":
                continue
            if isinstance(r, Family) and r.is_empty:
                skipped += 1
                continue
            self._write_record(out, r, 0, max_length)
        out.write(b"0 TRLR\n")
        self.lines += 1
        out.flush()
        logger.info(f"Wrote {self.lines} lines (version {major or 'unspecified'}, {skipped} empty families skipped)")

    def _write_record(self, out: BinaryIO, r: Record, level: int, max_length: int) -> None:
        if r.is_reference and self.gedcom.resolve(r.idref) is None:
            logger.debug(f"Skipping unresolved reference {r.tag} @{r.idref}@ (line {r.line})")
            return
        prefix = f"{level} "
        if r.id is not None:
            prefix += f"@{r.id}@ "
        prefix += r.tag
        if r.is_reference:
            out.write(f"{prefix} @{r.idref}@\n".encode("utf-8"))
            self.lines += 1
        else:
            self._write_value(out, prefix.encode("utf-8"), r.value, level, max_length)
        for child in r.records:
            self._write_record(out, child, level + 1, max_length)

    def _write_value(self, out: BinaryIO, head: bytes, value: str, level: int, max_length: int) -> None:
        out.write(head)
        length = len(head)
        data = value.replace("\r", "").encode("utf-8")
        if data and data[0] != 0x0A:
            out.write(b" ")
            length += 1
        cont = f"{level + 1} CONT".encode("ascii")
        conc = f"{level + 1} CONC ".encode("ascii")
        # a line whose value starts with '@' would read back as a reference
        line_start = True
        i = 0
        while i < len(data):
            b = data[i]
            if b == 0x0A:
                out.write(b"\n" + cont)
                self.lines += 1
                length = len(cont)
                if i + 1 < len(data) and data[i + 1] != 0x0A:
                    out.write(b" ")
                    length += 1
                line_start = True
                i += 1
                continue
            width = utf8_width(b)
            at = b == 0x40 and (line_start or self.escape_all)
            char = b"@@" if at else data[i:i + width]
            if length + len(char) >= max_length:
                out.write(b"\n" + conc)
                self.lines += 1
                length = len(conc)
                char = b"@@" if b == 0x40 else data[i:i + width]
            out.write(char)
            length += len(char)
            line_start = False
            i += width
        out.write(b"\n")
        self.lines += 1
