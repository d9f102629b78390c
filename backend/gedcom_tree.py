"""The Gedcom container: top-level records, identifier table and record factory."""

import io
import logging
from typing import Any, BinaryIO

from gedcom_errors import ConsistencyWarning, GedcomError, StateError, StructuralError
from gedcom_records import RECORD_KINDS, Header, Record, RecordList

logger = logging.getLogger("gedcomtree.tree")


# Option names consulted at the start of Gedcom.read()
OPTION_DEFAULT_CHARSET = "charset"
OPTION_TOLERATE_WHITESPACE = "leading-whitespace"
OPTION_NL_AFTER_NOTE = "note-cont-insert-nl"


class Gedcom:
    """
    An in-memory GEDCOM file.

    Holds the ordered top-level records, the identifier table used to resolve
    references, a small option map read by read(), and the tag -> kind
    registry used by new_record().
    """

    def __init__(self, options: dict[str, str] | None = None):
        self._records = RecordList(self, None)
        self._ids: dict[str, Record] = {}
        self._kinds: dict[str, type[Record]] = dict(RECORD_KINDS)
        self.options: dict[str, str] = dict(options or {})
        self.warnings: list[ConsistencyWarning] = []
        self.revision = 0

    def __repr__(self) -> str:
        return f"Gedcom({len(self._records)} records, {len(self._ids)} ids)"

    @property
    def records(self) -> RecordList:
        """The modifiable list of top-level records."""
        return self._records

    @property
    def header(self) -> Header | None:
        """The HEAD record, if it is the first top-level record."""
        if self._records and isinstance(self._records[0], Header):
            return self._records[0]
        return None

    def walk(self):
        """Depth-first over every reachable record."""
        for r in self._records:
            yield from r.walk()

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    def register_kind(self, tag: str, cls: type[Record]) -> None:
        """Use cls for records created with this tag from now on."""
        if not issubclass(cls, Record):
            raise TypeError(f"{cls!r} is not a Record subclass")
        self._kinds[tag] = cls

    def new_record(self, tag: str, value: str | None = None) -> Record:
        """
        Create a detached record that can be added to this Gedcom or one of its records.

        Args:
            tag: The tag (required)
            value: Optional initial value
        """
        if tag is None:
            raise ValueError("Tag is None")
        cls = self._kinds.get(tag, Record)
        r = cls(self, tag)
        if value is not None:
            r.set_value(value)
        return r

    def new_reference(self, tag: str, target: Record) -> Record:
        """Create a detached record pointing at target, which must have an id."""
        if tag is None:
            raise ValueError("Tag is None")
        if target is None:
            raise ValueError("Record is None")
        if target.gedcom is not self:
            raise StateError("Record is from another GEDCOM")
        if target.id is None:
            raise StateError(f"Record has no id: {target!r}")
        r = Record(self, tag)
        r.set_idref(target.id)
        return r

    # ------------------------------------------------------------------
    # Identifier table
    # ------------------------------------------------------------------

    def resolve(self, idref: str) -> Record | None:
        """Return the reachable record declaring this id, or None."""
        return self._ids.get(idref)

    def next_id(self) -> str:
        """The first unused identifier of the form R0, R1, ..."""
        i = 0
        while f"R{i}" in self._ids:
            i += 1
        return f"R{i}"

    @property
    def ids(self) -> dict[str, Record]:
        """Read-only snapshot of the identifier table."""
        return dict(self._ids)

    def _touch(self) -> None:
        self.revision += 1

    def _register(self, id: str, record: Record) -> None:
        existing = self._ids.get(id)
        if existing is not None and existing is not record:
            raise StructuralError(f"Duplicate id \"{id}\"")
        self._ids[id] = record
        self._touch()

    def _check_ids(self, record: Record, displaced: Record | None = None) -> None:
        """Fail if attaching record's subtree would duplicate a registered id."""
        freed = set()
        if displaced is not None:
            freed = {r.id for r in displaced.walk() if r.id is not None}
        seen = set()
        for r in record.walk():
            if r.id is None:
                continue
            if r.id in seen:
                raise StructuralError(f"Duplicate id \"{r.id}\"")
            seen.add(r.id)
            existing = self._ids.get(r.id)
            if existing is not None and existing is not r and r.id not in freed:
                raise StructuralError(f"Duplicate id \"{r.id}\"")

    def _sync_attached(self, record: Record, attached: bool) -> None:
        # the attached flag is uniform over a subtree, so the root of it decides
        if record._attached == attached:
            return
        for r in record.walk():
            r._attached = attached
            if r.id is None:
                continue
            if attached:
                self._register(r.id, r)
            elif self._ids.get(r.id) is r:
                del self._ids[r.id]
                self._touch()

    # ------------------------------------------------------------------
    # Reading and writing
    # ------------------------------------------------------------------

    def read(self, source: BinaryIO | bytes | bytearray) -> None:
        """
        Replace the contents of this Gedcom with records decoded from source.

        Either the line format (UTF-8, ASCII or ANSEL) or, if the first
        significant byte is '[', the JSON list format.
        """
        from gedcom_reader import GedcomReader

        if isinstance(source, (bytes, bytearray)):
            source = io.BytesIO(source)
        self._clear()
        self.warnings = []
        try:
            GedcomReader(self, source).run()
        except GedcomError as e:
            # a failed decode leaves the Gedcom empty
            logger.error(f"Read failed, discarding partial tree: {e}")
            self._clear()
            raise
        logger.info(f"Read {len(self._records)} top-level records ({len(self._ids)} ids, {len(self.warnings)} warnings)")

    def _clear(self) -> None:
        self._records.clear()
        self._ids.clear()

    def write(self, out: BinaryIO) -> None:
        """Write this Gedcom to out in the line format, always as UTF-8."""
        from gedcom_writer import GedcomWriter

        GedcomWriter(self).write(out)

    def to_bytes(self) -> bytes:
        out = io.BytesIO()
        self.write(out)
        return out.getvalue()

    def to_list(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self._records]

    def to_json(self) -> str:
        """Render the JSON list format."""
        from gedcom_json import dump_records

        return dump_records(self._records)

    def write_json(self, out: BinaryIO) -> None:
        out.write(self.to_json().encode("utf-8"))
