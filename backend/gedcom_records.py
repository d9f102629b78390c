"""GEDCOM records and the ordered child lists that own them.

Every record is owned by exactly one RecordList at a time: either the list of
top-level records held by a Gedcom, or the child list of another record. A
record only keeps a weak back-link to its owner, so ownership stays strictly
tree-shaped. References between records are by identifier and are resolved
lazily against the owning Gedcom's identifier table.
"""

import weakref
from collections.abc import Iterator, MutableSequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from gedcom_errors import StateError, StructuralError

if TYPE_CHECKING:
    from gedcom_tree import Gedcom


# ============================================================================
# Payload variants
# ============================================================================

@dataclass(frozen=True)
class Value:
    """A literal text payload."""
    text: str = ""


@dataclass(frozen=True)
class Reference:
    """A payload pointing at another record by identifier."""
    idref: str


# ============================================================================
# Record
# ============================================================================

class Record:
    """
    A generic GEDCOM record: one logical line plus its sub-records.

    Records are created through Gedcom.new_record() so that reserved tags
    get their specialized kind.
    """

    def __init__(self, gedcom: "Gedcom", tag: str):
        if gedcom is None:
            raise ValueError("GEDCOM is None")
        if not tag:
            raise ValueError("Tag is missing")
        self.gedcom = gedcom
        self._tag = tag
        self._id: str | None = None
        self._payload: Value | Reference | None = None
        self._owner_ref: weakref.ref | None = None
        self._attached = False
        self.line = 0
        self._records = RecordList(gedcom, self)

    def __repr__(self) -> str:
        parts = [f"tag={self._tag!r}"]
        if self._id is not None:
            parts.append(f"id={self._id!r}")
        if isinstance(self._payload, Reference):
            parts.append(f"idref={self._payload.idref!r}")
        elif self.value:
            parts.append(f"value={self.value!r}")
        return f"{type(self).__name__}({', '.join(parts)})"

    # ------------------------------------------------------------------
    # Identity and payload
    # ------------------------------------------------------------------

    @property
    def tag(self) -> str:
        """The tag for this record, eg INDI or BIRT."""
        return self._tag

    @property
    def id(self) -> str | None:
        """The identifier declared by this record, or None."""
        return self._id

    def set_id(self, id: str | None = None) -> str:
        """
        Give this record an identifier. This can only be done once.

        Args:
            id: The identifier to use, or None to generate the first free R<n>

        Returns:
            The identifier assigned
        """
        if self._id is not None:
            raise StateError(f"Record already has id \"{self._id}\"")
        if id is None:
            id = self.gedcom.next_id()
        elif id == "":
            raise StructuralError("Zero length id")
        elif id == "VOID":
            raise StructuralError("VOID id")
        if self._attached:
            self.gedcom._register(id, self)
        self._id = id
        return id

    @property
    def idref(self) -> str | None:
        """If this record is a reference, the identifier it points to."""
        if isinstance(self._payload, Reference):
            return self._payload.idref
        return None

    def set_idref(self, idref: str) -> None:
        """Make this record a reference. Only allowed on a record with no payload yet."""
        if not idref:
            raise ValueError("Empty idref")
        if self._payload is not None:
            raise StateError(f"Record already has a payload: {self!r}")
        self._payload = Reference(idref)

    @property
    def is_reference(self) -> bool:
        return isinstance(self._payload, Reference)

    @property
    def value(self) -> str | None:
        """The text value; empty string if never set, None for reference records."""
        if isinstance(self._payload, Reference):
            return None
        if self._payload is None:
            return ""
        return self._payload.text

    def set_value(self, value: str) -> None:
        if value is None:
            raise ValueError("Value is None")
        if isinstance(self._payload, Reference):
            raise StateError(f"Reference record cannot take a value: {self!r}")
        self._payload = Value(value)

    @value.setter
    def value(self, value: str) -> None:
        self.set_value(value)

    def dereference(self) -> "Record | None":
        """
        For a reference record, return the record it points to (None if it
        doesn't resolve). For any other record, return self.
        """
        if isinstance(self._payload, Reference):
            return self.gedcom.resolve(self._payload.idref)
        return self

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def owner(self) -> "Record | None":
        """The record containing this one, or None for top-level and detached records."""
        if self._owner_ref is None:
            return None
        return self._owner_ref()

    def _set_owner(self, owner: "Record | None") -> None:
        self._owner_ref = weakref.ref(owner) if owner is not None else None

    def _container(self) -> "RecordList | None":
        owner = self.owner
        if owner is not None:
            return owner.records
        if self._attached:
            return self.gedcom.records
        return None

    @property
    def attached(self) -> bool:
        """True while this record is reachable from its Gedcom's top-level list."""
        return self._attached

    @property
    def level(self) -> int:
        """Number of owner hops up to the top level."""
        level = 0
        r = self.owner
        while r is not None:
            level += 1
            r = r.owner
        return level

    @property
    def records(self) -> "RecordList":
        """The modifiable list of sub-records. May be empty, never None."""
        return self._records

    def get_record(self, tag: str) -> "Record | None":
        """Return the first sub-record with this tag, or None."""
        for r in self._records:
            if r.tag == tag:
                return r
        return None

    def iter_records(self, tag: str) -> Iterator["Record"]:
        """Iterate the direct sub-records with this tag."""
        for r in self._records:
            if r.tag == tag:
                yield r

    def walk(self) -> Iterator["Record"]:
        """Traverse depth-first, yielding self then all descendants."""
        yield self
        for child in self._records:
            yield from child.walk()

    def to_dict(self) -> dict[str, Any]:
        """Structured form used by the JSON format."""
        out: dict[str, Any] = {"tag": self._tag}
        if self._id is not None:
            out["id"] = self._id
        if isinstance(self._payload, Reference):
            out["idref"] = self._payload.idref
        elif self.value:
            out["value"] = self.value
        if self._records:
            out["records"] = [r.to_dict() for r in self._records]
        return out

    # ------------------------------------------------------------------
    # Lifecycle hooks
    # ------------------------------------------------------------------

    def notify_removed(self) -> None:
        """Called immediately before this record is detached from its list."""

    def notify_added(self) -> None:
        """Called immediately after this record is attached to a list."""


# ============================================================================
# RecordList
# ============================================================================

class RecordList(MutableSequence):
    """
    Ordered, exclusively-owning list of records.

    Inserting a record that already sits in a list of the same Gedcom moves
    it: it is taken out of its old position (notify_removed) and attached at
    the new one (notify_added), so it is never in two places at once.
    """

    def __init__(self, gedcom: "Gedcom", owner: Record | None):
        self._gedcom = gedcom
        self._owner_ref = weakref.ref(owner) if owner is not None else None
        self._items: list[Record] = []

    @property
    def owner(self) -> Record | None:
        """The record owning this list, or None for the top-level list."""
        if self._owner_ref is None:
            return None
        return self._owner_ref()

    @property
    def _attached(self) -> bool:
        owner = self.owner
        return owner is None or owner._attached

    def __repr__(self) -> str:
        return f"RecordList({self._items!r})"

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Record]:
        return iter(tuple(self._items))

    def __contains__(self, record: object) -> bool:
        return any(r is record for r in self._items)

    def __getitem__(self, index):
        if isinstance(index, slice):
            return self._items[index]
        return self._items[index]

    def index(self, record, start: int = 0, stop: int | None = None) -> int:
        stop = len(self._items) if stop is None else stop
        for i in range(start, min(stop, len(self._items))):
            if self._items[i] is record:
                return i
        raise ValueError(f"{record!r} is not in list")

    def _normalize(self, index: int) -> int:
        n = len(self._items)
        if index < 0:
            index = max(0, n + index)
        return min(index, n)

    def _check(self, record: Record) -> None:
        if record is None:
            raise ValueError("Record is None")
        if not isinstance(record, Record):
            raise TypeError(f"Expected a Record, got {type(record).__name__}")
        if record.gedcom is not self._gedcom:
            raise StateError("Record from another GEDCOM")
        r = self.owner
        while r is not None:
            if r is record:
                raise StructuralError(f"Record {record!r} cannot contain itself")
            r = r.owner

    def _detach_for_move(self, record: Record) -> tuple["RecordList | None", int]:
        current = record._container()
        if current is None:
            return None, -1
        old_index = current.index(record)
        del current._items[old_index]
        self._gedcom._touch()
        record.notify_removed()
        record._set_owner(None)
        return current, old_index

    def _attach(self, record: Record) -> None:
        record._set_owner(self.owner)
        self._gedcom._sync_attached(record, self._attached)
        record.notify_added()

    def insert(self, index: int, record: Record) -> None:
        self._check(record)
        if self._attached and not record._attached:
            self._gedcom._check_ids(record)
        index = self._normalize(index)
        current, old_index = self._detach_for_move(record)
        if current is self and old_index < index:
            index -= 1
        self._items.insert(index, record)
        self._gedcom._touch()
        self._attach(record)

    def __setitem__(self, index, record: Record) -> None:
        if isinstance(index, slice):
            raise TypeError("RecordList does not support slice assignment")
        self._check(record)
        old = self._items[index]
        if old is record:
            return
        if index < 0:
            index += len(self._items)
        if self._attached and not record._attached:
            self._gedcom._check_ids(record, displaced=old)
        old.notify_removed()
        current, old_index = self._detach_for_move(record)
        if current is self and old_index < index:
            index -= 1
        self._items[index] = record
        self._gedcom._touch()
        old._set_owner(None)
        self._gedcom._sync_attached(old, False)
        self._attach(record)

    def __delitem__(self, index) -> None:
        if isinstance(index, slice):
            raise TypeError("RecordList does not support slice deletion")
        record = self._items.pop(index)
        self._gedcom._touch()
        record.notify_removed()
        record._set_owner(None)
        self._gedcom._sync_attached(record, False)

    def remove(self, record: Record) -> None:
        del self[self.index(record)]


# ============================================================================
# Specialized record kinds
# ============================================================================

CHARSETS = ("UTF-8", "ASCII", "ANSEL")


class Header(Record):
    """The HEAD record."""

    @property
    def charset(self) -> str | None:
        """The declared charset upper-cased, or None if unspecified or unsupported."""
        r = self.get_record("CHAR")
        if r is not None and r.value and r.value.upper() in CHARSETS:
            return r.value.upper()
        return None

    @property
    def version(self) -> str | None:
        """The raw HEAD.GEDC.VERS value."""
        r = self.get_record("GEDC")
        if r is not None:
            r = r.get_record("VERS")
            if r is not None:
                return r.value
        return None

    @property
    def major_version(self) -> int:
        """The major version (typically 5 or 7), or 0 if unspecified."""
        s = self.version or ""
        if s and "1" <= s[0] <= "9" and (len(s) == 1 or s[1] == "."):
            return int(s[0])
        return 0

    def set_version(self, version: str) -> None:
        """Set HEAD.GEDC.VERS, eg "5.5.1" or "7.0"."""
        gedc = self.get_record("GEDC")
        if gedc is None:
            gedc = self.gedcom.new_record("GEDC")
            self.records.insert(0, gedc)
        vers = gedc.get_record("VERS")
        if vers is None:
            vers = self.gedcom.new_record("VERS")
            gedc.records.insert(0, vers)
        vers.set_value(version)


class GDate(Record):
    """A DATE record. Calendar interpretation is done by callers."""


class Person(Record):
    """An INDI record, with a cached view of the families it links to."""

    def __init__(self, gedcom: "Gedcom", tag: str):
        super().__init__(gedcom, tag)
        self._family_links: tuple[tuple[str, "Family"], ...] | None = None
        self._links_revision = -1

    def reset_connections(self) -> None:
        self._family_links = None

    @property
    def family_links(self) -> tuple[tuple[str, "Family"], ...]:
        """(tag, Family) for every FAMC/FAMS sub-record that resolves to a family."""
        if self._family_links is None or self._links_revision != self.gedcom.revision:
            links = []
            for r in self.records:
                if r.tag in ("FAMC", "FAMS"):
                    target = r.dereference()
                    if isinstance(target, Family):
                        links.append((r.tag, target))
            self._family_links = tuple(links)
            self._links_revision = self.gedcom.revision
        return self._family_links

    def notify_removed(self) -> None:
        for _, family in self.family_links:
            for member in family.members():
                if member is not self:
                    member.reset_connections()
        self.reset_connections()

    def notify_added(self) -> None:
        self.reset_connections()


class Family(Record):
    """
    A FAM record: an optional husband, an optional wife and zero or more
    children, all held as references.
    """

    def _resolve_person(self, tag: str) -> Person | None:
        r = self.get_record(tag)
        if r is not None:
            r = r.dereference()
            if isinstance(r, Person):
                return r
        return None

    @property
    def husband(self) -> Person | None:
        return self._resolve_person("HUSB")

    @property
    def wife(self) -> Person | None:
        return self._resolve_person("WIFE")

    @property
    def children(self) -> tuple[Person, ...]:
        """Resolved CHIL persons. Modify through self.records."""
        out = []
        for r in self.iter_records("CHIL"):
            r = r.dereference()
            if isinstance(r, Person):
                out.append(r)
        return tuple(out)

    @property
    def is_empty(self) -> bool:
        return self.husband is None and self.wife is None and not self.children

    def members(self) -> list[Person]:
        out = [p for p in (self.husband, self.wife) if p is not None]
        out.extend(self.children)
        return out

    def _reset_members(self) -> None:
        for r in self.records:
            target = r.dereference()
            if isinstance(target, Person):
                target.reset_connections()

    def notify_removed(self) -> None:
        self._reset_members()

    def notify_added(self) -> None:
        self._reset_members()


class Multimedia(Record):
    """An OBJE record."""


class Note(Record):
    """A NOTE record."""


class Repository(Record):
    """A REPO record."""


class Source(Record):
    """A SOUR record."""


class Submitter(Record):
    """A SUBM record."""


RECORD_KINDS: dict[str, type[Record]] = {
    "HEAD": Header,
    "DATE": GDate,
    "INDI": Person,
    "FAM": Family,
    "OBJE": Multimedia,
    "NOTE": Note,
    "REPO": Repository,
    "SOUR": Source,
    "SUBM": Submitter,
}
