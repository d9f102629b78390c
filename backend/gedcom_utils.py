"""GEDCOM loading, export and record helpers built on the Gedcom tree."""

import io
import logging
from pathlib import Path
from typing import Any

from gedcom_records import Record
from gedcom_tree import Gedcom

logger = logging.getLogger("gedcomtree.utils")


# ============================================================================
# Parsing / Export
# ============================================================================

def parse_gedcom_file(file_path: str | Path, options: dict[str, str] | None = None) -> Gedcom:
    """Parse a GEDCOM (or JSON list) file and return the Gedcom."""
    gedcom = Gedcom(options)
    with open(file_path, "rb") as f:
        gedcom.read(f)
    logger.info(f"Parsed {file_path}: {len(gedcom.records)} top-level records")
    return gedcom


def parse_gedcom_content(content: str | bytes, options: dict[str, str] | None = None) -> Gedcom:
    """Parse GEDCOM content from a string or bytes. Strings are encoded as UTF-8."""
    if isinstance(content, str):
        content = content.encode("utf-8")
    gedcom = Gedcom(options)
    gedcom.read(io.BytesIO(content))
    return gedcom


def export_gedcom_content(gedcom: Gedcom, fmt: str = "ged") -> str:
    """
    Export the current tree to a string.

    Args:
        gedcom: The tree to export
        fmt: "ged" for the line format or "json" for the JSON list format
    """
    if fmt == "json":
        return gedcom.to_json()
    if fmt != "ged":
        raise ValueError(f"Unknown export format: {fmt!r}")
    return gedcom.to_bytes().decode("utf-8")


def set_header_version(gedcom: Gedcom, version: str) -> None:
    """Set HEAD.GEDC.VERS before writing, eg "5.5.1" or "7.0"."""
    header = gedcom.header
    if header is None:
        raise ValueError("GEDCOM has no header")
    header.set_version(version)


# ============================================================================
# Lookup
# ============================================================================

def normalize_id(record_id: str) -> str:
    """Accept '@I1@' or 'I1' and return 'I1'."""
    return record_id.strip().strip("@")


def find_record_by_id(gedcom: Gedcom, record_id: str) -> Record | None:
    """Find a record by its GEDCOM ID (with or without @ symbols)."""
    return gedcom.resolve(normalize_id(record_id))


def find_records_by_tag(gedcom: Gedcom, tag: str) -> list[Record]:
    """All top-level records with this tag, in file order."""
    return [r for r in gedcom.records if r.tag == tag]


def get_record_data(record: Record) -> dict[str, Any]:
    """Summary of a record, for listings."""
    data: dict[str, Any] = {
        "id": record.id,
        "tag": record.tag,
        "kind": type(record).__name__,
        "line": record.line,
        "level": record.level,
        "childCount": len(record.records),
    }
    if record.is_reference:
        data["idref"] = record.idref
        data["resolved"] = record.dereference() is not None
    else:
        data["value"] = record.value
    return data


def get_all_records(gedcom: Gedcom) -> list[dict[str, Any]]:
    """Summaries of all top-level records."""
    return [get_record_data(r) for r in gedcom.records]


def find_unresolved_references(gedcom: Gedcom) -> list[Record]:
    """Reference records anywhere in the tree whose target doesn't exist."""
    return [r for r in gedcom.walk() if r.is_reference and r.dereference() is None]


# ============================================================================
# ID generation
# ============================================================================

def generate_new_id(gedcom: Gedcom, prefix: str) -> str:
    """Generate a new unique ID of the form <prefix><n>, eg I12."""
    existing_ids = []
    for record_id in gedcom.ids:
        if record_id.startswith(prefix):
            try:
                existing_ids.append(int(record_id[len(prefix):]))
            except ValueError:
                pass

    max_id = max(existing_ids) if existing_ids else 0
    return f"{prefix}{max_id + 1}"
